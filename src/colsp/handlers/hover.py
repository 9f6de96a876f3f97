"""
Hover handler.

When the cursor rests on a property key inside a component, resolve the
property in the component's schema and return Markdown describing it: type,
required marker, description, default, allowed values, pattern and numeric or
length constraints.
"""
from __future__ import annotations

import json

from lsprotocol import types as lsp

from colsp.context import indent_of, key_of, resolve_context
from colsp.schemas import (
    SchemaCache, collect_properties, collect_required, schema_at, type_label,
)

_CONSTRAINTS = (
    ('minimum', 'minimum'),
    ('maximum', 'maximum'),
    ('exclusiveMinimum', 'exclusive minimum'),
    ('exclusiveMaximum', 'exclusive maximum'),
    ('minLength', 'min length'),
    ('maxLength', 'max length'),
    ('minItems', 'min items'),
    ('maxItems', 'max items'),
)


def _key_at(line: str, character: int) -> tuple[str, int, int] | None:
    """Return ``(key, start_col, end_col)`` if *character* is on the line's key."""
    entry = key_of(line)
    if entry is None:
        return None
    key = entry[1]
    start = line.find(key, indent_of(line))
    end = start + len(key)
    if start <= character <= end:
        return key, start, end
    return None


def hover_markdown(name: str, prop: dict, required: bool) -> str:
    """Markdown documentation for property *name* described by *prop*."""
    header = f'**{name}**'
    if required:
        header += ' *(required)*'
    lines: list[str] = [header, '', f'*Type:* `{type_label(prop)}`']

    if prop.get('description'):
        lines += ['', str(prop['description'])]
    if 'default' in prop:
        lines += ['', f'*Default:* `{json.dumps(prop["default"])}`']
    if prop.get('enum'):
        values = ', '.join(f'`{v}`' for v in prop['enum'])
        lines += ['', f'*Allowed values:* {values}']
    if prop.get('pattern'):
        lines += ['', f'*Pattern:* `{prop["pattern"]}`']

    constraints = [
        f'{label}: {prop[key]}'
        for key, label in _CONSTRAINTS
        if isinstance(prop.get(key), (int, float)) and not isinstance(prop.get(key), bool)
    ]
    if constraints:
        lines += ['', f'*Constraints:* {", ".join(constraints)}']
    return '\n'.join(lines)


async def get_hover(
    source: str,
    position: lsp.Position,
    cache: SchemaCache,
) -> lsp.Hover | None:
    """Return LSP hover content for *position* in *source*, or *None*."""
    lines = source.split('\n')
    if position.line >= len(lines):
        return None

    result = _key_at(lines[position.line], position.character)
    if result is None:
        return None
    key, start_col, end_col = result

    ctx = resolve_context(lines, position.line)
    node = await schema_at(ctx.section, ctx.component, ctx.path, cache)
    if node is None:
        return None
    prop = collect_properties(node).get(key)
    if prop is None:
        return None

    md = hover_markdown(key, prop, key in collect_required(node))
    return lsp.Hover(
        contents=lsp.MarkupContent(kind=lsp.MarkupKind.Markdown, value=md),
        range=lsp.Range(
            start=lsp.Position(line=position.line, character=start_col),
            end=lsp.Position(line=position.line, character=end_col),
        ),
    )
