"""
Completion handler.

What is offered depends on where the cursor sits:

1. **Top level** (indentation 0) — the section names, in canonical order.
2. **Directly under a section** — component names: the registry catalog for
   that kind plus whatever the document already declares there.  Under
   ``service`` the keys of the built-in service schema.
3. **Inside a component** — the properties of the schema node at the cursor
   path, required ones first, plus the node's enum values.  Without a schema
   nothing is offered.
"""
from __future__ import annotations

import re

from lsprotocol import types as lsp

from colsp.context import YamlContext, key_of, resolve_context
from colsp.document import SECTIONS, SERVICE_SECTION
from colsp.schemas import (
    SERVICE_SCHEMA, SchemaCache, collect_properties, collect_required,
    insert_text, property_detail, schema_at,
)

_SECTION_DOCS = {
    'receivers': 'Receivers collect telemetry data from sources',
    'processors': 'Processors transform telemetry data',
    'exporters': 'Exporters send telemetry data to backends',
    'connectors': 'Connectors connect pipelines',
    'extensions': 'Extensions provide additional capabilities',
    'service': 'Service configuration defines pipelines and telemetry settings',
}

_WORD_RE = re.compile(r'[\w/-]*$')


def _doc(value: str | None) -> lsp.MarkupContent | None:
    if not value:
        return None
    return lsp.MarkupContent(kind=lsp.MarkupKind.PlainText, value=value)


def _section_items() -> list[lsp.CompletionItem]:
    return [
        lsp.CompletionItem(
            label=name,
            kind=lsp.CompletionItemKind.Module,
            insert_text=f'{name}:\n  ',
            documentation=_doc(_SECTION_DOCS.get(name)),
            sort_text=f'{index:02d}',
        )
        for index, name in enumerate(SECTIONS)
    ]


def declared_names(lines: list[str], section: str) -> list[str]:
    """Component keys already written under *section* (no parse needed)."""
    names: list[str] = []
    inside = False
    child = None
    for line in lines:
        entry = key_of(line)
        if entry is not None and entry[0] == 0:
            inside = entry[1] == section
            child = None
            continue
        if not inside or entry is None:
            continue
        if child is None:
            child = entry[0]
        if entry[0] == child and entry[1] not in names:
            names.append(entry[1])
    return names


async def _component_items(lines: list[str], section: str,
                           cache: SchemaCache) -> list[lsp.CompletionItem]:
    if section == SERVICE_SECTION:
        props = collect_properties(SERVICE_SCHEMA)
        return [
            lsp.CompletionItem(
                label=name,
                kind=lsp.CompletionItemKind.Property,
                insert_text=insert_text(name, prop),
                documentation=_doc(prop.get('description')),
                detail=property_detail(prop),
                sort_text=f'1{name}',
            )
            for name, prop in sorted(props.items())
        ]

    names = sorted(set(await cache.component_names(section)) | set(declared_names(lines, section)))
    return [
        lsp.CompletionItem(
            label=name,
            kind=lsp.CompletionItemKind.Class,
            insert_text=f'{name}:\n  ',
            documentation=_doc(f'{name} component'),
            sort_text=f'1{name}',
        )
        for name in names
    ]


async def _property_items(ctx: YamlContext, cache: SchemaCache) -> list[lsp.CompletionItem]:
    node = await schema_at(ctx.section, ctx.component, ctx.path, cache)
    if node is None:
        return []

    items: list[lsp.CompletionItem] = []
    required = collect_required(node)
    props = collect_properties(node)
    for name in sorted(props, key=lambda n: (n not in required, n)):
        prop, is_required = props[name], name in required
        items.append(lsp.CompletionItem(
            label=name + (' *' if is_required else ''),
            filter_text=name,
            kind=lsp.CompletionItemKind.Property,
            insert_text=insert_text(name, prop),
            documentation=_doc(prop.get('description') or name),
            detail=property_detail(prop),
            sort_text=('0' if is_required else '1') + name,
        ))

    for index, value in enumerate(node.get('enum') or []):
        items.append(lsp.CompletionItem(
            label=str(value),
            kind=lsp.CompletionItemKind.EnumMember,
            insert_text=str(value),
            documentation=_doc('Allowed value'),
            sort_text=f'2{index:04d}',
        ))
    return items


async def get_completions(
    source: str,
    position: lsp.Position,
    cache: SchemaCache,
) -> list[lsp.CompletionItem]:
    """Return completion items for *position* in *source*."""
    lines = source.split('\n')
    if position.line >= len(lines):
        return []
    ctx = resolve_context(lines, position.line)

    if ctx.depth == 0:
        items = _section_items()
    elif ctx.section and not ctx.component and ctx.depth == 1:
        items = await _component_items(lines, ctx.section, cache)
    elif ctx.section and ctx.component:
        items = await _property_items(ctx, cache)
    else:
        return []

    word = _WORD_RE.search(lines[position.line][:position.character]).group(0)
    start = lsp.Position(line=position.line, character=position.character - len(word))
    edit_range = lsp.Range(start=start, end=position)
    for item in items:
        item.text_edit = lsp.TextEdit(range=edit_range, new_text=item.insert_text)
    return items
