"""
Cursor context inference.

Works on raw lines rather than a parse tree so it keeps answering while the
document is half-typed and unparseable.  Starting at the cursor line, the scan
walks backwards and keeps every ``key:`` line that is indented strictly less
than the closest ancestor found so far; the resulting chain (root first) is
then split into section, component and nested property path.
"""
from __future__ import annotations

import re
from dataclasses import dataclass, field

from colsp.document import SECTIONS

# ``key:`` or ``key: value`` (the value is ignored).  Sequence items, comments
# and flow collections never match.
_KEY_RE = re.compile(r'^(\s*)([^\s#\-\'"{\[][^:#]*?)\s*:(?:\s|$)')
_QUOTED_KEY_RE = re.compile(r'^(\s*)(["\'])(.+?)\2\s*:(?:\s|$)')

_DEFAULT_CHILD_INDENT = 2


@dataclass
class YamlContext:
    section: str | None = None
    component: str | None = None
    path: list[str] = field(default_factory=list)
    depth: int = 0


def indent_of(line: str) -> int:
    return len(line) - len(line.lstrip())


def key_of(line: str) -> tuple[int, str] | None:
    """Return ``(indent, key)`` if *line* is a mapping-key line, else None."""
    m = _KEY_RE.match(line)
    if m:
        return len(m.group(1)), m.group(2)
    m = _QUOTED_KEY_RE.match(line)
    if m:
        return len(m.group(1)), m.group(3)
    return None


def _child_indent(lines: list[str], section_line: int) -> int:
    """Indentation of the first content line nested under *section_line*."""
    for line in lines[section_line + 1:]:
        stripped = line.strip()
        if not stripped or stripped.startswith('#'):
            continue
        indent = indent_of(line)
        return indent if indent > 0 else _DEFAULT_CHILD_INDENT
    return _DEFAULT_CHILD_INDENT


def resolve_context(lines: list[str], cursor_line: int) -> YamlContext:
    """Infer the logical position of *cursor_line* (0-based) in *lines*.

    Never raises; for out-of-range cursors or documents without recognisable
    ancestors the returned context is simply empty.
    """
    context = YamlContext()
    if cursor_line < 0 or not lines:
        return context

    current = lines[cursor_line] if cursor_line < len(lines) else ''
    threshold = indent_of(current)
    context.depth = threshold // 2

    # (line index, indent, key), collected leaf first
    ancestors: list[tuple[int, int, str]] = []
    for i in range(min(cursor_line, len(lines)) - 1, -1, -1):
        if threshold == 0:
            break
        entry = key_of(lines[i])
        if entry is None:
            continue
        indent, key = entry
        if indent < threshold:
            ancestors.append((i, indent, key))
            threshold = indent
            if indent == 0 and key in SECTIONS:
                break

    ancestors.reverse()

    child_indent = None
    for line_idx, indent, key in ancestors:
        if context.section is None:
            if indent == 0 and key in SECTIONS:
                context.section = key
                child_indent = _child_indent(lines, line_idx)
            continue
        if context.component is None:
            if indent == child_indent:
                context.component = key
                continue
            break
        context.path.append(key)

    return context
