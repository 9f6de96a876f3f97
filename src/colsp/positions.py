"""
Best-effort mapping from a key path to a source position.

Parsed YAML trees carry no positions, so diagnostics are anchored by looking
the path up again in the raw text.  Lookup strategies are tried in order and
the first hit wins:

1. exact match of the key chain against indentation-delimited blocks;
2. a textual ``key:`` scan inside the deepest ancestor that did match,
   bounded by that ancestor's block.

:func:`anchor_position` adds a final fallback to the nearest ancestor key.
All positions are 1-based.
"""
from __future__ import annotations

import re
from dataclasses import dataclass
from typing import Callable, Sequence

from colsp.context import indent_of, key_of
from colsp.document import Diagnostic, Severity


@dataclass(frozen=True)
class Position:
    line: int
    column: int
    end_line: int
    end_column: int


def _is_content(line: str) -> bool:
    stripped = line.strip()
    return bool(stripped) and not stripped.startswith('#')


def _block_end(lines: list[str], start: int, indent: int) -> int:
    """Index one past the last line nested under the key line *start*."""
    for j in range(start + 1, len(lines)):
        if _is_content(lines[j]) and indent_of(lines[j]) <= indent:
            return j
    return len(lines)


def _locate(lines: list[str], path: Sequence[str]) -> list[tuple[int, int]]:
    """Match as much of *path* as possible; returns ``(line, indent)`` per key."""
    found: list[tuple[int, int]] = []
    lo, hi = 0, len(lines)
    for key in path:
        content = [i for i in range(lo, hi) if _is_content(lines[i])]
        if not content:
            break
        level = min(indent_of(lines[i]) for i in content)
        hit = None
        for i in content:
            entry = key_of(lines[i])
            if entry is not None and entry == (level, key):
                hit = i
                break
        if hit is None:
            break
        found.append((hit, level))
        lo, hi = hit + 1, _block_end(lines, hit, level)
    return found


def _word_re(word: str) -> re.Pattern:
    return re.compile(rf'(?<![\w/.-]){re.escape(word)}(?![\w/.-])')


def _key_span(lines: list[str], line_idx: int, key: str) -> Position:
    line = lines[line_idx]
    col = line.find(key, indent_of(line)) + 1
    return Position(line_idx + 1, col, line_idx + 1, col + len(key))


def _item_span(lines: list[str], key_line: int, indent: int, item: str) -> Position | None:
    """Find *item* in a flow (``[a, b]``) or block (``- a``) sequence under a key."""
    pattern = _word_re(item)
    head = lines[key_line]
    colon = head.find(':', indent_of(head))
    m = pattern.search(head, colon + 1) if '[' in head[colon + 1:] else None
    if m:
        return Position(key_line + 1, m.start() + 1, key_line + 1, m.end() + 1)
    for j in range(key_line + 1, _block_end(lines, key_line, indent)):
        stripped = lines[j].strip()
        if stripped.startswith(('-', '[')):
            m = pattern.search(lines[j])
            if m:
                return Position(j + 1, m.start() + 1, j + 1, m.end() + 1)
    return None


def _exact(lines: list[str], path: Sequence[str], item: str | None) -> Position | None:
    found = _locate(lines, path)
    if len(found) != len(path):
        return None
    line_idx, indent = found[-1]
    if item is not None:
        span = _item_span(lines, line_idx, indent, item)
        if span is not None:
            return span
    return _key_span(lines, line_idx, path[-1])


def _scan(lines: list[str], path: Sequence[str], item: str | None) -> Position | None:
    found = _locate(lines, path)
    if not found or len(found) == len(path):
        return None
    anc_line, anc_indent = found[-1]
    key = path[-1]
    pattern = re.compile(rf'(?<![\w/.-]){re.escape(key)}\s*:')
    for j in range(anc_line + 1, len(lines)):
        line = lines[j]
        if _is_content(line) and indent_of(line) <= anc_indent:
            break
        m = pattern.search(line)
        if m:
            return Position(j + 1, m.start() + 1, j + 1, m.start() + 1 + len(key))
    return None


def first_of(*strategies: Callable[[], Position | None]) -> Position | None:
    for strategy in strategies:
        pos = strategy()
        if pos is not None:
            return pos
    return None


def find_position(text: str, path: Sequence[str], item: str | None = None) -> Position | None:
    """Locate *path* (and optionally a sequence *item* under it) in *text*."""
    if not path:
        return None
    lines = text.split('\n')
    return first_of(
        lambda: _exact(lines, path, item),
        lambda: _scan(lines, path, item),
    )


def anchor_position(text: str, path: Sequence[str], item: str | None = None) -> Position | None:
    """Like :func:`find_position`, falling back to the nearest ancestor key."""
    return first_of(
        lambda: find_position(text, path, item),
        *(lambda k=k: find_position(text, path[:k]) for k in range(len(path) - 1, 0, -1)),
    )


def make_diagnostic(message: str, text: str, path: Sequence[str],
                    item: str | None = None,
                    severity: Severity = Severity.ERROR) -> Diagnostic:
    """Build a diagnostic anchored at *path*, or at line 1 if nothing matches."""
    pos = anchor_position(text, path, item)
    if pos is None:
        return Diagnostic(message=message, severity=severity, line=1, column=1,
                          path=tuple(path))
    return Diagnostic(
        message=message,
        severity=severity,
        line=pos.line,
        column=pos.column,
        end_line=pos.end_line,
        end_column=pos.end_column,
        path=tuple(path),
    )


def find_text(text: str, path: Sequence[str], word: str) -> Position | None:
    """Find *word* anywhere inside the block of the key at *path*."""
    lines = text.split('\n')
    found = _locate(lines, path)
    if not path or len(found) != len(path):
        return None
    line_idx, indent = found[-1]
    pattern = _word_re(word)
    for j in range(line_idx + 1, _block_end(lines, line_idx, indent)):
        m = pattern.search(lines[j])
        if m:
            return Position(j + 1, m.start() + 1, j + 1, m.end() + 1)
    return None
