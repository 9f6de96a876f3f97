"""
Document model.

The editor owns the raw text; every evaluation parses a fresh snapshot with
PyYAML.  A document that fails to parse carries a single :class:`ParseError`
and no tree, which short-circuits all downstream validation.  Diagnostics use
1-based lines and columns; conversion to the 0-based LSP convention happens in
:mod:`colsp.handlers.diagnostics`.
"""
from __future__ import annotations

import enum
from dataclasses import dataclass, field
from typing import Iterator

import yaml


class ComponentKind(str, enum.Enum):
    RECEIVER = 'receiver'
    PROCESSOR = 'processor'
    EXPORTER = 'exporter'
    CONNECTOR = 'connector'
    EXTENSION = 'extension'

    @property
    def section(self) -> str:
        """The pluralised top-level container holding components of this kind."""
        return self.value + 's'

    @classmethod
    def from_section(cls, section: str | None) -> ComponentKind | None:
        if not section or not section.endswith('s'):
            return None
        try:
            return cls(section[:-1])
        except ValueError:
            return None


SERVICE_SECTION = 'service'

# Canonical order, used for top-level completion.
SECTIONS: tuple[str, ...] = tuple(k.section for k in ComponentKind) + (SERVICE_SECTION,)
COMPONENT_SECTIONS: tuple[str, ...] = tuple(k.section for k in ComponentKind)


class Severity(str, enum.Enum):
    ERROR = 'error'
    WARNING = 'warning'


@dataclass(frozen=True)
class Diagnostic:
    message: str
    severity: Severity
    line: int            # 1-based
    column: int          # 1-based
    end_line: int | None = None
    end_column: int | None = None
    path: tuple[str, ...] | None = None


@dataclass
class ParseError:
    line: int        # 1-based
    column: int      # 1-based
    message: str


@dataclass
class ParsedDocument:
    source: str
    tree: object | None                # nested dict/list/scalar, or None
    errors: list[ParseError] = field(default_factory=list)

    @property
    def ok(self) -> bool:
        return not self.errors


def parse_document(source: str) -> ParsedDocument:
    """Parse *source* and return a :class:`ParsedDocument`.

    Syntax errors are collected rather than raised.  The error position is
    kept in the message; the diagnostic itself is always anchored at line 1.
    """
    try:
        tree = yaml.safe_load(source)
    except yaml.YAMLError as e:
        problem = getattr(e, 'problem', None) or str(e)
        mark = getattr(e, 'problem_mark', None)
        if mark is not None:
            problem = f'{problem} (line {mark.line + 1}, column {mark.column + 1})'
        return ParsedDocument(
            source=source,
            tree=None,
            errors=[ParseError(line=1, column=1, message=f'YAML: {problem}')],
        )
    return ParsedDocument(source=source, tree=tree)


def iter_components(tree) -> Iterator[tuple[ComponentKind, str, object]]:
    """Yield ``(kind, name, config)`` for every component declared in *tree*.

    Sections that are missing or not mappings are skipped.
    """
    if not isinstance(tree, dict):
        return
    for kind in ComponentKind:
        block = tree.get(kind.section)
        if not isinstance(block, dict):
            continue
        for name, config in block.items():
            yield kind, str(name), config


def component_type(name: str) -> str:
    """Return the type part of a component id (``otlp/secondary`` -> ``otlp``)."""
    return name.split('/', 1)[0]
