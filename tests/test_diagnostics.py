"""Tests for colsp.handlers.diagnostics — engine to LSP conversion."""
from __future__ import annotations

from lsprotocol import types as lsp

from colsp.document import Diagnostic, Severity
from colsp.handlers.diagnostics import get_diagnostics, to_lsp


class TestToLsp:
    def test_positions_become_zero_based(self):
        diag = Diagnostic('bad', Severity.ERROR, 4, 25, 4, 31,
                          path=('service', 'pipelines', 'traces', 'receivers'))
        result = to_lsp(diag)
        assert result.range.start == lsp.Position(line=3, character=24)
        assert result.range.end == lsp.Position(line=3, character=30)
        assert result.severity == lsp.DiagnosticSeverity.Error
        assert result.source == 'colsp'
        assert result.message == 'bad'
        assert result.data == {'path': ['service', 'pipelines', 'traces', 'receivers']}

    def test_missing_end_spans_one_character(self):
        result = to_lsp(Diagnostic('parse', Severity.WARNING, 1, 1))
        assert result.range.start == lsp.Position(line=0, character=0)
        assert result.range.end == lsp.Position(line=0, character=1)
        assert result.severity == lsp.DiagnosticSeverity.Warning
        assert result.data is None

    def test_get_diagnostics(self):
        diags = [Diagnostic('a', Severity.ERROR, 1, 1), Diagnostic('b', Severity.WARNING, 2, 3)]
        assert [d.message for d in get_diagnostics(diags)] == ['a', 'b']
        assert get_diagnostics([]) == []
