"""Convert engine diagnostics into LSP Diagnostic objects."""
from __future__ import annotations

from lsprotocol import types as lsp

from colsp.document import Diagnostic, Severity

_SEVERITY = {
    Severity.ERROR: lsp.DiagnosticSeverity.Error,
    Severity.WARNING: lsp.DiagnosticSeverity.Warning,
}


def to_lsp(diag: Diagnostic) -> lsp.Diagnostic:
    line = max(0, diag.line - 1)            # LSP is 0-based; engine is 1-based
    col = max(0, diag.column - 1)
    end_line = max(0, (diag.end_line or diag.line) - 1)
    end_col = max(0, (diag.end_column or diag.column + 1) - 1)
    return lsp.Diagnostic(
        range=lsp.Range(
            start=lsp.Position(line=line, character=col),
            end=lsp.Position(line=end_line, character=end_col),
        ),
        message=diag.message,
        severity=_SEVERITY[diag.severity],
        source='colsp',
        data={'path': list(diag.path)} if diag.path else None,
    )


def get_diagnostics(diags: list[Diagnostic]) -> list[lsp.Diagnostic]:
    """Return LSP ``Diagnostic`` objects for every engine diagnostic."""
    return [to_lsp(d) for d in diags]
