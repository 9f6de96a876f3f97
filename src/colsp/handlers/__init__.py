"""LSP-facing handlers: completion, hover and diagnostic conversion."""
from .completion import get_completions
from .diagnostics import get_diagnostics, to_lsp
from .hover import get_hover

__all__ = ['get_completions', 'get_diagnostics', 'get_hover', 'to_lsp']
