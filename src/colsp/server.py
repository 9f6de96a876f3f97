"""
colsp Language Server.

Registers LSP capabilities and wires the completion, hover and validation
engine to the editor.  One :class:`ValidationPipeline` exists per open
document; the schema cache and registry client are shared by all of them.
"""
from __future__ import annotations

import asyncio
import logging

from pygls.lsp.server import LanguageServer
from lsprotocol import types as lsp

logger = logging.getLogger(__name__)

from colsp import __version__
from colsp.document import Diagnostic
from colsp.handlers import get_diagnostics, get_completions, get_hover
from colsp.pipeline import ValidationPipeline
from colsp.registry import RegistryClient
from colsp.schemas import SchemaCache
from colsp.settings import Settings, SettingsResolver

# ---------------------------------------------------------------------------
# Server instance + per-session state
# ---------------------------------------------------------------------------

server = LanguageServer(
    'colsp', __version__,
    text_document_sync_kind=lsp.TextDocumentSyncKind.Full,
)

# Latest text per URI (populated on open/change).
_docs: dict[str, str] = {}

# Validation pipeline per URI.
_pipelines: dict[str, ValidationPipeline] = {}

# Settings cascade; rebuilt on initialize.
_resolver = SettingsResolver()
_settings: Settings | None = None

# Shared registry client + schema cache.
_client: RegistryClient | None = None
_cache = SchemaCache(None)

# Close tasks for replaced registry clients, held until they finish.
_closing: set[asyncio.Task] = set()


# ---------------------------------------------------------------------------
# Helpers
# ---------------------------------------------------------------------------

def configure(cli_api_url: str | None = None, cli_debounce: float | None = None) -> None:
    """Record command-line settings; called by the CLI before starting."""
    global _resolver
    _resolver = SettingsResolver(cli_api_url=cli_api_url, cli_debounce=cli_debounce)
    _apply_settings()


def _apply_log_level(raw: str | None) -> None:
    """Set the root logger level from a string like 'debug', 'warning', etc."""
    if not raw:
        return
    level = getattr(logging, raw.upper(), None)
    if isinstance(level, int):
        logging.getLogger().setLevel(level)


def _retire_client(client: RegistryClient) -> None:
    try:
        loop = asyncio.get_running_loop()
    except RuntimeError:
        return
    task = loop.create_task(client.aclose())
    _closing.add(task)
    task.add_done_callback(_closing.discard)


def _apply_settings() -> None:
    """Resolve settings and push any changes into the shared state."""
    global _settings, _client
    settings = _resolver.resolve()
    if _client is None or _settings is None or settings.api_url != _settings.api_url:
        if _client is not None:
            _retire_client(_client)
        _client = RegistryClient(settings.api_url)
        _cache.set_provider(_client)
        logger.info('using schema registry at %s', settings.api_url)
    for pipeline in _pipelines.values():
        pipeline.remote = _client
        pipeline.debounce = settings.debounce
    _apply_log_level(settings.log_level)
    _settings = settings


def _publisher(uri: str):
    def publish(diags: list[Diagnostic]) -> None:
        logger.debug('publishing %d diagnostics for %s', len(diags), uri)
        server.text_document_publish_diagnostics(
            lsp.PublishDiagnosticsParams(uri=uri, diagnostics=get_diagnostics(diags))
        )
    return publish


def _pipeline(uri: str) -> ValidationPipeline:
    pipeline = _pipelines.get(uri)
    if pipeline is None:
        if _settings is None:
            _apply_settings()
        pipeline = ValidationPipeline(
            _cache, _client, _publisher(uri), debounce=_settings.debounce,
        )
        _pipelines[uri] = pipeline
    return pipeline


# ---------------------------------------------------------------------------
# Lifecycle
# ---------------------------------------------------------------------------

@server.feature(lsp.INITIALIZE)
def on_initialize(params: lsp.InitializeParams):
    global _resolver
    workspace_root = None
    if params.root_uri:
        uri = params.root_uri
        workspace_root = uri[7:] if uri.startswith('file://') else uri

    _resolver = SettingsResolver(
        workspace_root=workspace_root,
        cli_api_url=_resolver.cli_api_url,
        cli_debounce=_resolver.cli_debounce,
    )
    _resolver.set_client_options(getattr(params, 'initialization_options', None))
    _apply_settings()


@server.feature(lsp.WORKSPACE_DID_CHANGE_CONFIGURATION)
def did_change_configuration(params: lsp.DidChangeConfigurationParams):
    """Handle live config changes (e.g. user changes ``colsp.apiUrl``)."""
    settings = getattr(params, 'settings', None) or {}
    if isinstance(settings, dict) and 'colsp' in settings:
        _resolver.update_client_options(settings['colsp'])
        _apply_settings()


# ---------------------------------------------------------------------------
# Text document synchronisation
# ---------------------------------------------------------------------------

@server.feature(lsp.TEXT_DOCUMENT_DID_OPEN)
def did_open(params: lsp.DidOpenTextDocumentParams):
    td = params.text_document
    _docs[td.uri] = td.text
    # Validate immediately on open (not debounced — file is already saved)
    _pipeline(td.uri).schedule(td.text, delay=0.0)


@server.feature(lsp.TEXT_DOCUMENT_DID_CHANGE)
def did_change(params: lsp.DidChangeTextDocumentParams):
    uri = params.text_document.uri
    source = params.content_changes[-1].text
    _docs[uri] = source
    # Debounce: wait for the user to pause typing before validating
    _pipeline(uri).schedule(source)


@server.feature(lsp.TEXT_DOCUMENT_DID_CLOSE)
def did_close(params: lsp.DidCloseTextDocumentParams):
    uri = params.text_document.uri
    pipeline = _pipelines.pop(uri, None)
    if pipeline is not None:
        pipeline.cancel()
    _docs.pop(uri, None)
    server.text_document_publish_diagnostics(
        lsp.PublishDiagnosticsParams(uri=uri, diagnostics=[])
    )


# ---------------------------------------------------------------------------
# Completion
# ---------------------------------------------------------------------------

@server.feature(
    lsp.TEXT_DOCUMENT_COMPLETION,
    lsp.CompletionOptions(trigger_characters=[' ', ':', '\n', '-']),
)
async def completion(params: lsp.CompletionParams) -> lsp.CompletionList | None:
    source = _docs.get(params.text_document.uri)
    if source is None:
        return None
    items = await get_completions(source, params.position, _cache)
    return lsp.CompletionList(is_incomplete=False, items=items)


# ---------------------------------------------------------------------------
# Hover
# ---------------------------------------------------------------------------

@server.feature(lsp.TEXT_DOCUMENT_HOVER)
async def hover(params: lsp.HoverParams) -> lsp.Hover | None:
    source = _docs.get(params.text_document.uri)
    if source is None:
        return None
    return await get_hover(source, params.position, _cache)


# ---------------------------------------------------------------------------
# Commands
# ---------------------------------------------------------------------------

@server.command('colsp.clearSchemaCache')
def cmd_clear_schema_cache(*args):
    """Drop every cached schema so the next request refetches from the registry."""
    _cache.clear()
    logger.info('schema cache cleared')
    return True
