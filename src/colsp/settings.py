"""
Settings resolution for colsp.

Each setting is taken from the first source that provides it:

1. Client configuration supplied via ``initializationOptions`` or
   ``workspace/didChangeConfiguration`` (``colsp`` section).
2. A ``.colsp.toml`` project config file in the workspace root.
3. The command line (``--api-url``, ``--debounce``).
4. Built-in defaults.

Client keys are camelCase (``apiUrl``, ``debounce``, ``logLevel``); the
project file uses snake_case (``api_url``, ``debounce``, ``log_level``).
"""
from __future__ import annotations

import logging
import tomllib
from dataclasses import dataclass
from pathlib import Path

from colsp.pipeline import DEFAULT_DEBOUNCE
from colsp.registry import DEFAULT_API_URL

logger = logging.getLogger(__name__)

PROJECT_CONFIG = '.colsp.toml'

_CLIENT_KEYS = {'apiUrl': 'api_url', 'debounce': 'debounce', 'logLevel': 'log_level'}


@dataclass(frozen=True)
class Settings:
    api_url: str = DEFAULT_API_URL
    debounce: float = DEFAULT_DEBOUNCE
    log_level: str | None = None


def _read_project_config(workspace_root: str | None) -> dict:
    """Parse ``.colsp.toml`` in *workspace_root*; empty dict if absent or broken."""
    if not workspace_root:
        return {}
    config_path = Path(workspace_root) / PROJECT_CONFIG
    if not config_path.exists():
        return {}
    try:
        data = tomllib.loads(config_path.read_text(encoding='utf-8'))
    except (OSError, tomllib.TOMLDecodeError) as e:
        logger.warning('ignoring %s: %s', config_path, e)
        return {}
    return {k: data[k] for k in ('api_url', 'debounce', 'log_level') if k in data}


def _from_client(options) -> dict:
    """Extract known settings from a client options object or dict."""
    if options is None:
        return {}
    if isinstance(options, dict):
        options = options.get('colsp', options)
        get = options.get
    else:
        def get(key, default=None):
            return getattr(options, key, default)
    found = {}
    for client_key, name in _CLIENT_KEYS.items():
        value = get(client_key, None)
        if value is not None:
            found[name] = value
    return found


def _coerce(values: dict) -> dict:
    out = {}
    if values.get('api_url'):
        out['api_url'] = str(values['api_url'])
    if 'debounce' in values:
        try:
            out['debounce'] = max(0.0, float(values['debounce']))
        except (TypeError, ValueError):
            logger.warning('ignoring invalid debounce %r', values['debounce'])
    if values.get('log_level'):
        out['log_level'] = str(values['log_level'])
    return out


class SettingsResolver:
    """Merges the configuration sources into one :class:`Settings`."""

    def __init__(self, workspace_root: str | None = None, cli_api_url: str | None = None,
                 cli_debounce: float | None = None):
        self._workspace_root = workspace_root
        self._cli_api_url = cli_api_url
        self._cli_debounce = cli_debounce
        self._client: dict = {}

    @property
    def cli_api_url(self) -> str | None:
        return self._cli_api_url

    @property
    def cli_debounce(self) -> float | None:
        return self._cli_debounce

    @property
    def workspace_root(self) -> str | None:
        return self._workspace_root

    def set_client_options(self, options) -> None:
        """Replace the client-provided settings (``None`` clears them)."""
        self._client = _coerce(_from_client(options))

    def update_client_options(self, options) -> None:
        """Merge client settings on top of the ones already known."""
        self._client = {**self._client, **_coerce(_from_client(options))}

    def resolve(self) -> Settings:
        values: dict = {}
        if self._cli_api_url:
            values['api_url'] = self._cli_api_url
        if self._cli_debounce is not None:
            values['debounce'] = max(0.0, self._cli_debounce)
        values.update(_coerce(_read_project_config(self._workspace_root)))
        values.update(self._client)
        return Settings(**values)
