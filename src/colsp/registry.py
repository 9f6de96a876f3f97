"""
HTTP client for the component schema registry.

One :class:`RegistryClient` serves both external collaborators the engine
consumes: the schema provider (component catalog and per-component schemas)
and the remote validator.  Transport errors and non-2xx responses surface as
``httpx.HTTPError`` subclasses; callers decide how to degrade.
"""
from __future__ import annotations

import logging
from typing import Any

import httpx

logger = logging.getLogger(__name__)

DEFAULT_API_URL = 'http://localhost:8080/api/v1'
DEFAULT_TIMEOUT = 10.0


class RegistryClient:
    def __init__(self, api_url: str = DEFAULT_API_URL, *,
                 timeout: float = DEFAULT_TIMEOUT,
                 transport: httpx.AsyncBaseTransport | None = None):
        self.api_url = api_url.rstrip('/')
        self._client = httpx.AsyncClient(
            base_url=self.api_url,
            timeout=timeout,
            headers={'Accept': 'application/json'},
            transport=transport,
        )

    async def aclose(self) -> None:
        await self._client.aclose()

    async def _get(self, url: str, params: dict[str, str] | None = None) -> Any:
        resp = await self._client.get(url, params=params)
        resp.raise_for_status()
        return resp.json()

    async def fetch_all_components(self, kind: str | None = None) -> list[dict[str, str]]:
        """List ``{type, name, description?}`` for every registry component."""
        data = await self._get('/schemas/components', {'type': kind} if kind else None)
        components = data.get('components', []) if isinstance(data, dict) else []
        logger.debug('registry lists %d components', len(components))
        return components

    async def fetch_schema(self, kind: str, name: str) -> dict[str, Any]:
        return await self._get(f'/schemas/components/{kind}/{name}')

    async def validate(self, kind: str, name: str, config: Any) -> dict[str, Any]:
        """Validate *config* for component ``kind/name``.

        Returns ``{valid: bool, errors?: [str], warnings?: [str]}``.
        """
        resp = await self._client.post(
            '/schemas/validate',
            json={'type': kind, 'name': name, 'config': config if config is not None else {}},
        )
        resp.raise_for_status()
        return resp.json()
