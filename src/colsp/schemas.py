"""
Component schemas.

:class:`SchemaCache` fetches JSON-Schema-like component schemas on demand from
a schema provider and memoizes them for the session, keyed by
``"<section>.<type>"``.  Concurrent requests for the same key share a single
in-flight fetch.  Failures are logged once and reported to callers as
``None`` ("schema unknown"); they are not cached, so a later request retries.

The remaining helpers navigate and describe schema nodes for the completion
and hover handlers and the validation pipeline.
"""
from __future__ import annotations

import asyncio
import json
import logging
from typing import Any, Protocol

from colsp.document import SERVICE_SECTION, ComponentKind, component_type

logger = logging.getLogger(__name__)

Schema = dict[str, Any]


class SchemaProvider(Protocol):
    async def fetch_schema(self, kind: str, name: str) -> Schema: ...

    async def fetch_all_components(self) -> list[dict[str, str]]: ...


# Built-in schema for the ``service`` section; it is not a component kind so
# the registry has nothing to say about it.
SERVICE_SCHEMA: Schema = {
    'type': 'object',
    'description': 'Service configuration defines pipelines and telemetry settings',
    'properties': {
        'extensions': {
            'type': 'array',
            'description': 'Extensions to enable',
            'items': {'type': 'string'},
        },
        'pipelines': {
            'type': 'object',
            'description': 'Telemetry pipelines configuration',
            'additionalProperties': {
                'type': 'object',
                'properties': {
                    'receivers': {
                        'type': 'array',
                        'description': 'List of receivers for this pipeline',
                        'items': {'type': 'string'},
                    },
                    'processors': {
                        'type': 'array',
                        'description': 'List of processors for this pipeline',
                        'items': {'type': 'string'},
                    },
                    'exporters': {
                        'type': 'array',
                        'description': 'List of exporters for this pipeline',
                        'items': {'type': 'string'},
                    },
                },
                'required': ['receivers', 'exporters'],
            },
        },
        'telemetry': {
            'type': 'object',
            'description': "Collector's own telemetry configuration",
            'properties': {
                'logs': {
                    'type': 'object',
                    'properties': {
                        'level': {
                            'type': 'string',
                            'enum': ['debug', 'info', 'warn', 'error'],
                            'default': 'info',
                        },
                        'encoding': {
                            'type': 'string',
                            'enum': ['console', 'json'],
                            'default': 'console',
                        },
                    },
                },
                'metrics': {
                    'type': 'object',
                    'properties': {
                        'level': {
                            'type': 'string',
                            'enum': ['none', 'basic', 'normal', 'detailed'],
                            'default': 'basic',
                        },
                        'address': {
                            'type': 'string',
                            'description': 'Address to expose metrics on',
                        },
                    },
                },
            },
        },
    },
}


class SchemaCache:
    """Session-lived, explicitly clearable cache of component schemas."""

    def __init__(self, provider: SchemaProvider | None):
        self._provider = provider
        self._schemas: dict[str, Schema] = {}
        self._inflight: dict[str, asyncio.Task] = {}
        self._catalog: dict[str, list[str]] | None = None
        self._catalog_task: asyncio.Task | None = None
        # Bumped by clear(); fetches started in an older epoch never store.
        self._epoch = 0

    @property
    def provider(self) -> SchemaProvider | None:
        return self._provider

    def set_provider(self, provider: SchemaProvider | None) -> None:
        self._provider = provider
        self.clear()

    def clear(self) -> None:
        self._epoch += 1
        self._schemas.clear()
        self._inflight.clear()
        self._catalog = None
        self._catalog_task = None

    def cached(self, section: str, name: str) -> Schema | None:
        return self._schemas.get(f'{section}.{component_type(name)}')

    async def get_component_schema(self, section: str, name: str) -> Schema | None:
        """Return the schema for component *name* under *section*, or None."""
        kind = ComponentKind.from_section(section)
        if kind is None or self._provider is None:
            return None
        type_name = component_type(name)
        key = f'{section}.{type_name}'
        schema = self._schemas.get(key)
        if schema is not None:
            return schema

        task = self._inflight.get(key)
        if task is None:
            task = asyncio.ensure_future(self._fetch(key, kind, type_name, self._epoch))
            self._inflight[key] = task
            task.add_done_callback(lambda t, key=key: self._forget(key, t))
        # One waiter being cancelled must not cancel the shared fetch.
        return await asyncio.shield(task)

    def _forget(self, key: str, task: asyncio.Task) -> None:
        if self._inflight.get(key) is task:
            del self._inflight[key]

    async def _fetch(self, key: str, kind: ComponentKind, name: str,
                     epoch: int) -> Schema | None:
        provider = self._provider
        try:
            schema = await provider.fetch_schema(kind.value, name)
        except Exception as e:
            logger.warning('Failed to fetch schema for %s/%s: %s', kind.section, name, e)
            return None
        if not isinstance(schema, dict):
            logger.warning('Schema for %s/%s is not an object', kind.section, name)
            return None
        if epoch == self._epoch:
            self._schemas[key] = schema
        else:
            logger.debug('dropping schema for %s/%s fetched before the cache was cleared',
                         kind.section, name)
        return schema

    async def component_names(self, section: str) -> list[str]:
        """Names the registry knows for the kind held by *section*."""
        kind = ComponentKind.from_section(section)
        if kind is None:
            return []
        if self._catalog is None:
            if self._provider is None:
                return []
            if self._catalog_task is None:
                self._catalog_task = asyncio.ensure_future(self._fetch_catalog())
            task, epoch = self._catalog_task, self._epoch
            catalog = await asyncio.shield(task)
            if self._catalog_task is task:
                self._catalog_task = None
            if catalog is None:
                return []
            if epoch != self._epoch:
                return list(catalog.get(kind.value, []))
            self._catalog = catalog
        return list(self._catalog.get(kind.value, []))

    async def _fetch_catalog(self) -> dict[str, list[str]] | None:
        provider = self._provider
        try:
            components = await provider.fetch_all_components()
        except Exception as e:
            logger.warning('Failed to fetch component catalog: %s', e)
            return None
        catalog: dict[str, list[str]] = {}
        for entry in components or []:
            kind, name = entry.get('type') or entry.get('kind'), entry.get('name')
            if kind and name:
                catalog.setdefault(kind, []).append(name)
        for names in catalog.values():
            names.sort()
        return catalog


# ---------------------------------------------------------------------------
# Schema-tree helpers
# ---------------------------------------------------------------------------

def _branches(node: Schema):
    for combinator in ('allOf', 'anyOf', 'oneOf'):
        for branch in node.get(combinator) or []:
            if isinstance(branch, dict):
                yield branch


def collect_properties(node: Schema) -> dict[str, Schema]:
    """Properties of *node* merged with those of its allOf/anyOf/oneOf branches.

    Properties declared directly on *node* win over branch declarations.
    """
    props: dict[str, Schema] = {}
    for branch in _branches(node):
        for name, sub in collect_properties(branch).items():
            props.setdefault(name, sub)
    for name, sub in (node.get('properties') or {}).items():
        props[name] = sub if isinstance(sub, dict) else {}
    return props


def collect_required(node: Schema) -> set[str]:
    required = set(node.get('required') or [])
    for branch in node.get('allOf') or []:
        if isinstance(branch, dict):
            required |= collect_required(branch)
    return required


def known_keys(node: Schema) -> set[str]:
    return set(collect_properties(node))


def allows_additional(node: Schema) -> bool:
    """True when *node* declares no closed property set."""
    extra = node.get('additionalProperties')
    if extra is False:
        return False
    if extra is True or isinstance(extra, dict):
        return True
    return not known_keys(node)


def _child(node: Schema, key: str) -> Schema | None:
    if 'properties' not in node and isinstance(node.get('items'), dict):
        node = node['items']
    sub = collect_properties(node).get(key)
    if sub is not None:
        return sub
    extra = node.get('additionalProperties')
    if isinstance(extra, dict):
        return extra
    return None


def resolve_node(schema: Schema, path: list[str]) -> Schema | None:
    """Follow *path* through nested ``properties``; None if a step is unknown."""
    node = schema
    for key in path:
        node = _child(node, key)
        if node is None:
            return None
    return node


async def schema_at(section: str | None, component: str | None,
                    path: list[str], cache: SchemaCache) -> Schema | None:
    """Return the schema node whose properties apply at *path*, or None.

    Inside ``service`` the built-in schema is used and *component* is just the
    first step of the path; component sections go through *cache*.
    """
    if not section or not component:
        return None
    if section == SERVICE_SECTION:
        return resolve_node(SERVICE_SCHEMA, [component, *path])
    schema = await cache.get_component_schema(section, component)
    if schema is None:
        return None
    return resolve_node(schema, path)


def type_label(node: Schema) -> str:
    t = node.get('type')
    if isinstance(t, list):
        return ' | '.join(str(x) for x in t)
    return t or 'any'


def insert_text(name: str, node: Schema) -> str:
    """YAML snippet inserted when completing property *name*."""
    t = node.get('type')
    if isinstance(t, list):
        t = t[0] if t else None
    if t == 'object':
        return f'{name}:\n  '
    if t == 'array':
        return f'{name}:\n  - '
    if t == 'boolean':
        return f'{name}: false'
    if t in ('number', 'integer'):
        return f'{name}: 0'
    if t == 'string':
        if node.get('enum'):
            return f'{name}: {node["enum"][0]}'
        return f'{name}: ""'
    return f'{name}: '


def property_detail(node: Schema) -> str:
    """Short type summary shown next to a completion item."""
    label = type_label(node)
    enum_values = node.get('enum')
    if enum_values:
        shown = ', '.join(str(v) for v in enum_values[:3])
        more = '...' if len(enum_values) > 3 else ''
        return f'{label} (enum: {shown}{more})'
    if 'default' in node:
        return f'{label} (default: {json.dumps(node["default"])})'
    return label


def unknown_keys(node: Schema, config, prefix: tuple[str, ...] = ()) -> list[tuple[str, ...]]:
    """Key paths in *config* that *node* (and its nested schemas) do not declare.

    Keys of oneOf/anyOf/allOf branches count as declared.  Open schemas
    (``additionalProperties`` set, or no properties at all) accept anything.
    """
    if not isinstance(config, dict) or allows_additional(node):
        return []
    props = collect_properties(node)
    found: list[tuple[str, ...]] = []
    for key, value in config.items():
        key = str(key)
        sub = props.get(key)
        if sub is None:
            found.append(prefix + (key,))
        elif isinstance(value, dict):
            found.extend(unknown_keys(sub, value, prefix + (key,)))
    return found
