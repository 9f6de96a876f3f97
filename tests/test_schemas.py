"""Tests for colsp.schemas — schema cache and schema-tree helpers."""
from __future__ import annotations

import asyncio
import logging

from colsp.schemas import (
    SERVICE_SCHEMA, SchemaCache, allows_additional, collect_properties,
    collect_required, insert_text, property_detail, resolve_node, schema_at,
    unknown_keys,
)

OTLP_SCHEMA = {
    'type': 'object',
    'properties': {
        'protocols': {
            'type': 'object',
            'properties': {
                'grpc': {
                    'type': 'object',
                    'properties': {
                        'endpoint': {'type': 'string', 'default': '0.0.0.0:4317'},
                    },
                },
                'http': {'type': 'object', 'properties': {'endpoint': {'type': 'string'}}},
            },
            'additionalProperties': False,
        },
    },
    'additionalProperties': False,
}


class FakeProvider:
    """Records calls; optionally fails or blocks on chosen component types."""

    def __init__(self, schemas=None, fail=(), catalog=None, gate=None):
        self.schemas = schemas or {}
        self.fail = set(fail)
        self.catalog = catalog or []
        self.gate = gate
        self.calls: list[tuple[str, str]] = []
        self.catalog_calls = 0

    async def fetch_schema(self, kind, name):
        self.calls.append((kind, name))
        if self.gate is not None:
            await self.gate.wait()
        if name in self.fail:
            raise ConnectionError(f'{name} unreachable')
        return self.schemas.get(name, {'type': 'object'})

    async def fetch_all_components(self):
        self.catalog_calls += 1
        if self.catalog is None:
            raise ConnectionError('catalog unreachable')
        return self.catalog


class TestSchemaCache:
    def test_fetch_is_memoized_by_section_and_type(self):
        provider = FakeProvider({'otlp': OTLP_SCHEMA})
        cache = SchemaCache(provider)

        async def go():
            a = await cache.get_component_schema('receivers', 'otlp')
            b = await cache.get_component_schema('receivers', 'otlp/secondary')
            return a, b

        a, b = asyncio.run(go())
        assert a is OTLP_SCHEMA and b is OTLP_SCHEMA
        assert provider.calls == [('receiver', 'otlp')]
        assert cache.cached('receivers', 'otlp') is OTLP_SCHEMA

    def test_same_type_in_different_sections_is_separate(self):
        provider = FakeProvider()
        cache = SchemaCache(provider)

        async def go():
            await cache.get_component_schema('receivers', 'kafka')
            await cache.get_component_schema('exporters', 'kafka')

        asyncio.run(go())
        assert provider.calls == [('receiver', 'kafka'), ('exporter', 'kafka')]

    def test_unmappable_section_makes_no_call(self):
        provider = FakeProvider()
        cache = SchemaCache(provider)
        assert asyncio.run(cache.get_component_schema('service', 'pipelines')) is None
        assert asyncio.run(cache.get_component_schema('nonsense', 'x')) is None
        assert provider.calls == []

    def test_no_provider(self):
        cache = SchemaCache(None)
        assert asyncio.run(cache.get_component_schema('receivers', 'otlp')) is None
        assert asyncio.run(cache.component_names('receivers')) == []

    def test_failure_is_logged_once_and_not_cached(self, caplog):
        provider = FakeProvider(fail={'jaeger'})
        cache = SchemaCache(provider)
        with caplog.at_level(logging.WARNING, logger='colsp.schemas'):
            assert asyncio.run(cache.get_component_schema('receivers', 'jaeger')) is None
        warnings = [r for r in caplog.records if r.levelno == logging.WARNING]
        assert len(warnings) == 1
        assert 'jaeger' in warnings[0].getMessage()
        assert cache.cached('receivers', 'jaeger') is None

        provider.fail.clear()
        assert asyncio.run(cache.get_component_schema('receivers', 'jaeger')) is not None
        assert provider.calls == [('receiver', 'jaeger'), ('receiver', 'jaeger')]

    def test_concurrent_requests_share_one_fetch(self):
        async def go():
            provider = FakeProvider({'otlp': OTLP_SCHEMA}, gate=asyncio.Event())
            cache = SchemaCache(provider)
            waiters = [asyncio.ensure_future(cache.get_component_schema('receivers', 'otlp'))
                       for _ in range(3)]
            await asyncio.sleep(0)
            provider.gate.set()
            results = await asyncio.gather(*waiters)
            return provider, results

        provider, results = asyncio.run(go())
        assert provider.calls == [('receiver', 'otlp')]
        assert all(r is OTLP_SCHEMA for r in results)

    def test_clear_forces_refetch(self):
        provider = FakeProvider()
        cache = SchemaCache(provider)
        asyncio.run(cache.get_component_schema('processors', 'batch'))
        cache.clear()
        assert cache.cached('processors', 'batch') is None
        asyncio.run(cache.get_component_schema('processors', 'batch'))
        assert len(provider.calls) == 2

    def test_set_provider_clears(self):
        cache = SchemaCache(FakeProvider())
        asyncio.run(cache.get_component_schema('processors', 'batch'))
        other = FakeProvider()
        cache.set_provider(other)
        assert cache.provider is other
        assert cache.cached('processors', 'batch') is None

    def test_provider_switch_discards_in_flight_results(self):
        class Registry:
            def __init__(self, tag, gate):
                self.tag = tag
                self.gate = gate
                self.schema_calls = 0

            async def fetch_schema(self, kind, name):
                self.schema_calls += 1
                await self.gate.wait()
                return {self.tag: True}

            async def fetch_all_components(self):
                await self.gate.wait()
                return [{'type': 'receiver', 'name': self.tag}]

        async def go():
            old = Registry('old', asyncio.Event())
            cache = SchemaCache(old)
            pending = [asyncio.ensure_future(cache.get_component_schema('receivers', 'otlp')),
                       asyncio.ensure_future(cache.component_names('receivers'))]
            for _ in range(3):
                await asyncio.sleep(0)
            assert old.schema_calls == 1

            new_gate = asyncio.Event()
            new_gate.set()
            new = Registry('new', new_gate)
            cache.set_provider(new)
            old.gate.set()
            await asyncio.gather(*pending)

            assert cache.cached('receivers', 'otlp') is None
            schema = await cache.get_component_schema('receivers', 'otlp')
            names = await cache.component_names('receivers')
            return new, schema, names, cache

        new, schema, names, cache = asyncio.run(go())
        assert schema == {'new': True}
        assert names == ['new']
        assert new.schema_calls == 1
        assert cache.cached('receivers', 'otlp') == {'new': True}

    def test_clear_during_fetch_does_not_resurrect_schema(self):
        async def go():
            provider = FakeProvider({'otlp': OTLP_SCHEMA}, gate=asyncio.Event())
            cache = SchemaCache(provider)
            pending = asyncio.ensure_future(cache.get_component_schema('receivers', 'otlp'))
            for _ in range(3):
                await asyncio.sleep(0)
            cache.clear()
            provider.gate.set()
            await pending
            return cache

        assert asyncio.run(go()).cached('receivers', 'otlp') is None

    def test_component_names_groups_catalog(self):
        provider = FakeProvider(catalog=[
            {'type': 'receiver', 'name': 'otlp'},
            {'type': 'receiver', 'name': 'jaeger'},
            {'type': 'exporter', 'name': 'debug'},
            {'kind': 'processor', 'name': 'batch'},
        ])
        cache = SchemaCache(provider)

        async def go():
            return (await cache.component_names('receivers'),
                    await cache.component_names('processors'),
                    await cache.component_names('connectors'),
                    await cache.component_names('service'))

        receivers, processors, connectors, service = asyncio.run(go())
        assert receivers == ['jaeger', 'otlp']
        assert processors == ['batch']
        assert connectors == []
        assert service == []
        assert provider.catalog_calls == 1

    def test_component_names_failure(self, caplog):
        provider = FakeProvider()
        provider.catalog = None
        cache = SchemaCache(provider)
        with caplog.at_level(logging.WARNING, logger='colsp.schemas'):
            assert asyncio.run(cache.component_names('receivers')) == []
        assert 'catalog' in caplog.text


class TestSchemaHelpers:
    def test_collect_properties_merges_branches(self):
        node = {
            'properties': {'a': {'type': 'string'}},
            'oneOf': [
                {'properties': {'b': {'type': 'integer'}}},
                {'properties': {'c': {'type': 'boolean'}, 'a': {'type': 'integer'}}},
            ],
            'allOf': [{'properties': {'d': {}}}],
        }
        props = collect_properties(node)
        assert set(props) == {'a', 'b', 'c', 'd'}
        assert props['a'] == {'type': 'string'}

    def test_collect_required_follows_all_of(self):
        node = {'required': ['a'], 'allOf': [{'required': ['b']}],
                'oneOf': [{'required': ['c']}]}
        assert collect_required(node) == {'a', 'b'}

    def test_allows_additional(self):
        assert allows_additional({'type': 'object'})
        assert allows_additional({'properties': {'a': {}}, 'additionalProperties': True})
        assert allows_additional({'properties': {'a': {}}, 'additionalProperties': {}})
        assert not allows_additional({'properties': {'a': {}}})
        assert not allows_additional({'additionalProperties': False})

    def test_resolve_node(self):
        node = resolve_node(OTLP_SCHEMA, ['protocols', 'grpc'])
        assert 'endpoint' in node['properties']
        assert resolve_node(OTLP_SCHEMA, []) is OTLP_SCHEMA
        assert resolve_node(OTLP_SCHEMA, ['protocols', 'thrift']) is None

    def test_resolve_node_through_items_and_wildcard(self):
        schema = {
            'properties': {
                'targets': {'type': 'array', 'items': {
                    'type': 'object', 'properties': {'url': {'type': 'string'}}}},
                'headers': {'type': 'object', 'additionalProperties': {'type': 'string'}},
            },
        }
        assert resolve_node(schema, ['targets', 'url']) == {'type': 'string'}
        assert resolve_node(schema, ['headers', 'X-Anything']) == {'type': 'string'}

    def test_service_schema_pipelines(self):
        node = resolve_node(SERVICE_SCHEMA, ['pipelines', 'traces'])
        assert set(node['properties']) == {'receivers', 'processors', 'exporters'}

    def test_schema_at_service_uses_builtin(self):
        provider = FakeProvider()
        cache = SchemaCache(provider)
        node = asyncio.run(schema_at('service', 'telemetry', ['logs'], cache))
        assert 'level' in node['properties']
        assert provider.calls == []

    def test_schema_at_component(self):
        cache = SchemaCache(FakeProvider({'otlp': OTLP_SCHEMA}))
        node = asyncio.run(schema_at('receivers', 'otlp', ['protocols'], cache))
        assert set(node['properties']) == {'grpc', 'http'}
        assert asyncio.run(schema_at('receivers', None, [], cache)) is None

    def test_insert_text(self):
        assert insert_text('tls', {'type': 'object'}) == 'tls:\n  '
        assert insert_text('hosts', {'type': 'array'}) == 'hosts:\n  - '
        assert insert_text('insecure', {'type': 'boolean'}) == 'insecure: false'
        assert insert_text('port', {'type': 'integer'}) == 'port: 0'
        assert insert_text('mode', {'type': 'string', 'enum': ['a', 'b']}) == 'mode: a'
        assert insert_text('endpoint', {'type': 'string'}) == 'endpoint: ""'
        assert insert_text('anything', {}) == 'anything: '
        assert insert_text('ratio', {'type': ['number', 'null']}) == 'ratio: 0'

    def test_property_detail(self):
        assert property_detail({'type': 'string'}) == 'string'
        assert property_detail({'type': 'integer', 'default': 5}) == 'integer (default: 5)'
        assert property_detail({'type': 'string', 'enum': ['a', 'b', 'c', 'd']}) == \
            'string (enum: a, b, c...)'
        assert property_detail({}) == 'any'

    def test_unknown_keys(self):
        config = {'protocols': {'grpc': {'endpoint': 'x'}, 'thrift': {}}, 'bogus': 1}
        assert unknown_keys(OTLP_SCHEMA, config) == [('protocols', 'thrift'), ('bogus',)]

    def test_unknown_keys_accepts_one_of_branch_keys(self):
        node = {
            'properties': {'mode': {'type': 'string'}},
            'oneOf': [{'properties': {'path': {}}}, {'properties': {'url': {}}}],
            'additionalProperties': False,
        }
        assert unknown_keys(node, {'mode': 'x', 'url': 'y'}) == []
        assert unknown_keys(node, {'nope': 1}) == [('nope',)]

    def test_unknown_keys_open_schema(self):
        assert unknown_keys({'type': 'object'}, {'whatever': 1}) == []
        assert unknown_keys(OTLP_SCHEMA, None) == []
