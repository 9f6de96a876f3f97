"""
Debounced, cancellable validation of a whole configuration document.

A run moves through ``DEBOUNCING -> PARSING -> (PARSE_FAILED | VALIDATING)
-> MERGING -> COMPLETE``.  Structural validators run synchronously; then every
declared component is checked concurrently against the remote validator and
its schema.  Each run takes a generation number when it starts and only the
newest generation may publish: older runs end as ``SUPERSEDED`` and their
diagnostics are dropped, whatever order they finish in.
"""
from __future__ import annotations

import asyncio
import enum
import logging
import re
from dataclasses import dataclass, field
from typing import Any, Callable, Protocol, Sequence

from colsp.document import (
    ComponentKind, Diagnostic, Severity, component_type, iter_components, parse_document,
)
from colsp.positions import Position, find_position, find_text, first_of, make_diagnostic
from colsp.schemas import SchemaCache, unknown_keys
from colsp.validators import DEFAULT_VALIDATORS, Validator, merge_diagnostics, run_structural

logger = logging.getLogger(__name__)

DEFAULT_DEBOUNCE = 0.5

# Message shapes produced by the remote validator.
_FIELD_PREFIX_RE = re.compile(r'^(?P<field>\(root\)|[\w./\[\]-]+):\s')
_ADDITIONAL_RE = re.compile(r'Additional property (?P<field>\S+) is not allowed')
_REQUIRED_RE = re.compile(r'\b[\w./-]+ is required\b')
_QUOTED_RE = re.compile(r'[\'"`](?P<field>[\w./-]+)[\'"`]')


class RemoteValidator(Protocol):
    async def validate(self, kind: str, name: str, config: Any) -> dict[str, Any]: ...


class RunState(str, enum.Enum):
    IDLE = 'idle'
    DEBOUNCING = 'debouncing'
    PARSING = 'parsing'
    PARSE_FAILED = 'parse-failed'
    VALIDATING = 'validating'
    MERGING = 'merging'
    COMPLETE = 'complete'
    SUPERSEDED = 'superseded'


@dataclass
class ValidationResult:
    generation: int
    state: RunState
    diagnostics: list[Diagnostic] = field(default_factory=list)

    @property
    def valid(self) -> bool:
        return not any(d.severity == Severity.ERROR for d in self.diagnostics)


def _split_field(raw: str) -> list[str]:
    """``protocols.grpc.0`` -> ``['protocols', 'grpc']`` (sequence indices dropped)."""
    parts = re.split(r'[.\[\]]+', raw)
    return [p for p in parts if p and not p.isdigit()]


def extract_field(message: str) -> list[str]:
    """Best guess at the config key path a remote error message is about.

    Returns an empty list when the message names no field.  For "X is
    required" the missing key cannot be located, so its parent is returned.
    """
    prefix: list[str] = []
    rest = message
    m = _FIELD_PREFIX_RE.match(message)
    if m:
        rest = message[m.end():]
        if m.group('field') != '(root)':
            prefix = _split_field(m.group('field'))
    m = _ADDITIONAL_RE.search(rest)
    if m:
        return prefix + [m.group('field')]
    if _REQUIRED_RE.search(rest) or prefix:
        return prefix
    m = _QUOTED_RE.search(rest)
    if m:
        return _split_field(m.group('field'))
    return []


def _at(message: str, severity: Severity, pos: Position | None,
        path: Sequence[str]) -> Diagnostic:
    if pos is None:
        return Diagnostic(message=message, severity=severity, line=1, column=1,
                          path=tuple(path))
    return Diagnostic(
        message=message, severity=severity,
        line=pos.line, column=pos.column,
        end_line=pos.end_line, end_column=pos.end_column,
        path=tuple(path),
    )


class ValidationPipeline:
    """Validation runs for one document, publishing to *publish*."""

    def __init__(self, cache: SchemaCache, remote: RemoteValidator | None,
                 publish: Callable[[list[Diagnostic]], None], *,
                 validators: Sequence[Validator] = DEFAULT_VALIDATORS,
                 debounce: float = DEFAULT_DEBOUNCE):
        self.cache = cache
        self.remote = remote
        self.publish = publish
        self.validators = validators
        self.debounce = debounce
        self.state = RunState.IDLE
        self._generation = 0
        self._task: asyncio.Task | None = None

    @property
    def generation(self) -> int:
        return self._generation

    def is_current(self, generation: int) -> bool:
        return generation == self._generation

    # ------------------------------------------------------------------
    # Scheduling
    # ------------------------------------------------------------------

    def schedule(self, source: str, delay: float | None = None) -> asyncio.Task:
        """Cancel any pending run and start a new debounced one."""
        self.cancel()
        task = asyncio.ensure_future(self.run_validation(source, delay=delay))
        self._task = task
        task.add_done_callback(self._task_done)
        return task

    def cancel(self) -> None:
        """Cancel the scheduled run; anything still in flight becomes stale."""
        task, self._task = self._task, None
        if task is not None and not task.done():
            task.cancel()
        self._generation += 1

    def _task_done(self, task: asyncio.Task) -> None:
        if self._task is task:
            self._task = None
        if not task.cancelled() and task.exception() is not None:
            logger.error('validation run failed', exc_info=task.exception())

    # ------------------------------------------------------------------
    # A single run
    # ------------------------------------------------------------------

    def _enter(self, generation: int, state: RunState) -> bool:
        if not self.is_current(generation):
            return False
        self.state = state
        return True

    def _finish(self, generation: int, state: RunState,
                diags: list[Diagnostic]) -> ValidationResult:
        if not self.is_current(generation):
            logger.debug('validation run %d superseded, dropping %d diagnostics',
                         generation, len(diags))
            return ValidationResult(generation, RunState.SUPERSEDED)
        self.state = state
        self.publish(diags)
        return ValidationResult(generation, state, diags)

    async def run_validation(self, source: str, *, delay: float | None = None) -> ValidationResult:
        self._generation += 1
        generation = self._generation
        delay = self.debounce if delay is None else delay

        if delay > 0:
            self._enter(generation, RunState.DEBOUNCING)
            await asyncio.sleep(delay)

        if not self._enter(generation, RunState.PARSING):
            return ValidationResult(generation, RunState.SUPERSEDED)
        if not source.strip():
            return self._finish(generation, RunState.COMPLETE, [])

        doc = parse_document(source)
        if not doc.ok:
            err = doc.errors[0]
            return self._finish(generation, RunState.PARSE_FAILED, [
                Diagnostic(message=err.message, severity=Severity.ERROR,
                           line=err.line, column=err.column),
            ])

        structural = run_structural(source, doc.tree, self.validators)

        if not self._enter(generation, RunState.VALIDATING):
            return ValidationResult(generation, RunState.SUPERSEDED)
        components = list(iter_components(doc.tree))
        results = await asyncio.gather(
            *(self._check_component(source, kind, name, config)
              for kind, name, config in components),
            return_exceptions=True,
        )
        schema_diags: list[Diagnostic] = []
        for (kind, name, _), result in zip(components, results):
            if isinstance(result, BaseException):
                logger.warning('schema check for %s/%s failed', kind.section, name,
                               exc_info=result)
                continue
            schema_diags.extend(result)

        if not self._enter(generation, RunState.MERGING):
            return ValidationResult(generation, RunState.SUPERSEDED)
        diags = merge_diagnostics(structural, schema_diags)
        logger.debug('validation run %d: %d structural + %d schema -> %d diagnostics',
                     generation, len(structural), len(schema_diags), len(diags))
        return self._finish(generation, RunState.COMPLETE, diags)

    # ------------------------------------------------------------------
    # Per-component schema check
    # ------------------------------------------------------------------

    async def _check_component(self, source: str, kind: ComponentKind,
                               name: str, config) -> list[Diagnostic]:
        base = [kind.section, name]
        if self.remote is not None:
            try:
                result = await self.remote.validate(kind.value, component_type(name), config)
            except Exception as e:
                logger.warning('Remote validation failed for %s/%s: %s', kind.section, name, e)
                return []
        else:
            result = {'valid': True}

        errors = [str(e) for e in result.get('errors') or []]
        diags = [
            self._message_diagnostic(source, base, kind, name, str(w), Severity.WARNING)
            for w in result.get('warnings') or []
        ]
        if not result.get('valid', not errors):
            if not errors:
                errors = ['configuration is invalid']
            diags.extend(
                self._message_diagnostic(source, base, kind, name, msg, Severity.ERROR)
                for msg in errors
            )
            return diags
        if errors:
            logger.debug('ignoring %d errors reported for valid %s/%s: %s',
                         len(errors), kind.section, name, errors)

        schema = await self.cache.get_component_schema(kind.section, name)
        if schema is None:
            logger.debug('no schema for %s/%s, skipping unknown-key check', kind.section, name)
            return diags
        for key_path in unknown_keys(schema, config):
            diags.append(make_diagnostic(
                f"Unknown property '{key_path[-1]}' for {kind.value} '{name}'",
                source, base + list(key_path),
            ))
        return diags

    def _message_diagnostic(self, source: str, base: list[str], kind: ComponentKind,
                            name: str, message: str, severity: Severity) -> Diagnostic:
        fields = extract_field(message)
        path = base + fields
        # The block scan goes before the component key, which always matches.
        pos = first_of(
            lambda: find_position(source, path) if fields else None,
            lambda: find_text(source, base, fields[-1]) if fields else None,
            lambda: find_position(source, base),
        )
        return _at(f"{kind.value} '{name}': {message}", severity, pos, path)
