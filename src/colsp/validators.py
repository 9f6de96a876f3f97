"""
Synchronous structural checks over a parsed collector configuration.

Each validator is independent and side-effect free: ``validate(source, tree)``
returns a list of :class:`~colsp.document.Diagnostic`.  Missing or oddly
shaped sections mean "nothing to check", never an error.
"""
from __future__ import annotations

import logging
import re
from typing import Iterable, Protocol, Sequence

from colsp.document import ComponentKind, Diagnostic, Severity, iter_components
from colsp.positions import make_diagnostic

logger = logging.getLogger(__name__)

_COMPONENT_NAME_RE = re.compile(r'^[a-zA-Z_][a-zA-Z0-9_/-]*$')

_SEVERITY_RANK = {Severity.ERROR: 0, Severity.WARNING: 1}


class Validator(Protocol):
    name: str

    def validate(self, source: str, tree) -> list[Diagnostic]: ...


def _mapping(value) -> dict:
    return value if isinstance(value, dict) else {}


def _names(value) -> list[str]:
    """Component references listed in a pipeline (list, or a lone scalar)."""
    if isinstance(value, list):
        return [str(v) for v in value if v is not None]
    if isinstance(value, (str, int, float)):
        return [str(value)]
    return []


def _pipelines(tree) -> dict:
    return _mapping(_mapping(_mapping(tree).get('service')).get('pipelines'))


class EmptyPipelineValidator:
    """Every pipeline needs at least one receiver and one exporter."""
    name = 'empty-pipeline'

    def validate(self, source: str, tree) -> list[Diagnostic]:
        diags: list[Diagnostic] = []
        for pipeline_name, pipeline in _pipelines(tree).items():
            pipeline_name = str(pipeline_name)
            pipeline = _mapping(pipeline)
            path = ['service', 'pipelines', pipeline_name]
            if not _names(pipeline.get('receivers')):
                diags.append(make_diagnostic(
                    f"Pipeline '{pipeline_name}' must have at least one receiver",
                    source, path, severity=Severity.WARNING,
                ))
            if not _names(pipeline.get('exporters')):
                diags.append(make_diagnostic(
                    f"Pipeline '{pipeline_name}' must have at least one exporter",
                    source, path, severity=Severity.WARNING,
                ))
        return diags


class PipelineReferenceValidator:
    """Components referenced by a pipeline must be declared."""
    name = 'pipeline-references'

    def validate(self, source: str, tree) -> list[Diagnostic]:
        pipelines = _pipelines(tree)
        if not pipelines:
            return []
        declared = {
            kind: {str(n) for n in _mapping(_mapping(tree).get(kind.section))}
            for kind in ComponentKind
        }
        connectors = declared[ComponentKind.CONNECTOR]
        usable = {
            'receivers': declared[ComponentKind.RECEIVER] | connectors,
            'processors': declared[ComponentKind.PROCESSOR],
            'exporters': declared[ComponentKind.EXPORTER] | connectors,
        }

        diags: list[Diagnostic] = []
        for pipeline_name, pipeline in pipelines.items():
            pipeline_name = str(pipeline_name)
            pipeline = _mapping(pipeline)
            for section, known in usable.items():
                label = section[:-1].capitalize()
                for ref in _names(pipeline.get(section)):
                    if ref in known:
                        continue
                    diags.append(make_diagnostic(
                        f"{label} '{ref}' is used in pipeline '{pipeline_name}' "
                        f"but not defined in {section} section",
                        source, ['service', 'pipelines', pipeline_name, section],
                        item=ref,
                    ))
        return diags


class ExtensionsValidator:
    """Extensions enabled in ``service.extensions`` must be declared."""
    name = 'extensions'

    def validate(self, source: str, tree) -> list[Diagnostic]:
        enabled = _names(_mapping(_mapping(tree).get('service')).get('extensions'))
        if not enabled:
            return []
        declared = {str(n) for n in _mapping(_mapping(tree).get('extensions'))}
        return [
            make_diagnostic(
                f"Extension '{ext}' is used in service but not defined in extensions section",
                source, ['service', 'extensions'], item=ext,
            )
            for ext in enabled if ext not in declared
        ]


class ComponentShapeValidator:
    """Component ids must be well formed and configs must be mappings."""
    name = 'component-shape'

    def validate(self, source: str, tree) -> list[Diagnostic]:
        diags: list[Diagnostic] = []
        for kind, name, config in iter_components(tree):
            path = [kind.section, name]
            if not _COMPONENT_NAME_RE.match(name):
                diags.append(make_diagnostic(
                    f"Invalid {kind.value} name '{name}': component names must start "
                    f"with a letter or underscore and contain only letters, digits, "
                    f"'_', '-' or '/'",
                    source, path, severity=Severity.WARNING,
                ))
            if isinstance(config, list):
                diags.append(make_diagnostic(
                    f"{kind.value.capitalize()} '{name}' has a list configuration "
                    f"(should be a mapping)",
                    source, path,
                ))
            elif config is not None and not isinstance(config, dict):
                diags.append(make_diagnostic(
                    f"{kind.value.capitalize()} '{name}' has invalid configuration type "
                    f"'{type(config).__name__}' (should be a mapping)",
                    source, path,
                ))
        return diags


DEFAULT_VALIDATORS: tuple[Validator, ...] = (
    PipelineReferenceValidator(),
    ExtensionsValidator(),
    EmptyPipelineValidator(),
    ComponentShapeValidator(),
)


def run_structural(source: str, tree,
                   validators: Sequence[Validator] = DEFAULT_VALIDATORS) -> list[Diagnostic]:
    """Run every validator and concatenate the results.

    A validator that crashes is logged and skipped.
    """
    diags: list[Diagnostic] = []
    for validator in validators:
        try:
            diags.extend(validator.validate(source, tree))
        except Exception:
            logger.warning('validator %s failed', validator.name, exc_info=True)
    return diags


def merge_diagnostics(*groups: Iterable[Diagnostic]) -> list[Diagnostic]:
    """Concatenate *groups*, collapsing duplicates by message, position and path.

    When duplicates differ only in severity the more severe one is kept, at
    the position of the first occurrence.
    """
    merged: dict[tuple, Diagnostic] = {}
    for group in groups:
        for diag in group:
            key = (diag.message, diag.line, diag.column, diag.path or ())
            kept = merged.get(key)
            if kept is None:
                merged[key] = diag
            elif _SEVERITY_RANK[diag.severity] < _SEVERITY_RANK[kept.severity]:
                merged[key] = diag
    return list(merged.values())
