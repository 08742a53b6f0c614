"""Per-call analysis context.

An :class:`AnalysisContext` describes what the expression may reference
(available resources, optional schema shape) and collects what the
conversion actually touched. The collecting half (``dependencies`` and
``warnings``) is scoped to one top-level conversion: the analyzer always
works on :meth:`AnalysisContext.fresh` copies, so a caller's context is never
mutated and never shared between calls.
"""

from __future__ import annotations

from collections.abc import Iterable, Mapping
from dataclasses import dataclass, field, replace
from enum import Enum
from typing import TYPE_CHECKING, Any

from kubecel.expressions.errors import ConversionWarning
from kubecel.expressions.markers import DependencyMarker

if TYPE_CHECKING:
    from kubecel.expressions.source_map import SourceMapBuilder

__all__ = [
    "ContextKind",
    "FactoryMode",
    "AnalysisContext",
]


class ContextKind(str, Enum):
    """Where the expression will be evaluated."""

    STATUS = "status"
    RESOURCE = "resource"
    CONDITION = "condition"
    READINESS = "readiness"


class FactoryMode(str, Enum):
    """Deployment strategy of the surrounding resource graph.

    ``DIRECT`` graphs resolve references locally, ``KRO`` graphs leave
    resolution to the cluster-side orchestrator.
    """

    DIRECT = "direct"
    KRO = "kro"


@dataclass(slots=True)
class AnalysisContext:
    """Inputs and accumulators for one conversion.

    Attributes:
        kind: Evaluation site of the expression.
        available_resources: Resource name to declared shape (shape may be None).
        schema_shape: Declared shape of the input schema, when known.
        factory_mode: Deployment strategy; part of the cache key.
        strict: Disable the pattern-based fallback, so unsupported syntax
            is always reported as an error.
        source_map: Builder receiving one mapping per conversion, if any.
        dependencies: Markers recorded during the conversion.
        warnings: Non-fatal diagnostics recorded during the conversion.
    """

    kind: ContextKind = ContextKind.STATUS
    available_resources: Mapping[str, Any] = field(default_factory=dict)
    schema_shape: Mapping[str, Any] | None = None
    factory_mode: FactoryMode = FactoryMode.KRO
    strict: bool = False
    source_map: SourceMapBuilder | None = None
    dependencies: list[DependencyMarker] = field(default_factory=list)
    warnings: list[ConversionWarning] = field(default_factory=list)

    @classmethod
    def for_resources(
        cls,
        names: Iterable[str],
        **kwargs: Any,
    ) -> AnalysisContext:
        """Shortcut for a context whose resources have no declared shape."""
        return cls(available_resources={name: None for name in names}, **kwargs)

    @property
    def resource_names(self) -> tuple[str, ...]:
        return tuple(sorted(self.available_resources))

    def has_resource(self, name: str) -> bool:
        return name in self.available_resources

    def fresh(self) -> AnalysisContext:
        """Copy with empty accumulators; inputs are shared, not copied."""
        return replace(self, dependencies=[], warnings=[])

    def record(self, marker: DependencyMarker) -> None:
        """Add ``marker`` to the accumulator unless an equal key is present."""
        if all(existing.key != marker.key for existing in self.dependencies):
            self.dependencies.append(marker)

    def warn(self, warning: ConversionWarning) -> None:
        if warning not in self.warnings:
            self.warnings.append(warning)

    def cache_fingerprint(self) -> dict[str, Any]:
        """The parts of the context that influence conversion output."""
        return {
            "kind": self.kind.value,
            "factory_mode": self.factory_mode.value,
            "strict": self.strict,
            "resources": list(self.resource_names),
        }
