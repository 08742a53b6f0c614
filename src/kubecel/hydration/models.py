"""Dataclass models for status-field hydration.

- HydrationFieldRecord: one status field with its dependencies and priority
- HydrationPlan: fields grouped into levels that can hydrate together
- ProcessedStatusBuilder: everything produced from one status-builder source
"""

from __future__ import annotations

from dataclasses import dataclass, field
from enum import Enum
from typing import Any

from kubecel.expressions.errors import ExpressionErrorInfo
from kubecel.expressions.markers import CelExpression, DependencyMarker
from kubecel.expressions.results import ConversionResult
from kubecel.expressions.source_map import SourceMapEntry

__all__ = [
    "FieldCategory",
    "HydrationFieldRecord",
    "HydrationPlan",
    "ProcessedStatusBuilder",
    "categorize",
]


class FieldCategory(str, Enum):
    """What a status field depends on."""

    SCHEMA_ONLY = "schema_only"
    RESOURCE = "resource"
    STATIC = "static"


def categorize(dependencies: tuple[DependencyMarker, ...]) -> FieldCategory:
    if not dependencies:
        return FieldCategory.STATIC
    if all(marker.is_schema for marker in dependencies):
        return FieldCategory.SCHEMA_ONLY
    return FieldCategory.RESOURCE


@dataclass(frozen=True, slots=True)
class HydrationFieldRecord:
    """A status field as seen by the scheduler.

    Attributes:
        field_name: Dotted status field name (e.g. ``endpoints.http``).
        dependencies: Markers the field's expression touches.
        category: Derived from ``dependencies``.
        priority: Ordering hint from the strategy (lower hydrates sooner).
        optional: The expression uses optional chaining, so its references
            may legitimately be absent.

    Example:
        >>> record = HydrationFieldRecord.build(
        ...     "ready",
        ...     (DependencyMarker("deployment", "status.readyReplicas"),),
        ... )
        >>> record.category
        <FieldCategory.RESOURCE: 'resource'>
    """

    field_name: str
    dependencies: tuple[DependencyMarker, ...]
    category: FieldCategory
    priority: int = 0
    optional: bool = False

    @classmethod
    def build(
        cls,
        field_name: str,
        dependencies: tuple[DependencyMarker, ...] = (),
        *,
        optional: bool = False,
        priority: int = 0,
    ) -> HydrationFieldRecord:
        return cls(
            field_name=field_name,
            dependencies=tuple(dependencies),
            category=categorize(tuple(dependencies)),
            priority=priority,
            optional=optional,
        )

    @property
    def schema_only(self) -> bool:
        """True for fields with no dependencies or only schema dependencies."""
        return self.category is not FieldCategory.RESOURCE

    @property
    def resource_ids(self) -> frozenset[str]:
        return frozenset(m.resource_id for m in self.dependencies if not m.is_schema)


@dataclass(frozen=True, slots=True)
class HydrationPlan:
    """Fields grouped into hydration levels.

    Attributes:
        levels: Field names per level; fields in one level can hydrate in
            parallel, and levels run in order.
        total_fields: Number of fields planned.
        max_parallelism: Size of the largest level.
        order: Strategy order the levels were built from.
        forced: True when the last level was force-flushed because no
            remaining field became ready.
    """

    levels: tuple[tuple[str, ...], ...]
    total_fields: int
    max_parallelism: int
    order: tuple[str, ...]
    forced: bool = False

    def level_of(self, field_name: str) -> int | None:
        for index, level in enumerate(self.levels):
            if field_name in level:
                return index
        return None

    def to_dict(self) -> dict[str, Any]:
        return {
            "levels": [list(level) for level in self.levels],
            "total_fields": self.total_fields,
            "max_parallelism": self.max_parallelism,
            "order": list(self.order),
            "forced": self.forced,
        }


@dataclass(frozen=True, slots=True)
class ProcessedStatusBuilder:
    """Result of processing a status-builder function.

    Attributes:
        status_mappings: Field name to CEL for every field that converted.
        hydration_plan: Level plan over all fields.
        dependencies: Field name to the markers it depends on.
        source_map: Mappings recorded while converting the fields.
        errors: Fatal errors, one or more per failed field.
        valid: True when no field failed.
        field_analysis: Field name to its full conversion result.
        resource_references: De-duplicated non-schema markers of all fields.
        schema_references: De-duplicated schema markers of all fields.
    """

    status_mappings: dict[str, CelExpression]
    hydration_plan: HydrationPlan
    dependencies: dict[str, tuple[DependencyMarker, ...]]
    source_map: tuple[SourceMapEntry, ...] = ()
    errors: tuple[ExpressionErrorInfo, ...] = ()
    valid: bool = True
    field_analysis: dict[str, ConversionResult] = field(default_factory=dict)
    resource_references: tuple[DependencyMarker, ...] = ()
    schema_references: tuple[DependencyMarker, ...] = ()

    def to_dict(self) -> dict[str, Any]:
        return {
            "valid": self.valid,
            "status_mappings": {k: v.text for k, v in self.status_mappings.items()},
            "hydration_plan": self.hydration_plan.to_dict(),
            "dependencies": {
                name: [marker.key for marker in markers]
                for name, markers in self.dependencies.items()
            },
            "errors": [error.to_dict() for error in self.errors],
            "resource_references": [m.key for m in self.resource_references],
            "schema_references": [m.key for m in self.schema_references],
        }
