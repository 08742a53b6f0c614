"""Dependency-ordered planning of status-field hydration.

The scheduler groups status fields into levels. Level 0 holds fields that
need no deployed resource (static and schema-only fields). A later field is
ready once every resource it reads is "provided" by a field in an earlier
level, where a field provides resource R when it depends on R itself. When
an iteration finds nothing ready, every remaining field is flushed into one
final level so planning always terminates.
"""

from __future__ import annotations

import threading
from collections.abc import Sequence
from typing import Protocol

from kubecel.expressions.markers import DependencyMarker
from kubecel.hydration.models import HydrationFieldRecord, HydrationPlan
from kubecel.logging import get_logger

__all__ = [
    "HydrationStrategy",
    "DefaultHydrationStrategy",
    "HydrationScheduler",
]

logger = get_logger(__name__)

_SCHEMA_ONLY_BONUS = 10
_OPTIONAL_PENALTY = 5


class HydrationStrategy(Protocol):
    """Ordering policy used by :class:`HydrationScheduler`."""

    def order(self, fields: Sequence[HydrationFieldRecord]) -> list[HydrationFieldRecord]: ...

    def can_parallelize(self, field: HydrationFieldRecord) -> bool: ...

    def priority(self, field: HydrationFieldRecord) -> int: ...


class DefaultHydrationStrategy:
    """Schema-only fields first, then by number of dependencies."""

    def order(self, fields: Sequence[HydrationFieldRecord]) -> list[HydrationFieldRecord]:
        return sorted(fields, key=lambda f: (not f.schema_only, len(f.dependencies)))

    def can_parallelize(self, field: HydrationFieldRecord) -> bool:
        return field.schema_only

    def priority(self, field: HydrationFieldRecord) -> int:
        """Lower hydrates sooner; never negative."""
        priority = len(field.dependencies)
        if field.schema_only:
            priority -= _SCHEMA_ONLY_BONUS
        if field.optional:
            priority += _OPTIONAL_PENALTY
        return max(0, priority)


class HydrationScheduler:
    """Build :class:`HydrationPlan` objects from field records.

    Args:
        strategy: Ordering policy; :class:`DefaultHydrationStrategy` when omitted.

    Example:
        ```python
        scheduler = HydrationScheduler()
        plan = scheduler.plan([
            scheduler.record("name", (DependencyMarker.from_path("schema.spec.name"),)),
            scheduler.record("ready", (DependencyMarker("web", "status.readyReplicas"),)),
        ])
        plan.levels  # (("name",), ("ready",))
        ```
    """

    def __init__(self, strategy: HydrationStrategy | None = None) -> None:
        self.strategy: HydrationStrategy = strategy or DefaultHydrationStrategy()
        self._lock = threading.RLock()

    def record(
        self,
        field_name: str,
        dependencies: Sequence[DependencyMarker] = (),
        *,
        optional: bool = False,
    ) -> HydrationFieldRecord:
        """Build a record with its priority filled in by the strategy."""
        draft = HydrationFieldRecord.build(field_name, tuple(dependencies), optional=optional)
        return HydrationFieldRecord.build(
            field_name,
            draft.dependencies,
            optional=optional,
            priority=self.strategy.priority(draft),
        )

    def plan(self, fields: Sequence[HydrationFieldRecord]) -> HydrationPlan:
        """Group ``fields`` into ready levels.

        Returns:
            The plan; ``forced`` is set when the last level was flushed.
        """
        with self._lock:
            ordered = self.strategy.order(fields)
            order = tuple(f.field_name for f in ordered)
            levels: list[tuple[str, ...]] = []
            provided: set[str] = set()
            remaining = list(ordered)
            forced = False

            while remaining:
                ready = [
                    f
                    for f in remaining
                    if self.strategy.can_parallelize(f) or f.resource_ids <= provided
                ]
                if not ready:
                    ready = remaining
                    forced = True
                    logger.info(
                        "hydration_forced_flush",
                        fields=[f.field_name for f in ready],
                    )
                levels.append(tuple(f.field_name for f in ready))
                for f in ready:
                    provided |= f.resource_ids
                ready_names = {f.field_name for f in ready}
                remaining = [f for f in remaining if f.field_name not in ready_names]

            plan = HydrationPlan(
                levels=tuple(levels),
                total_fields=len(order),
                max_parallelism=max((len(level) for level in levels), default=0),
                order=order,
                forced=forced,
            )
        logger.debug(
            "hydration_planned",
            total_fields=plan.total_fields,
            levels=len(plan.levels),
            forced=plan.forced,
        )
        return plan
