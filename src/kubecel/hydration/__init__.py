"""Status-field hydration planning.

- models.py: field records, plans and processed status builders
- scheduler.py: ordering strategy and level planning
- status_builder.py: status-builder source to CEL mappings plus a plan
"""

from __future__ import annotations

from kubecel.hydration.models import (
    FieldCategory,
    HydrationFieldRecord,
    HydrationPlan,
    ProcessedStatusBuilder,
)
from kubecel.hydration.scheduler import (
    DefaultHydrationStrategy,
    HydrationScheduler,
    HydrationStrategy,
)
from kubecel.hydration.status_builder import StatusBuilderProcessor

__all__ = [
    "DefaultHydrationStrategy",
    "FieldCategory",
    "HydrationFieldRecord",
    "HydrationPlan",
    "HydrationScheduler",
    "HydrationStrategy",
    "ProcessedStatusBuilder",
    "StatusBuilderProcessor",
]
