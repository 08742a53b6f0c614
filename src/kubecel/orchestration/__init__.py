"""Lazy, pooled and parallel analysis of many expressions.

- lazy.py: deferred analysis wrappers and keyed collections
- parallel.py: anyio fan-out with batch, adaptive, stream and prioritized modes
- memory.py: memory-bounded pool of lazy wrappers
- refs.py: cached marker detection over structured values
"""

from __future__ import annotations

from kubecel.orchestration.lazy import (
    LazyAnalyzedExpression,
    LazyCollectionStats,
    LazyExpressionCollection,
    OnDemandExpressionAnalyzer,
)
from kubecel.orchestration.memory import MemoryBoundedExpressionPool, PoolStats
from kubecel.orchestration.parallel import (
    ParallelExpressionAnalyzer,
    ParallelStats,
    StreamProgress,
    WorkItem,
)
from kubecel.orchestration.refs import ReferenceDetector

__all__ = [
    "LazyAnalyzedExpression",
    "LazyCollectionStats",
    "LazyExpressionCollection",
    "MemoryBoundedExpressionPool",
    "OnDemandExpressionAnalyzer",
    "ParallelExpressionAnalyzer",
    "ParallelStats",
    "PoolStats",
    "ReferenceDetector",
    "StreamProgress",
    "WorkItem",
]
