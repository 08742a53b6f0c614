"""Memory-bounded pool of lazy expressions.

The pool owns its :class:`LazyAnalyzedExpression` objects in an ordered
arena. Every entry carries an estimated size; when estimated usage crosses
``cleanup_threshold * max_memory_bytes`` the least recently used entries are
dropped until usage falls to ``(cleanup_threshold - 0.1) * max_memory_bytes``.
An insert that pushes usage past the budget itself triggers the same
cleanup, sparing the new entry. An entry larger than the whole budget is
handed back without being pooled.
"""

from __future__ import annotations

import threading
import time
from collections import OrderedDict
from collections.abc import Callable, Mapping, Sequence
from dataclasses import dataclass
from typing import TYPE_CHECKING, Any

from kubecel.expressions.analyzer import ExpressionAnalyzer
from kubecel.expressions.cache import cache_key
from kubecel.expressions.context import AnalysisContext
from kubecel.expressions.markers import CelExpression, DependencyMarker, Value
from kubecel.logging import get_logger
from kubecel.orchestration.lazy import LazyAnalyzedExpression

if TYPE_CHECKING:
    from kubecel.config import OrchestratorConfig

__all__ = ["MemoryBoundedExpressionPool", "PoolStats", "estimate_value_size"]

logger = get_logger(__name__)

_BYTES_PER_MB = 1024 * 1024
_ENTRY_OVERHEAD = 200
_CLEANUP_MARGIN = 0.1
DEFAULT_EXPIRY_SECONDS = 300.0


def estimate_value_size(value: Value, depth: int = 0) -> int:
    """Approximate size of ``value`` in bytes."""
    if depth > 10:
        return 0
    if isinstance(value, str):
        return len(value) * 2
    if isinstance(value, DependencyMarker):
        return (len(value.resource_id) + len(value.field_path)) * 2 + 50
    if isinstance(value, CelExpression):
        return len(value.text) * 2 + 50
    if isinstance(value, Mapping):
        size = 100
        for key, item in value.items():
            size += len(str(key)) * 2 + estimate_value_size(item, depth + 1)
        return size
    if isinstance(value, (list, tuple)):
        return 100 + sum(estimate_value_size(item, depth + 1) for item in value)
    return 50


@dataclass(slots=True)
class _PoolEntry:
    lazy: LazyAnalyzedExpression
    size: int
    created_at: float
    last_access: float


@dataclass(frozen=True, slots=True)
class PoolStats:
    entries: int
    used_bytes: int
    max_bytes: int
    cleanup_threshold: float
    cleanups: int
    evicted: int
    analyzed: int

    @property
    def usage_ratio(self) -> float:
        return self.used_bytes / self.max_bytes if self.max_bytes else 0.0

    def to_dict(self) -> dict[str, Any]:
        data = {name: getattr(self, name) for name in self.__dataclass_fields__}
        data["usage_ratio"] = self.usage_ratio
        return data


class MemoryBoundedExpressionPool:
    """Create and retain lazy expressions within a memory budget.

    Args:
        analyzer: Analyzer given to every pooled expression.
        context: Default context for expressions created without one.
        max_memory_mb: Budget for the estimated size of all entries.
        cleanup_threshold: Fraction of the budget that triggers cleanup.
        clock: Time source in seconds.
    """

    def __init__(
        self,
        analyzer: ExpressionAnalyzer | None = None,
        *,
        context: AnalysisContext | None = None,
        max_memory_mb: float = 50,
        cleanup_threshold: float = 0.8,
        clock: Callable[[], float] = time.monotonic,
    ) -> None:
        _check_limits(max_memory_mb, cleanup_threshold)
        self.analyzer = analyzer or ExpressionAnalyzer()
        self.context = context or AnalysisContext()
        self._max_bytes = int(max_memory_mb * _BYTES_PER_MB)
        self._threshold = cleanup_threshold
        self._clock = clock
        self._entries: OrderedDict[str, _PoolEntry] = OrderedDict()
        self._used = 0
        self._cleanups = 0
        self._evicted = 0
        self._lock = threading.RLock()

    @classmethod
    def from_config(
        cls,
        config: OrchestratorConfig,
        analyzer: ExpressionAnalyzer | None = None,
    ) -> MemoryBoundedExpressionPool:
        return cls(
            analyzer,
            max_memory_mb=config.memory_limit_mb,
            cleanup_threshold=config.cleanup_threshold,
        )

    def __len__(self) -> int:
        return len(self._entries)

    def get_or_create(
        self, expression: Value, context: AnalysisContext | None = None
    ) -> LazyAnalyzedExpression:
        """Return the pooled wrapper for ``expression``, creating it if needed."""
        context = context or self.context
        key = _pool_key(expression, context)
        with self._lock:
            now = self._clock()
            entry = self._entries.get(key)
            if entry is not None:
                entry.last_access = now
                self._entries.move_to_end(key)
                return entry.lazy

            if self._used > self._threshold * self._max_bytes:
                self._cleanup()
            lazy = LazyAnalyzedExpression(expression, context, self.analyzer)
            size = estimate_value_size(expression) + _ENTRY_OVERHEAD
            if size > self._max_bytes:
                logger.debug("pool_entry_too_large", size_bytes=size, max_bytes=self._max_bytes)
                return lazy
            self._entries[key] = _PoolEntry(lazy, size, now, now)
            self._used += size
            if self._used > self._max_bytes:
                self._cleanup(keep=key)
            return lazy

    def batch_create(
        self, expressions: Sequence[Value], context: AnalysisContext | None = None
    ) -> list[LazyAnalyzedExpression]:
        """Create wrappers for ``expressions``, smallest first.

        Returns:
            Wrappers in the order of ``expressions``.
        """
        order = sorted(range(len(expressions)), key=lambda i: estimate_value_size(expressions[i]))
        created: dict[int, LazyAnalyzedExpression] = {}
        for index in order:
            created[index] = self.get_or_create(expressions[index], context)
        return [created[index] for index in range(len(expressions))]

    def memory_stats(self) -> PoolStats:
        with self._lock:
            return PoolStats(
                entries=len(self._entries),
                used_bytes=self._used,
                max_bytes=self._max_bytes,
                cleanup_threshold=self._threshold,
                cleanups=self._cleanups,
                evicted=self._evicted,
                analyzed=sum(1 for e in self._entries.values() if e.lazy.is_analyzed),
            )

    def force_cleanup(self) -> int:
        """Run a cleanup now; returns the number of entries dropped."""
        with self._lock:
            return self._cleanup()

    def set_limits(
        self, max_memory_mb: float | None = None, cleanup_threshold: float | None = None
    ) -> None:
        """Change the budget and immediately clean up against it."""
        with self._lock:
            max_mb = max_memory_mb if max_memory_mb is not None else self._max_bytes / _BYTES_PER_MB
            threshold = cleanup_threshold if cleanup_threshold is not None else self._threshold
            _check_limits(max_mb, threshold)
            self._max_bytes = int(max_mb * _BYTES_PER_MB)
            self._threshold = threshold
            if self._used > self._threshold * self._max_bytes:
                self._cleanup()

    def expiring(self, older_than: float = DEFAULT_EXPIRY_SECONDS) -> list[LazyAnalyzedExpression]:
        """Wrappers created more than ``older_than`` seconds ago."""
        with self._lock:
            now = self._clock()
            return [e.lazy for e in self._entries.values() if now - e.created_at > older_than]

    def clear(self) -> None:
        with self._lock:
            self._entries.clear()
            self._used = 0

    def _cleanup(self, keep: str | None = None) -> int:
        target = max(0.0, self._threshold - _CLEANUP_MARGIN) * self._max_bytes
        removed = 0
        while self._entries and self._used > target:
            if next(iter(self._entries)) == keep:
                break
            _, entry = self._entries.popitem(last=False)
            self._used -= entry.size
            removed += 1
        self._cleanups += 1
        self._evicted += removed
        if removed:
            logger.debug("pool_cleanup", removed=removed, used_bytes=self._used)
        return removed


def _pool_key(expression: Value, context: AnalysisContext) -> str:
    text = expression if isinstance(expression, str) else repr(expression)
    return cache_key(text, context)


def _check_limits(max_memory_mb: float, cleanup_threshold: float) -> None:
    if max_memory_mb <= 0:
        raise ValueError("max_memory_mb must be positive")
    if not 0 < cleanup_threshold <= 1:
        raise ValueError("cleanup_threshold must be in (0, 1]")
