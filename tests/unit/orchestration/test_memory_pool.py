"""Unit tests for MemoryBoundedExpressionPool."""

from __future__ import annotations

import pytest

from kubecel.config import OrchestratorConfig
from kubecel.expressions.context import AnalysisContext
from kubecel.expressions.markers import CelExpression, DependencyMarker
from kubecel.orchestration.memory import MemoryBoundedExpressionPool, estimate_value_size


class FakeClock:
    def __init__(self) -> None:
        self.now = 0.0

    def __call__(self) -> float:
        return self.now


class TestEstimateValueSize:
    """Test the size heuristic."""

    def test_primitives(self) -> None:
        """Strings count two bytes per character; other scalars are flat."""
        assert estimate_value_size("abcd") == 8
        assert estimate_value_size(42) == 50

    def test_marker_and_cel(self) -> None:
        """Markers and CEL literals carry a fixed overhead."""
        assert estimate_value_size(DependencyMarker("web", "spec")) == (3 + 4) * 2 + 50
        assert estimate_value_size(CelExpression("a")) == 2 + 50

    def test_containers(self) -> None:
        """Containers add their items to a base cost."""
        assert estimate_value_size(["ab"]) == 100 + 4
        assert estimate_value_size({"k": "ab"}) == 100 + 2 + 4


class TestPool:
    """Test pooling, eviction and limits."""

    def test_same_expression_same_wrapper(self, web_context: AnalysisContext) -> None:
        """get_or_create returns the pooled wrapper on repeat."""
        pool = MemoryBoundedExpressionPool(context=web_context)
        first = pool.get_or_create("web.spec.replicas")
        assert pool.get_or_create("web.spec.replicas") is first
        assert len(pool) == 1

    def test_cleanup_evicts_least_recently_used(self) -> None:
        """Crossing the threshold evicts cold entries before creating."""
        pool = MemoryBoundedExpressionPool(max_memory_mb=0.001, cleanup_threshold=0.5)
        first = pool.get_or_create("a" * 100)
        pool.get_or_create("b" * 100)
        pool.get_or_create("c" * 100)
        stats = pool.memory_stats()
        assert len(pool) == 2
        assert stats.evicted == 1
        assert stats.cleanups == 1
        assert pool.get_or_create("a" * 100) is not first

    def test_insert_past_budget_evicts_older_entries(self) -> None:
        """An insert that overflows the budget cleans up but keeps the new entry."""
        pool = MemoryBoundedExpressionPool(max_memory_mb=0.001, cleanup_threshold=1.0)
        pool.get_or_create("a" * 100)
        pool.get_or_create("b" * 100)
        newest = pool.get_or_create("c" * 100)
        stats = pool.memory_stats()
        assert stats.used_bytes <= stats.max_bytes
        assert (len(pool), stats.evicted, stats.cleanups) == (2, 1, 1)
        assert pool.get_or_create("c" * 100) is newest

    def test_entry_larger_than_budget_not_pooled(self) -> None:
        """An oversize expression gets a wrapper but never enters the pool."""
        pool = MemoryBoundedExpressionPool(max_memory_mb=0.001)
        pool.get_or_create("small")
        wrapper = pool.get_or_create("x" * 5000)
        stats = pool.memory_stats()
        assert wrapper.expression == "x" * 5000
        assert len(pool) == 1
        assert stats.used_bytes <= stats.max_bytes

    def test_batch_create_keeps_input_order(self) -> None:
        """Wrappers come back in input order."""
        pool = MemoryBoundedExpressionPool()
        expressions = ["x" * 50, "y", "z" * 10]
        wrappers = pool.batch_create(expressions)
        assert [w.expression for w in wrappers] == expressions

    def test_force_cleanup(self) -> None:
        """force_cleanup drops entries above the lowered target."""
        pool = MemoryBoundedExpressionPool(max_memory_mb=0.001, cleanup_threshold=0.15)
        pool.get_or_create("a" * 100)
        assert pool.force_cleanup() == 1
        assert len(pool) == 0

    def test_set_limits_validates_and_cleans(self) -> None:
        """Invalid limits are rejected; tighter limits clean up at once."""
        pool = MemoryBoundedExpressionPool()
        with pytest.raises(ValueError):
            pool.set_limits(max_memory_mb=0)
        with pytest.raises(ValueError):
            pool.set_limits(cleanup_threshold=1.5)
        pool.get_or_create("a" * 100)
        pool.get_or_create("b" * 100)
        pool.set_limits(max_memory_mb=0.001, cleanup_threshold=0.5)
        assert len(pool) == 1

    def test_expiring(self) -> None:
        """Entries older than the cutoff are reported."""
        clock = FakeClock()
        pool = MemoryBoundedExpressionPool(clock=clock)
        old = pool.get_or_create("old")
        clock.now = 400
        pool.get_or_create("new")
        assert pool.expiring(older_than=300) == [old]

    def test_from_config(self) -> None:
        """Budget and threshold come from OrchestratorConfig."""
        config = OrchestratorConfig(memory_limit_mb=2, cleanup_threshold=0.5)
        stats = MemoryBoundedExpressionPool.from_config(config).memory_stats()
        assert stats.max_bytes == 2 * 1024 * 1024
        assert stats.cleanup_threshold == 0.5

    def test_clear(self) -> None:
        """clear empties the pool and its usage."""
        pool = MemoryBoundedExpressionPool()
        pool.get_or_create("abc")
        pool.clear()
        assert pool.memory_stats().used_bytes == 0
