"""Unit tests for ParallelExpressionAnalyzer."""

from __future__ import annotations

import pytest

from kubecel.config import OrchestratorConfig
from kubecel.expressions.analyzer import ExpressionAnalyzer
from kubecel.expressions.context import AnalysisContext
from kubecel.expressions.errors import ErrorKind, ValidationFailure
from kubecel.expressions.markers import Value
from kubecel.expressions.results import ConversionResult
from kubecel.orchestration.parallel import (
    ParallelExpressionAnalyzer,
    WorkItem,
    dependency_groups,
    estimate_cost,
)


class RecordingAnalyzer(ExpressionAnalyzer):
    def __init__(self) -> None:
        super().__init__()
        self.seen: list[Value] = []

    def analyze_value(
        self, value: Value, context: AnalysisContext | None = None
    ) -> ConversionResult:
        self.seen.append(value)
        if value == "explode":
            raise RuntimeError("boom")
        return super().analyze_value(value, context)


@pytest.fixture
def items() -> list[WorkItem]:
    return [
        WorkItem("ready", "web.status.readyReplicas > 0"),
        WorkItem("ip", "svc.status.ip"),
        WorkItem("label", "static"),
    ]


class TestConstruction:
    """Test argument validation and config wiring."""

    def test_invalid_bounds(self) -> None:
        """min must be positive and not above max."""
        with pytest.raises(ValueError):
            ParallelExpressionAnalyzer(min_concurrency=0)
        with pytest.raises(ValueError):
            ParallelExpressionAnalyzer(max_concurrency=2, min_concurrency=3)
        with pytest.raises(ValueError):
            ParallelExpressionAnalyzer(batch_size=0)

    def test_from_config(self) -> None:
        """Limits come from OrchestratorConfig."""
        config = OrchestratorConfig(max_concurrency=8, min_concurrency=2, batch_size=3)
        parallel = ParallelExpressionAnalyzer.from_config(config)
        assert parallel.current_concurrency == 8
        assert parallel.min_concurrency == 2
        assert parallel.batch_size == 3


class TestEstimateCost:
    """Test the cost heuristic."""

    def test_operators_and_references(self) -> None:
        """complexity * 10 + references * 5."""
        assert estimate_cost("a") == 0
        assert estimate_cost("a > b") == 10
        assert estimate_cost("web.status.ready") == 5

    def test_structured_values(self) -> None:
        """Non-strings only count references."""
        assert estimate_cost({"a": 1}) == 0


class TestBatch:
    """Test fixed-concurrency batches."""

    @pytest.mark.asyncio
    async def test_results_in_input_order(
        self, items: list[WorkItem], web_context: AnalysisContext
    ) -> None:
        """Results are keyed and ordered like the input."""
        parallel = ParallelExpressionAnalyzer(context=web_context, max_concurrency=2)
        results = await parallel.analyze_batch(items)
        assert list(results) == ["ready", "ip", "label"]
        assert results["ready"].cel_text == "resources.web.status.readyReplicas > 0"
        assert results["label"].is_static
        stats = parallel.stats()
        assert stats.processed == 3
        assert stats.failed == 0
        assert 1 <= stats.peak_in_flight <= 2
        assert stats.in_flight == 0

    @pytest.mark.asyncio
    async def test_costliest_first(self, web_context: AnalysisContext) -> None:
        """Items start in descending cost order."""
        analyzer = RecordingAnalyzer()
        parallel = ParallelExpressionAnalyzer(analyzer, context=web_context, max_concurrency=1)
        await parallel.analyze_batch(
            [
                WorkItem("cheap", "web.spec.replicas"),
                WorkItem("dear", "web.spec.replicas > 0 && web.status.ready == true"),
            ]
        )
        assert analyzer.seen[0] == "web.spec.replicas > 0 && web.status.ready == true"

    @pytest.mark.asyncio
    async def test_failures_isolated(self, web_context: AnalysisContext) -> None:
        """An exception in one item becomes an internal error result."""
        parallel = ParallelExpressionAnalyzer(RecordingAnalyzer(), context=web_context)
        results = await parallel.analyze_batch(
            [WorkItem("bad", "explode"), WorkItem("good", "web.spec.replicas")]
        )
        assert not results["bad"].valid
        assert results["bad"].errors[0].kind is ErrorKind.INTERNAL
        assert results["good"].valid
        assert parallel.stats().failed == 1
        assert parallel.stats().success_rate == 0.5

    @pytest.mark.asyncio
    async def test_duplicate_keys_rejected(self) -> None:
        """Keys must be unique within a call."""
        parallel = ParallelExpressionAnalyzer()
        with pytest.raises(ValueError, match="Duplicate"):
            await parallel.analyze_batch([WorkItem("a", "x"), WorkItem("a", "y")])


class TestAdaptive:
    """Test latency-driven concurrency tuning."""

    @pytest.mark.asyncio
    async def test_slow_chunks_shrink_concurrency(self, web_context: AnalysisContext) -> None:
        """Average latency over the threshold lowers concurrency to the floor."""
        parallel = ParallelExpressionAnalyzer(
            context=web_context,
            max_concurrency=4,
            min_concurrency=1,
            adaptive_threshold_ms=1e-6,
            batch_size=1,
        )
        items = [WorkItem(f"k{i}", f"web.spec.replicas > {i}") for i in range(3)]
        results = await parallel.analyze_adaptive(items)
        assert list(results) == ["k0", "k1", "k2"]
        assert parallel.current_concurrency == 1

    def test_fast_chunks_grow_concurrency(self) -> None:
        """Latency under half the threshold raises concurrency, capped at max."""
        parallel = ParallelExpressionAnalyzer(max_concurrency=3, adaptive_threshold_ms=100)
        parallel._current = 1
        parallel._adjust(10)
        parallel._adjust(10)
        parallel._adjust(10)
        assert parallel.current_concurrency == 3


class TestStream:
    """Test streaming results."""

    @pytest.mark.asyncio
    async def test_static_items_first(
        self, items: list[WorkItem], web_context: AnalysisContext
    ) -> None:
        """Static items are yielded before converted ones, with progress."""
        parallel = ParallelExpressionAnalyzer(context=web_context)
        seen = [(key, progress) async for key, _, progress in parallel.analyze_stream(items)]
        assert [key for key, _ in seen] == ["label", "ready", "ip"]
        assert seen[-1][1].completed == 3
        assert seen[-1][1].fraction == 1.0

    @pytest.mark.asyncio
    async def test_results_arrive_per_chunk(self, web_context: AnalysisContext) -> None:
        """A chunk is analyzed in full before any of its results is yielded."""
        analyzer = RecordingAnalyzer()
        parallel = ParallelExpressionAnalyzer(analyzer, context=web_context, batch_size=2)
        work = [
            WorkItem("replicas", "web.spec.replicas"),
            WorkItem("ready", "web.status.ready"),
            WorkItem("ip", "svc.status.ip"),
        ]
        analyzed_at_yield = [len(analyzer.seen) async for _ in parallel.analyze_stream(work)]
        assert analyzed_at_yield == [2, 2, 3]


class TestPrioritized:
    """Test dependency-ordered execution."""

    def test_dependency_groups(self) -> None:
        """Groups follow declared dependencies."""
        groups = dependency_groups(
            [
                WorkItem("c", "x", depends_on=("a", "b")),
                WorkItem("a", "x"),
                WorkItem("b", "x", depends_on=("a",)),
            ]
        )
        assert [[item.key for item in group] for group in groups] == [["a"], ["b"], ["c"]]

    def test_unknown_dependency(self) -> None:
        """Depending on a missing key is a validation failure."""
        with pytest.raises(ValidationFailure, match="unknown key"):
            dependency_groups([WorkItem("a", "x", depends_on=("zzz",))])

    def test_cycle(self) -> None:
        """Cycles are rejected."""
        with pytest.raises(ValidationFailure, match="Circular"):
            dependency_groups(
                [WorkItem("a", "x", depends_on=("b",)), WorkItem("b", "x", depends_on=("a",))]
            )

    @pytest.mark.asyncio
    async def test_dependencies_run_first(self, web_context: AnalysisContext) -> None:
        """Dependents start after their dependencies; priority orders a group."""
        analyzer = RecordingAnalyzer()
        parallel = ParallelExpressionAnalyzer(analyzer, context=web_context, max_concurrency=1)
        results = await parallel.analyze_prioritized(
            [
                WorkItem("after", "web.status.ready", depends_on=("low", "high")),
                WorkItem("low", "web.spec.replicas", priority=1),
                WorkItem("high", "svc.status.ip", priority=5),
            ]
        )
        assert list(results) == ["after", "low", "high"]
        assert analyzer.seen == ["svc.status.ip", "web.spec.replicas", "web.status.ready"]
