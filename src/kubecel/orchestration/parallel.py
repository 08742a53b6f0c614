"""Concurrent analysis of many expressions.

Conversion itself is synchronous and CPU-bound; :class:`ParallelExpressionAnalyzer`
only provides cooperative fan-out with a bounded number of items in flight,
per-item failure isolation, and a few scheduling policies on top:

- analyze_batch: fixed concurrency
- analyze_adaptive: concurrency tuned per chunk from observed latency
- analyze_stream: results yielded as they complete, static items first
- analyze_prioritized: declared key dependencies run in topological groups
"""

from __future__ import annotations

import re
import threading
import time
from collections.abc import AsyncIterator, Mapping, Sequence
from dataclasses import dataclass
from typing import TYPE_CHECKING, Any

import anyio

from kubecel.expressions.analyzer import ExpressionAnalyzer
from kubecel.expressions.context import AnalysisContext
from kubecel.expressions.errors import ValidationFailure
from kubecel.expressions.extractor import extract_from_text, extract_from_value
from kubecel.expressions.markers import Value
from kubecel.expressions.results import ConversionResult
from kubecel.logging import get_logger

if TYPE_CHECKING:
    from kubecel.config import OrchestratorConfig

__all__ = [
    "WorkItem",
    "StreamProgress",
    "ParallelStats",
    "ParallelExpressionAnalyzer",
    "dependency_groups",
    "estimate_cost",
]

logger = get_logger(__name__)

_OPERATOR_PATTERN = re.compile(r"\?\?|\?\.|&&|\|\||[=!]==?|[<>]=?|[-+*/%?!(]")


@dataclass(frozen=True, slots=True)
class WorkItem:
    """One unit of work for the parallel analyzer.

    Attributes:
        key: Identifier the result is returned under.
        expression: Expression text or structured value.
        context: Context for this item; the analyzer default when None.
        priority: Higher runs earlier within a prioritized group.
        depends_on: Keys that must finish before this item starts
            (prioritized mode only).
    """

    key: str
    expression: Value
    context: AnalysisContext | None = None
    priority: int = 0
    depends_on: tuple[str, ...] = ()


@dataclass(frozen=True, slots=True)
class StreamProgress:
    completed: int
    total: int

    @property
    def fraction(self) -> float:
        return self.completed / self.total if self.total else 1.0


@dataclass(frozen=True, slots=True)
class ParallelStats:
    """Snapshot of :class:`ParallelExpressionAnalyzer` counters."""

    current_concurrency: int
    max_concurrency: int
    min_concurrency: int
    in_flight: int
    peak_in_flight: int
    processed: int
    succeeded: int
    failed: int
    average_latency_ms: float

    @property
    def utilization(self) -> float:
        return self.peak_in_flight / self.current_concurrency if self.current_concurrency else 0.0

    @property
    def success_rate(self) -> float:
        return self.succeeded / self.processed if self.processed else 1.0

    def to_dict(self) -> dict[str, Any]:
        data = {name: getattr(self, name) for name in self.__dataclass_fields__}
        data["utilization"] = self.utilization
        data["success_rate"] = self.success_rate
        return data


def estimate_cost(expression: Value) -> int:
    """Rough analysis cost: ``complexity * 10 + ref_count * 5``."""
    if isinstance(expression, str):
        complexity = len(_OPERATOR_PATTERN.findall(expression))
        refs = len(extract_from_text(expression))
    else:
        complexity = 0
        refs = len(extract_from_value(expression))
    return complexity * 10 + refs * 5


class ParallelExpressionAnalyzer:
    """Analyze batches of :class:`WorkItem` objects with bounded concurrency.

    Args:
        analyzer: Analyzer doing the per-item work.
        context: Default context for items that carry none.
        max_concurrency: Upper bound on items in flight.
        min_concurrency: Lower bound for adaptive mode.
        adaptive_threshold_ms: Average latency above which adaptive mode
            shrinks concurrency; below half of it, concurrency grows.
        batch_size: Chunk size for adaptive and streaming modes.

    Example:
        ```python
        parallel = ParallelExpressionAnalyzer(max_concurrency=8)
        results = await parallel.analyze_batch([
            WorkItem("ready", "web.status.readyReplicas > 0", ctx),
            WorkItem("url", "svc.status.loadBalancer.ingress[0].ip", ctx),
        ])
        ```
    """

    def __init__(
        self,
        analyzer: ExpressionAnalyzer | None = None,
        *,
        context: AnalysisContext | None = None,
        max_concurrency: int = 4,
        min_concurrency: int = 1,
        adaptive_threshold_ms: float = 100,
        batch_size: int = 10,
    ) -> None:
        if min_concurrency < 1 or max_concurrency < min_concurrency:
            raise ValueError(
                f"Invalid concurrency bounds: min={min_concurrency}, max={max_concurrency}"
            )
        if batch_size < 1:
            raise ValueError("batch_size must be at least 1")
        self.analyzer = analyzer or ExpressionAnalyzer()
        self.context = context or AnalysisContext()
        self.max_concurrency = max_concurrency
        self.min_concurrency = min_concurrency
        self.adaptive_threshold_ms = adaptive_threshold_ms
        self.batch_size = batch_size
        self._current = max_concurrency
        self._lock = threading.RLock()
        self._in_flight = 0
        self._peak = 0
        self._processed = 0
        self._succeeded = 0
        self._failed = 0
        self._latency_total_ms = 0.0

    @classmethod
    def from_config(
        cls,
        config: OrchestratorConfig,
        analyzer: ExpressionAnalyzer | None = None,
        context: AnalysisContext | None = None,
    ) -> ParallelExpressionAnalyzer:
        return cls(
            analyzer,
            context=context,
            max_concurrency=config.max_concurrency,
            min_concurrency=config.min_concurrency,
            adaptive_threshold_ms=config.adaptive_threshold_ms,
            batch_size=config.batch_size,
        )

    @property
    def current_concurrency(self) -> int:
        return self._current

    # Single item

    def _analyze_one(self, item: WorkItem) -> tuple[ConversionResult, float]:
        started = time.perf_counter()
        context = item.context or self.context
        try:
            result = self.analyzer.analyze_value(item.expression, context)
        except Exception as e:  # noqa: BLE001
            logger.warning("batch_item_failed", key=item.key, error=str(e))
            text = item.expression if isinstance(item.expression, str) else ""
            result = ConversionResult.failure(e, text)
        elapsed_ms = (time.perf_counter() - started) * 1000
        with self._lock:
            self._processed += 1
            self._latency_total_ms += elapsed_ms
            if result.valid:
                self._succeeded += 1
            else:
                self._failed += 1
        return result, elapsed_ms

    async def _run(
        self,
        items: Sequence[WorkItem],
        concurrency: int,
        results: dict[str, ConversionResult],
    ) -> list[float]:
        """Run ``items`` with at most ``concurrency`` in flight, costliest first."""
        semaphore = anyio.Semaphore(concurrency)
        latencies: list[float] = []
        ordered = sorted(items, key=lambda item: estimate_cost(item.expression), reverse=True)

        async def worker(item: WorkItem) -> None:
            async with semaphore:
                with self._lock:
                    self._in_flight += 1
                    self._peak = max(self._peak, self._in_flight)
                try:
                    await anyio.sleep(0)
                    result, elapsed_ms = self._analyze_one(item)
                    results[item.key] = result
                    latencies.append(elapsed_ms)
                finally:
                    with self._lock:
                        self._in_flight -= 1

        async with anyio.create_task_group() as tg:
            for item in ordered:
                tg.start_soon(worker, item)
        return latencies

    # Modes

    async def analyze_batch(
        self, items: Sequence[WorkItem], max_concurrency: int | None = None
    ) -> dict[str, ConversionResult]:
        """Analyze all ``items`` with fixed concurrency.

        Returns:
            Results keyed by item key, in input order.
        """
        _check_unique(items)
        results: dict[str, ConversionResult] = {}
        await self._run(items, max_concurrency or self._current, results)
        return {item.key: results[item.key] for item in items}

    async def analyze_adaptive(self, items: Sequence[WorkItem]) -> dict[str, ConversionResult]:
        """Analyze ``items`` in chunks, retuning concurrency after each chunk."""
        _check_unique(items)
        results: dict[str, ConversionResult] = {}
        for start in range(0, len(items), self.batch_size):
            chunk = items[start : start + self.batch_size]
            latencies = await self._run(chunk, self._current, results)
            if latencies:
                self._adjust(sum(latencies) / len(latencies))
        return {item.key: results[item.key] for item in items}

    def _adjust(self, average_ms: float) -> None:
        previous = self._current
        if average_ms > self.adaptive_threshold_ms:
            self._current = max(self.min_concurrency, self._current - 1)
        elif average_ms < self.adaptive_threshold_ms / 2:
            self._current = min(self.max_concurrency, self._current + 1)
        if self._current != previous:
            logger.debug(
                "concurrency_adjusted",
                previous=previous,
                current=self._current,
                average_ms=round(average_ms, 3),
            )

    async def analyze_stream(
        self, items: Sequence[WorkItem]
    ) -> AsyncIterator[tuple[str, ConversionResult, StreamProgress]]:
        """Yield ``(key, result, progress)`` one chunk at a time.

        Static items are yielded first without entering the pool. The rest
        are analyzed in chunks of ``batch_size``; each chunk's results are
        yielded in input order once the whole chunk has finished.
        """
        _check_unique(items)
        total = len(items)
        completed = 0
        pending: list[WorkItem] = []
        for item in items:
            context = item.context or self.context
            if self.analyzer.requires_conversion(item.expression, context):
                pending.append(item)
                continue
            completed += 1
            with self._lock:
                self._processed += 1
                self._succeeded += 1
            yield item.key, ConversionResult.static(), StreamProgress(completed, total)

        for start in range(0, len(pending), self.batch_size):
            chunk = pending[start : start + self.batch_size]
            results: dict[str, ConversionResult] = {}
            await self._run(chunk, self._current, results)
            for item in chunk:
                completed += 1
                yield item.key, results[item.key], StreamProgress(completed, total)

    async def analyze_prioritized(self, items: Sequence[WorkItem]) -> dict[str, ConversionResult]:
        """Analyze ``items`` group by group in dependency order.

        Raises:
            ValidationFailure: If an item depends on an unknown key or the
                declared dependencies form a cycle.
        """
        _check_unique(items)
        results: dict[str, ConversionResult] = {}
        for group in dependency_groups(items):
            ranked = sorted(group, key=lambda item: item.priority, reverse=True)
            semaphore = anyio.Semaphore(self._current)

            async def worker(item: WorkItem) -> None:
                async with semaphore:
                    await anyio.sleep(0)
                    results[item.key], _ = self._analyze_one(item)

            # tasks start in list order
            async with anyio.create_task_group() as tg:
                for item in ranked:
                    tg.start_soon(worker, item)
        return {item.key: results[item.key] for item in items}

    def stats(self) -> ParallelStats:
        with self._lock:
            return ParallelStats(
                current_concurrency=self._current,
                max_concurrency=self.max_concurrency,
                min_concurrency=self.min_concurrency,
                in_flight=self._in_flight,
                peak_in_flight=self._peak,
                processed=self._processed,
                succeeded=self._succeeded,
                failed=self._failed,
                average_latency_ms=(
                    self._latency_total_ms / self._processed if self._processed else 0.0
                ),
            )


def dependency_groups(items: Sequence[WorkItem]) -> list[list[WorkItem]]:
    """Kahn-style topological grouping of ``items`` by ``depends_on``.

    Each group only depends on items in earlier groups.

    Raises:
        ValidationFailure: On unknown dependency keys or a cycle.
    """
    by_key: Mapping[str, WorkItem] = {item.key: item for item in items}
    indegree = {item.key: 0 for item in items}
    dependents: dict[str, list[str]] = {item.key: [] for item in items}
    for item in items:
        for dep in item.depends_on:
            if dep not in by_key:
                raise ValidationFailure(f"Work item '{item.key}' depends on unknown key '{dep}'")
            indegree[item.key] += 1
            dependents[dep].append(item.key)

    groups: list[list[WorkItem]] = []
    ready = [key for key, degree in indegree.items() if degree == 0]
    placed = 0
    while ready:
        groups.append([by_key[key] for key in ready])
        placed += len(ready)
        next_ready: list[str] = []
        for key in ready:
            for dependent in dependents[key]:
                indegree[dependent] -= 1
                if indegree[dependent] == 0:
                    next_ready.append(dependent)
        ready = next_ready

    if placed != len(items):
        cycle = sorted(key for key, degree in indegree.items() if degree > 0)
        raise ValidationFailure(f"Circular dependency between work items: {', '.join(cycle)}")
    return groups


def _check_unique(items: Sequence[WorkItem]) -> None:
    seen: set[str] = set()
    for item in items:
        if item.key in seen:
            raise ValueError(f"Duplicate work item key: {item.key}")
        seen.add(item.key)
