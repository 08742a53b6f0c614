"""Deferred analysis wrappers.

A :class:`LazyAnalyzedExpression` holds an expression (or any value from
the closed value model) and its context, and does no work until its
``result`` is read. Whether conversion is needed at all is answered with the
cheap pattern scan, so static values never reach the converter.
"""

from __future__ import annotations

import threading
from collections import OrderedDict
from collections.abc import Iterator
from dataclasses import dataclass
from typing import Any

import anyio

from kubecel.expressions.analyzer import ExpressionAnalyzer
from kubecel.expressions.cache import cache_key
from kubecel.expressions.context import AnalysisContext
from kubecel.expressions.errors import ExpressionErrorInfo
from kubecel.expressions.markers import CelExpression, DependencyMarker, Value
from kubecel.expressions.results import ConversionResult
from kubecel.logging import get_logger

__all__ = [
    "LazyAnalyzedExpression",
    "LazyExpressionCollection",
    "LazyCollectionStats",
    "OnDemandExpressionAnalyzer",
]

logger = get_logger(__name__)


class LazyAnalyzedExpression:
    """An expression whose analysis runs on first access to ``result``.

    Args:
        expression: Expression text or structured value.
        context: Context to analyze in; an empty one when omitted.
        analyzer: Analyzer doing the work.

    Example:
        >>> lazy = LazyAnalyzedExpression("web.status.readyReplicas > 0",
        ...                               AnalysisContext.for_resources(["web"]))
        >>> lazy.is_analyzed
        False
        >>> lazy.cel_expression.text
        'resources.web.status.readyReplicas > 0'
    """

    def __init__(
        self,
        expression: Value,
        context: AnalysisContext | None = None,
        analyzer: ExpressionAnalyzer | None = None,
    ) -> None:
        self._expression = expression
        self._context = context or AnalysisContext()
        self._analyzer = analyzer or ExpressionAnalyzer()
        self._result: ConversionResult | None = None
        self._requires_conversion: bool | None = None
        self._lock = threading.Lock()

    @property
    def expression(self) -> Value:
        return self._expression

    @property
    def context(self) -> AnalysisContext:
        return self._context

    @property
    def is_analyzed(self) -> bool:
        return self._result is not None

    @property
    def requires_conversion(self) -> bool:
        if self._requires_conversion is None:
            self._requires_conversion = self._analyzer.requires_conversion(
                self._expression, self._context
            )
        return self._requires_conversion

    @property
    def is_static(self) -> bool:
        return not self.requires_conversion

    @property
    def result(self) -> ConversionResult:
        with self._lock:
            if self._result is None:
                if self.requires_conversion:
                    self._result = self._analyzer.analyze_value(self._expression, self._context)
                else:
                    self._result = ConversionResult.static()
            return self._result

    def try_result(self) -> ConversionResult | None:
        """Return the result, or ``None`` if analysis raised unexpectedly."""
        try:
            return self.result
        except Exception as e:  # noqa: BLE001
            logger.warning("lazy_analysis_failed", error=str(e))
            return None

    @property
    def cel_expression(self) -> CelExpression | None:
        return self.result.expression

    @property
    def dependencies(self) -> tuple[DependencyMarker, ...]:
        return self.result.dependencies

    @property
    def errors(self) -> tuple[ExpressionErrorInfo, ...]:
        return self.result.errors

    @property
    def is_valid(self) -> bool:
        return self.result.valid

    def with_context(self, context: AnalysisContext) -> LazyAnalyzedExpression:
        """Unevaluated copy bound to ``context``."""
        return LazyAnalyzedExpression(self._expression, context, self._analyzer)

    def reset(self) -> None:
        with self._lock:
            self._result = None
            self._requires_conversion = None

    def __repr__(self) -> str:
        if self._result is None:
            state = "NOT ANALYZED"
        else:
            state = "VALID" if self._result.valid else "INVALID"
        return f"LazyAnalyzedExpression({self._expression!r}) [{state}]"


@dataclass(frozen=True, slots=True)
class LazyCollectionStats:
    total: int
    analyzed: int
    requires_conversion: int
    static: int
    valid: int
    invalid: int

    def to_dict(self) -> dict[str, Any]:
        return {name: getattr(self, name) for name in self.__dataclass_fields__}


class LazyExpressionCollection:
    """Keyed container of lazy expressions sharing one analyzer.

    Args:
        analyzer: Analyzer given to every member.
        context: Default context for members added without one.
    """

    def __init__(
        self,
        analyzer: ExpressionAnalyzer | None = None,
        context: AnalysisContext | None = None,
    ) -> None:
        self._analyzer = analyzer or ExpressionAnalyzer()
        self._context = context or AnalysisContext()
        self._items: dict[str, LazyAnalyzedExpression] = {}

    def add(
        self, key: str, expression: Value, context: AnalysisContext | None = None
    ) -> LazyAnalyzedExpression:
        lazy = LazyAnalyzedExpression(expression, context or self._context, self._analyzer)
        self._items[key] = lazy
        return lazy

    def get(self, key: str) -> LazyAnalyzedExpression | None:
        return self._items.get(key)

    def has(self, key: str) -> bool:
        return key in self._items

    def remove(self, key: str) -> bool:
        return self._items.pop(key, None) is not None

    def keys(self) -> list[str]:
        return list(self._items)

    def items(self) -> Iterator[tuple[str, LazyAnalyzedExpression]]:
        return iter(list(self._items.items()))

    def __len__(self) -> int:
        return len(self._items)

    def __contains__(self, key: object) -> bool:
        return key in self._items

    @property
    def requires_conversion_count(self) -> int:
        return sum(1 for lazy in self._items.values() if lazy.requires_conversion)

    @property
    def static_count(self) -> int:
        return sum(1 for lazy in self._items.values() if lazy.is_static)

    @property
    def analyzed_count(self) -> int:
        return sum(1 for lazy in self._items.values() if lazy.is_analyzed)

    def analyze_all(self) -> dict[str, ConversionResult]:
        """Force every member, in insertion order."""
        return {key: lazy.result for key, lazy in self._items.items()}

    async def analyze_all_parallel(self, max_concurrency: int = 4) -> dict[str, ConversionResult]:
        """Force every member with at most ``max_concurrency`` in flight.

        Static members are resolved inline without taking a slot.
        """
        if max_concurrency < 1:
            raise ValueError("max_concurrency must be at least 1")
        results: dict[str, ConversionResult] = {}
        semaphore = anyio.Semaphore(max_concurrency)

        async def force(key: str, lazy: LazyAnalyzedExpression) -> None:
            async with semaphore:
                results[key] = lazy.result
                await anyio.sleep(0)

        async with anyio.create_task_group() as tg:
            for key, lazy in self._items.items():
                if lazy.is_static:
                    results[key] = lazy.result
                else:
                    tg.start_soon(force, key, lazy)
        return {key: results[key] for key in self._items if key in results}

    def stats(self) -> LazyCollectionStats:
        analyzed = [lazy for lazy in self._items.values() if lazy.is_analyzed]
        valid = sum(1 for lazy in analyzed if lazy.is_valid)
        return LazyCollectionStats(
            total=len(self._items),
            analyzed=len(analyzed),
            requires_conversion=self.requires_conversion_count,
            static=self.static_count,
            valid=valid,
            invalid=len(analyzed) - valid,
        )

    def clear(self) -> None:
        self._items.clear()

    def reset_all(self) -> None:
        for lazy in self._items.values():
            lazy.reset()


class OnDemandExpressionAnalyzer:
    """Memoizing factory of :class:`LazyAnalyzedExpression` objects.

    Lazy wrappers are keyed by expression text and context fingerprint, so
    asking twice for the same text in the same context returns the same
    wrapper (and therefore analyzes once). At most ``max_entries`` wrappers
    are retained; the least recently requested one is dropped first.
    """

    def __init__(
        self, analyzer: ExpressionAnalyzer | None = None, *, max_entries: int = 1000
    ) -> None:
        if max_entries <= 0:
            raise ValueError("max_entries must be positive")
        self._analyzer = analyzer or ExpressionAnalyzer()
        self._max_entries = max_entries
        self._wrappers: OrderedDict[str, LazyAnalyzedExpression] = OrderedDict()
        self._hits = 0
        self._misses = 0
        self._lock = threading.Lock()

    def lazy(self, text: str, context: AnalysisContext | None = None) -> LazyAnalyzedExpression:
        context = context or AnalysisContext()
        key = cache_key(text, context)
        with self._lock:
            wrapper = self._wrappers.get(key)
            if wrapper is not None:
                self._hits += 1
                self._wrappers.move_to_end(key)
                return wrapper
            self._misses += 1
            wrapper = LazyAnalyzedExpression(text, context, self._analyzer)
            self._wrappers[key] = wrapper
            if len(self._wrappers) > self._max_entries:
                self._wrappers.popitem(last=False)
            return wrapper

    def analyze(self, text: str, context: AnalysisContext | None = None) -> ConversionResult:
        return self.lazy(text, context).result

    def stats(self) -> dict[str, float]:
        with self._lock:
            total = self._hits + self._misses
            return {
                "hits": self._hits,
                "misses": self._misses,
                "size": len(self._wrappers),
                "hit_ratio": self._hits / total if total else 0.0,
            }

    def clear(self) -> None:
        with self._lock:
            self._wrappers.clear()
            self._hits = 0
            self._misses = 0
