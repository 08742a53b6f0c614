"""Two-level cache for parsed trees and conversion results.

Keys combine the expression text with a short hash of the context
fingerprint (kind, factory mode, strict flag, sorted resource names), so
the same text analyzed against a different set of resources, or in strict
mode, is a different entry.

Both stores are ``OrderedDict`` instances kept in LRU order. Admission
evicts from the cold end until the entry-count and byte budgets both fit.
Entries older than the TTL are dropped lazily on read and, when
``cleanup_interval_seconds`` is positive, by a background sweep.

Example:
    >>> cache = ExpressionCache()
    >>> result = cache.get_or_convert(text, context, analyzer.convert)
    >>> cache.stats().hits
    0
"""

from __future__ import annotations

import hashlib
import json
import threading
import time
from collections import OrderedDict
from collections.abc import Callable
from dataclasses import dataclass, field, replace
from typing import Any, Generic, TypeVar

from kubecel.expressions.context import AnalysisContext
from kubecel.expressions.nodes import Node, count_nodes
from kubecel.expressions.results import ConversionResult
from kubecel.expressions.source_map import SourceLocation, SourceMapBuilder, SourceMapEntry
from kubecel.logging import get_logger

__all__ = [
    "CacheOptions",
    "CacheEntry",
    "CacheStats",
    "ExpressionCache",
    "cache_key",
    "estimate_result_size",
]

logger = get_logger(__name__)

T = TypeVar("T")

_BYTES_PER_MB = 1024 * 1024


@dataclass(frozen=True, slots=True)
class CacheOptions:
    """Limits and switches for :class:`ExpressionCache`.

    Attributes:
        max_entries: Entry-count budget per store.
        max_memory_mb: Byte budget per store, in megabytes.
        ttl_seconds: Age after which an entry is never returned.
        cleanup_interval_seconds: Period of the background sweep; 0 disables it.
        enable_ast_cache: Whether parsed trees are cached at all.
        enable_metrics: Whether retrieval timings are recorded.
    """

    max_entries: int = 1000
    max_memory_mb: float = 50
    ttl_seconds: float = 300
    cleanup_interval_seconds: float = 0
    enable_ast_cache: bool = True
    enable_metrics: bool = True

    @property
    def max_memory_bytes(self) -> int:
        return int(self.max_memory_mb * _BYTES_PER_MB)


@dataclass(slots=True)
class CacheEntry(Generic[T]):
    payload: T
    timestamp: float
    size_bytes: int
    access_count: int = 0
    last_accessed: float = 0.0

    def expired(self, now: float, ttl: float) -> bool:
        return now - self.timestamp > ttl


@dataclass(frozen=True, slots=True)
class CacheStats:
    """Snapshot of cache counters."""

    total_requests: int
    hits: int
    misses: int
    hit_ratio: float
    total_memory_usage: int
    max_memory_usage: int
    entry_count: int
    average_retrieval_time_ms: float
    total_retrieval_time_ms: float
    ast_hits: int
    ast_misses: int
    ast_entry_count: int
    ast_memory_usage: int
    total_evictions: int
    last_cleanup_time: float | None

    def to_dict(self) -> dict[str, Any]:
        return {name: getattr(self, name) for name in self.__dataclass_fields__}


@dataclass(slots=True)
class _Counters:
    hits: int = 0
    misses: int = 0
    ast_hits: int = 0
    ast_misses: int = 0
    evictions: int = 0
    retrieval_time_ms: float = 0.0
    retrievals: int = 0
    last_cleanup: float | None = None


@dataclass(slots=True)
class _Store(Generic[T]):
    entries: OrderedDict[str, CacheEntry[T]] = field(default_factory=OrderedDict)
    memory: int = 0

    def remove(self, key: str) -> None:
        entry = self.entries.pop(key, None)
        if entry is not None:
            self.memory -= entry.size_bytes

    def clear(self) -> None:
        self.entries.clear()
        self.memory = 0


def cache_key(text: str, context: AnalysisContext) -> str:
    """``<text>:<first 16 hex chars of sha256(context fingerprint)>``."""
    fingerprint = json.dumps(context.cache_fingerprint(), sort_keys=True)
    digest = hashlib.sha256(fingerprint.encode()).hexdigest()[:16]
    return f"{text}:{digest}"


def estimate_result_size(result: ConversionResult) -> int:
    """Approximate in-memory size of ``result`` in bytes."""
    size = len(result.cel_text or "") * 2
    for marker in result.dependencies:
        size += (len(marker.resource_id) + len(marker.field_path)) * 2 + 50
    size += len(result.source_map) * 100
    size += len(result.errors) * 200
    return size


def _estimate_ast_size(text: str, node: Node) -> int:
    return len(text) * 2 + count_nodes(node) * 64


class ExpressionCache:
    """LRU + TTL cache for :class:`ConversionResult` values and parsed trees.

    All structural mutation happens under one re-entrant lock, so the cache
    can be shared by worker threads. Invalid results are never stored.

    Args:
        options: Limits and switches; defaults apply when omitted.
        clock: Time source returning seconds (injectable for tests).
    """

    def __init__(
        self,
        options: CacheOptions | None = None,
        clock: Callable[[], float] = time.monotonic,
    ) -> None:
        self.options = options or CacheOptions()
        self._clock = clock
        self._lock = threading.RLock()
        self._results: _Store[ConversionResult] = _Store()
        self._asts: _Store[Node] = _Store()
        self._counters = _Counters()
        self._timer: threading.Timer | None = None
        self._destroyed = False
        if self.options.cleanup_interval_seconds > 0:
            self._schedule_cleanup()

    # Results

    def get(self, text: str, context: AnalysisContext) -> ConversionResult | None:
        started = time.perf_counter()
        key = cache_key(text, context)
        with self._lock:
            result = self._lookup(self._results, key)
            if result is None:
                self._counters.misses += 1
            else:
                self._counters.hits += 1
            self._record_timing(started)
        return result

    def set(self, text: str, context: AnalysisContext, result: ConversionResult) -> None:
        if not result.valid:
            return
        key = cache_key(text, context)
        with self._lock:
            self._admit(self._results, key, result, estimate_result_size(result))

    def get_or_convert(
        self,
        text: str,
        context: AnalysisContext,
        convert: Callable[[str, AnalysisContext], ConversionResult],
    ) -> ConversionResult:
        """Return the cached result or compute, store and return a new one.

        ``convert`` runs outside the lock, so two threads missing on the same
        key may both compute; the later store wins. On a hit the cached
        mappings are replayed into ``context.source_map`` when it is set.
        """
        cached = self.get(text, context)
        if cached is not None:
            builder = context.source_map
            if builder is None or cached.expression is None:
                return cached
            replayed = _replay(text, cached, builder, context.kind.value)
            return replace(cached, source_map=replayed)
        result = convert(text, context)
        self.set(text, context, result)
        return result

    # Parsed trees

    def get_ast(self, text: str) -> Node | None:
        if not self.options.enable_ast_cache:
            return None
        with self._lock:
            node = self._lookup(self._asts, text)
            if node is None:
                self._counters.ast_misses += 1
            else:
                self._counters.ast_hits += 1
        return node

    def set_ast(self, text: str, node: Node) -> None:
        if not self.options.enable_ast_cache:
            return
        with self._lock:
            self._admit(self._asts, text, node, _estimate_ast_size(text, node))

    # Maintenance

    def cleanup(self) -> int:
        """Drop expired entries from both stores; returns how many went."""
        now = self._clock()
        ttl = self.options.ttl_seconds
        removed = 0
        with self._lock:
            for store in (self._results, self._asts):
                stale = [k for k, e in store.entries.items() if e.expired(now, ttl)]
                for key in stale:
                    store.remove(key)
                removed += len(stale)
            self._counters.last_cleanup = time.time()
        if removed:
            logger.debug("cache_cleanup", removed=removed)
        return removed

    def clear(self) -> None:
        with self._lock:
            self._results.clear()
            self._asts.clear()
            self._counters = _Counters()

    def destroy(self) -> None:
        """Stop the background sweep and drop everything."""
        with self._lock:
            self._destroyed = True
            if self._timer is not None:
                self._timer.cancel()
                self._timer = None
        self.clear()

    def __len__(self) -> int:
        with self._lock:
            return len(self._results.entries)

    def stats(self) -> CacheStats:
        with self._lock:
            c = self._counters
            total = c.hits + c.misses
            return CacheStats(
                total_requests=total,
                hits=c.hits,
                misses=c.misses,
                hit_ratio=c.hits / total if total else 0.0,
                total_memory_usage=self._results.memory,
                max_memory_usage=self.options.max_memory_bytes,
                entry_count=len(self._results.entries),
                average_retrieval_time_ms=(
                    c.retrieval_time_ms / c.retrievals if c.retrievals else 0.0
                ),
                total_retrieval_time_ms=c.retrieval_time_ms,
                ast_hits=c.ast_hits,
                ast_misses=c.ast_misses,
                ast_entry_count=len(self._asts.entries),
                ast_memory_usage=self._asts.memory,
                total_evictions=c.evictions,
                last_cleanup_time=c.last_cleanup,
            )

    # Internals

    def _lookup(self, store: _Store[T], key: str) -> T | None:
        entry = store.entries.get(key)
        if entry is None:
            return None
        now = self._clock()
        if entry.expired(now, self.options.ttl_seconds):
            store.remove(key)
            return None
        entry.access_count += 1
        entry.last_accessed = now
        store.entries.move_to_end(key)
        return entry.payload

    def _admit(self, store: _Store[T], key: str, payload: T, size: int) -> None:
        store.remove(key)
        budget = self.options.max_memory_bytes
        if size > budget:
            logger.debug("cache_entry_too_large", key=key, size_bytes=size)
            return
        while store.entries and (
            len(store.entries) >= self.options.max_entries
            or store.memory + size > budget
        ):
            evicted_key, evicted = store.entries.popitem(last=False)
            store.memory -= evicted.size_bytes
            self._counters.evictions += 1
            logger.debug("cache_evicted", key=evicted_key, size_bytes=evicted.size_bytes)
        now = self._clock()
        store.entries[key] = CacheEntry(payload, now, size, last_accessed=now)
        store.memory += size

    def _record_timing(self, started: float) -> None:
        if self.options.enable_metrics:
            self._counters.retrieval_time_ms += (time.perf_counter() - started) * 1000
            self._counters.retrievals += 1

    def _schedule_cleanup(self) -> None:
        with self._lock:
            if self._destroyed:
                return
            timer = threading.Timer(self.options.cleanup_interval_seconds, self._run_cleanup)
            timer.daemon = True
            self._timer = timer
            timer.start()

    def _run_cleanup(self) -> None:
        self.cleanup()
        self._schedule_cleanup()


def _replay(
    text: str, result: ConversionResult, builder: SourceMapBuilder, kind: str
) -> tuple[SourceMapEntry, ...]:
    if not result.source_map:
        return (
            builder.add_mapping(
                text,
                result.cel_text or "",
                SourceLocation(line=1, column=0, length=len(text)),
                kind,
            ),
        )
    return tuple(
        builder.add_mapping(
            entry.original,
            entry.cel,
            entry.location,
            entry.context,
            entry.expression_type,
            entry.references,
        )
        for entry in result.source_map
    )
