"""Cached marker detection over structured values."""

from __future__ import annotations

import threading
from dataclasses import dataclass
from typing import Any

from kubecel.expressions.markers import (
    DependencyMarker,
    Value,
    ValueKind,
    classify_value,
    dedupe_markers,
    iter_markers,
)

__all__ = ["ReferenceDetector"]

DEFAULT_DETECTION_DEPTH = 10
DEFAULT_CACHE_ENTRIES = 1000


@dataclass(slots=True)
class _Detection:
    value: Value
    markers: tuple[DependencyMarker, ...]


class ReferenceDetector:
    """Find markers in values, remembering the answer per container.

    Containers are cached by identity (the cached entry keeps the container
    alive, so an id is never reused while cached). Once ``max_entries``
    containers are cached, further containers are scanned but not stored.

    Args:
        max_depth: Containers nested deeper than this are not entered.
        max_entries: Cache capacity.
    """

    def __init__(
        self, max_depth: int = DEFAULT_DETECTION_DEPTH, max_entries: int = DEFAULT_CACHE_ENTRIES
    ) -> None:
        self.max_depth = max_depth
        self.max_entries = max_entries
        self._cache: dict[int, _Detection] = {}
        self._hits = 0
        self._misses = 0
        self._lock = threading.RLock()

    def contains_markers(self, value: Value) -> bool:
        return bool(self.extract_markers(value))

    def extract_markers(self, value: Value) -> tuple[DependencyMarker, ...]:
        """De-duplicated markers reachable from ``value``."""
        kind = classify_value(value)
        if kind is ValueKind.MARKER:
            return (value,)
        if kind is ValueKind.CEL:
            return tuple(dedupe_markers(value.dependencies))
        if kind is ValueKind.PRIMITIVE:
            return ()

        with self._lock:
            cached = self._cache.get(id(value))
            if cached is not None and cached.value is value:
                self._hits += 1
                return cached.markers
            self._misses += 1
            markers = tuple(dedupe_markers(iter_markers(value, self.max_depth)))
            if len(self._cache) < self.max_entries:
                self._cache[id(value)] = _Detection(value, markers)
            return markers

    def cache_stats(self) -> dict[str, Any]:
        with self._lock:
            total = self._hits + self._misses
            return {
                "size": len(self._cache),
                "max_entries": self.max_entries,
                "hits": self._hits,
                "misses": self._misses,
                "hit_ratio": self._hits / total if total else 0.0,
            }

    def clear_cache(self) -> None:
        with self._lock:
            self._cache.clear()
            self._hits = 0
            self._misses = 0
