"""Source maps from original expression spans to emitted CEL.

Diagnostics raised by the downstream orchestrator point at CEL text; the
mappings recorded here let callers translate them back to what the user
wrote.
"""

from __future__ import annotations

import re
import threading
import time
from collections import Counter
from dataclasses import dataclass
from typing import Any

from kubecel.expressions.nodes import Span

__all__ = [
    "SourceLocation",
    "SourceMapEntry",
    "SourceMapBuilder",
    "expression_type_for",
    "extract_reference_paths",
]

_REFERENCE_PATH = re.compile(r"(?:resources|schema)\.[\w.]+")

_EXPRESSION_TYPES = {
    "BinaryExpression": "binary-operation",
    "LogicalExpression": "binary-operation",
    "MemberExpression": "member-access",
    "ConditionalExpression": "conditional",
    "TemplateLiteral": "template-literal",
    "CallExpression": "function-call",
}


def expression_type_for(node_type: str, *, optional: bool = False, nullish: bool = False) -> str:
    """Classify a root node for source-map statistics."""
    if nullish:
        return "nullish-coalescing"
    if optional:
        return "optional-chaining"
    return _EXPRESSION_TYPES.get(node_type, "javascript")


def extract_reference_paths(cel: str) -> list[str]:
    """Return every ``resources.*`` / ``schema.*`` path in ``cel``."""
    return _REFERENCE_PATH.findall(cel)


@dataclass(frozen=True, slots=True)
class SourceLocation:
    line: int
    column: int
    length: int

    @classmethod
    def from_span(cls, span: Span | None, source: str) -> SourceLocation:
        if span is None:
            return cls(line=1, column=0, length=len(source))
        return cls(line=span.line, column=span.column, length=span.length)


@dataclass(frozen=True, slots=True)
class SourceMapEntry:
    """One original-expression to CEL mapping.

    Attributes:
        id: Builder-unique identifier (``mapping_<n>``).
        original: The user's expression text.
        cel: The emitted CEL text.
        location: Where ``original`` sits in the user's source.
        context: Context kind the conversion ran in.
        expression_type: Coarse category of the root node.
        references: ``resources.*`` / ``schema.*`` paths used by ``cel``.
        timestamp: Wall-clock time of creation.
    """

    id: str
    original: str
    cel: str
    location: SourceLocation
    context: str
    expression_type: str = "javascript"
    references: tuple[str, ...] = ()
    timestamp: float = 0.0

    def to_dict(self) -> dict[str, Any]:
        return {
            "id": self.id,
            "original": self.original,
            "cel": self.cel,
            "location": {
                "line": self.location.line,
                "column": self.location.column,
                "length": self.location.length,
            },
            "context": self.context,
            "expression_type": self.expression_type,
            "references": list(self.references),
            "timestamp": self.timestamp,
        }


class SourceMapBuilder:
    """Accumulates :class:`SourceMapEntry` records.

    A builder is usually attached to an :class:`AnalysisContext` for the
    duration of a status-builder pass and shared by every field conversion
    in it, so adding is guarded by a lock.
    """

    def __init__(self) -> None:
        self._entries: list[SourceMapEntry] = []
        self._counter = 0
        self._lock = threading.Lock()

    def add_mapping(
        self,
        original: str,
        cel: str,
        location: SourceLocation,
        context: str,
        expression_type: str = "javascript",
        references: tuple[str, ...] | None = None,
    ) -> SourceMapEntry:
        with self._lock:
            self._counter += 1
            entry = SourceMapEntry(
                id=f"mapping_{self._counter}",
                original=original,
                cel=cel,
                location=location,
                context=context,
                expression_type=expression_type,
                references=(
                    tuple(references)
                    if references is not None
                    else tuple(extract_reference_paths(cel))
                ),
                timestamp=time.time(),
            )
            self._entries.append(entry)
        return entry

    def entries(self) -> list[SourceMapEntry]:
        with self._lock:
            return list(self._entries)

    def get(self, mapping_id: str) -> SourceMapEntry | None:
        return next((e for e in self.entries() if e.id == mapping_id), None)

    def by_context(self, context: str) -> list[SourceMapEntry]:
        return [e for e in self.entries() if e.context == context]

    def with_reference(self, resource_id: str) -> list[SourceMapEntry]:
        return [
            e
            for e in self.entries()
            if any(resource_id in ref for ref in e.references)
        ]

    def find_original(self, cel: str) -> SourceMapEntry | None:
        return next((e for e in self.entries() if e.cel == cel), None)

    def find_by_location(self, line: int, column: int | None = None) -> list[SourceMapEntry]:
        matches = []
        for entry in self.entries():
            if entry.location.line != line:
                continue
            if column is not None:
                start = entry.location.column
                if not start <= column <= start + entry.location.length:
                    continue
            matches.append(entry)
        return matches

    def clear(self) -> None:
        with self._lock:
            self._entries.clear()
            self._counter = 0

    def __len__(self) -> int:
        with self._lock:
            return len(self._entries)

    def export(self) -> dict[str, Any]:
        """JSON-serializable snapshot with per-context and per-type counts."""
        entries = self.entries()
        return {
            "version": "1.0",
            "generator": "kubecel",
            "timestamp": time.time(),
            "entries": [e.to_dict() for e in entries],
            "statistics": {
                "total_mappings": len(entries),
                "context_breakdown": dict(Counter(e.context for e in entries)),
                "expression_type_breakdown": dict(
                    Counter(e.expression_type for e in entries)
                ),
            },
        }
