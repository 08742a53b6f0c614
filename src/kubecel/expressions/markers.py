"""Dependency markers, CEL literals and the closed value model.

A :class:`DependencyMarker` is the tagged value meaning "field ``field_path``
of resource ``resource_id``". Markers are produced by the reference proxy
(outside this package, see :class:`FieldSource`) and consumed by the
compiler as leaves. The reserved id :data:`SCHEMA_RESOURCE_ID` denotes the
input schema instead of a deployed resource.

Values handed to the analyzer are classified into the closed set
:class:`ValueKind` and walked with :class:`ValueVisitor`, which bounds
recursion depth and skips cycles.
"""

from __future__ import annotations

from collections.abc import Iterable, Iterator, Mapping, Sequence, Set
from dataclasses import dataclass
from enum import Enum
from typing import Any, Protocol, TypeAlias, runtime_checkable

__all__ = [
    "SCHEMA_RESOURCE_ID",
    "DEFAULT_MAX_DEPTH",
    "CelType",
    "DependencyMarker",
    "CelExpression",
    "ValueKind",
    "Value",
    "FieldSource",
    "ValueVisitor",
    "classify_value",
    "iter_markers",
    "contains_markers",
    "dedupe_markers",
    "infer_type",
]

SCHEMA_RESOURCE_ID = "__schema__"

DEFAULT_MAX_DEPTH = 32


class CelType(str, Enum):
    """Coarse CEL result type carried as a hint on markers and expressions."""

    STRING = "string"
    NUMBER = "number"
    BOOL = "bool"
    MAP = "map"
    LIST = "list"
    NULL = "null"
    DYN = "dyn"


_TYPE_BY_SEGMENT: dict[str, CelType] = {
    "replicas": CelType.NUMBER,
    "count": CelType.NUMBER,
    "port": CelType.NUMBER,
    "ready": CelType.BOOL,
    "available": CelType.BOOL,
    "enabled": CelType.BOOL,
    "name": CelType.STRING,
    "image": CelType.STRING,
    "namespace": CelType.STRING,
    "labels": CelType.MAP,
    "annotations": CelType.MAP,
    "conditions": CelType.LIST,
    "ingress": CelType.LIST,
    "containers": CelType.LIST,
}


def infer_type(field_path: str) -> CelType:
    """Guess a field's CEL type from the last segment of its path.

    Matching is by substring on the lower-cased segment so that
    ``readyReplicas`` counts as a number and ``containerPort`` as well.
    Unknown fields default to string.
    """
    segment = field_path.rsplit(".", 1)[-1].lower()
    for needle, cel_type in _TYPE_BY_SEGMENT.items():
        if needle in segment:
            return cel_type
    return CelType.STRING


@dataclass(frozen=True, slots=True)
class DependencyMarker:
    """Reference to a field of a resource (or of the input schema).

    Attributes:
        resource_id: Resource name, or ``"__schema__"`` for schema fields.
        field_path: Dotted path inside that resource, e.g. ``status.readyReplicas``.
            Empty when the whole resource is referenced.
        type_hint: Expected CEL type of the field, when known.

    Examples:
        >>> DependencyMarker("deployment", "status.readyReplicas").cel_path
        'resources.deployment.status.readyReplicas'
        >>> DependencyMarker.from_path("schema.spec.name").cel_path
        'schema.spec.name'
    """

    resource_id: str
    field_path: str
    type_hint: CelType | None = None

    @property
    def is_schema(self) -> bool:
        return self.resource_id == SCHEMA_RESOURCE_ID

    @property
    def key(self) -> str:
        """Identity used for de-duplication; ignores the type hint."""
        if not self.field_path:
            return self.resource_id
        return f"{self.resource_id}.{self.field_path}"

    @property
    def cel_path(self) -> str:
        """Canonical CEL spelling of this reference."""
        base = "schema" if self.is_schema else f"resources.{self.resource_id}"
        return f"{base}.{self.field_path}" if self.field_path else base

    @classmethod
    def from_path(cls, path: str, type_hint: CelType | None = None) -> DependencyMarker:
        """Build a marker from ``resource.field...`` or ``schema.field...``.

        A leading ``resources.`` segment is accepted and dropped.
        """
        parts = path.split(".")
        if parts[0] == "resources" and len(parts) > 2:
            parts = parts[1:]
        if len(parts) < 2:
            raise ValueError(f"Reference path needs a resource and a field: {path!r}")
        head, rest = parts[0], ".".join(parts[1:])
        resource_id = SCHEMA_RESOURCE_ID if head == "schema" else head
        return cls(resource_id, rest, type_hint or infer_type(rest))

    def __str__(self) -> str:
        return self.key


@dataclass(frozen=True, slots=True)
class CelExpression:
    """CEL text produced by the converter.

    Attributes:
        text: The CEL source.
        type_hint: Expected result type, when known.
        dependencies: Markers the text refers to (set when the literal is
            embedded in a larger value and must still report its references).
    """

    text: str
    type_hint: CelType | None = None
    dependencies: tuple[DependencyMarker, ...] = ()

    def __str__(self) -> str:
        return self.text


class ValueKind(str, Enum):
    """Discriminant of the closed value model."""

    PRIMITIVE = "primitive"
    SEQUENCE = "sequence"
    MAPPING = "mapping"
    MARKER = "marker"
    CEL = "cel"


Value: TypeAlias = Any


def classify_value(value: Value) -> ValueKind:
    """Return the :class:`ValueKind` of ``value``.

    Strings and bytes are primitives even though they are sequences; any
    object outside the model is treated as an opaque primitive.
    """
    if isinstance(value, DependencyMarker):
        return ValueKind.MARKER
    if isinstance(value, CelExpression):
        return ValueKind.CEL
    if value is None or isinstance(value, (str, bytes, bool, int, float)):
        return ValueKind.PRIMITIVE
    if isinstance(value, Mapping):
        return ValueKind.MAPPING
    if isinstance(value, (Sequence, Set)):
        return ValueKind.SEQUENCE
    return ValueKind.PRIMITIVE


@runtime_checkable
class FieldSource(Protocol):
    """Capability offered by the reference proxy.

    ``get_field("status.readyReplicas")`` returns either a concrete value or a
    :class:`DependencyMarker` standing in for a value only known in-cluster.
    """

    def get_field(self, path: str) -> Value | DependencyMarker: ...


class ValueVisitor:
    """Depth-bounded, cycle-safe walk over the closed value model.

    Subclasses override the ``visit_*`` hooks they care about. Containers
    deeper than ``max_depth`` are not entered and the ``truncated`` flag is
    set instead; a container already on the current path is skipped.
    """

    def __init__(self, max_depth: int = DEFAULT_MAX_DEPTH) -> None:
        self.max_depth = max_depth
        self.truncated = False
        self._active: set[int] = set()

    def visit(self, value: Value, depth: int = 0) -> None:
        kind = classify_value(value)
        if kind is ValueKind.MARKER:
            self.visit_marker(value)
        elif kind is ValueKind.CEL:
            self.visit_cel(value)
        elif kind is ValueKind.PRIMITIVE:
            self.visit_primitive(value)
        else:
            self._visit_container(value, kind, depth)

    def _visit_container(self, value: Value, kind: ValueKind, depth: int) -> None:
        if depth >= self.max_depth:
            self.truncated = True
            return
        ident = id(value)
        if ident in self._active:
            return
        self._active.add(ident)
        try:
            if kind is ValueKind.MAPPING:
                for item in value.values():
                    self.visit(item, depth + 1)
            else:
                for item in value:
                    self.visit(item, depth + 1)
        finally:
            self._active.discard(ident)

    def visit_marker(self, marker: DependencyMarker) -> None:
        pass

    def visit_cel(self, cel: CelExpression) -> None:
        for marker in cel.dependencies:
            self.visit_marker(marker)

    def visit_primitive(self, value: Value) -> None:
        pass


class _MarkerCollector(ValueVisitor):
    def __init__(self, max_depth: int) -> None:
        super().__init__(max_depth)
        self.found: list[DependencyMarker] = []

    def visit_marker(self, marker: DependencyMarker) -> None:
        self.found.append(marker)


def iter_markers(
    value: Value, max_depth: int = DEFAULT_MAX_DEPTH
) -> Iterator[DependencyMarker]:
    """Yield every marker reachable from ``value`` in visit order."""
    collector = _MarkerCollector(max_depth)
    collector.visit(value)
    yield from collector.found


def contains_markers(value: Value, max_depth: int = DEFAULT_MAX_DEPTH) -> bool:
    return next(iter_markers(value, max_depth), None) is not None


def dedupe_markers(markers: Iterable[DependencyMarker]) -> list[DependencyMarker]:
    """Drop repeats by ``key`` while keeping first-seen order."""
    seen: set[str] = set()
    unique: list[DependencyMarker] = []
    for marker in markers:
        if marker.key not in seen:
            seen.add(marker.key)
            unique.append(marker)
    return unique
