"""Unit tests for markers, the value model, contexts and source maps."""

from __future__ import annotations

import pytest

from kubecel.expressions.context import AnalysisContext, ContextKind
from kubecel.expressions.errors import ConversionWarning, ErrorKind
from kubecel.expressions.markers import (
    SCHEMA_RESOURCE_ID,
    CelExpression,
    CelType,
    DependencyMarker,
    ValueKind,
    classify_value,
    contains_markers,
    dedupe_markers,
    infer_type,
    iter_markers,
)
from kubecel.expressions.nodes import Span
from kubecel.expressions.source_map import (
    SourceLocation,
    SourceMapBuilder,
    expression_type_for,
    extract_reference_paths,
)


class TestDependencyMarker:
    """Tests for DependencyMarker paths and keys."""

    def test_cel_paths(self) -> None:
        """Resource and schema markers render their canonical CEL spelling."""
        assert DependencyMarker("web", "status.ready").cel_path == "resources.web.status.ready"
        schema = DependencyMarker(SCHEMA_RESOURCE_ID, "spec.name")
        assert schema.is_schema
        assert schema.cel_path == "schema.spec.name"

    def test_from_path(self) -> None:
        """Leading resources. is dropped; schema maps to the reserved id."""
        marker = DependencyMarker.from_path("resources.web.status.readyReplicas")
        assert (marker.resource_id, marker.field_path) == ("web", "status.readyReplicas")
        assert marker.type_hint is CelType.NUMBER
        assert DependencyMarker.from_path("schema.spec.name").resource_id == SCHEMA_RESOURCE_ID

    def test_whole_resource(self) -> None:
        """An empty field path refers to the resource itself."""
        marker = DependencyMarker("web", "")
        assert marker.key == "web"
        assert marker.cel_path == "resources.web"

    def test_from_path_needs_a_field(self) -> None:
        """A bare name is not a reference."""
        with pytest.raises(ValueError, match="needs a resource and a field"):
            DependencyMarker.from_path("web")

    def test_key_ignores_type_hint(self) -> None:
        """Dedupe identity is resource and path only."""
        first = DependencyMarker("web", "spec.replicas", CelType.NUMBER)
        second = DependencyMarker("web", "spec.replicas")
        assert first.key == second.key == str(first)
        assert dedupe_markers([first, second]) == [first]

    @pytest.mark.parametrize(
        ("path", "expected"),
        [
            ("status.readyReplicas", CelType.NUMBER),
            ("spec.template.spec.containers", CelType.LIST),
            ("status.ready", CelType.BOOL),
            ("metadata.labels", CelType.MAP),
            ("status.podIP", CelType.STRING),
        ],
    )
    def test_infer_type(self, path: str, expected: CelType) -> None:
        """The last segment decides the hint."""
        assert infer_type(path) is expected


class TestValueModel:
    """Tests for classification and traversal."""

    @pytest.mark.parametrize(
        ("value", "kind"),
        [
            ("text", ValueKind.PRIMITIVE),
            (None, ValueKind.PRIMITIVE),
            (3.5, ValueKind.PRIMITIVE),
            ([1], ValueKind.SEQUENCE),
            ((1,), ValueKind.SEQUENCE),
            ({"a": 1}, ValueKind.MAPPING),
            (DependencyMarker("a", "b"), ValueKind.MARKER),
            (CelExpression("x"), ValueKind.CEL),
            (object(), ValueKind.PRIMITIVE),
        ],
    )
    def test_classify(self, value: object, kind: ValueKind) -> None:
        """Every value falls into one kind."""
        assert classify_value(value) is kind

    def test_iter_markers_visits_cel_dependencies(self) -> None:
        """Markers inside CEL literals are reported too."""
        ready = DependencyMarker("web", "status.ready")
        ip = DependencyMarker("svc", "status.ip")
        value = {"a": [ready], "b": CelExpression("x", dependencies=(ip,))}
        assert list(iter_markers(value)) == [ready, ip]

    def test_cycles_are_skipped(self) -> None:
        """A self-referencing container does not recurse forever."""
        marker = DependencyMarker("web", "spec")
        loop: list[object] = [marker]
        loop.append(loop)
        assert list(iter_markers(loop)) == [marker]

    def test_depth_bound(self) -> None:
        """Containers past max_depth are not entered."""
        nested = [[[DependencyMarker("web", "spec")]]]
        assert contains_markers(nested, max_depth=2) is False
        assert contains_markers(nested) is True


class TestAnalysisContext:
    """Tests for the per-call context."""

    def test_for_resources(self) -> None:
        """Names are sorted and have no shape."""
        ctx = AnalysisContext.for_resources(["svc", "web"], kind=ContextKind.READINESS)
        assert ctx.resource_names == ("svc", "web")
        assert ctx.has_resource("web")
        assert ctx.available_resources["web"] is None

    def test_record_and_warn_deduplicate(self) -> None:
        """Accumulators keep one entry per key."""
        ctx = AnalysisContext()
        ctx.record(DependencyMarker("web", "spec", CelType.MAP))
        ctx.record(DependencyMarker("web", "spec"))
        warning = ConversionWarning(kind=ErrorKind.REFERENCE, message="m")
        ctx.warn(warning)
        ctx.warn(warning)
        assert len(ctx.dependencies) == 1
        assert len(ctx.warnings) == 1

    def test_fresh_does_not_share_accumulators(self) -> None:
        """fresh() copies inputs and starts with empty lists."""
        ctx = AnalysisContext.for_resources(["web"])
        ctx.record(DependencyMarker("web", "spec"))
        copy = ctx.fresh()
        assert copy.dependencies == []
        copy.record(DependencyMarker("web", "status"))
        assert len(ctx.dependencies) == 1
        assert copy.available_resources is ctx.available_resources

    def test_fingerprint(self) -> None:
        """Kind, factory mode, strict flag and resource names make up the fingerprint."""
        ctx = AnalysisContext.for_resources(["web"])
        assert ctx.cache_fingerprint() == {
            "kind": "status",
            "factory_mode": "kro",
            "strict": False,
            "resources": ["web"],
        }


class TestSourceMap:
    """Tests for source-map recording and lookup."""

    def _builder(self) -> SourceMapBuilder:
        builder = SourceMapBuilder()
        builder.add_mapping(
            "web.status.ready",
            "resources.web.status.ready",
            SourceLocation(line=1, column=0, length=16),
            "status",
            "member-access",
        )
        builder.add_mapping(
            "schema.spec.name",
            "schema.spec.name",
            SourceLocation(line=2, column=4, length=16),
            "resource",
        )
        return builder

    def test_ids_and_references(self) -> None:
        """Ids count up; references are extracted from the CEL."""
        entries = self._builder().entries()
        assert [e.id for e in entries] == ["mapping_1", "mapping_2"]
        assert entries[0].references == ("resources.web.status.ready",)

    def test_lookups(self) -> None:
        """Entries can be found by id, context, reference, CEL and location."""
        builder = self._builder()
        assert builder.get("mapping_2") is not None
        assert builder.get("mapping_9") is None
        assert [e.id for e in builder.by_context("resource")] == ["mapping_2"]
        assert [e.id for e in builder.with_reference("web")] == ["mapping_1"]
        found = builder.find_original("schema.spec.name")
        assert found is not None and found.id == "mapping_2"
        assert [e.id for e in builder.find_by_location(2, 10)] == ["mapping_2"]
        assert builder.find_by_location(2, 30) == []

    def test_export_statistics(self) -> None:
        """export() counts entries per context and expression type."""
        exported = self._builder().export()
        assert exported["generator"] == "kubecel"
        assert exported["statistics"] == {
            "total_mappings": 2,
            "context_breakdown": {"status": 1, "resource": 1},
            "expression_type_breakdown": {"member-access": 1, "javascript": 1},
        }

    def test_clear_resets_ids(self) -> None:
        """clear() empties the builder and restarts numbering."""
        builder = self._builder()
        builder.clear()
        assert len(builder) == 0
        entry = builder.add_mapping("a", "a", SourceLocation(1, 0, 1), "status")
        assert entry.id == "mapping_1"

    def test_location_from_span(self) -> None:
        """Without a span the whole source is covered."""
        assert SourceLocation.from_span(None, "abc") == SourceLocation(1, 0, 3)
        span = Span(start=2, end=5, line=1, column=2)
        assert SourceLocation.from_span(span, "x").length == 3

    def test_expression_types(self) -> None:
        """Nullish and optional flags win over the node type."""
        assert expression_type_for("LogicalExpression", nullish=True) == "nullish-coalescing"
        assert expression_type_for("MemberExpression", optional=True) == "optional-chaining"
        assert expression_type_for("ConditionalExpression") == "conditional"
        assert expression_type_for("Identifier") == "javascript"

    def test_extract_reference_paths(self) -> None:
        """Both resources.* and schema.* paths are found."""
        assert extract_reference_paths("resources.a.b > 0 && schema.c") == [
            "resources.a.b",
            "schema.c",
        ]
