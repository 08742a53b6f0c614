"""Unit tests for the ExpressionAnalyzer facade."""

from __future__ import annotations

from kubecel.expressions.analyzer import ExpressionAnalyzer
from kubecel.expressions.cache import ExpressionCache
from kubecel.expressions.context import AnalysisContext
from kubecel.expressions.errors import ErrorKind
from kubecel.expressions.markers import CelExpression, CelType, DependencyMarker
from kubecel.expressions.source_map import SourceMapBuilder


class TestAnalyze:
    """Test text analysis."""

    def test_successful_conversion(self, web_context: AnalysisContext) -> None:
        """Valid input yields CEL and dependencies."""
        result = ExpressionAnalyzer().analyze("web.status.readyReplicas > 0", web_context)
        assert result.valid
        assert result.cel_text == "resources.web.status.readyReplicas > 0"
        assert [d.key for d in result.dependencies] == ["web.status.readyReplicas"]
        assert result.errors == ()

    def test_caller_context_untouched(self, web_context: AnalysisContext) -> None:
        """Accumulators of the caller's context stay empty."""
        ExpressionAnalyzer().analyze("web.status.readyReplicas", web_context)
        assert web_context.dependencies == []

    def test_parse_error_is_result_not_exception(self) -> None:
        """Syntax errors come back as an invalid result."""
        result = ExpressionAnalyzer().analyze("a +")
        assert not result.valid
        assert result.errors[0].kind is ErrorKind.PARSE
        assert result.errors[0].line == 1

    def test_unsupported_falls_back_with_warning(self, web_context: AnalysisContext) -> None:
        """A rewritable expression is rescued by the pattern fallback."""
        result = ExpressionAnalyzer().analyze("web?.status?.replicas ?? x.y()", web_context)
        assert result.valid
        assert result.cel_text == (
            "resources.web?.status?.replicas != null ? resources.web?.status?.replicas : x.y()"
        )
        assert result.warnings[-1].message.startswith("Converted by pattern fallback:")
        assert [d.key for d in result.dependencies] == ["web.status.replicas"]

    def test_strict_disables_fallback(self) -> None:
        """Strict contexts report unsupported syntax as an error."""
        ctx = AnalysisContext.for_resources(["web"], strict=True)
        result = ExpressionAnalyzer().analyze("web?.status?.replicas ?? x.y()", ctx)
        assert not result.valid
        assert result.errors[0].kind is ErrorKind.UNSUPPORTED

    def test_failed_fallback_keeps_dependencies(self, web_context: AnalysisContext) -> None:
        """When nothing can be rewritten the dependencies are still reported."""
        result = ExpressionAnalyzer().analyze("web.status.foo()", web_context)
        assert not result.valid
        assert result.errors[0].kind is ErrorKind.UNSUPPORTED
        assert [d.key for d in result.dependencies] == ["web.status.foo"]

    def test_validation_failure_is_fatal(self, web_context: AnalysisContext) -> None:
        """Malformed templates are not rescued."""
        result = ExpressionAnalyzer().analyze("`${web.status`", web_context)
        assert not result.valid
        assert result.errors[0].kind is ErrorKind.VALIDATION

    def test_unknown_resource_is_warning(self) -> None:
        """Unknown references keep the result valid."""
        result = ExpressionAnalyzer().analyze("db.status.endpoint")
        assert result.valid
        assert result.warnings[0].kind is ErrorKind.REFERENCE

    def test_cache_is_consulted(self, web_context: AnalysisContext) -> None:
        """A second identical analysis is a cache hit."""
        cache = ExpressionCache()
        analyzer = ExpressionAnalyzer(cache)
        first = analyzer.analyze("web.spec.replicas", web_context)
        second = analyzer.analyze("web.spec.replicas", web_context)
        assert first == second
        assert cache.stats().hits == 1
        assert cache.stats().ast_entry_count == 1

    def test_source_map_entry_recorded(self) -> None:
        """A context with a builder gets one mapping per conversion."""
        builder = SourceMapBuilder()
        ctx = AnalysisContext.for_resources(["web"], source_map=builder)
        result = ExpressionAnalyzer().analyze("web.status.ready", ctx)
        assert len(builder) == 1
        assert result.source_map[0].cel == "resources.web.status.ready"
        assert result.source_map[0].references == ("resources.web.status.ready",)

    def test_cache_hit_replays_source_map(self) -> None:
        """A cached result still records a mapping in the caller's builder."""
        analyzer = ExpressionAnalyzer(ExpressionCache())
        analyzer.analyze("web.status.ready", AnalysisContext.for_resources(["web"]))
        builder = SourceMapBuilder()
        ctx = AnalysisContext.for_resources(["web"], source_map=builder)
        result = analyzer.analyze("web.status.ready", ctx)
        assert len(builder) == 1
        assert result.source_map == tuple(builder.entries())
        assert builder.entries()[0].cel == "resources.web.status.ready"

    def test_shared_cache_honours_strict(self, web_context: AnalysisContext) -> None:
        """A lenient fallback result is not served to a strict caller."""
        analyzer = ExpressionAnalyzer(ExpressionCache())
        text = "web?.status?.replicas ?? x.y()"
        assert analyzer.analyze(text, web_context).valid
        strict = AnalysisContext.for_resources(["web", "svc"], strict=True)
        result = analyzer.analyze(text, strict)
        assert not result.valid
        assert result.errors[0].kind is ErrorKind.UNSUPPORTED

    def test_json_shaped_template(self, web_context: AnalysisContext) -> None:
        """Braces in template text are literal characters."""
        result = ExpressionAnalyzer().analyze('`{"host": "${svc.status.ip}"}`', web_context)
        assert result.valid
        assert result.cel_text == '{"host": "${resources.svc.status.ip}"}'
        assert [d.key for d in result.dependencies] == ["svc.status.ip"]

    def test_deterministic_output(self, web_context: AnalysisContext) -> None:
        """The same text and context give identical CEL and dependency order."""
        text = "svc.status.ip != null && web.status.readyReplicas > web.spec.replicas - 1"
        first = ExpressionAnalyzer().analyze(text, web_context)
        second = ExpressionAnalyzer().analyze(text, web_context)
        assert first.cel_text == second.cel_text
        assert {d.key for d in first.dependencies} == {
            "svc.status.ip",
            "web.status.readyReplicas",
            "web.spec.replicas",
        }
        assert first.dependencies == second.dependencies


class TestAnalyzeValue:
    """Test analysis of structured values."""

    def test_marker_value(self) -> None:
        """A marker becomes its canonical path."""
        marker = DependencyMarker("web", "status.readyReplicas")
        result = ExpressionAnalyzer().analyze_value(marker)
        assert result.cel_text == "resources.web.status.readyReplicas"
        assert result.dependencies == (marker,)

    def test_cel_literal_passthrough(self) -> None:
        """CEL literals are returned unchanged."""
        cel = CelExpression("size(resources.web.spec.containers)", CelType.NUMBER)
        assert ExpressionAnalyzer().analyze_value(cel).cel_text == cel.text

    def test_plain_string_is_static(self) -> None:
        """Strings without references need no conversion."""
        result = ExpressionAnalyzer().analyze_value("hello")
        assert result.valid
        assert result.is_static
        assert result.expression is None

    def test_mapping_with_marker_rendered(self) -> None:
        """Containers holding markers become CEL map literals."""
        marker = DependencyMarker("web", "spec.replicas")
        result = ExpressionAnalyzer().analyze_value({"replicas": marker, "name": "web"})
        assert result.cel_text == '{"replicas": resources.web.spec.replicas, "name": "web"}'
        assert result.expression is not None
        assert result.expression.type_hint is CelType.MAP

    def test_mapping_without_markers_is_static(self) -> None:
        """Containers of primitives are static."""
        assert ExpressionAnalyzer().analyze_value({"a": [1, 2]}).is_static

    def test_requires_conversion(self, web_context: AnalysisContext) -> None:
        """The cheap check looks for references and template holes."""
        analyzer = ExpressionAnalyzer()
        assert analyzer.requires_conversion("hello", web_context) is False
        assert analyzer.requires_conversion("${x}", web_context) is True
        assert analyzer.requires_conversion("web.spec.replicas", web_context) is True
        assert analyzer.requires_conversion(42) is False
        assert analyzer.requires_conversion([DependencyMarker("web", "spec")]) is True
