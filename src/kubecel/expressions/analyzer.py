"""Analyzer facade: parse, convert, extract and cache in one call.

:class:`ExpressionAnalyzer` is the entry point used by the hydration and
orchestration layers and by the CLI. It never raises for bad input; every
outcome is a :class:`ConversionResult`.

Failure handling:

1. Parse errors and unsupported syntax fall back to pattern extraction
   (unless the context is strict). When a fallback rewrite applies, the
   result is valid and carries a warning; otherwise it is invalid but still
   lists the dependencies found by pattern.
2. Validation failures (malformed templates, empty programs) are fatal.
3. Unknown references are warnings, never errors.
"""

from __future__ import annotations

from collections.abc import Mapping, Sequence, Set

from kubecel.expressions.cache import ExpressionCache
from kubecel.expressions.context import AnalysisContext
from kubecel.expressions.converter import CelConverter, format_string
from kubecel.expressions.errors import (
    ConversionWarning,
    ExpressionError,
    ParseFailure,
    UnsupportedSyntax,
    ValidationFailure,
)
from kubecel.expressions.extractor import (
    extract_from_text,
    extract_from_value,
    has_references,
    rewrite_fallback,
)
from kubecel.expressions.markers import (
    DEFAULT_MAX_DEPTH,
    CelExpression,
    CelType,
    DependencyMarker,
    Value,
    ValueKind,
    classify_value,
    contains_markers,
)
from kubecel.expressions.nodes import Node
from kubecel.expressions.parser import parse_expression
from kubecel.expressions.results import ConversionResult
from kubecel.logging import get_logger

__all__ = ["ExpressionAnalyzer"]

logger = get_logger(__name__)


class ExpressionAnalyzer:
    """Convert expressions and values to CEL with dependency tracking.

    Args:
        cache: Optional shared cache. When given, results of valid
            conversions and parsed trees are memoized in it.

    Example:
        >>> analyzer = ExpressionAnalyzer()
        >>> ctx = AnalysisContext.for_resources(["deployment"])
        >>> analyzer.analyze("deployment.status.readyReplicas > 0", ctx).cel_text
        'resources.deployment.status.readyReplicas > 0'
    """

    def __init__(self, cache: ExpressionCache | None = None) -> None:
        self.cache = cache

    def analyze(self, text: str, context: AnalysisContext | None = None) -> ConversionResult:
        """Analyze expression text, consulting the cache first when present."""
        context = context or AnalysisContext()
        if self.cache is None:
            return self.convert(text, context)
        return self.cache.get_or_convert(text, context, self.convert)

    def convert(self, text: str, context: AnalysisContext) -> ConversionResult:
        """Analyze ``text`` without touching the result cache."""
        ctx = context.fresh()
        mark = len(ctx.source_map) if ctx.source_map is not None else 0
        try:
            node = self.parse(text)
            expression = CelConverter(ctx, text).convert(node)
        except (ParseFailure, UnsupportedSyntax) as e:
            return self._fallback(text, ctx, e)
        except ValidationFailure as e:
            logger.debug("conversion_invalid", expression=text, error=str(e))
            return ConversionResult.failure(e, text, ctx.dependencies, ctx.warnings)
        except ExpressionError as e:
            return ConversionResult.failure(e, text, ctx.dependencies, ctx.warnings)

        entries = ctx.source_map.entries()[mark:] if ctx.source_map is not None else []
        logger.debug(
            "expression_converted",
            expression=text,
            cel=expression.text,
            dependencies=len(ctx.dependencies),
        )
        return ConversionResult.success(expression, ctx.dependencies, ctx.warnings, entries)

    def parse(self, text: str) -> Node:
        """Parse ``text``, reusing a cached tree when available."""
        if self.cache is not None:
            cached = self.cache.get_ast(text)
            if cached is not None:
                return cached
        node = parse_expression(text)
        if self.cache is not None:
            self.cache.set_ast(text, node)
        return node

    def _fallback(
        self, text: str, ctx: AnalysisContext, error: ParseFailure | UnsupportedSyntax
    ) -> ConversionResult:
        if ctx.strict:
            return ConversionResult.failure(error, text, ctx.dependencies, ctx.warnings)

        names = ctx.resource_names
        dependencies = [*ctx.dependencies, *extract_from_text(text, names)]
        rewritten = rewrite_fallback(text, names)
        logger.info(
            "conversion_fallback",
            expression=text,
            error_kind=error.kind.value,
            rewritten=rewritten is not None,
        )
        if rewritten is None:
            return ConversionResult.failure(error, text, dependencies, ctx.warnings)

        warning = ConversionWarning(
            kind=error.kind,
            message=f"Converted by pattern fallback: {error.message}",
        )
        expression = CelExpression(rewritten, CelType.DYN, tuple(dependencies))
        return ConversionResult.success(expression, dependencies, [*ctx.warnings, warning])

    # Values

    def analyze_value(self, value: Value, context: AnalysisContext | None = None) -> ConversionResult:
        """Analyze an arbitrary value from the closed value model.

        Strings with references are analyzed as expressions, markers become
        their canonical path, CEL literals pass through, and containers that
        hold markers are rendered as CEL list/map literals. Anything without
        references is static.
        """
        context = context or AnalysisContext()
        kind = classify_value(value)
        if kind is ValueKind.MARKER:
            return ConversionResult.success(
                CelExpression(value.cel_path, value.type_hint, (value,)), [value]
            )
        if kind is ValueKind.CEL:
            return ConversionResult.success(value, value.dependencies)
        if isinstance(value, str):
            if not self.requires_conversion(value, context):
                return ConversionResult.static()
            return self.analyze(value, context)
        if kind is ValueKind.PRIMITIVE:
            return ConversionResult.static()

        dependencies = extract_from_value(value)
        if not dependencies:
            return ConversionResult.static()
        try:
            text = _render_value(value, 0, set())
        except ValidationFailure as e:
            return ConversionResult.failure(e, dependencies=dependencies)
        cel_type = CelType.MAP if kind is ValueKind.MAPPING else CelType.LIST
        return ConversionResult.success(
            CelExpression(text, cel_type, tuple(dependencies)), dependencies
        )

    def requires_conversion(self, value: Value, context: AnalysisContext | None = None) -> bool:
        """Cheap check: does ``value`` reference anything needing CEL?"""
        kind = classify_value(value)
        if kind in (ValueKind.MARKER, ValueKind.CEL):
            return True
        if isinstance(value, str):
            names = context.resource_names if context is not None else ()
            return "${" in value or has_references(value, names)
        if kind is ValueKind.PRIMITIVE:
            return False
        return contains_markers(value)


def _render_value(value: Value, depth: int, active: set[int]) -> str:
    if depth > DEFAULT_MAX_DEPTH:
        raise ValidationFailure(f"Value nesting exceeds {DEFAULT_MAX_DEPTH} levels")
    if isinstance(value, DependencyMarker):
        return value.cel_path
    if isinstance(value, CelExpression):
        return value.text
    if value is None:
        return "null"
    if isinstance(value, bool):
        return "true" if value else "false"
    if isinstance(value, (int, float)):
        return repr(value)
    if isinstance(value, str):
        return format_string(value)
    if isinstance(value, bytes):
        return format_string(value.decode("utf-8", errors="replace"))

    ident = id(value)
    if ident in active:
        raise ValidationFailure("Value contains a reference cycle")
    active.add(ident)
    try:
        if isinstance(value, Mapping):
            items = (
                f"{format_string(str(k))}: {_render_value(v, depth + 1, active)}"
                for k, v in value.items()
            )
            return f"{{{', '.join(items)}}}"
        if isinstance(value, (Sequence, Set)):
            return f"[{', '.join(_render_value(v, depth + 1, active) for v in value)}]"
    finally:
        active.discard(ident)
    return format_string(str(value))
