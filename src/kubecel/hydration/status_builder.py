"""Status-builder processing.

A status builder is the user function that maps resources to status fields::

    (schema, resources) => ({
        ready: resources.web.status.readyReplicas > 0,
        url: `http://${resources.svc.status.loadBalancer.ingress[0].ip}`,
        endpoints: { http: schema.spec.hostname },
    })

:class:`StatusBuilderProcessor` parses the source once, converts every
top-level field (nested object literals become dotted keys such as
``endpoints.http``), and plans hydration over the resulting dependencies.
A failing field is reported and skipped; it never aborts the others.
"""

from __future__ import annotations

from dataclasses import replace

from kubecel.expressions.analyzer import ExpressionAnalyzer
from kubecel.expressions.context import AnalysisContext
from kubecel.expressions.errors import (
    ExpressionError,
    ExpressionErrorInfo,
    UnsupportedSyntax,
    ValidationFailure,
)
from kubecel.expressions.markers import CelExpression, DependencyMarker, dedupe_markers
from kubecel.expressions.nodes import (
    ArrowFunctionExpression,
    BlockStatement,
    ExpressionStatement,
    Node,
    ObjectExpression,
    Program,
    ReturnStatement,
    SpreadElement,
    VariableDeclaration,
)
from kubecel.expressions.parser import parse_expression
from kubecel.expressions.results import ConversionResult
from kubecel.expressions.source_map import SourceMapBuilder
from kubecel.hydration.models import HydrationFieldRecord, ProcessedStatusBuilder
from kubecel.hydration.scheduler import HydrationScheduler
from kubecel.logging import get_logger

__all__ = ["StatusBuilderProcessor"]

logger = get_logger(__name__)


class StatusBuilderProcessor:
    """Turn a status-builder source into CEL mappings and a hydration plan.

    Args:
        analyzer: Analyzer used per field; a fresh uncached one when omitted.
        scheduler: Scheduler used for the plan.
    """

    def __init__(
        self,
        analyzer: ExpressionAnalyzer | None = None,
        scheduler: HydrationScheduler | None = None,
    ) -> None:
        self.analyzer = analyzer or ExpressionAnalyzer()
        self.scheduler = scheduler or HydrationScheduler()

    def process(self, source: str, context: AnalysisContext | None = None) -> ProcessedStatusBuilder:
        """Process ``source`` in ``context``.

        Args:
            source: Arrow function returning an object literal, a function
                body ending in ``return {...}``, or a bare object literal.
            context: Resources in scope. A source-map builder is attached
                for the duration of the call when the context has none.

        Returns:
            The processed builder; ``valid`` is False if any field failed or
            the source itself could not be understood.
        """
        context = context or AnalysisContext()
        builder = context.source_map if context.source_map is not None else SourceMapBuilder()
        mark = len(builder)
        ctx = replace(context.fresh(), source_map=builder)

        try:
            obj, preamble = self._status_object(source)
        except ExpressionError as e:
            logger.warning("status_builder_rejected", error=e.message)
            return ProcessedStatusBuilder(
                status_mappings={},
                hydration_plan=self.scheduler.plan([]),
                dependencies={},
                errors=(ExpressionErrorInfo.from_exception(e, source),),
                valid=False,
            )

        mappings: dict[str, CelExpression] = {}
        analysis: dict[str, ConversionResult] = {}
        dependencies: dict[str, tuple[DependencyMarker, ...]] = {}
        errors: list[ExpressionErrorInfo] = []
        records: list[HydrationFieldRecord] = []

        for name, value, error in self._fields(obj, source):
            if error is not None:
                errors.append(ExpressionErrorInfo.from_exception(error, source))
                continue
            try:
                text = _slice(source, value)
            except ValidationFailure as e:
                errors.append(ExpressionErrorInfo.from_exception(e, source))
                continue
            field_source = f"{preamble}return {text}" if preamble else text
            result = self.analyzer.analyze(field_source, ctx)
            analysis[name] = result
            dependencies[name] = result.dependencies
            if result.valid and result.expression is not None:
                mappings[name] = result.expression
            else:
                errors.extend(result.errors)
                logger.debug("status_field_failed", field=name, expression=text)
            records.append(
                self.scheduler.record(name, result.dependencies, optional="?." in text)
            )

        every_marker = dedupe_markers(m for deps in dependencies.values() for m in deps)
        plan = self.scheduler.plan(records)
        logger.debug("status_builder_processed", fields=len(records), errors=len(errors))
        return ProcessedStatusBuilder(
            status_mappings=mappings,
            hydration_plan=plan,
            dependencies=dependencies,
            source_map=tuple(builder.entries()[mark:]),
            errors=tuple(errors),
            valid=not errors,
            field_analysis=analysis,
            resource_references=tuple(m for m in every_marker if not m.is_schema),
            schema_references=tuple(m for m in every_marker if m.is_schema),
        )

    def _status_object(self, source: str) -> tuple[ObjectExpression, str]:
        """Locate the returned object literal and any ``const`` preamble."""
        node = parse_expression(source)
        preamble = ""
        if isinstance(node, ArrowFunctionExpression):
            node = node.body
        if isinstance(node, (BlockStatement, Program)):
            declarations = [s for s in node.body if isinstance(s, VariableDeclaration)]
            preamble = "".join(_declaration_source(source, d) for d in declarations)
            node = _returned(node)
        if isinstance(node, ObjectExpression):
            return node, preamble
        raise ValidationFailure(
            "Status builder must return an object literal", expression=source
        )

    def _fields(
        self, obj: ObjectExpression, source: str, prefix: str = ""
    ) -> list[tuple[str, Node, ExpressionError | None]]:
        fields: list[tuple[str, Node, ExpressionError | None]] = []
        for prop in obj.properties:
            if isinstance(prop, SpreadElement):
                error = UnsupportedSyntax(
                    prop.node_type, source, prop.span, "spread in status objects"
                )
                fields.append((prefix or "<spread>", prop, error))
                continue
            key = prop.key_name
            if key is None:
                error = UnsupportedSyntax(
                    prop.node_type, source, prop.span, "computed status field names"
                )
                fields.append((prefix or "<computed>", prop, error))
                continue
            name = f"{prefix}.{key}" if prefix else key
            if isinstance(prop.value, ObjectExpression):
                fields.extend(self._fields(prop.value, source, name))
            else:
                fields.append((name, prop.value, None))
        return fields


def _returned(node: BlockStatement | Program) -> Node | None:
    result: Node | None = None
    for statement in node.body:
        if isinstance(statement, ReturnStatement):
            return statement.argument
        if isinstance(statement, ExpressionStatement):
            result = statement.expression
    if isinstance(result, ArrowFunctionExpression):
        inner = result.body
        if isinstance(inner, BlockStatement):
            return _returned(inner)
        return inner
    return result


def _slice(source: str, node: Node) -> str:
    if node.span is None:
        raise ValidationFailure("Status field has no source location", expression=source)
    return source[node.span.start : node.span.end]


def _declaration_source(source: str, declaration: VariableDeclaration) -> str:
    text = _slice(source, declaration).rstrip()
    if not text.endswith(";"):
        text += ";"
    return text + "\n"
