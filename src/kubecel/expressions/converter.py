"""AST to CEL conversion.

:class:`CelConverter` walks a node tree depth-first, left to right, and
assembles CEL text bottom-up. Each node is emitted as an :class:`Emitted`
record so a parent can decide about parentheses (from the child's text) and
about truthiness guards (from the child's ``marker``/``boolean`` flags).

Member chains rooted at a known resource or at ``schema`` are flattened into
a dotted path, recorded on the context as :class:`DependencyMarker` values
and re-emitted in canonical form::

    deployment.status.readyReplicas  ->  resources.deployment.status.readyReplicas
    schema.spec.name                 ->  schema.spec.name

Example:
    >>> from kubecel.expressions.context import AnalysisContext
    >>> ctx = AnalysisContext.for_resources(["deployment"])
    >>> convert_expression("deployment.status.readyReplicas > 0", ctx).text
    'resources.deployment.status.readyReplicas > 0'
"""

from __future__ import annotations

import re
from collections.abc import Iterator
from dataclasses import dataclass

from kubecel.expressions.calls import (
    GLOBAL_FUNCTIONS,
    MATH_FUNCTIONS,
    METHODS,
    Emitted,
    FunctionSpec,
    arity_matches,
)
from kubecel.expressions.context import AnalysisContext
from kubecel.expressions.errors import (
    ConversionWarning,
    ReferenceResolutionFailure,
    UnsupportedSyntax,
    ValidationFailure,
)
from kubecel.expressions.markers import (
    SCHEMA_RESOURCE_ID,
    CelExpression,
    CelType,
    DependencyMarker,
    infer_type,
)
from kubecel.expressions.nodes import (
    ArrayExpression,
    ArrowFunctionExpression,
    BinaryExpression,
    CallExpression,
    ConditionalExpression,
    ExpressionStatement,
    Identifier,
    Literal,
    LogicalExpression,
    MemberExpression,
    Node,
    ObjectExpression,
    Program,
    Property,
    ReturnStatement,
    SpreadElement,
    TemplateLiteral,
    UnaryExpression,
    VariableDeclaration,
)
from kubecel.expressions.parser import parse_expression
from kubecel.expressions.precedence import (
    TERNARY_PRECEDENCE,
    expression_precedence,
    needs_parentheses,
    wrap_branch,
    wrap_if_compound,
    wrap_operand,
)
from kubecel.expressions.source_map import SourceLocation, expression_type_for
from kubecel.logging import get_logger

__all__ = ["CelConverter", "convert_expression", "format_string"]

logger = get_logger(__name__)

_IDENTIFIER = re.compile(r"^[A-Za-z_$][A-Za-z0-9_$]*$")

_BINARY_OPERATORS: dict[str, str] = {
    "===": "==",
    "!==": "!=",
    "==": "==",
    "!=": "!=",
    "<": "<",
    "<=": "<=",
    ">": ">",
    ">=": ">=",
    "+": "+",
    "-": "-",
    "*": "*",
    "/": "/",
    "%": "%",
}

_COMPARISONS = frozenset({"==", "!=", "<", "<=", ">", ">="})


def format_string(value: str) -> str:
    """Render ``value`` as a double-quoted CEL string literal."""
    escaped = (
        value.replace("\\", "\\\\")
        .replace('"', '\\"')
        .replace("\n", "\\n")
        .replace("\r", "\\r")
        .replace("\t", "\\t")
    )
    return f'"{escaped}"'


def _format_number(raw: str) -> str:
    if raw.startswith("."):
        return f"0{raw}"
    return raw


def _alternate(text: str) -> str:
    if expression_precedence(text) <= TERNARY_PRECEDENCE:
        return f"({text})"
    return text


def _guard_operand(text: str) -> str:
    # CEL comparisons share one precedence level and do not chain
    if needs_parentheses(text, "<", right=True):
        return f"({text})"
    return text


def _falsy_guard(text: str) -> str:
    operand = _guard_operand(text)
    return f'{operand} != null && {operand} != "" && {operand} != false && {operand} != 0'


def _null_guard(text: str) -> str:
    return f"{_guard_operand(text)} != null"


def _prefers_null_guard(value: Emitted) -> bool:
    return value.marker or "?" in value.text or "!= null" in value.text


@dataclass(frozen=True, slots=True)
class _Segment:
    """One link of a flattened member chain.

    ``name`` is the plain path spelling (``status``, ``[0]``) and ``text``
    the CEL spelling including the joiner (``.status``, ``?.status``, ``[0]``).
    """

    name: str
    text: str


class CelConverter:
    """Convert one parsed expression into CEL.

    A converter is bound to a single :class:`AnalysisContext` whose
    accumulators receive every dependency marker and warning produced while
    emitting. It is cheap to create and not meant to be reused across
    top-level conversions.

    Args:
        context: Context describing resources in scope; mutated in place.
        source: The original expression text, used for diagnostics and the
            source map.
    """

    def __init__(self, context: AnalysisContext, source: str = "") -> None:
        self._context = context
        self._source = source
        self._locals: list[str] = []
        self._bindings: dict[str, Emitted] = {}

    @property
    def context(self) -> AnalysisContext:
        return self._context

    def convert(self, node: Node) -> CelExpression:
        """Emit ``node`` and return the finished CEL expression.

        Raises:
            UnsupportedSyntax: For nodes, callees or arities with no CEL form.
            ValidationFailure: For programs without a result expression.
        """
        emitted = self.emit(node)
        if self._context.source_map is not None:
            self._context.source_map.add_mapping(
                original=self._source,
                cel=emitted.text,
                location=SourceLocation.from_span(node.span, self._source),
                context=self._context.kind.value,
                expression_type=expression_type_for(
                    node.node_type,
                    optional="?." in self._source,
                    nullish="??" in self._source,
                ),
            )
        return CelExpression(
            emitted.text,
            emitted.type_hint,
            dependencies=tuple(self._context.dependencies),
        )

    # Dispatch

    def emit(self, node: Node) -> Emitted:
        if isinstance(node, Program):
            return self._program(node)
        if isinstance(node, Identifier):
            return self._identifier(node)
        if isinstance(node, Literal):
            return self._literal(node)
        if isinstance(node, MemberExpression):
            return self._member(node)
        if isinstance(node, CallExpression):
            return self._call(node)
        if isinstance(node, BinaryExpression):
            return self._binary(node)
        if isinstance(node, LogicalExpression):
            return self._logical(node)
        if isinstance(node, ConditionalExpression):
            return self._conditional(node)
        if isinstance(node, UnaryExpression):
            return self._unary(node)
        if isinstance(node, TemplateLiteral):
            return self._template(node)
        if isinstance(node, ArrayExpression):
            return self._array(node)
        if isinstance(node, ObjectExpression):
            return self._object(node)
        if isinstance(node, ArrowFunctionExpression):
            raise self._unsupported(node, "arrow functions are only supported as method callbacks")
        raise self._unsupported(node)

    def emit_callback(self, node: Node, method: str) -> tuple[str, Emitted]:
        """Emit a single-parameter arrow function passed to ``method``.

        The parameter is a local binding while the body is emitted, so it is
        written verbatim and never resolved as a resource.
        """
        if not isinstance(node, ArrowFunctionExpression):
            raise self._unsupported(node, f"{method}() expects an arrow function callback")
        if len(node.params) != 1:
            raise self._unsupported(
                node, f"{method}() callbacks must take exactly one parameter"
            )
        body = node.expression_body
        if body is None:
            raise self._unsupported(
                node, f"{method}() callbacks must return a single expression"
            )
        param = node.params[0]
        self._locals.append(param)
        try:
            emitted = self.emit(body)
        finally:
            self._locals.pop()
        return param, emitted

    def _unsupported(self, node: Node, detail: str | None = None) -> UnsupportedSyntax:
        return UnsupportedSyntax(
            node.node_type,
            expression=self._source or None,
            span=node.span,
            detail=detail,
        )

    # Statements

    def _program(self, node: Program) -> Emitted:
        result: Node | None = None
        for statement in node.body:
            if isinstance(statement, VariableDeclaration):
                value = self.emit(statement.init)
                self._bindings[statement.name] = Emitted(
                    wrap_if_compound(value.text),
                    value.type_hint,
                    marker=value.marker,
                    boolean=value.boolean,
                )
            elif isinstance(statement, ReturnStatement):
                result = statement.argument
                break
            elif isinstance(statement, ExpressionStatement):
                result = statement.expression
        if result is None:
            raise ValidationFailure(
                "Statement input must end with a return or an expression",
                expression=self._source,
            )
        return self.emit(result)

    # Leaves

    def _identifier(self, node: Identifier) -> Emitted:
        name = node.name
        if name in self._locals:
            return Emitted(name)
        if name in self._bindings:
            return self._bindings[name]
        if self._context.has_resource(name):
            marker = DependencyMarker(name, "", CelType.MAP)
            self._context.record(marker)
            return Emitted(marker.cel_path, CelType.MAP, marker=True)
        return Emitted(name)

    def _literal(self, node: Literal) -> Emitted:
        value = node.value
        if value is None:
            return Emitted("null", CelType.NULL)
        if isinstance(value, bool):
            return Emitted("true" if value else "false", CelType.BOOL, boolean=True)
        if isinstance(value, str):
            return Emitted(format_string(value), CelType.STRING)
        return Emitted(_format_number(node.raw), CelType.NUMBER)

    def _template(self, node: TemplateLiteral) -> Emitted:
        if not node.expressions:
            return Emitted(format_string(node.quasis[0]), CelType.STRING)
        parts = [node.quasis[0]]
        for expression, quasi in zip(node.expressions, node.quasis[1:]):
            parts.append(f"${{{self.emit(expression).text}}}")
            parts.append(quasi)
        return Emitted("".join(parts), CelType.STRING)

    def _array(self, node: ArrayExpression) -> Emitted:
        items = []
        for element in node.elements:
            if isinstance(element, SpreadElement):
                raise self._unsupported(element, "spread in array literals")
            items.append(self.emit(element).text)
        return Emitted(f"[{', '.join(items)}]", CelType.LIST)

    def _object(self, node: ObjectExpression) -> Emitted:
        entries = []
        for prop in node.properties:
            if isinstance(prop, SpreadElement):
                raise self._unsupported(prop, "spread in object literals")
            entries.append(f"{self._property_key(prop)}: {self.emit(prop.value).text}")
        return Emitted(f"{{{', '.join(entries)}}}", CelType.MAP)

    def _property_key(self, prop: Property) -> str:
        name = prop.key_name
        if name is not None:
            return format_string(name)
        return self.emit(prop.key).text

    # Member access

    def _flatten(self, node: Node) -> tuple[str, list[_Segment]] | None:
        """Split a static member chain into its root name and segments.

        Returns ``None`` when the chain contains a call, a non-literal
        computed key or a ``.length`` access.
        """
        segments: list[_Segment] = []
        current = node
        while isinstance(current, MemberExpression):
            segment = self._segment(current)
            if segment is None:
                return None
            segments.append(segment)
            current = current.object
        if not isinstance(current, Identifier):
            return None
        segments.reverse()
        return current.name, segments

    def _segment(self, node: MemberExpression) -> _Segment | None:
        prop = node.property
        if not node.computed:
            if not isinstance(prop, Identifier) or prop.name == "length":
                return None
            joiner = "?." if node.optional else "."
            return _Segment(prop.name, f"{joiner}{prop.name}")
        if not isinstance(prop, Literal):
            return None
        if isinstance(prop.value, str) and _IDENTIFIER.match(prop.value):
            joiner = "?." if node.optional else "."
            return _Segment(prop.value, f"{joiner}{prop.value}")
        if isinstance(prop.value, int) and not isinstance(prop.value, bool):
            index = f"[{prop.value}]"
            return _Segment(index, f"?{index}" if node.optional else index)
        return None

    def _member(self, node: MemberExpression) -> Emitted:
        prop = node.property
        if not node.computed and isinstance(prop, Identifier) and prop.name == "length":
            base = self.emit(node.object)
            return Emitted(f"size({base.text})", CelType.NUMBER)

        flattened = self._flatten(node)
        if flattened is not None:
            root, segments = flattened
            return self._reference(root, segments)

        base = wrap_if_compound(self.emit(node.object).text)
        if node.computed:
            key = self.emit(prop).text
            opener = "?[" if node.optional else "["
            return Emitted(f"{base}{opener}{key}]")
        joiner = "?." if node.optional else "."
        name = prop.name if isinstance(prop, Identifier) else self.emit(prop).text
        return Emitted(f"{base}{joiner}{name}")

    def _reference(self, root: str, segments: list[_Segment]) -> Emitted:
        """Resolve a flattened chain to a marker or emit it verbatim."""
        tail_text = "".join(s.text for s in segments)
        if root in self._locals:
            return Emitted(f"{root}{tail_text}")
        if root in self._bindings:
            binding = self._bindings[root]
            return Emitted(f"{wrap_if_compound(binding.text)}{tail_text}")

        if root == "resources" and len(segments) >= 2 and self._context.has_resource(segments[0].name):
            return self._marker(segments[0].name, segments[1:])
        if root == "schema" and segments:
            return self._marker(SCHEMA_RESOURCE_ID, segments)
        if self._context.has_resource(root) and segments:
            return self._marker(root, segments)
        if not segments:
            return self._identifier(Identifier(root))

        if root == "resources" and len(segments) >= 2:
            resource, rest = segments[0].name, segments[1:]
        else:
            resource, rest = root, segments
        reference = f"{resource}.{self._plain_path(rest)}"
        self._context.warn(
            ConversionWarning.from_exception(
                ReferenceResolutionFailure(
                    reference,
                    expression=self._source or None,
                    available=self._context.resource_names,
                )
            )
        )
        logger.debug("unknown_reference", reference=reference, expression=self._source)
        return self._marker(resource, rest)

    @staticmethod
    def _plain_path(segments: list[_Segment]) -> str:
        path = ""
        for segment in segments:
            if segment.name.startswith("[") or not path:
                path += segment.name
            else:
                path += f".{segment.name}"
        return path

    def _marker(self, resource_id: str, segments: list[_Segment]) -> Emitted:
        field_path = self._plain_path(segments)
        marker = DependencyMarker(resource_id, field_path, infer_type(field_path))
        self._context.record(marker)
        prefix = "schema" if marker.is_schema else f"resources.{resource_id}"
        first, rest = segments[0], segments[1:]
        head = first.text if first.text.startswith(("?", "[")) else f".{first.name}"
        text = prefix + head + "".join(s.text for s in rest)
        return Emitted(text, marker.type_hint or CelType.DYN, marker=True)

    # Calls

    def _call(self, node: CallExpression) -> Emitted:
        for argument in node.arguments:
            if isinstance(argument, SpreadElement):
                raise self._unsupported(argument, "spread arguments")

        callee = node.callee
        if isinstance(callee, Identifier) and callee.name not in self._locals:
            spec = GLOBAL_FUNCTIONS.get(callee.name)
            if spec is not None:
                return self._invoke(node, spec, None, "")
            raise self._unsupported(node, f"function '{callee.name}' is not supported")

        if isinstance(callee, MemberExpression) and not callee.computed:
            prop = callee.property
            name = prop.name if isinstance(prop, Identifier) else ""
            obj = callee.object
            if isinstance(obj, Identifier) and obj.name == "Math" and "Math" not in self._locals:
                spec = MATH_FUNCTIONS.get(name)
                if spec is None:
                    raise self._unsupported(node, f"function 'Math.{name}' is not supported")
                return self._invoke(node, spec, None, "")
            spec = METHODS.get(name)
            if spec is None:
                raise self._unsupported(node, f"method '{name}' is not supported")
            receiver = self.emit(obj)
            joiner = "?." if callee.optional or node.optional else "."
            return self._invoke(node, spec, receiver, joiner)

        raise self._unsupported(node, "only global, Math and known method calls are supported")

    def _invoke(
        self,
        node: CallExpression,
        spec: FunctionSpec,
        receiver: Emitted | None,
        joiner: str,
    ) -> Emitted:
        if not arity_matches(spec, len(node.arguments)):
            raise self._unsupported(
                node,
                f"{spec.name}() expects {spec.arity_text} argument(s), got {len(node.arguments)}",
            )
        return spec.emit(self, receiver, joiner, node.arguments)

    # Operators

    def _binary(self, node: BinaryExpression) -> Emitted:
        operator = _BINARY_OPERATORS.get(node.operator)
        if operator is None:
            raise self._unsupported(node, f"operator '{node.operator}'")
        left = self.emit(node.left)
        right = self.emit(node.right)
        text = (
            f"{wrap_operand(left.text, operator)} {operator} "
            f"{wrap_operand(right.text, operator, right=True)}"
        )
        if operator in _COMPARISONS:
            return Emitted(text, CelType.BOOL, boolean=True)
        if operator == "+" and CelType.STRING in (left.type_hint, right.type_hint):
            return Emitted(text, CelType.STRING)
        return Emitted(text, CelType.NUMBER)

    def _logical(self, node: LogicalExpression) -> Emitted:
        if node.operator == "??":
            return self._nullish(node)
        left = self.emit(node.left)
        right = self.emit(node.right)
        operator = node.operator
        if left.boolean:
            text = (
                f"{wrap_operand(left.text, operator)} {operator} "
                f"{wrap_operand(right.text, operator, right=True)}"
            )
            if right.boolean:
                return Emitted(text, CelType.BOOL, boolean=True)
            return Emitted(text, CelType.DYN)

        guard = _null_guard(left.text) if _prefers_null_guard(left) else _falsy_guard(left.text)
        if operator == "||":
            text = f"{guard} ? {wrap_branch(left.text)} : {_alternate(right.text)}"
        else:
            text = f"{guard} ? {wrap_branch(right.text)} : {_alternate(left.text)}"
        type_hint = left.type_hint if left.type_hint == right.type_hint else CelType.DYN
        return Emitted(text, type_hint)

    def _nullish_operands(self, node: Node) -> Iterator[Node]:
        if isinstance(node, LogicalExpression) and node.operator == "??":
            yield from self._nullish_operands(node.left)
            yield from self._nullish_operands(node.right)
        else:
            yield node

    def _nullish(self, node: LogicalExpression) -> Emitted:
        operands = [self.emit(operand) for operand in self._nullish_operands(node)]
        result = operands[-1].text
        for operand in reversed(operands[:-1]):
            result = f"{_null_guard(operand.text)} ? {wrap_branch(operand.text)} : {_alternate(result)}"
        hints = [o.type_hint for o in operands if o.type_hint not in (CelType.DYN, CelType.NULL)]
        return Emitted(result, hints[0] if hints else CelType.DYN)

    def _conditional(self, node: ConditionalExpression) -> Emitted:
        test = self.emit(node.test)
        consequent = self.emit(node.consequent)
        alternate = self.emit(node.alternate)
        if not test.boolean and (test.marker or "?" in test.text):
            condition = _falsy_guard(test.text)
        else:
            condition = wrap_branch(test.text)
        text = f"{condition} ? {wrap_branch(consequent.text)} : {_alternate(alternate.text)}"
        if consequent.type_hint == alternate.type_hint:
            return Emitted(text, consequent.type_hint, boolean=consequent.boolean and alternate.boolean)
        return Emitted(text, CelType.DYN)

    def _unary(self, node: UnaryExpression) -> Emitted:
        argument = self.emit(node.argument)
        if node.operator == "!":
            return Emitted(f"!{wrap_if_compound(argument.text)}", CelType.BOOL, boolean=True)
        if node.operator == "-":
            return Emitted(f"-{wrap_if_compound(argument.text)}", CelType.NUMBER)
        if node.operator == "+":
            return Emitted(f"double({argument.text})", CelType.NUMBER)
        if node.operator == "typeof":
            return Emitted(f"type({argument.text})", CelType.STRING)
        raise self._unsupported(node, f"operator '{node.operator}'")


def convert_expression(text: str, context: AnalysisContext) -> CelExpression:
    """Parse and convert ``text`` in ``context``.

    Markers and warnings are recorded on ``context``; callers that need an
    isolated accumulator pass :meth:`AnalysisContext.fresh` copies.

    Raises:
        ParseFailure: When ``text`` cannot be parsed.
        UnsupportedSyntax: When it parses but has no CEL form.
        ValidationFailure: For malformed templates or statement input.
    """
    node = parse_expression(text)
    return CelConverter(context, text).convert(node)
