"""Lark-based parser for the supported JavaScript expression subset.

The grammar lives in ``grammar.lark`` next to this module. Parsing is done in
two attempts:

1. The text is wrapped in parentheses and parsed as a single expression.
   This forces expression mode, so ``{ a: 1 }`` is an object literal and not
   a block.
2. If that fails, the raw text is parsed as a program, which accepts
   statement-shaped input such as ``const x = a.b; return x;``.

When both attempts fail, the error from the first one is reported with the
line/column translated back to the caller's text (1-indexed line, 0-indexed
column).

Example:
    >>> node = parse_expression("deployment.status.readyReplicas > 0")
    >>> node.node_type
    'BinaryExpression'
"""

from __future__ import annotations

import re
from pathlib import Path
from typing import Any

from lark import Lark, Token, Transformer, Tree, v_args
from lark.exceptions import (
    UnexpectedCharacters,
    UnexpectedEOF,
    UnexpectedInput,
    UnexpectedToken,
    VisitError,
)

from kubecel.expressions.errors import ExpressionError, ParseFailure, ValidationFailure
from kubecel.expressions.nodes import (
    ArrayExpression,
    ArrowFunctionExpression,
    BinaryExpression,
    BlockStatement,
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
    SequenceExpression,
    Span,
    SpreadElement,
    TemplateLiteral,
    UnaryExpression,
    VariableDeclaration,
)
from kubecel.logging import get_logger

__all__ = [
    "parse_expression",
    "parse_expression_safe",
    "parse_script",
    "can_parse",
    "split_template",
]

logger = get_logger(__name__)

_GRAMMAR_PATH = Path(__file__).parent / "grammar.lark"
_GRAMMAR = _GRAMMAR_PATH.read_text()

_parser = Lark(
    _GRAMMAR,
    parser="lalr",
    start=["expression_input", "program"],
    propagate_positions=True,
)

_ESCAPE_PATTERN = re.compile(r"\\(u\{[0-9a-fA-F]+\}|u[0-9a-fA-F]{4}|x[0-9a-fA-F]{2}|.)", re.S)

_SIMPLE_ESCAPES = {
    "n": "\n",
    "t": "\t",
    "r": "\r",
    "b": "\b",
    "f": "\f",
    "v": "\v",
    "0": "\0",
    "\n": "",
}


def _unescape(body: str) -> str:
    """Decode JavaScript string escapes in ``body``."""

    def replace(match: re.Match[str]) -> str:
        seq = match.group(1)
        if seq.startswith("u{"):
            return chr(int(seq[2:-1], 16))
        if seq.startswith("u") and len(seq) == 5:
            return chr(int(seq[1:], 16))
        if seq.startswith("x") and len(seq) == 3:
            return chr(int(seq[1:], 16))
        return _SIMPLE_ESCAPES.get(seq, seq)

    return _ESCAPE_PATTERN.sub(replace, body)


def _number_value(raw: str) -> int | float:
    if re.fullmatch(r"\d+", raw):
        return int(raw)
    return float(raw)


def split_template(body: str, expression: str | None = None) -> tuple[list[str], list[str]]:
    """Split the inside of a template literal into quasis and hole sources.

    Braces inside a hole are tracked by depth and string literals inside a
    hole are skipped, so ``${ {a: 1}.a }`` is one hole. Braces in the
    literal text are plain characters, as in ``{"host": "${ip}"}``.

    Raises:
        ValidationFailure: On an unclosed ``${`` or an empty hole.
    """
    quasis: list[str] = []
    holes: list[str] = []
    current: list[str] = []
    i = 0
    length = len(body)
    while i < length:
        char = body[i]
        if char == "\\" and i + 1 < length:
            current.append(body[i : i + 2])
            i += 2
            continue
        if char == "$" and i + 1 < length and body[i + 1] == "{":
            end = _find_hole_end(body, i + 2)
            if end < 0:
                raise ValidationFailure(
                    "Unbalanced template literal interpolation: unclosed '${'",
                    expression=expression or body,
                )
            hole = body[i + 2 : end]
            if not hole.strip():
                raise ValidationFailure(
                    "Empty template literal interpolation '${}'",
                    expression=expression or body,
                )
            quasis.append("".join(current))
            holes.append(hole)
            current = []
            i = end + 1
            continue
        current.append(char)
        i += 1
    quasis.append("".join(current))
    return quasis, holes


def _find_hole_end(body: str, start: int) -> int:
    depth = 1
    quote: str | None = None
    i = start
    while i < len(body):
        char = body[i]
        if quote:
            if char == "\\":
                i += 2
                continue
            if char == quote:
                quote = None
        elif char in ("'", '"', "`"):
            quote = char
        elif char == "{":
            depth += 1
        elif char == "}":
            depth -= 1
            if depth == 0:
                return i
        i += 1
    return -1


@v_args(meta=True)
class _NodeBuilder(Transformer[Token, Any]):
    """Turn the lark parse tree into :mod:`kubecel.expressions.nodes` objects."""

    def __init__(self, source: str, offset: int) -> None:
        super().__init__()
        self._source = source
        self._offset = offset

    def _span(self, meta: Any) -> Span | None:
        if getattr(meta, "empty", True):
            return None
        start = max(meta.start_pos - self._offset, 0)
        end = max(meta.end_pos - self._offset, start)
        column = meta.column - 1
        if meta.line == 1:
            column -= self._offset
        return Span(start, end, meta.line, max(column, 0))

    def _token_span(self, token: Token) -> Span | None:
        if token.start_pos is None:
            return None
        start = max(token.start_pos - self._offset, 0)
        column = (token.column or 1) - 1
        if token.line == 1:
            column -= self._offset
        return Span(start, start + len(token), token.line or 1, max(column, 0))

    # Statements

    def expression_input(self, meta: Any, children: list[Node]) -> Node:
        return children[0]

    def program(self, meta: Any, children: list[Node]) -> Program:
        return Program(tuple(children), span=self._span(meta))

    def return_statement(self, meta: Any, children: list[Node]) -> ReturnStatement:
        argument = children[0] if children else None
        return ReturnStatement(argument, span=self._span(meta))

    def variable_declaration(self, meta: Any, children: list[Any]) -> VariableDeclaration:
        kind, name, init = children
        return VariableDeclaration(kind, str(name), init, span=self._span(meta))

    def expression_statement(self, meta: Any, children: list[Node]) -> ExpressionStatement:
        return ExpressionStatement(children[0], span=self._span(meta))

    def block(self, meta: Any, children: list[Node]) -> BlockStatement:
        return BlockStatement(tuple(children), span=self._span(meta))

    # Functions

    def arrow_single(self, meta: Any, children: list[Any]) -> ArrowFunctionExpression:
        name, body = children
        return ArrowFunctionExpression((str(name),), body, span=self._span(meta))

    def arrow_params(self, meta: Any, children: list[Any]) -> ArrowFunctionExpression:
        params_node, body = children
        if isinstance(params_node, SequenceExpression):
            candidates = params_node.expressions
        else:
            candidates = (params_node,)
        names: list[str] = []
        for candidate in candidates:
            if not isinstance(candidate, Identifier):
                raise ValidationFailure(
                    "Arrow function parameters must be plain identifiers",
                    expression=self._source,
                )
            names.append(candidate.name)
        return ArrowFunctionExpression(tuple(names), body, span=self._span(meta))

    # Operators

    def ternary(self, meta: Any, children: list[Node]) -> ConditionalExpression:
        test, consequent, alternate = children
        return ConditionalExpression(test, consequent, alternate, span=self._span(meta))

    def logical(self, meta: Any, children: list[Any]) -> LogicalExpression:
        left, operator, right = children
        return LogicalExpression(operator, left, right, span=self._span(meta))

    def binary(self, meta: Any, children: list[Any]) -> BinaryExpression:
        left, operator, right = children
        return BinaryExpression(operator, left, right, span=self._span(meta))

    def unary_expression(self, meta: Any, children: list[Any]) -> UnaryExpression:
        operator, argument = children
        return UnaryExpression(operator, argument, span=self._span(meta))

    def _operator(self, meta: Any, children: list[Token]) -> str:
        return str(children[0])

    logical_or_op = _operator
    logical_and_op = _operator
    equality_op = _operator
    relational_op = _operator
    additive_op = _operator
    multiplicative_op = _operator
    unary_op = _operator
    var_kind = _operator

    # Member access and calls

    def _member(
        self, meta: Any, obj: Node, prop: Node, *, computed: bool, optional: bool
    ) -> MemberExpression:
        return MemberExpression(
            obj, prop, computed=computed, optional=optional, span=self._span(meta)
        )

    def member(self, meta: Any, children: list[Any]) -> MemberExpression:
        obj, name = children
        prop = Identifier(str(name), span=self._token_span(name))
        return self._member(meta, obj, prop, computed=False, optional=False)

    def optional_member(self, meta: Any, children: list[Any]) -> MemberExpression:
        obj, name = children
        prop = Identifier(str(name), span=self._token_span(name))
        return self._member(meta, obj, prop, computed=False, optional=True)

    def computed_member(self, meta: Any, children: list[Node]) -> MemberExpression:
        obj, prop = children
        return self._member(meta, obj, prop, computed=True, optional=False)

    def optional_computed_member(self, meta: Any, children: list[Node]) -> MemberExpression:
        obj, prop = children
        return self._member(meta, obj, prop, computed=True, optional=True)

    def call(self, meta: Any, children: list[Any]) -> CallExpression:
        callee, arguments = children
        return CallExpression(callee, arguments, span=self._span(meta))

    def optional_call(self, meta: Any, children: list[Any]) -> CallExpression:
        callee, arguments = children
        return CallExpression(callee, arguments, optional=True, span=self._span(meta))

    def arguments(self, meta: Any, children: list[Node]) -> tuple[Node, ...]:
        return tuple(children)

    # Primaries

    def identifier(self, meta: Any, children: list[Token]) -> Identifier:
        return Identifier(str(children[0]), span=self._token_span(children[0]))

    def string(self, meta: Any, children: list[Token]) -> Literal:
        raw = str(children[0])
        return Literal(_unescape(raw[1:-1]), raw, span=self._token_span(children[0]))

    def number(self, meta: Any, children: list[Token]) -> Literal:
        raw = str(children[0])
        return Literal(_number_value(raw), raw, span=self._token_span(children[0]))

    def literal(self, meta: Any, children: list[Token]) -> Literal:
        raw = str(children[0])
        value: bool | None
        if raw == "true":
            value = True
        elif raw == "false":
            value = False
        else:
            value = None
        return Literal(value, raw, span=self._token_span(children[0]))

    def template(self, meta: Any, children: list[Token]) -> TemplateLiteral:
        raw = str(children[0])
        quasis, holes = split_template(raw[1:-1], expression=self._source)
        expressions = tuple(parse_expression(hole) for hole in holes)
        return TemplateLiteral(
            tuple(_unescape(q) for q in quasis),
            expressions,
            span=self._token_span(children[0]),
        )

    def parenthesized(self, meta: Any, children: list[Node]) -> Node:
        if len(children) == 1:
            return children[0]
        return SequenceExpression(tuple(children), span=self._span(meta))

    def array(self, meta: Any, children: list[Node]) -> ArrayExpression:
        return ArrayExpression(tuple(children), span=self._span(meta))

    def spread(self, meta: Any, children: list[Node]) -> SpreadElement:
        return SpreadElement(children[0], span=self._span(meta))

    def object(self, meta: Any, children: list[Property | SpreadElement]) -> ObjectExpression:
        return ObjectExpression(tuple(children), span=self._span(meta))

    def named_property(self, meta: Any, children: list[Any]) -> Property:
        name, value = children
        key = Identifier(str(name), span=self._token_span(name))
        return Property(key, value, span=self._span(meta))

    def quoted_property(self, meta: Any, children: list[Any]) -> Property:
        token, value = children
        raw = str(token)
        if token.type == "NUMBER":
            key = Literal(_number_value(raw), raw, span=self._token_span(token))
        else:
            key = Literal(_unescape(raw[1:-1]), raw, span=self._token_span(token))
        return Property(key, value, span=self._span(meta))

    def computed_property(self, meta: Any, children: list[Node]) -> Property:
        key, value = children
        return Property(key, value, computed=True, span=self._span(meta))

    def shorthand_property(self, meta: Any, children: list[Token]) -> Property:
        name = children[0]
        ident = Identifier(str(name), span=self._token_span(name))
        return Property(ident, ident, shorthand=True, span=self._span(meta))


def _build(tree: Tree[Token], source: str, offset: int) -> Node:
    try:
        node: Node = _NodeBuilder(source, offset).transform(tree)
    except VisitError as e:
        if isinstance(e.orig_exc, ExpressionError):
            raise e.orig_exc from None
        raise
    return node


def _to_parse_failure(error: UnexpectedInput, source: str, offset: int) -> ParseFailure:
    """Translate a lark error into a :class:`ParseFailure` on ``source``."""
    pos = getattr(error, "pos_in_stream", None)
    if pos is None or pos < 0:
        user_pos = len(source)
    else:
        user_pos = min(max(pos - offset, 0), len(source))

    line = source.count("\n", 0, user_pos) + 1
    column = user_pos - (source.rfind("\n", 0, user_pos) + 1)

    if isinstance(error, UnexpectedCharacters):
        reason = f"Unexpected character {error.char!r}"
    elif isinstance(error, UnexpectedToken):
        if error.token.type == "$END" or user_pos >= len(source):
            reason = "Unexpected end of expression"
        else:
            reason = f"Unexpected token {str(error.token)!r}"
        expected = sorted(error.expected)[:6]
        if expected:
            reason = f"{reason} (expected one of: {', '.join(expected)})"
    elif isinstance(error, UnexpectedEOF):
        reason = "Unexpected end of expression"
    else:
        reason = "Invalid syntax"
    return ParseFailure(reason, source, line=line, column=column)


def parse_expression(text: str) -> Node:
    """Parse ``text`` into an AST.

    Args:
        text: Expression (or statement list) source.

    Returns:
        The expression node, or a :class:`Program` for statement input.

    Raises:
        ParseFailure: When neither expression nor statement parsing succeeds.
        ValidationFailure: For malformed template literal interpolation.
    """
    if not text or text.isspace():
        raise ParseFailure("Empty expression", text or "", line=1, column=0)

    try:
        tree = _parser.parse(f"({text}\n)", start="expression_input")
    except UnexpectedInput as expression_error:
        try:
            program_tree = _parser.parse(text, start="program")
        except UnexpectedInput:
            failure = _to_parse_failure(expression_error, text, offset=1)
            logger.debug(
                "parse_failed",
                expression=text,
                line=failure.line,
                column=failure.column,
                reason=failure.reason,
            )
            raise failure from expression_error
        return _build(program_tree, text, offset=0)
    return _build(tree, text, offset=1)


def parse_script(text: str) -> Program:
    """Parse ``text`` strictly as a statement list.

    Raises:
        ParseFailure: When the text is not a valid program.
    """
    try:
        tree = _parser.parse(text, start="program")
    except UnexpectedInput as e:
        raise _to_parse_failure(e, text, offset=0) from e
    node = _build(tree, text, offset=0)
    if not isinstance(node, Program):
        raise ValidationFailure("Script did not produce a program node", expression=text)
    return node


def parse_expression_safe(text: str) -> Node | None:
    """Like :func:`parse_expression` but returns ``None`` instead of raising."""
    try:
        return parse_expression(text)
    except ExpressionError:
        return None


def can_parse(text: str) -> bool:
    return parse_expression_safe(text) is not None
