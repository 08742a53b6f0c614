"""Unit tests for the expression parser."""

from __future__ import annotations

import pytest

from kubecel.expressions.errors import ErrorKind, ParseFailure, ValidationFailure
from kubecel.expressions.nodes import (
    ArrowFunctionExpression,
    BinaryExpression,
    CallExpression,
    ConditionalExpression,
    Identifier,
    Literal,
    LogicalExpression,
    MemberExpression,
    ObjectExpression,
    Program,
    TemplateLiteral,
    VariableDeclaration,
    count_nodes,
)
from kubecel.expressions.parser import (
    can_parse,
    parse_expression,
    parse_expression_safe,
    parse_script,
    split_template,
)


class TestParseExpression:
    """Test parsing of single expressions."""

    def test_member_chain(self) -> None:
        """Dotted access nests left to right."""
        node = parse_expression("deployment.status.readyReplicas")
        assert isinstance(node, MemberExpression)
        assert isinstance(node.property, Identifier)
        assert node.property.name == "readyReplicas"
        assert isinstance(node.object, MemberExpression)

    def test_optional_member(self) -> None:
        """?. marks the member as optional."""
        node = parse_expression("web?.status")
        assert isinstance(node, MemberExpression)
        assert node.optional is True

    def test_multiplication_binds_tighter(self) -> None:
        """a + b * c parses as a + (b * c)."""
        node = parse_expression("a + b * c")
        assert isinstance(node, BinaryExpression)
        assert node.operator == "+"
        assert isinstance(node.right, BinaryExpression)
        assert node.right.operator == "*"

    def test_nullish_is_logical(self) -> None:
        """?? is a logical operator node."""
        node = parse_expression("a ?? b")
        assert isinstance(node, LogicalExpression)
        assert node.operator == "??"

    def test_ternary(self) -> None:
        """?: builds a ConditionalExpression."""
        node = parse_expression("ready ? 1 : 0")
        assert isinstance(node, ConditionalExpression)

    def test_call_with_arrow_callback(self) -> None:
        """Arrow functions are accepted as call arguments."""
        node = parse_expression("items.some(x => x.ready)")
        assert isinstance(node, CallExpression)
        assert isinstance(node.arguments[0], ArrowFunctionExpression)
        assert node.arguments[0].params == ("x",)

    def test_object_literal_not_block(self) -> None:
        """A leading brace is an object literal."""
        node = parse_expression("{ a: 1, b: 'two' }")
        assert isinstance(node, ObjectExpression)
        assert len(node.properties) == 2

    def test_number_literals(self) -> None:
        """Integers stay ints, decimals become floats; raw text is kept."""
        integer = parse_expression("42")
        decimal = parse_expression("1.5")
        assert isinstance(integer, Literal) and integer.value == 42
        assert isinstance(decimal, Literal) and decimal.value == 1.5
        assert decimal.raw == "1.5"

    def test_string_escapes_decoded(self) -> None:
        """JavaScript escapes in string literals are decoded."""
        node = parse_expression(r"'a\nbA'")
        assert isinstance(node, Literal)
        assert node.value == "a\nbA"

    def test_template_literal(self) -> None:
        """Template holes are parsed as nested expressions."""
        node = parse_expression("`http://${svc.status.ip}:${port}`")
        assert isinstance(node, TemplateLiteral)
        assert node.quasis == ("http://", ":", "")
        assert len(node.expressions) == 2

    def test_comments_ignored(self) -> None:
        """Line and block comments are skipped."""
        node = parse_expression("a /* inline */ + b // trailing")
        assert isinstance(node, BinaryExpression)

    def test_spans_relative_to_user_text(self) -> None:
        """Spans point into the caller's text, not the wrapped text."""
        node = parse_expression("foo + bar")
        assert isinstance(node, BinaryExpression)
        assert node.right.span is not None
        assert node.right.span.start == 6
        assert node.right.span.column == 6

    def test_count_nodes(self) -> None:
        """count_nodes walks the whole tree."""
        assert count_nodes(parse_expression("a + b")) == 3


class TestStatementInput:
    """Test the statement fallback and parse_script."""

    def test_const_then_return(self) -> None:
        """Statement input becomes a Program."""
        node = parse_expression("const x = a.b; return x > 1")
        assert isinstance(node, Program)
        assert isinstance(node.body[0], VariableDeclaration)
        assert node.body[0].name == "x"

    def test_parse_script_requires_program(self) -> None:
        """parse_script always returns a Program."""
        program = parse_script("let y = 2; return y")
        assert isinstance(program, Program)
        assert len(program.body) == 2


class TestParseErrors:
    """Test error reporting."""

    def test_empty_input(self) -> None:
        """Empty and whitespace-only text are parse failures."""
        with pytest.raises(ParseFailure, match="Empty expression"):
            parse_expression("   ")

    def test_trailing_operator(self) -> None:
        """A dangling operator reports the end of the expression."""
        with pytest.raises(ParseFailure) as exc_info:
            parse_expression("a +")
        assert exc_info.value.kind is ErrorKind.PARSE
        assert exc_info.value.line == 1
        assert "end of expression" in exc_info.value.reason

    def test_message_has_caret(self) -> None:
        """The message repeats the source line with a caret."""
        with pytest.raises(ParseFailure) as exc_info:
            parse_expression("a +")
        assert "a +\n" in exc_info.value.message
        assert exc_info.value.message.endswith("^")

    def test_unclosed_template_hole(self) -> None:
        """An unclosed ${ is a validation failure."""
        with pytest.raises(ValidationFailure, match="unclosed"):
            parse_expression("`${web.status`")

    def test_safe_variants(self) -> None:
        """parse_expression_safe and can_parse never raise."""
        assert parse_expression_safe("a +") is None
        assert can_parse("a + b") is True
        assert can_parse("a +") is False


class TestSplitTemplate:
    """Test template body splitting."""

    def test_nested_braces_in_hole(self) -> None:
        """Braces inside a hole are balanced."""
        quasis, holes = split_template("x${ {a: 1}.a }y")
        assert quasis == ["x", "y"]
        assert holes == [" {a: 1}.a "]

    def test_braces_in_literal_text(self) -> None:
        """Braces outside holes are plain text, balanced or not."""
        quasis, holes = split_template('{"host": "${svc.status.ip}"}')
        assert quasis == ['{"host": "', '"}']
        assert holes == ["svc.status.ip"]
        assert split_template("a}b") == (["a}b"], [])

