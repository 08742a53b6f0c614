"""Unit tests for text-level operator precedence."""

from __future__ import annotations

import pytest

from kubecel.expressions.precedence import (
    main_operator,
    needs_parentheses,
    wrap_branch,
    wrap_if_compound,
    wrap_operand,
)


class TestMainOperator:
    """Test detection of the top-level operator."""

    @pytest.mark.parametrize(
        ("text", "expected"),
        [
            ("a + b * c", "+"),
            ("a * b + c", "+"),
            ("a && b || c", "||"),
            ("a ? b : c", "?"),
            ("a != null", "!="),
            ("size(a + b)", None),
            ('"x || y"', None),
            ("resources.web?.status?.ready", None),
            ("-x * 2", "*"),
            ("1e-5 * x", "*"),
            ("a - b - c", "-"),
        ],
    )
    def test_main_operator(self, text: str, expected: str | None) -> None:
        """The loosest operator outside brackets and strings wins."""
        assert main_operator(text) == expected


class TestWrapping:
    """Test parenthesization decisions."""

    def test_lower_precedence_child_wrapped(self) -> None:
        """a + b under * needs parentheses."""
        assert wrap_operand("a + b", "*") == "(a + b)"

    def test_higher_precedence_child_bare(self) -> None:
        """a * b under + does not."""
        assert wrap_operand("a * b", "+") == "a * b"

    def test_same_precedence_on_right(self) -> None:
        """Right operands of equal precedence are wrapped for left-associative ops."""
        assert needs_parentheses("b - c", "-", right=True) is True
        assert needs_parentheses("b - c", "-") is False

    def test_wrap_if_compound(self) -> None:
        """Atoms are left alone, anything with an operator is wrapped."""
        assert wrap_if_compound("resources.web.spec") == "resources.web.spec"
        assert wrap_if_compound("a + b") == "(a + b)"
        assert wrap_if_compound("size(a + b)") == "size(a + b)"

    def test_wrap_branch_only_ternaries(self) -> None:
        """Only nested conditionals are wrapped as ternary branches."""
        assert wrap_branch("a || b") == "a || b"
        assert wrap_branch("a ? b : c") == "(a ? b : c)"
