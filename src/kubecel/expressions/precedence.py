"""Operator precedence over emitted CEL text.

Children are converted to CEL text before their parent is assembled, so the
parent decides about parentheses by looking at the child's text: the
lowest-precedence operator at bracket depth zero is the child's "main"
operator, and the child is wrapped when that operator binds looser than the
parent's (or equally loose on the right of a left-associative parent).

Example:
    >>> wrap_operand("b - c", "-", right=True)
    '(b - c)'
    >>> wrap_operand("b * c", "+", right=True)
    'b * c'
"""

from __future__ import annotations

__all__ = [
    "PRECEDENCE",
    "ATOMIC_PRECEDENCE",
    "TERNARY_PRECEDENCE",
    "LEFT_ASSOCIATIVE",
    "main_operator",
    "precedence_of",
    "expression_precedence",
    "needs_parentheses",
    "wrap_operand",
    "wrap_if_compound",
    "wrap_branch",
]

PRECEDENCE: dict[str, int] = {
    "?": 0,
    "||": 1,
    "??": 1,
    "&&": 2,
    "==": 3,
    "!=": 3,
    "<": 4,
    "<=": 4,
    ">": 4,
    ">=": 4,
    "+": 5,
    "-": 5,
    "*": 6,
    "/": 6,
    "%": 6,
}

TERNARY_PRECEDENCE = PRECEDENCE["?"]
ATOMIC_PRECEDENCE = 10

LEFT_ASSOCIATIVE = frozenset(op for op in PRECEDENCE if op != "?")

_TWO_CHAR_OPERATORS = frozenset({"||", "&&", "==", "!=", "<=", ">=", "??"})
_ONE_CHAR_OPERATORS = frozenset("<>+-*/%")
_OPTIONAL_FOLLOWERS = frozenset(".[(")


def precedence_of(operator: str | None) -> int:
    if operator is None:
        return ATOMIC_PRECEDENCE
    return PRECEDENCE.get(operator, ATOMIC_PRECEDENCE)


def _skip_string(text: str, start: int) -> int:
    quote = text[start]
    i = start + 1
    while i < len(text):
        if text[i] == "\\":
            i += 2
            continue
        if text[i] == quote:
            return i + 1
        i += 1
    return len(text)


def _is_exponent_sign(text: str, i: int) -> bool:
    """True for the sign in ``1e-5`` style number literals."""
    if i < 2 or text[i - 1] not in "eE":
        return False
    j = i - 2
    while j >= 0 and (text[j].isdigit() or text[j] == "."):
        j -= 1
    return j < i - 2 and (j < 0 or not (text[j].isalnum() or text[j] == "_"))


def main_operator(text: str) -> str | None:
    """Return the lowest-precedence operator of ``text`` outside any brackets.

    String literals are skipped, unary ``!``/``-``/``+`` are ignored and the
    optional-chaining forms ``?.``, ``?[`` and ``?(`` do not count as the
    ternary operator. On ties the last operator wins.
    """
    best: str | None = None
    best_precedence = ATOMIC_PRECEDENCE + 1
    depth = 0
    expect_operand = True
    i = 0
    length = len(text)
    while i < length:
        char = text[i]
        if char in "\"'":
            i = _skip_string(text, i)
            expect_operand = False
            continue
        if char in "([{":
            depth += 1
            expect_operand = True
            i += 1
            continue
        if char in ")]}":
            depth -= 1
            expect_operand = False
            i += 1
            continue
        if char.isspace():
            i += 1
            continue
        if depth != 0:
            i += 1
            continue

        operator: str | None = None
        pair = text[i : i + 2]
        if pair in _TWO_CHAR_OPERATORS:
            operator = pair
        elif char == "?":
            if text[i + 1 : i + 2] in _OPTIONAL_FOLLOWERS:
                i += 1
                continue
            operator = "?"
        elif char == ":" or char == "!":
            expect_operand = True
            i += 1
            continue
        elif char in _ONE_CHAR_OPERATORS:
            if char in "+-" and (expect_operand or _is_exponent_sign(text, i)):
                i += 1
                continue
            operator = char

        if operator is None:
            expect_operand = False
            i += 1
            continue

        rank = PRECEDENCE[operator]
        if rank <= best_precedence:
            best = operator
            best_precedence = rank
        expect_operand = True
        i += len(operator)
    return best


def expression_precedence(text: str) -> int:
    return precedence_of(main_operator(text))


def needs_parentheses(child: str, parent_operator: str, *, right: bool = False) -> bool:
    """Decide whether ``child`` must be wrapped as an operand of ``parent_operator``."""
    child_rank = expression_precedence(child)
    parent_rank = precedence_of(parent_operator)
    if child_rank < parent_rank:
        return True
    return child_rank == parent_rank and right and parent_operator in LEFT_ASSOCIATIVE


def wrap_operand(child: str, parent_operator: str, *, right: bool = False) -> str:
    if needs_parentheses(child, parent_operator, right=right):
        return f"({child})"
    return child


def wrap_if_compound(text: str) -> str:
    """Parenthesize ``text`` unless it is atomic (no top-level operator)."""
    if expression_precedence(text) < ATOMIC_PRECEDENCE:
        return f"({text})"
    return text


def wrap_branch(text: str) -> str:
    """Parenthesize a nested conditional used as a ternary's first branch."""
    if expression_precedence(text) <= TERNARY_PRECEDENCE:
        return f"({text})"
    return text
