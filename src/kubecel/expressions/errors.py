"""Error types for expression parsing and conversion.

The taxonomy has four members, all rooted at :class:`ExpressionError`:

- :class:`ParseFailure`: the text is not valid expression syntax.
- :class:`UnsupportedSyntax`: the text parses, but a node, call or arity has
  no CEL mapping.
- :class:`ReferenceResolutionFailure`: a referenced resource is unknown.
  Conversion reports this as a warning instead of raising it.
- :class:`ValidationFailure`: structural or compatibility checks failed
  (malformed template holes, dependency cycles ...).

Results never carry live exception objects; they carry the frozen
:class:`ExpressionErrorInfo` / :class:`ConversionWarning` records below.
"""

from __future__ import annotations

from collections.abc import Sequence
from dataclasses import dataclass
from enum import Enum
from typing import TYPE_CHECKING

from kubecel.exceptions import KubecelError

if TYPE_CHECKING:
    from kubecel.expressions.nodes import Span

__all__ = [
    "DEFAULT_PARSE_SUGGESTIONS",
    "DEFAULT_UNSUPPORTED_SUGGESTIONS",
    "ErrorKind",
    "ExpressionError",
    "ParseFailure",
    "UnsupportedSyntax",
    "ReferenceResolutionFailure",
    "ValidationFailure",
    "ExpressionErrorInfo",
    "ConversionWarning",
]

DEFAULT_PARSE_SUGGESTIONS: tuple[str, ...] = (
    "Check for syntax errors in your expression",
    "Ensure all brackets and parentheses are balanced",
    "Verify that all string literals are properly quoted",
    "Consider writing the CEL directly for constructs outside the supported subset",
)

DEFAULT_UNSUPPORTED_SUGGESTIONS: tuple[str, ...] = (
    "Use supported patterns (binary operators, member access, conditionals)",
    "Use one of the supported string/array methods with the expected arity",
    "Consider writing the CEL directly for constructs outside the supported subset",
)


class ErrorKind(str, Enum):
    """Discriminant stored in error and warning records."""

    PARSE = "parse"
    UNSUPPORTED = "unsupported"
    REFERENCE = "reference"
    VALIDATION = "validation"
    INTERNAL = "internal"


class ExpressionError(KubecelError):
    """Base exception for expression parsing and conversion errors.

    Attributes:
        message: Human-readable error message.
        expression: The expression text involved, when known.
    """

    kind: ErrorKind = ErrorKind.INTERNAL

    def __init__(
        self,
        message: str,
        expression: str | None = None,
    ) -> None:
        self.expression = expression
        super().__init__(message)


class ParseFailure(ExpressionError):
    """The expression text could not be parsed.

    ``line`` is 1-indexed and ``column`` 0-indexed, both relative to the text
    the user wrote (not to any wrapper added while parsing).

    Attributes:
        reason: The underlying parser complaint, without location decoration.
        line: Line of the offending token.
        column: Column of the offending token.
        suggestions: Hints shown to the user.
    """

    kind = ErrorKind.PARSE

    def __init__(
        self,
        reason: str,
        expression: str,
        line: int = 1,
        column: int = 0,
        suggestions: Sequence[str] = DEFAULT_PARSE_SUGGESTIONS,
    ) -> None:
        self.reason = reason
        self.line = line
        self.column = column
        self.suggestions = tuple(suggestions)
        lines = expression.splitlines() or [expression]
        source_line = lines[line - 1] if 0 < line <= len(lines) else expression
        full_message = (
            f"{reason} at line {line}, column {column}:\n"
            f"{source_line}\n{' ' * column}^"
        )
        super().__init__(full_message, expression=expression)


class UnsupportedSyntax(ExpressionError):
    """A parsed construct has no CEL equivalent.

    Attributes:
        node_type: Node class name (or ``"CallExpression"`` for calls).
        span: Location of the construct in the source text.
        detail: Short description of what exactly is unsupported.
        suggestions: Hints shown to the user.
    """

    kind = ErrorKind.UNSUPPORTED

    def __init__(
        self,
        node_type: str,
        expression: str | None = None,
        span: Span | None = None,
        detail: str | None = None,
        suggestions: Sequence[str] = DEFAULT_UNSUPPORTED_SUGGESTIONS,
    ) -> None:
        self.node_type = node_type
        self.span = span
        self.detail = detail
        self.suggestions = tuple(suggestions)
        what = f"{node_type} ({detail})" if detail else node_type
        message = f"Unsupported syntax in expression: {what}"
        if expression:
            message = f"{message}\n  Expression: {expression}"
        super().__init__(message, expression=expression)


class ReferenceResolutionFailure(ExpressionError):
    """A reference could not be matched to a known resource.

    Attributes:
        reference: The dotted reference path that failed to resolve.
        available: Resource names that were known at analysis time.
    """

    kind = ErrorKind.REFERENCE

    def __init__(
        self,
        reference: str,
        expression: str | None = None,
        available: Sequence[str] = (),
    ) -> None:
        self.reference = reference
        self.available = tuple(available)
        resource = reference.split(".", 1)[0]
        known = ", ".join(self.available) if self.available else "none"
        message = (
            f"Unknown resource '{resource}' referenced by '{reference}'"
            f" (available: {known})"
        )
        super().__init__(message, expression=expression)


class ValidationFailure(ExpressionError):
    """Structural validation of an expression or plan failed."""

    kind = ErrorKind.VALIDATION


@dataclass(frozen=True, slots=True)
class ExpressionErrorInfo:
    """Serializable description of a fatal error inside a result.

    Attributes:
        kind: Which member of the taxonomy produced it.
        message: Human-readable error message.
        expression: The expression that failed.
        line: 1-indexed line (parse errors only, else 0).
        column: 0-indexed column (parse errors only, else 0).
        suggestions: Hints carried over from the exception.
    """

    kind: ErrorKind
    message: str
    expression: str = ""
    line: int = 0
    column: int = 0
    suggestions: tuple[str, ...] = ()

    @classmethod
    def from_exception(
        cls, exc: BaseException, expression: str = ""
    ) -> ExpressionErrorInfo:
        """Build a record from any exception, expression errors included."""
        if isinstance(exc, ParseFailure):
            return cls(
                kind=exc.kind,
                message=exc.reason,
                expression=exc.expression or expression,
                line=exc.line,
                column=exc.column,
                suggestions=exc.suggestions,
            )
        if isinstance(exc, ExpressionError):
            return cls(
                kind=exc.kind,
                message=exc.message,
                expression=exc.expression or expression,
                suggestions=tuple(getattr(exc, "suggestions", ())),
            )
        return cls(kind=ErrorKind.INTERNAL, message=str(exc), expression=expression)

    def to_dict(self) -> dict[str, object]:
        return {
            "kind": self.kind.value,
            "message": self.message,
            "expression": self.expression,
            "line": self.line,
            "column": self.column,
            "suggestions": list(self.suggestions),
        }


@dataclass(frozen=True, slots=True)
class ConversionWarning:
    """Non-fatal diagnostic attached to a result.

    Attributes:
        kind: Usually :attr:`ErrorKind.REFERENCE`.
        message: Human-readable warning.
        reference: The reference path concerned, if any.
    """

    kind: ErrorKind
    message: str
    reference: str | None = None

    @classmethod
    def from_exception(cls, exc: ExpressionError) -> ConversionWarning:
        return cls(
            kind=exc.kind,
            message=exc.message,
            reference=getattr(exc, "reference", None),
        )

    def to_dict(self) -> dict[str, object]:
        return {
            "kind": self.kind.value,
            "message": self.message,
            "reference": self.reference,
        }
