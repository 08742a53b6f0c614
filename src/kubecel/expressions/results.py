"""Conversion result records."""

from __future__ import annotations

from collections.abc import Iterable
from dataclasses import dataclass
from typing import Any

from kubecel.expressions.errors import ConversionWarning, ExpressionErrorInfo
from kubecel.expressions.markers import CelExpression, DependencyMarker, dedupe_markers
from kubecel.expressions.source_map import SourceMapEntry

__all__ = ["ConversionResult"]


@dataclass(frozen=True, slots=True)
class ConversionResult:
    """Outcome of analyzing one expression or value.

    Attributes:
        valid: False when a fatal error occurred.
        expression: Emitted CEL, or None for static values and failures.
        dependencies: De-duplicated markers touched during the conversion,
            in first-seen order.
        errors: Fatal errors (parse, unsupported syntax, validation).
        warnings: Non-fatal diagnostics (unknown resources ...).
        requires_conversion: False when the input had no references at all.
        source_map: Mappings recorded for this conversion.
    """

    valid: bool
    expression: CelExpression | None = None
    dependencies: tuple[DependencyMarker, ...] = ()
    errors: tuple[ExpressionErrorInfo, ...] = ()
    warnings: tuple[ConversionWarning, ...] = ()
    requires_conversion: bool = True
    source_map: tuple[SourceMapEntry, ...] = ()

    @classmethod
    def static(cls) -> ConversionResult:
        """Result for values that contain no references."""
        return cls(valid=True, requires_conversion=False)

    @classmethod
    def success(
        cls,
        expression: CelExpression,
        dependencies: Iterable[DependencyMarker] = (),
        warnings: Iterable[ConversionWarning] = (),
        source_map: Iterable[SourceMapEntry] = (),
    ) -> ConversionResult:
        return cls(
            valid=True,
            expression=expression,
            dependencies=tuple(dedupe_markers(dependencies)),
            warnings=tuple(warnings),
            source_map=tuple(source_map),
        )

    @classmethod
    def failure(
        cls,
        error: BaseException | ExpressionErrorInfo,
        expression_text: str = "",
        dependencies: Iterable[DependencyMarker] = (),
        warnings: Iterable[ConversionWarning] = (),
    ) -> ConversionResult:
        info = (
            error
            if isinstance(error, ExpressionErrorInfo)
            else ExpressionErrorInfo.from_exception(error, expression_text)
        )
        return cls(
            valid=False,
            dependencies=tuple(dedupe_markers(dependencies)),
            errors=(info,),
            warnings=tuple(warnings),
        )

    @property
    def cel_text(self) -> str | None:
        return self.expression.text if self.expression is not None else None

    @property
    def is_static(self) -> bool:
        return not self.requires_conversion

    def to_dict(self) -> dict[str, Any]:
        return {
            "valid": self.valid,
            "expression": self.cel_text,
            "type": (
                self.expression.type_hint.value
                if self.expression is not None and self.expression.type_hint
                else None
            ),
            "dependencies": [
                {"resource_id": d.resource_id, "field_path": d.field_path}
                for d in self.dependencies
            ],
            "errors": [e.to_dict() for e in self.errors],
            "warnings": [w.to_dict() for w in self.warnings],
            "requires_conversion": self.requires_conversion,
            "source_map": [entry.to_dict() for entry in self.source_map],
        }
