"""Output formatting utilities for the kubecel CLI.

Plain-text helpers (``format_*``) return strings for ``click.echo``; the
``render_*`` helpers print Rich tables to a console.
"""

from __future__ import annotations

import json
from collections.abc import Sequence
from typing import Any

from rich.console import Console
from rich.table import Table
from rich.text import Text

from kubecel.expressions.errors import ConversionWarning, ExpressionErrorInfo
from kubecel.expressions.markers import DependencyMarker
from kubecel.expressions.results import ConversionResult
from kubecel.hydration.models import ProcessedStatusBuilder

__all__ = [
    "format_error",
    "format_json",
    "markers_to_dict",
    "render_result",
    "render_markers",
    "render_status_builder",
]


def format_error(
    message: str, details: list[str] | None = None, suggestion: str | None = None
) -> str:
    """Format an error message with optional details and suggestion.

    Example:
        >>> print(format_error("Parse error", details=["line 1"], suggestion="Check quotes"))
        Error: Parse error
          line 1
        Suggestion: Check quotes
    """
    lines = [f"Error: {message}"]
    if details:
        for detail in details:
            lines.append(f"  {detail}")
    if suggestion:
        lines.append(f"Suggestion: {suggestion}")
    return "\n".join(lines)


def format_json(data: Any) -> str:
    """Format data as indented JSON."""
    return json.dumps(data, indent=2)


def markers_to_dict(markers: Sequence[DependencyMarker]) -> list[dict[str, str]]:
    return [{"resource_id": m.resource_id, "field_path": m.field_path} for m in markers]


def render_markers(console: Console, markers: Sequence[DependencyMarker], title: str) -> None:
    if not markers:
        console.print(f"{title}: none")
        return
    table = Table(title=title)
    table.add_column("Resource")
    table.add_column("Field path")
    table.add_column("CEL path")
    for marker in markers:
        table.add_row(
            Text(marker.resource_id), Text(marker.field_path), Text(marker.cel_path)
        )
    console.print(table)


def _render_problems(
    console: Console,
    errors: Sequence[ExpressionErrorInfo],
    warnings: Sequence[ConversionWarning],
) -> None:
    for error in errors:
        console.print(Text(f"error [{error.kind.value}]: {error.message}", style="red"))
        for suggestion in error.suggestions:
            console.print(Text(f"  hint: {suggestion}"))
    for warning in warnings:
        console.print(Text(f"warning [{warning.kind.value}]: {warning.message}", style="yellow"))


def render_result(console: Console, result: ConversionResult) -> None:
    """Print a conversion result: CEL first, then dependencies and problems."""
    if result.is_static:
        console.print("static value (no conversion needed)")
    elif result.cel_text is not None:
        console.print(Text(result.cel_text, style="bold"), soft_wrap=True)
    render_markers(console, result.dependencies, "Dependencies")
    _render_problems(console, result.errors, result.warnings)


def render_status_builder(console: Console, processed: ProcessedStatusBuilder) -> None:
    table = Table(title="Status fields")
    table.add_column("Field")
    table.add_column("CEL")
    table.add_column("Level", justify="right")
    plan = processed.hydration_plan
    for name in plan.order:
        expression = processed.status_mappings.get(name)
        level = plan.level_of(name)
        table.add_row(
            Text(name),
            Text(expression.text if expression is not None else "<failed>"),
            str(level) if level is not None else "-",
        )
    console.print(table)
    for index, level_fields in enumerate(plan.levels):
        console.print(Text(f"level {index}: {', '.join(level_fields)}"), soft_wrap=True)
    if plan.forced:
        console.print(Text("last level was force-flushed", style="yellow"))
    _render_problems(console, processed.errors, [])
