from __future__ import annotations

import click

from kubecel.cli.console import console
from kubecel.cli.output import format_json, markers_to_dict, render_markers
from kubecel.expressions.extractor import extract_from_text


@click.command()
@click.argument("expression")
@click.option(
    "-r",
    "--resource",
    "resources",
    multiple=True,
    help="Resource name in scope (repeatable).",
)
@click.option("--json", "as_json", is_flag=True, default=False, help="Emit JSON.")
def deps(expression: str, resources: tuple[str, ...], as_json: bool) -> None:
    """List the references in EXPRESSION without converting it.

    Uses the pattern scan only, so it also works for text the parser
    rejects.

    Examples:
        kubecel deps 'schema.spec.name + "-" + web.metadata.name' -r web
    """
    markers = extract_from_text(expression, resources)
    if as_json:
        click.echo(format_json(markers_to_dict(markers)))
    else:
        render_markers(console, markers, "Dependencies")
