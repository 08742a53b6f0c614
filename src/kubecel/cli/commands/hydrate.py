from __future__ import annotations

from pathlib import Path

import click

from kubecel.cli.console import console
from kubecel.cli.context import CLIContext, ExitCode
from kubecel.cli.output import format_error, format_json, render_status_builder
from kubecel.hydration.status_builder import StatusBuilderProcessor
from kubecel.logging import get_logger


@click.command()
@click.argument("file", type=click.Path(exists=True, dir_okay=False, path_type=Path))
@click.option(
    "-r",
    "--resource",
    "resources",
    multiple=True,
    help="Resource name in scope (repeatable).",
)
@click.option("--json", "as_json", is_flag=True, default=False, help="Emit JSON.")
@click.pass_context
def hydrate(
    ctx: click.Context,
    file: Path,
    resources: tuple[str, ...],
    as_json: bool,
) -> None:
    """Convert a status-builder source FILE and plan its hydration.

    FILE holds an arrow function returning an object literal, e.g.
    ``(schema, resources) => ({ ready: web.status.readyReplicas > 0 })``.

    Examples:
        kubecel hydrate status.js -r web -r svc
        kubecel hydrate status.js -r web --json
    """
    logger = get_logger(__name__)
    cli_ctx: CLIContext = ctx.obj["cli_ctx"]

    try:
        source = file.read_text(encoding="utf-8")
    except (OSError, UnicodeDecodeError) as e:
        click.echo(format_error(f"Cannot read {file}: {e}"), err=True)
        raise SystemExit(ExitCode.FAILURE) from e

    processor = StatusBuilderProcessor(analyzer=cli_ctx.analyzer())
    processed = processor.process(source, cli_ctx.analysis_context(resources))
    logger.debug(
        "cli_hydrate",
        fields=processed.hydration_plan.total_fields,
        valid=processed.valid,
    )

    if as_json:
        click.echo(format_json(processed.to_dict()))
    else:
        render_status_builder(console, processed)

    if not processed.valid:
        raise SystemExit(ExitCode.FAILURE)
