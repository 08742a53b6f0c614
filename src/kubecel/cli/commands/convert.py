from __future__ import annotations

import click

from kubecel.cli.console import console
from kubecel.cli.context import CLIContext, ExitCode
from kubecel.cli.output import format_json, render_result
from kubecel.logging import get_logger


@click.command()
@click.argument("expression")
@click.option(
    "-r",
    "--resource",
    "resources",
    multiple=True,
    help="Resource name in scope (repeatable).",
)
@click.option(
    "--factory",
    type=click.Choice(["direct", "kro"]),
    default=None,
    help="Factory mode (defaults to analysis.factory_mode).",
)
@click.option("--json", "as_json", is_flag=True, default=False, help="Emit JSON.")
@click.pass_context
def convert(
    ctx: click.Context,
    expression: str,
    resources: tuple[str, ...],
    factory: str | None,
    as_json: bool,
) -> None:
    """Convert EXPRESSION to CEL.

    Prints the CEL text, its dependencies and any warnings. Exits with
    status 1 when the expression cannot be converted.

    Examples:
        kubecel convert 'web.status.readyReplicas > 0' -r web
        kubecel convert 'a ?? b ?? 1' --json
    """
    logger = get_logger(__name__)
    cli_ctx: CLIContext = ctx.obj["cli_ctx"]

    context = cli_ctx.analysis_context(resources, factory)
    result = cli_ctx.analyzer().analyze(expression, context)
    logger.debug("cli_convert", valid=result.valid, dependencies=len(result.dependencies))

    if as_json:
        click.echo(format_json(result.to_dict()))
    else:
        render_result(console, result)

    if not result.valid:
        raise SystemExit(ExitCode.FAILURE)
