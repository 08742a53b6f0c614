from __future__ import annotations

import click
import yaml

from kubecel.cli.context import CLIContext
from kubecel.cli.output import format_json


@click.group()
def config() -> None:
    """Inspect kubecel configuration."""


@config.command("show")
@click.option(
    "-f",
    "--format",
    "fmt",
    type=click.Choice(["yaml", "json"]),
    default="yaml",
    help="Output format (yaml or json).",
)
@click.pass_context
def config_show(ctx: click.Context, fmt: str) -> None:
    """Display the merged configuration.

    Shows the result of combining defaults, user config, project config and
    KUBECEL_* environment variables.

    Examples:
        kubecel config show
        kubecel config show --format json
    """
    cli_ctx: CLIContext = ctx.obj["cli_ctx"]
    config_dict = cli_ctx.config.model_dump(mode="json")
    if fmt == "json":
        click.echo(format_json(config_dict))
    else:
        click.echo(yaml.safe_dump(config_dict, default_flow_style=False, sort_keys=False))
