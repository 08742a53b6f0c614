"""CLI entry point for kubecel.

This module defines the Click-based command-line interface for kubecel.
"""

from __future__ import annotations

import logging
from pathlib import Path

import click
from dotenv import load_dotenv

from kubecel.logging import configure_logging

# KUBECEL_* settings may live in ./.env; load before any config is read
load_dotenv(dotenv_path=Path.cwd() / ".env", override=False)

from kubecel import __version__  # noqa: E402
from kubecel.cli.commands.config import config  # noqa: E402
from kubecel.cli.commands.convert import convert  # noqa: E402
from kubecel.cli.commands.deps import deps  # noqa: E402
from kubecel.cli.commands.hydrate import hydrate  # noqa: E402
from kubecel.cli.context import CLIContext, ExitCode  # noqa: E402
from kubecel.cli.output import format_error  # noqa: E402
from kubecel.config import load_config  # noqa: E402
from kubecel.exceptions import ConfigError  # noqa: E402


@click.group(invoke_without_command=True)
@click.version_option(version=__version__, prog_name="kubecel")
@click.option(
    "-c",
    "--config",
    "config_file",
    type=click.Path(exists=False, path_type=str),
    default=None,
    help="Path to config file (overrides ./kubecel.yaml).",
)
@click.option(
    "-v",
    "--verbose",
    count=True,
    help="Increase verbosity (-v for INFO, -vv for DEBUG).",
)
@click.option(
    "-q",
    "--quiet",
    is_flag=True,
    default=False,
    help="Suppress non-essential output (ERROR level only).",
)
@click.pass_context
def cli(
    ctx: click.Context,
    config_file: str | None,
    verbose: int,
    quiet: bool,
) -> None:
    """kubecel - compile resource expressions to CEL."""
    ctx.ensure_object(dict)

    # Load configuration first (before logging setup)
    try:
        config_path = Path(config_file) if config_file else None
        config = load_config(config_path)
    except ConfigError as e:
        details = []
        if e.field:
            details.append(f"Field: {e.field}")
        if e.value is not None:
            details.append(f"Value: {e.value}")
        click.echo(format_error(e.message, details=details), err=True)
        ctx.exit(ExitCode.FAILURE)

    ctx.obj["cli_ctx"] = CLIContext(
        config=config,
        config_path=config_path,
        verbosity=verbose,
        quiet=quiet,
    )

    # Priority: quiet > verbose > config
    verbosity_map = {
        "error": logging.ERROR,
        "warning": logging.WARNING,
        "info": logging.INFO,
        "debug": logging.DEBUG,
    }
    if quiet:
        level = logging.ERROR
    elif verbose > 0:
        level = logging.INFO if verbose == 1 else logging.DEBUG
    else:
        level = verbosity_map.get(config.verbosity, logging.WARNING)

    configure_logging(level=level)

    if ctx.invoked_subcommand is None:
        click.echo(ctx.get_help())


cli.add_command(convert)
cli.add_command(deps)
cli.add_command(hydrate)
cli.add_command(config)

if __name__ == "__main__":
    cli()
