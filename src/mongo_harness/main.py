"""Command-line entry point for running harness scenarios."""

import asyncio
import sys
import traceback
from typing import Optional, Tuple

import click

from . import __version__
from .config.logging import configure_logging
from .config.settings import HarnessSettings, load_settings
from .errors import HarnessError
from .scenarios import SCENARIOS, run_scenario


class CLIError(Exception):
    """Base CLI error with user-friendly messages."""

    def __init__(self, message: str, suggestion: Optional[str] = None):
        self.message = message
        self.suggestion = suggestion
        super().__init__(message)


def handle_cli_error(error: Exception, verbose: bool = False):
    """Report an error and exit non-zero."""
    if isinstance(error, (CLIError, HarnessError)):
        click.echo(f"Error: {error.message}", err=True)
        if error.suggestion:
            click.echo(f"Suggestion: {error.suggestion}", err=True)
    else:
        click.echo(f"Unexpected error: {error}", err=True)
        if verbose:
            click.echo(traceback.format_exc(), err=True)
        else:
            click.echo("Run with --verbose for detailed error information", err=True)
    sys.exit(1)


@click.group()
@click.version_option(version=__version__, prog_name="mongo-harness")
@click.option("--verbose", "-v", is_flag=True, help="Enable debug logging")
@click.option(
    "--config",
    "-c",
    type=click.Path(exists=True, dir_okay=False),
    help="YAML settings file",
)
@click.pass_context
def cli(ctx: click.Context, verbose: bool, config: Optional[str]):
    """Launch database servers and verify protocol-level behaviour."""
    ctx.ensure_object(dict)
    ctx.obj["verbose"] = verbose
    try:
        settings = load_settings(config)
    except HarnessError as e:
        handle_cli_error(e, verbose)

    level = "DEBUG" if verbose else settings.logging.level
    configure_logging(
        level=level,
        log_file=settings.logging.file_path,
        json_logs=settings.logging.json_format,
    )
    ctx.obj["settings"] = settings


@cli.command(name="list")
def list_scenarios():
    """List the built-in scenarios."""
    for name, func in sorted(SCENARIOS.items()):
        doc = (sys.modules[func.__module__].__doc__ or "").strip().splitlines()
        click.echo(f"{name:<14} {doc[0] if doc else ''}")


@cli.command()
@click.argument("names", nargs=-1, required=True)
@click.option("--keep-data", is_flag=True, help="Keep data directories of passing scenarios")
@click.pass_context
def run(ctx: click.Context, names: Tuple[str, ...], keep_data: bool):
    """Run one or more scenarios; exits 1 if any of them fails."""
    unknown = [name for name in names if name not in SCENARIOS]
    if unknown:
        handle_cli_error(
            CLIError(
                f"Unknown scenario(s): {', '.join(unknown)}",
                "Use 'mongo-harness list' to see available scenarios",
            ),
            ctx.obj["verbose"],
        )

    settings: HarnessSettings = ctx.obj["settings"]
    failures = 0
    for name in names:
        outcome = asyncio.run(run_scenario(name, settings, keep_data=keep_data))
        if outcome.passed:
            click.echo(f"PASS {name} ({outcome.duration:.1f}s)")
        else:
            failures += 1
            click.echo(f"FAIL {name} ({outcome.duration:.1f}s) {outcome.error_type}: {outcome.error}")

    if failures:
        sys.exit(1)


if __name__ == "__main__":
    cli()
