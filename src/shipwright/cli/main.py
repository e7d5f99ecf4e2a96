"""Main entry point for the shipwright CLI.

Commands:
    shipwright plan: Show the actions needed to reach the desired state
    shipwright apply: Apply those actions in dependency order
    shipwright promote: Build and promote an artifact through environments
    shipwright cutover: Run a phased DNS, secret or traffic cutover
    shipwright status: Show promotion and cutover status
    shipwright ledger: Inspect and repair the idempotency ledger

Example:
    $ shipwright --help
    $ shipwright --config shipwright.yaml apply plan.yaml
    $ shipwright --log-level DEBUG promote a1b2c3d --plan plan.yaml
"""

from __future__ import annotations

import sys
from importlib.metadata import version as get_version
from pathlib import Path

import click

from shipwright.cli.cutover import cutover_command
from shipwright.cli.ledger import ledger
from shipwright.cli.plan import apply_command, plan_command
from shipwright.cli.promote import promote_command
from shipwright.cli.status import status_command


def _get_version() -> str:
    """Package version from metadata, or 'unknown' if not installed."""
    try:
        return get_version("shipwright")
    except Exception:
        return "unknown"


@click.group(
    name="shipwright",
    help="shipwright - idempotent infrastructure and deployment orchestration.",
    epilog="Use 'shipwright <command> --help' for command-specific help.",
    context_settings={
        "help_option_names": ["-h", "--help"],
    },
)
@click.version_option(
    version=_get_version(),
    prog_name="shipwright",
    message="%(prog)s %(version)s",
)
@click.option(
    "--config",
    "-c",
    "config_path",
    type=click.Path(dir_okay=False, path_type=Path),
    default=None,
    help="Configuration file (default: ./shipwright.yaml if present).",
    metavar="PATH",
)
@click.option(
    "--log-level",
    type=click.Choice(["DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"], case_sensitive=False),
    default=None,
    help="Log level (overrides configuration).",
)
@click.option(
    "--json-logs",
    is_flag=True,
    default=False,
    help="Emit logs as JSON lines on stderr.",
)
@click.pass_context
def cli(
    ctx: click.Context,
    config_path: Path | None,
    log_level: str | None,
    json_logs: bool,
) -> None:
    """Root command group for the shipwright CLI."""
    ctx.ensure_object(dict)
    ctx.obj["config_path"] = config_path
    ctx.obj["log_level"] = log_level.upper() if log_level else None
    ctx.obj["json_logs"] = json_logs


cli.add_command(plan_command)
cli.add_command(apply_command)
cli.add_command(promote_command)
cli.add_command(cutover_command)
cli.add_command(status_command)
cli.add_command(ledger)


def main(argv: list[str] | None = None) -> None:
    """Console-script entry point.

    Args:
        argv: Command-line arguments (uses sys.argv if None).
    """
    try:
        cli(args=argv, standalone_mode=False)
    except click.ClickException as e:
        e.show()
        sys.exit(e.exit_code)
    except click.Abort:
        click.echo("Aborted!", err=True)
        sys.exit(1)
    except Exception as e:
        click.echo(f"Error: {e}", err=True)
        sys.exit(1)


__all__ = ["cli", "main"]
