"""Ledger commands.

The idempotency ledger records every mutating action. After a ledger
inconsistency has been repaired by hand, ``forget`` removes the offending
entry so the next apply re-checks live state from scratch.

Example:
    $ shipwright ledger list --target ComputeService/staging/staging-app
    $ shipwright ledger forget 3f2a...c9
"""

from __future__ import annotations

from contextlib import closing

import click
import structlog

from shipwright.cli.utils import (
    OUTPUT_FORMATS,
    ExitCode,
    emit_json,
    error_exit,
    fail,
    format_table,
    open_store,
    success,
)
from shipwright.errors import ShipwrightError
from shipwright.schemas.action import LedgerStatus

logger = structlog.get_logger(__name__)


@click.group(name="ledger", help="Inspect and repair the idempotency ledger.")
def ledger() -> None:
    """Idempotency ledger command group."""


@ledger.command(name="list", help="List ledger entries, newest first.")
@click.option("--target", default=None, help="Only entries for this descriptor id.")
@click.option(
    "--status",
    type=click.Choice([s.value for s in LedgerStatus]),
    default=None,
    help="Only entries with this status.",
)
@click.option(
    "--output",
    type=click.Choice(OUTPUT_FORMATS, case_sensitive=False),
    default="table",
    show_default=True,
    help="Output format.",
)
@click.pass_context
def list_command(
    ctx: click.Context,
    target: str | None,
    status: str | None,
    output: str,
) -> None:
    try:
        with closing(open_store(ctx)) as store:
            entries = store.list_ledger(
                target=target, status=LedgerStatus(status) if status else None
            )
    except ShipwrightError as e:
        fail(e, output)

    if output == "json":
        emit_json([e.model_dump(mode="json") for e in entries])
        return
    rows = [
        [e.idempotency_key, e.status.value, e.operation.value, e.target, e.attempts]
        for e in entries
    ]
    click.echo(format_table(["KEY", "STATUS", "OPERATION", "TARGET", "ATTEMPTS"], rows))


@ledger.command(name="forget", help="Delete one ledger entry after manual repair.")
@click.argument("key")
@click.pass_context
def forget_command(ctx: click.Context, key: str) -> None:
    """Remove the ledger entry KEY."""
    try:
        with closing(open_store(ctx)) as store:
            deleted = store.forget(key)
    except ShipwrightError as e:
        fail(e)
    if not deleted:
        error_exit("No ledger entry with that key", exit_code=ExitCode.GENERAL_ERROR, key=key)
    success(f"Forgot ledger entry {key}")


__all__ = ["ledger"]
