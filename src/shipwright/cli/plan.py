"""Plan and apply commands.

Example:
    $ shipwright plan plan.yaml
    $ shipwright apply plan.yaml --prune
    $ shipwright apply plan.yaml --output json
"""

from __future__ import annotations

import sys
from pathlib import Path
from typing import Any

import click
import structlog

from shipwright.cli.utils import (
    OUTPUT_FORMATS,
    ExitCode,
    emit_json,
    fail,
    format_table,
    info,
    open_orchestrator,
    success,
    warn,
)
from shipwright.errors import ShipwrightError
from shipwright.plan.loader import load_plan
from shipwright.reconcile.reconciler import ReconciliationPlan
from shipwright.schemas.action import BatchResult

logger = structlog.get_logger(__name__)

_plan_argument = click.argument(
    "plan_file",
    metavar="PLAN",
    type=click.Path(exists=True, dir_okay=False, path_type=Path),
)
_prune_option = click.option(
    "--prune/--no-prune",
    default=None,
    help="Delete managed resources no longer in the plan (default: from config).",
)
_output_option = click.option(
    "--output",
    type=click.Choice(OUTPUT_FORMATS, case_sensitive=False),
    default="table",
    show_default=True,
    help="Output format.",
)


def _plan_rows(plan: ReconciliationPlan) -> list[list[str]]:
    rows = [[a.operation.value, a.target, a.reason] for a in plan.actions]
    rows.extend(["blocked", target, reason] for target, reason in sorted(plan.blocked.items()))
    return rows


def _plan_json(plan: ReconciliationPlan) -> dict[str, Any]:
    return {
        "actions": [
            {
                "operation": a.operation.value,
                "target": a.target,
                "reason": a.reason,
                "idempotency_key": a.idempotency_key,
            }
            for a in plan.actions
        ],
        "blocked": plan.blocked,
        "counts": plan.counts(),
        "in_sync": plan.in_sync,
    }


def _batch_json(batch: BatchResult) -> dict[str, Any]:
    return {
        target: {
            "operation": r.operation.value,
            "status": r.status.value,
            "attempts": r.attempts,
            "from_ledger": r.from_ledger,
            "error": r.error,
        }
        for target, r in sorted(batch.results.items())
    }


@click.command(
    name="plan",
    help="Show the actions needed to reach the desired state.",
    epilog="""
Exit Codes:
    0  - Success
    5  - Plan validation failed
""",
)
@_plan_argument
@_prune_option
@_output_option
@click.pass_context
def plan_command(ctx: click.Context, plan_file: Path, prune: bool | None, output: str) -> None:
    """Reconcile PLAN against live state without changing anything."""
    try:
        graph = load_plan(plan_file)
        with open_orchestrator(ctx) as orchestrator:
            plan = orchestrator.plan(graph, prune=prune)
    except ShipwrightError as e:
        fail(e, output)

    if output == "json":
        emit_json(_plan_json(plan))
        return
    click.echo(format_table(["OPERATION", "TARGET", "REASON"], _plan_rows(plan)))
    counts = plan.counts()
    summary = ", ".join(f"{count} {op}" for op, count in counts.items() if count)
    success(f"Plan: {summary or 'nothing to do'}")
    if plan.blocked:
        warn(f"{len(plan.blocked)} resource(s) blocked by describe failures")


@click.command(
    name="apply",
    help="Apply the actions needed to reach the desired state.",
    epilog="""
Exit Codes:
    0  - Success
    5  - Plan validation failed
    8  - An action failed or a component was blocked
    11 - Ledger inconsistency (run 'shipwright ledger forget' after repair)
""",
)
@_plan_argument
@_prune_option
@_output_option
@click.pass_context
def apply_command(ctx: click.Context, plan_file: Path, prune: bool | None, output: str) -> None:
    """Reconcile PLAN and apply the resulting actions in dependency order."""
    if output == "table":
        info(f"Applying {plan_file}")
    try:
        graph = load_plan(plan_file)
        with open_orchestrator(ctx) as orchestrator:
            plan, batch = orchestrator.apply(graph, prune=prune)
    except ShipwrightError as e:
        fail(e, output)

    ok = batch.succeeded and not plan.blocked
    if output == "json":
        emit_json({"plan": _plan_json(plan), "results": _batch_json(batch), "succeeded": ok})
    else:
        rows = [
            [r.status.value, r.operation.value, target, r.attempts, r.error or ""]
            for target, r in sorted(batch.results.items())
        ]
        rows.extend(
            ["blocked", "-", target, 0, reason] for target, reason in sorted(plan.blocked.items())
        )
        click.echo(format_table(["STATUS", "OPERATION", "TARGET", "ATTEMPTS", "ERROR"], rows))
        if ok:
            success(f"Applied {len(plan.mutating)} change(s)")
        else:
            warn("Apply finished with failures")
    if not ok:
        logger.warning(
            "apply_command_incomplete", failed=len(batch.failed), blocked=len(plan.blocked)
        )
        sys.exit(ExitCode.PROVIDER_ERROR)


__all__ = ["apply_command", "plan_command"]
