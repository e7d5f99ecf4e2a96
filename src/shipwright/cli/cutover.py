"""Cutover command.

Steps marked ``requires_approval`` prompt on the terminal unless
``--auto-approve`` is given. An unanswered prompt expires after the
configured approval timeout and the step is reverted.

Every environment a new plan touches must already have a known-good
artifact from a successful promotion; ``--allow-unpromoted`` skips that
check.

Example:
    $ shipwright cutover cutover.yaml
    $ shipwright cutover cutover.yaml --auto-approve --output json
"""

from __future__ import annotations

import sys
import threading
import time
from pathlib import Path

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
from shipwright.cutover.loader import load_cutover_plan
from shipwright.errors import ApprovalExpired, ShipwrightError
from shipwright.providers.approvals import CANCEL_CHECK_INTERVAL_SECONDS, AutoApprovalGate
from shipwright.providers.base import ApprovalGate
from shipwright.schemas.cutover import CutoverPlan, CutoverStatus, CutoverStep

logger = structlog.get_logger(__name__)


class PromptApprovalGate(ApprovalGate):
    """Asks the operator on the terminal, giving up after ``timeout``."""

    def wait(
        self,
        step: CutoverStep,
        timeout: float,
        cancel: threading.Event | None = None,
    ) -> bool:
        answer: list[bool] = []

        def ask() -> None:
            try:
                answer.append(
                    click.confirm(
                        f"Approve cutover step '{step.step_id}' "
                        f"({step.kind.value} on {step.target})?",
                        default=False,
                        err=True,
                    )
                )
            except click.Abort:
                answer.append(False)

        prompt = threading.Thread(target=ask, name=f"approval-{step.step_id}", daemon=True)
        prompt.start()
        deadline = time.monotonic() + timeout
        while prompt.is_alive() and time.monotonic() < deadline:
            if cancel is not None and cancel.is_set():
                return False
            remaining = max(deadline - time.monotonic(), 0.0)
            prompt.join(min(remaining, CANCEL_CHECK_INTERVAL_SECONDS))
        if not answer:
            raise ApprovalExpired(step.step_id, timeout)
        return answer[0]


def _step_rows(plan: CutoverPlan) -> list[list[str]]:
    return [
        [s.step_id, s.kind.value, s.target, s.state.value, s.error or ""] for s in plan.steps
    ]


@click.command(
    name="cutover",
    help="Run a phased DNS, secret or traffic cutover.",
    epilog="""
Exit Codes:
    0  - Every step confirmed
    5  - Cutover plan validation failed, or a targeted environment was never promoted
    10 - Aborted (the failing step was reverted)
""",
)
@click.argument(
    "cutover_file",
    metavar="CUTOVER_PLAN",
    type=click.Path(exists=True, dir_okay=False, path_type=Path),
)
@click.option(
    "--auto-approve",
    is_flag=True,
    default=False,
    help="Approve every step that requires approval without prompting.",
)
@click.option(
    "--allow-unpromoted",
    is_flag=True,
    default=False,
    help="Run even if a targeted environment has no known-good artifact yet.",
)
@click.option(
    "--output",
    type=click.Choice(OUTPUT_FORMATS, case_sensitive=False),
    default="table",
    show_default=True,
    help="Output format.",
)
@click.pass_context
def cutover_command(
    ctx: click.Context,
    cutover_file: Path,
    auto_approve: bool,
    allow_unpromoted: bool,
    output: str,
) -> None:
    """Execute CUTOVER_PLAN one confirmed step at a time."""
    approvals: ApprovalGate = AutoApprovalGate() if auto_approve else PromptApprovalGate()
    try:
        plan = load_cutover_plan(cutover_file)
        if output == "table":
            info(f"Running cutover {plan.plan_id} ({len(plan.steps)} step(s))")
        with open_orchestrator(ctx, approvals=approvals) as orchestrator:
            result = orchestrator.cutover(plan, allow_unpromoted=allow_unpromoted)
    except ShipwrightError as e:
        fail(e, output)

    completed = result.status == CutoverStatus.COMPLETED
    if output == "json":
        emit_json(result.model_dump(mode="json"))
    else:
        click.echo(format_table(["STEP", "KIND", "TARGET", "STATE", "ERROR"], _step_rows(result)))
        for cause in result.causes:
            click.echo(cause.render())
        if completed:
            success(f"Cutover {result.plan_id} completed")
        else:
            warn(f"Cutover {result.plan_id} {result.status.value}")
    if not completed:
        logger.warning("cutover_command_aborted", plan_id=result.plan_id)
        sys.exit(ExitCode.NOT_PROMOTED)


__all__ = ["PromptApprovalGate", "cutover_command"]
