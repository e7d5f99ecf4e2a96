"""Promote command.

Example:
    $ shipwright promote a1b2c3d --plan plan.yaml
    $ shipwright promote a1b2c3d --plan plan.yaml --env staging
    $ shipwright promote a1b2c3d --plan plan.yaml --output json
"""

from __future__ import annotations

import sys
from pathlib import Path

import click
import structlog

from shipwright.cli.utils import (
    OUTPUT_FORMATS,
    ExitCode,
    emit_json,
    fail,
    info,
    open_orchestrator,
    success,
    warn,
)
from shipwright.errors import ShipwrightError
from shipwright.plan.loader import load_plan
from shipwright.schemas.descriptor import Environment
from shipwright.schemas.promotion import EnvironmentPromotion, PromotionStatus

logger = structlog.get_logger(__name__)


def format_promotion(promotion: EnvironmentPromotion) -> str:
    """Human-readable summary of one promotion record."""
    marker = "✓" if promotion.status == PromotionStatus.PROMOTED else "✗"
    lines = [
        f"{marker} {promotion.environment.value}: {promotion.status.value}",
        f"    promotion: {promotion.promotion_id}",
        f"    artifact:  {promotion.artifact_id or '-'}",
    ]
    if promotion.previous_artifact_id:
        lines.append(f"    previous:  {promotion.previous_artifact_id}")
    if promotion.rollback_artifact_id:
        lines.append(f"    restored:  {promotion.rollback_artifact_id}")
    if promotion.health_check_results:
        healthy = sum(1 for r in promotion.health_check_results if r.status.value == "healthy")
        lines.append(f"    probes:    {healthy}/{len(promotion.health_check_results)} healthy")
    lines.extend(f"    {cause.render()}" for cause in promotion.causes)
    return "\n".join(lines)


@click.command(
    name="promote",
    help="Build SOURCE_REF and promote it through environments.",
    epilog="""
Exit Codes:
    0  - Promoted in every environment
    5  - Plan validation failed
    9  - Another promotion is active in an environment
    10 - Rolled back or failed (see the cause chain)
    11 - Ledger inconsistency
""",
)
@click.argument("source_ref")
@click.option(
    "--plan",
    "plan_file",
    required=True,
    type=click.Path(exists=True, dir_okay=False, path_type=Path),
    help="Plan file describing every environment.",
    metavar="PLAN",
)
@click.option(
    "--env",
    "environments",
    multiple=True,
    type=click.Choice([e.value for e in Environment]),
    help="Environment to promote into; repeat for a chain (default: staging, production).",
)
@click.option(
    "--output",
    type=click.Choice(OUTPUT_FORMATS, case_sensitive=False),
    default="table",
    show_default=True,
    help="Output format.",
)
@click.pass_context
def promote_command(
    ctx: click.Context,
    source_ref: str,
    plan_file: Path,
    environments: tuple[str, ...],
    output: str,
) -> None:
    """Promote SOURCE_REF, stopping at the first environment that is not promoted.

    \b
    SOURCE_REF: Source revision to build (e.g. a commit sha).
    """
    chain = [Environment(e) for e in environments] or list(Environment)
    if output == "table":
        info(f"Promoting {source_ref} through {', '.join(e.value for e in chain)}")
    try:
        graph = load_plan(plan_file)
        with open_orchestrator(ctx) as orchestrator:
            promotions = orchestrator.promote(source_ref, graph, chain)
    except ShipwrightError as e:
        fail(e, output)

    promoted = all(p.status == PromotionStatus.PROMOTED for p in promotions) and len(
        promotions
    ) == len(chain)
    if output == "json":
        emit_json(
            {
                "promoted": promoted,
                "promotions": [p.model_dump(mode="json") for p in promotions],
            }
        )
    else:
        for promotion in promotions:
            click.echo(format_promotion(promotion))
        if promoted:
            success(f"Promoted {source_ref} to {chain[-1].value}")
        else:
            warn(f"Promotion of {source_ref} stopped")
    if not promoted:
        logger.warning("promote_command_stopped", source_ref=source_ref)
        sys.exit(ExitCode.NOT_PROMOTED)


__all__ = ["format_promotion", "promote_command"]
