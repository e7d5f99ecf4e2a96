"""Status command.

Shows the known-good artifact and recent promotions per environment, and the
state of recorded cutovers.

Example:
    $ shipwright status
    $ shipwright status --env production --history 3
    $ shipwright status --output json
"""

from __future__ import annotations

from contextlib import closing
from typing import Any

import click
import structlog

from shipwright.cli.utils import OUTPUT_FORMATS, emit_json, fail, format_table, open_store
from shipwright.errors import ShipwrightError
from shipwright.schemas.descriptor import Environment

logger = structlog.get_logger(__name__)


@click.command(name="status", help="Show promotion and cutover status.")
@click.option(
    "--env",
    "environment",
    type=click.Choice([e.value for e in Environment]),
    default=None,
    help="Limit to one environment.",
)
@click.option(
    "--history",
    type=click.IntRange(min=1),
    default=5,
    show_default=True,
    help="Promotions to list per environment.",
    metavar="N",
)
@click.option(
    "--output",
    type=click.Choice(OUTPUT_FORMATS, case_sensitive=False),
    default="table",
    show_default=True,
    help="Output format.",
)
@click.pass_context
def status_command(
    ctx: click.Context,
    environment: str | None,
    history: int,
    output: str,
) -> None:
    """Show what is deployed where."""
    environments = [Environment(environment)] if environment else list(Environment)
    report: dict[str, Any] = {"environments": {}, "cutovers": []}
    try:
        with closing(open_store(ctx)) as store:
            for env in environments:
                report["environments"][env.value] = {
                    "known_good": store.get_known_good(env),
                    "managed_resources": len(store.list_managed(env)),
                    "promotions": [
                        p.model_dump(mode="json")
                        for p in store.list_promotions(env, limit=history)
                    ],
                }
            report["cutovers"] = [
                {
                    "plan_id": c.plan_id,
                    "status": c.status.value,
                    "steps": {s.step_id: s.state.value for s in c.steps},
                }
                for c in store.list_cutovers()
            ]
    except ShipwrightError as e:
        fail(e, output)

    if output == "json":
        emit_json(report)
        return

    for name, env_report in report["environments"].items():
        click.echo(f"{name}: known-good {env_report['known_good'] or '-'}")
        click.echo(f"  managed resources: {env_report['managed_resources']}")
        rows = [
            [p["promotion_id"][:12], p["status"], p["artifact_id"] or "-", p["updated_at"]]
            for p in env_report["promotions"]
        ]
        if rows:
            table = format_table(["PROMOTION", "STATUS", "ARTIFACT", "UPDATED"], rows)
            click.echo("\n".join(f"  {line}" for line in table.splitlines()))
    if report["cutovers"]:
        click.echo("cutovers:")
        for cutover in report["cutovers"]:
            click.echo(f"  {cutover['plan_id']}: {cutover['status']}")


__all__ = ["status_command"]
