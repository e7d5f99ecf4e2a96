"""Cutover plan loading and validation.

A cutover plan file looks like::

    plan_id: apex-cutover
    steps:
      - step_id: secrets
        kind: secret_swap
        target: SecretBundle/production/app-secrets
        value: arn:aws:secretsmanager:...:app-secrets-v2
      - step_id: apex
        kind: dns_record
        target: DnsRecord/production/apex
        domain: example.com
        value: new-app.awsapprunner.com
        predecessors: [secrets]
        requires_approval: true

Steps run in file order, so every predecessor must appear before the steps
that name it. That rule also rules out cycles.
"""

from __future__ import annotations

from collections.abc import Mapping
from pathlib import Path
from typing import Any

import structlog

from shipwright.errors import ValidationError
from shipwright.plan.loader import parse_yaml, read_yaml_file, validate_model
from shipwright.schemas.cutover import CutoverPlan, CutoverStatus, CutoverStepState
from shipwright.telemetry.tracing import traced

logger = structlog.get_logger(__name__)

CutoverSource = Mapping[str, Any] | str | Path


def check_step_order(plan: CutoverPlan) -> list[str]:
    """Return every ordering problem in ``plan`` (empty when valid)."""
    problems: list[str] = []
    all_ids = [s.step_id for s in plan.steps]
    seen: set[str] = set()
    for index, step in enumerate(plan.steps):
        if step.step_id in seen:
            problems.append(f"steps.{index}: duplicate step_id '{step.step_id}'")
            continue
        for predecessor in step.predecessors:
            if predecessor == step.step_id:
                problems.append(f"steps.{index}: step '{step.step_id}' lists itself as predecessor")
            elif predecessor not in all_ids:
                problems.append(
                    f"steps.{index}: step '{step.step_id}' has unknown predecessor '{predecessor}'"
                )
            elif predecessor not in seen:
                problems.append(
                    f"steps.{index}: predecessor '{predecessor}' must come before "
                    f"step '{step.step_id}'"
                )
        seen.add(step.step_id)
    return problems


@traced(name="shipwright.cutover.load")
def load_cutover_plan(raw: CutoverSource) -> CutoverPlan:
    """Parse and validate a cutover plan.

    Args:
        raw: Parsed mapping, YAML text or a path to a YAML file.

    Returns:
        A Pending plan with every step Pending.

    Raises:
        ValidationError: On schema errors, duplicate step ids, unknown or
            self-referencing predecessors, or predecessors listed after
            their dependents.
    """
    if isinstance(raw, Path):
        data: Mapping[str, Any] = read_yaml_file(raw)
        source = raw.name
    elif isinstance(raw, str):
        data, source = parse_yaml(raw), "<string>"
    else:
        data, source = raw, "<mapping>"

    plan = validate_model(data, CutoverPlan, source)
    problems = check_step_order(plan)
    if problems:
        raise ValidationError(f"Invalid cutover plan in {source}", errors=problems)

    if plan.status != CutoverStatus.PENDING or any(
        s.state != CutoverStepState.PENDING for s in plan.steps
    ):
        raise ValidationError(
            f"Invalid cutover plan in {source}",
            errors=["plan files must not carry execution state"],
        )

    logger.debug("cutover_plan_loaded", plan_id=plan.plan_id, steps=len(plan.steps))
    return plan


__all__ = ["CutoverSource", "check_step_order", "load_cutover_plan"]
