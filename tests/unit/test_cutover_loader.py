"""Unit tests for cutover plan loading."""

from __future__ import annotations

from pathlib import Path

import pytest

from shipwright.cutover.loader import check_step_order, load_cutover_plan
from shipwright.errors import ValidationError
from shipwright.schemas.cutover import (
    CutoverPlan,
    CutoverStatus,
    CutoverStepKind,
    CutoverStepState,
)
from testing.fixtures.plans import cutover_plan_data

CUTOVER_YAML = """\
plan_id: apex-cutover
steps:
  - step_id: secrets
    kind: secret_swap
    target: SecretBundle/production/app-secrets
    value: secretsmanager:app-secrets-v2
  - step_id: apex
    kind: dns_record
    target: DnsRecord/production/apex
    domain: example.com
    value: green.production.svc.local
    predecessors: [secrets]
    requires_approval: true
"""


class TestLoadCutoverPlan:
    def test_from_mapping(self) -> None:
        plan = load_cutover_plan(cutover_plan_data())

        assert plan.plan_id == "apex-cutover"
        assert plan.status == CutoverStatus.PENDING
        assert [s.kind for s in plan.steps] == [
            CutoverStepKind.SECRET_SWAP,
            CutoverStepKind.TRAFFIC_WEIGHT,
            CutoverStepKind.DNS_RECORD,
        ]
        assert all(s.state == CutoverStepState.PENDING for s in plan.steps)
        assert plan.step("traffic").value == {"blue": 0.0, "green": 100.0}

    def test_from_file(self, tmp_path: Path) -> None:
        path = tmp_path / "cutover.yaml"
        path.write_text(CUTOVER_YAML)

        plan = load_cutover_plan(path)

        apex = plan.step("apex")
        assert apex.requires_approval is True
        assert apex.predecessors == ["secrets"]
        assert apex.domain == "example.com"

    def test_from_yaml_text(self) -> None:
        assert load_cutover_plan(CUTOVER_YAML).plan_id == "apex-cutover"

    def test_missing_file(self, tmp_path: Path) -> None:
        with pytest.raises(ValidationError, match="File not found"):
            load_cutover_plan(tmp_path / "missing.yaml")

    def test_dns_step_requires_domain(self) -> None:
        data = cutover_plan_data()
        del data["steps"][2]["domain"]

        with pytest.raises(ValidationError) as exc_info:
            load_cutover_plan(data)
        assert any("requires 'domain'" in e for e in exc_info.value.errors)

    def test_traffic_step_requires_weights(self) -> None:
        data = cutover_plan_data()
        data["steps"][1]["value"] = "all-green"

        with pytest.raises(ValidationError) as exc_info:
            load_cutover_plan(data)
        assert any("must map revisions to weights" in e for e in exc_info.value.errors)

    def test_unknown_kind(self) -> None:
        data = cutover_plan_data()
        data["steps"][0]["kind"] = "certificate"

        with pytest.raises(ValidationError) as exc_info:
            load_cutover_plan(data)
        assert exc_info.value.errors[0].startswith("steps.0.kind")

    def test_empty_plan(self) -> None:
        with pytest.raises(ValidationError):
            load_cutover_plan({"plan_id": "empty", "steps": []})

    def test_rejects_execution_state(self) -> None:
        data = cutover_plan_data()
        data["steps"][0]["state"] = "Confirmed"

        with pytest.raises(ValidationError) as exc_info:
            load_cutover_plan(data)
        assert exc_info.value.errors == ["plan files must not carry execution state"]


class TestCheckStepOrder:
    def _plan(self, steps: list[dict]) -> CutoverPlan:
        return CutoverPlan.model_validate({"plan_id": "p", "steps": steps})

    def _step(self, step_id: str, *predecessors: str) -> dict:
        return {
            "step_id": step_id,
            "kind": "secret_swap",
            "target": f"SecretBundle/production/{step_id}",
            "value": "ref",
            "predecessors": list(predecessors),
        }

    def test_valid(self) -> None:
        plan = self._plan([self._step("a"), self._step("b", "a"), self._step("c", "a", "b")])
        assert check_step_order(plan) == []

    def test_duplicate_step_id(self) -> None:
        problems = check_step_order(self._plan([self._step("a"), self._step("a")]))
        assert problems == ["steps.1: duplicate step_id 'a'"]

    def test_self_reference(self) -> None:
        problems = check_step_order(self._plan([self._step("a", "a")]))
        assert problems == ["steps.0: step 'a' lists itself as predecessor"]

    def test_unknown_predecessor(self) -> None:
        problems = check_step_order(self._plan([self._step("a", "ghost")]))
        assert problems == ["steps.0: step 'a' has unknown predecessor 'ghost'"]

    def test_predecessor_listed_later(self) -> None:
        """Forward references are rejected, which also rules out cycles."""
        problems = check_step_order(self._plan([self._step("a", "b"), self._step("b", "a")]))
        assert problems == ["steps.0: predecessor 'b' must come before step 'a'"]

    def test_loader_reports_every_problem(self) -> None:
        data = {
            "plan_id": "p",
            "steps": [self._step("a", "ghost"), self._step("a")],
        }
        with pytest.raises(ValidationError) as exc_info:
            load_cutover_plan(data)
        assert len(exc_info.value.errors) == 2
