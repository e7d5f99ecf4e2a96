"""Phased, confirmed and reversible cutovers."""

from __future__ import annotations

from shipwright.cutover.controller import STEP_FIELDS, CutoverController
from shipwright.cutover.loader import check_step_order, load_cutover_plan

__all__ = ["STEP_FIELDS", "CutoverController", "check_step_order", "load_cutover_plan"]
