"""Plan loading and dependency graph operations."""

from __future__ import annotations

from shipwright.plan.graph import PlanGraph, topological_order
from shipwright.plan.loader import load_plan

__all__ = ["PlanGraph", "load_plan", "topological_order"]
