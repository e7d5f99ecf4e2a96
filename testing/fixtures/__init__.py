"""Shared fixtures for shipwright tests.

Example:
    from testing.fixtures import example_plan_data, wait_for_condition
"""

from __future__ import annotations

from testing.fixtures.plans import (
    cutover_plan_data,
    example_plan_data,
    promotion_plan_data,
)
from testing.fixtures.polling import PollingTimeoutError, wait_for_condition

__all__ = [
    "PollingTimeoutError",
    "cutover_plan_data",
    "example_plan_data",
    "promotion_plan_data",
    "wait_for_condition",
]
