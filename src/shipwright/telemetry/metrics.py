"""OpenTelemetry metrics for orchestration operations.

Metrics Emitted:
    Counters:
        - shipwright_actions_total: Applied actions by operation, kind and status
        - shipwright_action_retries_total: Retry attempts by operation
        - shipwright_promotions_total: Terminal promotions by environment and status
        - shipwright_cutover_steps_total: Cutover step outcomes by kind and state

    Histograms:
        - shipwright_action_duration_seconds: Action apply duration

Example:
    >>> metrics = OrchestratorMetrics()
    >>> metrics.record_action("create", "Registry", "success", duration_seconds=0.4)
"""

from __future__ import annotations

import threading
from typing import TYPE_CHECKING

from opentelemetry import metrics

if TYPE_CHECKING:
    from opentelemetry.metrics import Counter, Histogram


class OrchestratorMetrics:
    """OpenTelemetry metrics collector for shipwright.

    Instruments are created lazily on first use.
    """

    ACTIONS_TOTAL = "shipwright_actions_total"
    ACTION_RETRIES_TOTAL = "shipwright_action_retries_total"
    ACTION_DURATION_SECONDS = "shipwright_action_duration_seconds"
    PROMOTIONS_TOTAL = "shipwright_promotions_total"
    CUTOVER_STEPS_TOTAL = "shipwright_cutover_steps_total"

    def __init__(self, meter_name: str = "shipwright", meter_version: str = "0.1.0") -> None:
        self._meter = metrics.get_meter(meter_name, meter_version)
        self._actions_counter: Counter | None = None
        self._retries_counter: Counter | None = None
        self._duration_histogram: Histogram | None = None
        self._promotions_counter: Counter | None = None
        self._cutover_counter: Counter | None = None

    @property
    def actions_counter(self) -> Counter:
        """Get or create the actions counter."""
        if self._actions_counter is None:
            self._actions_counter = self._meter.create_counter(
                self.ACTIONS_TOTAL,
                unit="1",
                description="Applied actions by operation, kind and status",
            )
        return self._actions_counter

    @property
    def retries_counter(self) -> Counter:
        """Get or create the retries counter."""
        if self._retries_counter is None:
            self._retries_counter = self._meter.create_counter(
                self.ACTION_RETRIES_TOTAL,
                unit="1",
                description="Provider call retries by operation",
            )
        return self._retries_counter

    @property
    def duration_histogram(self) -> Histogram:
        """Get or create the action duration histogram."""
        if self._duration_histogram is None:
            self._duration_histogram = self._meter.create_histogram(
                self.ACTION_DURATION_SECONDS,
                unit="s",
                description="Duration of action application in seconds",
            )
        return self._duration_histogram

    @property
    def promotions_counter(self) -> Counter:
        """Get or create the promotions counter."""
        if self._promotions_counter is None:
            self._promotions_counter = self._meter.create_counter(
                self.PROMOTIONS_TOTAL,
                unit="1",
                description="Promotions reaching a terminal state",
            )
        return self._promotions_counter

    @property
    def cutover_counter(self) -> Counter:
        """Get or create the cutover step counter."""
        if self._cutover_counter is None:
            self._cutover_counter = self._meter.create_counter(
                self.CUTOVER_STEPS_TOTAL,
                unit="1",
                description="Cutover step outcomes",
            )
        return self._cutover_counter

    def record_action(
        self,
        operation: str,
        kind: str,
        status: str,
        *,
        duration_seconds: float | None = None,
    ) -> None:
        """Record an applied action.

        Args:
            operation: create, update, delete or noop.
            kind: Resource kind.
            status: success, failed or skipped.
            duration_seconds: Apply duration, if measured.
        """
        attributes = {"operation": operation, "kind": kind, "status": status}
        self.actions_counter.add(1, attributes=attributes)
        if duration_seconds is not None:
            self.duration_histogram.record(duration_seconds, attributes=attributes)

    def record_retry(self, operation: str) -> None:
        """Record one retry of a provider call."""
        self.retries_counter.add(1, attributes={"operation": operation})

    def record_promotion(self, environment: str, status: str) -> None:
        """Record a promotion reaching a terminal state."""
        self.promotions_counter.add(
            1, attributes={"environment": environment, "status": status}
        )

    def record_cutover_step(self, kind: str, state: str) -> None:
        """Record a cutover step outcome."""
        self.cutover_counter.add(1, attributes={"kind": kind, "state": state})


_default: OrchestratorMetrics | None = None
_default_lock = threading.Lock()


def get_metrics() -> OrchestratorMetrics:
    """Return the process-wide metrics collector."""
    global _default
    if _default is None:
        with _default_lock:
            if _default is None:
                _default = OrchestratorMetrics()
    return _default


__all__ = ["OrchestratorMetrics", "get_metrics"]
