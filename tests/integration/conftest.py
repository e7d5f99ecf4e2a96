"""Integration test configuration.

Integration tests wire the reconciler, executor, promotion pipeline and
cutover controller together through :class:`Orchestrator`, on top of a
recording in-memory provider and a file-backed SQLite store.
"""

from __future__ import annotations

from collections.abc import Callable
from pathlib import Path

import pytest

from shipwright.orchestrator import Orchestrator
from shipwright.providers.approvals import AutoApprovalGate
from shipwright.providers.memory import InMemoryArtifactBuilder, InMemoryHealthProbe
from shipwright.providers.memory import ProviderStateSignal
from shipwright.providers.registry import ProviderSuite
from shipwright.schemas.config import (
    CutoverConfig,
    OrchestratorConfig,
    PromotionConfig,
    RetryConfig,
)
from shipwright.store.repository import StateStore
from testing.fakes import FakeClock, FakeCloudProvider, RecordingNotificationSink

OrchestratorFactory = Callable[[], Orchestrator]


@pytest.fixture
def store_url(tmp_path: Path) -> str:
    return f"sqlite:///{tmp_path / 'state.db'}"


@pytest.fixture
def cloud() -> FakeCloudProvider:
    """Provider shared by every orchestrator a test opens."""
    return FakeCloudProvider()


@pytest.fixture
def suite(cloud: FakeCloudProvider) -> ProviderSuite:
    return ProviderSuite(
        cloud=cloud,
        builder=InMemoryArtifactBuilder(cloud),
        probe=InMemoryHealthProbe(),
        confirmation=ProviderStateSignal(cloud),
    )


@pytest.fixture
def notifications() -> RecordingNotificationSink:
    return RecordingNotificationSink()


@pytest.fixture
def open_orchestrator(
    store_url: str,
    suite: ProviderSuite,
    notifications: RecordingNotificationSink,
) -> OrchestratorFactory:
    """Open a fresh orchestrator on the same store file, like a new process would."""
    config = OrchestratorConfig(
        retry=RetryConfig(max_attempts=3, initial_delay_ms=0, jitter=False),
        promotion=PromotionConfig(probe_interval_seconds=1, health_window_seconds=10),
        cutover=CutoverConfig(confirmation_interval_seconds=1, confirmation_timeout_seconds=10),
    )
    clock = FakeClock()

    def factory() -> Orchestrator:
        return Orchestrator(
            config,
            StateStore(store_url),
            suite,
            approvals=AutoApprovalGate(),
            notification_sinks=[notifications],
            clock=clock,
            sleep=clock.sleep,
        )

    return factory
