"""Root test configuration for shipwright.

Fixtures:
    reset_otel_global_state: Reset OpenTelemetry providers between tests
    reset_structlog_config: Reset structlog to defaults after tests
    store: In-memory state store
    provider: Recording, scriptable cloud provider
    fast_retry: Retry configuration without delays
    clock: Fake monotonic clock
    reconciler / executor: Components wired to the fixtures above

Note:
    Do NOT add __init__.py to test directories - pytest uses importlib mode.
    Shared test doubles live in the top-level ``testing`` package.
"""

from __future__ import annotations

from collections.abc import Generator

import pytest

from shipwright.executor.executor import ActionExecutor
from shipwright.reconcile.reconciler import Reconciler
from shipwright.schemas.config import RetryConfig
from shipwright.store.repository import StateStore
from testing.fakes import FakeClock, FakeCloudProvider


def pytest_configure(config: pytest.Config) -> None:
    """Register custom markers for the test suite."""
    config.addinivalue_line(
        "markers",
        "integration: marks tests that exercise several components end to end",
    )


@pytest.fixture(autouse=True)
def reset_otel_global_state() -> Generator[None, None, None]:
    """Reset the global TracerProvider and MeterProvider around each test.

    Tests that install SDK providers (to capture spans or metrics) would
    otherwise leak them into later tests.
    """
    from opentelemetry import metrics, trace
    from opentelemetry.sdk.metrics import MeterProvider
    from opentelemetry.sdk.trace import TracerProvider

    from shipwright.telemetry.tracing import reset_tracer

    trace._TRACER_PROVIDER_SET_ONCE._done = False
    trace._TRACER_PROVIDER = TracerProvider()
    metrics._internal._METER_PROVIDER_SET_ONCE._done = False
    metrics._internal._METER_PROVIDER = MeterProvider()
    reset_tracer()

    yield

    trace._TRACER_PROVIDER_SET_ONCE._done = False
    trace._TRACER_PROVIDER = TracerProvider()
    metrics._internal._METER_PROVIDER_SET_ONCE._done = False
    metrics._internal._METER_PROVIDER = MeterProvider()
    reset_tracer()


@pytest.fixture(autouse=True)
def reset_structlog_config() -> Generator[None, None, None]:
    """Reset structlog configuration after each test.

    CLI tests call configure_logging(), which binds the CliRunner's stderr.
    """
    import structlog

    yield

    structlog.reset_defaults()


@pytest.fixture
def store() -> Generator[StateStore, None, None]:
    """In-memory state store, disposed after the test."""
    state_store = StateStore.in_memory()
    yield state_store
    state_store.close()


@pytest.fixture
def provider() -> FakeCloudProvider:
    return FakeCloudProvider()


@pytest.fixture
def fast_retry() -> RetryConfig:
    """Three attempts, no backoff delay, no jitter."""
    return RetryConfig(max_attempts=3, initial_delay_ms=0, jitter=False)


@pytest.fixture
def clock() -> FakeClock:
    return FakeClock()


@pytest.fixture
def reconciler(
    provider: FakeCloudProvider,
    store: StateStore,
    fast_retry: RetryConfig,
    clock: FakeClock,
) -> Reconciler:
    return Reconciler(provider, store, retry=fast_retry, sleep=clock.sleep)


@pytest.fixture
def executor(
    provider: FakeCloudProvider,
    store: StateStore,
    fast_retry: RetryConfig,
    clock: FakeClock,
) -> ActionExecutor:
    return ActionExecutor(provider, store, retry=fast_retry, concurrency=4, sleep=clock.sleep)
