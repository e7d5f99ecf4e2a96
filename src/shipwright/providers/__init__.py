"""Provider capability interfaces and implementations.

- base: ABCs (CloudProvider, ArtifactBuilder, HealthProbe,
  ConfirmationSignal, ApprovalGate, NotificationSink)
- registry: entry-point discovery of provider suites
- memory: in-memory provider suite
- http: httpx health probe, TLS and DNS confirmation signals
- approvals: event-driven and automatic approval gates
- webhooks: webhook and log notification sinks
"""

from __future__ import annotations

from shipwright.providers.base import (
    ApprovalGate,
    ArtifactBuilder,
    CloudProvider,
    ConfirmationSignal,
    HealthProbe,
    NotificationSink,
)
from shipwright.providers.registry import ProviderSuite, load_provider_suite

__all__ = [
    "ApprovalGate",
    "ArtifactBuilder",
    "CloudProvider",
    "ConfirmationSignal",
    "HealthProbe",
    "NotificationSink",
    "ProviderSuite",
    "load_provider_suite",
]
