"""Test doubles and fixtures for shipwright.

Components:
    fakes: Provider, probe, confirmation, builder and sink test doubles
    fixtures: Plan documents and polling helpers

Usage:
    from testing.fakes import FakeClock, FakeCloudProvider
    from testing.fixtures.plans import example_plan_data

    provider = FakeCloudProvider()
    provider.fail("create", "Registry/staging/app-repo", TransientProviderError(...))
"""

from __future__ import annotations
