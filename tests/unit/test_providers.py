"""Unit tests for provider discovery and the in-memory provider suite."""

from __future__ import annotations

from importlib.metadata import EntryPoint
from pathlib import Path

import pytest

from shipwright.errors import PermanentProviderError, ProviderNotFoundError
from shipwright.providers import registry
from shipwright.providers.memory import (
    InMemoryArtifactBuilder,
    InMemoryCloudProvider,
    InMemoryHealthProbe,
    ProviderStateSignal,
    create_suite,
)
from shipwright.providers.registry import (
    ENTRY_POINT_GROUP,
    available_providers,
    discover_providers,
    load_provider_suite,
)
from shipwright.schemas.cutover import CutoverStep
from shipwright.schemas.descriptor import Environment, ResourceDescriptor, ResourceKind
from shipwright.schemas.promotion import HealthStatus

SERVICE = ResourceDescriptor(
    kind=ResourceKind.COMPUTE_SERVICE,
    name="staging-app",
    environment=Environment.STAGING,
    spec={"cpu": 0.5, "memory": "1GB"},
)


def _entry_point(name: str, value: str) -> EntryPoint:
    return EntryPoint(name=name, value=value, group=ENTRY_POINT_GROUP)


class TestRegistry:
    def test_memory_is_always_available(self) -> None:
        assert "memory" in available_providers()

    def test_load_memory_suite_with_options(self) -> None:
        suite = load_provider_suite("memory", {"health": "unhealthy", "repository": "web"})

        assert isinstance(suite.cloud, InMemoryCloudProvider)
        assert suite.probe.probe("http://anything/health") == HealthStatus.UNHEALTHY
        assert suite.builder.build("rev1").startswith("web:")

    def test_unknown_provider(self) -> None:
        with pytest.raises(ProviderNotFoundError) as exc_info:
            load_provider_suite("nonexistent")
        assert "memory" in exc_info.value.available

    def test_entry_point_discovery(self, monkeypatch: pytest.MonkeyPatch) -> None:
        found = [
            _entry_point("local", "shipwright.providers.memory:create_suite"),
            _entry_point("local", "somewhere.else:create_suite"),
        ]
        monkeypatch.setattr(registry, "entry_points", lambda group: found)

        assert list(discover_providers()) == ["local"]
        assert available_providers() == ["local", "memory"]
        suite = load_provider_suite("local")
        assert isinstance(suite.probe, InMemoryHealthProbe)

    def test_broken_metadata_keeps_builtin(self, monkeypatch: pytest.MonkeyPatch) -> None:
        def broken(group: str) -> list[EntryPoint]:
            raise RuntimeError("corrupt METADATA")

        monkeypatch.setattr(registry, "entry_points", broken)

        assert discover_providers() == {}
        assert available_providers() == ["memory"]


class TestInMemoryCloudProvider:
    def test_create_describe(self) -> None:
        provider = InMemoryCloudProvider()

        provider_id = provider.create(SERVICE)

        observed = provider.describe(SERVICE.id)
        assert observed.exists
        assert observed.provider_id == provider_id == "mem://ComputeService/staging/staging-app"
        assert observed.spec == {
            "cpu": 0.5,
            "memory": "1GB",
            "service_url": "http://staging-app.staging.svc.local",
        }

    def test_create_twice_fails(self) -> None:
        provider = InMemoryCloudProvider()
        provider.create(SERVICE)
        with pytest.raises(PermanentProviderError, match="already exists"):
            provider.create(SERVICE)

    def test_update_merges_fields(self) -> None:
        provider = InMemoryCloudProvider()
        provider.create(SERVICE)

        provider.update(SERVICE.id, {"cpu": 1})

        spec = provider.describe(SERVICE.id).spec
        assert spec["cpu"] == 1
        assert spec["memory"] == "1GB"

    def test_update_missing_resource(self) -> None:
        with pytest.raises(PermanentProviderError, match="does not exist"):
            InMemoryCloudProvider().update(SERVICE.id, {"cpu": 1})

    def test_delete_is_idempotent(self) -> None:
        provider = InMemoryCloudProvider()
        provider.create(SERVICE)
        provider.delete(SERVICE.id)
        provider.delete(SERVICE.id)
        assert not provider.describe(SERVICE.id).exists

    def test_describe_returns_a_copy(self) -> None:
        provider = InMemoryCloudProvider()
        provider.create(SERVICE)
        provider.describe(SERVICE.id).spec["cpu"] = 64
        assert provider.describe(SERVICE.id).spec["cpu"] == 0.5

    def test_artifacts(self) -> None:
        provider = InMemoryCloudProvider()
        provider.publish_artifact("app:1", "Registry/staging/app-repo")
        provider.publish_artifact("app:2")

        assert provider.artifact_exists("Registry/staging/app-repo", "app:1")
        assert not provider.artifact_exists("Registry/production/app-repo", "app:1")
        assert provider.artifact_exists("Registry/production/app-repo", "app:2")

    def test_state_file_round_trip(self, tmp_path: Path) -> None:
        state_path = tmp_path / "nested" / "provider.json"
        first = InMemoryCloudProvider(state_path)
        first.create(SERVICE)
        first.rotate_credential("SecretBundle/staging/app-secrets", "ref-v2")
        first.publish_artifact("app:1")

        second = InMemoryCloudProvider(state_path)

        assert second.snapshot() == first.snapshot()
        assert second.artifact_exists("Registry/staging/app-repo", "app:1")


class TestArtifactBuilder:
    def test_deterministic_and_published(self) -> None:
        provider = InMemoryCloudProvider()
        builder = InMemoryArtifactBuilder(provider)

        artifact = builder.build("a1b2c3d")

        assert artifact == builder.build("a1b2c3d")
        assert artifact != builder.build("e4f5a6b")
        assert artifact.startswith("app:") and len(artifact) == len("app:") + 12
        assert provider.artifact_exists("Registry/staging/app-repo", artifact)


class TestProviderStateSignal:
    @pytest.fixture
    def provider(self) -> InMemoryCloudProvider:
        return InMemoryCloudProvider()

    def test_dns_record(self, provider: InMemoryCloudProvider) -> None:
        step = CutoverStep(
            step_id="apex",
            kind="dns_record",
            target="DnsRecord/production/apex",
            domain="example.com",
            value="green.production.svc.local",
        )
        signal = ProviderStateSignal(provider)
        assert not signal.confirm(step)

        provider.associate_domain(step.target, "example.com", "blue.production.svc.local")
        assert not signal.confirm(step)

        provider.associate_domain(step.target, "example.com", "green.production.svc.local")
        assert signal.confirm(step)

    def test_secret_swap(self, provider: InMemoryCloudProvider) -> None:
        step = CutoverStep(
            step_id="secrets",
            kind="secret_swap",
            target="SecretBundle/production/app-secrets",
            value="ref-v2",
        )
        provider.rotate_credential(step.target, "ref-v2")
        assert ProviderStateSignal(provider).confirm(step)

    def test_traffic_weight(self, provider: InMemoryCloudProvider) -> None:
        step = CutoverStep(
            step_id="traffic",
            kind="traffic_weight",
            target=SERVICE.id,
            value={"blue": 0.0, "green": 100.0},
        )
        provider.create(SERVICE)
        signal = ProviderStateSignal(provider)
        assert not signal.confirm(step)

        provider.update(SERVICE.id, {"traffic_weights": {"blue": 0.0, "green": 100.0}})
        assert signal.confirm(step)


def test_create_suite_shares_one_cloud() -> None:
    suite = create_suite()
    artifact = suite.builder.build("rev1")
    assert suite.cloud.artifact_exists("Registry/staging/app-repo", artifact)
    assert suite.probe.probe("http://x/health") == HealthStatus.HEALTHY
