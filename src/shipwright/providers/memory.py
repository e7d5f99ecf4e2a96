"""In-memory provider suite.

Used for dry runs, local development and tests. State optionally persists to
a JSON file so successive CLI invocations see each other's changes.

Example:
    >>> suite = create_suite()
    >>> suite.cloud.describe("Registry/staging/app-repo").exists
    False
"""

from __future__ import annotations

import copy
import hashlib
import json
import threading
from pathlib import Path
from typing import Any

import structlog

from shipwright.errors import PermanentProviderError
from shipwright.providers.base import (
    ArtifactBuilder,
    CloudProvider,
    ConfirmationSignal,
    HealthProbe,
)
from shipwright.providers.registry import ProviderSuite
from shipwright.schemas.cutover import CutoverStep, CutoverStepKind
from shipwright.schemas.descriptor import (
    ObservedState,
    ResourceDescriptor,
    ResourceKind,
)
from shipwright.schemas.promotion import HealthStatus

logger = structlog.get_logger(__name__)

# Artifacts published here exist in every registry
ANY_REGISTRY = "*"


class InMemoryCloudProvider(CloudProvider):
    """Thread-safe dictionary-backed cloud provider.

    ComputeService resources get a provider-populated ``service_url`` field,
    mimicking what a real provider reports for a deployed service.

    Args:
        state_path: Optional JSON file to load from and save to.
    """

    name = "memory"

    def __init__(self, state_path: str | Path | None = None) -> None:
        self._lock = threading.Lock()
        self._resources: dict[str, dict[str, Any]] = {}
        self._artifacts: dict[str, set[str]] = {}
        self._state_path = Path(state_path) if state_path else None
        if self._state_path is not None and self._state_path.exists():
            self._load()

    def _load(self) -> None:
        assert self._state_path is not None
        data = json.loads(self._state_path.read_text(encoding="utf-8"))
        self._resources = data.get("resources", {})
        self._artifacts = {k: set(v) for k, v in data.get("artifacts", {}).items()}

    def _save(self) -> None:
        if self._state_path is None:
            return
        self._state_path.parent.mkdir(parents=True, exist_ok=True)
        data = {
            "resources": self._resources,
            "artifacts": {k: sorted(v) for k, v in self._artifacts.items()},
        }
        self._state_path.write_text(json.dumps(data, indent=2, sort_keys=True), encoding="utf-8")

    def describe(self, descriptor_id: str) -> ObservedState:
        with self._lock:
            record = self._resources.get(descriptor_id)
            if record is None:
                return ObservedState.absent(descriptor_id)
            return ObservedState(
                descriptor_id=descriptor_id,
                exists=True,
                provider_id=record["provider_id"],
                spec=copy.deepcopy(record["spec"]),
            )

    def create(self, descriptor: ResourceDescriptor) -> str:
        with self._lock:
            if descriptor.id in self._resources:
                raise PermanentProviderError("create", descriptor.id, "resource already exists")
            spec = copy.deepcopy(descriptor.spec)
            if descriptor.kind == ResourceKind.COMPUTE_SERVICE:
                spec.setdefault(
                    "service_url",
                    f"http://{descriptor.name}.{descriptor.environment.value}.svc.local",
                )
            provider_id = f"mem://{descriptor.id}"
            self._resources[descriptor.id] = {"provider_id": provider_id, "spec": spec}
            self._save()
        logger.debug("memory_resource_created", descriptor_id=descriptor.id)
        return provider_id

    def update(self, descriptor_id: str, spec: dict[str, Any]) -> None:
        with self._lock:
            record = self._resources.get(descriptor_id)
            if record is None:
                raise PermanentProviderError("update", descriptor_id, "resource does not exist")
            record["spec"].update(copy.deepcopy(spec))
            self._save()

    def delete(self, descriptor_id: str) -> None:
        with self._lock:
            self._resources.pop(descriptor_id, None)
            self._save()

    def _upsert_fields(self, descriptor_id: str, fields: dict[str, Any]) -> None:
        record = self._resources.setdefault(
            descriptor_id, {"provider_id": f"mem://{descriptor_id}", "spec": {}}
        )
        record["spec"].update(fields)
        self._save()

    def associate_domain(self, service_id: str, domain: str, target: str) -> None:
        with self._lock:
            self._upsert_fields(service_id, {"domain": domain, "target": target})

    def rotate_credential(self, secret_id: str, value_ref: str) -> None:
        with self._lock:
            self._upsert_fields(secret_id, {"value_ref": value_ref})

    def publish_artifact(self, artifact_id: str, registry_id: str = ANY_REGISTRY) -> None:
        """Make ``artifact_id`` visible to :meth:`artifact_exists`."""
        with self._lock:
            self._artifacts.setdefault(registry_id, set()).add(artifact_id)
            self._save()

    def artifact_exists(self, registry_id: str, artifact_id: str) -> bool:
        with self._lock:
            return artifact_id in self._artifacts.get(
                registry_id, set()
            ) or artifact_id in self._artifacts.get(ANY_REGISTRY, set())

    def snapshot(self) -> dict[str, dict[str, Any]]:
        """Copy of every resource record, keyed by descriptor identifier."""
        with self._lock:
            return copy.deepcopy(self._resources)


class InMemoryArtifactBuilder(ArtifactBuilder):
    """Derives a deterministic artifact id from the source ref and publishes it."""

    def __init__(self, provider: InMemoryCloudProvider, repository: str = "app") -> None:
        self._provider = provider
        self._repository = repository

    def build(self, source_ref: str) -> str:
        digest = hashlib.sha256(source_ref.encode("utf-8")).hexdigest()[:12]
        artifact_id = f"{self._repository}:{digest}"
        self._provider.publish_artifact(artifact_id)
        logger.info("memory_artifact_built", source_ref=source_ref, artifact_id=artifact_id)
        return artifact_id


class InMemoryHealthProbe(HealthProbe):
    """Reports a fixed health status for every endpoint."""

    def __init__(self, status: HealthStatus = HealthStatus.HEALTHY) -> None:
        self.status = status

    def probe(self, endpoint: str) -> HealthStatus:
        return self.status


class ProviderStateSignal(ConfirmationSignal):
    """Confirms a cutover step by reading it back from the provider."""

    def __init__(self, provider: CloudProvider) -> None:
        self._provider = provider

    def confirm(self, step: CutoverStep) -> bool:
        observed = self._provider.describe(step.target)
        if not observed.exists:
            return False
        if step.kind == CutoverStepKind.DNS_RECORD:
            return observed.spec.get("domain") == step.domain and observed.spec.get(
                "target"
            ) == step.value
        if step.kind == CutoverStepKind.SECRET_SWAP:
            return observed.spec.get("value_ref") == step.value
        return observed.spec.get("traffic_weights") == step.value


def create_suite(
    state_path: str | None = None,
    repository: str = "app",
    health: str = "healthy",
) -> ProviderSuite:
    """Entry-point factory for the ``memory`` provider.

    Args:
        state_path: JSON file persisting provider state between runs.
        repository: Repository name used in artifact identifiers.
        health: Status every health probe reports.
    """
    cloud = InMemoryCloudProvider(state_path=state_path)
    return ProviderSuite(
        cloud=cloud,
        builder=InMemoryArtifactBuilder(cloud, repository=repository),
        probe=InMemoryHealthProbe(HealthStatus(health)),
        confirmation=ProviderStateSignal(cloud),
    )


__all__ = [
    "ANY_REGISTRY",
    "InMemoryArtifactBuilder",
    "InMemoryCloudProvider",
    "InMemoryHealthProbe",
    "ProviderStateSignal",
    "create_suite",
]
