"""Capability interfaces the orchestrator depends on.

Every interaction with the outside world goes through one of these ABCs, so
the reconciler, executor, promotion pipeline and cutover controller can be
exercised against in-memory fakes.

Provider error contract:
    Implementations raise :class:`TransientProviderError` for failures worth
    retrying (throttling, eventual consistency) and
    :class:`PermanentProviderError` for everything else. Any other exception
    escaping a provider is treated as permanent by the executor.
"""

from __future__ import annotations

from abc import ABC, abstractmethod
from typing import TYPE_CHECKING, Any

if TYPE_CHECKING:
    import threading

    from shipwright.schemas.cutover import CutoverStep
    from shipwright.schemas.descriptor import ObservedState, ResourceDescriptor
    from shipwright.schemas.events import NotificationEvent
    from shipwright.schemas.promotion import HealthStatus


class CloudProvider(ABC):
    """Cloud resource operations.

    Identifiers passed to and returned from a provider are descriptor
    identifiers (``<Kind>/<environment>/<name>``); mapping them to native
    identifiers (ARNs, resource URLs) is the provider's business.
    """

    name: str = "abstract"

    @abstractmethod
    def describe(self, descriptor_id: str) -> ObservedState:
        """Fetch live state of a resource. Absent resources are not an error."""

    @abstractmethod
    def create(self, descriptor: ResourceDescriptor) -> str:
        """Create a resource and return its provider-native identifier."""

    @abstractmethod
    def update(self, descriptor_id: str, spec: dict[str, Any]) -> None:
        """Apply ``spec`` to an existing resource.

        Fields in ``spec`` overwrite live fields; fields absent from ``spec``
        are left unchanged.
        """

    @abstractmethod
    def delete(self, descriptor_id: str) -> None:
        """Delete a resource. Deleting an absent resource is a no-op."""

    @abstractmethod
    def associate_domain(self, service_id: str, domain: str, target: str) -> None:
        """Point ``domain`` at ``target`` via the DNS record ``service_id``."""

    @abstractmethod
    def rotate_credential(self, secret_id: str, value_ref: str) -> None:
        """Make ``value_ref`` the active value of the secret bundle ``secret_id``."""

    @abstractmethod
    def artifact_exists(self, registry_id: str, artifact_id: str) -> bool:
        """True if ``artifact_id`` is present in the registry ``registry_id``."""


class ArtifactBuilder(ABC):
    """Builds and publishes deployable artifacts."""

    @abstractmethod
    def build(self, source_ref: str) -> str:
        """Build ``source_ref`` and return the artifact identifier.

        Raises:
            Exception: Any failure; the promotion records it as a cause.
        """


class HealthProbe(ABC):
    """Probes a deployed endpoint."""

    @abstractmethod
    def probe(self, endpoint: str) -> HealthStatus:
        """Return healthy, unhealthy or unreachable. Must not raise."""


class ConfirmationSignal(ABC):
    """External evidence that a cutover step took effect."""

    @abstractmethod
    def confirm(self, step: CutoverStep) -> bool:
        """True once the step is observably in effect."""


class ApprovalGate(ABC):
    """Manual approval for cutover steps marked ``requires_approval``."""

    @abstractmethod
    def wait(
        self,
        step: CutoverStep,
        timeout: float,
        cancel: threading.Event | None = None,
    ) -> bool:
        """Block until approved (True), denied (False) or timed out.

        Implementations return False as soon as ``cancel`` is set.

        Raises:
            ApprovalExpired: On timeout.
        """


class NotificationSink(ABC):
    """Fire-and-forget consumer of notification events."""

    @abstractmethod
    def notify(self, event: NotificationEvent) -> None:
        """Deliver ``event``. Must not block orchestration for long."""


__all__ = [
    "ApprovalGate",
    "ArtifactBuilder",
    "CloudProvider",
    "ConfirmationSignal",
    "HealthProbe",
    "NotificationSink",
]
