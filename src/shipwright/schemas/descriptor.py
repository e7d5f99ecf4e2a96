"""Resource descriptor schemas.

Pydantic v2 models for the desired-state plan document and for the
observed state reported by a cloud provider.

Key Components:
    ResourceKind: Supported cloud resource kinds
    Environment: Deployment environments
    ResourceDescriptor: Named, typed desired-state record
    PlanDocument: Raw plan document (before dependency resolution)
    ObservedState: Live snapshot of one resource (may be absent)

Descriptor identifiers have the form ``<Kind>/<environment>/<name>``, e.g.
``ComputeService/staging/staging-app``.
"""

from __future__ import annotations

from datetime import datetime, timezone
from enum import Enum
from typing import Any, Literal

from pydantic import BaseModel, ConfigDict, Field

# Resource names: letters, digits, dots, dashes and underscores
NAME_PATTERN = r"^[A-Za-z0-9][A-Za-z0-9._-]{0,127}$"


def _utc_now() -> datetime:
    """Return current UTC time as timezone-aware datetime."""
    return datetime.now(timezone.utc)


class ResourceKind(str, Enum):
    """Kinds of cloud resource the orchestrator manages.

    Examples:
        >>> ResourceKind("ComputeService")
        <ResourceKind.COMPUTE_SERVICE: 'ComputeService'>
    """

    REGISTRY = "Registry"
    COMPUTE_SERVICE = "ComputeService"
    DATABASE = "Database"
    SECRET_BUNDLE = "SecretBundle"
    DNS_RECORD = "DnsRecord"


class Environment(str, Enum):
    """Deployment environments, in promotion order."""

    STAGING = "staging"
    PRODUCTION = "production"


def make_descriptor_id(
    kind: ResourceKind | str,
    environment: Environment | str,
    name: str,
) -> str:
    """Build a descriptor identifier.

    Args:
        kind: Resource kind.
        environment: Environment name.
        name: Resource name.

    Returns:
        Identifier of the form ``<Kind>/<environment>/<name>``.

    Examples:
        >>> make_descriptor_id(ResourceKind.REGISTRY, Environment.STAGING, "app-repo")
        'Registry/staging/app-repo'
    """
    kind_value = kind.value if isinstance(kind, ResourceKind) else kind
    env_value = environment.value if isinstance(environment, Environment) else environment
    return f"{kind_value}/{env_value}/{name}"


def parse_descriptor_id(descriptor_id: str) -> tuple[ResourceKind, Environment, str]:
    """Split a descriptor identifier into its parts.

    Args:
        descriptor_id: Identifier of the form ``<Kind>/<environment>/<name>``.

    Returns:
        Tuple of (kind, environment, name).

    Raises:
        ValueError: If the identifier is malformed or names an unknown
            kind or environment.
    """
    parts = descriptor_id.split("/", 2)
    if len(parts) != 3 or not all(parts):
        raise ValueError(f"Malformed descriptor identifier: {descriptor_id!r}")
    kind, environment, name = parts
    return ResourceKind(kind), Environment(environment), name


class ResourceDescriptor(BaseModel):
    """Named, typed desired-state record.

    Attributes:
        kind: Resource kind.
        name: Name, unique within (kind, environment).
        environment: Target environment.
        spec: Kind-specific desired fields (e.g. cpu/memory for
            ComputeService, engine/version/storage for Database).
        depends_on: Identifiers of descriptors this one depends on.

    Examples:
        >>> descriptor = ResourceDescriptor(
        ...     kind=ResourceKind.COMPUTE_SERVICE,
        ...     name="staging-app",
        ...     environment=Environment.STAGING,
        ...     spec={"cpu": 0.5, "memory": "1GB"},
        ...     depends_on=frozenset({"Registry/staging/app-repo"}),
        ... )
        >>> descriptor.id
        'ComputeService/staging/staging-app'
    """

    model_config = ConfigDict(frozen=True, extra="forbid", populate_by_name=True)

    kind: ResourceKind = Field(
        ...,
        description="Resource kind",
    )
    name: str = Field(
        ...,
        pattern=NAME_PATTERN,
        description="Resource name, unique within kind and environment",
    )
    environment: Environment = Field(
        ...,
        description="Target environment",
    )
    spec: dict[str, Any] = Field(
        default_factory=dict,
        description="Kind-specific desired-state fields",
    )
    depends_on: frozenset[str] = Field(
        default_factory=frozenset,
        alias="dependsOn",
        description="Identifiers of descriptors this one depends on",
    )

    @property
    def id(self) -> str:
        """Descriptor identifier (``<Kind>/<environment>/<name>``)."""
        return make_descriptor_id(self.kind, self.environment, self.name)


class PlanDocument(BaseModel):
    """Raw desired-state plan document.

    ``depends_on`` entries are unresolved at this stage; they may use the
    short form ``<Kind>/<name>`` (same environment as the dependent) or the
    full identifier.

    Examples:
        >>> doc = PlanDocument.model_validate({
        ...     "resources": [
        ...         {"kind": "Registry", "name": "app-repo", "environment": "staging"},
        ...     ]
        ... })
        >>> len(doc.resources)
        1
    """

    model_config = ConfigDict(frozen=True, extra="forbid")

    version: Literal["1"] = Field(
        default="1",
        description="Plan document format version",
    )
    resources: list[ResourceDescriptor] = Field(
        default_factory=list,
        description="Desired-state resource descriptors",
    )


class ObservedState(BaseModel):
    """Snapshot of a resource as reported by the provider.

    Fetched fresh at the start of every reconciliation pass. Never cached
    across passes because cloud state can change out-of-band.

    Attributes:
        descriptor_id: Identifier of the described resource.
        exists: False when the resource does not exist.
        provider_id: Provider-native identifier (ARN, URL), if it exists.
        spec: Live configuration fields.
        fetched_at: When the snapshot was taken (UTC).
    """

    model_config = ConfigDict(frozen=True, extra="forbid")

    descriptor_id: str = Field(..., min_length=1)
    exists: bool = Field(...)
    provider_id: str | None = Field(default=None)
    spec: dict[str, Any] = Field(default_factory=dict)
    fetched_at: datetime = Field(default_factory=_utc_now)

    @classmethod
    def absent(cls, descriptor_id: str) -> ObservedState:
        """Build the snapshot of a resource that does not exist."""
        return cls(descriptor_id=descriptor_id, exists=False)


__all__ = [
    "NAME_PATTERN",
    "Environment",
    "ObservedState",
    "PlanDocument",
    "ResourceDescriptor",
    "ResourceKind",
    "make_descriptor_id",
    "parse_descriptor_id",
]
