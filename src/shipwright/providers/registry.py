"""Provider discovery via entry points.

Provider packages register a factory in the ``shipwright.providers``
entry-point group. The factory takes the ``provider.options`` mapping from
the configuration as keyword arguments and returns a :class:`ProviderSuite`::

    [project.entry-points."shipwright.providers"]
    aws = "shipwright_aws:create_suite"

Loading is lazy: listing providers does not import them.
"""

from __future__ import annotations

from collections.abc import Callable
from dataclasses import dataclass
from importlib.metadata import EntryPoint, entry_points
from typing import Any

import structlog

from shipwright.errors import ProviderNotFoundError
from shipwright.providers.base import (
    ArtifactBuilder,
    CloudProvider,
    ConfirmationSignal,
    HealthProbe,
)

logger = structlog.get_logger(__name__)

ENTRY_POINT_GROUP = "shipwright.providers"
BUILTIN_PROVIDER = "memory"


@dataclass(frozen=True)
class ProviderSuite:
    """The set of capabilities one provider package supplies."""

    cloud: CloudProvider
    builder: ArtifactBuilder
    probe: HealthProbe
    confirmation: ConfirmationSignal


SuiteFactory = Callable[..., ProviderSuite]


def discover_providers() -> dict[str, EntryPoint]:
    """Scan the entry-point group without importing anything."""
    try:
        eps = entry_points(group=ENTRY_POINT_GROUP)
    except Exception as e:  # noqa: BLE001
        # Broken distribution metadata must not hide the builtin provider
        logger.error("provider_discovery_failed", group=ENTRY_POINT_GROUP, error=str(e))
        return {}

    found: dict[str, EntryPoint] = {}
    for ep in eps:
        if ep.name in found:
            logger.warning("provider_duplicate", name=ep.name, value=ep.value)
            continue
        found[ep.name] = ep
    return found


def _builtin_factory(name: str) -> SuiteFactory | None:
    if name == BUILTIN_PROVIDER:
        from shipwright.providers.memory import create_suite

        return create_suite
    return None


def available_providers() -> list[str]:
    """Names of every installed provider, builtin included."""
    return sorted(set(discover_providers()) | {BUILTIN_PROVIDER})


def load_provider_suite(name: str, options: dict[str, Any] | None = None) -> ProviderSuite:
    """Load and instantiate the provider registered as ``name``.

    Args:
        name: Entry-point name (``memory`` is always available).
        options: Keyword arguments for the provider factory.

    Returns:
        The provider's capability suite.

    Raises:
        ProviderNotFoundError: If no provider is registered under ``name``.
    """
    discovered = discover_providers()
    factory: SuiteFactory | None
    if name in discovered:
        factory = discovered[name].load()
    else:
        factory = _builtin_factory(name)
    if factory is None:
        raise ProviderNotFoundError(name, available=available_providers())

    suite = factory(**(options or {}))
    logger.info("provider_loaded", provider=name)
    return suite


__all__ = [
    "BUILTIN_PROVIDER",
    "ENTRY_POINT_GROUP",
    "ProviderSuite",
    "available_providers",
    "discover_providers",
    "load_provider_suite",
]
