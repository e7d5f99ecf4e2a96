"""Network-backed health probe and confirmation signals.

HttpHealthProbe and TlsHandshakeSignal use httpx; DnsResolutionSignal uses
the system resolver. All three accept injected clients or resolvers so they
can be tested without network access.
"""

from __future__ import annotations

import socket
from collections.abc import Callable
from urllib.parse import urlparse

import httpx
import structlog

from shipwright.providers.base import ConfirmationSignal, HealthProbe
from shipwright.schemas.cutover import CutoverStep, CutoverStepKind
from shipwright.schemas.promotion import HealthStatus

logger = structlog.get_logger(__name__)

_ALLOWED_URL_SCHEMES = frozenset({"http", "https"})


class HttpHealthProbe(HealthProbe):
    """Probe an HTTP endpoint.

    2xx is healthy, any other status is unhealthy, and a transport error
    (refused connection, DNS failure, timeout) is unreachable.

    Args:
        timeout_seconds: Per-request timeout.
        client: Optional preconfigured httpx client.

    Example:
        >>> probe = HttpHealthProbe(timeout_seconds=2.0)
        >>> probe.probe("http://localhost:1/health")  # doctest: +SKIP
        <HealthStatus.UNREACHABLE: 'unreachable'>
    """

    def __init__(self, timeout_seconds: float = 5.0, client: httpx.Client | None = None) -> None:
        self._client = client or httpx.Client(timeout=timeout_seconds, follow_redirects=True)

    def probe(self, endpoint: str) -> HealthStatus:
        if urlparse(endpoint).scheme not in _ALLOWED_URL_SCHEMES:
            logger.warning("health_probe_invalid_endpoint", endpoint=endpoint)
            return HealthStatus.UNREACHABLE
        try:
            response = self._client.get(endpoint)
        except httpx.HTTPError as e:
            logger.debug("health_probe_unreachable", endpoint=endpoint, error=str(e))
            return HealthStatus.UNREACHABLE
        if response.is_success:
            return HealthStatus.HEALTHY
        logger.debug("health_probe_unhealthy", endpoint=endpoint, status_code=response.status_code)
        return HealthStatus.UNHEALTHY

    def close(self) -> None:
        self._client.close()


class TlsHandshakeSignal(ConfirmationSignal):
    """Confirm a step by completing an HTTPS request to its domain.

    Only meaningful for ``dns_record`` steps; other kinds are confirmed by
    the provider state signal.
    """

    def __init__(self, timeout_seconds: float = 5.0, client: httpx.Client | None = None) -> None:
        self._client = client or httpx.Client(timeout=timeout_seconds, verify=True)

    def confirm(self, step: CutoverStep) -> bool:
        if step.kind != CutoverStepKind.DNS_RECORD or not step.domain:
            return False
        url = f"https://{step.domain}/"
        try:
            self._client.head(url)
        except httpx.HTTPError as e:
            logger.debug("tls_handshake_failed", domain=step.domain, error=str(e))
            return False
        return True


Resolver = Callable[[str], list[str]]


def _system_resolve(hostname: str) -> list[str]:
    try:
        infos = socket.getaddrinfo(hostname, None)
    except socket.gaierror:
        return []
    return sorted({str(info[4][0]) for info in infos})


class DnsResolutionSignal(ConfirmationSignal):
    """Confirm a ``dns_record`` step once the domain resolves to the new target.

    The target may be an address or a hostname; hostnames are resolved too
    and the step is confirmed when the two address sets intersect.
    """

    def __init__(self, resolver: Resolver | None = None) -> None:
        self._resolve = resolver or _system_resolve

    def confirm(self, step: CutoverStep) -> bool:
        if step.kind != CutoverStepKind.DNS_RECORD or not step.domain:
            return False
        target = str(step.value)
        domain_addresses = set(self._resolve(step.domain))
        if not domain_addresses:
            return False
        if target in domain_addresses:
            return True
        return bool(domain_addresses & set(self._resolve(target)))


__all__ = ["DnsResolutionSignal", "HttpHealthProbe", "TlsHandshakeSignal"]
