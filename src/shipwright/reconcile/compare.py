"""Structural comparison of desired and observed specs.

Comparison rules:
    - Mapping key order never matters.
    - Lists are compared as multisets, except fields declared ordered for
      the resource kind (``ORDERED_FIELDS``).
    - Numbers compare by value: ``0.5 == 0.50`` and ``2.0 == 2``.
    - Fields present in observed state but absent from the desired spec are
      ignored, at every nesting level. Providers populate such fields (ARNs,
      endpoints, timestamps) and they are not part of the desired state.

The same normalisation feeds the canonical content hash used in
idempotency keys, so two specs that compare equal always hash equal.
"""

from __future__ import annotations

import hashlib
import json
from collections.abc import Mapping
from typing import Any

from shipwright.schemas.descriptor import ResourceKind

# Fields whose list order is significant, per kind
ORDERED_FIELDS: dict[ResourceKind, frozenset[str]] = {
    ResourceKind.COMPUTE_SERVICE: frozenset({"command", "entrypoint", "args"}),
    ResourceKind.DNS_RECORD: frozenset({"records"}),
}


def _ordered_fields(kind: ResourceKind | None) -> frozenset[str]:
    if kind is None:
        return frozenset()
    return ORDERED_FIELDS.get(kind, frozenset())


def _normalize(value: Any, ordered: frozenset[str], field: str | None) -> Any:
    if isinstance(value, bool) or value is None or isinstance(value, str):
        return value
    if isinstance(value, float):
        return int(value) if value.is_integer() else value
    if isinstance(value, int):
        return value
    if isinstance(value, Mapping):
        return {str(k): _normalize(v, ordered, str(k)) for k, v in sorted(value.items())}
    if isinstance(value, (list, tuple, set, frozenset)):
        items = [_normalize(v, ordered, None) for v in value]
        if field in ordered and isinstance(value, (list, tuple)):
            return items
        return sorted(items, key=_dump)
    return str(value)


def _dump(value: Any) -> str:
    return json.dumps(value, sort_keys=True, separators=(",", ":"), default=str)


def normalize_spec(kind: ResourceKind | None, spec: Mapping[str, Any]) -> dict[str, Any]:
    """Normalize a spec for comparison and hashing.

    Args:
        kind: Resource kind (selects ordered list fields).
        spec: Raw spec mapping.

    Returns:
        Normalized copy with sorted keys, canonical numbers and unordered
        lists sorted.

    Examples:
        >>> normalize_spec(ResourceKind.DATABASE, {"b": [2, 1], "a": 1.0})
        {'a': 1, 'b': [1, 2]}
    """
    return _normalize(dict(spec), _ordered_fields(kind), None)


def canonical_json(kind: ResourceKind | None, spec: Mapping[str, Any]) -> str:
    """Serialize a spec canonically (stable across key order and list order)."""
    return _dump(normalize_spec(kind, spec))


def spec_hash(kind: ResourceKind | None, spec: Mapping[str, Any]) -> str:
    """SHA-256 of the canonical spec serialization."""
    return hashlib.sha256(canonical_json(kind, spec).encode("utf-8")).hexdigest()


def idempotency_key(target: str, operation: str, content_hash: str) -> str:
    """Derive the idempotency key of an action.

    Args:
        target: Descriptor identifier.
        operation: Action operation value.
        content_hash: Canonical spec hash (see :func:`spec_hash`).

    Returns:
        Hex SHA-256 digest.

    Examples:
        >>> len(idempotency_key("Registry/staging/app-repo", "create", "0" * 64))
        64
    """
    material = f"{target}\n{operation}\n{content_hash}".encode()
    return hashlib.sha256(material).hexdigest()


def _differences(desired: Any, observed: Any, path: str) -> list[str]:
    if isinstance(desired, dict):
        if not isinstance(observed, dict):
            return [path or "<root>"]
        found: list[str] = []
        for key, want in desired.items():
            sub = f"{path}.{key}" if path else key
            if key not in observed:
                found.append(sub)
            else:
                found.extend(_differences(want, observed[key], sub))
        return found
    if desired != observed:
        return [path or "<root>"]
    return []


def spec_differences(
    kind: ResourceKind | None,
    desired: Mapping[str, Any],
    observed: Mapping[str, Any],
) -> list[str]:
    """List the dotted paths where observed state does not match desired.

    Args:
        kind: Resource kind.
        desired: Desired spec.
        observed: Observed spec.

    Returns:
        Differing field paths, in desired-spec key order. Empty when the
        observed state satisfies the desired spec.

    Examples:
        >>> spec_differences(
        ...     ResourceKind.COMPUTE_SERVICE,
        ...     {"cpu": 0.5, "memory": "1GB"},
        ...     {"memory": "1GB", "cpu": 0.50, "arn": "arn:aws:..."},
        ... )
        []
        >>> spec_differences(ResourceKind.COMPUTE_SERVICE, {"cpu": 1}, {"cpu": 0.5})
        ['cpu']
    """
    return _differences(normalize_spec(kind, desired), normalize_spec(kind, observed), "")


def spec_satisfied(
    kind: ResourceKind | None,
    desired: Mapping[str, Any],
    observed: Mapping[str, Any],
) -> bool:
    """True when ``observed`` satisfies every field of ``desired``."""
    return not spec_differences(kind, desired, observed)


__all__ = [
    "ORDERED_FIELDS",
    "canonical_json",
    "idempotency_key",
    "normalize_spec",
    "spec_differences",
    "spec_hash",
    "spec_satisfied",
]
