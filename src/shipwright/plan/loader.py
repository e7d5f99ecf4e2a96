"""YAML loader for desired-state plan documents.

Turns a plan document (mapping, YAML text or file path) into a validated,
acyclic :class:`PlanGraph`. Every problem is reported as a
:class:`ValidationError` before any provider is contacted.

Plan document format::

    version: "1"
    resources:
      - kind: Registry
        name: app-repo
        environment: staging
      - kind: ComputeService
        name: staging-app
        environment: staging
        spec: {cpu: 0.5, memory: 1GB}
        dependsOn: [Registry/app-repo]

``dependsOn`` entries use either the short form ``<Kind>/<name>`` (same
environment as the dependent) or the full ``<Kind>/<environment>/<name>``.
"""

from __future__ import annotations

from collections.abc import Mapping
from pathlib import Path
from typing import Any, TypeVar, cast

import structlog
import yaml
from pydantic import BaseModel
from pydantic import ValidationError as PydanticValidationError

from shipwright.errors import ValidationError
from shipwright.plan.graph import PlanGraph, topological_order
from shipwright.schemas.descriptor import (
    PlanDocument,
    ResourceDescriptor,
    make_descriptor_id,
)
from shipwright.telemetry.tracing import traced

logger = structlog.get_logger(__name__)

T = TypeVar("T", bound=BaseModel)

PlanSource = Mapping[str, Any] | str | Path


def read_yaml_file(path: Path) -> dict[str, Any]:
    """Load and parse a YAML file.

    Raises:
        ValidationError: If the file is missing or is not a YAML mapping.
    """
    if not path.exists():
        raise ValidationError(f"File not found: {path}")
    return parse_yaml(path.read_text(encoding="utf-8"), source=path.name)


def parse_yaml(text: str, source: str = "<string>") -> dict[str, Any]:
    """Parse YAML text into a mapping.

    Raises:
        ValidationError: On invalid syntax or a non-mapping document.
    """
    try:
        data = yaml.safe_load(text)
    except yaml.YAMLError as e:
        raise ValidationError(f"Invalid YAML syntax in {source}", errors=[str(e)]) from e
    if data is None:
        return {}
    if not isinstance(data, dict):
        raise ValidationError(
            f"Invalid document in {source}",
            errors=[f"expected a mapping at the top level, got {type(data).__name__}"],
        )
    return cast(dict[str, Any], data)


def validate_model(data: Mapping[str, Any], model_class: type[T], source: str) -> T:
    """Validate parsed data against a pydantic model.

    Pydantic errors are converted to a :class:`ValidationError` listing
    every offending field path.
    """
    try:
        return model_class.model_validate(data)
    except PydanticValidationError as e:
        errors = [
            f"{'.'.join(str(loc) for loc in err.get('loc', ())) or '<root>'}: "
            f"{err.get('msg', 'Invalid value')}"
            for err in e.errors()
        ]
        raise ValidationError(f"Validation error in {source}", errors=errors) from e


def _to_mapping(raw: PlanSource) -> tuple[Mapping[str, Any], str]:
    if isinstance(raw, Path):
        return read_yaml_file(raw), raw.name
    if isinstance(raw, str):
        return parse_yaml(raw), "<string>"
    return raw, "<mapping>"


def _resolve_dependency(ref: str, dependent: ResourceDescriptor) -> str:
    parts = ref.split("/")
    if len(parts) == 2:
        return make_descriptor_id(parts[0], dependent.environment, parts[1])
    return ref


def _resolve(document: PlanDocument) -> list[ResourceDescriptor]:
    problems: list[str] = []
    known: dict[str, ResourceDescriptor] = {}
    for index, descriptor in enumerate(document.resources):
        if descriptor.id in known:
            problems.append(f"resources.{index}: duplicate resource {descriptor.id}")
            continue
        known[descriptor.id] = descriptor

    resolved: list[ResourceDescriptor] = []
    for descriptor in known.values():
        deps: set[str] = set()
        for ref in sorted(descriptor.depends_on):
            dep_id = _resolve_dependency(ref, descriptor)
            if dep_id not in known:
                problems.append(f"{descriptor.id}: depends on unknown resource {ref}")
            elif dep_id == descriptor.id:
                problems.append(f"{descriptor.id}: depends on itself")
            else:
                deps.add(dep_id)
        resolved.append(descriptor.model_copy(update={"depends_on": frozenset(deps)}))

    if problems:
        raise ValidationError("Invalid plan", errors=problems)
    return resolved


@traced(name="shipwright.plan.load")
def load_plan(raw: PlanSource) -> PlanGraph:
    """Load, validate and resolve a plan document.

    Args:
        raw: Parsed mapping, YAML text or a path to a YAML file.

    Returns:
        Acyclic dependency graph of the plan's descriptors.

    Raises:
        ValidationError: On malformed YAML, unknown kinds or environments,
            duplicate resources or unresolvable dependencies.
        CycleError: If the dependency graph has a cycle.

    Example:
        >>> graph = load_plan({"resources": [
        ...     {"kind": "Registry", "name": "app-repo", "environment": "staging"},
        ... ]})
        >>> len(graph)
        1
    """
    data, source = _to_mapping(raw)
    document = validate_model(data, PlanDocument, source)
    graph = PlanGraph(_resolve(document))
    topological_order(graph)
    logger.debug("plan_loaded", source=source, resources=len(graph))
    return graph


__all__ = [
    "PlanSource",
    "load_plan",
    "parse_yaml",
    "read_yaml_file",
    "validate_model",
]
