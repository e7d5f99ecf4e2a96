"""Orchestrator configuration loading.

Configuration comes from a YAML file (``shipwright.yaml`` in the working
directory by default) validated against :class:`OrchestratorConfig`. A
missing default file is not an error; every setting has a default.

A few settings can be overridden from the environment, which wins over the
file:

    SHIPWRIGHT_STORE_URL   store.url
    SHIPWRIGHT_LOG_LEVEL   logging.level
    SHIPWRIGHT_PROVIDER    provider.name

Example:
    >>> config = load_config(environ={})  # doctest: +SKIP
    >>> config.executor.concurrency
    8
"""

from __future__ import annotations

import os
from collections.abc import Mapping
from pathlib import Path
from typing import Any

import structlog

from shipwright.errors import ValidationError
from shipwright.plan.loader import read_yaml_file, validate_model
from shipwright.schemas.config import OrchestratorConfig

logger = structlog.get_logger(__name__)

DEFAULT_CONFIG_FILE = "shipwright.yaml"

# Environment variable -> (section, field)
ENV_OVERRIDES: dict[str, tuple[str, str]] = {
    "SHIPWRIGHT_STORE_URL": ("store", "url"),
    "SHIPWRIGHT_LOG_LEVEL": ("logging", "level"),
    "SHIPWRIGHT_PROVIDER": ("provider", "name"),
}


def _apply_env_overrides(data: dict[str, Any], environ: Mapping[str, str]) -> dict[str, Any]:
    merged = dict(data)
    for variable, (section, field) in ENV_OVERRIDES.items():
        value = environ.get(variable, "").strip()
        if not value:
            continue
        current = merged.get(section) or {}
        if not isinstance(current, Mapping):
            raise ValidationError(
                "Invalid configuration",
                errors=[f"{section}: expected a mapping, got {type(current).__name__}"],
            )
        if field == "level":
            value = value.upper()
        merged[section] = {**current, field: value}
        logger.debug("config_env_override", variable=variable, section=section, field=field)
    return merged


def load_config(
    path: str | Path | None = None,
    *,
    environ: Mapping[str, str] | None = None,
) -> OrchestratorConfig:
    """Load configuration from YAML plus environment overrides.

    Args:
        path: Config file. When None, ``shipwright.yaml`` is used if present.
        environ: Environment mapping (defaults to ``os.environ``).

    Returns:
        Validated configuration.

    Raises:
        ValidationError: If an explicitly given file is missing, or the
            merged configuration is invalid.
    """
    environ = os.environ if environ is None else environ
    if path is None:
        candidate = Path(DEFAULT_CONFIG_FILE)
        data = read_yaml_file(candidate) if candidate.exists() else {}
        source = candidate.name
    else:
        candidate = Path(path)
        data = read_yaml_file(candidate)
        source = candidate.name

    config = validate_model(_apply_env_overrides(data, environ), OrchestratorConfig, source)
    logger.debug(
        "config_loaded",
        source=source,
        provider=config.provider.name,
        store=config.store.url,
    )
    return config


__all__ = ["DEFAULT_CONFIG_FILE", "ENV_OVERRIDES", "load_config"]
