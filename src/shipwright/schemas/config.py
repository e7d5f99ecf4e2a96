"""Orchestrator configuration schemas.

Loaded from ``shipwright.yaml`` by :mod:`shipwright.config`. All models are
frozen and reject unknown keys so a typo in the config file fails loudly.

Examples:
    >>> config = OrchestratorConfig.model_validate({"executor": {"concurrency": 4}})
    >>> config.executor.concurrency
    4
    >>> config.retry.max_attempts
    5
"""

from __future__ import annotations

from typing import Any, Literal

from pydantic import BaseModel, ConfigDict, Field

DEFAULT_STORE_URL = "sqlite:///.shipwright/state.db"


class RetryConfig(BaseModel):
    """Retry policy for transient provider failures.

    Uses exponential backoff with optional jitter to prevent thundering herd.

    Examples:
        >>> RetryConfig(max_attempts=3).initial_delay_ms
        500
    """

    model_config = ConfigDict(frozen=True, extra="forbid")

    max_attempts: int = Field(
        default=5,
        ge=1,
        le=20,
        description="Maximum number of attempts, including the first",
    )
    initial_delay_ms: int = Field(
        default=500,
        ge=0,
        description="Delay before the first retry in milliseconds",
    )
    backoff_multiplier: float = Field(
        default=2.0,
        ge=1.0,
        le=5.0,
        description="Multiplier for exponential backoff",
    )
    max_delay_ms: int = Field(
        default=30000,
        ge=0,
        description="Maximum delay cap in milliseconds",
    )
    jitter: bool = Field(
        default=True,
        description="Add random jitter to delays",
    )


class ExecutorConfig(BaseModel):
    """Action executor settings."""

    model_config = ConfigDict(frozen=True, extra="forbid")

    concurrency: int = Field(
        default=8,
        ge=1,
        le=256,
        description="Maximum actions applied in parallel",
    )
    prune: bool = Field(
        default=False,
        description="Delete managed resources no longer present in the plan",
    )


class PromotionConfig(BaseModel):
    """Promotion pipeline settings.

    Attributes:
        healthy_threshold: Consecutive healthy probes required to promote.
        probe_interval_seconds: Delay between health probes.
        health_window_seconds: Maximum time to reach the healthy threshold.
        artifact_wait_seconds: Maximum wait for the artifact to appear in
            the registry after a build.
        artifact_poll_interval_seconds: Delay between existence checks.
        health_path: Path appended to a service URL when the ComputeService
            spec does not declare ``health_url``.
    """

    model_config = ConfigDict(frozen=True, extra="forbid")

    healthy_threshold: int = Field(default=1, ge=1, le=100)
    probe_interval_seconds: float = Field(default=5.0, ge=0)
    health_window_seconds: float = Field(default=300.0, gt=0)
    artifact_wait_seconds: float = Field(default=120.0, ge=0)
    artifact_poll_interval_seconds: float = Field(default=2.0, ge=0)
    health_path: str = Field(default="/health", min_length=1)


class CutoverConfig(BaseModel):
    """Cutover controller settings."""

    model_config = ConfigDict(frozen=True, extra="forbid")

    confirmation_timeout_seconds: float = Field(
        default=600.0,
        gt=0,
        description="Maximum time to wait for a step's confirmation signal",
    )
    confirmation_interval_seconds: float = Field(
        default=10.0,
        ge=0,
        description="Delay between confirmation polls",
    )
    approval_timeout_seconds: float = Field(
        default=3600.0,
        gt=0,
        description="Maximum wait for a manual approval",
    )


class StoreConfig(BaseModel):
    """Durable state store settings."""

    model_config = ConfigDict(frozen=True, extra="forbid")

    url: str = Field(
        default=DEFAULT_STORE_URL,
        min_length=1,
        description="SQLAlchemy database URL",
    )
    echo: bool = Field(default=False, description="Log emitted SQL")


class WebhookConfig(BaseModel):
    """Webhook notification target.

    Examples:
        >>> config = WebhookConfig(
        ...     url="https://hooks.example.com/deploys",
        ...     events=["promotion.promoted", "promotion.rolled_back"],
        ... )
        >>> config.timeout_seconds
        30
    """

    model_config = ConfigDict(frozen=True, extra="forbid")

    url: str = Field(..., min_length=1, description="Webhook endpoint URL")
    events: list[str] = Field(..., min_length=1, description="Event types to notify")
    headers: dict[str, str] | None = Field(
        default=None,
        description="Custom headers for requests",
    )
    timeout_seconds: int = Field(default=30, ge=1, le=300)
    retry_count: int = Field(default=3, ge=0, le=10)


class ProviderConfig(BaseModel):
    """Provider selection.

    ``name`` is looked up in the ``shipwright.providers`` entry-point group.
    ``options`` are passed to the provider factory as keyword arguments.
    """

    model_config = ConfigDict(frozen=True, extra="forbid")

    name: str = Field(default="memory", min_length=1)
    options: dict[str, Any] = Field(default_factory=dict)


class LoggingConfig(BaseModel):
    """Logging settings."""

    model_config = ConfigDict(frozen=True, extra="forbid")

    level: Literal["DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"] = Field(default="INFO")
    json_output: bool = Field(default=False)


class OrchestratorConfig(BaseModel):
    """Top-level shipwright configuration."""

    model_config = ConfigDict(frozen=True, extra="forbid")

    retry: RetryConfig = Field(default_factory=RetryConfig)
    executor: ExecutorConfig = Field(default_factory=ExecutorConfig)
    promotion: PromotionConfig = Field(default_factory=PromotionConfig)
    cutover: CutoverConfig = Field(default_factory=CutoverConfig)
    store: StoreConfig = Field(default_factory=StoreConfig)
    webhooks: list[WebhookConfig] = Field(default_factory=list)
    provider: ProviderConfig = Field(default_factory=ProviderConfig)
    logging: LoggingConfig = Field(default_factory=LoggingConfig)


__all__ = [
    "DEFAULT_STORE_URL",
    "CutoverConfig",
    "ExecutorConfig",
    "LoggingConfig",
    "OrchestratorConfig",
    "PromotionConfig",
    "ProviderConfig",
    "RetryConfig",
    "StoreConfig",
    "WebhookConfig",
]
