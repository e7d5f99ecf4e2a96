"""Notification event schema.

Notification events are what webhook and log sinks receive. They are a
flattened, serialisable view of executor, promotion and cutover transitions.
"""

from __future__ import annotations

from datetime import datetime, timezone
from enum import Enum
from typing import Any

from pydantic import BaseModel, ConfigDict, Field


class NotificationEventType(str, Enum):
    """Event types a notification sink can subscribe to."""

    ACTION_APPLIED = "action.applied"
    ACTION_FAILED = "action.failed"
    PROMOTION_STARTED = "promotion.started"
    PROMOTION_PROMOTED = "promotion.promoted"
    PROMOTION_ROLLED_BACK = "promotion.rolled_back"
    PROMOTION_FAILED = "promotion.failed"
    CUTOVER_STEP_CONFIRMED = "cutover.step_confirmed"
    CUTOVER_COMPLETED = "cutover.completed"
    CUTOVER_ABORTED = "cutover.aborted"


class NotificationEvent(BaseModel):
    """Event delivered to notification sinks.

    Examples:
        >>> event = NotificationEvent(
        ...     event_type=NotificationEventType.PROMOTION_PROMOTED,
        ...     subject="production",
        ...     data={"artifact_id": "app:abc123"},
        ... )
        >>> event.event_type.value
        'promotion.promoted'
    """

    model_config = ConfigDict(frozen=True, extra="forbid")

    event_type: NotificationEventType
    subject: str = Field(..., description="Environment, action target or cutover plan id")
    data: dict[str, Any] = Field(default_factory=dict)
    timestamp: datetime = Field(default_factory=lambda: datetime.now(timezone.utc))


__all__ = ["NotificationEvent", "NotificationEventType"]
