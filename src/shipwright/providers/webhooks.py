"""Notification sinks: webhooks and structured logs.

WebhookNotifier delivers one event to every subscribed webhook with retry
and exponential backoff on server errors and transport failures. Client
errors (4xx) are not retried.

WebhookNotificationSink wraps the notifier as a fire-and-forget sink: each
event is delivered on a background thread so a slow or failing endpoint
never blocks or fails orchestration.

Example:
    >>> from shipwright.schemas.config import WebhookConfig
    >>> notifier = WebhookNotifier([
    ...     WebhookConfig(url="https://hooks.example.com/x", events=["promotion.promoted"]),
    ... ])
    >>> notifier.should_notify(notifier.configs[0], "promotion.promoted")
    True
"""

from __future__ import annotations

import asyncio
import threading
import time
from typing import Any

import httpx
import structlog
from pydantic import BaseModel, ConfigDict, Field

from shipwright.providers.base import NotificationSink
from shipwright.schemas.config import WebhookConfig
from shipwright.schemas.events import NotificationEvent
from shipwright.telemetry.tracing import create_span

# Doubles each retry
BACKOFF_BASE_SECONDS = 1.0

logger = structlog.get_logger(__name__)


class WebhookNotificationResult(BaseModel):
    """Result of delivering one event to one webhook."""

    model_config = ConfigDict(extra="forbid")

    success: bool = Field(..., description="Whether the notification was delivered")
    status_code: int | None = Field(default=None, description="Last HTTP status code")
    url: str = Field(..., description="Target webhook URL")
    error: str | None = Field(default=None, description="Error message if failed")
    attempts: int = Field(default=1, ge=1, description="Delivery attempts made")


class WebhookNotifier:
    """Delivers notification events to configured webhooks.

    Args:
        configs: Webhook targets.
        transport: Optional httpx transport (tests use ``httpx.MockTransport``).
        backoff_base_seconds: Base delay for exponential backoff.
    """

    def __init__(
        self,
        configs: list[WebhookConfig],
        *,
        transport: httpx.AsyncBaseTransport | None = None,
        backoff_base_seconds: float = BACKOFF_BASE_SECONDS,
    ) -> None:
        self.configs = list(configs)
        self._transport = transport
        self._backoff_base = backoff_base_seconds

    @staticmethod
    def should_notify(config: WebhookConfig, event_type: str) -> bool:
        return event_type in config.events

    @staticmethod
    def build_payload(event: NotificationEvent) -> dict[str, Any]:
        return {
            "event_type": event.event_type.value,
            "subject": event.subject,
            "timestamp": event.timestamp.isoformat(),
            **event.data,
        }

    async def notify(
        self, config: WebhookConfig, event: NotificationEvent
    ) -> WebhookNotificationResult:
        """Deliver ``event`` to one webhook with retry."""
        url = config.url
        event_type = event.event_type.value
        payload = self.build_payload(event)
        max_attempts = 1 + config.retry_count
        last_status_code: int | None = None
        last_error: str | None = None

        with create_span(
            "shipwright.webhook.notify",
            attributes={"shipwright.webhook.event_type": event_type},
        ) as span:
            start = time.monotonic()
            async with httpx.AsyncClient(
                timeout=config.timeout_seconds, transport=self._transport
            ) as client:
                for attempt in range(1, max_attempts + 1):
                    try:
                        response = await client.post(
                            url, json=payload, headers=config.headers or {}
                        )
                    except httpx.TimeoutException:
                        last_error = "Request timed out"
                    except httpx.RequestError as e:
                        last_error = str(e)
                    else:
                        last_status_code = response.status_code
                        if response.status_code < 400:
                            span.set_attribute("shipwright.webhook.attempts", attempt)
                            logger.info(
                                "webhook_notification_sent",
                                url=url,
                                event_type=event_type,
                                status_code=response.status_code,
                                attempts=attempt,
                                duration_ms=int((time.monotonic() - start) * 1000),
                            )
                            return WebhookNotificationResult(
                                success=True,
                                status_code=response.status_code,
                                url=url,
                                attempts=attempt,
                            )
                        if response.status_code < 500:
                            last_error = f"Client error: {response.status_code}"
                            max_attempts = attempt
                            break
                        last_error = f"Server error: {response.status_code}"

                    if attempt < max_attempts:
                        delay = self._backoff_base * (2 ** (attempt - 1))
                        logger.warning(
                            "webhook_notification_retry",
                            url=url,
                            event_type=event_type,
                            error=last_error,
                            attempt=attempt,
                            max_attempts=max_attempts,
                            backoff_seconds=delay,
                        )
                        await asyncio.sleep(delay)

            span.set_attribute("shipwright.webhook.attempts", max_attempts)
            logger.error(
                "webhook_notification_failed",
                url=url,
                event_type=event_type,
                status_code=last_status_code,
                error=last_error,
                attempts=max_attempts,
            )
            return WebhookNotificationResult(
                success=False,
                status_code=last_status_code,
                url=url,
                error=last_error,
                attempts=max_attempts,
            )

    async def notify_all(self, event: NotificationEvent) -> list[WebhookNotificationResult]:
        """Deliver ``event`` to every subscribed webhook.

        A failing webhook does not prevent delivery to the others.
        """
        results: list[WebhookNotificationResult] = []
        for config in self.configs:
            if not self.should_notify(config, event.event_type.value):
                continue
            results.append(await self.notify(config, event))
        return results


class WebhookNotificationSink(NotificationSink):
    """Fire-and-forget webhook delivery on background threads."""

    def __init__(self, notifier: WebhookNotifier) -> None:
        self._notifier = notifier
        self._lock = threading.Lock()
        self._threads: list[threading.Thread] = []

    def _deliver(self, event: NotificationEvent) -> None:
        try:
            asyncio.run(self._notifier.notify_all(event))
        except Exception as e:  # noqa: BLE001
            # Notification failures never surface into orchestration
            logger.error(
                "webhook_delivery_crashed",
                event_type=event.event_type.value,
                error=str(e),
            )

    def notify(self, event: NotificationEvent) -> None:
        thread = threading.Thread(
            target=self._deliver,
            args=(event,),
            name=f"webhook-{event.event_type.value}",
            daemon=True,
        )
        with self._lock:
            self._threads = [t for t in self._threads if t.is_alive()]
            self._threads.append(thread)
        thread.start()

    def flush(self, timeout: float | None = None) -> None:
        """Wait for in-flight deliveries (used before process exit)."""
        with self._lock:
            threads = list(self._threads)
        for thread in threads:
            thread.join(timeout)


class LogNotificationSink(NotificationSink):
    """Writes every event to the structured log."""

    def notify(self, event: NotificationEvent) -> None:
        logger.info(
            "notification",
            event_type=event.event_type.value,
            subject=event.subject,
            data=event.data,
        )


__all__ = [
    "LogNotificationSink",
    "WebhookNotificationResult",
    "WebhookNotificationSink",
    "WebhookNotifier",
]
