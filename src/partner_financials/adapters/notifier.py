"""Partner notification delivery.

Notifications are fire-and-forget: a delivery failure is logged and never
propagates into the report or withdrawal operation that triggered it.
"""

from datetime import datetime, timezone
from typing import Any

import httpx

from partner_financials.observability import get_logger
from partner_financials.settings import Settings

logger = get_logger(__name__)


class WebhookNotifier:
    """Implements INotifier by POSTing events to a webhook endpoint.

    When no webhook URL is configured the event is only logged.

    Args:
        settings: Provides notifier_webhook_url and notifier_timeout_seconds.
        client: Optional shared AsyncClient; one is created per call otherwise.
    """

    def __init__(self, settings: Settings, client: httpx.AsyncClient | None = None) -> None:
        self._url = settings.notifier_webhook_url
        self._timeout = settings.notifier_timeout_seconds
        self._source = settings.service_name
        self._client = client

    async def notify(self, user_id: str, event_type: str, payload: dict[str, Any]) -> None:
        """Send one event to a partner user. Never raises."""
        body = {
            "user_id": user_id,
            "type": event_type,
            "source": self._source,
            "sent_at": datetime.now(timezone.utc).isoformat(),
            "data": payload,
        }
        if not self._url:
            logger.info("partner_notification", user_id=user_id, event_type=event_type)
            return

        try:
            if self._client is not None:
                response = await self._client.post(self._url, json=body, timeout=self._timeout)
            else:
                async with httpx.AsyncClient(timeout=self._timeout) as client:
                    response = await client.post(self._url, json=body)
            response.raise_for_status()
        except httpx.HTTPError as exc:
            logger.warning(
                "partner_notification_failed",
                user_id=user_id,
                event_type=event_type,
                error=str(exc),
            )
            return

        logger.info(
            "partner_notification_sent",
            user_id=user_id,
            event_type=event_type,
            status_code=response.status_code,
        )
