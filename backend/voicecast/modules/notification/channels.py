"""Push notification channel for broadcast and reply alerts.

Delivery goes through the Expo push API. When ``PUSH_ENABLED`` is off the
channel only logs what it would have sent.
"""

import logging
from abc import ABC, abstractmethod
from dataclasses import dataclass
from datetime import datetime
from typing import Optional

import httpx

from voicecast.core.clock import utcnow
from voicecast.core.config import settings

logger = logging.getLogger(__name__)


@dataclass
class ChannelDeliveryResult:
    """Result of a channel delivery attempt."""
    success: bool
    channel: str
    recipient: str
    delivered_at: Optional[datetime] = None
    error: Optional[str] = None
    response_data: Optional[dict] = None


class PushChannelBase(ABC):
    """Base class for push channels."""

    channel_name: str = "base"

    @abstractmethod
    async def deliver(
        self,
        token: str,
        title: str,
        body: str,
        data: Optional[dict] = None,
    ) -> ChannelDeliveryResult:
        """Deliver a push message to a device token.

        Args:
            token: Device push token
            title: Notification title
            body: Notification body
            data: Extra payload handed to the client app

        Returns:
            ChannelDeliveryResult with delivery status
        """

    def _create_success_result(
        self,
        token: str,
        response_data: Optional[dict] = None,
    ) -> ChannelDeliveryResult:
        return ChannelDeliveryResult(
            success=True,
            channel=self.channel_name,
            recipient=token,
            delivered_at=utcnow(),
            response_data=response_data,
        )

    def _create_failure_result(self, token: str, error: str) -> ChannelDeliveryResult:
        return ChannelDeliveryResult(
            success=False,
            channel=self.channel_name,
            recipient=token,
            error=error,
        )


class ExpoPushChannel(PushChannelBase):
    """Expo push notification channel."""

    channel_name = "expo"

    def __init__(
        self,
        client: Optional[httpx.AsyncClient] = None,
        enabled: Optional[bool] = None,
    ):
        self._client = client
        self.enabled = settings.PUSH_ENABLED if enabled is None else enabled

    async def deliver(
        self,
        token: str,
        title: str,
        body: str,
        data: Optional[dict] = None,
    ) -> ChannelDeliveryResult:
        if not token:
            return self._create_failure_result(token, "Missing push token")

        if not self.enabled:
            logger.info(f"Push disabled, skipping delivery to {token[:12]}...: {title}")
            return self._create_success_result(token, {"skipped": True})

        message = {
            "to": token,
            "title": title,
            "body": body,
            "sound": "default",
            "data": data or {},
        }

        try:
            if self._client is not None:
                response = await self._client.post(settings.EXPO_PUSH_URL, json=message)
            else:
                async with httpx.AsyncClient(timeout=settings.PUSH_TIMEOUT_SECONDS) as client:
                    response = await client.post(settings.EXPO_PUSH_URL, json=message)
        except httpx.TimeoutException:
            return self._create_failure_result(token, "Expo push request timed out")
        except httpx.HTTPError as e:
            return self._create_failure_result(token, f"Expo push request failed: {e}")

        if response.status_code != 200:
            return self._create_failure_result(
                token,
                f"Expo push API error: {response.status_code} - {response.text}",
            )

        payload = response.json()
        ticket = payload.get("data") or {}
        # Expo returns 200 with a per-message ticket that can still be an error
        if isinstance(ticket, dict) and ticket.get("status") == "error":
            return self._create_failure_result(
                token,
                f"Expo push ticket error: {ticket.get('message', 'unknown')}",
            )
        return self._create_success_result(token, payload)
