"""Best-effort delivery of broadcast and reply notifications.

The dispatcher runs after the fan-out transaction has committed. Nothing
it does can roll back persisted state: transport failures are logged and
counted, and callers are expected to isolate exceptions per recipient.
"""

import logging
from typing import Optional

from voicecast.core.logging import log_warning
from voicecast.core.metrics import BROADCAST_NOTIFICATIONS_TOTAL
from voicecast.modules.notification.channels import (
    ChannelDeliveryResult,
    ExpoPushChannel,
    PushChannelBase,
)

logger = logging.getLogger(__name__)

BROADCAST_TITLE = "New voice broadcast"
REPLY_TITLE = "New reply to your broadcast"


class NotificationDispatcher:
    """Sends push alerts to users who opted in and registered a token."""

    def __init__(self, channel: Optional[PushChannelBase] = None):
        self.channel = channel or ExpoPushChannel()

    async def send_broadcast_notification(self, recipient, broadcast) -> Optional[ChannelDeliveryResult]:
        """Tell a recipient they received a broadcast."""
        return await self._send(
            kind="broadcast",
            user=recipient,
            title=BROADCAST_TITLE,
            body=broadcast.content,
            data={
                "type": "broadcast",
                "broadcast_id": str(broadcast.id),
                "sender_id": str(broadcast.sender_id),
            },
        )

    async def send_reply_notification(self, sender, replier, broadcast) -> Optional[ChannelDeliveryResult]:
        """Tell the broadcast's sender that a recipient replied."""
        nickname = getattr(replier, "nickname", "") or "Someone"
        return await self._send(
            kind="reply",
            user=sender,
            title=REPLY_TITLE,
            body=f"{nickname} replied to your voice broadcast",
            data={
                "type": "broadcast_reply",
                "broadcast_id": str(broadcast.id),
                "replier_id": str(replier.id),
            },
        )

    async def _send(self, kind: str, user, title: str, body: str, data: dict) -> Optional[ChannelDeliveryResult]:
        if not user.push_enabled or not user.push_token:
            BROADCAST_NOTIFICATIONS_TOTAL.labels(kind=kind, status="skipped").inc()
            logger.debug(f"User {user.id} has push disabled or no token, skipping {kind} notification")
            return None

        result = await self.channel.deliver(user.push_token, title, body, data)
        if result.success:
            BROADCAST_NOTIFICATIONS_TOTAL.labels(kind=kind, status="sent").inc()
        else:
            BROADCAST_NOTIFICATIONS_TOTAL.labels(kind=kind, status="failed").inc()
            log_warning(
                logger,
                f"{kind} notification to user {user.id} failed: {result.error}",
                user_id=str(user.id),
                channel=result.channel,
            )
        return result
