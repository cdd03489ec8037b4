"""Push notification boundary used after fan-out commits."""

from voicecast.modules.notification.channels import (
    ChannelDeliveryResult,
    ExpoPushChannel,
    PushChannelBase,
)
from voicecast.modules.notification.dispatcher import NotificationDispatcher

__all__ = [
    "ChannelDeliveryResult",
    "ExpoPushChannel",
    "PushChannelBase",
    "NotificationDispatcher",
]
