"""Broadcast fan-out and recipient selection engine."""

from voicecast.modules.broadcast.errors import (
    BroadcastError,
    ConflictError,
    EligibilityError,
    InternalError,
    LimitError,
    NotFoundError,
    PaymentError,
    TransientError,
    ValidationError,
)
from voicecast.modules.broadcast.models import (
    Broadcast,
    BroadcastRecipient,
    BroadcastUsageLog,
    RecipientStatus,
)
from voicecast.modules.broadcast.service import BroadcastFanoutOrchestrator

__all__ = [
    "BroadcastError",
    "ConflictError",
    "EligibilityError",
    "InternalError",
    "LimitError",
    "NotFoundError",
    "PaymentError",
    "TransientError",
    "ValidationError",
    "Broadcast",
    "BroadcastRecipient",
    "BroadcastUsageLog",
    "RecipientStatus",
    "BroadcastFanoutOrchestrator",
]
