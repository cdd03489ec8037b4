"""1:1 conversations and their messages."""

from voicecast.modules.conversation.models import (
    Conversation,
    Message,
    MessageType,
    ordered_pair,
)
from voicecast.modules.conversation.repository import ConversationRepository

__all__ = [
    "Conversation",
    "Message",
    "MessageType",
    "ordered_pair",
    "ConversationRepository",
]
