"""Conversation and message models.

A conversation joins an unordered pair of users. The pair is stored
canonically (``user_a_id < user_b_id``) so that a unique constraint on the
two columns guarantees at most one conversation per pair.
"""

import uuid
from datetime import datetime
from enum import Enum
from typing import Optional

from sqlalchemy import (
    Boolean,
    CheckConstraint,
    DateTime,
    ForeignKey,
    Index,
    String,
    Text,
    UniqueConstraint,
    Uuid,
)
from sqlalchemy.orm import Mapped, mapped_column

from voicecast.core.clock import utcnow
from voicecast.core.database import Base


class MessageType(str, Enum):
    VOICE = "voice"
    TEXT = "text"
    BROADCAST = "broadcast"


def ordered_pair(user1_id: uuid.UUID, user2_id: uuid.UUID) -> tuple[uuid.UUID, uuid.UUID]:
    """Canonical (user_a_id, user_b_id) ordering for a pair of users."""
    return (user1_id, user2_id) if user1_id < user2_id else (user2_id, user1_id)


class Conversation(Base):
    """1:1 channel between two users with per-side visibility."""

    __tablename__ = "conversations"
    __table_args__ = (
        UniqueConstraint("user_a_id", "user_b_id", name="uq_conversations_pair"),
        CheckConstraint("user_a_id <> user_b_id", name="ck_conversations_distinct_users"),
        Index("ix_conversations_user_b_id", "user_b_id"),
    )

    id: Mapped[uuid.UUID] = mapped_column(Uuid, primary_key=True, default=uuid.uuid4)
    user_a_id: Mapped[uuid.UUID] = mapped_column(
        Uuid, ForeignKey("users.id", ondelete="CASCADE"), nullable=False, index=True
    )
    user_b_id: Mapped[uuid.UUID] = mapped_column(
        Uuid, ForeignKey("users.id", ondelete="CASCADE"), nullable=False
    )
    deleted_by_a: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False)
    deleted_by_b: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False)
    linked_broadcast_id: Mapped[Optional[uuid.UUID]] = mapped_column(
        Uuid, ForeignKey("broadcasts.id", ondelete="SET NULL"), nullable=True
    )
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), default=utcnow)
    updated_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), default=utcnow)

    def visible_to(self, user_id: uuid.UUID) -> bool:
        if user_id == self.user_a_id:
            return not self.deleted_by_a
        if user_id == self.user_b_id:
            return not self.deleted_by_b
        return False

    def show_to(self, user_id: uuid.UUID) -> None:
        self._set_hidden(user_id, False)

    def hide_from(self, user_id: uuid.UUID) -> None:
        self._set_hidden(user_id, True)

    def other_user_id(self, user_id: uuid.UUID) -> Optional[uuid.UUID]:
        if user_id == self.user_a_id:
            return self.user_b_id
        if user_id == self.user_b_id:
            return self.user_a_id
        return None

    def _set_hidden(self, user_id: uuid.UUID, hidden: bool) -> None:
        if user_id == self.user_a_id:
            self.deleted_by_a = hidden
        elif user_id == self.user_b_id:
            self.deleted_by_b = hidden

    def __repr__(self) -> str:
        return f"<Conversation(id={self.id}, a={self.user_a_id}, b={self.user_b_id})>"


class Message(Base):
    """Message appended to a conversation."""

    __tablename__ = "messages"

    id: Mapped[uuid.UUID] = mapped_column(Uuid, primary_key=True, default=uuid.uuid4)
    conversation_id: Mapped[uuid.UUID] = mapped_column(
        Uuid, ForeignKey("conversations.id", ondelete="CASCADE"), nullable=False, index=True
    )
    sender_id: Mapped[uuid.UUID] = mapped_column(
        Uuid, ForeignKey("users.id", ondelete="CASCADE"), nullable=False
    )
    message_type: Mapped[str] = mapped_column(String(20), nullable=False)
    broadcast_id: Mapped[Optional[uuid.UUID]] = mapped_column(
        Uuid, ForeignKey("broadcasts.id", ondelete="SET NULL"), nullable=True, index=True
    )
    voice_ref: Mapped[Optional[str]] = mapped_column(String(500), nullable=True)
    body: Mapped[Optional[str]] = mapped_column(Text, nullable=True)
    read: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False)
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), default=utcnow)
