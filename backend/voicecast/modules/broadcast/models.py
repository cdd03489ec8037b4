"""Broadcast, recipient and usage-ledger models."""

import uuid
from datetime import date, datetime
from enum import Enum
from typing import Optional

from sqlalchemy import (
    Boolean,
    Date,
    DateTime,
    ForeignKey,
    Index,
    Integer,
    String,
    UniqueConstraint,
    Uuid,
)
from sqlalchemy.orm import Mapped, mapped_column

from voicecast.core.clock import utcnow
from voicecast.core.database import Base


class RecipientStatus(str, Enum):
    """Recipient lifecycle. Only moves forward: delivered -> read -> replied."""
    DELIVERED = "delivered"
    READ = "read"
    REPLIED = "replied"


STATUS_RANK = {
    RecipientStatus.DELIVERED.value: 0,
    RecipientStatus.READ.value: 1,
    RecipientStatus.REPLIED.value: 2,
}


def statuses_before(status: RecipientStatus) -> list[str]:
    """Statuses a recipient may move to ``status`` from."""
    return [value for value, rank in STATUS_RANK.items() if rank < STATUS_RANK[status.value]]


class Broadcast(Base):
    """One voice message fanned out to a set of recipients.

    Immutable after creation except for the ``active`` flag.
    """

    __tablename__ = "broadcasts"
    __table_args__ = (
        Index("ix_broadcasts_sender_created", "sender_id", "created_at"),
    )

    id: Mapped[uuid.UUID] = mapped_column(Uuid, primary_key=True, default=uuid.uuid4)
    sender_id: Mapped[uuid.UUID] = mapped_column(
        Uuid, ForeignKey("users.id", ondelete="CASCADE"), nullable=False
    )
    audio_ref: Mapped[str] = mapped_column(String(500), nullable=False)
    audio_content_type: Mapped[Optional[str]] = mapped_column(String(50), nullable=True)
    content: Mapped[str] = mapped_column(String(200), nullable=False)
    active: Mapped[bool] = mapped_column(Boolean, nullable=False, default=True)
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), default=utcnow)

    def __repr__(self) -> str:
        return f"<Broadcast(id={self.id}, sender={self.sender_id})>"


class BroadcastRecipient(Base):
    """Join row between a broadcast and one of its recipients."""

    __tablename__ = "broadcast_recipients"
    __table_args__ = (
        UniqueConstraint("broadcast_id", "user_id", name="uq_broadcast_recipients_pair"),
        Index("ix_broadcast_recipients_user_id", "user_id"),
    )

    id: Mapped[uuid.UUID] = mapped_column(Uuid, primary_key=True, default=uuid.uuid4)
    broadcast_id: Mapped[uuid.UUID] = mapped_column(
        Uuid, ForeignKey("broadcasts.id", ondelete="CASCADE"), nullable=False, index=True
    )
    user_id: Mapped[uuid.UUID] = mapped_column(
        Uuid, ForeignKey("users.id", ondelete="CASCADE"), nullable=False
    )
    status: Mapped[str] = mapped_column(
        String(20), nullable=False, default=RecipientStatus.DELIVERED.value
    )
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), default=utcnow)
    updated_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), default=utcnow)


class BroadcastUsageLog(Base):
    """Per-user, per-local-day broadcast counters."""

    __tablename__ = "broadcast_usage_logs"
    __table_args__ = (
        UniqueConstraint("user_id", "usage_date", name="uq_broadcast_usage_user_date"),
    )

    id: Mapped[uuid.UUID] = mapped_column(Uuid, primary_key=True, default=uuid.uuid4)
    user_id: Mapped[uuid.UUID] = mapped_column(
        Uuid, ForeignKey("users.id", ondelete="CASCADE"), nullable=False, index=True
    )
    usage_date: Mapped[date] = mapped_column(Date, nullable=False)
    broadcasts_sent_count: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    last_broadcast_at: Mapped[Optional[datetime]] = mapped_column(DateTime(timezone=True), nullable=True)
    limit_exceeded_count: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
