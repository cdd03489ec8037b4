"""Pydantic schemas for broadcast fan-out, limits and replies."""

import uuid
from datetime import datetime
from typing import Any, Literal, Optional

from pydantic import BaseModel, ConfigDict, Field

ALL = "all"


class AudioAttachment(BaseModel):
    """Already-uploaded audio handed to the engine by the storage layer."""
    ref: str = Field("", description="Opaque storage reference")
    content_type: Optional[str] = Field(None, description="Declared MIME type")
    size: Optional[int] = Field(None, ge=0, description="Declared size in bytes")


class RecipientFilters(BaseModel):
    """Attribute filters for bulk sends. ``"all"`` or ``None`` means no filter."""
    gender: Optional[str] = None
    age_group: Optional[str] = None
    region: Optional[str] = None

    def active(self) -> dict[str, str]:
        """Filters that actually narrow the pool."""
        values = {"gender": self.gender, "age_group": self.age_group, "region": self.region}
        return {key: value for key, value in values.items() if value and value != ALL}

    @property
    def is_bulk(self) -> bool:
        return bool(self.active())


class CreateBroadcastRequest(BaseModel):
    audio: AudioAttachment
    content: Optional[str] = Field(None, description="Caption; defaults to a placeholder")
    recipient_count: int = Field(0, description="Requested recipients; <= 0 uses the default")
    filters: Optional[RecipientFilters] = None


class CreateBroadcastResult(BaseModel):
    success: Literal[True] = True
    broadcast_id: uuid.UUID
    recipient_count: int


class BroadcastRejection(BaseModel):
    """Structured refusal returned instead of raising for expected failures."""
    success: Literal[False] = False
    error_code: str
    http_status_hint: int
    message: str
    detail: dict[str, Any] = Field(default_factory=dict)


class LimitInfo(BaseModel):
    daily_limit: int
    daily_used: int
    daily_remaining: int
    next_reset_at: datetime
    hourly_limit: int = 0
    hourly_used: int = 0
    cooldown_ends_at: Optional[datetime] = None
    bypass: bool = False


class LimitStatus(BaseModel):
    daily_limit: int
    daily_used: int
    daily_remaining: int
    hourly_limit: int
    hourly_used: int
    next_reset_at: datetime
    can_broadcast: bool
    reason_code: Optional[str] = None
    cooldown_ends_at: Optional[datetime] = None
    bypass: bool = False


class ReplyRequest(BaseModel):
    voice_ref: Optional[str] = Field(None, description="Storage reference of the voice reply")
    message_type: Literal["voice", "text"] = "voice"
    body: Optional[str] = Field(None, max_length=1000, description="Text body for text replies")


class ReplyResult(BaseModel):
    success: Literal[True] = True
    conversation_id: uuid.UUID
    message_id: uuid.UUID


class BroadcastResponse(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: uuid.UUID
    sender_id: uuid.UUID
    audio_ref: str
    content: str
    active: bool
    created_at: datetime


class ReceivedBroadcastResponse(BroadcastResponse):
    status: str


class BroadcastStatistics(BaseModel):
    total_broadcasts: int
    total_recipients: int
    read_count: int
    replied_count: int
    reply_rate: float
