"""Pydantic schemas for the broadcast limits admin API."""

from typing import Optional

from pydantic import BaseModel, Field


class BroadcastLimitsResponse(BaseModel):
    daily_limit: int
    hourly_limit: int
    cooldown_minutes: int
    bypass_roles: list[str]


class BroadcastLimitsUpdate(BaseModel):
    """Partial update; omitted fields keep their stored values."""
    daily_limit: Optional[int] = Field(None, description="Broadcasts per local day")
    hourly_limit: Optional[int] = Field(None, description="Broadcasts per rolling hour")
    cooldown_minutes: Optional[int] = Field(None, description="Minimum gap between broadcasts")
    bypass_roles: Optional[list[str]] = Field(None, description="Roles exempt from limits")
