"""Broadcast rate limiting.

``evaluate_limits`` is the pure decision: bypass role, then the daily cap,
then the hourly cap, then the cooldown window. ``LimitPolicy`` gathers the
inputs from the settings store and the usage ledger and, for enforcing
checks only, records denials.
"""

import logging
from dataclasses import dataclass
from datetime import datetime, timedelta
from typing import Optional
from zoneinfo import ZoneInfo

from sqlalchemy.ext.asyncio import AsyncSession

from voicecast.core.clock import Clock, as_utc, next_midnight, utcnow
from voicecast.modules.broadcast.schemas import LimitInfo, LimitStatus
from voicecast.modules.broadcast.usage import UsageLedger
from voicecast.modules.settings.service import BroadcastLimits, SettingsStore
from voicecast.modules.user.models import User

logger = logging.getLogger(__name__)

DAILY_LIMIT_EXCEEDED = "DAILY_LIMIT_EXCEEDED"
HOURLY_LIMIT_EXCEEDED = "HOURLY_LIMIT_EXCEEDED"
COOLDOWN_ACTIVE = "COOLDOWN_ACTIVE"


@dataclass(frozen=True)
class LimitDecision:
    allowed: bool
    limit_info: LimitInfo
    reason_code: Optional[str] = None

    @property
    def bypass(self) -> bool:
        return self.limit_info.bypass


def is_bypass(role: str, limits: BroadcastLimits) -> bool:
    return role in limits.bypass_roles


def evaluate_limits(
    limits: BroadcastLimits,
    role: str,
    daily_used: int,
    hourly_used: int,
    last_broadcast_at: Optional[datetime],
    now: datetime,
    tz: Optional[ZoneInfo] = None,
) -> LimitDecision:
    """Decide whether a user may broadcast right now.

    Args:
        limits: Limit configuration snapshot
        role: The user's role
        daily_used: Broadcasts sent today (local day)
        hourly_used: Broadcasts sent in the rolling last hour
        last_broadcast_at: Time of the user's latest broadcast, if any
        now: Current time (aware)
        tz: Zone that defines the daily boundary

    Returns:
        LimitDecision with the reason code of the first limit that applies
    """
    reset_at = next_midnight(now, tz)

    if is_bypass(role, limits):
        return LimitDecision(
            allowed=True,
            limit_info=LimitInfo(
                daily_limit=limits.daily_limit,
                daily_used=0,
                daily_remaining=limits.daily_limit,
                next_reset_at=reset_at,
                hourly_limit=limits.hourly_limit,
                bypass=True,
            ),
        )

    info = LimitInfo(
        daily_limit=limits.daily_limit,
        daily_used=daily_used,
        daily_remaining=max(limits.daily_limit - daily_used, 0),
        next_reset_at=reset_at,
        hourly_limit=limits.hourly_limit,
        hourly_used=hourly_used,
    )

    if daily_used >= limits.daily_limit:
        return LimitDecision(allowed=False, limit_info=info, reason_code=DAILY_LIMIT_EXCEEDED)

    if limits.hourly_limit > 0 and hourly_used >= limits.hourly_limit:
        return LimitDecision(allowed=False, limit_info=info, reason_code=HOURLY_LIMIT_EXCEEDED)

    if limits.cooldown_minutes > 0 and last_broadcast_at is not None:
        cooldown_ends_at = as_utc(last_broadcast_at) + timedelta(minutes=limits.cooldown_minutes)
        if cooldown_ends_at > now:
            info = info.model_copy(update={"cooldown_ends_at": cooldown_ends_at})
            return LimitDecision(allowed=False, limit_info=info, reason_code=COOLDOWN_ACTIVE)

    return LimitDecision(allowed=True, limit_info=info)


class LimitPolicy:
    """Evaluates a user's usage against the current limit configuration."""

    def __init__(
        self,
        session: AsyncSession,
        ledger: Optional[UsageLedger] = None,
        settings_store: Optional[SettingsStore] = None,
        clock: Clock = utcnow,
        tz: Optional[ZoneInfo] = None,
    ):
        self.session = session
        self.clock = clock
        self.tz = tz
        self.ledger = ledger or UsageLedger(session, clock=clock, tz=tz)
        self.settings_store = settings_store or SettingsStore(session)

    async def _evaluate(self, user: User) -> LimitDecision:
        limits = await self.settings_store.get_broadcast_limits()
        now = self.clock()

        if is_bypass(user.role, limits):
            return evaluate_limits(limits, user.role, 0, 0, None, now, self.tz)

        daily_used = await self.ledger.count_today(user.id)
        hourly_used = await self.ledger.count_this_hour(user.id) if limits.hourly_limit > 0 else 0
        last_at = await self.ledger.last_broadcast_time(user.id) if limits.cooldown_minutes > 0 else None
        return evaluate_limits(limits, user.role, daily_used, hourly_used, last_at, now, self.tz)

    async def check(self, user: User) -> LimitDecision:
        """Enforcing check. Denials are counted in the usage ledger."""
        decision = await self._evaluate(user)
        if not decision.allowed:
            logger.info(f"Broadcast limit hit for user {user.id}: {decision.reason_code}")
            await self.ledger.record_limit_exceeded(user.id)
        return decision

    async def get_status(self, user: User) -> LimitStatus:
        """Read-only view of the same decision for display."""
        decision = await self._evaluate(user)
        info = decision.limit_info
        return LimitStatus(
            daily_limit=info.daily_limit,
            daily_used=info.daily_used,
            daily_remaining=info.daily_remaining,
            hourly_limit=info.hourly_limit,
            hourly_used=info.hourly_used,
            next_reset_at=info.next_reset_at,
            can_broadcast=decision.allowed,
            reason_code=decision.reason_code,
            cooldown_ends_at=info.cooldown_ends_at,
            bypass=info.bypass,
        )
