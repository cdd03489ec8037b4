"""Settings store for broadcast rate limits.

The limit policy reads a fresh snapshot on every check; nothing is cached.
"""

import logging
import uuid
from dataclasses import asdict, dataclass, field
from typing import Any, Optional

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from voicecast.core.config import settings
from voicecast.modules.settings.models import SystemSetting

logger = logging.getLogger(__name__)

BROADCAST_LIMITS_KEY = "broadcast_limits"


class InvalidBroadcastLimitsError(ValueError):
    """Raised when a limits update fails validation."""
    pass


@dataclass(frozen=True)
class BroadcastLimits:
    """Immutable snapshot of the broadcast limit configuration."""
    daily_limit: int
    hourly_limit: int
    cooldown_minutes: int
    bypass_roles: frozenset[str] = field(default_factory=frozenset)

    @classmethod
    def defaults(cls) -> "BroadcastLimits":
        return cls(
            daily_limit=settings.BROADCAST_DAILY_LIMIT,
            hourly_limit=settings.BROADCAST_HOURLY_LIMIT,
            cooldown_minutes=settings.BROADCAST_COOLDOWN_MINUTES,
            bypass_roles=frozenset(settings.BROADCAST_BYPASS_ROLES),
        )

    @classmethod
    def from_dict(cls, values: dict[str, Any]) -> "BroadcastLimits":
        return cls(
            daily_limit=int(values["daily_limit"]),
            hourly_limit=int(values["hourly_limit"]),
            cooldown_minutes=int(values["cooldown_minutes"]),
            bypass_roles=frozenset(values.get("bypass_roles") or []),
        )

    def to_dict(self) -> dict[str, Any]:
        data = asdict(self)
        data["bypass_roles"] = sorted(self.bypass_roles)
        return data


def validate_broadcast_limits(values: dict[str, Any]) -> None:
    """Validate a merged limits mapping.

    Raises:
        InvalidBroadcastLimitsError: On the first rule that is violated
    """
    daily = values.get("daily_limit")
    hourly = values.get("hourly_limit")
    cooldown = values.get("cooldown_minutes")

    # bool is an int subclass; reject it explicitly
    def is_int(value: Any) -> bool:
        return isinstance(value, int) and not isinstance(value, bool)

    if not is_int(daily) or daily <= 0:
        raise InvalidBroadcastLimitsError("daily_limit must be a positive integer")
    if not is_int(hourly) or hourly <= 0:
        raise InvalidBroadcastLimitsError("hourly_limit must be a positive integer")
    if not is_int(cooldown) or cooldown < 0:
        raise InvalidBroadcastLimitsError("cooldown_minutes must be a non-negative integer")
    if hourly > daily:
        raise InvalidBroadcastLimitsError("hourly_limit cannot exceed daily_limit")
    if not isinstance(values.get("bypass_roles"), list):
        raise InvalidBroadcastLimitsError("bypass_roles must be a list")


class SettingsStore:
    """Reads and writes the stored broadcast limit configuration."""

    def __init__(self, session: AsyncSession):
        self.session = session

    async def _get_setting(self, key: str, active_only: bool = True) -> Optional[SystemSetting]:
        query = select(SystemSetting).where(SystemSetting.setting_key == key)
        if active_only:
            query = query.where(SystemSetting.is_active.is_(True))
        result = await self.session.execute(query)
        return result.scalar_one_or_none()

    async def get_broadcast_limits(self) -> BroadcastLimits:
        """Current limits, stored values merged over the configured defaults."""
        merged = BroadcastLimits.defaults().to_dict()
        setting = await self._get_setting(BROADCAST_LIMITS_KEY)
        if setting and setting.setting_value:
            merged.update(setting.setting_value)
        return BroadcastLimits.from_dict(merged)

    async def update_broadcast_limits(
        self,
        values: dict[str, Any],
        updated_by: Optional[uuid.UUID] = None,
    ) -> BroadcastLimits:
        """Merge a partial update into the stored limits and persist it."""
        setting = await self._get_setting(BROADCAST_LIMITS_KEY, active_only=False)
        current = dict(setting.setting_value) if setting else BroadcastLimits.defaults().to_dict()
        merged = {**current, **{k: v for k, v in values.items() if v is not None}}

        validate_broadcast_limits(merged)

        if setting is None:
            setting = SystemSetting(setting_key=BROADCAST_LIMITS_KEY, setting_value=merged)
            self.session.add(setting)
        else:
            setting.setting_value = merged
        setting.is_active = True
        setting.updated_by_id = updated_by
        setting.description = "Broadcast rate limiting configuration"

        await self.session.commit()
        logger.info(
            "Broadcast limits updated",
            extra={"updated_by": str(updated_by) if updated_by else None, "limits": merged},
        )
        return BroadcastLimits.from_dict(merged)
