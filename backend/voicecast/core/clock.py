"""Time helpers shared by the usage ledger and limit policy.

All timestamps are handled as timezone-aware UTC. Calendar days ("today",
"next reset") are computed in the application-wide BROADCAST_TIMEZONE.
"""

from datetime import date, datetime, time, timedelta, timezone
from typing import Callable, Optional
from zoneinfo import ZoneInfo

from voicecast.core.config import settings

Clock = Callable[[], datetime]


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


def as_utc(value: Optional[datetime]) -> Optional[datetime]:
    """Normalize a datetime read back from the database to aware UTC.

    SQLite drops tzinfo on round-trip, so naive values are assumed to be UTC.
    """
    if value is None:
        return None
    if value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value.astimezone(timezone.utc)


def app_timezone() -> ZoneInfo:
    return ZoneInfo(settings.BROADCAST_TIMEZONE)


def local_date(moment: datetime, tz: Optional[ZoneInfo] = None) -> date:
    """Calendar date of ``moment`` in the application timezone."""
    return as_utc(moment).astimezone(tz or app_timezone()).date()


def next_midnight(moment: datetime, tz: Optional[ZoneInfo] = None) -> datetime:
    """Start of the next local day after ``moment``, returned in UTC."""
    zone = tz or app_timezone()
    tomorrow = local_date(moment, zone) + timedelta(days=1)
    return datetime.combine(tomorrow, time.min, tzinfo=zone).astimezone(timezone.utc)
