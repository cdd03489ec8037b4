"""Per-user broadcast usage counters.

The daily counter lives in ``broadcast_usage_logs`` (one row per user per
local day). Increments are single-statement upserts so two concurrent sends
from one user cannot under-count.
"""

import logging
import uuid
from datetime import datetime, timedelta
from typing import Any, Optional
from zoneinfo import ZoneInfo

from sqlalchemy import func, select
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession

from voicecast.core.clock import Clock, as_utc, local_date, utcnow
from voicecast.core.database import dialect_insert
from voicecast.core.logging import log_warning
from voicecast.modules.broadcast.models import Broadcast, BroadcastUsageLog

logger = logging.getLogger(__name__)


class UsageLedger:
    """Reads and increments a user's broadcast usage."""

    def __init__(
        self,
        session: AsyncSession,
        clock: Clock = utcnow,
        tz: Optional[ZoneInfo] = None,
    ):
        self.session = session
        self.clock = clock
        self.tz = tz

    async def count_today(self, user_id: uuid.UUID) -> int:
        today = local_date(self.clock(), self.tz)
        result = await self.session.execute(
            select(BroadcastUsageLog.broadcasts_sent_count).where(
                BroadcastUsageLog.user_id == user_id,
                BroadcastUsageLog.usage_date == today,
            )
        )
        return result.scalar_one_or_none() or 0

    async def count_this_hour(self, user_id: uuid.UUID) -> int:
        """Broadcasts created in the rolling 60 minutes before now."""
        since = self.clock() - timedelta(hours=1)
        result = await self.session.execute(
            select(func.count(Broadcast.id)).where(
                Broadcast.sender_id == user_id,
                Broadcast.created_at >= since,
            )
        )
        return result.scalar_one()

    async def last_broadcast_time(self, user_id: uuid.UUID) -> Optional[datetime]:
        result = await self.session.execute(
            select(func.max(BroadcastUsageLog.last_broadcast_at)).where(
                BroadcastUsageLog.user_id == user_id
            )
        )
        return as_utc(result.scalar_one_or_none())

    async def record_broadcast(self, user_id: uuid.UUID, at: Optional[datetime] = None) -> None:
        """Count one sent broadcast. Runs inside the caller's transaction."""
        moment = at or self.clock()
        await self._upsert(
            user_id,
            moment,
            insert_values={"broadcasts_sent_count": 1, "last_broadcast_at": moment},
            increments={"broadcasts_sent_count": 1},
            overwrite=["last_broadcast_at"],
        )

    async def record_limit_exceeded(self, user_id: uuid.UUID) -> None:
        """Count a denied attempt.

        Denials happen before any fan-out transaction is opened, so this write
        is committed on its own. Failures are logged and dropped.
        """
        try:
            await self._upsert(
                user_id,
                self.clock(),
                insert_values={"limit_exceeded_count": 1},
                increments={"limit_exceeded_count": 1},
            )
            await self.session.commit()
        except (SQLAlchemyError, NotImplementedError) as e:
            await self.session.rollback()
            log_warning(
                logger,
                f"Failed to record limit-exceeded attempt for user {user_id}: {e}",
                user_id=str(user_id),
            )

    async def _upsert(
        self,
        user_id: uuid.UUID,
        moment: datetime,
        insert_values: dict[str, Any],
        increments: dict[str, int],
        overwrite: Optional[list[str]] = None,
    ) -> None:
        table = BroadcastUsageLog.__table__
        values = {
            "id": uuid.uuid4(),
            "user_id": user_id,
            "usage_date": local_date(moment, self.tz),
            "broadcasts_sent_count": 0,
            "last_broadcast_at": None,
            "limit_exceeded_count": 0,
        }
        values.update(insert_values)

        stmt = dialect_insert(self.session, table).values(**values)
        update_set = {column: table.c[column] + amount for column, amount in increments.items()}
        for column in overwrite or []:
            update_set[column] = stmt.excluded[column]
        stmt = stmt.on_conflict_do_update(
            index_elements=[table.c.user_id, table.c.usage_date],
            set_=update_set,
        )
        await self.session.execute(stmt)
