"""Repository for broadcasts and their recipient rows.

Nothing here commits; the orchestrator owns the transaction.
"""

import uuid
from datetime import datetime
from typing import Iterable, Optional

from sqlalchemy import case, func, select, update
from sqlalchemy.ext.asyncio import AsyncSession

from voicecast.core.clock import utcnow
from voicecast.core.database import dialect_insert
from voicecast.modules.broadcast.models import (
    Broadcast,
    BroadcastRecipient,
    RecipientStatus,
    statuses_before,
)
from voicecast.modules.broadcast.schemas import BroadcastStatistics


class BroadcastRepository:
    """Data access for broadcasts and recipients."""

    def __init__(self, session: AsyncSession):
        self.session = session

    async def create(
        self,
        sender_id: uuid.UUID,
        audio_ref: str,
        content: str,
        audio_content_type: Optional[str] = None,
        now: Optional[datetime] = None,
    ) -> Broadcast:
        broadcast = Broadcast(
            sender_id=sender_id,
            audio_ref=audio_ref,
            audio_content_type=audio_content_type,
            content=content,
            active=True,
            created_at=now or utcnow(),
        )
        self.session.add(broadcast)
        await self.session.flush()
        return broadcast

    async def get_by_id(self, broadcast_id: uuid.UUID) -> Optional[Broadcast]:
        result = await self.session.execute(select(Broadcast).where(Broadcast.id == broadcast_id))
        return result.scalar_one_or_none()

    async def get_recipient(
        self,
        broadcast_id: uuid.UUID,
        user_id: uuid.UUID,
    ) -> Optional[BroadcastRecipient]:
        result = await self.session.execute(
            select(BroadcastRecipient).where(
                BroadcastRecipient.broadcast_id == broadcast_id,
                BroadcastRecipient.user_id == user_id,
            ).execution_options(populate_existing=True)
        )
        return result.scalar_one_or_none()

    async def list_recipients(self, broadcast_id: uuid.UUID) -> list[BroadcastRecipient]:
        result = await self.session.execute(
            select(BroadcastRecipient)
            .where(BroadcastRecipient.broadcast_id == broadcast_id)
            .order_by(BroadcastRecipient.created_at)
            .execution_options(populate_existing=True)
        )
        return list(result.scalars().all())

    async def add_recipients(
        self,
        broadcast_id: uuid.UUID,
        user_ids: Iterable[uuid.UUID],
        now: Optional[datetime] = None,
    ) -> list[uuid.UUID]:
        """Insert ``delivered`` rows for users not yet recipients.

        One INSERT .. ON CONFLICT DO NOTHING on (broadcast_id, user_id), so a
        replay of the same fan-out adds nothing, even when two replays overlap.

        Returns:
            Ids of the users that were newly added, in input order
        """
        candidates = list(dict.fromkeys(user_ids))
        if not candidates:
            return []

        moment = now or utcnow()
        table = BroadcastRecipient.__table__
        stmt = (
            dialect_insert(self.session, table)
            .values([
                {
                    "id": uuid.uuid4(),
                    "broadcast_id": broadcast_id,
                    "user_id": user_id,
                    "status": RecipientStatus.DELIVERED.value,
                    "created_at": moment,
                    "updated_at": moment,
                }
                for user_id in candidates
            ])
            .on_conflict_do_nothing(index_elements=[table.c.broadcast_id, table.c.user_id])
            .returning(table.c.user_id)
        )
        result = await self.session.execute(stmt)
        inserted = set(result.scalars().all())
        return [user_id for user_id in candidates if user_id in inserted]

    async def update_recipient_status(
        self,
        broadcast_id: uuid.UUID,
        user_id: uuid.UUID,
        status: RecipientStatus,
        now: Optional[datetime] = None,
    ) -> bool:
        """Move a recipient forward with a conditional UPDATE.

        The row only changes while its current status ranks below ``status``,
        so of two racing writers exactly one wins and nothing regresses.

        Returns:
            True if this call changed the row
        """
        result = await self.session.execute(
            update(BroadcastRecipient)
            .where(
                BroadcastRecipient.broadcast_id == broadcast_id,
                BroadcastRecipient.user_id == user_id,
                BroadcastRecipient.status.in_(statuses_before(status)),
            )
            .values(status=status.value, updated_at=now or utcnow())
            .execution_options(synchronize_session=False)
        )
        return result.rowcount == 1

    async def mark_read(
        self,
        broadcast_id: uuid.UUID,
        user_id: uuid.UUID,
        now: Optional[datetime] = None,
    ) -> bool:
        """delivered -> read. Any other status is left as it is."""
        return await self.update_recipient_status(broadcast_id, user_id, RecipientStatus.READ, now)

    async def list_sent(self, sender_id: uuid.UUID, limit: int = 20) -> list[Broadcast]:
        result = await self.session.execute(
            select(Broadcast)
            .where(Broadcast.sender_id == sender_id)
            .order_by(Broadcast.created_at.desc())
            .limit(limit)
        )
        return list(result.scalars().all())

    async def list_received(
        self,
        user_id: uuid.UUID,
        limit: int = 20,
    ) -> list[tuple[Broadcast, str]]:
        """Active broadcasts the user received, newest first, with their status."""
        result = await self.session.execute(
            select(Broadcast, BroadcastRecipient.status)
            .join(BroadcastRecipient, BroadcastRecipient.broadcast_id == Broadcast.id)
            .where(
                BroadcastRecipient.user_id == user_id,
                Broadcast.active.is_(True),
            )
            .order_by(Broadcast.created_at.desc())
            .limit(limit)
        )
        return [(broadcast, status) for broadcast, status in result.all()]

    async def statistics(
        self,
        sender_id: Optional[uuid.UUID] = None,
        start: Optional[datetime] = None,
        end: Optional[datetime] = None,
    ) -> BroadcastStatistics:
        broadcast_filters = []
        if sender_id:
            broadcast_filters.append(Broadcast.sender_id == sender_id)
        if start:
            broadcast_filters.append(Broadcast.created_at >= start)
        if end:
            broadcast_filters.append(Broadcast.created_at < end)

        total_broadcasts = (await self.session.execute(
            select(func.count(Broadcast.id)).where(*broadcast_filters)
        )).scalar_one()

        def status_count(*statuses: RecipientStatus):
            return func.coalesce(func.sum(case(
                (BroadcastRecipient.status.in_([s.value for s in statuses]), 1),
                else_=0,
            )), 0)

        row = (await self.session.execute(
            select(
                func.count(BroadcastRecipient.id),
                status_count(RecipientStatus.READ, RecipientStatus.REPLIED),
                status_count(RecipientStatus.REPLIED),
            )
            .join(Broadcast, Broadcast.id == BroadcastRecipient.broadcast_id)
            .where(*broadcast_filters)
        )).one()
        total_recipients, read_count, replied_count = row

        return BroadcastStatistics(
            total_broadcasts=total_broadcasts,
            total_recipients=total_recipients,
            read_count=read_count,
            replied_count=replied_count,
            reply_rate=round(replied_count / total_recipients, 4) if total_recipients else 0.0,
        )
