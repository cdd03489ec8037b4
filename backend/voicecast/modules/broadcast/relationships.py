"""Block-relationship exclusion for recipient selection."""

import uuid

from sqlalchemy import select, union
from sqlalchemy.ext.asyncio import AsyncSession

from voicecast.modules.user.models import Block


class RelationshipFilter:
    """Computes users that must never be paired with a given user."""

    def __init__(self, session: AsyncSession):
        self.session = session

    async def excluded_ids(self, user_id: uuid.UUID) -> set[uuid.UUID]:
        """Users ``user_id`` has blocked plus users who have blocked ``user_id``."""
        blocked_by_user = select(Block.blocked_id.label("user_id")).where(Block.blocker_id == user_id)
        blocking_user = select(Block.blocker_id.label("user_id")).where(Block.blocked_id == user_id)
        result = await self.session.execute(union(blocked_by_user, blocking_user))
        return set(result.scalars().all())
