"""Repository for user lookups and block relationships."""

import uuid
from typing import Optional

from sqlalchemy import and_, delete, select
from sqlalchemy.ext.asyncio import AsyncSession

from voicecast.modules.user.models import Block, User


class UserRepository:
    """Read access to users and write access to the block graph."""

    def __init__(self, session: AsyncSession):
        self.session = session

    async def get_by_id(self, user_id: uuid.UUID) -> Optional[User]:
        result = await self.session.execute(select(User).where(User.id == user_id))
        return result.scalar_one_or_none()

    async def get_many(self, user_ids: list[uuid.UUID]) -> list[User]:
        if not user_ids:
            return []
        result = await self.session.execute(select(User).where(User.id.in_(user_ids)))
        return list(result.scalars().all())

    async def block(self, blocker_id: uuid.UUID, blocked_id: uuid.UUID) -> Block:
        """Record that ``blocker_id`` blocks ``blocked_id`` (no-op if present)."""
        result = await self.session.execute(
            select(Block).where(
                and_(Block.blocker_id == blocker_id, Block.blocked_id == blocked_id)
            )
        )
        existing = result.scalar_one_or_none()
        if existing:
            return existing

        block = Block(blocker_id=blocker_id, blocked_id=blocked_id)
        self.session.add(block)
        await self.session.commit()
        return block

    async def unblock(self, blocker_id: uuid.UUID, blocked_id: uuid.UUID) -> bool:
        result = await self.session.execute(
            delete(Block).where(
                and_(Block.blocker_id == blocker_id, Block.blocked_id == blocked_id)
            )
        )
        await self.session.commit()
        return result.rowcount > 0
