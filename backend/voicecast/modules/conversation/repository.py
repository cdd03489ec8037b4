"""Repository for conversations and messages.

Methods here never commit; callers own the transaction boundary.
"""

import uuid
from datetime import datetime
from typing import Optional

from sqlalchemy import and_, func, or_, select
from sqlalchemy.ext.asyncio import AsyncSession

from voicecast.core.clock import utcnow
from voicecast.modules.conversation.models import Conversation, Message, ordered_pair


class ConversationRepository:
    """Find-or-create of unordered-pair conversations and message appends."""

    def __init__(self, session: AsyncSession):
        self.session = session

    async def get_by_id(self, conversation_id: uuid.UUID) -> Optional[Conversation]:
        result = await self.session.execute(
            select(Conversation).where(Conversation.id == conversation_id)
        )
        return result.scalar_one_or_none()

    async def find_between(
        self, user1_id: uuid.UUID, user2_id: uuid.UUID
    ) -> Optional[Conversation]:
        user_a_id, user_b_id = ordered_pair(user1_id, user2_id)
        result = await self.session.execute(
            select(Conversation).where(
                and_(
                    Conversation.user_a_id == user_a_id,
                    Conversation.user_b_id == user_b_id,
                )
            )
        )
        return result.scalar_one_or_none()

    async def find_or_create(
        self,
        user1_id: uuid.UUID,
        user2_id: uuid.UUID,
        linked_broadcast_id: Optional[uuid.UUID] = None,
        now: Optional[datetime] = None,
    ) -> tuple[Conversation, bool]:
        """Return the pair's conversation, creating it if missing.

        Returns:
            (conversation, created)

        Raises:
            ValueError: If both ids are the same user
        """
        if user1_id == user2_id:
            raise ValueError("A conversation needs two distinct users")

        existing = await self.find_between(user1_id, user2_id)
        if existing:
            return existing, False

        user_a_id, user_b_id = ordered_pair(user1_id, user2_id)
        moment = now or utcnow()
        conversation = Conversation(
            user_a_id=user_a_id,
            user_b_id=user_b_id,
            deleted_by_a=False,
            deleted_by_b=False,
            linked_broadcast_id=linked_broadcast_id,
            created_at=moment,
            updated_at=moment,
        )
        self.session.add(conversation)
        await self.session.flush()
        return conversation, True

    async def add_message(
        self,
        conversation: Conversation,
        sender_id: uuid.UUID,
        message_type: str,
        broadcast_id: Optional[uuid.UUID] = None,
        voice_ref: Optional[str] = None,
        body: Optional[str] = None,
        now: Optional[datetime] = None,
    ) -> Message:
        """Append a message and touch the conversation's ``updated_at``."""
        moment = now or utcnow()
        message = Message(
            conversation_id=conversation.id,
            sender_id=sender_id,
            message_type=message_type,
            broadcast_id=broadcast_id,
            voice_ref=voice_ref,
            body=body,
            read=False,
            created_at=moment,
        )
        self.session.add(message)
        conversation.updated_at = moment
        await self.session.flush()
        return message

    async def list_visible_for(self, user_id: uuid.UUID, limit: int = 50) -> list[Conversation]:
        """Conversations the user currently sees, most recent first."""
        result = await self.session.execute(
            select(Conversation)
            .where(
                or_(
                    and_(Conversation.user_a_id == user_id, Conversation.deleted_by_a.is_(False)),
                    and_(Conversation.user_b_id == user_id, Conversation.deleted_by_b.is_(False)),
                )
            )
            .order_by(Conversation.updated_at.desc())
            .limit(limit)
        )
        return list(result.scalars().all())

    async def list_messages(self, conversation_id: uuid.UUID) -> list[Message]:
        result = await self.session.execute(
            select(Message)
            .where(Message.conversation_id == conversation_id)
            .order_by(Message.created_at)
        )
        return list(result.scalars().all())

    async def count_messages(
        self,
        conversation_id: uuid.UUID,
        message_type: Optional[str] = None,
    ) -> int:
        query = select(func.count(Message.id)).where(Message.conversation_id == conversation_id)
        if message_type:
            query = query.where(Message.message_type == message_type)
        result = await self.session.execute(query)
        return result.scalar_one()
