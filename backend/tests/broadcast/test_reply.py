"""Tests for replying to broadcasts and read tracking."""

import asyncio
import uuid

import numpy as np
import pytest
from sqlalchemy import func, select

from voicecast.modules.broadcast.events import BroadcastRepliedEvent
from voicecast.modules.broadcast.locks import LocalSenderLock
from voicecast.modules.broadcast.models import RecipientStatus, statuses_before
from voicecast.modules.broadcast.repository import BroadcastRepository
from voicecast.modules.broadcast.schemas import AudioAttachment, BroadcastRejection, ReplyResult
from voicecast.modules.broadcast.service import BroadcastFanoutOrchestrator
from voicecast.modules.conversation.models import Message
from voicecast.modules.conversation.repository import ConversationRepository

AUDIO = AudioAttachment(ref="broadcasts/morning.mp3", content_type="audio/mpeg")


@pytest.fixture
def orchestrator(session, dispatcher, publisher, clock) -> BroadcastFanoutOrchestrator:
    return BroadcastFanoutOrchestrator(
        session,
        dispatcher=dispatcher,
        publisher=publisher,
        lock=LocalSenderLock(),
        rng=np.random.default_rng(11),
        clock=clock,
    )


@pytest.fixture
def sent_broadcast(make_user, fund, orchestrator):
    """Sender with one broadcast delivered to a single recipient."""

    async def _send():
        sender = await make_user()
        await fund(sender)
        recipient = await make_user()
        result = await orchestrator.create_and_dispatch(sender.id, AUDIO, requested_count=1)
        return sender, recipient, result.broadcast_id

    return _send


class TestReplyToBroadcast:
    async def test_reply_reveals_conversation_to_both(self, session, orchestrator, sent_broadcast, clock) -> None:
        sender, recipient, broadcast_id = await sent_broadcast()
        conversations = ConversationRepository(session)
        before = await conversations.find_between(sender.id, recipient.id)
        assert before.visible_to(recipient.id) is False

        clock.advance(minutes=1)
        result = await orchestrator.reply_to_broadcast(recipient.id, broadcast_id, voice_ref="replies/r1.m4a")

        assert isinstance(result, ReplyResult)
        conversation = await conversations.find_between(sender.id, recipient.id)
        assert conversation.id == result.conversation_id == before.id
        assert conversation.visible_to(sender.id) is True
        assert conversation.visible_to(recipient.id) is True

        messages = await conversations.list_messages(conversation.id)
        assert [m.message_type for m in messages] == ["broadcast", "voice"]
        assert messages[-1].id == result.message_id
        assert messages[-1].sender_id == recipient.id
        assert messages[-1].broadcast_id == broadcast_id

        row = await BroadcastRepository(session).get_recipient(broadcast_id, recipient.id)
        assert row.status == RecipientStatus.REPLIED.value

    async def test_second_reply_is_rejected(self, orchestrator, sent_broadcast) -> None:
        _, recipient, broadcast_id = await sent_broadcast()

        first = await orchestrator.reply_to_broadcast(recipient.id, broadcast_id, voice_ref="replies/a.m4a")
        second = await orchestrator.reply_to_broadcast(recipient.id, broadcast_id, voice_ref="replies/b.m4a")

        assert isinstance(first, ReplyResult)
        assert isinstance(second, BroadcastRejection)
        assert second.error_code == "ALREADY_REPLIED"
        assert second.http_status_hint == 409

    async def test_text_reply(self, session, orchestrator, sent_broadcast, clock) -> None:
        _, recipient, broadcast_id = await sent_broadcast()
        clock.advance(seconds=30)

        result = await orchestrator.reply_to_broadcast(
            recipient.id, broadcast_id, message_type="text", body="nice voice!"
        )

        assert isinstance(result, ReplyResult)
        messages = await ConversationRepository(session).list_messages(result.conversation_id)
        assert messages[-1].body == "nice voice!"
        assert messages[-1].message_type == "text"

    async def test_unknown_broadcast(self, make_user, orchestrator) -> None:
        user = await make_user()

        result = await orchestrator.reply_to_broadcast(user.id, uuid.uuid4(), voice_ref="r.m4a")

        assert result.error_code == "NOT_FOUND"
        assert result.http_status_hint == 404

    async def test_non_recipient_is_forbidden(self, make_user, orchestrator, sent_broadcast) -> None:
        _, _, broadcast_id = await sent_broadcast()
        outsider = await make_user()

        result = await orchestrator.reply_to_broadcast(outsider.id, broadcast_id, voice_ref="r.m4a")

        assert result.error_code == "FORBIDDEN"
        assert result.http_status_hint == 403

    async def test_voice_reply_needs_audio(self, orchestrator, sent_broadcast) -> None:
        _, recipient, broadcast_id = await sent_broadcast()

        result = await orchestrator.reply_to_broadcast(recipient.id, broadcast_id)

        assert result.error_code == "VALIDATION_ERROR"

    async def test_unsupported_reply_type(self, orchestrator, sent_broadcast) -> None:
        _, recipient, broadcast_id = await sent_broadcast()

        result = await orchestrator.reply_to_broadcast(
            recipient.id, broadcast_id, voice_ref="r.m4a", message_type="broadcast"
        )

        assert result.error_code == "VALIDATION_ERROR"

    async def test_sender_is_notified_and_event_published(
        self, orchestrator, sent_broadcast, dispatcher, publisher
    ) -> None:
        sender, recipient, broadcast_id = await sent_broadcast()

        result = await orchestrator.reply_to_broadcast(recipient.id, broadcast_id, voice_ref="r.m4a")

        assert dispatcher.reply_calls == [(sender.id, recipient.id, broadcast_id)]
        replied = [e for e in publisher.events if isinstance(e, BroadcastRepliedEvent)]
        assert len(replied) == 1
        assert replied[0].message_id == result.message_id
        assert replied[0].to_dict()["broadcast_id"] == str(broadcast_id)


class TestReadTracking:
    async def test_delivered_becomes_read_once(self, session, orchestrator, sent_broadcast) -> None:
        _, recipient, broadcast_id = await sent_broadcast()

        assert await orchestrator.mark_read(broadcast_id, recipient.id) is True
        assert await orchestrator.mark_read(broadcast_id, recipient.id) is False

        row = await BroadcastRepository(session).get_recipient(broadcast_id, recipient.id)
        assert row.status == RecipientStatus.READ.value

    async def test_replied_never_goes_back_to_read(self, session, orchestrator, sent_broadcast) -> None:
        _, recipient, broadcast_id = await sent_broadcast()
        await orchestrator.reply_to_broadcast(recipient.id, broadcast_id, voice_ref="r.m4a")

        assert await orchestrator.mark_read(broadcast_id, recipient.id) is False

        row = await BroadcastRepository(session).get_recipient(broadcast_id, recipient.id)
        assert row.status == RecipientStatus.REPLIED.value

    async def test_read_then_reply(self, session, orchestrator, sent_broadcast) -> None:
        _, recipient, broadcast_id = await sent_broadcast()
        await orchestrator.mark_read(broadcast_id, recipient.id)

        result = await orchestrator.reply_to_broadcast(recipient.id, broadcast_id, voice_ref="r.m4a")

        assert isinstance(result, ReplyResult)
        row = await BroadcastRepository(session).get_recipient(broadcast_id, recipient.id)
        assert row.status == RecipientStatus.REPLIED.value

    def test_only_earlier_statuses_can_advance(self) -> None:
        assert statuses_before(RecipientStatus.REPLIED) == ["delivered", "read"]
        assert statuses_before(RecipientStatus.READ) == ["delivered"]
        assert statuses_before(RecipientStatus.DELIVERED) == []


class TestConcurrentReplies:
    """Two replies to the same broadcast from separate sessions."""

    async def test_racing_replies_produce_one_message(
        self, session_factory, session, sent_broadcast, dispatcher, publisher, clock
    ) -> None:
        _, recipient, broadcast_id = await sent_broadcast()
        recipient_id = recipient.id

        def orchestrator_for(other_session) -> BroadcastFanoutOrchestrator:
            return BroadcastFanoutOrchestrator(
                other_session,
                dispatcher=dispatcher,
                publisher=publisher,
                lock=LocalSenderLock(),
                clock=clock,
            )

        async with session_factory() as first, session_factory() as second:
            results = await asyncio.gather(
                orchestrator_for(first).reply_to_broadcast(recipient_id, broadcast_id, voice_ref="replies/1.m4a"),
                orchestrator_for(second).reply_to_broadcast(recipient_id, broadcast_id, voice_ref="replies/2.m4a"),
            )

        replies = [r for r in results if isinstance(r, ReplyResult)]
        rejections = [r for r in results if isinstance(r, BroadcastRejection)]
        assert len(replies) == 1
        assert [r.error_code for r in rejections] == ["ALREADY_REPLIED"]

        voice_messages = await session.execute(
            select(func.count()).select_from(Message).where(
                Message.broadcast_id == broadcast_id,
                Message.message_type == "voice",
            )
        )
        assert voice_messages.scalar_one() == 1
        row = await BroadcastRepository(session).get_recipient(broadcast_id, recipient_id)
        assert row.status == RecipientStatus.REPLIED.value

    async def test_reply_loses_when_status_already_claimed(
        self, session, orchestrator, sent_broadcast, clock
    ) -> None:
        _, recipient, broadcast_id = await sent_broadcast()
        recipient_id = recipient.id
        original_get = orchestrator.broadcasts.get_recipient

        async def stale_get_recipient(b_id, u_id):
            # Read the row as it was before a concurrent reply committed
            row = await original_get(b_id, u_id)
            await BroadcastRepository(session).update_recipient_status(
                b_id, u_id, RecipientStatus.REPLIED, clock.now
            )
            return row

        orchestrator.broadcasts.get_recipient = stale_get_recipient

        result = await orchestrator.reply_to_broadcast(recipient_id, broadcast_id, voice_ref="r.m4a")

        assert isinstance(result, BroadcastRejection)
        assert result.error_code == "ALREADY_REPLIED"
        messages = await session.execute(
            select(func.count()).select_from(Message).where(Message.message_type == "voice")
        )
        assert messages.scalar_one() == 0
