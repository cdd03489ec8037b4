"""Tests for BroadcastRepository persistence queries."""

import asyncio
from datetime import timedelta

from voicecast.modules.broadcast.models import RecipientStatus
from voicecast.modules.broadcast.repository import BroadcastRepository


class TestRecipients:
    async def test_add_recipients_skips_existing(self, session, make_user, clock) -> None:
        sender = await make_user()
        a, b = await make_user(), await make_user()
        repo = BroadcastRepository(session)
        broadcast = await repo.create(sender.id, "a.m4a", "hi", now=clock.now)

        first = await repo.add_recipients(broadcast.id, [a.id], clock.now)
        second = await repo.add_recipients(broadcast.id, [a.id, b.id, b.id], clock.now)
        await session.commit()

        assert first == [a.id]
        assert second == [b.id]
        rows = await repo.list_recipients(broadcast.id)
        assert {row.user_id for row in rows} == {a.id, b.id}
        assert {row.status for row in rows} == {RecipientStatus.DELIVERED.value}

    async def test_update_status_only_moves_forward(self, session, make_user, clock) -> None:
        sender, recipient = await make_user(), await make_user()
        repo = BroadcastRepository(session)
        broadcast = await repo.create(sender.id, "a.m4a", "hi", now=clock.now)
        await repo.add_recipients(broadcast.id, [recipient.id], clock.now)

        async def advance(status: RecipientStatus) -> bool:
            return await repo.update_recipient_status(broadcast.id, recipient.id, status, clock.now)

        assert await advance(RecipientStatus.REPLIED) is True
        assert await advance(RecipientStatus.READ) is False
        assert await advance(RecipientStatus.REPLIED) is False
        assert await repo.mark_read(broadcast.id, recipient.id, clock.now) is False

        row = await repo.get_recipient(broadcast.id, recipient.id)
        assert row.status == RecipientStatus.REPLIED.value

    async def test_status_update_for_non_recipient_changes_nothing(self, session, make_user, clock) -> None:
        sender, outsider = await make_user(), await make_user()
        repo = BroadcastRepository(session)
        broadcast = await repo.create(sender.id, "a.m4a", "hi", now=clock.now)

        changed = await repo.update_recipient_status(broadcast.id, outsider.id, RecipientStatus.READ, clock.now)

        assert changed is False
        assert await repo.get_recipient(broadcast.id, outsider.id) is None

    async def test_overlapping_inserts_split_the_recipients(self, session_factory, session, make_user, clock) -> None:
        sender = await make_user()
        users = [await make_user() for _ in range(4)]
        user_ids = [u.id for u in users]
        broadcast = await BroadcastRepository(session).create(sender.id, "a.m4a", "hi", now=clock.now)
        await session.commit()
        broadcast_id = broadcast.id

        async def insert(other_session, ids):
            added = await BroadcastRepository(other_session).add_recipients(broadcast_id, ids, clock.now)
            await other_session.commit()
            return added

        async with session_factory() as first, session_factory() as second:
            first_added, second_added = await asyncio.gather(
                insert(first, user_ids),
                insert(second, list(reversed(user_ids))),
            )

        assert set(first_added).isdisjoint(second_added)
        assert sorted(first_added + second_added) == sorted(user_ids)
        rows = await BroadcastRepository(session).list_recipients(broadcast_id)
        assert sorted(row.user_id for row in rows) == sorted(user_ids)


class TestListing:
    async def test_list_sent_newest_first(self, session, make_user, clock) -> None:
        sender = await make_user()
        repo = BroadcastRepository(session)
        older = await repo.create(sender.id, "1.m4a", "first", now=clock.now)
        newer = await repo.create(sender.id, "2.m4a", "second", now=clock.now + timedelta(hours=1))
        await session.commit()

        sent = await repo.list_sent(sender.id)

        assert [b.id for b in sent] == [newer.id, older.id]

    async def test_list_received_hides_inactive(self, session, make_user, clock) -> None:
        sender, recipient = await make_user(), await make_user()
        repo = BroadcastRepository(session)
        shown = await repo.create(sender.id, "1.m4a", "shown", now=clock.now)
        hidden = await repo.create(sender.id, "2.m4a", "hidden", now=clock.now)
        hidden.active = False
        for broadcast in (shown, hidden):
            await repo.add_recipients(broadcast.id, [recipient.id], clock.now)
        await repo.mark_read(shown.id, recipient.id, clock.now)
        await session.commit()

        received = await repo.list_received(recipient.id)

        assert [(b.id, status) for b, status in received] == [(shown.id, RecipientStatus.READ.value)]


class TestStatistics:
    async def test_counts_and_reply_rate(self, session, make_user, clock) -> None:
        sender = await make_user()
        users = [await make_user() for _ in range(4)]
        repo = BroadcastRepository(session)
        broadcast = await repo.create(sender.id, "a.m4a", "hi", now=clock.now)
        await repo.add_recipients(broadcast.id, [u.id for u in users], clock.now)
        await repo.mark_read(broadcast.id, users[0].id, clock.now)
        await repo.update_recipient_status(broadcast.id, users[1].id, RecipientStatus.REPLIED, clock.now)
        await session.commit()

        stats = await repo.statistics(sender.id)

        assert stats.total_broadcasts == 1
        assert stats.total_recipients == 4
        assert stats.read_count == 2
        assert stats.replied_count == 1
        assert stats.reply_rate == 0.25

    async def test_date_range_and_sender_scoping(self, session, make_user, clock) -> None:
        alice, bob = await make_user(), await make_user()
        repo = BroadcastRepository(session)
        await repo.create(alice.id, "a.m4a", "old", now=clock.now - timedelta(days=3))
        await repo.create(alice.id, "b.m4a", "new", now=clock.now)
        await repo.create(bob.id, "c.m4a", "bob", now=clock.now)
        await session.commit()

        recent = await repo.statistics(alice.id, start=clock.now - timedelta(days=1))
        everyone = await repo.statistics()

        assert recent.total_broadcasts == 1
        assert recent.total_recipients == 0
        assert recent.reply_rate == 0.0
        assert everyone.total_broadcasts == 3
