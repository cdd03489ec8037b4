"""Tests for the replayable fan-out Celery task."""

import uuid
from fnmatch import fnmatch
from unittest.mock import patch

import pytest
from celery.exceptions import Retry
from hypothesis import given, settings, strategies as st

from voicecast.core.celery_app import celery_app
from voicecast.modules.broadcast import tasks
from voicecast.modules.broadcast.errors import InternalError, NotFoundError
from voicecast.modules.broadcast.repository import BroadcastRepository
from voicecast.modules.broadcast.tasks import (
    FANOUT_RETRY_CONFIG,
    RetryConfig,
    fan_out_broadcast,
    run_fanout,
)


class TestRetryBackoff:
    """Backoff delay calculation for fan-out retries."""

    @settings(max_examples=100)
    @given(
        initial=st.floats(min_value=0.1, max_value=10.0),
        multiplier=st.floats(min_value=1.0, max_value=4.0),
        max_delay=st.floats(min_value=10.0, max_value=600.0),
        attempt=st.integers(min_value=1, max_value=15),
    )
    def test_delay_is_capped(self, initial: float, multiplier: float, max_delay: float, attempt: int) -> None:
        config = RetryConfig(initial_delay=initial, backoff_multiplier=multiplier, max_delay=max_delay)

        assert 0 < config.calculate_delay(attempt) <= max_delay

    @settings(max_examples=100)
    @given(attempt=st.integers(min_value=1, max_value=14))
    def test_delay_never_decreases(self, attempt: int) -> None:
        config = FANOUT_RETRY_CONFIG

        assert config.calculate_delay(attempt + 1) >= config.calculate_delay(attempt)

    def test_first_attempt_uses_initial_delay(self) -> None:
        assert FANOUT_RETRY_CONFIG.calculate_delay(1) == 2.0
        assert FANOUT_RETRY_CONFIG.calculate_delay(0) == 2.0
        assert FANOUT_RETRY_CONFIG.calculate_delay(20) == 120.0


class TestRunFanout:
    async def test_adds_recipients_once(self, session_factory, session, make_user, clock) -> None:
        sender = await make_user()
        a, b = await make_user(), await make_user()
        broadcast = await BroadcastRepository(session).create(sender.id, "a.m4a", "hi", now=clock.now)
        await session.commit()
        broadcast_id, sender_id = broadcast.id, sender.id

        first = await run_fanout(broadcast_id, [a.id, b.id, sender_id], session_factory=session_factory)
        second = await run_fanout(broadcast_id, [a.id, b.id], session_factory=session_factory)

        assert set(first) == {a.id, b.id}
        assert second == []

    async def test_missing_broadcast(self, session_factory) -> None:
        with pytest.raises(NotFoundError):
            await run_fanout(uuid.uuid4(), [], session_factory=session_factory)


class TestFanOutBroadcastTask:
    def test_completed_result_lists_added_ids(self) -> None:
        added = [uuid.uuid4(), uuid.uuid4()]

        async def fake_run(broadcast_id, recipient_ids):
            return added

        with patch.object(tasks, "run_fanout", fake_run):
            result = fan_out_broadcast.apply(args=[str(uuid.uuid4()), [str(u) for u in added]]).get()

        assert result["status"] == "completed"
        assert result["added"] == [str(u) for u in added]

    def test_missing_broadcast_is_dropped(self) -> None:
        async def fake_run(broadcast_id, recipient_ids):
            raise NotFoundError("Broadcast not found")

        broadcast_id = str(uuid.uuid4())
        with patch.object(tasks, "run_fanout", fake_run):
            result = fan_out_broadcast.apply(args=[broadcast_id, []]).get()

        assert result == {"status": "not_found", "broadcast_id": broadcast_id, "added": []}

    def test_persistence_failure_is_retried_with_backoff(self) -> None:
        async def fake_run(broadcast_id, recipient_ids):
            raise InternalError("Failed to persist broadcast recipients")

        with patch.object(tasks, "run_fanout", fake_run), \
                patch.object(fan_out_broadcast, "retry", side_effect=Retry()) as retry:
            fan_out_broadcast.apply(args=[str(uuid.uuid4()), []])

        retry.assert_called_once()
        assert retry.call_args.kwargs["countdown"] == FANOUT_RETRY_CONFIG.calculate_delay(1)

    def test_scheduled_by_name_on_broadcasts_queue(self) -> None:
        name = "voicecast.modules.broadcast.tasks.fan_out_broadcast"

        assert celery_app.tasks[name] is fan_out_broadcast
        queues = [
            options["queue"]
            for pattern, options in celery_app.conf.task_routes.items()
            if fnmatch(name, pattern)
        ]
        assert queues == ["broadcasts"]
