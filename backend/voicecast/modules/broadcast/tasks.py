"""Celery tasks for replayable broadcast fan-out.

The fan-out persistence step is idempotent, so the task may be delivered
more than once and retried after a partial failure.

The API path fans out inline and never enqueues this task. It is the entry
point for producers outside this process, such as admin replays or an
upload pipeline that already holds a broadcast id. They schedule it by name
on the ``broadcasts`` queue::

    celery_app.send_task(
        "voicecast.modules.broadcast.tasks.fan_out_broadcast",
        args=[str(broadcast_id), [str(user_id) for user_id in recipient_ids]],
        queue="broadcasts",
    )
"""

import asyncio
import logging
import math
import uuid
from typing import Any

from celery import Task
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from voicecast.core.celery_app import celery_app
from voicecast.core.database import async_session_maker
from voicecast.core.logging import correlation_scope
from voicecast.modules.broadcast.errors import InternalError, NotFoundError, TransientError
from voicecast.modules.broadcast.service import BroadcastFanoutOrchestrator

logger = logging.getLogger(__name__)


class RetryConfig:
    """Exponential backoff settings for a task."""

    def __init__(
        self,
        max_attempts: int = 3,
        initial_delay: float = 1.0,
        max_delay: float = 300.0,
        backoff_multiplier: float = 2.0,
    ):
        self.max_attempts = max_attempts
        self.initial_delay = initial_delay
        self.max_delay = max_delay
        self.backoff_multiplier = backoff_multiplier

    def calculate_delay(self, attempt: int) -> float:
        """Delay before the given attempt (1-indexed), capped at ``max_delay``."""
        if attempt < 1:
            return self.initial_delay

        delay = self.initial_delay * math.pow(self.backoff_multiplier, attempt - 1)
        return min(delay, self.max_delay)


FANOUT_RETRY_CONFIG = RetryConfig(max_attempts=5, initial_delay=2.0, max_delay=120.0)


class FanoutTask(Task):
    """Base task for fan-out with backoff retries."""

    abstract = True
    retry_config = FANOUT_RETRY_CONFIG

    def on_failure(self, exc: Exception, task_id: str, args: tuple, kwargs: dict, einfo: Any) -> None:
        broadcast_id = args[0] if args else kwargs.get("broadcast_id")
        logger.error(f"Fan-out task {task_id} for broadcast {broadcast_id} failed permanently: {exc}")

    def on_retry(self, exc: Exception, task_id: str, args: tuple, kwargs: dict, einfo: Any) -> None:
        broadcast_id = args[0] if args else kwargs.get("broadcast_id")
        logger.warning(
            f"Retrying fan-out for broadcast {broadcast_id} "
            f"(attempt {self.request.retries + 1}): {exc}"
        )


async def run_fanout(
    broadcast_id: uuid.UUID,
    recipient_ids: list[uuid.UUID],
    session_factory: async_sessionmaker[AsyncSession] = async_session_maker,
) -> list[uuid.UUID]:
    """Persist and notify recipients for an existing broadcast."""
    async with session_factory() as session:
        orchestrator = BroadcastFanoutOrchestrator(session)
        return await orchestrator.persist_fanout(broadcast_id, recipient_ids)


@celery_app.task(bind=True, base=FanoutTask, name="voicecast.modules.broadcast.tasks.fan_out_broadcast")
def fan_out_broadcast(self: FanoutTask, broadcast_id: str, recipient_ids: list[str]) -> dict:
    """Materialize recipients for a broadcast.

    Args:
        broadcast_id: Broadcast to fan out
        recipient_ids: Users that should receive it

    Returns:
        dict with the ids of recipients added by this run
    """
    try:
        with correlation_scope(self.request.id):
            added = asyncio.run(run_fanout(
                uuid.UUID(broadcast_id),
                [uuid.UUID(user_id) for user_id in recipient_ids],
            ))
    except NotFoundError:
        logger.warning(f"Broadcast {broadcast_id} no longer exists, dropping fan-out")
        return {"status": "not_found", "broadcast_id": broadcast_id, "added": []}
    except (InternalError, TransientError) as exc:
        attempt = self.request.retries + 1
        if attempt >= self.retry_config.max_attempts:
            raise
        raise self.retry(exc=exc, countdown=self.retry_config.calculate_delay(attempt))

    return {
        "status": "completed",
        "broadcast_id": broadcast_id,
        "added": [str(user_id) for user_id in added],
    }
