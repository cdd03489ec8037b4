"""Per-sender locks around check-then-persist.

Two concurrent sends from one user must not both pass the limit check
before either has recorded its usage. In production the lock is a Redis
lease shared by every API and worker process; ``LocalSenderLock`` covers a
single process and is what tests use.
"""

import asyncio
import logging
import uuid
from contextlib import AbstractAsyncContextManager, asynccontextmanager
from typing import AsyncIterator, Optional, Protocol

from redis.asyncio import Redis
from redis.exceptions import LockError

from voicecast.core.config import settings
from voicecast.modules.broadcast.errors import TransientError

logger = logging.getLogger(__name__)

LOCK_KEY_PREFIX = "voicecast:broadcast-lock:"


class SenderLock(Protocol):
    def hold(self, sender_id: uuid.UUID) -> AbstractAsyncContextManager[None]:
        ...


class LocalSenderLock:
    """In-process lock per sender.

    A sender's entry is dropped once nobody holds or waits on it.
    """

    def __init__(self) -> None:
        self._locks: dict[uuid.UUID, asyncio.Lock] = {}
        self._users: dict[uuid.UUID, int] = {}

    def __len__(self) -> int:
        return len(self._locks)

    @asynccontextmanager
    async def hold(self, sender_id: uuid.UUID) -> AsyncIterator[None]:
        lock = self._locks.setdefault(sender_id, asyncio.Lock())
        self._users[sender_id] = self._users.get(sender_id, 0) + 1
        try:
            async with lock:
                yield
        finally:
            self._users[sender_id] -= 1
            if not self._users[sender_id]:
                del self._users[sender_id]
                del self._locks[sender_id]


class RedisSenderLock:
    """Distributed lock per sender backed by a Redis lease."""

    def __init__(
        self,
        client: Optional[Redis] = None,
        timeout: Optional[float] = None,
        blocking_timeout: Optional[float] = None,
    ):
        self.client = client or Redis.from_url(settings.REDIS_URL, decode_responses=True)
        self.timeout = timeout or settings.BROADCAST_LOCK_TIMEOUT_SECONDS
        self.blocking_timeout = blocking_timeout or self.timeout

    @asynccontextmanager
    async def hold(self, sender_id: uuid.UUID) -> AsyncIterator[None]:
        lock = self.client.lock(
            f"{LOCK_KEY_PREFIX}{sender_id}",
            timeout=self.timeout,
            blocking_timeout=self.blocking_timeout,
        )
        acquired = await lock.acquire()
        if not acquired:
            raise TransientError(
                "Another broadcast from this sender is in progress",
                detail={"senderId": str(sender_id)},
            )
        try:
            yield
        finally:
            try:
                await lock.release()
            except LockError:
                # Lease expired before we finished; the key is already gone
                logger.warning(f"Broadcast lock for sender {sender_id} expired before release")

    async def close(self) -> None:
        await self.client.aclose()


LOCAL_SENDER_LOCK = LocalSenderLock()
