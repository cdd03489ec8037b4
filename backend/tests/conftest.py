"""Shared fixtures: per-test in-memory database, user factories and fakes."""

import os

os.environ.setdefault("DATABASE_URL", "sqlite+aiosqlite:///:memory:")
os.environ.setdefault("REDIS_URL", "redis://localhost:6379/0")

import itertools
import uuid
from datetime import datetime, timedelta, timezone
from typing import Optional

import pytest
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker, create_async_engine
from sqlalchemy.pool import StaticPool

from voicecast.core.database import Base, _import_models
from voicecast.modules.user.models import User, UserRole, UserStatus
from voicecast.modules.wallet.service import WalletService

# 12:00 in Asia/Seoul
DEFAULT_NOW = datetime(2026, 10, 19, 3, 0, tzinfo=timezone.utc)

_nicknames = itertools.count(1)


class FixedClock:
    """Controllable clock passed wherever a ``Clock`` is accepted."""

    def __init__(self, now: datetime = DEFAULT_NOW):
        self.now = now

    def __call__(self) -> datetime:
        return self.now

    def advance(self, **kwargs) -> None:
        self.now = self.now + timedelta(**kwargs)


class RecordingDispatcher:
    """Notification dispatcher that records calls and can fail on demand."""

    def __init__(self, fail_for: Optional[set] = None):
        self.fail_for = fail_for or set()
        self.broadcast_calls: list[tuple[uuid.UUID, uuid.UUID]] = []
        self.reply_calls: list[tuple[uuid.UUID, uuid.UUID, uuid.UUID]] = []

    async def send_broadcast_notification(self, recipient, broadcast):
        self.broadcast_calls.append((recipient.id, broadcast.id))
        if recipient.id in self.fail_for:
            raise RuntimeError(f"push transport down for {recipient.id}")

    async def send_reply_notification(self, sender, replier, broadcast):
        self.reply_calls.append((sender.id, replier.id, broadcast.id))


class RecordingPublisher:
    def __init__(self):
        self.events = []

    async def publish(self, event) -> None:
        self.events.append(event)


@pytest.fixture
async def session_factory():
    _import_models()
    engine = create_async_engine(
        "sqlite+aiosqlite:///:memory:",
        connect_args={"check_same_thread": False},
        poolclass=StaticPool,
    )
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)

    yield async_sessionmaker(engine, class_=AsyncSession, expire_on_commit=False, autoflush=False)

    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.drop_all)
    await engine.dispose()


@pytest.fixture
async def session(session_factory):
    async with session_factory() as session:
        yield session


@pytest.fixture
def clock() -> FixedClock:
    return FixedClock()


@pytest.fixture
def dispatcher() -> RecordingDispatcher:
    return RecordingDispatcher()


@pytest.fixture
def publisher() -> RecordingPublisher:
    return RecordingPublisher()


@pytest.fixture
def make_user(session):
    """Factory creating committed users. Defaults to an eligible recipient."""

    async def _make_user(
        status: str = UserStatus.ACTIVE.value,
        verified: bool = True,
        role: str = UserRole.MEMBER.value,
        **attrs,
    ) -> User:
        n = next(_nicknames)
        attrs.setdefault("nickname", f"user{n}")
        attrs.setdefault("push_enabled", True)
        attrs.setdefault("push_token", f"ExponentPushToken[{n}]")
        user = User(status=status, verified=verified, role=role, **attrs)
        session.add(user)
        await session.commit()
        return user

    return _make_user


@pytest.fixture
def fund(session):
    async def _fund(user: User, amount: int = 1000) -> None:
        await WalletService(session).deposit(user.id, amount, "test top-up")
        await session.commit()

    return _fund
