"""Database connection and session management."""

from collections.abc import AsyncGenerator

from sqlalchemy import Table
from sqlalchemy.dialects.postgresql import insert as pg_insert
from sqlalchemy.dialects.sqlite import insert as sqlite_insert
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker, create_async_engine
from sqlalchemy.orm import DeclarativeBase
from sqlalchemy.pool import StaticPool

from voicecast.core.config import settings


class Base(DeclarativeBase):
    """Declarative base for all ORM models."""
    pass


if settings.DATABASE_URL.startswith("sqlite"):
    # SQLite configuration for development and tests
    engine = create_async_engine(
        settings.DATABASE_URL,
        connect_args={"check_same_thread": False},
        poolclass=StaticPool,
        echo=settings.DEBUG,
    )
else:
    engine = create_async_engine(
        settings.DATABASE_URL,
        echo=settings.DEBUG,
        pool_size=10,
        max_overflow=20,
        pool_pre_ping=True,
    )

async_session_maker = async_sessionmaker(
    engine,
    class_=AsyncSession,
    expire_on_commit=False,
    autoflush=False,
)


async def get_session() -> AsyncGenerator[AsyncSession, None]:
    """Dependency for getting database sessions."""
    async with async_session_maker() as session:
        try:
            yield session
        finally:
            await session.close()


_CONFLICT_INSERTS = {
    "postgresql": pg_insert,
    "sqlite": sqlite_insert,
}


def dialect_insert(session: AsyncSession, table: Table):
    """INSERT construct with ``on_conflict_do_*`` for the session's dialect.

    Raises:
        NotImplementedError: If the dialect has no ON CONFLICT support here
    """
    dialect = session.get_bind().dialect.name
    builder = _CONFLICT_INSERTS.get(dialect)
    if builder is None:
        raise NotImplementedError(f"ON CONFLICT inserts are not supported on {dialect}")
    return builder(table)


def _import_models() -> None:
    # Registers every mapped class on Base.metadata
    from voicecast.modules.user import models as _user  # noqa: F401
    from voicecast.modules.wallet import models as _wallet  # noqa: F401
    from voicecast.modules.settings import models as _settings  # noqa: F401
    from voicecast.modules.conversation import models as _conversation  # noqa: F401
    from voicecast.modules.broadcast import models as _broadcast  # noqa: F401

