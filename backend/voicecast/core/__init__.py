"""Core module for configuration and utilities."""

from voicecast.core.config import settings
from voicecast.core.database import Base, async_session_maker, get_session

__all__ = [
    "settings",
    "Base",
    "async_session_maker",
    "get_session",
]
