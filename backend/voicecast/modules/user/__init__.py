"""User identity attributes and block relationships."""

from voicecast.modules.user.models import Block, Gender, User, UserRole, UserStatus
from voicecast.modules.user.repository import UserRepository

__all__ = [
    "Block",
    "Gender",
    "User",
    "UserRole",
    "UserStatus",
    "UserRepository",
]
