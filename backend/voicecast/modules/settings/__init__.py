"""Runtime-editable broadcast limit configuration."""

from voicecast.modules.settings.models import SystemSetting
from voicecast.modules.settings.service import (
    BROADCAST_LIMITS_KEY,
    BroadcastLimits,
    InvalidBroadcastLimitsError,
    SettingsStore,
    validate_broadcast_limits,
)

__all__ = [
    "SystemSetting",
    "BROADCAST_LIMITS_KEY",
    "BroadcastLimits",
    "InvalidBroadcastLimitsError",
    "SettingsStore",
    "validate_broadcast_limits",
]
