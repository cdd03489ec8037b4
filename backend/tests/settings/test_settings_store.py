"""Tests for the stored broadcast limit configuration."""

import pytest

from voicecast.core.config import settings
from voicecast.modules.settings.service import (
    BroadcastLimits,
    InvalidBroadcastLimitsError,
    SettingsStore,
    validate_broadcast_limits,
)


class TestSettingsStore:
    async def test_defaults_when_nothing_stored(self, session) -> None:
        limits = await SettingsStore(session).get_broadcast_limits()

        assert limits == BroadcastLimits.defaults()
        assert limits.daily_limit == settings.BROADCAST_DAILY_LIMIT
        assert "admin" in limits.bypass_roles

    async def test_partial_update_merges_over_current(self, session, make_user) -> None:
        admin = await make_user(role="admin")
        store = SettingsStore(session)

        await store.update_broadcast_limits({"daily_limit": 40}, updated_by=admin.id)
        updated = await store.update_broadcast_limits({"cooldown_minutes": 0, "bypass_roles": []})

        assert updated.daily_limit == 40
        assert updated.cooldown_minutes == 0
        assert updated.bypass_roles == frozenset()
        assert await store.get_broadcast_limits() == updated

    async def test_invalid_update_leaves_stored_values(self, session) -> None:
        store = SettingsStore(session)
        await store.update_broadcast_limits({"daily_limit": 10})

        with pytest.raises(InvalidBroadcastLimitsError):
            await store.update_broadcast_limits({"hourly_limit": 11})

        assert (await store.get_broadcast_limits()).hourly_limit == settings.BROADCAST_HOURLY_LIMIT


class TestValidation:
    @pytest.mark.parametrize(
        "overrides",
        [
            {"daily_limit": 0},
            {"daily_limit": True},
            {"hourly_limit": -1},
            {"cooldown_minutes": -5},
            {"cooldown_minutes": "10"},
            {"bypass_roles": "admin"},
        ],
    )
    def test_rejects_bad_values(self, overrides) -> None:
        values = {**BroadcastLimits.defaults().to_dict(), **overrides}

        with pytest.raises(InvalidBroadcastLimitsError):
            validate_broadcast_limits(values)

    def test_accepts_zero_cooldown(self) -> None:
        validate_broadcast_limits({**BroadcastLimits.defaults().to_dict(), "cooldown_minutes": 0})
