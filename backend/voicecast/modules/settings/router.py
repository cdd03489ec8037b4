"""Admin API for broadcast limit configuration."""

from fastapi import APIRouter, Depends, HTTPException, status
from sqlalchemy.ext.asyncio import AsyncSession

from voicecast.core.database import get_session
from voicecast.modules.settings.schemas import BroadcastLimitsResponse, BroadcastLimitsUpdate
from voicecast.modules.settings.service import InvalidBroadcastLimitsError, SettingsStore
from voicecast.modules.user.dependencies import require_admin
from voicecast.modules.user.models import User

router = APIRouter(prefix="/admin/broadcast-limits", tags=["admin"])


def get_settings_store(session: AsyncSession = Depends(get_session)) -> SettingsStore:
    return SettingsStore(session)


@router.get("", response_model=BroadcastLimitsResponse)
async def get_broadcast_limits(
    admin: User = Depends(require_admin),
    store: SettingsStore = Depends(get_settings_store),
) -> BroadcastLimitsResponse:
    limits = await store.get_broadcast_limits()
    return BroadcastLimitsResponse(**limits.to_dict())


@router.put("", response_model=BroadcastLimitsResponse)
async def update_broadcast_limits(
    payload: BroadcastLimitsUpdate,
    admin: User = Depends(require_admin),
    store: SettingsStore = Depends(get_settings_store),
) -> BroadcastLimitsResponse:
    try:
        limits = await store.update_broadcast_limits(
            payload.model_dump(exclude_none=True),
            updated_by=admin.id,
        )
    except InvalidBroadcastLimitsError as e:
        raise HTTPException(
            status_code=status.HTTP_422_UNPROCESSABLE_ENTITY,
            detail=str(e),
        )
    return BroadcastLimitsResponse(**limits.to_dict())
