"""API router for broadcasts."""

import uuid
from datetime import datetime
from functools import lru_cache
from typing import Optional

from fastapi import APIRouter, Depends, Query, status
from fastapi.responses import JSONResponse
from sqlalchemy.ext.asyncio import AsyncSession

from voicecast.core.database import get_session
from voicecast.modules.broadcast.events import LoggingEventPublisher
from voicecast.modules.broadcast.locks import RedisSenderLock, SenderLock
from voicecast.modules.broadcast.repository import BroadcastRepository
from voicecast.modules.broadcast.schemas import (
    BroadcastRejection,
    BroadcastResponse,
    BroadcastStatistics,
    CreateBroadcastRequest,
    CreateBroadcastResult,
    LimitStatus,
    ReceivedBroadcastResponse,
    ReplyRequest,
    ReplyResult,
)
from voicecast.modules.broadcast.service import BroadcastFanoutOrchestrator
from voicecast.modules.user.dependencies import get_current_user
from voicecast.modules.user.models import User

router = APIRouter(prefix="/broadcasts", tags=["broadcasts"])


@lru_cache
def get_sender_lock() -> SenderLock:
    return RedisSenderLock()


@lru_cache
def get_event_publisher() -> LoggingEventPublisher:
    return LoggingEventPublisher()


def get_orchestrator(
    session: AsyncSession = Depends(get_session),
    lock: SenderLock = Depends(get_sender_lock),
    publisher: LoggingEventPublisher = Depends(get_event_publisher),
) -> BroadcastFanoutOrchestrator:
    return BroadcastFanoutOrchestrator(session, lock=lock, publisher=publisher)


def get_repository(session: AsyncSession = Depends(get_session)) -> BroadcastRepository:
    return BroadcastRepository(session)


def rejection_response(rejection: BroadcastRejection) -> JSONResponse:
    return JSONResponse(
        status_code=rejection.http_status_hint,
        content=rejection.model_dump(mode="json"),
    )


@router.post(
    "",
    response_model=CreateBroadcastResult,
    status_code=status.HTTP_201_CREATED,
    responses={400: {"model": BroadcastRejection}, 402: {"model": BroadcastRejection},
               403: {"model": BroadcastRejection}, 429: {"model": BroadcastRejection}},
)
async def create_broadcast(
    payload: CreateBroadcastRequest,
    user: User = Depends(get_current_user),
    orchestrator: BroadcastFanoutOrchestrator = Depends(get_orchestrator),
):
    result = await orchestrator.create_and_dispatch(
        user.id,
        payload.audio,
        content=payload.content,
        requested_count=payload.recipient_count,
        filters=payload.filters,
    )
    if isinstance(result, BroadcastRejection):
        return rejection_response(result)
    return result


@router.get("/limit-status", response_model=LimitStatus)
async def get_limit_status(
    user: User = Depends(get_current_user),
    orchestrator: BroadcastFanoutOrchestrator = Depends(get_orchestrator),
):
    result = await orchestrator.get_limit_status(user.id)
    if isinstance(result, BroadcastRejection):
        return rejection_response(result)
    return result


@router.get("/sent", response_model=list[BroadcastResponse])
async def list_sent_broadcasts(
    limit: int = Query(20, ge=1, le=100),
    user: User = Depends(get_current_user),
    repository: BroadcastRepository = Depends(get_repository),
) -> list[BroadcastResponse]:
    broadcasts = await repository.list_sent(user.id, limit=limit)
    return [BroadcastResponse.model_validate(b) for b in broadcasts]


@router.get("/received", response_model=list[ReceivedBroadcastResponse])
async def list_received_broadcasts(
    limit: int = Query(20, ge=1, le=100),
    user: User = Depends(get_current_user),
    repository: BroadcastRepository = Depends(get_repository),
) -> list[ReceivedBroadcastResponse]:
    rows = await repository.list_received(user.id, limit=limit)
    return [
        ReceivedBroadcastResponse(
            **BroadcastResponse.model_validate(broadcast).model_dump(),
            status=recipient_status,
        )
        for broadcast, recipient_status in rows
    ]


@router.get("/statistics", response_model=BroadcastStatistics)
async def get_statistics(
    start: Optional[datetime] = Query(None),
    end: Optional[datetime] = Query(None),
    user: User = Depends(get_current_user),
    repository: BroadcastRepository = Depends(get_repository),
) -> BroadcastStatistics:
    # Admins see platform-wide numbers, everyone else their own
    sender_id = None if user.is_admin else user.id
    return await repository.statistics(sender_id=sender_id, start=start, end=end)


@router.post(
    "/{broadcast_id}/reply",
    response_model=ReplyResult,
    status_code=status.HTTP_201_CREATED,
    responses={403: {"model": BroadcastRejection}, 404: {"model": BroadcastRejection},
               409: {"model": BroadcastRejection}},
)
async def reply_to_broadcast(
    broadcast_id: uuid.UUID,
    payload: ReplyRequest,
    user: User = Depends(get_current_user),
    orchestrator: BroadcastFanoutOrchestrator = Depends(get_orchestrator),
):
    result = await orchestrator.reply_to_broadcast(
        user.id,
        broadcast_id,
        voice_ref=payload.voice_ref,
        message_type=payload.message_type,
        body=payload.body,
    )
    if isinstance(result, BroadcastRejection):
        return rejection_response(result)
    return result


@router.post("/{broadcast_id}/read")
async def mark_broadcast_read(
    broadcast_id: uuid.UUID,
    user: User = Depends(get_current_user),
    orchestrator: BroadcastFanoutOrchestrator = Depends(get_orchestrator),
) -> dict:
    changed = await orchestrator.mark_read(broadcast_id, user.id)
    return {"broadcast_id": str(broadcast_id), "updated": changed}
