"""Broadcast fan-out orchestration.

``create_and_dispatch`` runs: validate -> eligibility -> limit check ->
balance check -> one transaction (broadcast row, wallet debit, recipient
selection, recipient rows, conversation/message derivation, usage) ->
commit -> notifications and events. Everything after the commit is best
effort and can never undo it.

Expected failures come back as ``BroadcastRejection``; public methods do
not raise for them.
"""

import logging
import time
import uuid
from dataclasses import dataclass, field
from datetime import datetime
from typing import Any, Awaitable, Callable, Optional, Sequence, Union
from zoneinfo import ZoneInfo

import numpy as np
from sqlalchemy.ext.asyncio import AsyncSession

from voicecast.core.clock import Clock, utcnow
from voicecast.core.config import settings
from voicecast.core.logging import log_error, log_info
from voicecast.core.metrics import (
    BROADCAST_FANOUT_DURATION_SECONDS,
    BROADCAST_NOTIFICATIONS_TOTAL,
    BROADCAST_RECIPIENTS_SELECTED,
    BROADCAST_REJECTIONS_TOTAL,
    BROADCASTS_CREATED_TOTAL,
)
from voicecast.core.tracing import create_span, record_exception
from voicecast.modules.broadcast.errors import (
    BroadcastError,
    ConflictError,
    EligibilityError,
    InternalError,
    LimitError,
    NotFoundError,
    PaymentError,
    ValidationError,
)
from voicecast.modules.broadcast.events import (
    BroadcastCreatedEvent,
    BroadcastRepliedEvent,
    EventPublisher,
    LoggingEventPublisher,
)
from voicecast.modules.broadcast.limits import LimitPolicy
from voicecast.modules.broadcast.locks import LOCAL_SENDER_LOCK, SenderLock
from voicecast.modules.broadcast.models import Broadcast, RecipientStatus
from voicecast.modules.broadcast.repository import BroadcastRepository
from voicecast.modules.broadcast.schemas import (
    AudioAttachment,
    BroadcastRejection,
    CreateBroadcastResult,
    LimitStatus,
    RecipientFilters,
    ReplyResult,
)
from voicecast.modules.broadcast.selection import RecipientSelector, SelectionStrategy
from voicecast.modules.broadcast.usage import UsageLedger
from voicecast.modules.conversation.models import MessageType
from voicecast.modules.conversation.repository import ConversationRepository
from voicecast.modules.notification.dispatcher import NotificationDispatcher
from voicecast.modules.settings.service import SettingsStore
from voicecast.modules.user.models import User
from voicecast.modules.user.repository import UserRepository
from voicecast.modules.wallet.service import InsufficientBalanceError, WalletService

logger = logging.getLogger(__name__)

PostCommitHook = Callable[[], Awaitable[Any]]

ALREADY_REPLIED_MESSAGE = "You have already replied to this broadcast"


def validate_audio(audio: Optional[AudioAttachment]) -> AudioAttachment:
    """Re-check what the upload layer should already have enforced."""
    if audio is None or not audio.ref or not audio.ref.strip():
        raise ValidationError("Audio file is required", detail={"field": "audio"})

    if audio.content_type not in settings.BROADCAST_ALLOWED_AUDIO_TYPES:
        raise ValidationError(
            "Unsupported audio format",
            detail={
                "field": "audio",
                "contentType": audio.content_type,
                "allowed": list(settings.BROADCAST_ALLOWED_AUDIO_TYPES),
            },
        )

    if audio.size is not None and audio.size > settings.BROADCAST_AUDIO_MAX_BYTES:
        raise ValidationError(
            "Audio file is too large",
            detail={"field": "audio", "size": audio.size, "maxBytes": settings.BROADCAST_AUDIO_MAX_BYTES},
        )
    return audio


def normalize_content(content: Optional[str]) -> str:
    text = (content or "").strip()
    if not text:
        return settings.BROADCAST_DEFAULT_CONTENT
    if len(text) > settings.BROADCAST_CONTENT_MAX_LENGTH:
        raise ValidationError(
            f"Content cannot exceed {settings.BROADCAST_CONTENT_MAX_LENGTH} characters",
            detail={"field": "content", "maxLength": settings.BROADCAST_CONTENT_MAX_LENGTH},
        )
    return text


def normalize_count(requested: Optional[int], filters: Optional[RecipientFilters] = None) -> int:
    """Default non-positive counts and clamp the rest. Never rejects."""
    if requested is None or requested <= 0:
        return settings.BROADCAST_DEFAULT_RECIPIENTS
    ceiling = (
        settings.BROADCAST_BULK_MAX_RECIPIENTS
        if filters is not None and filters.is_bulk
        else settings.BROADCAST_MAX_RECIPIENTS
    )
    return min(requested, ceiling)


@dataclass
class FanoutOutcome:
    broadcast: Broadcast
    added_recipients: list[User] = field(default_factory=list)


class BroadcastFanoutOrchestrator:
    """Creates broadcasts, fans them out and handles replies.

    One instance works on one ``AsyncSession``. Collaborators default to
    the production implementations and can be swapped in tests.
    """

    def __init__(
        self,
        session: AsyncSession,
        *,
        dispatcher: Optional[NotificationDispatcher] = None,
        publisher: Optional[EventPublisher] = None,
        lock: Optional[SenderLock] = None,
        strategy: Optional[SelectionStrategy] = None,
        rng: Optional[np.random.Generator] = None,
        settings_store: Optional[SettingsStore] = None,
        clock: Clock = utcnow,
        tz: Optional[ZoneInfo] = None,
    ):
        self.session = session
        self.clock = clock
        self.dispatcher = dispatcher or NotificationDispatcher()
        self.publisher = publisher or LoggingEventPublisher()
        self.lock = lock or LOCAL_SENDER_LOCK

        self.users = UserRepository(session)
        self.broadcasts = BroadcastRepository(session)
        self.conversations = ConversationRepository(session)
        self.wallet = WalletService(session)
        self.ledger = UsageLedger(session, clock=clock, tz=tz)
        self.limit_policy = LimitPolicy(
            session,
            ledger=self.ledger,
            settings_store=settings_store,
            clock=clock,
            tz=tz,
        )
        self.selector = RecipientSelector(
            session,
            strategy=strategy or SelectionStrategy(settings.BROADCAST_SELECTION_STRATEGY),
            rng=rng,
            clock=clock,
        )

    # ------------------------------------------------------------------
    # Create
    # ------------------------------------------------------------------

    async def create_and_dispatch(
        self,
        sender_id: uuid.UUID,
        audio: Optional[AudioAttachment],
        content: Optional[str] = None,
        requested_count: Optional[int] = None,
        filters: Optional[RecipientFilters] = None,
    ) -> Union[CreateBroadcastResult, BroadcastRejection]:
        with create_span("broadcast.create_and_dispatch", {"sender_id": str(sender_id)}):
            try:
                audio = validate_audio(audio)
                caption = normalize_content(content)
                count = normalize_count(requested_count, filters)

                async with self.lock.hold(sender_id):
                    sender = await self._load_eligible_sender(sender_id)
                    await self._check_limits(sender)
                    await self._check_balance(sender)
                    outcome = await self._persist_new_broadcast(sender, audio, caption, count, filters)
            except BroadcastError as e:
                return self._reject(e, sender_id)
            except Exception as e:
                await self.session.rollback()
                record_exception(e)
                log_error(logger, f"Unexpected error creating broadcast for {sender_id}", exception=e)
                return self._reject(InternalError("Failed to create broadcast"), sender_id)

            broadcast = outcome.broadcast
            BROADCASTS_CREATED_TOTAL.inc()
            BROADCAST_RECIPIENTS_SELECTED.observe(len(outcome.added_recipients))
            log_info(
                logger,
                f"Broadcast {broadcast.id} sent to {len(outcome.added_recipients)} recipients",
                broadcast_id=str(broadcast.id),
                sender_id=str(sender_id),
                recipient_count=len(outcome.added_recipients),
            )

            await self._run_post_commit([
                lambda: self._notify_recipients(broadcast, outcome.added_recipients),
                lambda: self.publisher.publish(BroadcastCreatedEvent(
                    broadcast_id=broadcast.id,
                    sender_id=sender_id,
                    recipient_count=len(outcome.added_recipients),
                    content=broadcast.content,
                )),
            ])

            return CreateBroadcastResult(
                broadcast_id=broadcast.id,
                recipient_count=len(outcome.added_recipients),
            )

    async def _load_eligible_sender(self, sender_id: uuid.UUID) -> User:
        sender = await self.users.get_by_id(sender_id)
        if sender is None:
            raise EligibilityError("Sender not found", detail={"senderId": str(sender_id)})
        if not sender.is_active:
            raise EligibilityError(
                "Sender is not allowed to broadcast",
                detail={"senderId": str(sender_id), "status": sender.status},
            )
        return sender

    async def _check_limits(self, sender: User) -> None:
        decision = await self.limit_policy.check(sender)
        if not decision.allowed:
            raise LimitError(
                _limit_message(decision.reason_code),
                detail=decision.limit_info.model_dump(mode="json", exclude_none=True),
                error_code=decision.reason_code,
            )

    async def _check_balance(self, sender: User) -> None:
        balance = await self.wallet.get_balance(sender.id)
        if balance < settings.BROADCAST_COST:
            raise PaymentError(balance_needed=settings.BROADCAST_COST, current_balance=balance)

    async def _persist_new_broadcast(
        self,
        sender: User,
        audio: AudioAttachment,
        caption: str,
        count: int,
        filters: Optional[RecipientFilters],
    ) -> FanoutOutcome:
        """The transactional phase. Commits on success, rolls back on any error."""
        started = time.perf_counter()
        sender_id = sender.id
        now = self.clock()
        try:
            with create_span("broadcast.persist", {"requested_count": count}):
                broadcast = await self.broadcasts.create(
                    sender_id=sender.id,
                    audio_ref=audio.ref,
                    audio_content_type=audio.content_type,
                    content=caption,
                    now=now,
                )
                await self.wallet.withdraw(sender.id, settings.BROADCAST_COST, f"Broadcast {broadcast.id}")

                recipients = await self.selector.select(sender, count, filters)
                added = await self._fan_out(broadcast, recipients, now)
                await self.ledger.record_broadcast(sender.id, now)

            await self.session.commit()
        except InsufficientBalanceError as e:
            # Balance changed between the pre-check and the locked debit
            await self.session.rollback()
            raise PaymentError(balance_needed=e.amount, current_balance=e.balance) from e
        except BroadcastError:
            await self.session.rollback()
            raise
        except Exception as e:
            await self.session.rollback()
            record_exception(e)
            log_error(
                logger,
                f"Broadcast fan-out rolled back for sender {sender_id}",
                exception=e,
                sender_id=str(sender_id),
            )
            raise InternalError("Failed to create broadcast") from e
        finally:
            BROADCAST_FANOUT_DURATION_SECONDS.observe(time.perf_counter() - started)

        return FanoutOutcome(broadcast=broadcast, added_recipients=added)

    async def _fan_out(self, broadcast: Broadcast, recipients: Sequence[User], now: datetime) -> list[User]:
        """Recipient rows plus conversation/message for newly added users only.

        The recipient side of the conversation is hidden until they reply,
        whether the conversation is new or already existed.
        """
        by_id = {user.id: user for user in recipients}
        added_ids = await self.broadcasts.add_recipients(broadcast.id, list(by_id), now)

        for recipient_id in added_ids:
            conversation, _ = await self.conversations.find_or_create(
                broadcast.sender_id,
                recipient_id,
                linked_broadcast_id=broadcast.id,
                now=now,
            )
            conversation.show_to(broadcast.sender_id)
            conversation.hide_from(recipient_id)
            await self.conversations.add_message(
                conversation,
                sender_id=broadcast.sender_id,
                message_type=MessageType.BROADCAST.value,
                broadcast_id=broadcast.id,
                voice_ref=broadcast.audio_ref,
                body=broadcast.content,
                now=now,
            )
        return [by_id[user_id] for user_id in added_ids]

    # ------------------------------------------------------------------
    # Replayable fan-out (background task)
    # ------------------------------------------------------------------

    async def persist_fanout(
        self,
        broadcast_id: uuid.UUID,
        recipient_ids: Sequence[uuid.UUID],
    ) -> list[uuid.UUID]:
        """Materialize recipients for an existing broadcast.

        Safe to call repeatedly with the same arguments: users who are
        already recipients are skipped, and only new ones are notified.

        Raises:
            NotFoundError: If the broadcast does not exist
            InternalError: If persistence fails (rolled back)
        """
        broadcast = await self.broadcasts.get_by_id(broadcast_id)
        if broadcast is None:
            raise NotFoundError("Broadcast not found", detail={"broadcastId": str(broadcast_id)})

        now = self.clock()
        try:
            recipients = await self.users.get_many(list(recipient_ids))
            recipients = [user for user in recipients if user.id != broadcast.sender_id]
            added = await self._fan_out(broadcast, recipients, now)
            await self.session.commit()
        except Exception as e:
            await self.session.rollback()
            log_error(logger, f"Replayed fan-out failed for broadcast {broadcast_id}", exception=e)
            raise InternalError("Failed to persist broadcast recipients") from e

        await self._run_post_commit([lambda: self._notify_recipients(broadcast, added)])
        return [user.id for user in added]

    # ------------------------------------------------------------------
    # Reply
    # ------------------------------------------------------------------

    async def reply_to_broadcast(
        self,
        user_id: uuid.UUID,
        broadcast_id: uuid.UUID,
        voice_ref: Optional[str] = None,
        message_type: str = MessageType.VOICE.value,
        body: Optional[str] = None,
    ) -> Union[ReplyResult, BroadcastRejection]:
        with create_span("broadcast.reply", {"broadcast_id": str(broadcast_id)}):
            try:
                if message_type == MessageType.VOICE.value and not voice_ref:
                    raise ValidationError("Voice reply requires an audio reference", detail={"field": "voice_ref"})
                if message_type == MessageType.TEXT.value and not (body or "").strip():
                    raise ValidationError("Text reply requires a body", detail={"field": "body"})
                if message_type not in (MessageType.VOICE.value, MessageType.TEXT.value):
                    raise ValidationError("Unsupported reply type", detail={"messageType": message_type})

                broadcast, conversation_id, message_id = await self._persist_reply(
                    user_id, broadcast_id, voice_ref, message_type, body
                )
            except BroadcastError as e:
                return self._reject(e, user_id)
            except Exception as e:
                await self.session.rollback()
                record_exception(e)
                log_error(logger, f"Unexpected error replying to broadcast {broadcast_id}", exception=e)
                return self._reject(InternalError("Failed to reply to broadcast"), user_id)

            log_info(
                logger,
                f"User {user_id} replied to broadcast {broadcast_id}",
                broadcast_id=str(broadcast_id),
                conversation_id=str(conversation_id),
            )
            await self._run_post_commit([
                lambda: self._notify_reply(broadcast, user_id),
                lambda: self.publisher.publish(BroadcastRepliedEvent(
                    broadcast_id=broadcast.id,
                    sender_id=broadcast.sender_id,
                    replier_id=user_id,
                    conversation_id=conversation_id,
                    message_id=message_id,
                )),
            ])
            return ReplyResult(conversation_id=conversation_id, message_id=message_id)

    async def _persist_reply(
        self,
        user_id: uuid.UUID,
        broadcast_id: uuid.UUID,
        voice_ref: Optional[str],
        message_type: str,
        body: Optional[str],
    ) -> tuple[Broadcast, uuid.UUID, uuid.UUID]:
        broadcast = await self.broadcasts.get_by_id(broadcast_id)
        if broadcast is None:
            raise NotFoundError("Broadcast not found", detail={"broadcastId": str(broadcast_id)})

        recipient = await self.broadcasts.get_recipient(broadcast_id, user_id)
        if recipient is None:
            raise EligibilityError("You are not a recipient of this broadcast")
        if recipient.status == RecipientStatus.REPLIED.value:
            raise ConflictError(ALREADY_REPLIED_MESSAGE)

        now = self.clock()
        claimed = await self.broadcasts.update_recipient_status(
            broadcast_id, user_id, RecipientStatus.REPLIED, now
        )
        if not claimed:
            # Another reply to the same broadcast got there first
            raise ConflictError(ALREADY_REPLIED_MESSAGE)

        try:
            conversation, _ = await self.conversations.find_or_create(
                user_id,
                broadcast.sender_id,
                linked_broadcast_id=broadcast.id,
                now=now,
            )
            conversation.show_to(user_id)
            conversation.show_to(broadcast.sender_id)
            message = await self.conversations.add_message(
                conversation,
                sender_id=user_id,
                message_type=message_type,
                broadcast_id=broadcast.id,
                voice_ref=voice_ref,
                body=body,
                now=now,
            )
            await self.session.commit()
        except Exception as e:
            await self.session.rollback()
            log_error(logger, f"Reply to broadcast {broadcast_id} rolled back", exception=e)
            raise InternalError("Failed to reply to broadcast") from e

        return broadcast, conversation.id, message.id

    # ------------------------------------------------------------------
    # Status and read tracking
    # ------------------------------------------------------------------

    async def get_limit_status(self, user_id: uuid.UUID) -> Union[LimitStatus, BroadcastRejection]:
        user = await self.users.get_by_id(user_id)
        if user is None:
            return self._reject(NotFoundError("User not found"), user_id)
        return await self.limit_policy.get_status(user)

    async def mark_read(self, broadcast_id: uuid.UUID, user_id: uuid.UUID) -> bool:
        changed = await self.broadcasts.mark_read(broadcast_id, user_id, self.clock())
        if changed:
            await self.session.commit()
        return changed

    # ------------------------------------------------------------------
    # Post-commit helpers
    # ------------------------------------------------------------------

    async def _notify_recipients(self, broadcast: Broadcast, recipients: Sequence[User]) -> None:
        for recipient in recipients:
            try:
                await self.dispatcher.send_broadcast_notification(recipient, broadcast)
            except Exception as e:
                BROADCAST_NOTIFICATIONS_TOTAL.labels(kind="broadcast", status="error").inc()
                log_error(
                    logger,
                    f"Broadcast notification to {recipient.id} failed",
                    exception=e,
                    broadcast_id=str(broadcast.id),
                    recipient_id=str(recipient.id),
                )

    async def _notify_reply(self, broadcast: Broadcast, replier_id: uuid.UUID) -> None:
        sender = await self.users.get_by_id(broadcast.sender_id)
        replier = await self.users.get_by_id(replier_id)
        if sender is None or replier is None:
            return
        await self.dispatcher.send_reply_notification(sender, replier, broadcast)

    async def _run_post_commit(self, hooks: Sequence[PostCommitHook]) -> None:
        for hook in hooks:
            try:
                await hook()
            except Exception as e:
                log_error(logger, "Post-commit hook failed", exception=e)

    def _reject(self, error: BroadcastError, actor_id: uuid.UUID) -> BroadcastRejection:
        BROADCAST_REJECTIONS_TOTAL.labels(reason=error.error_code).inc()
        log_info(
            logger,
            f"Broadcast request from {actor_id} rejected: {error.error_code}",
            error_code=error.error_code,
            actor_id=str(actor_id),
        )
        return BroadcastRejection(
            error_code=error.error_code,
            http_status_hint=error.http_status,
            message=error.message,
            detail=error.detail,
        )


def _limit_message(reason_code: Optional[str]) -> str:
    return {
        "DAILY_LIMIT_EXCEEDED": "Daily broadcast limit reached",
        "HOURLY_LIMIT_EXCEEDED": "Hourly broadcast limit reached",
        "COOLDOWN_ACTIVE": "Please wait before sending another broadcast",
    }.get(reason_code or "", "Broadcast limit reached")
