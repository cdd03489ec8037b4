"""Domain events published after a fan-out or reply commits.

Publishers are passed to the orchestrator explicitly. The default
``LoggingEventPublisher`` logs each event and forwards it to the handlers
registered on that publisher instance.
"""

import inspect
import logging
import uuid
from collections import defaultdict
from dataclasses import asdict, dataclass, field
from datetime import datetime
from typing import Any, Awaitable, Callable, Protocol, Union

from voicecast.core.clock import utcnow
from voicecast.core.logging import log_error, log_info

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class BroadcastEvent:
    event_id: uuid.UUID = field(default_factory=uuid.uuid4, kw_only=True)
    occurred_at: datetime = field(default_factory=utcnow, kw_only=True)

    @property
    def event_name(self) -> str:
        return type(self).__name__

    def to_dict(self) -> dict[str, Any]:
        data = asdict(self)
        return {
            key: str(value) if isinstance(value, uuid.UUID) else
            value.isoformat() if isinstance(value, datetime) else value
            for key, value in data.items()
        }


@dataclass(frozen=True)
class BroadcastCreatedEvent(BroadcastEvent):
    broadcast_id: uuid.UUID
    sender_id: uuid.UUID
    recipient_count: int
    content: str


@dataclass(frozen=True)
class BroadcastRepliedEvent(BroadcastEvent):
    broadcast_id: uuid.UUID
    sender_id: uuid.UUID
    replier_id: uuid.UUID
    conversation_id: uuid.UUID
    message_id: uuid.UUID


EventHandler = Callable[[BroadcastEvent], Union[None, Awaitable[None]]]


class EventPublisher(Protocol):
    async def publish(self, event: BroadcastEvent) -> None:
        ...


class LoggingEventPublisher:
    """Logs events and calls handlers registered for their type."""

    def __init__(self) -> None:
        self._handlers: dict[type, list[EventHandler]] = defaultdict(list)

    def subscribe(self, event_type: type, handler: EventHandler) -> None:
        self._handlers[event_type].append(handler)

    async def publish(self, event: BroadcastEvent) -> None:
        log_info(logger, f"Event {event.event_name}", event=event.to_dict())

        for event_type, handlers in self._handlers.items():
            if not isinstance(event, event_type):
                continue
            for handler in handlers:
                try:
                    result = handler(event)
                    if inspect.isawaitable(result):
                        await result
                except Exception as e:
                    log_error(
                        logger,
                        f"Handler {getattr(handler, '__name__', handler)} failed for {event.event_name}",
                        exception=e,
                    )
