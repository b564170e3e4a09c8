"""
Event system for room, job and verdict activity.
"""

from __future__ import annotations

import json
import logging
from collections.abc import Awaitable, Callable
from dataclasses import dataclass, field
from datetime import UTC, datetime
from enum import Enum
from typing import Any
from uuid import UUID, uuid4

logger = logging.getLogger(__name__)


class EventType(str, Enum):
    JOB_CREATED = "job.created"
    JOB_STARTED = "job.started"
    JOB_COMPLETED = "job.completed"
    JOB_FAILED = "job.failed"
    JOB_RETRY_SCHEDULED = "job.retry_scheduled"
    JOB_CANCELLED = "job.cancelled"
    JOB_PROGRESS = "job.progress"

    MOTION_PROPOSED = "motion.proposed"
    MOTION_MODIFIED = "motion.modified"
    MOTION_ACCEPTED = "motion.accepted"
    MOTION_REJECTED = "motion.rejected"

    ROUND_STARTED = "round.started"
    ROUND_COMPLETED = "round.completed"
    ROUND_FAILED = "round.failed"

    VERDICT_GENERATED = "verdict.generated"

    ROOM_STATUS_CHANGED = "room.status_changed"
    ROOM_STALLED = "room.stalled"


@dataclass
class JudgeEvent:
    """Standardized event emitted by the core services."""

    id: UUID = field(default_factory=uuid4)
    type: EventType = EventType.JOB_CREATED
    room_id: str | None = None
    job_id: str | None = None
    message: str = ""
    data: dict[str, Any] = field(default_factory=dict)
    timestamp: datetime = field(default_factory=lambda: datetime.now(UTC))

    def to_dict(self) -> dict[str, Any]:
        return {
            "id": str(self.id),
            "type": self.type.value,
            "room_id": self.room_id,
            "job_id": self.job_id,
            "message": self.message,
            "data": self.data,
            "timestamp": self.timestamp.isoformat(),
        }


EventHandler = Callable[[JudgeEvent], Awaitable[None] | None]


class EventEmitter:
    """Emits events to registered handlers."""

    def __init__(self) -> None:
        self._handlers: list[EventHandler] = []

    def on_event(self, handler: EventHandler) -> None:
        self._handlers.append(handler)

    async def emit(self, event: JudgeEvent) -> None:
        for handler in self._handlers:
            try:
                result = handler(event)
                if hasattr(result, "__await__"):
                    await result
            except Exception:
                logger.exception("Event handler %r failed for %s", handler, event.type.value)

    async def publish(
        self,
        type_: EventType,
        message: str,
        *,
        room_id: str | None = None,
        job_id: str | None = None,
        **data: Any,
    ) -> JudgeEvent:
        event = JudgeEvent(type=type_, room_id=room_id, job_id=job_id, message=message, data=data)
        await self.emit(event)
        return event


event_bus = EventEmitter()


async def persist_event_handler(event: JudgeEvent) -> None:
    """Handler that writes events to the execution log."""
    from .db import get_session, log_event

    async with get_session() as session:
        await log_event(
            session,
            event=event.type.value,
            room_id=event.room_id,
            job_id=event.job_id,
            message=event.message,
            details=event.data,
        )


async def publish_event_handler(event: JudgeEvent) -> None:
    """Handler that publishes room events to Redis Pub/Sub."""
    if not event.room_id:
        return

    from .redis_client import get_redis_client

    redis = get_redis_client()
    await redis.publish(f"channel:room:{event.room_id}", json.dumps(event.to_dict(), default=str))


def install_default_handlers(emitter: EventEmitter | None = None) -> EventEmitter:
    """Attach the database and Redis handlers; used by workers and the CLI."""
    from .config import settings

    emitter = emitter or event_bus
    emitter.on_event(persist_event_handler)
    if settings.events_publish_enabled:
        emitter.on_event(publish_event_handler)
    return emitter
