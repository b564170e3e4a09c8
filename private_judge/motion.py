"""
Motion negotiation: propose, modify, accept and reject with an append-only history.

``proposer_id`` never changes. Turn-taking is derived from the history instead: the
user who wrote the latest entry cannot respond next. Right after a proposal this means
only the other member may respond; after a modification the original proposer gets to
accept, reject or counter-modify the new version.
"""

from __future__ import annotations

from collections.abc import Sequence
from dataclasses import dataclass
from datetime import datetime, timedelta
from enum import Enum
from typing import Any
from uuid import uuid4

from .config import settings
from .errors import Forbidden, InvalidTransition, NotFound, ValidationError, returns_result
from .events import EventEmitter, EventType, event_bus
from .jobs import utcnow
from .models import Motion, Room
from .store import Store

TITLE_LENGTH = (10, 300)
DESCRIPTION_LENGTH = (50, 2000)
REASON_LENGTH = (10, 500)


class MotionStatus(str, Enum):
    PROPOSED = "proposed"
    UNDER_NEGOTIATION = "under_negotiation"
    AGREED = "agreed"
    REJECTED = "rejected"


class HistoryAction(str, Enum):
    PROPOSED = "proposed"
    MODIFIED = "modified"
    ACCEPTED = "accepted"
    REJECTED = "rejected"


class ResponseAction(str, Enum):
    ACCEPT = "accept"
    MODIFY = "modify"
    REJECT = "reject"


FINAL_STATUSES = frozenset({MotionStatus.AGREED.value, MotionStatus.REJECTED.value})

_RESPONSE_OUTCOME: dict[ResponseAction, tuple[HistoryAction, MotionStatus]] = {
    ResponseAction.ACCEPT: (HistoryAction.ACCEPTED, MotionStatus.AGREED),
    ResponseAction.MODIFY: (HistoryAction.MODIFIED, MotionStatus.UNDER_NEGOTIATION),
    ResponseAction.REJECT: (HistoryAction.REJECTED, MotionStatus.REJECTED),
}


# =============================================================================
# Validation
# =============================================================================


def _check_length(field_name: str, value: str | None, bounds: tuple[int, int]) -> str:
    low, high = bounds
    text = (value or "").strip()
    if not low <= len(text) <= high:
        raise ValidationError(
            f"{field_name} must be between {low} and {high} characters",
            details={"field": field_name, "length": len(text)},
        )
    return text


def validate_title(title: str | None) -> str:
    return _check_length("title", title, TITLE_LENGTH)


def validate_description(description: str | None) -> str:
    return _check_length("description", description, DESCRIPTION_LENGTH)


def validate_reason(reason: str | None) -> str:
    return _check_length("reason", reason, REASON_LENGTH)


# =============================================================================
# Pure state machine
# =============================================================================


def _entry(
    action: HistoryAction,
    user_id: str,
    now: datetime,
    *,
    changes: dict[str, Any] | None = None,
    reason: str | None = None,
) -> dict[str, Any]:
    entry: dict[str, Any] = {
        "action": action.value,
        "user_id": user_id,
        "timestamp": now.isoformat(),
    }
    if changes:
        entry["changes"] = changes
    if reason:
        entry["reason"] = reason
    return entry


def new_motion(
    room_id: str,
    proposer_id: str,
    title: str,
    description: str,
    *,
    now: datetime | None = None,
) -> Motion:
    now = now or utcnow()
    return Motion(
        id=str(uuid4()),
        room_id=room_id,
        title=validate_title(title),
        description=validate_description(description),
        proposer_id=proposer_id,
        status=MotionStatus.PROPOSED.value,
        negotiation_history=[_entry(HistoryAction.PROPOSED, proposer_id, now)],
        agreed_at=None,
        created_at=now,
        updated_at=now,
    )


def is_final(motion: Motion) -> bool:
    return motion.status in FINAL_STATUSES


def latest_actor(motion: Motion) -> str:
    history = motion.negotiation_history or []
    return history[-1]["user_id"] if history else motion.proposer_id


def modification_count(motion: Motion) -> int:
    return sum(
        1 for e in motion.negotiation_history or [] if e["action"] == HistoryAction.MODIFIED.value
    )


def apply_response(
    motion: Motion,
    user_id: str,
    action: ResponseAction | str,
    *,
    modifications: dict[str, Any] | None = None,
    reason: str | None = None,
    now: datetime | None = None,
    max_modifications: int | None = None,
) -> Motion:
    """Apply one response to ``motion`` in place and append its history entry."""
    if is_final(motion):
        raise Forbidden(
            f"Motion is already {motion.status}",
            details={"motion_id": motion.id, "status": motion.status},
        )
    if user_id == latest_actor(motion):
        raise Forbidden(
            "You cannot respond to your own proposal or modification",
            details={"motion_id": motion.id, "user_id": user_id},
        )
    try:
        action = ResponseAction(action)
    except ValueError as exc:
        raise ValidationError(f"Unknown motion action: {action}") from exc

    changes: dict[str, Any] | None = None
    if action in (ResponseAction.MODIFY, ResponseAction.REJECT):
        reason = validate_reason(reason)
    else:
        reason = reason.strip() if reason else None

    if action == ResponseAction.MODIFY:
        changes = {}
        modifications = modifications or {}
        if modifications.get("title") is not None:
            changes["title"] = validate_title(modifications["title"])
        if modifications.get("description") is not None:
            changes["description"] = validate_description(modifications["description"])
        if not changes:
            raise ValidationError("A modification must change the title or the description")

        limit = settings.max_motion_modifications if max_modifications is None else max_modifications
        if modification_count(motion) >= limit:
            raise InvalidTransition(
                f"Modification limit reached ({limit})",
                details={"motion_id": motion.id, "limit": limit},
            )

    now = now or utcnow()
    history_action, new_status = _RESPONSE_OUTCOME[action]
    if changes:
        motion.title = changes.get("title", motion.title)
        motion.description = changes.get("description", motion.description)
    motion.status = new_status.value
    if new_status == MotionStatus.AGREED:
        motion.agreed_at = now
    # Reassign so JSONB change tracking picks it up.
    motion.negotiation_history = [
        *(motion.negotiation_history or []),
        _entry(history_action, user_id, now, changes=changes, reason=reason),
    ]
    motion.updated_at = now
    return motion


def last_activity(motion: Motion) -> datetime:
    history = motion.negotiation_history or []
    if history:
        return datetime.fromisoformat(history[-1]["timestamp"])
    return motion.updated_at


def is_stale(motion: Motion, now: datetime | None = None, *, stale_days: int | None = None) -> bool:
    """Non-final motions with no activity for ``stale_days`` or more."""
    if is_final(motion):
        return False
    days = settings.motion_stale_days if stale_days is None else stale_days
    return (now or utcnow()) - last_activity(motion) >= timedelta(days=days)


@dataclass
class NegotiationProgress:
    total_actions: int
    modifications: int
    modifications_remaining: int
    last_action: str | None
    last_actor: str
    days_since_proposed: int
    is_stale: bool

    def to_dict(self) -> dict[str, Any]:
        return {
            "total_actions": self.total_actions,
            "modifications": self.modifications,
            "modifications_remaining": self.modifications_remaining,
            "last_action": self.last_action,
            "last_actor": self.last_actor,
            "days_since_proposed": self.days_since_proposed,
            "is_stale": self.is_stale,
        }


def negotiation_progress(motion: Motion, now: datetime | None = None) -> NegotiationProgress:
    now = now or utcnow()
    history = motion.negotiation_history or []
    modifications = modification_count(motion)
    return NegotiationProgress(
        total_actions=len(history),
        modifications=modifications,
        modifications_remaining=max(0, settings.max_motion_modifications - modifications),
        last_action=history[-1]["action"] if history else None,
        last_actor=latest_actor(motion),
        days_since_proposed=(now - motion.created_at).days,
        is_stale=is_stale(motion, now),
    )


def motion_stats(motions: Sequence[Motion], now: datetime | None = None) -> dict[str, Any]:
    now = now or utcnow()
    by_status = {s.value: 0 for s in MotionStatus}
    for m in motions:
        by_status[m.status] = by_status.get(m.status, 0) + 1
    finished = by_status[MotionStatus.AGREED.value] + by_status[MotionStatus.REJECTED.value]
    return {
        "total": len(motions),
        "by_status": by_status,
        "agreement_rate": (
            round(by_status[MotionStatus.AGREED.value] / finished * 100, 2) if finished else 0.0
        ),
        "average_modifications": (
            round(sum(modification_count(m) for m in motions) / len(motions), 2) if motions else 0.0
        ),
        "stale": sum(1 for m in motions if is_stale(m, now)),
    }


# =============================================================================
# Service
# =============================================================================


class MotionNegotiation:
    """Store-backed motion operations returning ``Result``."""

    def __init__(self, store: Store, *, emitter: EventEmitter | None = None) -> None:
        self.store = store
        self.events = emitter or event_bus

    async def _room_for_member(self, room_id: str, user_id: str) -> Room:
        room = await self.store.get(Room, room_id)
        if room is None:
            raise NotFound(f"Room not found: {room_id}")
        if user_id not in (room.creator_id, room.participant_id):
            raise Forbidden("Only room members can negotiate the motion", details={"user_id": user_id})
        return room

    @returns_result
    async def propose(self, room_id: str, proposer_id: str, title: str, description: str) -> Motion:
        room = await self._room_for_member(room_id, proposer_id)
        if room.status != "agenda_negotiation":
            raise InvalidTransition(
                f"Motions can only be proposed during agenda negotiation (room is {room.status})"
            )
        if await self.store.get_motion_for_room(room_id) is not None:
            raise ValidationError("A motion already exists for this room", details={"room_id": room_id})

        motion = new_motion(room_id, proposer_id, title, description)
        await self.store.add(motion)
        await self.events.publish(
            EventType.MOTION_PROPOSED,
            f"Motion proposed: {motion.title}",
            room_id=room_id,
            motion_id=motion.id,
            user_id=proposer_id,
        )
        return motion

    @returns_result
    async def respond(
        self,
        motion_id: str,
        user_id: str,
        action: ResponseAction | str,
        *,
        modifications: dict[str, Any] | None = None,
        reason: str | None = None,
    ) -> Motion:
        motion = await self.store.get(Motion, motion_id)
        if motion is None:
            raise NotFound(f"Motion not found: {motion_id}")
        await self._room_for_member(motion.room_id, user_id)

        apply_response(motion, user_id, action, modifications=modifications, reason=reason)
        await self.store.save(motion)

        event_type = {
            MotionStatus.AGREED.value: EventType.MOTION_ACCEPTED,
            MotionStatus.REJECTED.value: EventType.MOTION_REJECTED,
        }.get(motion.status, EventType.MOTION_MODIFIED)
        await self.events.publish(
            event_type,
            f"Motion {motion.status}",
            room_id=motion.room_id,
            motion_id=motion.id,
            user_id=user_id,
        )
        return motion

    @returns_result
    async def progress(self, motion_id: str) -> NegotiationProgress:
        motion = await self.store.get(Motion, motion_id)
        if motion is None:
            raise NotFound(f"Motion not found: {motion_id}")
        return negotiation_progress(motion)

    @returns_result
    async def stats(self) -> dict[str, Any]:
        return motion_stats(await self.store.list_motions())
