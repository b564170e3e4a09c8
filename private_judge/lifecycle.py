"""
Room lifecycle controller.

Owns the room status machine and wires the job pipeline together: arguments in,
``ai_debate`` out; rounds done, ``ai_judge`` and ``ai_jury`` out; both succeeded,
verdict recorded and room completed. A job that fails for good leaves the room in
``ai_processing`` with the stall fields set for manual follow-up.
"""

from __future__ import annotations

import logging
import secrets
import string
from enum import Enum
from typing import Any
from uuid import uuid4

from .errors import (
    Forbidden,
    IncompleteRound,
    InvalidTransition,
    NotFound,
    ValidationError,
    returns_result,
)
from .events import EventEmitter, EventType, event_bus
from .job_queue import JobQueue
from .jobs import ACTIVE_STATUSES, JobStatus, JobType, cancel_job, utcnow
from .models import Argument, Job, Room
from .motion import MotionStatus
from .rounds import all_rounds_completed, summarize_round
from .store import Store
from .verdict import VerdictAggregator

logger = logging.getLogger(__name__)

ROOM_CODE_LENGTH = 6
ROOM_CODE_ALPHABET = string.ascii_uppercase + string.digits
ROOM_TITLE_LENGTH = (5, 200)
ARGUMENT_TITLE_LENGTH = (10, 200)
ARGUMENT_CONTENT_LENGTH = (100, 5000)
MAX_EVIDENCE = 10


class RoomStatus(str, Enum):
    WAITING_PARTICIPANT = "waiting_participant"
    AGENDA_NEGOTIATION = "agenda_negotiation"
    ARGUMENTS_SUBMISSION = "arguments_submission"
    AI_PROCESSING = "ai_processing"
    COMPLETED = "completed"
    CANCELLED = "cancelled"


ADJACENCY: dict[RoomStatus, frozenset[RoomStatus]] = {
    RoomStatus.WAITING_PARTICIPANT: frozenset(
        {RoomStatus.AGENDA_NEGOTIATION, RoomStatus.CANCELLED}
    ),
    RoomStatus.AGENDA_NEGOTIATION: frozenset(
        {RoomStatus.ARGUMENTS_SUBMISSION, RoomStatus.CANCELLED}
    ),
    RoomStatus.ARGUMENTS_SUBMISSION: frozenset({RoomStatus.AI_PROCESSING, RoomStatus.CANCELLED}),
    RoomStatus.AI_PROCESSING: frozenset({RoomStatus.COMPLETED, RoomStatus.CANCELLED}),
    RoomStatus.COMPLETED: frozenset(),
    RoomStatus.CANCELLED: frozenset(),
}

PROGRESS_ORDER: dict[RoomStatus, int] = {
    RoomStatus.WAITING_PARTICIPANT: 1,
    RoomStatus.AGENDA_NEGOTIATION: 2,
    RoomStatus.ARGUMENTS_SUBMISSION: 3,
    RoomStatus.AI_PROCESSING: 4,
    RoomStatus.COMPLETED: 5,
    RoomStatus.CANCELLED: -1,
}


def can_transition_to(current: RoomStatus | str, target: RoomStatus | str) -> bool:
    return RoomStatus(target) in ADJACENCY[RoomStatus(current)]


def progress_order(status: RoomStatus | str) -> int:
    return PROGRESS_ORDER[RoomStatus(status)]


def is_terminal(status: RoomStatus | str) -> bool:
    return not ADJACENCY[RoomStatus(status)]


def generate_room_code() -> str:
    return "".join(secrets.choice(ROOM_CODE_ALPHABET) for _ in range(ROOM_CODE_LENGTH))


def side_for(room: Room, user_id: str) -> str | None:
    """The creator argues side A and the participant side B."""
    if user_id == room.creator_id:
        return "A"
    if room.participant_id is not None and user_id == room.participant_id:
        return "B"
    return None


def _check_length(field_name: str, value: str | None, bounds: tuple[int, int]) -> str:
    low, high = bounds
    text = (value or "").strip()
    if not low <= len(text) <= high:
        raise ValidationError(
            f"{field_name} must be between {low} and {high} characters",
            details={"field": field_name, "length": len(text)},
        )
    return text


def _argument_payload(argument: Argument) -> dict[str, Any]:
    return {
        "user_id": argument.user_id,
        "title": argument.title,
        "content": argument.content,
        "evidence": list(argument.evidence or []),
    }


class RoomLifecycle:
    """Room status machine plus the job pipeline hooks."""

    def __init__(
        self,
        store: Store,
        *,
        queue: JobQueue | None = None,
        emitter: EventEmitter | None = None,
    ) -> None:
        self.store = store
        self.events = emitter or event_bus
        self.queue = queue or JobQueue(store, emitter=self.events)
        self.verdicts = VerdictAggregator(store, emitter=self.events)

    async def _load(self, room_id: str, *, lock: bool = False) -> Room:
        room = await (self.store.lock_room(room_id) if lock else self.store.get(Room, room_id))
        if room is None:
            raise NotFound(f"Room not found: {room_id}", details={"room_id": room_id})
        return room

    async def _set_status(self, room: Room, target: RoomStatus) -> Room:
        if not can_transition_to(room.status, target):
            raise InvalidTransition(
                f"Room cannot move from '{room.status}' to '{target.value}'",
                details={"room_id": room.id, "from": room.status, "to": target.value},
            )
        previous = room.status
        now = utcnow()
        room.status = target.value
        room.updated_at = now
        if is_terminal(target):
            room.completed_at = now
        await self.store.save(room)
        await self.events.publish(
            EventType.ROOM_STATUS_CHANGED,
            f"Room {room.code}: {previous} -> {target.value}",
            room_id=room.id,
            previous_status=previous,
            status=target.value,
        )
        return room

    async def _enqueue(self, job_type: JobType, room_id: str | None, payload: dict[str, Any]) -> Job:
        return (await self.queue.create_job(job_type, room_id, payload)).unwrap()

    async def _notify(self, user_id: str | None, type_: str, message: str, room_id: str) -> None:
        if not user_id:
            return
        await self._enqueue(
            JobType.NOTIFICATION,
            room_id,
            {"user_id": user_id, "type": type_, "message": message, "room_id": room_id},
        )

    async def _latest_job(self, room_id: str, job_type: JobType) -> Job | None:
        jobs = await self.store.list_jobs(types=[job_type.value], room_id=room_id, limit=1)
        return jobs[0] if jobs else None

    # =========================================================================
    # Rooms
    # =========================================================================

    @returns_result
    async def create_room(self, creator_id: str, title: str) -> Room:
        title = _check_length("title", title, ROOM_TITLE_LENGTH)
        for _ in range(10):
            code = generate_room_code()
            if await self.store.get_room_by_code(code) is None:
                break
        else:
            raise ValidationError("Could not allocate a unique room code")

        now = utcnow()
        room = Room(
            id=str(uuid4()),
            code=code,
            title=title,
            creator_id=creator_id,
            participant_id=None,
            status=RoomStatus.WAITING_PARTICIPANT.value,
            stalled=False,
            stall_reason=None,
            last_job_error=None,
            last_job_retry_count=None,
            created_at=now,
            updated_at=now,
            completed_at=None,
        )
        await self.store.add(room)
        logger.info("Room %s created by %s", room.code, creator_id)
        return room

    @returns_result
    async def join_room(self, code: str, user_id: str) -> Room:
        room = await self.store.get_room_by_code(code)
        if room is None:
            raise NotFound(f"No room with code {code}", details={"code": code})
        if room.creator_id == user_id:
            raise Forbidden("The room creator cannot join as participant")
        if room.status != RoomStatus.WAITING_PARTICIPANT.value or room.participant_id is not None:
            raise InvalidTransition("Room is not waiting for a participant", details={"room_id": room.id})

        room.participant_id = user_id
        await self._set_status(room, RoomStatus.AGENDA_NEGOTIATION)
        await self._notify(room.creator_id, "room_joined", f"A participant joined '{room.title}'", room.id)
        return room

    @returns_result
    async def transition(self, room_id: str, target: RoomStatus | str, requester_id: str) -> Room:
        """Manual status change by a room member, guarded by the stage preconditions."""
        room = await self._load(room_id)
        if side_for(room, requester_id) is None:
            raise Forbidden("Only room members can change the room status")
        try:
            target = RoomStatus(target)
        except ValueError as exc:
            raise ValidationError(f"Unknown room status: {target}") from exc

        if target == RoomStatus.CANCELLED:
            return (await self.cancel_room(room_id, requester_id)).unwrap()
        if target == RoomStatus.ARGUMENTS_SUBMISSION:
            motion = await self.store.get_motion_for_room(room_id)
            if motion is None or motion.status != MotionStatus.AGREED.value:
                raise InvalidTransition("The motion must be agreed before arguments are submitted")
        elif target == RoomStatus.AI_PROCESSING:
            sides = {a.side for a in await self.store.list_arguments(room_id)}
            if sides != {"A", "B"}:
                raise InvalidTransition("Both sides must submit arguments first")
        elif target == RoomStatus.COMPLETED:
            if await self.store.get_verdict(room_id) is None:
                raise InvalidTransition("A room completes only once its verdict is recorded")
        return await self._set_status(room, target)

    @returns_result
    async def submit_argument(
        self,
        room_id: str,
        user_id: str,
        title: str,
        content: str,
        evidence: list[str] | None = None,
    ) -> Argument:
        room = await self._load(room_id, lock=True)
        side = side_for(room, user_id)
        if side is None:
            raise Forbidden("Only room members can submit arguments")
        if room.status != RoomStatus.ARGUMENTS_SUBMISSION.value:
            raise InvalidTransition(
                f"Arguments are not accepted while the room is {room.status}",
                details={"room_id": room_id},
            )
        evidence = list(evidence or [])
        if len(evidence) > MAX_EVIDENCE:
            raise ValidationError(f"At most {MAX_EVIDENCE} evidence items are allowed")

        existing = {a.side: a for a in await self.store.list_arguments(room_id)}
        if side in existing:
            raise ValidationError(f"Side {side} has already submitted an argument")

        argument = Argument(
            id=str(uuid4()),
            room_id=room_id,
            user_id=user_id,
            side=side,
            title=_check_length("title", title, ARGUMENT_TITLE_LENGTH),
            content=_check_length("content", content, ARGUMENT_CONTENT_LENGTH),
            evidence=evidence,
            submitted_at=utcnow(),
        )
        await self.store.add(argument)
        existing[side] = argument

        if set(existing) == {"A", "B"}:
            await self._set_status(room, RoomStatus.AI_PROCESSING)
            await self._enqueue(
                JobType.AI_DEBATE,
                room_id,
                {
                    "room_id": room_id,
                    "round": 1,
                    "argument_a": _argument_payload(existing["A"]),
                    "argument_b": _argument_payload(existing["B"]),
                    "previous_sessions": [],
                },
            )
        return argument

    @returns_result
    async def cancel_room(self, room_id: str, requester_id: str) -> Room:
        room = await self._load(room_id, lock=True)
        if room.creator_id != requester_id:
            raise Forbidden("Only the room creator can cancel the room")
        await self._set_status(room, RoomStatus.CANCELLED)
        for job in await self.store.list_jobs(statuses=ACTIVE_STATUSES, room_id=room_id):
            cancel_job(job, include_retrying=True)
            await self.store.save(job)
        return room

    # =========================================================================
    # Pipeline hooks
    # =========================================================================

    @returns_result
    async def on_rounds_completed(self, room_id: str) -> list[Job]:
        """Enqueue judge and jury work once all three rounds are completed."""
        room = await self._load(room_id)
        if room.status != RoomStatus.AI_PROCESSING.value:
            raise InvalidTransition(f"Room is {room.status}, not ai_processing")
        rounds = await self.store.list_rounds(room_id)
        if not all_rounds_completed(rounds):
            raise IncompleteRound("All three rounds must be completed", details={"room_id": room_id})

        debate_job = await self._latest_job(room_id, JobType.AI_DEBATE)
        if debate_job is not None and debate_job.status == JobStatus.CANCELLED.value:
            logger.info("Debate job for room %s was cancelled; not enqueuing judge and jury", room_id)
            return []

        sessions = [summarize_round(r, await self.store.list_turns(r.id)) for r in rounds]
        created: list[Job] = []
        for job_type in (JobType.AI_JUDGE, JobType.AI_JURY):
            latest = await self._latest_job(room_id, job_type)
            if latest is not None and latest.status not in (
                JobStatus.FAILED.value,
                JobStatus.CANCELLED.value,
            ):
                continue
            payload: dict[str, Any] = {"room_id": room_id, "debate_sessions": sessions}
            if job_type == JobType.AI_JUDGE:
                payload["decision_type"] = "final_verdict"
            created.append(await self._enqueue(job_type, room_id, payload))
        return created

    @returns_result
    async def on_job_finished(self, job_id: str) -> Room | None:
        """React to a settled job: stall, advance or finalize the room."""
        job = await self.store.get(Job, job_id)
        if job is None:
            raise NotFound(f"Job not found: {job_id}")
        if job.room_id is None:
            return None
        room = await self._load(job.room_id, lock=True)
        if is_terminal(room.status):
            return room

        if job.status == JobStatus.FAILED.value:
            return await self._stall(room, job)
        if job.status != JobStatus.SUCCEEDED.value:
            return room

        if job.type == JobType.AI_DEBATE.value:
            result = await self.on_rounds_completed(room.id)
            if not result.ok:
                return await self._stall(room, job, reason=str(result.error))
        elif job.type in (JobType.AI_JUDGE.value, JobType.AI_JURY.value):
            await self._maybe_finalize(room, job)
        return room

    async def _stall(self, room: Room, job: Job, *, reason: str | None = None) -> Room:
        room.stalled = True
        room.stall_reason = reason or f"{job.type} job failed after {job.retry_count} retries"
        room.last_job_error = job.error_message
        room.last_job_retry_count = job.retry_count
        room.updated_at = utcnow()
        await self.store.save(room)
        logger.warning("Room %s stalled: %s", room.id, room.stall_reason)
        await self.events.publish(
            EventType.ROOM_STALLED,
            room.stall_reason,
            room_id=room.id,
            job_id=job.id,
            error=job.error_message,
            retry_count=job.retry_count,
        )
        return room

    async def _maybe_finalize(self, room: Room, job: Job) -> None:
        judge = await self._latest_job(room.id, JobType.AI_JUDGE)
        jury = await self._latest_job(room.id, JobType.AI_JURY)
        if judge is None or jury is None:
            return
        if judge.status != JobStatus.SUCCEEDED.value or jury.status != JobStatus.SUCCEEDED.value:
            return

        recorded = await self.verdicts.record_verdict(room.id)
        if not recorded.ok:
            await self._stall(room, job, reason=f"Verdict aggregation failed: {recorded.error}")
            return
        verdict = recorded.value
        room.stalled = False
        room.stall_reason = None
        await self._set_status(room, RoomStatus.COMPLETED)
        message = f"The verdict for '{room.title}' is ready: {verdict.winner}"
        for user_id in (room.creator_id, room.participant_id):
            await self._notify(user_id, "verdict_ready", message, room.id)

    # =========================================================================
    # Queries
    # =========================================================================

    @returns_result
    async def room_status(self, room_id: str) -> dict[str, Any]:
        room = await self._load(room_id)
        rounds = await self.store.list_rounds(room_id)
        active = (await self.queue.active_jobs_for_room(room_id)).unwrap()
        verdict = await self.store.get_verdict(room_id)
        return {
            "room_id": room.id,
            "code": room.code,
            "status": room.status,
            "progress_order": progress_order(room.status),
            "stalled": room.stalled,
            "stall_reason": room.stall_reason,
            "last_job_error": room.last_job_error,
            "last_job_retry_count": room.last_job_retry_count,
            "rounds": [
                {"round_number": r.round_number, "status": r.status, "overtime": r.overtime}
                for r in rounds
            ],
            "active_jobs": [{"id": j.id, "type": j.type, "status": j.status} for j in active],
            "winner": verdict.winner if verdict else None,
        }
