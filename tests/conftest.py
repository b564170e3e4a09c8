"""Shared test fixtures and configuration for pytest."""

from typing import Any
from uuid import uuid4

import pytest

from private_judge.events import EventEmitter, JudgeEvent
from private_judge.jobs import utcnow
from private_judge.lifecycle import RoomLifecycle, generate_room_code
from private_judge.models import Room
from private_judge.motion import MotionNegotiation
from private_judge.store import MemoryStore


class EventRecorder:
    """Collects every event published through an emitter."""

    def __init__(self) -> None:
        self.events: list[JudgeEvent] = []

    async def __call__(self, event: JudgeEvent) -> None:
        self.events.append(event)

    def types(self) -> list[str]:
        return [e.type.value for e in self.events]


@pytest.fixture
def store() -> MemoryStore:
    return MemoryStore()


@pytest.fixture
def recorder() -> EventRecorder:
    return EventRecorder()


@pytest.fixture
def emitter(recorder: EventRecorder) -> EventEmitter:
    emitter = EventEmitter()
    emitter.on_event(recorder)
    return emitter


def text(length: int, word: str = "argument") -> str:
    """Deterministic filler text of exactly ``length`` characters."""
    return ((word + " ") * (length // len(word) + 1))[:length]


def lawyer_content(
    *,
    statement_len: int = 120,
    key_points: int = 3,
    counters: int = 1,
    evidence: int = 0,
) -> dict[str, Any]:
    return {
        "statement": text(statement_len, "statement"),
        "key_points": [f"key point number {i + 1}" for i in range(key_points)],
        "counter_arguments": [f"counter argument {i + 1}" for i in range(counters)],
        "evidence_references": [f"exhibit {i + 1}" for i in range(evidence)],
    }


def judge_content(score_a: int = 70, score_b: int = 60) -> dict[str, Any]:
    return {
        "summary": text(150, "summary"),
        "analysis_a": text(150, "analysis"),
        "analysis_b": text(150, "analysis"),
        "strengths_a": ["clear structure overall", "strong use of evidence"],
        "weaknesses_a": ["ignored the cost question"],
        "strengths_b": ["persuasive closing words", "anticipated objections"],
        "weaknesses_b": ["thin supporting evidence"],
        "reasoning": text(250, "reasoning"),
        "score_a": score_a,
        "score_b": score_b,
    }


def juror_content(vote: str = "A", confidence: int = 7) -> dict[str, Any]:
    return {
        "vote": vote,
        "reasoning": text(80, "because"),
        "confidence": confidence,
        "key_factors": ["evidence"],
    }


async def make_room(
    store: MemoryStore,
    *,
    creator_id: str = "alice",
    participant_id: str | None = "bob",
    status: str = "ai_processing",
) -> Room:
    """Insert a room directly, bypassing the lifecycle checks."""
    now = utcnow()
    room = Room(
        id=str(uuid4()),
        code=generate_room_code(),
        title="Should cities ban cars downtown?",
        creator_id=creator_id,
        participant_id=participant_id,
        status=status,
        stalled=False,
        stall_reason=None,
        last_job_error=None,
        last_job_retry_count=None,
        created_at=now,
        updated_at=now,
        completed_at=None,
    )
    await store.add(room)
    return room


async def room_with_arguments(store: MemoryStore, lifecycle: RoomLifecycle) -> Room:
    """Drive a room from creation to ``ai_processing`` with both arguments in."""
    room = (await lifecycle.create_room("alice", "Should cities ban cars downtown?")).unwrap()
    (await lifecycle.join_room(room.code, "bob")).unwrap()

    motions = MotionNegotiation(store, emitter=lifecycle.events)
    motion = (await motions.propose(room.id, "alice", text(20, "motion"), text(80, "description"))).unwrap()
    (await motions.respond(motion.id, "bob", "accept")).unwrap()
    (await lifecycle.transition(room.id, "arguments_submission", "bob")).unwrap()

    (await lifecycle.submit_argument(room.id, "alice", "Cars choke our streets", text(150))).unwrap()
    (await lifecycle.submit_argument(room.id, "bob", "Cars keep shops alive", text(150), ["survey"])).unwrap()
    return room
