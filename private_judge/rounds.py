"""
Debate round orchestration: sequencing of the three lawyer exchanges.

The orchestrator only sequences rounds and turns. It never enqueues judge or jury
work; that is the room lifecycle controller's job once all rounds are completed.
"""

from __future__ import annotations

from collections.abc import Sequence
from dataclasses import dataclass
from datetime import datetime, timedelta
from enum import Enum
from typing import Any
from uuid import uuid4

from .errors import IncompleteRound, InvalidTransition, NotFound, ValidationError, returns_result
from .events import EventEmitter, EventType, event_bus
from .jobs import utcnow
from .models import Round, Turn
from .payloads import LawyerResponse, validate_model
from .store import Store

TOTAL_ROUNDS = 3
SIDES = ("A", "B")


class RoundType(str, Enum):
    FIRST = "first"
    SECOND = "second"
    FINAL = "final"


class RoundStatus(str, Enum):
    PENDING = "pending"
    IN_PROGRESS = "in_progress"
    COMPLETED = "completed"
    FAILED = "failed"


ROUND_TYPES: dict[int, RoundType] = {1: RoundType.FIRST, 2: RoundType.SECOND, 3: RoundType.FINAL}

# Used for progress and overtime only, never enforced.
EXPECTED_TURNS: dict[RoundType, int] = {RoundType.FIRST: 2, RoundType.SECOND: 4, RoundType.FINAL: 2}
TIME_BUDGET_MINUTES: dict[RoundType, int] = {
    RoundType.FIRST: 10,
    RoundType.SECOND: 15,
    RoundType.FINAL: 8,
}

LAWYER_FOR_SIDE = {"A": "lawyer_a", "B": "lawyer_b"}

ADVANTAGE_MARGIN = 10


def round_type_for(round_number: int) -> RoundType:
    if round_number not in ROUND_TYPES:
        raise ValidationError(
            f"round_number must be 1-{TOTAL_ROUNDS}", details={"round_number": round_number}
        )
    return ROUND_TYPES[round_number]


def turn_order(round_type: RoundType | str) -> list[str]:
    """Sides in speaking order, A opening: A, B for two turns, A, B, A, B for four."""
    return [SIDES[i % 2] for i in range(EXPECTED_TURNS[RoundType(round_type)])]


# =============================================================================
# Quality heuristic
# =============================================================================


@dataclass
class ResponseQuality:
    """Display-only score for one lawyer response."""

    length_score: float
    points_score: float
    counter_score: float
    evidence_score: float

    @property
    def total(self) -> int:
        return round(
            0.4 * self.length_score
            + 0.3 * self.points_score
            + 0.2 * self.counter_score
            + 0.1 * self.evidence_score
        )

    def to_dict(self) -> dict[str, Any]:
        return {
            "length": round(self.length_score, 2),
            "points": round(self.points_score, 2),
            "counter_arguments": round(self.counter_score, 2),
            "evidence": round(self.evidence_score, 2),
            "total": self.total,
        }


def response_quality(content: dict[str, Any]) -> ResponseQuality:
    statement = content.get("statement", "")
    return ResponseQuality(
        length_score=min(100.0, max(0.0, (len(statement) - 50) / 19.5)),
        points_score=min(100.0, len(content.get("key_points", [])) * 20.0),
        counter_score=min(100.0, len(content.get("counter_arguments", [])) * 33.33),
        evidence_score=min(100.0, len(content.get("evidence_references", [])) * 20.0),
    )


@dataclass
class RoundQuality:
    """Side-by-side comparison of the latest response from each lawyer."""

    side_a: ResponseQuality
    side_b: ResponseQuality
    length_difference: int
    points_difference: int
    counter_difference: int

    @property
    def advantage(self) -> str:
        diff = self.side_a.total - self.side_b.total
        if diff > ADVANTAGE_MARGIN:
            return "A"
        if diff < -ADVANTAGE_MARGIN:
            return "B"
        return "tie"

    def to_dict(self) -> dict[str, Any]:
        return {
            "score_a": self.side_a.total,
            "score_b": self.side_b.total,
            "breakdown_a": self.side_a.to_dict(),
            "breakdown_b": self.side_b.to_dict(),
            "length_difference": self.length_difference,
            "points_difference": self.points_difference,
            "counter_difference": self.counter_difference,
            "advantage": self.advantage,
        }


def compare_responses(content_a: dict[str, Any], content_b: dict[str, Any]) -> RoundQuality:
    return RoundQuality(
        side_a=response_quality(content_a),
        side_b=response_quality(content_b),
        length_difference=len(content_a.get("statement", "")) - len(content_b.get("statement", "")),
        points_difference=len(content_a.get("key_points", [])) - len(content_b.get("key_points", [])),
        counter_difference=(
            len(content_a.get("counter_arguments", [])) - len(content_b.get("counter_arguments", []))
        ),
    )


def latest_turn_by_side(turns: Sequence[Turn]) -> dict[str, Turn]:
    latest: dict[str, Turn] = {}
    for turn in sorted(turns, key=lambda t: t.turn_number):
        latest[turn.side] = turn
    return latest


# =============================================================================
# Timing and summaries
# =============================================================================


def round_duration_seconds(round_: Round, now: datetime | None = None) -> float | None:
    if round_.started_at is None:
        return None
    end = round_.completed_at or now
    if end is None:
        return None
    return (end - round_.started_at).total_seconds()


def is_overtime(round_: Round, now: datetime | None = None) -> bool:
    duration = round_duration_seconds(round_, now)
    if duration is None:
        return False
    budget = timedelta(minutes=TIME_BUDGET_MINUTES[RoundType(round_.round_type)])
    return duration > budget.total_seconds()


def round_progress(round_: Round, turns: Sequence[Turn]) -> dict[str, Any]:
    expected = EXPECTED_TURNS[RoundType(round_.round_type)]
    completed = sum(1 for t in turns if t.status == RoundStatus.COMPLETED.value)
    return {
        "round_number": round_.round_number,
        "status": round_.status,
        "completed_turns": completed,
        "expected_turns": expected,
        "percentage": min(100, round(completed / expected * 100)) if expected else 0,
    }


def summarize_round(round_: Round, turns: Sequence[Turn]) -> dict[str, Any]:
    latest = latest_turn_by_side(turns)
    key_exchanges: list[str] = []
    if len(latest) == 2:
        for side in SIDES:
            points = latest[side].content.get("key_points") or []
            if points:
                key_exchanges.append(f"{side}: {points[0]}")
    return {
        "round_number": round_.round_number,
        "round_type": round_.round_type,
        "total_turns": len(turns),
        "completed_turns": sum(1 for t in turns if t.status == RoundStatus.COMPLETED.value),
        "duration_seconds": round_duration_seconds(round_),
        "overtime": is_overtime(round_),
        "key_exchanges": key_exchanges,
    }


def all_rounds_completed(rounds: Sequence[Round]) -> bool:
    completed = {r.round_number for r in rounds if r.status == RoundStatus.COMPLETED.value}
    return completed >= set(ROUND_TYPES)


# =============================================================================
# Service
# =============================================================================


class DebateOrchestrator:
    """Store-backed round operations returning ``Result``."""

    def __init__(self, store: Store, *, emitter: EventEmitter | None = None) -> None:
        self.store = store
        self.events = emitter or event_bus

    async def _load(self, round_id: str) -> Round:
        round_ = await self.store.get(Round, round_id)
        if round_ is None:
            raise NotFound(f"Round not found: {round_id}")
        return round_

    @returns_result
    async def start_round(self, room_id: str, round_number: int) -> Round:
        """Open a round. A round left unfinished by an earlier attempt is reopened."""
        round_type = round_type_for(round_number)
        rounds = {r.round_number: r for r in await self.store.list_rounds(room_id)}

        previous = rounds.get(round_number - 1)
        if round_number > 1 and (previous is None or previous.status != RoundStatus.COMPLETED.value):
            raise InvalidTransition(
                f"Round {round_number - 1} must be completed before round {round_number}",
                details={"room_id": room_id, "round_number": round_number},
            )

        now = utcnow()
        round_ = rounds.get(round_number)
        if round_ is not None:
            if round_.status == RoundStatus.COMPLETED.value:
                raise InvalidTransition(f"Round {round_number} is already completed")
            round_.status = RoundStatus.IN_PROGRESS.value
            round_.started_at = now
            round_.completed_at = None
            await self.store.save(round_)
        else:
            round_ = Round(
                id=str(uuid4()),
                room_id=room_id,
                round_number=round_number,
                round_type=round_type.value,
                status=RoundStatus.PENDING.value,
                quality=None,
                overtime=False,
                started_at=None,
                completed_at=None,
                created_at=now,
            )
            round_.status = RoundStatus.IN_PROGRESS.value
            round_.started_at = now
            await self.store.add(round_)

        await self.events.publish(
            EventType.ROUND_STARTED,
            f"Round {round_number} ({round_type.value}) started",
            room_id=room_id,
            round_id=round_.id,
        )
        return round_

    @returns_result
    async def record_turn(
        self, round_id: str, side: str, content: LawyerResponse | dict[str, Any]
    ) -> Turn:
        round_ = await self._load(round_id)
        if round_.status != RoundStatus.IN_PROGRESS.value:
            raise InvalidTransition(
                f"Cannot record a turn on a round in status '{round_.status}'",
                details={"round_id": round_id},
            )
        if side not in SIDES:
            raise ValidationError(f"side must be one of {SIDES}", details={"side": side})
        response = validate_model(LawyerResponse, content, label="lawyer response")

        turns = await self.store.list_turns(round_id)
        now = utcnow()
        turn = Turn(
            id=str(uuid4()),
            round_id=round_id,
            turn_number=(turns[-1].turn_number + 1) if turns else 1,
            side=side,
            lawyer_type=LAWYER_FOR_SIDE[side],
            content=response.model_dump(),
            status=RoundStatus.COMPLETED.value,
            started_at=now,
            completed_at=now,
        )
        await self.store.add(turn)
        return turn

    @returns_result
    async def complete_round(self, round_id: str) -> Round:
        round_ = await self._load(round_id)
        if round_.status != RoundStatus.IN_PROGRESS.value:
            raise InvalidTransition(
                f"Cannot complete a round in status '{round_.status}'", details={"round_id": round_id}
            )

        latest = latest_turn_by_side(await self.store.list_turns(round_id))
        missing = [side for side in SIDES if side not in latest]
        if missing:
            raise IncompleteRound(
                f"Round {round_.round_number} is missing turns for side(s) {', '.join(missing)}",
                details={"round_id": round_id, "missing_sides": missing},
            )

        round_.status = RoundStatus.COMPLETED.value
        round_.completed_at = utcnow()
        round_.quality = compare_responses(latest["A"].content, latest["B"].content).to_dict()
        round_.overtime = is_overtime(round_)
        await self.store.save(round_)

        await self.events.publish(
            EventType.ROUND_COMPLETED,
            f"Round {round_.round_number} completed",
            room_id=round_.room_id,
            round_id=round_.id,
            quality=round_.quality,
            overtime=round_.overtime,
        )
        return round_

    @returns_result
    async def fail_round(self, round_id: str, reason: str) -> Round:
        round_ = await self._load(round_id)
        if round_.status == RoundStatus.COMPLETED.value:
            raise InvalidTransition("A completed round cannot fail", details={"round_id": round_id})
        round_.status = RoundStatus.FAILED.value
        round_.completed_at = utcnow()
        await self.store.save(round_)
        await self.events.publish(
            EventType.ROUND_FAILED,
            f"Round {round_.round_number} failed",
            room_id=round_.room_id,
            round_id=round_.id,
            reason=reason,
        )
        return round_

    @returns_result
    async def progress(self, round_id: str) -> dict[str, Any]:
        round_ = await self._load(round_id)
        return round_progress(round_, await self.store.list_turns(round_id))

    @returns_result
    async def session_summary(self, round_id: str) -> dict[str, Any]:
        round_ = await self._load(round_id)
        return summarize_round(round_, await self.store.list_turns(round_id))
