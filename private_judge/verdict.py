"""
Verdict aggregation: combine the judge decision with the jury ballots.

``aggregate`` is a pure function of its inputs. ``VerdictAggregator.record_verdict``
loads those inputs from the store and persists the result as the room's final report.
"""

from __future__ import annotations

import math
from collections import Counter
from collections.abc import Sequence
from dataclasses import dataclass, field
from datetime import datetime
from typing import Any, Protocol
from uuid import uuid4

from .config import settings
from .errors import InsufficientJuryVotes, NotFound, ValidationError, returns_result
from .events import EventEmitter, EventType, event_bus
from .jobs import utcnow
from .models import Verdict
from .payloads import CountedVote, JudgeResponse, validate_model
from .rounds import RoundStatus
from .store import Store


class Ballot(Protocol):
    juror_number: int
    vote: str
    confidence: int


def _round_half_up(value: float) -> int:
    return math.floor(value + 0.5)


def quality_grade(overall_quality: int) -> str:
    if overall_quality >= 9:
        return "S"
    if overall_quality >= 8:
        return "A"
    if overall_quality >= 6:
        return "B"
    if overall_quality >= 4:
        return "C"
    return "D"


@dataclass
class CredibilityBreakdown:
    """Weighted parts of the 0-100 credibility score."""

    confidence: float
    quality: float
    consensus: float
    participation: float

    @property
    def total(self) -> int:
        return _round_half_up(self.confidence + self.quality + self.consensus + self.participation)

    def to_dict(self) -> dict[str, Any]:
        return {
            "confidence": round(self.confidence, 2),
            "quality": round(self.quality, 2),
            "consensus": round(self.consensus, 2),
            "participation": round(self.participation, 2),
            "total": self.total,
        }


@dataclass
class VerdictOutcome:
    room_id: str
    winner: str
    reasoning: str
    strengths_a: str
    weaknesses_a: str
    strengths_b: str
    weaknesses_b: str
    judge_average: float
    votes_a: int
    votes_b: int
    average_confidence: float
    overall_quality: int
    rounds_completed: int = 3
    generated_at: datetime = field(default_factory=utcnow)

    @property
    def total_votes(self) -> int:
        return self.votes_a + self.votes_b

    @property
    def margin(self) -> int:
        return abs(self.votes_a - self.votes_b)

    @property
    def consensus_strength(self) -> float:
        if not self.total_votes:
            return 0.0
        return max(self.votes_a, self.votes_b) / self.total_votes

    @property
    def close(self) -> bool:
        return self.margin <= 1

    @property
    def unanimous(self) -> bool:
        return self.margin == settings.jury_size

    @property
    def grade(self) -> str:
        return quality_grade(self.overall_quality)

    @property
    def high_quality(self) -> bool:
        return self.overall_quality >= 8

    @property
    def credibility(self) -> CredibilityBreakdown:
        return CredibilityBreakdown(
            confidence=self.average_confidence / 10 * 40,
            quality=self.overall_quality / 10 * 30,
            consensus=self.consensus_strength * 20,
            participation=self.total_votes / settings.jury_size * 10,
        )

    @property
    def credibility_score(self) -> int:
        return self.credibility.total

    @property
    def jury_summary(self) -> dict[str, Any]:
        return {
            "votes_a": self.votes_a,
            "votes_b": self.votes_b,
            "total_votes": self.total_votes,
            "average_confidence": self.average_confidence,
        }

    def analysis(self) -> dict[str, Any]:
        """Qualitative reading of the numbers for the final report."""
        if self.judge_average >= 85:
            debate_quality = "excellent"
        elif self.judge_average >= 70:
            debate_quality = "good"
        elif self.judge_average >= 50:
            debate_quality = "fair"
        else:
            debate_quality = "poor"

        credibility = self.credibility_score
        if credibility >= 80:
            reliability = "high"
        elif credibility >= 60:
            reliability = "medium"
        else:
            reliability = "low"

        if self.total_votes == settings.jury_size:
            participation = "full"
        elif self.total_votes >= 5:
            participation = "partial"
        else:
            participation = "limited"

        if self.consensus_strength >= 0.8:
            consensus = "strong"
        elif self.consensus_strength >= 0.6:
            consensus = "moderate"
        else:
            consensus = "weak"

        highlights: list[str] = []
        concerns: list[str] = []
        if self.high_quality:
            highlights.append("The debate was of high quality")
        if self.unanimous:
            highlights.append("The jury reached a unanimous decision")
        if self.rounds_completed == 3:
            highlights.append("All rounds were completed")
        if self.close:
            concerns.append("The decision was very close")
        if participation != "full":
            concerns.append("Some jurors did not vote")
        if credibility < 70:
            concerns.append("The decision has low credibility")

        return {
            "debate_quality": debate_quality,
            "decision_reliability": reliability,
            "participation": participation,
            "consensus": consensus,
            "grade": self.grade,
            "close": self.close,
            "unanimous": self.unanimous,
            "credibility": self.credibility.to_dict(),
            "highlights": highlights,
            "concerns": concerns,
        }

    def to_dict(self) -> dict[str, Any]:
        return {
            "room_id": self.room_id,
            "winner": self.winner,
            "overall_quality": self.overall_quality,
            "credibility_score": self.credibility_score,
            "jury_summary": self.jury_summary,
            "analysis": self.analysis(),
        }

    def apply_to(self, verdict: Verdict) -> Verdict:
        verdict.winner = self.winner
        verdict.reasoning = self.reasoning
        verdict.strengths_a = self.strengths_a
        verdict.weaknesses_a = self.weaknesses_a
        verdict.strengths_b = self.strengths_b
        verdict.weaknesses_b = self.weaknesses_b
        verdict.overall_quality = self.overall_quality
        verdict.credibility_score = float(self.credibility_score)
        verdict.jury_summary = self.jury_summary
        verdict.analysis = self.analysis()
        verdict.generated_at = self.generated_at
        return verdict

    def to_verdict(self) -> Verdict:
        return self.apply_to(Verdict(id=str(uuid4()), room_id=self.room_id))


def decide_winner(votes_a: int, votes_b: int, score_a: int, score_b: int) -> str:
    """Jury majority first, judge scores on a tied jury, otherwise a draw."""
    if votes_a != votes_b:
        return "A" if votes_a > votes_b else "B"
    if score_a != score_b:
        return "A" if score_a > score_b else "B"
    return "draw"


def aggregate(
    room_id: str,
    judge: JudgeResponse | dict[str, Any],
    votes: Sequence[Ballot],
    *,
    rounds_completed: int = 3,
) -> VerdictOutcome:
    if not votes:
        raise InsufficientJuryVotes("At least one jury vote is required", details={"room_id": room_id})
    if len(votes) > settings.jury_size:
        raise ValidationError(
            f"At most {settings.jury_size} jury votes are allowed", details={"votes": len(votes)}
        )
    judge = validate_model(JudgeResponse, judge, label="judge decision")
    counted = [validate_model(CountedVote, v, label="jury vote") for v in votes]
    seats = Counter(v.juror_number for v in counted)
    repeated = sorted(n for n, count in seats.items() if count > 1)
    if repeated:
        raise ValidationError("Each juror may vote only once", details={"juror_numbers": repeated})

    votes_a = sum(1 for v in counted if v.vote == "A")
    votes_b = len(counted) - votes_a
    mean_confidence = sum(v.confidence for v in counted) / len(counted)

    # Placeholder heuristic: the judge term is 0-10 and the confidence term 0-10.
    overall = _round_half_up((judge.average_score / 10 + mean_confidence / 10 * 10) / 2)

    return VerdictOutcome(
        room_id=room_id,
        winner=decide_winner(votes_a, votes_b, judge.score_a, judge.score_b),
        reasoning=judge.reasoning,
        strengths_a=". ".join(judge.strengths_a),
        weaknesses_a=". ".join(judge.weaknesses_a),
        strengths_b=". ".join(judge.strengths_b),
        weaknesses_b=". ".join(judge.weaknesses_b),
        judge_average=judge.average_score,
        votes_a=votes_a,
        votes_b=votes_b,
        average_confidence=_round_half_up(mean_confidence * 10) / 10,
        overall_quality=min(10, max(1, overall)),
        rounds_completed=rounds_completed,
    )


class VerdictAggregator:
    """Persists the aggregated verdict for a room."""

    def __init__(self, store: Store, *, emitter: EventEmitter | None = None) -> None:
        self.store = store
        self.events = emitter or event_bus

    async def _compute(self, room_id: str) -> VerdictOutcome:
        decision = await self.store.latest_judge_decision(room_id)
        if decision is None:
            raise NotFound(f"No judge decision for room {room_id}")
        votes = await self.store.list_jury_votes(room_id)
        rounds = await self.store.list_rounds(room_id)
        completed = sum(1 for r in rounds if r.status == RoundStatus.COMPLETED.value)
        return aggregate(room_id, decision.content, votes, rounds_completed=completed)

    @returns_result
    async def preview(self, room_id: str) -> VerdictOutcome:
        return await self._compute(room_id)

    @returns_result
    async def record_verdict(self, room_id: str) -> Verdict:
        """Aggregate and store the verdict, replacing any earlier one for the room."""
        outcome = await self._compute(room_id)
        existing = await self.store.get_verdict(room_id)
        if existing is not None:
            verdict = outcome.apply_to(existing)
            await self.store.save(verdict)
        else:
            verdict = outcome.to_verdict()
            await self.store.add(verdict)

        await self.events.publish(
            EventType.VERDICT_GENERATED,
            f"Verdict: {outcome.winner} ({outcome.votes_a}-{outcome.votes_b})",
            room_id=room_id,
            winner=outcome.winner,
            overall_quality=outcome.overall_quality,
            credibility_score=outcome.credibility_score,
        )
        return verdict
