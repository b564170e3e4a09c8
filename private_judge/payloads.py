"""Typed job payloads and AI response contracts.

Job payloads form a tagged union keyed by job type and are validated at the job queue
boundary. Lawyer, judge and juror responses come from the external LLM response layer and
are checked against their structural bounds before the core consumes them.
"""

from __future__ import annotations

from typing import Annotated, Any, ClassVar, Literal, TypeVar, Union

from pydantic import BaseModel, ConfigDict, Field, StringConstraints
from pydantic import ValidationError as PydanticValidationError

from .errors import ValidationError
from .jobs import JobType

Side = Literal["A", "B"]
NotificationType = Literal["room_joined", "debate_completed", "verdict_ready"]
DecisionType = Literal["round_summary", "interim_ruling", "final_verdict"]

ModelT = TypeVar("ModelT", bound=BaseModel)


# =============================================================================
# Job payloads
# =============================================================================


class DebateJobPayload(BaseModel):
    """Input for an ``ai_debate`` job."""

    job_type: ClassVar[JobType] = JobType.AI_DEBATE

    room_id: str = Field(..., min_length=1, description="Room the debate belongs to")
    round: int = Field(..., ge=1, le=3, description="Round to start from")
    argument_a: dict[str, Any] = Field(..., description="Side A submission")
    argument_b: dict[str, Any] = Field(..., description="Side B submission")
    previous_sessions: list[dict[str, Any]] = Field(default_factory=list)


class JudgeJobPayload(BaseModel):
    """Input for an ``ai_judge`` job."""

    job_type: ClassVar[JobType] = JobType.AI_JUDGE

    room_id: str = Field(..., min_length=1)
    debate_sessions: list[dict[str, Any]] = Field(default_factory=list)
    jury_votes: list[dict[str, Any]] | None = None
    decision_type: DecisionType = "final_verdict"


class JuryJobPayload(BaseModel):
    """Input for an ``ai_jury`` job."""

    job_type: ClassVar[JobType] = JobType.AI_JURY

    room_id: str = Field(..., min_length=1)
    debate_sessions: list[dict[str, Any]] = Field(default_factory=list)
    jury_count: int = Field(7, ge=7, le=7)


class NotificationJobPayload(BaseModel):
    """Input for a ``notification`` job."""

    job_type: ClassVar[JobType] = JobType.NOTIFICATION

    user_id: str = Field(..., min_length=1)
    type: NotificationType
    message: str
    room_id: str | None = None


JobPayload = Union[DebateJobPayload, JudgeJobPayload, JuryJobPayload, NotificationJobPayload]

PAYLOAD_MODELS: dict[JobType, type[BaseModel]] = {
    JobType.AI_DEBATE: DebateJobPayload,
    JobType.AI_JUDGE: JudgeJobPayload,
    JobType.AI_JURY: JuryJobPayload,
    JobType.NOTIFICATION: NotificationJobPayload,
}


def validate_model(model: type[ModelT], data: Any, *, label: str) -> ModelT:
    """Validate ``data`` against ``model``, raising the domain ``ValidationError``."""
    if isinstance(data, model):
        return data
    try:
        return model.model_validate(data)
    except PydanticValidationError as exc:
        errors = [
            {"field": ".".join(str(p) for p in err["loc"]), "message": err["msg"]}
            for err in exc.errors()
        ]
        raise ValidationError(f"Invalid {label}", details={"errors": errors}) from exc


def parse_payload(job_type: JobType | str, data: Any) -> JobPayload:
    """Validate a raw payload for the given job type."""
    try:
        job_type = JobType(job_type)
    except ValueError as exc:
        raise ValidationError(f"Unknown job type: {job_type}") from exc
    model = PAYLOAD_MODELS[job_type]
    return validate_model(model, data, label=f"{job_type.value} payload")  # type: ignore[return-value]


# =============================================================================
# AI response contracts
# =============================================================================

KeyPoint = Annotated[str, StringConstraints(min_length=5, max_length=200)]
CounterArgument = Annotated[str, StringConstraints(min_length=5, max_length=300)]
JudgeBullet = Annotated[str, StringConstraints(min_length=10, max_length=200)]


class LawyerResponse(BaseModel):
    """One lawyer's statement for a debate turn."""

    statement: str = Field(..., min_length=50, max_length=2000)
    key_points: list[KeyPoint] = Field(..., min_length=2, max_length=5)
    counter_arguments: list[CounterArgument] = Field(..., min_length=1, max_length=3)
    evidence_references: list[str] = Field(default_factory=list, max_length=5)


class JudgeResponse(BaseModel):
    """The judge's ruling over the full debate."""

    summary: str = Field(..., min_length=100, max_length=500)
    analysis_a: str = Field(..., min_length=100, max_length=1000)
    analysis_b: str = Field(..., min_length=100, max_length=1000)
    strengths_a: list[JudgeBullet] = Field(..., min_length=2, max_length=5)
    weaknesses_a: list[JudgeBullet] = Field(..., min_length=1, max_length=3)
    strengths_b: list[JudgeBullet] = Field(..., min_length=2, max_length=5)
    weaknesses_b: list[JudgeBullet] = Field(..., min_length=1, max_length=3)
    reasoning: str = Field(..., min_length=200, max_length=1000)
    score_a: int = Field(..., ge=0, le=100)
    score_b: int = Field(..., ge=0, le=100)

    @property
    def average_score(self) -> float:
        return (self.score_a + self.score_b) / 2


class JurorResponse(BaseModel):
    """A single juror's ballot."""

    vote: Side
    reasoning: str = Field(..., min_length=50, max_length=300)
    confidence: int = Field(..., ge=1, le=10)
    key_factors: list[str] = Field(default_factory=list)


class JuryBallot(JurorResponse):
    """A juror's ballot tagged with the juror's seat number."""

    juror_number: int = Field(..., ge=1, le=7)


class CountedVote(BaseModel):
    """The parts of a jury vote that count towards the verdict, read from any ballot or row."""

    model_config = ConfigDict(from_attributes=True)

    juror_number: int = Field(..., ge=1, le=7)
    vote: Side
    confidence: int = Field(..., ge=1, le=10)
