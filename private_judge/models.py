"""SQLAlchemy models for the Private Judge database."""

from __future__ import annotations

from datetime import datetime
from typing import Any
from uuid import uuid4

from sqlalchemy import (
    Boolean,
    DateTime,
    Float,
    ForeignKey,
    Integer,
    String,
    Text,
    UniqueConstraint,
)
from sqlalchemy.dialects.postgresql import JSONB, UUID
from sqlalchemy.orm import DeclarativeBase, Mapped, mapped_column, relationship
from sqlalchemy.sql import func


class Base(DeclarativeBase):
    """Base class for all models."""

    type_annotation_map = {
        dict[str, Any]: JSONB,
    }


def _uuid() -> str:
    return str(uuid4())


# =============================================================================
# ROOM AGGREGATE
# =============================================================================


class Room(Base):
    """A debate room shared by a creator (side A) and a participant (side B)."""

    __tablename__ = "rooms"

    id: Mapped[str] = mapped_column(UUID(as_uuid=False), primary_key=True, default=_uuid)
    code: Mapped[str] = mapped_column(String(6), unique=True, nullable=False)
    title: Mapped[str] = mapped_column(String, nullable=False)
    creator_id: Mapped[str] = mapped_column(String, nullable=False)
    participant_id: Mapped[str | None] = mapped_column(String, nullable=True)
    status: Mapped[str] = mapped_column(String, default="waiting_participant")
    stalled: Mapped[bool] = mapped_column(Boolean, default=False)
    stall_reason: Mapped[str | None] = mapped_column(Text, nullable=True)
    last_job_error: Mapped[str | None] = mapped_column(Text, nullable=True)
    last_job_retry_count: Mapped[int | None] = mapped_column(Integer, nullable=True)
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), server_default=func.now())
    updated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), server_default=func.now(), onupdate=func.now()
    )
    completed_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)

    # Relationships
    arguments: Mapped[list[Argument]] = relationship(
        back_populates="room", cascade="all, delete-orphan"
    )
    motions: Mapped[list[Motion]] = relationship(
        back_populates="room", cascade="all, delete-orphan"
    )
    jobs: Mapped[list[Job]] = relationship(back_populates="room", cascade="all, delete-orphan")
    rounds: Mapped[list[Round]] = relationship(back_populates="room", cascade="all, delete-orphan")
    judge_decisions: Mapped[list[JudgeDecision]] = relationship(
        back_populates="room", cascade="all, delete-orphan"
    )
    jury_votes: Mapped[list[JuryVote]] = relationship(
        back_populates="room", cascade="all, delete-orphan"
    )
    verdicts: Mapped[list[Verdict]] = relationship(
        back_populates="room", cascade="all, delete-orphan"
    )


class Argument(Base):
    """One side's submitted argument."""

    __tablename__ = "arguments"

    id: Mapped[str] = mapped_column(UUID(as_uuid=False), primary_key=True, default=_uuid)
    room_id: Mapped[str] = mapped_column(
        UUID(as_uuid=False), ForeignKey("rooms.id", ondelete="CASCADE")
    )
    user_id: Mapped[str] = mapped_column(String, nullable=False)
    side: Mapped[str] = mapped_column(String(1), nullable=False)  # 'A', 'B'
    title: Mapped[str] = mapped_column(String, nullable=False)
    content: Mapped[str] = mapped_column(Text, nullable=False)
    evidence: Mapped[list[str]] = mapped_column(JSONB, default=list)
    submitted_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), server_default=func.now()
    )

    room: Mapped[Room] = relationship(back_populates="arguments")

    __table_args__ = (UniqueConstraint("room_id", "side"),)


class Motion(Base):
    """The debate topic under negotiation."""

    __tablename__ = "motions"

    id: Mapped[str] = mapped_column(UUID(as_uuid=False), primary_key=True, default=_uuid)
    room_id: Mapped[str] = mapped_column(
        UUID(as_uuid=False), ForeignKey("rooms.id", ondelete="CASCADE"), unique=True
    )
    title: Mapped[str] = mapped_column(String(300), nullable=False)
    description: Mapped[str] = mapped_column(Text, nullable=False)
    proposer_id: Mapped[str] = mapped_column(String, nullable=False)
    status: Mapped[str] = mapped_column(String, default="proposed")
    # Append-only list of {action, user_id, changes?, reason?, timestamp}
    negotiation_history: Mapped[list[dict[str, Any]]] = mapped_column(JSONB, default=list)
    agreed_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), server_default=func.now())
    updated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), server_default=func.now(), onupdate=func.now()
    )

    room: Mapped[Room] = relationship(back_populates="motions")


# =============================================================================
# JOB QUEUE
# =============================================================================


class Job(Base):
    """A unit of asynchronous AI work."""

    __tablename__ = "jobs"

    id: Mapped[str] = mapped_column(UUID(as_uuid=False), primary_key=True, default=_uuid)
    type: Mapped[str] = mapped_column(String, nullable=False)
    status: Mapped[str] = mapped_column(String, default="queued")
    room_id: Mapped[str | None] = mapped_column(
        UUID(as_uuid=False), ForeignKey("rooms.id", ondelete="CASCADE"), nullable=True
    )
    priority: Mapped[int] = mapped_column(Integer, nullable=False)
    payload: Mapped[dict[str, Any]] = mapped_column(JSONB, default=dict)
    result: Mapped[dict[str, Any] | None] = mapped_column(JSONB, nullable=True)
    error_message: Mapped[str | None] = mapped_column(Text, nullable=True)
    retry_count: Mapped[int] = mapped_column(Integer, default=0)
    max_retries: Mapped[int] = mapped_column(Integer, default=3)
    progress: Mapped[dict[str, Any] | None] = mapped_column(JSONB, nullable=True)
    worker_id: Mapped[str | None] = mapped_column(String, nullable=True)
    scheduled_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), server_default=func.now()
    )
    started_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)
    completed_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), server_default=func.now())
    updated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), server_default=func.now(), onupdate=func.now()
    )

    room: Mapped[Room | None] = relationship(back_populates="jobs")


# =============================================================================
# DEBATE
# =============================================================================


class Round(Base):
    """One of the three structured lawyer exchanges."""

    __tablename__ = "rounds"

    id: Mapped[str] = mapped_column(UUID(as_uuid=False), primary_key=True, default=_uuid)
    room_id: Mapped[str] = mapped_column(
        UUID(as_uuid=False), ForeignKey("rooms.id", ondelete="CASCADE")
    )
    round_number: Mapped[int] = mapped_column(Integer, nullable=False)
    round_type: Mapped[str] = mapped_column(String, nullable=False)  # first, second, final
    status: Mapped[str] = mapped_column(String, default="pending")
    quality: Mapped[dict[str, Any] | None] = mapped_column(JSONB, nullable=True)
    overtime: Mapped[bool] = mapped_column(Boolean, default=False)
    started_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)
    completed_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), server_default=func.now())

    room: Mapped[Room] = relationship(back_populates="rounds")
    turns: Mapped[list[Turn]] = relationship(back_populates="round", cascade="all, delete-orphan")

    __table_args__ = (UniqueConstraint("room_id", "round_number"),)


class Turn(Base):
    """A single lawyer statement within a round."""

    __tablename__ = "debate_turns"

    id: Mapped[str] = mapped_column(UUID(as_uuid=False), primary_key=True, default=_uuid)
    round_id: Mapped[str] = mapped_column(
        UUID(as_uuid=False), ForeignKey("rounds.id", ondelete="CASCADE")
    )
    turn_number: Mapped[int] = mapped_column(Integer, nullable=False)
    side: Mapped[str] = mapped_column(String(1), nullable=False)
    lawyer_type: Mapped[str] = mapped_column(String, nullable=False)  # lawyer_a, lawyer_b
    content: Mapped[dict[str, Any]] = mapped_column(JSONB, nullable=False)
    status: Mapped[str] = mapped_column(String, default="completed")
    started_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)
    completed_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)

    round: Mapped[Round] = relationship(back_populates="turns")

    __table_args__ = (UniqueConstraint("round_id", "turn_number"),)


# =============================================================================
# VERDICT
# =============================================================================


class JudgeDecision(Base):
    """A ruling produced by the AI judge."""

    __tablename__ = "judge_decisions"

    id: Mapped[str] = mapped_column(UUID(as_uuid=False), primary_key=True, default=_uuid)
    room_id: Mapped[str] = mapped_column(
        UUID(as_uuid=False), ForeignKey("rooms.id", ondelete="CASCADE")
    )
    round_id: Mapped[str | None] = mapped_column(
        UUID(as_uuid=False), ForeignKey("rounds.id", ondelete="SET NULL"), nullable=True
    )
    decision_type: Mapped[str] = mapped_column(String, default="final_verdict")
    content: Mapped[dict[str, Any]] = mapped_column(JSONB, nullable=False)
    reasoning: Mapped[str] = mapped_column(Text, nullable=False)
    score_a: Mapped[int] = mapped_column(Integer, nullable=False)
    score_b: Mapped[int] = mapped_column(Integer, nullable=False)
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), server_default=func.now())

    room: Mapped[Room] = relationship(back_populates="judge_decisions")


class JuryVote(Base):
    """One juror's ballot."""

    __tablename__ = "jury_votes"

    id: Mapped[str] = mapped_column(UUID(as_uuid=False), primary_key=True, default=_uuid)
    room_id: Mapped[str] = mapped_column(
        UUID(as_uuid=False), ForeignKey("rooms.id", ondelete="CASCADE")
    )
    juror_number: Mapped[int] = mapped_column(Integer, nullable=False)
    vote: Mapped[str] = mapped_column(String(1), nullable=False)  # 'A', 'B'
    reasoning: Mapped[str] = mapped_column(Text, nullable=False)
    confidence: Mapped[int] = mapped_column(Integer, nullable=False)
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), server_default=func.now())

    room: Mapped[Room] = relationship(back_populates="jury_votes")

    __table_args__ = (UniqueConstraint("room_id", "juror_number"),)


class Verdict(Base):
    """The aggregated final outcome of a room."""

    __tablename__ = "final_reports"

    id: Mapped[str] = mapped_column(UUID(as_uuid=False), primary_key=True, default=_uuid)
    room_id: Mapped[str] = mapped_column(
        UUID(as_uuid=False), ForeignKey("rooms.id", ondelete="CASCADE"), unique=True
    )
    winner: Mapped[str] = mapped_column(String, nullable=False)  # 'A', 'B', 'draw'
    reasoning: Mapped[str] = mapped_column(Text, nullable=False)
    strengths_a: Mapped[str] = mapped_column(Text, default="")
    weaknesses_a: Mapped[str] = mapped_column(Text, default="")
    strengths_b: Mapped[str] = mapped_column(Text, default="")
    weaknesses_b: Mapped[str] = mapped_column(Text, default="")
    overall_quality: Mapped[int] = mapped_column(Integer, nullable=False)
    credibility_score: Mapped[float] = mapped_column(Float, nullable=False)
    jury_summary: Mapped[dict[str, Any]] = mapped_column(JSONB, nullable=False)
    analysis: Mapped[dict[str, Any]] = mapped_column(JSONB, default=dict)
    generated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), server_default=func.now()
    )

    room: Mapped[Room] = relationship(back_populates="verdicts")


# =============================================================================
# AUDIT
# =============================================================================


class ExecutionLog(Base):
    """Event audit trail. ``room_id`` and ``job_id`` are plain ids, not foreign keys."""

    __tablename__ = "execution_logs"

    id: Mapped[str] = mapped_column(UUID(as_uuid=False), primary_key=True, default=_uuid)
    room_id: Mapped[str | None] = mapped_column(UUID(as_uuid=False), nullable=True, index=True)
    job_id: Mapped[str | None] = mapped_column(UUID(as_uuid=False), nullable=True, index=True)
    event: Mapped[str] = mapped_column(String, nullable=False)
    message: Mapped[str | None] = mapped_column(Text, nullable=True)
    details: Mapped[dict[str, Any] | None] = mapped_column(JSONB, nullable=True)
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), server_default=func.now())
