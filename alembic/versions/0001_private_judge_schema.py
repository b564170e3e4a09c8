"""Private Judge schema: rooms, motions, jobs, rounds, verdicts.

Revision ID: 0001
Revises:
Create Date: 2026-10-19

"""
from collections.abc import Sequence

import sqlalchemy as sa
from alembic import op
from sqlalchemy.dialects import postgresql

# revision identifiers, used by Alembic.
revision: str = "0001"
down_revision: str | None = None
branch_labels: str | Sequence[str] | None = None
depends_on: str | Sequence[str] | None = None


def _id() -> sa.Column:
    return sa.Column("id", postgresql.UUID(as_uuid=False), primary_key=True)


def _room_fk(nullable: bool = False) -> sa.Column:
    return sa.Column(
        "room_id",
        postgresql.UUID(as_uuid=False),
        sa.ForeignKey("rooms.id", ondelete="CASCADE"),
        nullable=nullable,
    )


def _timestamp(name: str, *, default: bool = True) -> sa.Column:
    if default:
        return sa.Column(name, sa.DateTime(timezone=True), server_default=sa.func.now())
    return sa.Column(name, sa.DateTime(timezone=True), nullable=True)


def upgrade() -> None:
    op.create_table(
        "rooms",
        _id(),
        sa.Column("code", sa.String(6), nullable=False, unique=True),
        sa.Column("title", sa.String(), nullable=False),
        sa.Column("creator_id", sa.String(), nullable=False),
        sa.Column("participant_id", sa.String(), nullable=True),
        sa.Column("status", sa.String(), server_default="waiting_participant"),
        sa.Column("stalled", sa.Boolean(), server_default="false"),
        sa.Column("stall_reason", sa.Text(), nullable=True),
        sa.Column("last_job_error", sa.Text(), nullable=True),
        sa.Column("last_job_retry_count", sa.Integer(), nullable=True),
        _timestamp("created_at"),
        _timestamp("updated_at"),
        _timestamp("completed_at", default=False),
    )
    op.create_index("idx_rooms_status", "rooms", ["status"])

    op.create_table(
        "arguments",
        _id(),
        _room_fk(),
        sa.Column("user_id", sa.String(), nullable=False),
        sa.Column("side", sa.String(1), nullable=False),
        sa.Column("title", sa.String(), nullable=False),
        sa.Column("content", sa.Text(), nullable=False),
        sa.Column("evidence", postgresql.JSONB(), server_default="[]"),
        _timestamp("submitted_at"),
        sa.UniqueConstraint("room_id", "side", name="uq_arguments_room_side"),
    )

    op.create_table(
        "motions",
        _id(),
        sa.Column(
            "room_id",
            postgresql.UUID(as_uuid=False),
            sa.ForeignKey("rooms.id", ondelete="CASCADE"),
            nullable=False,
            unique=True,
        ),
        sa.Column("title", sa.String(300), nullable=False),
        sa.Column("description", sa.Text(), nullable=False),
        sa.Column("proposer_id", sa.String(), nullable=False),
        sa.Column("status", sa.String(), server_default="proposed"),
        sa.Column("negotiation_history", postgresql.JSONB(), server_default="[]"),
        _timestamp("agreed_at", default=False),
        _timestamp("created_at"),
        _timestamp("updated_at"),
    )

    op.create_table(
        "jobs",
        _id(),
        sa.Column("type", sa.String(), nullable=False),
        sa.Column("status", sa.String(), server_default="queued"),
        _room_fk(nullable=True),
        sa.Column("priority", sa.Integer(), nullable=False),
        sa.Column("payload", postgresql.JSONB(), server_default="{}"),
        sa.Column("result", postgresql.JSONB(), nullable=True),
        sa.Column("error_message", sa.Text(), nullable=True),
        sa.Column("retry_count", sa.Integer(), server_default="0"),
        sa.Column("max_retries", sa.Integer(), server_default="3"),
        sa.Column("progress", postgresql.JSONB(), nullable=True),
        sa.Column("worker_id", sa.String(), nullable=True),
        _timestamp("scheduled_at"),
        _timestamp("started_at", default=False),
        _timestamp("completed_at", default=False),
        _timestamp("created_at"),
        _timestamp("updated_at"),
        sa.CheckConstraint("retry_count <= max_retries", name="ck_jobs_retry_count"),
    )
    op.create_index("idx_jobs_runnable", "jobs", ["status", "priority", "scheduled_at"])
    op.create_index("idx_jobs_room", "jobs", ["room_id"])

    op.create_table(
        "rounds",
        _id(),
        _room_fk(),
        sa.Column("round_number", sa.Integer(), nullable=False),
        sa.Column("round_type", sa.String(), nullable=False),
        sa.Column("status", sa.String(), server_default="pending"),
        sa.Column("quality", postgresql.JSONB(), nullable=True),
        sa.Column("overtime", sa.Boolean(), server_default="false"),
        _timestamp("started_at", default=False),
        _timestamp("completed_at", default=False),
        _timestamp("created_at"),
        sa.UniqueConstraint("room_id", "round_number", name="uq_rounds_room_number"),
    )

    op.create_table(
        "debate_turns",
        _id(),
        sa.Column(
            "round_id",
            postgresql.UUID(as_uuid=False),
            sa.ForeignKey("rounds.id", ondelete="CASCADE"),
            nullable=False,
        ),
        sa.Column("turn_number", sa.Integer(), nullable=False),
        sa.Column("side", sa.String(1), nullable=False),
        sa.Column("lawyer_type", sa.String(), nullable=False),
        sa.Column("content", postgresql.JSONB(), nullable=False),
        sa.Column("status", sa.String(), server_default="completed"),
        _timestamp("started_at", default=False),
        _timestamp("completed_at", default=False),
        sa.UniqueConstraint("round_id", "turn_number", name="uq_turns_round_number"),
    )

    op.create_table(
        "judge_decisions",
        _id(),
        _room_fk(),
        sa.Column(
            "round_id",
            postgresql.UUID(as_uuid=False),
            sa.ForeignKey("rounds.id", ondelete="SET NULL"),
            nullable=True,
        ),
        sa.Column("decision_type", sa.String(), server_default="final_verdict"),
        sa.Column("content", postgresql.JSONB(), nullable=False),
        sa.Column("reasoning", sa.Text(), nullable=False),
        sa.Column("score_a", sa.Integer(), nullable=False),
        sa.Column("score_b", sa.Integer(), nullable=False),
        _timestamp("created_at"),
    )
    op.create_index("idx_judge_decisions_room", "judge_decisions", ["room_id"])

    op.create_table(
        "jury_votes",
        _id(),
        _room_fk(),
        sa.Column("juror_number", sa.Integer(), nullable=False),
        sa.Column("vote", sa.String(1), nullable=False),
        sa.Column("reasoning", sa.Text(), nullable=False),
        sa.Column("confidence", sa.Integer(), nullable=False),
        _timestamp("created_at"),
        sa.UniqueConstraint("room_id", "juror_number", name="uq_jury_votes_room_juror"),
    )

    op.create_table(
        "final_reports",
        _id(),
        sa.Column(
            "room_id",
            postgresql.UUID(as_uuid=False),
            sa.ForeignKey("rooms.id", ondelete="CASCADE"),
            nullable=False,
            unique=True,
        ),
        sa.Column("winner", sa.String(), nullable=False),
        sa.Column("reasoning", sa.Text(), nullable=False),
        sa.Column("strengths_a", sa.Text(), server_default=""),
        sa.Column("weaknesses_a", sa.Text(), server_default=""),
        sa.Column("strengths_b", sa.Text(), server_default=""),
        sa.Column("weaknesses_b", sa.Text(), server_default=""),
        sa.Column("overall_quality", sa.Integer(), nullable=False),
        sa.Column("credibility_score", sa.Float(), nullable=False),
        sa.Column("jury_summary", postgresql.JSONB(), nullable=False),
        sa.Column("analysis", postgresql.JSONB(), server_default="{}"),
        _timestamp("generated_at"),
    )

    op.create_table(
        "execution_logs",
        _id(),
        sa.Column("room_id", postgresql.UUID(as_uuid=False), nullable=True),
        sa.Column("job_id", postgresql.UUID(as_uuid=False), nullable=True),
        sa.Column("event", sa.String(), nullable=False),
        sa.Column("message", sa.Text(), nullable=True),
        sa.Column("details", postgresql.JSONB(), nullable=True),
        _timestamp("created_at"),
    )
    op.create_index("ix_execution_logs_room_id", "execution_logs", ["room_id"])
    op.create_index("ix_execution_logs_job_id", "execution_logs", ["job_id"])


def downgrade() -> None:
    op.drop_table("execution_logs")
    op.drop_table("final_reports")
    op.drop_table("jury_votes")
    op.drop_table("judge_decisions")
    op.drop_table("debate_turns")
    op.drop_table("rounds")
    op.drop_table("jobs")
    op.drop_table("motions")
    op.drop_table("arguments")
    op.drop_table("rooms")
