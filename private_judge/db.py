"""Async database connection and the Postgres-backed store."""

from collections.abc import AsyncGenerator, Iterable
from contextlib import asynccontextmanager
from datetime import datetime
from typing import Any, TypeVar

from sqlalchemy import Select, Update, delete, func, select, update
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker, create_async_engine

from .config import settings
from .errors import SchemaNotInitializedError, is_schema_missing_error, schema_not_initialized_message
from .jobs import RUNNABLE_STATUSES, JobStatus
from .models import (
    Argument,
    Base,
    ExecutionLog,
    Job,
    JudgeDecision,
    JuryVote,
    Motion,
    Room,
    Round,
    Turn,
    Verdict,
)

E = TypeVar("E", bound=Base)

# Create async engine and session factory
engine = create_async_engine(settings.async_database_url, echo=False, pool_pre_ping=True)
async_session_factory = async_sessionmaker(engine, expire_on_commit=False)


async def init_db() -> None:
    """Create all tables (for development/testing)."""
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)


@asynccontextmanager
async def get_session() -> AsyncGenerator[AsyncSession]:
    """Async context manager for database sessions."""
    async with async_session_factory() as session:
        try:
            yield session
            await session.commit()
        except Exception as exc:
            await session.rollback()
            if isinstance(exc, SQLAlchemyError) and is_schema_missing_error(exc):
                raise SchemaNotInitializedError(schema_not_initialized_message(exc)) from exc
            raise


@asynccontextmanager
async def store_scope() -> AsyncGenerator["SqlStore"]:
    """One unit of work: a ``SqlStore`` whose changes commit on exit."""
    async with get_session() as session:
        yield SqlStore(session)


# =============================================================================
# Job claiming
# =============================================================================


def begin_execution_statement(job_id: str, worker_id: str, now: datetime) -> Update:
    """The single conditional write that decides which worker owns a job."""
    return (
        update(Job)
        .where(Job.id == job_id, Job.status.in_(sorted(RUNNABLE_STATUSES)))
        .values(
            status=JobStatus.RUNNING.value,
            worker_id=worker_id,
            started_at=now,
            updated_at=now,
        )
        .execution_options(synchronize_session=False)
    )


def room_lock_statement(room_id: str) -> Select:
    """Row lock on a room; concurrent hooks for the same room run one after another."""
    return (
        select(Room)
        .where(Room.id == room_id)
        .with_for_update()
        .execution_options(populate_existing=True)
    )


# =============================================================================
# Store
# =============================================================================


class SqlStore:
    """Store implementation over an ``AsyncSession``."""

    def __init__(self, session: AsyncSession) -> None:
        self.session = session

    async def add(self, entity: Base) -> None:
        self.session.add(entity)
        await self.session.flush()

    async def get(self, model: type[E], entity_id: str) -> E | None:
        return await self.session.get(model, entity_id)

    async def save(self, entity: Base) -> None:
        self.session.add(entity)
        await self.session.flush()

    # Rooms and motions

    async def lock_room(self, room_id: str) -> Room | None:
        result = await self.session.execute(room_lock_statement(room_id))
        return result.scalar_one_or_none()

    async def get_room_by_code(self, code: str) -> Room | None:
        result = await self.session.execute(select(Room).where(Room.code == code.upper()))
        return result.scalar_one_or_none()

    async def list_arguments(self, room_id: str) -> list[Argument]:
        result = await self.session.execute(select(Argument).where(Argument.room_id == room_id))
        return list(result.scalars().all())

    async def get_motion_for_room(self, room_id: str) -> Motion | None:
        result = await self.session.execute(select(Motion).where(Motion.room_id == room_id))
        return result.scalar_one_or_none()

    async def list_motions(self) -> list[Motion]:
        result = await self.session.execute(select(Motion))
        return list(result.scalars().all())

    # Jobs

    async def list_jobs(
        self,
        *,
        types: Iterable[str] | None = None,
        statuses: Iterable[str] | None = None,
        room_id: str | None = None,
        limit: int | None = None,
        offset: int = 0,
    ) -> list[Job]:
        # Refresh rows already in the session; other units of work may have settled them.
        query = (
            select(Job)
            .order_by(Job.created_at.desc())
            .execution_options(populate_existing=True)
        )
        if types:
            query = query.where(Job.type.in_(list(types)))
        if statuses:
            query = query.where(Job.status.in_(list(statuses)))
        if room_id:
            query = query.where(Job.room_id == room_id)
        if offset:
            query = query.offset(offset)
        if limit is not None:
            query = query.limit(limit)
        result = await self.session.execute(query)
        return list(result.scalars().all())

    async def runnable_jobs(
        self, now: datetime, *, types: Iterable[str] | None = None, limit: int = 1
    ) -> list[Job]:
        query = (
            select(Job)
            .where(Job.status.in_(sorted(RUNNABLE_STATUSES)), Job.scheduled_at <= now)
            .order_by(Job.priority, Job.scheduled_at)
            .limit(limit)
        )
        if types:
            query = query.where(Job.type.in_(list(types)))
        result = await self.session.execute(query)
        return list(result.scalars().all())

    async def begin_execution(self, job_id: str, worker_id: str, now: datetime) -> Job | None:
        result = await self.session.execute(begin_execution_statement(job_id, worker_id, now))
        if result.rowcount != 1:
            return None
        return await self.session.get(Job, job_id, populate_existing=True)

    async def purge_jobs(self, statuses: Iterable[str], before: datetime) -> int:
        result = await self.session.execute(
            delete(Job)
            .where(Job.status.in_(list(statuses)), Job.completed_at < before)
            .execution_options(synchronize_session=False)
        )
        return result.rowcount or 0

    async def count_jobs_by_status(self) -> dict[str, int]:
        result = await self.session.execute(select(Job.status, func.count()).group_by(Job.status))
        return {status: int(count) for status, count in result.all()}

    # Debate and verdict

    async def list_rounds(self, room_id: str) -> list[Round]:
        result = await self.session.execute(
            select(Round).where(Round.room_id == room_id).order_by(Round.round_number)
        )
        return list(result.scalars().all())

    async def list_turns(self, round_id: str) -> list[Turn]:
        result = await self.session.execute(
            select(Turn).where(Turn.round_id == round_id).order_by(Turn.turn_number)
        )
        return list(result.scalars().all())

    async def latest_judge_decision(self, room_id: str) -> JudgeDecision | None:
        result = await self.session.execute(
            select(JudgeDecision)
            .where(JudgeDecision.room_id == room_id)
            .order_by(JudgeDecision.created_at.desc())
            .limit(1)
        )
        return result.scalar_one_or_none()

    async def list_jury_votes(self, room_id: str) -> list[JuryVote]:
        result = await self.session.execute(
            select(JuryVote).where(JuryVote.room_id == room_id).order_by(JuryVote.juror_number)
        )
        return list(result.scalars().all())

    async def get_verdict(self, room_id: str) -> Verdict | None:
        result = await self.session.execute(select(Verdict).where(Verdict.room_id == room_id))
        return result.scalar_one_or_none()


# =============================================================================
# Audit log
# =============================================================================


async def log_event(
    session: AsyncSession,
    *,
    event: str,
    room_id: str | None = None,
    job_id: str | None = None,
    message: str | None = None,
    details: dict[str, Any] | None = None,
) -> ExecutionLog:
    """Append an entry to the execution log."""
    entry = ExecutionLog(
        room_id=room_id,
        job_id=job_id,
        event=event,
        message=message,
        details=details,
    )
    session.add(entry)
    await session.flush()
    return entry
