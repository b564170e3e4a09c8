"""Storage protocol shared by the services, plus an in-process implementation.

The services only need key-by-id access, a handful of room-scoped queries and one
atomic conditional write (``begin_execution``). ``db.SqlStore`` backs this with
Postgres; ``MemoryStore`` keeps everything in dictionaries for single-process use
and tests.
"""

from __future__ import annotations

from collections import defaultdict
from collections.abc import AsyncIterator, Callable, Iterable
from contextlib import AbstractAsyncContextManager, asynccontextmanager
from datetime import datetime
from typing import Any, Protocol, TypeVar
from uuid import uuid4

from .jobs import RUNNABLE_STATUSES, filter_jobs, start_job
from .models import (
    Argument,
    Base,
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


class Store(Protocol):
    async def add(self, entity: Base) -> None: ...

    async def get(self, model: type[E], entity_id: str) -> E | None: ...

    async def save(self, entity: Base) -> None: ...

    async def lock_room(self, room_id: str) -> Room | None:
        """Load a room and hold its row until the unit of work ends."""
        ...

    async def get_room_by_code(self, code: str) -> Room | None: ...

    async def list_arguments(self, room_id: str) -> list[Argument]: ...

    async def get_motion_for_room(self, room_id: str) -> Motion | None: ...

    async def list_motions(self) -> list[Motion]: ...

    async def list_jobs(
        self,
        *,
        types: Iterable[str] | None = None,
        statuses: Iterable[str] | None = None,
        room_id: str | None = None,
        limit: int | None = None,
        offset: int = 0,
    ) -> list[Job]: ...

    async def runnable_jobs(
        self, now: datetime, *, types: Iterable[str] | None = None, limit: int = 1
    ) -> list[Job]: ...

    async def begin_execution(self, job_id: str, worker_id: str, now: datetime) -> Job | None:
        """Atomically move a runnable job to ``running``; None if no row changed."""
        ...

    async def purge_jobs(self, statuses: Iterable[str], before: datetime) -> int: ...

    async def list_rounds(self, room_id: str) -> list[Round]: ...

    async def list_turns(self, round_id: str) -> list[Turn]: ...

    async def latest_judge_decision(self, room_id: str) -> JudgeDecision | None: ...

    async def list_jury_votes(self, room_id: str) -> list[JuryVote]: ...

    async def get_verdict(self, room_id: str) -> Verdict | None: ...


StoreFactory = Callable[[], AbstractAsyncContextManager[Store]]


class MemoryStore:
    """Dictionary-backed store.

    Every method runs to completion without awaiting anything, so under a single
    event loop each call is atomic with respect to other coroutines. That is what
    makes ``begin_execution`` a compare-and-swap.
    """

    def __init__(self) -> None:
        self._tables: dict[type[Base], dict[str, Any]] = defaultdict(dict)

    @asynccontextmanager
    async def scope(self) -> AsyncIterator[MemoryStore]:
        yield self

    def _rows(self, model: type[E]) -> list[E]:
        return list(self._tables[model].values())

    # =========================================================================
    # Generic access
    # =========================================================================

    async def add(self, entity: Base) -> None:
        if getattr(entity, "id", None) is None:
            entity.id = str(uuid4())  # type: ignore[attr-defined]
        table = self._tables[type(entity)]
        if entity.id in table:  # type: ignore[attr-defined]
            raise ValueError(f"Duplicate {type(entity).__name__} id {entity.id}")  # type: ignore[attr-defined]
        table[entity.id] = entity  # type: ignore[attr-defined]

    async def get(self, model: type[E], entity_id: str) -> E | None:
        return self._tables[model].get(entity_id)

    async def save(self, entity: Base) -> None:
        self._tables[type(entity)][entity.id] = entity  # type: ignore[attr-defined]

    # =========================================================================
    # Rooms and motions
    # =========================================================================

    async def lock_room(self, room_id: str) -> Room | None:
        # Rows are shared objects, so every read already sees the latest writes.
        return self._tables[Room].get(room_id)

    async def get_room_by_code(self, code: str) -> Room | None:
        code = code.upper()
        return next((r for r in self._rows(Room) if r.code == code), None)

    async def list_arguments(self, room_id: str) -> list[Argument]:
        return [a for a in self._rows(Argument) if a.room_id == room_id]

    async def get_motion_for_room(self, room_id: str) -> Motion | None:
        return next((m for m in self._rows(Motion) if m.room_id == room_id), None)

    async def list_motions(self) -> list[Motion]:
        return self._rows(Motion)

    # =========================================================================
    # Jobs
    # =========================================================================

    async def list_jobs(
        self,
        *,
        types: Iterable[str] | None = None,
        statuses: Iterable[str] | None = None,
        room_id: str | None = None,
        limit: int | None = None,
        offset: int = 0,
    ) -> list[Job]:
        jobs = filter_jobs(self._rows(Job), types=types, statuses=statuses, room_id=room_id)
        # Newest first; ties keep the later insert first.
        jobs.reverse()
        jobs.sort(key=lambda j: j.created_at, reverse=True)
        end = None if limit is None else offset + limit
        return jobs[offset:end]

    async def runnable_jobs(
        self, now: datetime, *, types: Iterable[str] | None = None, limit: int = 1
    ) -> list[Job]:
        type_set = set(types) if types else None
        due = [
            j
            for j in self._rows(Job)
            if j.status in RUNNABLE_STATUSES
            and j.scheduled_at <= now
            and (type_set is None or j.type in type_set)
        ]
        due.sort(key=lambda j: (j.priority, j.scheduled_at))
        return due[:limit]

    async def begin_execution(self, job_id: str, worker_id: str, now: datetime) -> Job | None:
        job = self._tables[Job].get(job_id)
        # No await between the check and the write.
        if job is None or job.status not in RUNNABLE_STATUSES:
            return None
        return start_job(job, worker_id=worker_id, now=now)

    async def purge_jobs(self, statuses: Iterable[str], before: datetime) -> int:
        status_set = set(statuses)
        doomed = [
            j.id
            for j in self._rows(Job)
            if j.status in status_set and j.completed_at is not None and j.completed_at < before
        ]
        for job_id in doomed:
            del self._tables[Job][job_id]
        return len(doomed)

    # =========================================================================
    # Debate and verdict
    # =========================================================================

    async def list_rounds(self, room_id: str) -> list[Round]:
        return sorted(
            (r for r in self._rows(Round) if r.room_id == room_id),
            key=lambda r: r.round_number,
        )

    async def list_turns(self, round_id: str) -> list[Turn]:
        return sorted(
            (t for t in self._rows(Turn) if t.round_id == round_id),
            key=lambda t: t.turn_number,
        )

    async def latest_judge_decision(self, room_id: str) -> JudgeDecision | None:
        decisions = [d for d in self._rows(JudgeDecision) if d.room_id == room_id]
        return decisions[-1] if decisions else None

    async def list_jury_votes(self, room_id: str) -> list[JuryVote]:
        return sorted(
            (v for v in self._rows(JuryVote) if v.room_id == room_id),
            key=lambda v: v.juror_number,
        )

    async def get_verdict(self, room_id: str) -> Verdict | None:
        return next((v for v in self._rows(Verdict) if v.room_id == room_id), None)
