"""
Job queue service: create, claim, execute and settle jobs.

Every public coroutine on ``JobQueue`` returns a ``Result``; domain errors such as
``JobAlreadyTaken`` or ``Forbidden`` come back as ``Result.failed`` rather than being
raised to the caller.
"""

from __future__ import annotations

import logging
import random
from collections.abc import Iterable
from datetime import datetime, timedelta
from typing import Any

from .config import settings
from .errors import Forbidden, JobAlreadyTaken, NotFound, ValidationError, returns_result
from .events import EventEmitter, EventType, event_bus
from .jobs import (
    ACTIVE_STATUSES,
    RUNNABLE_STATUSES,
    TERMINAL_STATUSES,
    JobStats,
    JobStatus,
    JobType,
    cancel_job,
    fail_job,
    job_stats,
    job_summary,
    new_job,
    next_jobs_to_run,
    retry_job,
    should_retry,
    succeed_job,
    update_job_progress,
    utcnow,
)
from .models import Job, Room
from .payloads import parse_payload
from .store import Store

logger = logging.getLogger(__name__)


def _validate_types(types: Iterable[str] | None) -> list[str] | None:
    if not types:
        return None
    try:
        return [JobType(t).value for t in types]
    except ValueError as exc:
        raise ValidationError(f"Unknown job type filter: {list(types)}") from exc


class JobQueue:
    """Job queue over a ``Store``.

    ``claim_next`` is a plain read. Ownership is decided only by ``begin_execution``,
    which delegates to the store's atomic conditional write.
    """

    def __init__(
        self,
        store: Store,
        *,
        emitter: EventEmitter | None = None,
        rng: random.Random | None = None,
    ) -> None:
        self.store = store
        self.events = emitter or event_bus
        self._rng = rng

    async def _load(self, job_id: str) -> Job:
        job = await self.store.get(Job, job_id)
        if job is None:
            raise NotFound(f"Job not found: {job_id}", details={"job_id": job_id})
        return job

    # =========================================================================
    # Creation and claiming
    # =========================================================================

    @returns_result
    async def create_job(
        self,
        job_type: JobType | str,
        room_id: str | None,
        payload: dict[str, Any],
        *,
        scheduled_at: datetime | None = None,
        max_retries: int | None = None,
    ) -> Job:
        parsed = parse_payload(job_type, payload)
        payload_room = getattr(parsed, "room_id", None)
        if room_id and payload_room and payload_room != room_id:
            raise ValidationError(
                "Payload room_id does not match job room",
                details={"room_id": room_id, "payload_room_id": payload_room},
            )

        job = new_job(
            job_type,
            room_id or payload_room,
            parsed.model_dump(mode="json"),
            scheduled_at=scheduled_at,
            max_retries=max_retries,
        )
        await self.store.add(job)
        await self.events.publish(
            EventType.JOB_CREATED,
            f"Job {job.type} queued",
            room_id=job.room_id,
            job_id=job.id,
            priority=job.priority,
        )
        return job

    @returns_result
    async def claim_next(
        self,
        types: Iterable[str] | None = None,
        limit: int = 1,
        *,
        now: datetime | None = None,
    ) -> list[Job]:
        """Return due runnable jobs by priority, then scheduled time. Does not lock them."""
        limit = max(1, min(limit, settings.claim_limit_max))
        return await self.store.runnable_jobs(
            now or utcnow(), types=_validate_types(types), limit=limit
        )

    @returns_result
    async def begin_execution(
        self, job_id: str, worker_id: str, *, now: datetime | None = None
    ) -> Job:
        job = await self.store.begin_execution(job_id, worker_id, now or utcnow())
        if job is None:
            existing = await self._load(job_id)
            raise JobAlreadyTaken(
                f"Job {job_id} is no longer runnable (status '{existing.status}')",
                details={"job_id": job_id, "status": existing.status},
            )
        await self.events.publish(
            EventType.JOB_STARTED,
            f"Job {job.type} started by {worker_id}",
            room_id=job.room_id,
            job_id=job.id,
            worker_id=worker_id,
        )
        return job

    # =========================================================================
    # Settlement
    # =========================================================================

    @returns_result
    async def complete_execution(self, job_id: str, result: dict[str, Any] | None = None) -> Job:
        job = await self._load(job_id)
        succeed_job(job, result)
        await self.store.save(job)
        await self.events.publish(
            EventType.JOB_COMPLETED,
            f"Job {job.type} succeeded",
            room_id=job.room_id,
            job_id=job.id,
        )
        return job

    @returns_result
    async def fail_execution(self, job_id: str, message: str) -> Job:
        """Record a failure and reschedule the job when the error is retryable."""
        job = await self._load(job_id)
        fail_job(job, message)

        if should_retry(job):
            delay_ms = retry_job(job, rng=self._rng)
            await self.store.save(job)
            logger.info("Job %s rescheduled in %sms (attempt %s)", job.id, delay_ms, job.retry_count)
            await self.events.publish(
                EventType.JOB_RETRY_SCHEDULED,
                f"Job {job.type} retry {job.retry_count}/{job.max_retries} in {delay_ms}ms",
                room_id=job.room_id,
                job_id=job.id,
                delay_ms=delay_ms,
                retry_count=job.retry_count,
                error=message,
            )
            return job

        await self.store.save(job)
        logger.warning("Job %s failed terminally: %s", job.id, message)
        await self.events.publish(
            EventType.JOB_FAILED,
            f"Job {job.type} failed",
            room_id=job.room_id,
            job_id=job.id,
            error=message,
            retry_count=job.retry_count,
            max_retries=job.max_retries,
            retries_exhausted=job.retry_count >= job.max_retries,
        )
        return job

    @returns_result
    async def retry(self, job_id: str) -> Job:
        """Manually retry a failed job that still has attempts left."""
        job = await self._load(job_id)
        delay_ms = retry_job(job, rng=self._rng)
        await self.store.save(job)
        await self.events.publish(
            EventType.JOB_RETRY_SCHEDULED,
            f"Job {job.type} manually retried",
            room_id=job.room_id,
            job_id=job.id,
            delay_ms=delay_ms,
            retry_count=job.retry_count,
        )
        return job

    @returns_result
    async def cancel(self, job_id: str, requester_id: str) -> Job:
        """Cancel a queued or running job. Only the room creator may do this."""
        job = await self._load(job_id)
        if job.room_id is None:
            raise Forbidden("Jobs without a room cannot be cancelled by users", details={"job_id": job_id})
        room = await self.store.get(Room, job.room_id)
        if room is None:
            raise NotFound(f"Room not found: {job.room_id}")
        if room.creator_id != requester_id:
            raise Forbidden(
                "Only the room creator can cancel jobs",
                details={"job_id": job_id, "requester_id": requester_id},
            )

        previous = job.status
        cancel_job(job)
        await self.store.save(job)
        await self.events.publish(
            EventType.JOB_CANCELLED,
            f"Job {job.type} cancelled",
            room_id=job.room_id,
            job_id=job.id,
            previous_status=previous,
            requester_id=requester_id,
        )
        return job

    @returns_result
    async def update_progress(
        self,
        job_id: str,
        current_step: str,
        total_steps: int,
        completed_steps: int,
        estimated_remaining: str | None = None,
    ) -> Job:
        job = await self._load(job_id)
        update_job_progress(job, current_step, total_steps, completed_steps, estimated_remaining)
        await self.store.save(job)
        await self.events.publish(
            EventType.JOB_PROGRESS,
            f"{current_step} ({completed_steps}/{total_steps})",
            room_id=job.room_id,
            job_id=job.id,
            progress=job.progress,
        )
        return job

    # =========================================================================
    # Queries and housekeeping
    # =========================================================================

    @returns_result
    async def get_job(self, job_id: str) -> Job:
        return await self._load(job_id)

    @returns_result
    async def list_jobs(
        self,
        *,
        types: Iterable[str] | None = None,
        statuses: Iterable[str] | None = None,
        room_id: str | None = None,
        limit: int = 20,
        offset: int = 0,
    ) -> list[Job]:
        if statuses:
            try:
                statuses = [JobStatus(s).value for s in statuses]
            except ValueError as exc:
                raise ValidationError(f"Unknown job status filter: {list(statuses)}") from exc
        return await self.store.list_jobs(
            types=_validate_types(types),
            statuses=statuses,
            room_id=room_id,
            limit=limit,
            offset=offset,
        )

    @returns_result
    async def active_jobs_for_room(self, room_id: str) -> list[Job]:
        return await self.store.list_jobs(statuses=ACTIVE_STATUSES, room_id=room_id)

    @returns_result
    async def cleanup_finished(self, days: int | None = None) -> int:
        """Delete terminal jobs completed more than ``days`` ago."""
        days = settings.cleanup_completed_after_days if days is None else days
        if days < 0:
            raise ValidationError("days must be >= 0", details={"days": days})
        removed = await self.store.purge_jobs(TERMINAL_STATUSES, utcnow() - timedelta(days=days))
        logger.info("Removed %s finished jobs older than %s days", removed, days)
        return removed

    @returns_result
    async def stats(self, *, room_id: str | None = None) -> JobStats:
        return job_stats(await self.store.list_jobs(room_id=room_id))

    @returns_result
    async def pending_count(self) -> int:
        return len(await self.store.list_jobs(statuses=RUNNABLE_STATUSES))

    @returns_result
    async def queue_status(self) -> dict[str, Any]:
        now = utcnow()
        active = await self.store.list_jobs(statuses=ACTIVE_STATUSES)
        upcoming = next_jobs_to_run(active, now=now)
        return {
            "queued": sum(1 for j in active if j.status == JobStatus.QUEUED.value),
            "retrying": sum(1 for j in active if j.status == JobStatus.RETRYING.value),
            "running": sum(1 for j in active if j.status == JobStatus.RUNNING.value),
            "max_concurrent": settings.max_concurrent_jobs,
            "next_jobs": [job_summary(j, now) for j in upcoming],
        }
