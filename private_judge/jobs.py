"""
Job record state machine, retry policy and queue analytics.
"""

from __future__ import annotations

import random
from collections.abc import Iterable, Sequence
from dataclasses import dataclass, field
from datetime import UTC, datetime, timedelta
from enum import Enum
from typing import Any
from uuid import uuid4

from .config import settings
from .errors import InvalidTransition, RetryLimitExceeded, ValidationError
from .models import Job


class JobType(str, Enum):
    AI_DEBATE = "ai_debate"
    AI_JUDGE = "ai_judge"
    AI_JURY = "ai_jury"
    NOTIFICATION = "notification"


class JobStatus(str, Enum):
    QUEUED = "queued"
    RUNNING = "running"
    SUCCEEDED = "succeeded"
    FAILED = "failed"
    RETRYING = "retrying"
    CANCELLED = "cancelled"


# Lower number runs first
JOB_PRIORITY: dict[JobType, int] = {
    JobType.NOTIFICATION: 1,
    JobType.AI_JURY: 2,
    JobType.AI_JUDGE: 2,
    JobType.AI_DEBATE: 3,
}

ESTIMATED_DURATION_MINUTES: dict[JobType, float] = {
    JobType.NOTIFICATION: 0.1,
    JobType.AI_JURY: 5,
    JobType.AI_JUDGE: 3,
    JobType.AI_DEBATE: 10,
}

RETRYABLE_ERRORS: tuple[str, ...] = (
    "network_timeout",
    "rate_limit_exceeded",
    "temporary_service_unavailable",
    "openai_api_error",
    "connection_error",
)

RUNNABLE_STATUSES = frozenset({JobStatus.QUEUED.value, JobStatus.RETRYING.value})
ACTIVE_STATUSES = frozenset(
    {JobStatus.QUEUED.value, JobStatus.RUNNING.value, JobStatus.RETRYING.value}
)
TERMINAL_STATUSES = frozenset(
    {JobStatus.SUCCEEDED.value, JobStatus.FAILED.value, JobStatus.CANCELLED.value}
)


def utcnow() -> datetime:
    return datetime.now(UTC)


# =============================================================================
# Creation and transitions
# =============================================================================


def new_job(
    job_type: JobType | str,
    room_id: str | None,
    payload: dict[str, Any],
    *,
    scheduled_at: datetime | None = None,
    max_retries: int | None = None,
    now: datetime | None = None,
) -> Job:
    """Build a fresh job in ``queued``."""
    try:
        job_type = JobType(job_type)
    except ValueError as exc:
        raise ValidationError(f"Unknown job type: {job_type}") from exc

    if max_retries is None:
        max_retries = settings.default_max_retries
    if not 0 <= max_retries <= settings.max_retries_limit:
        raise ValidationError(
            f"max_retries must be between 0 and {settings.max_retries_limit}",
            details={"max_retries": max_retries},
        )

    now = now or utcnow()
    return Job(
        id=str(uuid4()),
        type=job_type.value,
        status=JobStatus.QUEUED.value,
        room_id=room_id,
        priority=JOB_PRIORITY[job_type],
        payload=payload,
        result=None,
        error_message=None,
        retry_count=0,
        max_retries=max_retries,
        progress=None,
        worker_id=None,
        scheduled_at=scheduled_at or now,
        started_at=None,
        completed_at=None,
        created_at=now,
        updated_at=now,
    )


def _require_status(job: Job, allowed: Iterable[str], action: str) -> None:
    allowed = set(allowed)
    if job.status not in allowed:
        raise InvalidTransition(
            f"Cannot {action} job {job.id} in status '{job.status}'",
            details={"job_id": job.id, "status": job.status, "allowed": sorted(allowed)},
        )


def start_job(job: Job, *, worker_id: str | None = None, now: datetime | None = None) -> Job:
    _require_status(job, RUNNABLE_STATUSES, "start")
    now = now or utcnow()
    job.status = JobStatus.RUNNING.value
    job.worker_id = worker_id
    job.started_at = now
    job.updated_at = now
    return job


def succeed_job(job: Job, result: dict[str, Any] | None = None, *, now: datetime | None = None) -> Job:
    _require_status(job, {JobStatus.RUNNING.value}, "complete")
    now = now or utcnow()
    job.status = JobStatus.SUCCEEDED.value
    job.result = result or {}
    job.error_message = None
    job.completed_at = now
    job.updated_at = now
    return job


def fail_job(job: Job, message: str, *, now: datetime | None = None) -> Job:
    _require_status(job, {JobStatus.RUNNING.value}, "fail")
    now = now or utcnow()
    job.status = JobStatus.FAILED.value
    job.result = None
    job.error_message = message
    job.completed_at = now
    job.updated_at = now
    return job


def retry_job(
    job: Job,
    *,
    now: datetime | None = None,
    rng: random.Random | None = None,
) -> int:
    """Move a failed job back to ``retrying`` and reschedule it.

    Returns the back-off delay in milliseconds. The delay is computed from the retry
    count before it is incremented, so the first retry waits one base delay.
    """
    if job.status != JobStatus.FAILED.value or job.retry_count >= job.max_retries:
        raise RetryLimitExceeded(
            f"Job {job.id} cannot be retried ({job.retry_count}/{job.max_retries}, status '{job.status}')",
            details={
                "job_id": job.id,
                "status": job.status,
                "retry_count": job.retry_count,
                "max_retries": job.max_retries,
            },
        )

    now = now or utcnow()
    delay_ms = retry_delay_ms(job.retry_count, rng=rng)
    job.retry_count += 1
    job.status = JobStatus.RETRYING.value
    job.error_message = None
    job.started_at = None
    job.completed_at = None
    job.worker_id = None
    job.scheduled_at = now + timedelta(milliseconds=delay_ms)
    job.updated_at = now
    return delay_ms


def cancel_job(job: Job, *, now: datetime | None = None, include_retrying: bool = False) -> Job:
    """Cancel a queued or running job. Room cancellation also sweeps up ``retrying`` jobs."""
    allowed = {JobStatus.QUEUED.value, JobStatus.RUNNING.value}
    if include_retrying:
        allowed.add(JobStatus.RETRYING.value)
    _require_status(job, allowed, "cancel")
    now = now or utcnow()
    job.status = JobStatus.CANCELLED.value
    job.completed_at = now
    job.updated_at = now
    return job


def update_job_progress(
    job: Job,
    current_step: str,
    total_steps: int,
    completed_steps: int,
    estimated_remaining: str | None = None,
    *,
    now: datetime | None = None,
) -> Job:
    _require_status(job, {JobStatus.RUNNING.value}, "update progress of")
    if total_steps < 1 or not 0 <= completed_steps <= total_steps:
        raise ValidationError(
            "Progress requires total_steps >= 1 and 0 <= completed_steps <= total_steps",
            details={"total_steps": total_steps, "completed_steps": completed_steps},
        )
    progress: dict[str, Any] = {
        "current_step": current_step,
        "total_steps": total_steps,
        "completed_steps": completed_steps,
    }
    if estimated_remaining is not None:
        progress["estimated_remaining"] = estimated_remaining
    job.progress = progress
    job.updated_at = now or utcnow()
    return job


# =============================================================================
# Retry policy
# =============================================================================


def is_retryable_error(message: str | None) -> bool:
    if not message:
        return False
    lowered = message.lower()
    return any(tag in lowered for tag in RETRYABLE_ERRORS)


def can_retry(job: Job) -> bool:
    return job.status == JobStatus.FAILED.value and job.retry_count < job.max_retries


def should_retry(job: Job) -> bool:
    """A failed job is rescheduled only for retryable errors with attempts left."""
    return can_retry(job) and is_retryable_error(job.error_message)


def retry_delay_ms(
    retry_count: int,
    *,
    base_delay_ms: int | None = None,
    max_delay_ms: int | None = None,
    jitter_ratio: float | None = None,
    rng: random.Random | None = None,
) -> int:
    base = settings.retry_base_delay_ms if base_delay_ms is None else base_delay_ms
    cap = settings.max_retry_delay_ms if max_delay_ms is None else max_delay_ms
    ratio = settings.retry_jitter_ratio if jitter_ratio is None else jitter_ratio

    delay = base * (2**retry_count)
    if ratio > 0:
        delay += (rng or random).uniform(0, ratio * delay)
    return int(min(delay, cap))


# =============================================================================
# Timing helpers
# =============================================================================


def estimated_duration_seconds(job: Job) -> float:
    return ESTIMATED_DURATION_MINUTES[JobType(job.type)] * 60


def progress_percentage(job: Job) -> int:
    if job.status == JobStatus.SUCCEEDED.value:
        return 100
    if not job.progress:
        return 0
    total = job.progress.get("total_steps") or 0
    if total <= 0:
        return 0
    return round(job.progress.get("completed_steps", 0) / total * 100)


def duration_seconds(job: Job) -> float | None:
    if job.started_at is None or job.completed_at is None:
        return None
    return (job.completed_at - job.started_at).total_seconds()


def wait_time_seconds(job: Job, now: datetime | None = None) -> float:
    """Time between creation and start (or now, if the job has not started)."""
    end = job.started_at or now or utcnow()
    return max(0.0, (end - job.created_at).total_seconds())


def estimated_remaining_seconds(job: Job, now: datetime | None = None) -> float:
    if job.status in TERMINAL_STATUSES:
        return 0.0
    estimate = estimated_duration_seconds(job)
    if job.status == JobStatus.RUNNING.value and job.started_at is not None:
        elapsed = ((now or utcnow()) - job.started_at).total_seconds()
        return max(0.0, estimate - elapsed)
    return estimate


def is_overdue(job: Job, now: datetime | None = None, *, threshold_seconds: int | None = None) -> bool:
    if job.status != JobStatus.RUNNING.value or job.started_at is None:
        return False
    threshold = settings.overdue_threshold_seconds if threshold_seconds is None else threshold_seconds
    elapsed = ((now or utcnow()) - job.started_at).total_seconds()
    return elapsed > estimated_duration_seconds(job) + threshold


def is_due(job: Job, now: datetime | None = None) -> bool:
    return job.status in RUNNABLE_STATUSES and job.scheduled_at <= (now or utcnow())


def job_summary(job: Job, now: datetime | None = None) -> dict[str, Any]:
    now = now or utcnow()
    return {
        "id": job.id,
        "type": job.type,
        "status": job.status,
        "room_id": job.room_id,
        "priority": job.priority,
        "retry_count": job.retry_count,
        "max_retries": job.max_retries,
        "progress": progress_percentage(job),
        "wait_time_seconds": round(wait_time_seconds(job, now), 1),
        "duration_seconds": duration_seconds(job),
        "estimated_remaining_seconds": round(estimated_remaining_seconds(job, now), 1),
        "is_overdue": is_overdue(job, now),
        "can_start": is_due(job, now),
        "error_message": job.error_message,
        "scheduled_at": job.scheduled_at.isoformat(),
    }


# =============================================================================
# Collections
# =============================================================================


def sort_jobs(jobs: Iterable[Job]) -> list[Job]:
    """Order by priority, then by scheduled time."""
    return sorted(jobs, key=lambda j: (j.priority, j.scheduled_at))


def filter_jobs(
    jobs: Iterable[Job],
    *,
    types: Iterable[str] | None = None,
    statuses: Iterable[str] | None = None,
    room_id: str | None = None,
) -> list[Job]:
    type_set = {JobType(t).value for t in types} if types else None
    status_set = {JobStatus(s).value for s in statuses} if statuses else None
    return [
        j
        for j in jobs
        if (type_set is None or j.type in type_set)
        and (status_set is None or j.status in status_set)
        and (room_id is None or j.room_id == room_id)
    ]


def next_jobs_to_run(
    jobs: Sequence[Job],
    max_concurrent: int | None = None,
    now: datetime | None = None,
) -> list[Job]:
    """Pick due jobs that fit in the remaining concurrency slots."""
    limit = settings.max_concurrent_jobs if max_concurrent is None else max_concurrent
    running = sum(1 for j in jobs if j.status == JobStatus.RUNNING.value)
    slots = max(0, limit - running)
    return sort_jobs(j for j in jobs if is_due(j, now))[:slots]


@dataclass
class JobStats:
    """Aggregate view over a set of jobs."""

    total: int = 0
    by_status: dict[str, int] = field(default_factory=dict)
    by_type: dict[str, int] = field(default_factory=dict)
    success_rate: float = 0.0
    retry_rate: float = 0.0
    average_duration_seconds: float | None = None
    overdue: int = 0
    active: int = 0

    def to_dict(self) -> dict[str, Any]:
        return {
            "total": self.total,
            "by_status": dict(self.by_status),
            "by_type": dict(self.by_type),
            "success_rate": round(self.success_rate, 2),
            "retry_rate": round(self.retry_rate, 2),
            "average_duration_seconds": (
                round(self.average_duration_seconds, 2)
                if self.average_duration_seconds is not None
                else None
            ),
            "overdue": self.overdue,
            "active": self.active,
        }


def job_stats(jobs: Sequence[Job], now: datetime | None = None) -> JobStats:
    now = now or utcnow()
    stats = JobStats(
        total=len(jobs),
        by_status={s.value: 0 for s in JobStatus},
        by_type={t.value: 0 for t in JobType},
    )
    if not jobs:
        return stats

    durations: list[float] = []
    for job in jobs:
        stats.by_status[job.status] = stats.by_status.get(job.status, 0) + 1
        stats.by_type[job.type] = stats.by_type.get(job.type, 0) + 1
        if job.status in ACTIVE_STATUSES:
            stats.active += 1
        if is_overdue(job, now):
            stats.overdue += 1
        d = duration_seconds(job)
        if d is not None:
            durations.append(d)

    succeeded = stats.by_status[JobStatus.SUCCEEDED.value]
    finished = succeeded + stats.by_status[JobStatus.FAILED.value]
    stats.success_rate = succeeded / finished * 100 if finished else 0.0
    stats.retry_rate = sum(1 for j in jobs if j.retry_count > 0) / len(jobs) * 100
    stats.average_duration_seconds = sum(durations) / len(durations) if durations else None
    return stats
