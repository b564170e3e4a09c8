from datetime import timedelta
import random

import pytest

from private_judge.errors import InvalidTransition, RetryLimitExceeded, ValidationError
from private_judge.jobs import (
    JobStatus,
    JobType,
    cancel_job,
    fail_job,
    filter_jobs,
    is_overdue,
    is_retryable_error,
    job_stats,
    new_job,
    next_jobs_to_run,
    progress_percentage,
    retry_delay_ms,
    retry_job,
    should_retry,
    sort_jobs,
    start_job,
    succeed_job,
    update_job_progress,
    utcnow,
)

ROOM = "room-1"


def _job(job_type: JobType = JobType.AI_DEBATE, **kwargs) -> object:
    return new_job(job_type, ROOM, {}, **kwargs)


def test_new_job_defaults() -> None:
    job = _job()
    assert job.status == JobStatus.QUEUED.value
    assert job.retry_count == 0
    assert job.max_retries == 3
    assert job.priority == 3
    assert job.scheduled_at == job.created_at
    assert job.started_at is None
    assert job.completed_at is None


@pytest.mark.parametrize("max_retries", [-1, 11])
def test_new_job_rejects_out_of_range_max_retries(max_retries: int) -> None:
    with pytest.raises(ValidationError):
        _job(max_retries=max_retries)


def test_new_job_rejects_unknown_type() -> None:
    with pytest.raises(ValidationError):
        new_job("ai_lawyer", ROOM, {})


def test_scenario_three_retries_then_limit() -> None:
    job = _job(max_retries=3)
    for attempt in range(3):
        start_job(job, worker_id="w1")
        fail_job(job, "network_timeout")
        retry_job(job)
        assert job.retry_count == attempt + 1
        assert job.status == JobStatus.RETRYING.value

    start_job(job, worker_id="w1")
    fail_job(job, "network_timeout")
    assert job.status == JobStatus.FAILED.value

    with pytest.raises(RetryLimitExceeded):
        retry_job(job)
    assert job.retry_count == job.max_retries


@pytest.mark.parametrize("transition", [succeed_job, fail_job])
def test_settle_requires_running(transition) -> None:
    job = _job()
    args = ({},) if transition is succeed_job else ("boom",)
    with pytest.raises(InvalidTransition):
        transition(job, *args)


def test_result_and_error_never_both_set() -> None:
    job = _job()
    start_job(job)
    fail_job(job, "network_timeout")
    assert job.result is None and job.error_message == "network_timeout"

    retry_job(job)
    assert job.error_message is None
    start_job(job)
    succeed_job(job, {"ok": True})
    assert job.result == {"ok": True}
    assert job.error_message is None
    assert job.completed_at is not None


def test_retry_clears_timestamps_and_reschedules() -> None:
    now = utcnow()
    job = _job()
    start_job(job, worker_id="w1", now=now)
    fail_job(job, "rate_limit_exceeded", now=now)

    delay = retry_job(job, now=now)

    assert delay == 1000
    assert job.started_at is None
    assert job.completed_at is None
    assert job.worker_id is None
    assert job.scheduled_at == now + timedelta(milliseconds=1000)


def test_retry_only_from_failed() -> None:
    with pytest.raises(RetryLimitExceeded):
        retry_job(_job())


def test_backoff_doubles_from_pre_increment_count() -> None:
    assert [retry_delay_ms(n) for n in range(4)] == [1000, 2000, 4000, 8000]


def test_backoff_is_capped() -> None:
    assert retry_delay_ms(20) == 300_000


def test_backoff_jitter_stays_within_ratio() -> None:
    rng = random.Random(7)
    for _ in range(20):
        delay = retry_delay_ms(2, jitter_ratio=0.5, rng=rng)
        assert 4000 <= delay <= 6000


def test_cancel_only_from_queued_or_running() -> None:
    job = _job()
    cancel_job(job)
    assert job.status == JobStatus.CANCELLED.value
    assert job.completed_at is not None

    done = _job()
    start_job(done)
    succeed_job(done, {})
    with pytest.raises(InvalidTransition):
        cancel_job(done)


def test_cancel_retrying_only_when_asked() -> None:
    job = _job()
    start_job(job)
    fail_job(job, "network_timeout")
    retry_job(job)
    with pytest.raises(InvalidTransition):
        cancel_job(job)
    cancel_job(job, include_retrying=True)
    assert job.status == JobStatus.CANCELLED.value


def test_retryable_error_tags_match_case_insensitively() -> None:
    assert is_retryable_error("Upstream NETWORK_TIMEOUT after 30s")
    assert is_retryable_error("connection_error: refused")
    assert not is_retryable_error("invalid lawyer response")
    assert not is_retryable_error(None)


def test_should_retry_needs_retryable_error_and_budget() -> None:
    job = _job(max_retries=1)
    start_job(job)
    fail_job(job, "invalid payload")
    assert not should_retry(job)

    job = _job(max_retries=0)
    start_job(job)
    fail_job(job, "network_timeout")
    assert not should_retry(job)


def test_update_progress_only_while_running() -> None:
    job = _job()
    with pytest.raises(InvalidTransition):
        update_job_progress(job, "round 1", 3, 1)

    start_job(job)
    update_job_progress(job, "round 1", 3, 1, "8 minutes")
    assert job.progress == {
        "current_step": "round 1",
        "total_steps": 3,
        "completed_steps": 1,
        "estimated_remaining": "8 minutes",
    }
    assert progress_percentage(job) == 33

    with pytest.raises(ValidationError):
        update_job_progress(job, "round 4", 3, 4)


def test_priority_ordering_breaks_ties_by_schedule() -> None:
    now = utcnow()
    debate = _job(JobType.AI_DEBATE, scheduled_at=now - timedelta(minutes=5))
    jury = _job(JobType.AI_JURY, scheduled_at=now)
    judge = _job(JobType.AI_JUDGE, scheduled_at=now - timedelta(minutes=1))
    note = _job(JobType.NOTIFICATION, scheduled_at=now)

    assert sort_jobs([debate, jury, judge, note]) == [note, judge, jury, debate]


def test_next_jobs_to_run_respects_slots_and_schedule() -> None:
    now = utcnow()
    running = _job()
    start_job(running)
    later = _job(JobType.NOTIFICATION, scheduled_at=now + timedelta(minutes=5))
    due = [_job(JobType.AI_JURY, scheduled_at=now) for _ in range(3)]

    picked = next_jobs_to_run([running, later, *due], max_concurrent=3, now=now)

    assert len(picked) == 2
    assert later not in picked


def test_overdue_after_estimate_plus_threshold() -> None:
    now = utcnow()
    job = _job(JobType.AI_JUDGE)
    start_job(job, now=now - timedelta(minutes=9))
    assert is_overdue(job, now, threshold_seconds=300)
    assert not is_overdue(job, now, threshold_seconds=600)


def test_job_stats() -> None:
    ok = _job()
    start_job(ok)
    succeed_job(ok, {})
    bad = _job(JobType.AI_JURY)
    start_job(bad)
    fail_job(bad, "network_timeout")
    retry_job(bad)
    queued = _job(JobType.NOTIFICATION)

    stats = job_stats([ok, bad, queued])

    assert stats.total == 3
    assert stats.by_status[JobStatus.SUCCEEDED.value] == 1
    assert stats.by_status[JobStatus.RETRYING.value] == 1
    assert stats.by_type[JobType.AI_JURY.value] == 1
    assert stats.success_rate == 100.0
    assert stats.active == 2
    assert round(stats.retry_rate, 2) == 33.33
    assert stats.to_dict()["average_duration_seconds"] is not None


def test_filter_jobs_by_type_status_and_room() -> None:
    debate = _job(JobType.AI_DEBATE)
    jury = start_job(_job(JobType.AI_JURY), worker_id="w1")
    elsewhere = new_job(JobType.AI_JURY, "room-2", {})

    jobs = [debate, jury, elsewhere]
    assert filter_jobs(jobs, types=["ai_jury"]) == [jury, elsewhere]
    assert filter_jobs(jobs, statuses=[JobStatus.RUNNING]) == [jury]
    assert filter_jobs(jobs, types=["ai_jury"], room_id=ROOM) == [jury]
    assert filter_jobs(jobs) == jobs
    with pytest.raises(ValueError):
        filter_jobs(jobs, statuses=["paused"])
