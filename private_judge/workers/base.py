"""Polling job worker base class."""

from __future__ import annotations

import asyncio
import logging
import signal
import socket
import time
from collections.abc import Iterable
from typing import Any

from ..config import settings
from ..errors import InvalidTransition
from ..events import EventEmitter, event_bus
from ..job_queue import JobQueue
from ..jobs import JobStatus, JobType
from ..lifecycle import RoomLifecycle
from ..models import Job
from ..store import StoreFactory

logger = logging.getLogger(__name__)


class JobWorker:
    """Base worker that polls the job queue and executes one job at a time.

    Each step runs in its own store scope, so with the SQL store the claim is
    committed before any work starts and the settlement is committed on its own.
    """

    types: tuple[JobType, ...] = ()

    def __init__(
        self,
        store_factory: StoreFactory,
        *,
        worker_id: str | None = None,
        types: Iterable[JobType | str] | None = None,
        emitter: EventEmitter | None = None,
        poll_interval: float | None = None,
    ) -> None:
        self.store_factory = store_factory
        self.worker_id = worker_id or f"{type(self).__name__.lower()}-{socket.gethostname()}-{int(time.time())}"
        if types is not None:
            self.types = tuple(JobType(t) for t in types)
        self.events = emitter or event_bus
        self.poll_interval = (
            settings.worker_poll_interval_seconds if poll_interval is None else poll_interval
        )
        self.shutdown_requested = False

    def _install_signal_handlers(self) -> None:
        def _handle_signal(signum: int, frame: object) -> None:
            logger.info("Worker %s received signal %s, shutting down", self.worker_id, signum)
            self.shutdown_requested = True

        signal.signal(signal.SIGTERM, _handle_signal)
        signal.signal(signal.SIGINT, _handle_signal)

    def _queue(self, store: Any) -> JobQueue:
        return JobQueue(store, emitter=self.events)

    async def process(self, job: Job) -> dict[str, Any]:
        """Override in subclasses to execute a job and return its result."""
        raise NotImplementedError

    async def claim(self) -> Job | None:
        """Take ownership of the next runnable job, skipping ones other workers won."""
        async with self.store_factory() as store:
            queue = self._queue(store)
            candidates = (
                await queue.claim_next([t.value for t in self.types], limit=settings.claim_limit_max)
            ).unwrap()
            for candidate in candidates:
                started = await queue.begin_execution(candidate.id, self.worker_id)
                if started.ok:
                    return started.value
                logger.debug("Job %s skipped: %s", candidate.id, started.error)
        return None

    async def ensure_running(self, job_id: str) -> None:
        """Raise if the job was cancelled or otherwise moved while we were working."""
        async with self.store_factory() as store:
            job = await store.get(Job, job_id)
            if job is None or job.status != JobStatus.RUNNING.value:
                raise InvalidTransition(
                    f"Job {job_id} is no longer running",
                    details={"job_id": job_id, "status": job.status if job else None},
                )

    async def report_progress(self, job_id: str, step: str, total: int, completed: int) -> None:
        async with self.store_factory() as store:
            result = await self._queue(store).update_progress(job_id, step, total, completed)
            if not result.ok:
                logger.debug("Progress update for job %s skipped: %s", job_id, result.error)

    async def settle(self, job: Job, *, result: dict[str, Any] | None = None, error: str | None = None) -> None:
        async with self.store_factory() as store:
            queue = self._queue(store)
            if error is None:
                settled = await queue.complete_execution(job.id, result)
            else:
                settled = await queue.fail_execution(job.id, error)
            if not settled.ok:
                # Cancelled while running: the outcome is discarded.
                logger.info("Result of job %s discarded: %s", job.id, settled.error)
                return
            finished = await RoomLifecycle(store, queue=queue, emitter=self.events).on_job_finished(job.id)
            if not finished.ok:
                logger.warning("Lifecycle update for job %s failed: %s", job.id, finished.error)

    async def run_once(self) -> Job | None:
        """Claim and execute a single job. Returns the job, or None when idle."""
        job = await self.claim()
        if job is None:
            return None

        logger.info("Worker %s running %s job %s", self.worker_id, job.type, job.id)
        try:
            result = await self.process(job)
        except Exception as exc:
            logger.exception("Job %s failed", job.id)
            await self.settle(job, error=str(exc) or type(exc).__name__)
        else:
            await self.settle(job, result=result)
        return job

    async def run_forever(self) -> None:
        self._install_signal_handlers()
        logger.info("Worker %s polling for %s", self.worker_id, [t.value for t in self.types] or "all")

        while not self.shutdown_requested:
            job = await self.run_once()
            if job is None:
                await asyncio.sleep(self.poll_interval)
