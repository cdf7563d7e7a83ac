"""Bounded-concurrency worker draining one :class:`JobQueue`."""

from __future__ import annotations

import asyncio
from dataclasses import dataclass
from typing import Any, Awaitable, Callable, Optional

import structlog
from pydantic import BaseModel

from weatherb.db.database import Database
from weatherb.exceptions import (
    ChainRevertError,
    JobDeferred,
    PayloadValidationError,
    PermanentJobError,
)
from weatherb.queue.jobs import Job, JobQueue
from weatherb.queue.payloads import PAYLOAD_MODELS, QueueName

logger = structlog.get_logger()

Processor = Callable[[Any], Awaitable[None]]
DeadLetterHook = Callable[[Job, BaseException], Awaitable[None]]


def is_permanent(exc: BaseException) -> bool:
    """True for failures that retrying cannot fix."""
    if isinstance(exc, (PermanentJobError, PayloadValidationError)):
        return True
    return isinstance(exc, ChainRevertError) and exc.permanent


class Worker:
    """Runs at most ``concurrency`` processor invocations at once.

    ``start()`` launches a polling loop; ``run_once()`` drains whatever is
    due right now and returns, which is what tests and ``--once`` runs use.
    While a job runs its lease is renewed every ``heartbeat_interval``
    seconds (a third of the lease by default), so a job that waits on a
    slow confirmation is not handed to a second worker.
    """

    def __init__(
        self,
        queue: JobQueue,
        processor: Processor,
        *,
        concurrency: int = 1,
        poll_interval: float = 1.0,
        heartbeat_interval: Optional[float] = None,
        on_dead_letter: Optional[DeadLetterHook] = None,
    ) -> None:
        if concurrency < 1:
            raise ValueError("concurrency must be >= 1")
        self.queue = queue
        self.processor = processor
        self.concurrency = concurrency
        self.poll_interval = poll_interval
        self.heartbeat_interval = heartbeat_interval or queue.lease_seconds / 3
        self.on_dead_letter = on_dead_letter
        self._inflight: set[asyncio.Task] = set()
        self._loop_task: Optional[asyncio.Task] = None
        self._stopping: Optional[asyncio.Event] = None

    @property
    def running(self) -> bool:
        return self._loop_task is not None and not self._loop_task.done()

    # ── Lifecycle ───────────────────────────────────────────────────

    def start(self) -> None:
        if self.running:
            return
        self._stopping = asyncio.Event()
        self._loop_task = asyncio.create_task(self._run(), name=f"worker:{self.queue.name}")
        logger.info("worker_started", queue=self.queue.name, concurrency=self.concurrency)

    async def stop(self) -> None:
        """Stop claiming new jobs and wait for in-flight jobs to finish."""
        if self._stopping is not None:
            self._stopping.set()
        if self._loop_task is not None:
            await self._loop_task
            self._loop_task = None
        if self._inflight:
            await asyncio.gather(*self._inflight, return_exceptions=True)
        logger.info("worker_stopped", queue=self.queue.name)

    async def run_once(self) -> int:
        """Process every job that is due now. Returns the number processed."""
        processed = 0
        while True:
            jobs = await self.queue.claim(self.concurrency)
            if not jobs:
                return processed
            await asyncio.gather(*(self._process(job) for job in jobs))
            processed += len(jobs)

    async def _run(self) -> None:
        assert self._stopping is not None
        while not self._stopping.is_set():
            free = self.concurrency - len(self._inflight)
            jobs: list[Job] = []
            if free > 0:
                try:
                    jobs = await self.queue.claim(free)
                except Exception as exc:
                    logger.error("queue_claim_failed", queue=self.queue.name, error=str(exc))
            for job in jobs:
                task = asyncio.create_task(self._process(job))
                self._inflight.add(task)
                task.add_done_callback(self._inflight.discard)
            if len(self._inflight) >= self.concurrency:
                # All slots busy; wake up as soon as one frees.
                await asyncio.wait(set(self._inflight), timeout=self.poll_interval,
                                   return_when=asyncio.FIRST_COMPLETED)
                continue
            try:
                await asyncio.wait_for(self._stopping.wait(), timeout=self.poll_interval)
            except asyncio.TimeoutError:
                pass

    # ── Per-job handling ────────────────────────────────────────────

    async def _heartbeat(self, job: Job, log) -> None:
        while True:
            await asyncio.sleep(self.heartbeat_interval)
            try:
                if not await self.queue.renew(job):
                    log.warning("job_lease_lost")
                    return
            except Exception as exc:
                log.error("job_lease_renew_failed", error=str(exc))

    async def _process(self, job: Job) -> None:
        log = logger.bind(queue=self.queue.name, job_id=job.id,
                          dedupe_key=job.dedupe_key, attempt=job.attempts + 1)
        if job.payload_error is not None:
            try:
                await self._handle_failure(job, job.payload_error, log)
            except Exception as exc:
                log.error("job_bookkeeping_failed", error=str(exc))
            return
        heartbeat = asyncio.create_task(self._heartbeat(job, log))
        try:
            try:
                with structlog.contextvars.bound_contextvars(
                    queue=self.queue.name, job_id=job.id, dedupe_key=job.dedupe_key,
                ):
                    await self.processor(job.payload)
            except JobDeferred as exc:
                if await self.queue.defer(job, exc.delay_seconds):
                    log.info("job_deferred", reason=exc.reason, delay_s=exc.delay_seconds)
                return
            except Exception as exc:
                await self._handle_failure(job, exc, log)
                return
            if await self.queue.complete(job):
                log.info("job_completed")
        except Exception as exc:
            # Bookkeeping failed (store unavailable); the lease expiry hands
            # the job to another worker.
            log.error("job_bookkeeping_failed", error=str(exc))
        finally:
            heartbeat.cancel()

    async def _handle_failure(self, job: Job, exc: Exception, log) -> None:
        permanent = is_permanent(exc)
        outcome = await self.queue.fail(job, exc, permanent=permanent)
        if outcome.lost:
            return
        if not outcome.dead:
            log.warning("job_retry_scheduled", error=str(exc), error_type=type(exc).__name__,
                        attempts=outcome.attempts,
                        delay_ms=round(outcome.delay_seconds * 1000))
            return
        log.error("job_dead_lettered", error=str(exc), error_type=type(exc).__name__,
                  attempts=outcome.attempts,
                  failure_class="permanent" if permanent else "exhausted")
        if self.on_dead_letter is None:
            return
        try:
            await self.on_dead_letter(job, exc)
        except Exception:
            log.exception("dead_letter_hook_failed")


@dataclass
class QueueRuntime:
    """An owned queue + worker pair for one queue name."""
    queue: JobQueue
    worker: Worker

    def start(self) -> None:
        self.worker.start()

    async def close(self) -> None:
        await self.worker.stop()


def create_queue_runtime(
    db: Database,
    name: QueueName,
    processor: Processor,
    *,
    concurrency: int,
    max_retries: int,
    backoff_base_ms: int,
    lease_seconds: float = 300.0,
    poll_interval: float = 1.0,
    heartbeat_interval: Optional[float] = None,
    on_dead_letter: Optional[DeadLetterHook] = None,
    payload_model: Optional[type[BaseModel]] = None,
    clock: Optional[Callable[[], float]] = None,
) -> QueueRuntime:
    """Build the queue and its worker from explicit parameters."""
    kwargs = {} if clock is None else {"clock": clock}
    queue = JobQueue(
        db,
        name.value,
        payload_model or PAYLOAD_MODELS[name],
        max_retries=max_retries,
        backoff_base_ms=backoff_base_ms,
        lease_seconds=lease_seconds,
        **kwargs,
    )
    worker = Worker(
        queue,
        processor,
        concurrency=concurrency,
        poll_interval=poll_interval,
        heartbeat_interval=heartbeat_interval,
        on_dead_letter=on_dead_letter,
    )
    return QueueRuntime(queue=queue, worker=worker)
