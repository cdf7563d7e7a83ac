"""Durable job queue shared by every process connected to the same database.

Jobs move ``pending -> active -> (deleted | pending | dead)``. Claims use a
compare-and-set update on the row, so two workers (in one process or in
several) can never both run the same job. Each claim stamps a fresh
``claim_token``; completing, failing, deferring and renewing only touch the
row while that token still owns it. An ``active`` job whose lease has
expired belongs to a crashed worker and becomes claimable again, which makes
delivery at-least-once.
"""

from __future__ import annotations

import time
import uuid
from dataclasses import dataclass
from datetime import datetime
from typing import Any, Callable, Optional

import structlog
from pydantic import BaseModel
from sqlalchemy import and_, delete, func, or_, select, update
from sqlalchemy.exc import IntegrityError

from weatherb.db.database import Database
from weatherb.db.models import DeadLetter, QueueJob
from weatherb.exceptions import PayloadValidationError
from weatherb.queue.payloads import parse_payload
from weatherb.utils.backoff import exponential_backoff_seconds

logger = structlog.get_logger()

PENDING = "pending"
ACTIVE = "active"
DEAD = "dead"


@dataclass(slots=True)
class Job:
    """A claimed job, handed to the worker."""
    id: int
    queue: str
    dedupe_key: Optional[str]
    payload: Optional[BaseModel]
    attempts: int  # failed attempts so far
    claim_token: str = ""
    payload_error: Optional[PayloadValidationError] = None


@dataclass(slots=True)
class FailureOutcome:
    dead: bool
    attempts: int
    delay_seconds: float = 0.0
    lost: bool = False  # another claim owns the row now; nothing was written


class JobQueue:
    """One named queue with its own retry ceiling and backoff base.

    ``max_retries`` counts retries after the first attempt: a job that fails
    every time runs ``max_retries + 1`` times before it is dead-lettered.
    """

    def __init__(
        self,
        db: Database,
        name: str,
        payload_model: type[BaseModel],
        *,
        max_retries: int,
        backoff_base_ms: int,
        lease_seconds: float = 300.0,
        clock: Callable[[], float] = time.time,
    ) -> None:
        if max_retries < 0:
            raise ValueError("max_retries must be >= 0")
        self._db = db
        self.name = name
        self.payload_model = payload_model
        self.max_retries = max_retries
        self.backoff_base_ms = backoff_base_ms
        self.lease_seconds = lease_seconds
        self._clock = clock

    # ── Producer side ───────────────────────────────────────────────

    async def enqueue(
        self,
        payload: Any,
        *,
        dedupe_key: Optional[str] = None,
        delay_seconds: float = 0.0,
    ) -> Optional[int]:
        """Append a job. Returns its id, or None if ``dedupe_key`` is already taken.

        A key stays taken while its job is pending, active or dead-lettered.
        Raises PayloadValidationError before anything is stored.
        """
        model = parse_payload(self.payload_model, payload)
        now = self._clock()
        try:
            async with self._db.session() as s:
                if dedupe_key is not None:
                    existing = await s.execute(
                        select(QueueJob.id, QueueJob.state).where(
                            QueueJob.queue == self.name,
                            QueueJob.dedupe_key == dedupe_key,
                        )
                    )
                    row = existing.first()
                    if row is not None:
                        logger.info("job_deduplicated", queue=self.name,
                                    dedupe_key=dedupe_key, existing_id=row.id,
                                    existing_state=row.state)
                        return None
                job = QueueJob(
                    queue=self.name,
                    dedupe_key=dedupe_key,
                    payload=model.model_dump(mode="json"),
                    state=PENDING,
                    attempts=0,
                    run_at=now + delay_seconds,
                )
                s.add(job)
                await s.flush()
                job_id = job.id
        except IntegrityError:
            # Another producer inserted the same key between our check and insert.
            logger.info("job_deduplicated", queue=self.name, dedupe_key=dedupe_key)
            return None
        logger.debug("job_enqueued", queue=self.name, job_id=job_id, dedupe_key=dedupe_key)
        return job_id

    # ── Consumer side ───────────────────────────────────────────────

    def _claimable(self, now: float):
        return and_(
            QueueJob.queue == self.name,
            or_(
                and_(QueueJob.state == PENDING, QueueJob.run_at <= now),
                and_(QueueJob.state == ACTIVE, QueueJob.locked_until < now),
            ),
        )

    @staticmethod
    def _owned(job: Job):
        return and_(
            QueueJob.id == job.id,
            QueueJob.state == ACTIVE,
            QueueJob.claim_token == job.claim_token,
        )

    async def claim(self, limit: int) -> list[Job]:
        """Claim up to ``limit`` due jobs for this process.

        A job whose stored payload no longer validates is still returned,
        with ``payload_error`` set, so the worker dead-letters it through
        the normal failure path.
        """
        if limit <= 0:
            return []
        now = self._clock()
        async with self._db.session() as s:
            result = await s.execute(
                select(QueueJob.id)
                .where(self._claimable(now))
                .order_by(QueueJob.run_at, QueueJob.id)
                .limit(limit)
            )
            candidates = list(result.scalars().all())

        claimed: list[Job] = []
        for job_id in candidates:
            token = uuid.uuid4().hex
            async with self._db.session() as s:
                res = await s.execute(
                    update(QueueJob)
                    .where(QueueJob.id == job_id, self._claimable(now))
                    .values(state=ACTIVE, locked_until=now + self.lease_seconds,
                            claim_token=token)
                )
                if res.rowcount != 1:
                    continue  # lost the race to another worker
                row = await s.get(QueueJob, job_id)
                raw_payload = row.payload
                dedupe_key = row.dedupe_key
                attempts = row.attempts
            job = Job(id=job_id, queue=self.name, dedupe_key=dedupe_key,
                      payload=None, attempts=attempts, claim_token=token)
            try:
                job.payload = parse_payload(self.payload_model, raw_payload)
            except PayloadValidationError as exc:
                logger.error("job_payload_rejected", queue=self.name, job_id=job_id,
                             error=str(exc))
                job.payload_error = exc
            claimed.append(job)
        return claimed

    async def renew(self, job: Job) -> bool:
        """Push the lease of a running job forward. False if it is no longer ours."""
        async with self._db.session() as s:
            res = await s.execute(
                update(QueueJob)
                .where(self._owned(job))
                .values(locked_until=self._clock() + self.lease_seconds)
            )
        return res.rowcount == 1

    async def complete(self, job: Job) -> bool:
        """Delete a successfully processed job. False if the lease was lost."""
        async with self._db.session() as s:
            res = await s.execute(delete(QueueJob).where(self._owned(job)))
        if res.rowcount != 1:
            logger.warning("job_lease_lost", queue=self.name, job_id=job.id, op="complete")
            return False
        return True

    async def fail(
        self,
        job: Job,
        error: BaseException,
        *,
        permanent: bool = False,
    ) -> FailureOutcome:
        """Record a failed attempt and either schedule a retry or dead-letter."""
        attempts = job.attempts + 1
        now = self._clock()
        message = f"{type(error).__name__}: {error}"
        if permanent or attempts > self.max_retries:
            failure_class = "permanent" if permanent else "exhausted"
            async with self._db.session() as s:
                row = (await s.execute(select(QueueJob).where(self._owned(job)))).scalar_one_or_none()
                if row is None:
                    logger.warning("job_lease_lost", queue=self.name, job_id=job.id, op="fail")
                    return FailureOutcome(dead=False, attempts=attempts, lost=True)
                row.state = DEAD
                row.attempts = attempts
                row.locked_until = None
                row.claim_token = None
                row.last_error = message
                s.add(DeadLetter(
                    job_id=job.id,
                    queue=self.name,
                    dedupe_key=job.dedupe_key,
                    payload=row.payload,
                    attempts=attempts,
                    failure_class=failure_class,
                    error=message,
                ))
            return FailureOutcome(dead=True, attempts=attempts)

        delay = exponential_backoff_seconds(attempts, self.backoff_base_ms)
        async with self._db.session() as s:
            res = await s.execute(
                update(QueueJob)
                .where(self._owned(job))
                .values(state=PENDING, attempts=attempts, run_at=now + delay,
                        locked_until=None, claim_token=None, last_error=message)
            )
        if res.rowcount != 1:
            logger.warning("job_lease_lost", queue=self.name, job_id=job.id, op="fail")
            return FailureOutcome(dead=False, attempts=attempts, lost=True)
        return FailureOutcome(dead=False, attempts=attempts, delay_seconds=delay)

    async def defer(self, job: Job, delay_seconds: float) -> bool:
        """Return a job to the queue without consuming an attempt."""
        async with self._db.session() as s:
            res = await s.execute(
                update(QueueJob)
                .where(self._owned(job))
                .values(state=PENDING, run_at=self._clock() + delay_seconds,
                        locked_until=None, claim_token=None)
            )
        if res.rowcount != 1:
            logger.warning("job_lease_lost", queue=self.name, job_id=job.id, op="defer")
            return False
        return True

    # ── Operator inspection ─────────────────────────────────────────

    async def dead_letters(self, *, include_replayed: bool = False,
                           limit: int = 100) -> list[DeadLetter]:
        async with self._db.session() as s:
            q = select(DeadLetter).where(DeadLetter.queue == self.name)
            if not include_replayed:
                q = q.where(DeadLetter.replayed_at.is_(None))
            result = await s.execute(q.order_by(DeadLetter.id.desc()).limit(limit))
            return list(result.scalars().all())

    async def replay_dead_letter(self, dead_letter_id: int) -> bool:
        """Put a dead-lettered job back on the queue with a fresh attempt budget."""
        now = self._clock()
        async with self._db.session() as s:
            dl = await s.get(DeadLetter, dead_letter_id)
            if dl is None or dl.queue != self.name or dl.replayed_at is not None:
                return False
            row = await s.get(QueueJob, dl.job_id)
            if row is not None and row.state != DEAD:
                return False
            if row is None:
                s.add(QueueJob(queue=self.name, dedupe_key=dl.dedupe_key,
                               payload=dl.payload, state=PENDING, attempts=0, run_at=now))
            else:
                row.state = PENDING
                row.attempts = 0
                row.run_at = now
                row.last_error = None
            dl.replayed_at = datetime.utcnow()
        logger.info("dead_letter_replayed", queue=self.name, dead_letter_id=dead_letter_id)
        return True

    async def counts(self) -> dict[str, int]:
        """Number of jobs per state on this queue."""
        async with self._db.session() as s:
            result = await s.execute(
                select(QueueJob.state, func.count())
                .where(QueueJob.queue == self.name)
                .group_by(QueueJob.state)
            )
            counts = {PENDING: 0, ACTIVE: 0, DEAD: 0}
            counts.update({state: n for state, n in result.all()})
            return counts
