"""Tests for the bounded-concurrency worker and queue runtime factory."""

import asyncio
from unittest.mock import AsyncMock

import pytest
import structlog
from sqlalchemy import select, update

from weatherb.db.database import open_database
from weatherb.db.models import QueueJob
from weatherb.exceptions import (
    ChainRevertError,
    JobDeferred,
    PayloadValidationError,
    PermanentJobError,
    TransientChainError,
)
from weatherb.queue.payloads import QueueName
from weatherb.queue.worker import create_queue_runtime, is_permanent


class FakeClock:
    def __init__(self, now: float = 1_700_000_000.0):
        self.now = now

    def __call__(self) -> float:
        return self.now

    def advance(self, seconds: float) -> None:
        self.now += seconds


@pytest.fixture
def db_url(tmp_path):
    return f"sqlite+aiosqlite:///{tmp_path / 'test_worker.db'}"


async def _make_runtime(db_url, processor, clock, **kwargs):
    db = await open_database(db_url)
    params = dict(concurrency=1, max_retries=5, backoff_base_ms=5000, poll_interval=0.01)
    params.update(kwargs)
    runtime = create_queue_runtime(db, QueueName.SETTLEMENT, processor, clock=clock, **params)
    return db, runtime


def test_is_permanent_classification():
    assert is_permanent(PermanentJobError("x"))
    assert is_permanent(ChainRevertError("InvalidStatus", reason="InvalidStatus"))
    assert not is_permanent(ChainRevertError("TooEarly", reason="TooEarly", permanent=False))
    assert not is_permanent(TransientChainError("timeout"))
    assert not is_permanent(RuntimeError("boom"))


@pytest.mark.asyncio
async def test_successful_job_is_completed(db_url):
    clock = FakeClock()
    processor = AsyncMock()
    db, runtime = await _make_runtime(db_url, processor, clock)
    await runtime.queue.enqueue({"market_id": 1}, dedupe_key="settle:1")

    processed = await runtime.worker.run_once()

    assert processed == 1
    processor.assert_awaited_once()
    assert processor.await_args.args[0].market_id == 1
    assert await runtime.queue.counts() == {"pending": 0, "active": 0, "dead": 0}
    await db.close()


@pytest.mark.asyncio
async def test_always_failing_job_retries_max_retries_times(db_url):
    """Runs max_retries + 1 times with 5s/10s/20s/40s/80s gaps, then one dead letter."""
    clock = FakeClock()
    processor = AsyncMock(side_effect=TransientChainError("rpc down"))
    hook = AsyncMock()
    db, runtime = await _make_runtime(db_url, processor, clock, on_dead_letter=hook)
    await runtime.queue.enqueue({"market_id": 1}, dedupe_key="settle:1")

    gaps = []
    assert await runtime.worker.run_once() == 1
    for expected in (5, 10, 20, 40, 80):
        clock.advance(expected - 1)
        assert await runtime.worker.run_once() == 0
        clock.advance(1)
        assert await runtime.worker.run_once() == 1
        gaps.append(expected)

    assert processor.await_count == 6
    assert gaps == [5, 10, 20, 40, 80]
    assert (await runtime.queue.counts())["dead"] == 1
    assert len(await runtime.queue.dead_letters()) == 1
    hook.assert_awaited_once()
    await db.close()


@pytest.mark.asyncio
async def test_permanent_error_dead_letters_on_first_failure(db_url):
    clock = FakeClock()
    processor = AsyncMock(side_effect=ChainRevertError("InvalidStatus", reason="InvalidStatus"))
    hook = AsyncMock()
    db, runtime = await _make_runtime(db_url, processor, clock, on_dead_letter=hook)
    await runtime.queue.enqueue({"market_id": 1})

    await runtime.worker.run_once()

    assert processor.await_count == 1
    [dl] = await runtime.queue.dead_letters()
    assert dl.failure_class == "permanent"
    hook.assert_awaited_once()
    await db.close()


@pytest.mark.asyncio
async def test_deferred_job_keeps_its_attempt_budget(db_url):
    clock = FakeClock()
    processor = AsyncMock(side_effect=[JobDeferred("outage", delay_seconds=60), None])
    db, runtime = await _make_runtime(db_url, processor, clock)
    await runtime.queue.enqueue({"market_id": 1})

    await runtime.worker.run_once()
    assert (await runtime.queue.counts())["pending"] == 1
    async with db.session() as s:
        row = (await s.execute(select(QueueJob))).scalar_one()
        assert row.attempts == 0

    clock.advance(60)
    assert await runtime.worker.run_once() == 1
    assert processor.await_count == 2
    assert await runtime.queue.counts() == {"pending": 0, "active": 0, "dead": 0}
    await db.close()


@pytest.mark.asyncio
async def test_one_job_failure_does_not_affect_others(db_url):
    clock = FakeClock()

    async def processor(payload):
        if payload.market_id == 2:
            raise PermanentJobError("bad market")

    db, runtime = await _make_runtime(db_url, processor, clock, concurrency=3)
    for market_id in (1, 2, 3):
        await runtime.queue.enqueue({"market_id": market_id}, dedupe_key=f"settle:{market_id}")

    assert await runtime.worker.run_once() == 3
    [dl] = await runtime.queue.dead_letters()
    assert dl.dedupe_key == "settle:2"
    assert await runtime.queue.counts() == {"pending": 0, "active": 0, "dead": 1}
    await db.close()


@pytest.mark.asyncio
async def test_concurrency_limit_is_respected(db_url):
    clock = FakeClock()
    in_flight = 0
    peak = 0

    async def processor(payload):
        nonlocal in_flight, peak
        in_flight += 1
        peak = max(peak, in_flight)
        await asyncio.sleep(0.02)
        in_flight -= 1

    db, runtime = await _make_runtime(db_url, processor, clock, concurrency=2)
    for market_id in range(6):
        await runtime.queue.enqueue({"market_id": market_id})

    runtime.start()
    for _ in range(200):
        if (await runtime.queue.counts())["pending"] == 0 and in_flight == 0:
            break
        await asyncio.sleep(0.01)
    await runtime.close()

    assert peak == 2
    assert await runtime.queue.counts() == {"pending": 0, "active": 0, "dead": 0}
    await db.close()


@pytest.mark.asyncio
async def test_dead_letter_hook_failure_is_contained(db_url):
    clock = FakeClock()
    processor = AsyncMock(side_effect=PermanentJobError("nope"))
    hook = AsyncMock(side_effect=RuntimeError("hook broke"))
    db, runtime = await _make_runtime(db_url, processor, clock, on_dead_letter=hook)
    await runtime.queue.enqueue({"market_id": 1})

    assert await runtime.worker.run_once() == 1
    assert (await runtime.queue.counts())["dead"] == 1
    await db.close()


@pytest.mark.asyncio
async def test_stored_payload_rejection_goes_through_dead_letter_hook(db_url):
    clock = FakeClock()
    processor = AsyncMock()
    hook = AsyncMock()
    db, runtime = await _make_runtime(db_url, processor, clock, on_dead_letter=hook)
    job_id = await runtime.queue.enqueue({"market_id": 1}, dedupe_key="settle:1")
    async with db.session() as s:
        await s.execute(update(QueueJob).where(QueueJob.id == job_id)
                        .values(payload={"kind": "settle-market", "market_id": "x"}))

    assert await runtime.worker.run_once() == 1

    processor.assert_not_awaited()
    hook.assert_awaited_once()
    job, error = hook.await_args.args
    assert job.dedupe_key == "settle:1"
    assert isinstance(error, PayloadValidationError)
    [dl] = await runtime.queue.dead_letters()
    assert dl.failure_class == "permanent"
    await db.close()


@pytest.mark.asyncio
async def test_long_running_job_keeps_its_lease(db_url):
    """A job running past its original lease is renewed, never run twice."""
    clock = FakeClock()
    release = asyncio.Event()
    runs = 0

    async def processor(payload):
        nonlocal runs
        runs += 1
        clock.advance(200)
        await asyncio.sleep(0.05)
        clock.advance(200)  # past the first lease, inside the renewed one
        await release.wait()

    db, runtime = await _make_runtime(db_url, processor, clock, concurrency=2,
                                      lease_seconds=300, heartbeat_interval=0.01)
    await runtime.queue.enqueue({"market_id": 7}, dedupe_key="settle:7")

    runtime.start()
    for _ in range(50):
        await asyncio.sleep(0.01)
    assert runs == 1
    assert await runtime.queue.claim(1) == []

    release.set()
    for _ in range(100):
        if (await runtime.queue.counts())["active"] == 0:
            break
        await asyncio.sleep(0.01)
    await runtime.close()

    assert runs == 1
    assert await runtime.queue.counts() == {"pending": 0, "active": 0, "dead": 0}
    await db.close()


@pytest.mark.asyncio
async def test_processor_logs_carry_job_context(db_url):
    clock = FakeClock()
    seen = {}

    async def processor(payload):
        seen.update(structlog.contextvars.get_contextvars())

    db, runtime = await _make_runtime(db_url, processor, clock)
    job_id = await runtime.queue.enqueue({"market_id": 3}, dedupe_key="settle:3")

    await runtime.worker.run_once()

    assert seen == {"queue": "settlement", "job_id": job_id, "dedupe_key": "settle:3"}
    assert structlog.contextvars.get_contextvars() == {}
    await db.close()
