"""Settlement engine: find due markets, fetch the observation, resolve on-chain.

Three loops share one process:

* the poll loop enqueues a ``settle:{market_id}`` job for every pending
  market whose resolve time has passed;
* the settlement worker runs those jobs, at most ``concurrency`` at once;
* the outage loop probes the weather provider and, on entering outage,
  cancels overdue markets.

Admin pause and outage are deferrals: the job goes back on the queue
without using up an attempt, and nothing is written on-chain.
"""

from __future__ import annotations

import asyncio
import time
from typing import Callable, Optional, Sequence

import structlog

from weatherb.admin import AdminGate
from weatherb.alerts import TelegramAlerter
from weatherb.chain.contract import WeatherMarketContract
from weatherb.db.database import Database
from weatherb.exceptions import ChainError, ChainRevertError, HealthProbeError, JobDeferred, PermanentJobError
from weatherb.markets.cities import CITIES, find_city_by_bytes32
from weatherb.markets.models import City
from weatherb.outage import OutageController, OutageTick
from weatherb.providers.observation import ObservationSource
from weatherb.queue.jobs import Job
from weatherb.queue.payloads import QueueName, SettleMarketPayload
from weatherb.queue.worker import create_queue_runtime
from weatherb.settler.cancel import CancelSummary, cancel_eligible_markets
from weatherb.store import SharedStore

logger = structlog.get_logger()


def settlement_dedupe_key(market_id: int) -> str:
    return f"settle:{market_id}"


class SettlementEngine:

    def __init__(
        self,
        db: Database,
        store: SharedStore,
        contract: WeatherMarketContract,
        observations: ObservationSource,
        outage: OutageController,
        *,
        alerter: Optional[TelegramAlerter] = None,
        concurrency: int = 3,
        max_retries: int = 5,
        backoff_base_ms: int = 5000,
        lease_seconds: float = 300.0,
        worker_poll_interval: float = 1.0,
        defer_seconds: float = 60.0,
        cancel_on_dead_letter: bool = True,
        cancel_on_outage: bool = True,
        cities: Sequence[City] = CITIES,
        clock: Callable[[], float] = time.time,
    ) -> None:
        self.store = store
        self.admin = AdminGate(store)
        self.contract = contract
        self.observations = observations
        self.outage = outage
        self.alerter = alerter
        self.defer_seconds = defer_seconds
        self.cancel_on_dead_letter = cancel_on_dead_letter
        self.cancel_on_outage = cancel_on_outage
        self.cities = cities
        self._clock = clock
        self.runtime = create_queue_runtime(
            db,
            QueueName.SETTLEMENT,
            self.process_settlement,
            concurrency=concurrency,
            max_retries=max_retries,
            backoff_base_ms=backoff_base_ms,
            lease_seconds=lease_seconds,
            poll_interval=worker_poll_interval,
            on_dead_letter=self._on_dead_letter,
            clock=clock,
        )

    @classmethod
    def from_settings(cls, settings, db, store, contract, observations, outage,
                      alerter=None) -> "SettlementEngine":
        return cls(
            db, store, contract, observations, outage,
            alerter=alerter,
            concurrency=settings.SETTLEMENT_WORKER_CONCURRENCY,
            max_retries=settings.MAX_SETTLEMENT_RETRIES,
            backoff_base_ms=settings.SETTLEMENT_BACKOFF_MS,
            lease_seconds=settings.JOB_LEASE_SECONDS,
            worker_poll_interval=settings.WORKER_POLL_INTERVAL_SECONDS,
            defer_seconds=settings.SETTLEMENT_DEFER_SECONDS,
            cancel_on_dead_letter=settings.CANCEL_ON_DEAD_LETTER,
            cancel_on_outage=settings.CANCEL_ON_OUTAGE,
        )

    @property
    def queue(self):
        return self.runtime.queue

    # ── Poll loop ───────────────────────────────────────────────────

    async def poll_once(self, now: Optional[float] = None) -> list[int]:
        """Enqueue settlement jobs for every due market. Returns new job ids."""
        now = self._clock() if now is None else now
        admin = await self.admin.read()
        if admin.chain_writes_blocked:
            logger.info("settlement_poll_skipped_paused", paused=admin.paused,
                        settler_paused=admin.settler_paused)
            return []
        if await self.outage.is_outage():
            logger.info("settlement_poll_skipped_outage")
            return []

        due = await self.contract.fetch_pending_markets(due_at=now)
        enqueued = []
        for market in due:
            job_id = await self.queue.enqueue(
                SettleMarketPayload(market_id=market.market_id),
                dedupe_key=settlement_dedupe_key(market.market_id),
            )
            if job_id is not None:
                enqueued.append(job_id)
        if enqueued:
            logger.info("settlement_jobs_enqueued", count=len(enqueued), due=len(due))
        return enqueued

    # ── Settlement worker ───────────────────────────────────────────

    async def _check_gates(self) -> None:
        admin = await self.admin.read()
        if admin.chain_writes_blocked:
            raise JobDeferred("admin pause", delay_seconds=self.defer_seconds)
        if self.outage.probe_unknown:
            raise JobDeferred("provider health unknown", delay_seconds=self.defer_seconds)
        if await self.outage.is_outage():
            raise JobDeferred("provider outage", delay_seconds=self.defer_seconds)

    async def process_settlement(self, payload: SettleMarketPayload) -> None:
        market_id = payload.market_id
        log = logger.bind(market_id=market_id)

        await self._check_gates()

        market = await self.contract.get_market(market_id)
        if not market.is_pending:
            log.info("settlement_skipped_not_pending", status=market.status.name)
            return

        city = find_city_by_bytes32(market.city_id, self.cities)
        if city is None:
            raise PermanentJobError(f"unknown city id {market.city_id}")

        observation = await self.observations.fetch_observation(city, market.resolve_time_sec)
        if observation.temp_f_tenths < 0:
            raise PermanentJobError(
                f"observed temperature {observation.temp_f_tenths} cannot be encoded as uint256"
            )

        # The pause may have flipped while the observation was in flight.
        admin = await self.admin.read()
        if admin.chain_writes_blocked:
            raise JobDeferred("admin pause", delay_seconds=self.defer_seconds)

        result = await self.contract.resolve_market(
            market_id, observation.temp_f_tenths, observation.observed_timestamp,
        )
        log.info("market_resolved", tx_hash=result.tx_hash, city=city.id,
                 temp_tenths=observation.temp_f_tenths,
                 observed_timestamp=observation.observed_timestamp,
                 source=observation.source, has_proof=observation.proof is not None)

    async def _on_dead_letter(self, job: Job, error: BaseException) -> None:
        market_id = job.payload.market_id if job.payload is not None else None
        if self.alerter is not None:
            await self.alerter.send_dead_letter_alert(
                self.queue.name, job.dedupe_key, job.attempts + 1, str(error),
            )
        if market_id is None or not self.cancel_on_dead_letter:
            return
        if isinstance(error, ChainRevertError):
            # The contract rejected the call; its state decides, not us.
            return
        admin = await self.admin.read()
        if admin.chain_writes_blocked:
            logger.info("dead_letter_cancel_skipped_paused", market_id=market_id)
            return
        try:
            result = await self.contract.cancel_market_by_settler(market_id)
        except ChainError as exc:
            logger.error("dead_letter_cancel_failed", market_id=market_id, error=str(exc))
            return
        logger.info("market_cancelled_after_dead_letter", market_id=market_id,
                    tx_hash=result.tx_hash)

    # ── Outage loop ─────────────────────────────────────────────────

    async def outage_tick(self) -> Optional[OutageTick]:
        """Run one outage probe and apply transition side effects.

        Returns None when the probe itself failed.
        """
        try:
            tick = await self.outage.tick()
        except HealthProbeError as exc:
            logger.warning("outage_probe_failed", error=str(exc))
            return None
        if not tick.changed:
            return tick

        if tick.is_outage:
            logger.error("outage_entered", status=tick.status)
            if self.alerter is not None:
                await self.alerter.send_outage_alert(True, tick.status)
            if self.cancel_on_outage:
                await self.cancel_overdue_markets()
        else:
            logger.info("outage_exited", status=tick.status)
            if self.alerter is not None:
                await self.alerter.send_outage_alert(False, tick.status)
        return tick

    async def cancel_overdue_markets(self) -> Optional[CancelSummary]:
        admin = await self.admin.read()
        if admin.chain_writes_blocked:
            logger.info("outage_cancel_skipped_paused")
            return None
        try:
            summary = await cancel_eligible_markets(self.contract, now_sec=self._clock())
        except ChainError as exc:
            logger.error("outage_cancel_failed", error=str(exc))
            return None
        if summary.cancelled or summary.failed:
            logger.info("outage_cancel_done", cancelled=len(summary.cancelled),
                        failed=len(summary.failed))
        return summary

    # ── Loops ───────────────────────────────────────────────────────

    async def _every(self, interval: float, fn, event: str, stop: asyncio.Event) -> None:
        while not stop.is_set():
            try:
                await fn()
            except Exception as exc:
                logger.error(event, error=str(exc))
            try:
                await asyncio.wait_for(stop.wait(), timeout=interval)
            except asyncio.TimeoutError:
                pass

    async def run_forever(
        self,
        stop: asyncio.Event,
        *,
        poll_interval: float = 60.0,
        outage_interval: float = 300.0,
    ) -> None:
        await self.outage.seed()
        self.runtime.start()
        logger.info("settler_started", poll_interval_s=poll_interval,
                    concurrency=self.runtime.worker.concurrency)
        try:
            await asyncio.gather(
                self._every(outage_interval, self.outage_tick, "outage_tick_failed", stop),
                self._every(poll_interval, self.poll_once, "settlement_poll_failed", stop),
            )
        finally:
            await self.runtime.close()
