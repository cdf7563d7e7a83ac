"""Cron-driven market creation.

Each cron fire selects the day's cities and enqueues one creation job per
city. The creation worker then forecasts the temperature at resolve time and
opens the market on-chain.
"""

from __future__ import annotations

import asyncio
import time
from datetime import datetime, timezone
from typing import Callable, Optional, Sequence

import structlog
from croniter import croniter

from weatherb.admin import AdminGate
from weatherb.chain.abi import ZERO_ADDRESS
from weatherb.chain.contract import WeatherMarketContract
from weatherb.db.database import Database
from weatherb.exceptions import HealthProbeError, JobDeferred, PermanentJobError, ProviderError
from weatherb.markets.cities import CITIES
from weatherb.markets.models import City
from weatherb.providers.base import WeatherProvider
from weatherb.queue.payloads import CreateMarketPayload, QueueName
from weatherb.queue.worker import create_queue_runtime
from weatherb.scheduler.selector import (
    default_spacing_seconds,
    forecast_tenths_to_threshold_tenths,
    select_markets_for_day,
)
from weatherb.store import OUTAGE_KEY, SharedStore

logger = structlog.get_logger()

LAST_BATCH_DATE_KEY = "weatherb:scheduler:lastBatchDate"


def creation_dedupe_key(base_time_sec: int, slot: int) -> str:
    day = datetime.fromtimestamp(base_time_sec, tz=timezone.utc).strftime("%Y-%m-%d")
    return f"create:{day}:{slot}"


class MarketScheduler:
    """Owns the market-creation queue and the daily cron tick."""

    def __init__(
        self,
        db: Database,
        store: SharedStore,
        provider: WeatherProvider,
        contract: WeatherMarketContract,
        *,
        daily_market_count: int = 5,
        spacing_seconds: Optional[int] = None,
        cron_expr: str = "0 0 * * *",
        max_retries: int = 3,
        backoff_base_ms: int = 5000,
        lease_seconds: float = 300.0,
        poll_interval: float = 1.0,
        defer_seconds: float = 60.0,
        cities: Sequence[City] = CITIES,
        clock: Callable[[], float] = time.time,
    ) -> None:
        if not croniter.is_valid(cron_expr):
            raise ValueError(f"invalid cron expression: {cron_expr}")
        self.store = store
        self.admin = AdminGate(store)
        self.provider = provider
        self.contract = contract
        self.daily_market_count = daily_market_count
        self.spacing_seconds = spacing_seconds or default_spacing_seconds(daily_market_count)
        self.cron_expr = cron_expr
        self.defer_seconds = defer_seconds
        self.cities = cities
        self._clock = clock
        self.runtime = create_queue_runtime(
            db,
            QueueName.MARKET_CREATION,
            self.process_creation,
            concurrency=1,
            max_retries=max_retries,
            backoff_base_ms=backoff_base_ms,
            lease_seconds=lease_seconds,
            poll_interval=poll_interval,
            clock=clock,
        )

    @classmethod
    def from_settings(cls, settings, db, store, provider, contract) -> "MarketScheduler":
        return cls(
            db, store, provider, contract,
            daily_market_count=settings.DAILY_MARKET_COUNT,
            spacing_seconds=settings.market_spacing_seconds,
            cron_expr=settings.SCHEDULE_TIME_CRON,
            max_retries=settings.CREATION_MAX_RETRIES,
            backoff_base_ms=settings.CREATION_BACKOFF_MS,
            lease_seconds=settings.JOB_LEASE_SECONDS,
            poll_interval=settings.WORKER_POLL_INTERVAL_SECONDS,
        )

    @property
    def queue(self):
        return self.runtime.queue

    # ── Cron tick ───────────────────────────────────────────────────

    async def run_tick(self, now: Optional[float] = None) -> list[int]:
        """Enqueue the day's creation jobs. Returns the ids actually enqueued."""
        now = self._clock() if now is None else now
        base_time_sec = int(now)
        day = datetime.fromtimestamp(base_time_sec, tz=timezone.utc).strftime("%Y-%m-%d")
        log = logger.bind(day=day)

        admin = await self.admin.read()
        if admin.chain_writes_blocked:
            log.info("schedule_skipped_paused", paused=admin.paused,
                     settler_paused=admin.settler_paused)
            return []

        if await self.store.get(OUTAGE_KEY) is not None:
            log.warning("schedule_skipped_outage")
            return []
        try:
            health = await self.provider.health_check()
        except HealthProbeError as exc:
            log.warning("schedule_skipped_health_unknown", error=str(exc))
            return []
        if health.status == "red":
            log.warning("schedule_skipped_provider_red", error=health.error_message)
            return []

        if await self.store.get(LAST_BATCH_DATE_KEY) == day:
            log.info("schedule_already_ran")
            return []

        specs = await select_markets_for_day(
            self.store, self.daily_market_count, base_time_sec, self.spacing_seconds,
            cities=self.cities,
        )
        enqueued = []
        for slot, spec in enumerate(specs):
            payload = CreateMarketPayload(
                city_id=spec.city.id,
                city_name=spec.city.name,
                latitude=spec.city.latitude,
                longitude=spec.city.longitude,
                city_id_bytes32=spec.city_id_bytes32,
                resolve_time_sec=spec.resolve_time_sec,
            )
            job_id = await self.queue.enqueue(
                payload, dedupe_key=creation_dedupe_key(base_time_sec, slot),
            )
            if job_id is not None:
                enqueued.append(job_id)
        await self.store.set(LAST_BATCH_DATE_KEY, day)
        log.info("creation_jobs_enqueued", count=len(enqueued),
                 spacing_s=self.spacing_seconds,
                 cities=[s.city.id for s in specs])
        return enqueued

    # ── Creation worker ─────────────────────────────────────────────

    async def process_creation(self, payload: CreateMarketPayload) -> None:
        log = logger.bind(city=payload.city_id, resolve_time=payload.resolve_time_sec)

        admin = await self.admin.read()
        if admin.chain_writes_blocked:
            raise JobDeferred("admin pause", delay_seconds=self.defer_seconds)

        # A previous attempt may have timed out waiting for a receipt that
        # later landed; createMarket itself accepts duplicates.
        existing = await self.contract.find_market(
            payload.city_id_bytes32, payload.resolve_time_sec,
        )
        if existing is not None:
            log.info("market_already_created", market_id=existing.market_id,
                     status=existing.status.name)
            return

        health = await self.provider.health_check()
        if health.status == "red":
            raise ProviderError(f"provider health is red: {health.error_message or 'unknown'}")

        forecast = await self.provider.get_forecast(
            payload.latitude, payload.longitude, payload.resolve_time_sec,
        )
        threshold = forecast_tenths_to_threshold_tenths(forecast)
        if threshold < 0:
            raise PermanentJobError(f"threshold {threshold} cannot be encoded as uint256")

        result = await self.contract.create_market(
            payload.city_id_bytes32, payload.resolve_time_sec, threshold, ZERO_ADDRESS,
        )
        log.info("market_created", market_id=result.return_value, tx_hash=result.tx_hash,
                 threshold_tenths=threshold, forecast_tenths=forecast)

    # ── Loop ────────────────────────────────────────────────────────

    def next_fire_time(self, after: datetime) -> datetime:
        """Next cron fire strictly after ``after``, in UTC."""
        if after.tzinfo is None:
            after = after.replace(tzinfo=timezone.utc)
        return croniter(self.cron_expr, after.astimezone(timezone.utc)).get_next(datetime)

    async def run_forever(self, stop: asyncio.Event) -> None:
        """Fire ``run_tick`` on the cron schedule until ``stop`` is set."""
        self.runtime.start()
        try:
            while not stop.is_set():
                now = datetime.fromtimestamp(self._clock(), tz=timezone.utc)
                fire_at = self.next_fire_time(now)
                delay = max(0.0, (fire_at - now).total_seconds())
                logger.info("schedule_next_fire", fire_at=fire_at.isoformat())
                try:
                    await asyncio.wait_for(stop.wait(), timeout=delay)
                    break
                except asyncio.TimeoutError:
                    pass
                try:
                    await self.run_tick(fire_at.timestamp())
                except Exception as exc:
                    logger.error("schedule_tick_failed", error=str(exc))
        finally:
            await self.runtime.close()
