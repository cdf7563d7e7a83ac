#!/usr/bin/env python3
"""Daily market creation.

Fires on SCHEDULE_TIME_CRON (UTC), picks the day's cities and enqueues one
creation job per city; the creation worker opens each market on-chain.

Usage:
    python scripts/run_scheduler.py              # cron loop + creation worker
    python scripts/run_scheduler.py --once       # one tick now, drain the queue, exit
"""

import argparse
import asyncio
import signal

import structlog

from weatherb.utils.logging import configure_logging

configure_logging()

from config.settings import settings
from config.validators import validate_scheduler_config
from weatherb.chain.contract import WeatherMarketContract
from weatherb.db.database import open_database
from weatherb.providers import create_weather_provider
from weatherb.scheduler.service import MarketScheduler
from weatherb.store import SharedStore

logger = structlog.get_logger()


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(description="Run the market creation scheduler")
    parser.add_argument(
        "--once", action="store_true",
        help="Run a single schedule tick now, process the creation jobs, then exit",
    )
    return parser


async def main() -> None:
    args = build_parser().parse_args()
    validate_scheduler_config(settings)

    db = await open_database(settings.DATABASE_URL)
    store = SharedStore(db)
    provider = create_weather_provider(settings)
    contract = WeatherMarketContract.from_settings(settings, private_key=settings.SCHEDULER_PRIVATE_KEY)
    scheduler = MarketScheduler.from_settings(settings, db, store, provider, contract)

    try:
        if args.once:
            enqueued = await scheduler.run_tick()
            processed = await scheduler.runtime.worker.run_once()
            logger.info("scheduler_once_done", enqueued=len(enqueued), processed=processed)
            return

        stop = asyncio.Event()
        loop = asyncio.get_running_loop()
        for sig in (signal.SIGINT, signal.SIGTERM):
            loop.add_signal_handler(sig, stop.set)
        logger.info("scheduler_start", cron=settings.SCHEDULE_TIME_CRON,
                    daily_market_count=settings.DAILY_MARKET_COUNT)
        await scheduler.run_forever(stop)
    finally:
        await provider.close()
        await db.close()


if __name__ == "__main__":
    asyncio.run(main())
