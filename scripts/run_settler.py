#!/usr/bin/env python3
"""Settlement engine.

Polls the contract for due markets, resolves them through the settlement
worker, and runs the provider outage controller.

Usage:
    python scripts/run_settler.py                # continuous
    python scripts/run_settler.py --once         # one outage probe + poll + drain, then exit
"""

import argparse
import asyncio
import signal

import structlog

from weatherb.utils.logging import configure_logging

configure_logging()

from config.settings import settings
from config.validators import validate_settler_config
from weatherb.alerts import TelegramAlerter
from weatherb.chain.contract import WeatherMarketContract
from weatherb.db.database import open_database
from weatherb.outage import OutageController
from weatherb.providers import create_observation_source, create_weather_provider
from weatherb.settler.service import SettlementEngine
from weatherb.store import SharedStore

logger = structlog.get_logger()


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(description="Run the settlement engine")
    parser.add_argument(
        "--once", action="store_true",
        help="Probe health, enqueue due markets, drain the settlement queue, then exit",
    )
    parser.add_argument(
        "--poll-interval", type=float, default=None,
        help=f"Seconds between market polls (default: {settings.SETTLEMENT_POLL_INTERVAL_SECONDS:g})",
    )
    return parser


async def main() -> None:
    args = build_parser().parse_args()
    validate_settler_config(settings)

    db = await open_database(settings.DATABASE_URL)
    store = SharedStore(db)
    provider = create_weather_provider(settings)
    observations = create_observation_source(settings, provider)
    contract = WeatherMarketContract.from_settings(settings, private_key=settings.SETTLER_PRIVATE_KEY)
    outage = OutageController(store, provider, yellow_is_outage=settings.OUTAGE_ON_YELLOW)
    alerter = TelegramAlerter.from_settings(settings)
    engine = SettlementEngine.from_settings(
        settings, db, store, contract, observations, outage, alerter=alerter,
    )

    try:
        if args.once:
            await outage.seed()
            await engine.outage_tick()
            enqueued = await engine.poll_once()
            processed = await engine.runtime.worker.run_once()
            logger.info("settler_once_done", enqueued=len(enqueued), processed=processed)
            return

        stop = asyncio.Event()
        loop = asyncio.get_running_loop()
        for sig in (signal.SIGINT, signal.SIGTERM):
            loop.add_signal_handler(sig, stop.set)
        await engine.run_forever(
            stop,
            poll_interval=args.poll_interval or settings.SETTLEMENT_POLL_INTERVAL_SECONDS,
            outage_interval=settings.OUTAGE_POLL_INTERVAL_SECONDS,
        )
    finally:
        await alerter.close()
        await observations.close()
        await provider.close()
        await db.close()


if __name__ == "__main__":
    asyncio.run(main())
