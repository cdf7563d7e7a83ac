#!/usr/bin/env python3
"""List or replay dead-lettered jobs.

Usage:
    python scripts/replay_dead_letter.py --queue settlement            # list
    python scripts/replay_dead_letter.py --queue settlement --id 12    # replay one
"""

import argparse
import asyncio

import structlog

from weatherb.utils.logging import configure_logging

configure_logging()

from config.settings import settings
from weatherb.db.database import open_database
from weatherb.queue.jobs import JobQueue
from weatherb.queue.payloads import PAYLOAD_MODELS, QueueName

logger = structlog.get_logger()


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(description="Inspect and replay dead-lettered jobs")
    parser.add_argument(
        "--queue", required=True, choices=[q.value for q in QueueName],
        help="Queue to inspect",
    )
    parser.add_argument("--id", type=int, default=None, help="Dead-letter id to replay")
    parser.add_argument("--all", action="store_true", help="Include already replayed entries")
    return parser


async def main() -> None:
    args = build_parser().parse_args()
    name = QueueName(args.queue)
    db = await open_database(settings.DATABASE_URL)
    queue = JobQueue(db, name.value, PAYLOAD_MODELS[name], max_retries=0, backoff_base_ms=1)
    try:
        if args.id is None:
            for dl in await queue.dead_letters(include_replayed=args.all):
                print(f"{dl.id:>6}  {dl.dedupe_key or '-':<28} attempts={dl.attempts} "
                      f"{dl.failure_class:<9} {dl.error}")
            return
        if await queue.replay_dead_letter(args.id):
            logger.info("replay_ok", queue=name.value, dead_letter_id=args.id)
        else:
            logger.error("replay_refused", queue=name.value, dead_letter_id=args.id)
    finally:
        await db.close()


if __name__ == "__main__":
    asyncio.run(main())
