"""Cancel overdue markets so bettors can reclaim their stakes."""

from __future__ import annotations

from dataclasses import dataclass, field

import structlog

from weatherb.chain.contract import WeatherMarketContract
from weatherb.exceptions import ChainError

logger = structlog.get_logger()


@dataclass
class CancelSummary:
    cancelled: list[int] = field(default_factory=list)
    failed: list[int] = field(default_factory=list)


async def cancel_eligible_markets(contract: WeatherMarketContract, *, now_sec: float) -> CancelSummary:
    """Cancel every pending market whose resolve time has passed.

    One market failing to cancel does not stop the others.
    """
    summary = CancelSummary()
    for market in await contract.fetch_pending_markets(due_at=now_sec):
        try:
            result = await contract.cancel_market_by_settler(market.market_id)
        except ChainError as exc:
            logger.error("market_cancel_failed", market_id=market.market_id, error=str(exc))
            summary.failed.append(market.market_id)
            continue
        logger.info("market_cancelled", market_id=market.market_id, tx_hash=result.tx_hash)
        summary.cancelled.append(market.market_id)
    return summary
