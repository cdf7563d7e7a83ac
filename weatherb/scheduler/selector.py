"""Daily city rotation for market creation."""

from __future__ import annotations

from dataclasses import dataclass
from typing import Sequence

import structlog

from weatherb.markets.cities import CITIES
from weatherb.markets.models import City
from weatherb.store import CITY_INDEX_KEY, SharedStore

logger = structlog.get_logger()

MAX_DAILY_MARKETS = 5


@dataclass(frozen=True)
class MarketSpec:
    city: City
    city_id_bytes32: str
    resolve_time_sec: int


def forecast_tenths_to_threshold_tenths(forecast_tenths: int) -> int:
    """Round a forecast to whole degrees, still expressed in tenths."""
    return round(forecast_tenths / 10) * 10


def default_spacing_seconds(daily_market_count: int) -> int:
    hours = 24 / min(MAX_DAILY_MARKETS, max(1, daily_market_count))
    return round(hours * 3600)


def _parse_index(raw) -> int:
    if raw is None:
        return 0
    try:
        index = int(raw)
    except ValueError:
        logger.warning("city_index_malformed", raw=raw)
        return 0
    return max(index, 0)


async def select_markets_for_day(
    store: SharedStore,
    daily_market_count: int,
    base_time_sec: int,
    spacing_seconds: int,
    cities: Sequence[City] = CITIES,
) -> list[MarketSpec]:
    """Pick the next ``daily_market_count`` cities and their resolve times.

    Market ``i`` resolves at ``base_time_sec + (i + 1) * spacing_seconds``.
    The persisted rotation index advances by the batch size.
    """
    if not cities:
        raise ValueError("no cities configured")
    if daily_market_count > MAX_DAILY_MARKETS:
        raise ValueError(f"daily market count must be <= {MAX_DAILY_MARKETS}")
    if daily_market_count < 1:
        raise ValueError("daily market count must be >= 1")

    start = _parse_index(await store.get(CITY_INDEX_KEY))
    specs = []
    for i in range(daily_market_count):
        city = cities[(start + i) % len(cities)]
        specs.append(MarketSpec(
            city=city,
            city_id_bytes32=city.id_bytes32,
            resolve_time_sec=base_time_sec + (i + 1) * spacing_seconds,
        ))
    await store.set(CITY_INDEX_KEY, str(start + daily_market_count))
    return specs
