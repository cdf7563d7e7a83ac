from weatherb.scheduler.selector import (
    MarketSpec,
    default_spacing_seconds,
    forecast_tenths_to_threshold_tenths,
    select_markets_for_day,
)
from weatherb.scheduler.service import MarketScheduler, creation_dedupe_key

__all__ = [
    "MarketScheduler",
    "MarketSpec",
    "creation_dedupe_key",
    "default_spacing_seconds",
    "forecast_tenths_to_threshold_tenths",
    "select_markets_for_day",
]
