"""MET Norway (api.met.no) weather provider."""

from __future__ import annotations

from datetime import datetime, timezone
from typing import Any, Optional

import httpx
import structlog

from weatherb.exceptions import ProviderError
from weatherb.providers.base import (
    ProviderHealth,
    WeatherProvider,
    WeatherReading,
    celsius_to_fahrenheit_tenths,
    get_json,
    parse_utc,
    probe_health,
)

logger = structlog.get_logger()

MET_NO_BASE_URL = "https://api.met.no/weatherapi"
FORECAST_PATH = "/locationforecast/2.0/compact"
NOWCAST_PATH = "/nowcast/2.0/complete"
STATUS_PATH = "/locationforecast/2.0/status"


def first_timeseries_at_or_after(timeseries: list[dict[str, Any]], timestamp: int) -> dict[str, Any]:
    """Return the first timeseries entry whose time is >= ``timestamp``."""
    target = datetime.fromtimestamp(timestamp, tz=timezone.utc)
    for item in timeseries:
        if parse_utc(item["time"]) >= target:
            return item
    raise ProviderError("no timeseries item at/after requested time")


def _air_temperature(item: dict[str, Any]) -> float:
    try:
        return float(item["data"]["instant"]["details"]["air_temperature"])
    except (KeyError, TypeError, ValueError) as exc:
        raise ProviderError(f"malformed timeseries item: {exc}") from exc


class MetNoProvider(WeatherProvider):
    """Reads forecasts, nowcasts and service status from MET Norway.

    MET Norway requires an identifying User-Agent on every request.
    """

    name = "met-no"

    def __init__(
        self,
        *,
        user_agent: str,
        base_url: str = MET_NO_BASE_URL,
        timeout: float = 10.0,
        yellow_latency_ms: float = 2000.0,
        client: Optional[httpx.AsyncClient] = None,
    ) -> None:
        if not user_agent:
            raise ValueError("MET Norway requires a User-Agent")
        self.base_url = base_url.rstrip("/")
        self.yellow_latency_ms = yellow_latency_ms
        self._client = client or httpx.AsyncClient(
            timeout=timeout,
            headers={"User-Agent": user_agent, "Accept": "application/json"},
        )

    async def close(self) -> None:
        await self._client.aclose()

    async def _get_timeseries(self, path: str, latitude: float, longitude: float) -> list[dict[str, Any]]:
        url = f"{self.base_url}{path}"
        data = await get_json(self._client, url, self.name,
                              params={"lat": latitude, "lon": longitude})
        try:
            return list(data["properties"]["timeseries"])
        except (KeyError, TypeError) as exc:
            raise ProviderError(f"met-no response missing timeseries for {url}") from exc

    async def get_forecast(self, latitude: float, longitude: float, timestamp: int) -> int:
        series = await self._get_timeseries(FORECAST_PATH, latitude, longitude)
        item = first_timeseries_at_or_after(series, timestamp)
        return celsius_to_fahrenheit_tenths(_air_temperature(item))

    async def get_first_reading_at_or_after(
        self, latitude: float, longitude: float, timestamp: int,
    ) -> WeatherReading:
        series = await self._get_timeseries(NOWCAST_PATH, latitude, longitude)
        item = first_timeseries_at_or_after(series, timestamp)
        return WeatherReading(
            temp_f_tenths=celsius_to_fahrenheit_tenths(_air_temperature(item)),
            observed_timestamp=int(parse_utc(item["time"]).timestamp()),
            source=self.name,
        )

    async def health_check(self) -> ProviderHealth:
        """Map the status endpoint to green/yellow/red.

        If the service cannot be reached at all the probe raises
        HealthProbeError instead of guessing a colour.
        """
        return await probe_health(self._client, f"{self.base_url}{STATUS_PATH}", self.name,
                                  yellow_latency_ms=self.yellow_latency_ms)
