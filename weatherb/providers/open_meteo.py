"""Open-Meteo provider: forecast API plus the historical archive for readings."""

from __future__ import annotations

from datetime import datetime, timezone
from typing import Any, Optional

import httpx

from weatherb.exceptions import ProviderError
from weatherb.providers.base import (
    ProviderHealth,
    WeatherProvider,
    WeatherReading,
    get_json,
    parse_utc,
    probe_health,
)

OPEN_METEO_FORECAST_URL = "https://api.open-meteo.com/v1/forecast"
OPEN_METEO_ARCHIVE_URL = "https://archive-api.open-meteo.com/v1/archive"

_HOURLY_PARAMS = {
    "hourly": "temperature_2m",
    "temperature_unit": "fahrenheit",
    "timezone": "UTC",
}


def first_hourly_at_or_after(data: dict[str, Any], timestamp: int) -> tuple[datetime, float]:
    """Pick the first ``(time, temperature_2m)`` pair at or after ``timestamp``."""
    target = datetime.fromtimestamp(timestamp, tz=timezone.utc)
    try:
        hourly = data["hourly"]
        pairs = zip(hourly["time"], hourly["temperature_2m"])
        for raw_time, temp in pairs:
            when = parse_utc(raw_time)
            if when >= target:
                if temp is None:
                    raise ProviderError("open-meteo: missing temperature")
                return when, float(temp)
    except (KeyError, TypeError, ValueError) as exc:
        raise ProviderError(f"open-meteo response malformed: {exc}") from exc
    raise ProviderError("open-meteo: no hourly value at/after requested time")


class OpenMeteoProvider(WeatherProvider):
    name = "open-meteo"

    def __init__(
        self,
        *,
        forecast_url: str = OPEN_METEO_FORECAST_URL,
        archive_url: str = OPEN_METEO_ARCHIVE_URL,
        timeout: float = 10.0,
        yellow_latency_ms: float = 2000.0,
        client: Optional[httpx.AsyncClient] = None,
    ) -> None:
        self.forecast_url = forecast_url
        self.archive_url = archive_url
        self.yellow_latency_ms = yellow_latency_ms
        self._client = client or httpx.AsyncClient(
            timeout=timeout, headers={"Accept": "application/json"},
        )

    async def close(self) -> None:
        await self._client.aclose()

    async def get_forecast(self, latitude: float, longitude: float, timestamp: int) -> int:
        data = await get_json(self._client, self.forecast_url, self.name, params={
            "latitude": latitude, "longitude": longitude, **_HOURLY_PARAMS,
        })
        _, temp_f = first_hourly_at_or_after(data, timestamp)
        return round(temp_f * 10)

    async def get_first_reading_at_or_after(
        self, latitude: float, longitude: float, timestamp: int,
    ) -> WeatherReading:
        day = datetime.fromtimestamp(timestamp, tz=timezone.utc).strftime("%Y-%m-%d")
        data = await get_json(self._client, self.archive_url, self.name, params={
            "latitude": latitude, "longitude": longitude,
            "start_date": day, "end_date": day, **_HOURLY_PARAMS,
        })
        when, temp_f = first_hourly_at_or_after(data, timestamp)
        return WeatherReading(
            temp_f_tenths=round(temp_f * 10),
            observed_timestamp=int(when.timestamp()),
            source=self.name,
        )

    async def health_check(self) -> ProviderHealth:
        return await probe_health(
            self._client, self.forecast_url, self.name,
            yellow_latency_ms=self.yellow_latency_ms,
            params={"latitude": 0, "longitude": 0, **_HOURLY_PARAMS},
        )
