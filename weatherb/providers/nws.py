"""US National Weather Service (api.weather.gov) provider.

Every lookup starts at ``/points/{lat},{lon}``, which names the hourly
forecast URL and the observation stations for that grid point.
"""

from __future__ import annotations

from datetime import datetime, timezone
from typing import Any, Optional

import httpx

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

NWS_BASE_URL = "https://api.weather.gov"


class NwsProvider(WeatherProvider):
    name = "nws"

    def __init__(
        self,
        *,
        user_agent: str,
        base_url: str = NWS_BASE_URL,
        timeout: float = 10.0,
        yellow_latency_ms: float = 2000.0,
        client: Optional[httpx.AsyncClient] = None,
    ) -> None:
        if not user_agent:
            raise ValueError("api.weather.gov requires a User-Agent")
        self.base_url = base_url.rstrip("/")
        self.yellow_latency_ms = yellow_latency_ms
        self._client = client or httpx.AsyncClient(
            timeout=timeout,
            headers={"User-Agent": user_agent, "Accept": "application/geo+json"},
        )

    async def close(self) -> None:
        await self._client.aclose()

    async def _point(self, latitude: float, longitude: float) -> dict[str, Any]:
        data = await get_json(self._client, f"{self.base_url}/points/{latitude},{longitude}", self.name)
        try:
            props = data["properties"]
            return {"forecast_hourly": props["forecastHourly"],
                    "stations": props["observationStations"]}
        except (KeyError, TypeError) as exc:
            raise ProviderError(f"nws points response malformed: {exc}") from exc

    async def get_forecast(self, latitude: float, longitude: float, timestamp: int) -> int:
        point = await self._point(latitude, longitude)
        data = await get_json(self._client, point["forecast_hourly"], self.name)
        target = datetime.fromtimestamp(timestamp, tz=timezone.utc)
        try:
            periods = data["properties"]["periods"]
            period = next((p for p in periods if parse_utc(p["startTime"]) >= target), None)
            if period is None:
                raise ProviderError("nws: no forecast period at/after requested time")
            if period["temperatureUnit"] != "F":
                raise ProviderError(f"nws: unexpected temperature unit {period['temperatureUnit']}")
            return round(float(period["temperature"]) * 10)
        except (KeyError, TypeError, ValueError) as exc:
            raise ProviderError(f"nws forecast response malformed: {exc}") from exc

    async def get_first_reading_at_or_after(
        self, latitude: float, longitude: float, timestamp: int,
    ) -> WeatherReading:
        point = await self._point(latitude, longitude)
        stations = await get_json(self._client, point["stations"], self.name)
        try:
            station_url = stations["features"][0]["id"]
        except (KeyError, IndexError, TypeError) as exc:
            raise ProviderError("nws: no observation stations for point") from exc

        start = datetime.fromtimestamp(timestamp, tz=timezone.utc)
        data = await get_json(
            self._client, f"{station_url}/observations", self.name,
            params={"start": start.strftime("%Y-%m-%dT%H:%M:%SZ"), "limit": 10},
        )
        try:
            features = data["features"]
            observed = [
                (parse_utc(f["properties"]["timestamp"]), f["properties"].get("temperature"))
                for f in features
            ]
        except (KeyError, TypeError, ValueError) as exc:
            raise ProviderError(f"nws observations response malformed: {exc}") from exc
        # The API returns newest first.
        for when, temperature in sorted(observed, key=lambda pair: pair[0]):
            if when < start:
                continue
            celsius = (temperature or {}).get("value")
            if celsius is None:
                raise ProviderError("nws: observation missing temperature")
            return WeatherReading(
                temp_f_tenths=celsius_to_fahrenheit_tenths(float(celsius)),
                observed_timestamp=int(when.timestamp()),
                source=self.name,
            )
        raise ProviderError("nws: no observation at/after requested time")

    async def health_check(self) -> ProviderHealth:
        return await probe_health(self._client, f"{self.base_url}/", self.name,
                                  yellow_latency_ms=self.yellow_latency_ms)
