from __future__ import annotations

import time
from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Any, Literal, Optional

import httpx

from weatherb.exceptions import HealthProbeError, ProviderError

HealthStatus = Literal["green", "yellow", "red"]
HEALTH_STATUSES: tuple[str, ...] = ("green", "yellow", "red")


@dataclass(frozen=True)
class ProviderHealth:
    status: HealthStatus
    latency_ms: float
    last_check: float = field(default_factory=time.time)
    error_message: Optional[str] = None


@dataclass(frozen=True)
class WeatherReading:
    """A single observation, in tenths of a degree Fahrenheit."""
    temp_f_tenths: int
    observed_timestamp: int  # unix seconds
    source: str


def celsius_to_fahrenheit_tenths(celsius: float) -> int:
    fahrenheit = celsius * 9 / 5 + 32
    return round(fahrenheit * 10)


def parse_utc(value: str) -> datetime:
    """ISO-8601 timestamp to an aware UTC datetime; naive values are taken as UTC."""
    parsed = datetime.fromisoformat(value.replace("Z", "+00:00"))
    if parsed.tzinfo is None:
        parsed = parsed.replace(tzinfo=timezone.utc)
    return parsed


async def get_json(
    client: httpx.AsyncClient, url: str, source: str, params: Optional[dict[str, Any]] = None,
) -> Any:
    """GET ``url`` and decode JSON, mapping every failure to ProviderError."""
    try:
        resp = await client.get(url, params=params)
        resp.raise_for_status()
        return resp.json()
    except httpx.HTTPError as exc:
        raise ProviderError(f"{source} request failed for {url}: {exc}") from exc
    except ValueError as exc:
        raise ProviderError(f"{source} returned invalid JSON for {url}") from exc


async def probe_health(
    client: httpx.AsyncClient,
    url: str,
    source: str,
    *,
    yellow_latency_ms: float,
    params: Optional[dict[str, Any]] = None,
) -> ProviderHealth:
    """Error status is ``red``, a slow answer ``yellow``; no answer raises HealthProbeError."""
    start = time.monotonic()
    try:
        resp = await client.get(url, params=params)
    except httpx.HTTPError as exc:
        raise HealthProbeError(f"{source} health probe failed: {exc}") from exc
    latency_ms = (time.monotonic() - start) * 1000
    if resp.status_code >= 400:
        return ProviderHealth(status="red", latency_ms=latency_ms,
                              error_message=f"HTTP {resp.status_code}")
    if latency_ms > yellow_latency_ms:
        return ProviderHealth(status="yellow", latency_ms=latency_ms)
    return ProviderHealth(status="green", latency_ms=latency_ms)


class WeatherProvider(ABC):
    """Abstract base class for upstream weather data sources."""

    name: str = "base"

    @abstractmethod
    async def get_forecast(self, latitude: float, longitude: float, timestamp: int) -> int:
        """Forecast temperature (tenths of F) for the first slot at/after ``timestamp``."""

    @abstractmethod
    async def get_first_reading_at_or_after(
        self, latitude: float, longitude: float, timestamp: int,
    ) -> WeatherReading:
        """First observation at or after ``timestamp``."""

    @abstractmethod
    async def health_check(self) -> ProviderHealth:
        """Probe the provider. Raises HealthProbeError if no status could be obtained."""

    async def close(self) -> None:
        pass
