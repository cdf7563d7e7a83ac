"""Provider composition: ordered fallback across sources, plus a TTL cache."""

from __future__ import annotations

import asyncio
import time
from typing import Any, Awaitable, Callable, Optional, Sequence, TypeVar

import structlog

from weatherb.exceptions import HealthProbeError, ProviderError
from weatherb.providers.base import HEALTH_STATUSES, ProviderHealth, WeatherProvider, WeatherReading

logger = structlog.get_logger()

T = TypeVar("T")


class FallbackProvider(WeatherProvider):
    """Tries each provider in order and returns the first answer.

    Health is the worst status among the providers that answered their
    probe, with the lowest latency among them. If no probe answered at all
    the state is unknown and HealthProbeError is raised.
    """

    def __init__(self, providers: Sequence[WeatherProvider]) -> None:
        if not providers:
            raise ValueError("FallbackProvider requires at least one provider")
        self.providers = list(providers)
        self.name = "fallback(" + ",".join(p.name for p in self.providers) + ")"

    async def _first_successful(self, op: str, call: Callable[[WeatherProvider], Awaitable[T]]) -> T:
        failures: list[str] = []
        for provider in self.providers:
            try:
                return await call(provider)
            except ProviderError as exc:
                logger.warning("provider_fallback", op=op, provider=provider.name, error=str(exc))
                failures.append(f"{provider.name}: {exc}")
        raise ProviderError(f"all providers failed {op}: " + "; ".join(failures))

    async def get_forecast(self, latitude: float, longitude: float, timestamp: int) -> int:
        return await self._first_successful(
            "get_forecast", lambda p: p.get_forecast(latitude, longitude, timestamp),
        )

    async def get_first_reading_at_or_after(
        self, latitude: float, longitude: float, timestamp: int,
    ) -> WeatherReading:
        return await self._first_successful(
            "get_first_reading_at_or_after",
            lambda p: p.get_first_reading_at_or_after(latitude, longitude, timestamp),
        )

    async def health_check(self) -> ProviderHealth:
        results = await asyncio.gather(
            *(p.health_check() for p in self.providers), return_exceptions=True,
        )
        answered: list[ProviderHealth] = []
        for provider, result in zip(self.providers, results):
            if isinstance(result, ProviderHealth):
                answered.append(result)
            elif isinstance(result, HealthProbeError):
                logger.warning("provider_health_probe_failed", provider=provider.name,
                               error=str(result))
            else:
                raise result
        if not answered:
            raise HealthProbeError(f"{self.name}: no provider answered its health probe")
        worst = max(answered, key=lambda h: HEALTH_STATUSES.index(h.status))
        fastest = min(answered, key=lambda h: h.latency_ms)
        return ProviderHealth(
            status=worst.status,
            latency_ms=fastest.latency_ms,
            error_message=worst.error_message,
        )

    async def close(self) -> None:
        for provider in self.providers:
            await provider.close()


class CachedProvider(WeatherProvider):
    """Caches forecasts and readings in memory; health is never cached."""

    def __init__(
        self,
        inner: WeatherProvider,
        *,
        forecast_ttl_seconds: float = 180.0,
        reading_ttl_seconds: float = 86_400.0,
        clock: Callable[[], float] = time.time,
    ) -> None:
        self.inner = inner
        self.name = f"cached({inner.name})"
        self.forecast_ttl_seconds = forecast_ttl_seconds
        self.reading_ttl_seconds = reading_ttl_seconds
        self._clock = clock
        self._cache: dict[tuple, tuple[float, Any]] = {}

    async def _cached(self, key: tuple, ttl: float, load: Callable[[], Awaitable[T]]) -> T:
        now = self._clock()
        hit = self._cache.get(key)
        if hit is not None and hit[0] > now:
            return hit[1]
        value = await load()
        if ttl > 0:
            self._cache[key] = (now + ttl, value)
        return value

    async def get_forecast(self, latitude: float, longitude: float, timestamp: int) -> int:
        return await self._cached(
            ("forecast", latitude, longitude, timestamp), self.forecast_ttl_seconds,
            lambda: self.inner.get_forecast(latitude, longitude, timestamp),
        )

    async def get_first_reading_at_or_after(
        self, latitude: float, longitude: float, timestamp: int,
    ) -> WeatherReading:
        return await self._cached(
            ("reading", latitude, longitude, timestamp), self.reading_ttl_seconds,
            lambda: self.inner.get_first_reading_at_or_after(latitude, longitude, timestamp),
        )

    async def health_check(self) -> ProviderHealth:
        return await self.inner.health_check()

    def clear_cache(self) -> None:
        self._cache.clear()

    async def close(self) -> None:
        await self.inner.close()
