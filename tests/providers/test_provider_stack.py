"""Tests for the fallback/cached provider stack and its factory."""

import pytest

from config.settings import Settings
from weatherb.exceptions import HealthProbeError, ProviderError
from weatherb.providers import CachedProvider, FallbackProvider, create_weather_provider
from weatherb.providers.base import ProviderHealth, WeatherProvider, WeatherReading


class StubProvider(WeatherProvider):
    def __init__(self, name, *, forecast=None, reading=None, health=None):
        self.name = name
        self.forecast = forecast
        self.reading = reading
        self.health = health
        self.calls = 0

    async def get_forecast(self, latitude, longitude, timestamp):
        self.calls += 1
        if isinstance(self.forecast, Exception):
            raise self.forecast
        return self.forecast

    async def get_first_reading_at_or_after(self, latitude, longitude, timestamp):
        self.calls += 1
        if isinstance(self.reading, Exception):
            raise self.reading
        return self.reading

    async def health_check(self):
        if isinstance(self.health, Exception):
            raise self.health
        return self.health


def _health(status, latency_ms=10.0, error=None):
    return ProviderHealth(status=status, latency_ms=latency_ms, error_message=error)


class FakeClock:
    def __init__(self, now=1_700_000_000.0):
        self.now = now

    def __call__(self):
        return self.now


# ---------------------------------------------------------------------------
# FallbackProvider
# ---------------------------------------------------------------------------

def test_fallback_needs_a_provider():
    with pytest.raises(ValueError):
        FallbackProvider([])


@pytest.mark.asyncio
async def test_first_failure_falls_through_to_next():
    first = StubProvider("met-no", forecast=ProviderError("503"))
    second = StubProvider("nws", forecast=715)
    third = StubProvider("open-meteo", forecast=999)
    stack = FallbackProvider([first, second, third])

    assert await stack.get_forecast(40.7, -74.0, 0) == 715
    assert (first.calls, second.calls, third.calls) == (1, 1, 0)
    assert stack.name == "fallback(met-no,nws,open-meteo)"


@pytest.mark.asyncio
async def test_all_failing_raises_provider_error_naming_each():
    stack = FallbackProvider([
        StubProvider("met-no", reading=ProviderError("down")),
        StubProvider("nws", reading=ProviderError("no station")),
    ])

    with pytest.raises(ProviderError) as excinfo:
        await stack.get_first_reading_at_or_after(0, 0, 0)
    assert "met-no: down" in str(excinfo.value)
    assert "nws: no station" in str(excinfo.value)


@pytest.mark.asyncio
async def test_unexpected_errors_are_not_swallowed():
    stack = FallbackProvider([
        StubProvider("met-no", forecast=RuntimeError("bug")),
        StubProvider("nws", forecast=700),
    ])

    with pytest.raises(RuntimeError):
        await stack.get_forecast(0, 0, 0)


@pytest.mark.asyncio
async def test_health_is_worst_status_with_best_latency():
    stack = FallbackProvider([
        StubProvider("met-no", health=_health("green", 300.0)),
        StubProvider("nws", health=_health("yellow", 50.0)),
    ])

    health = await stack.health_check()

    assert health.status == "yellow"
    assert health.latency_ms == 50.0


@pytest.mark.asyncio
async def test_one_red_answer_makes_the_stack_red():
    stack = FallbackProvider([
        StubProvider("met-no", health=_health("green")),
        StubProvider("nws", health=_health("red", error="HTTP 500")),
    ])

    health = await stack.health_check()

    assert health.status == "red"
    assert health.error_message == "HTTP 500"


@pytest.mark.asyncio
async def test_unanswered_probes_are_ignored():
    stack = FallbackProvider([
        StubProvider("met-no", health=HealthProbeError("dns")),
        StubProvider("nws", health=_health("green")),
    ])

    assert (await stack.health_check()).status == "green"


@pytest.mark.asyncio
async def test_no_probe_answered_is_unknown():
    stack = FallbackProvider([
        StubProvider("met-no", health=HealthProbeError("dns")),
        StubProvider("nws", health=HealthProbeError("timeout")),
    ])

    with pytest.raises(HealthProbeError):
        await stack.health_check()


# ---------------------------------------------------------------------------
# CachedProvider
# ---------------------------------------------------------------------------

@pytest.mark.asyncio
async def test_forecast_cached_until_ttl():
    clock = FakeClock()
    inner = StubProvider("met-no", forecast=720)
    cached = CachedProvider(inner, forecast_ttl_seconds=180, clock=clock)

    assert await cached.get_forecast(1, 2, 3) == 720
    assert await cached.get_forecast(1, 2, 3) == 720
    assert inner.calls == 1

    await cached.get_forecast(1, 2, 4)
    assert inner.calls == 2

    clock.now += 180
    await cached.get_forecast(1, 2, 3)
    assert inner.calls == 3


@pytest.mark.asyncio
async def test_readings_cached_and_failures_not_cached():
    clock = FakeClock()
    reading = WeatherReading(temp_f_tenths=731, observed_timestamp=10, source="nws")
    inner = StubProvider("nws", reading=ProviderError("not yet"))
    cached = CachedProvider(inner, clock=clock)

    with pytest.raises(ProviderError):
        await cached.get_first_reading_at_or_after(1, 2, 3)
    inner.reading = reading
    assert await cached.get_first_reading_at_or_after(1, 2, 3) == reading
    assert await cached.get_first_reading_at_or_after(1, 2, 3) == reading
    assert inner.calls == 2


@pytest.mark.asyncio
async def test_health_is_never_cached():
    inner = StubProvider("met-no", health=_health("green"))
    cached = CachedProvider(inner)

    assert (await cached.health_check()).status == "green"
    inner.health = _health("red")
    assert (await cached.health_check()).status == "red"


# ---------------------------------------------------------------------------
# Factory
# ---------------------------------------------------------------------------

@pytest.mark.asyncio
@pytest.mark.parametrize("primary, order", [
    ("met-no", ["met-no", "nws", "open-meteo"]),
    ("nws", ["nws", "open-meteo", "met-no"]),
    ("open-meteo", ["open-meteo", "nws", "met-no"]),
])
async def test_factory_orders_the_stack(primary, order):
    settings = Settings(_env_file=None, WEATHER_PROVIDER=primary, FORECAST_CACHE_TTL_SECONDS=60)

    provider = create_weather_provider(settings)

    assert isinstance(provider, CachedProvider)
    assert provider.forecast_ttl_seconds == 60
    assert isinstance(provider.inner, FallbackProvider)
    assert [p.name for p in provider.inner.providers] == order
    await provider.close()
