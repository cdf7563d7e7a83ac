from weatherb.providers.base import (
    HEALTH_STATUSES,
    HealthStatus,
    ProviderHealth,
    WeatherProvider,
    WeatherReading,
    celsius_to_fahrenheit_tenths,
)
from weatherb.providers.fallback import CachedProvider, FallbackProvider
from weatherb.providers.met_no import MetNoProvider
from weatherb.providers.nws import NwsProvider
from weatherb.providers.observation import (
    Observation,
    ObservationSource,
    ProofServiceClient,
    ProviderObservationSource,
)
from weatherb.providers.open_meteo import OpenMeteoProvider

# Primary source first, then its fallbacks.
PROVIDER_ORDER: dict[str, tuple[str, ...]] = {
    "met-no": ("met-no", "nws", "open-meteo"),
    "nws": ("nws", "open-meteo", "met-no"),
    "open-meteo": ("open-meteo", "nws", "met-no"),
}


def create_weather_provider(settings) -> WeatherProvider:
    """Build the cached fallback stack led by ``WEATHER_PROVIDER``."""
    order = PROVIDER_ORDER.get(settings.WEATHER_PROVIDER)
    if order is None:
        raise ValueError(f"unsupported weather provider: {settings.WEATHER_PROVIDER}")
    common = dict(
        timeout=settings.WEATHER_HTTP_TIMEOUT_SECONDS,
        yellow_latency_ms=settings.HEALTH_YELLOW_LATENCY_MS,
    )
    builders = {
        "met-no": lambda: MetNoProvider(user_agent=settings.WEATHER_USER_AGENT, **common),
        "nws": lambda: NwsProvider(user_agent=settings.WEATHER_USER_AGENT, **common),
        "open-meteo": lambda: OpenMeteoProvider(**common),
    }
    return CachedProvider(
        FallbackProvider([builders[name]() for name in order]),
        forecast_ttl_seconds=settings.FORECAST_CACHE_TTL_SECONDS,
        reading_ttl_seconds=settings.READING_CACHE_TTL_SECONDS,
    )


def create_observation_source(settings, provider: WeatherProvider) -> ObservationSource:
    if settings.PROOF_SERVICE_URL:
        return ProofServiceClient(
            settings.PROOF_SERVICE_URL,
            timeout=settings.PROOF_SERVICE_TIMEOUT_SECONDS,
        )
    return ProviderObservationSource(provider)


__all__ = [
    "HEALTH_STATUSES",
    "PROVIDER_ORDER",
    "CachedProvider",
    "FallbackProvider",
    "HealthStatus",
    "MetNoProvider",
    "NwsProvider",
    "Observation",
    "ObservationSource",
    "OpenMeteoProvider",
    "ProofServiceClient",
    "ProviderHealth",
    "ProviderObservationSource",
    "WeatherProvider",
    "WeatherReading",
    "celsius_to_fahrenheit_tenths",
    "create_observation_source",
    "create_weather_provider",
]
