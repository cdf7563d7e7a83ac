"""Where the settler gets the observation it writes on-chain.

With a proof service configured, observations come back with an opaque
attestation blob. Without one, the weather provider's own reading is used.
"""

from __future__ import annotations

from abc import ABC, abstractmethod
from dataclasses import dataclass
from typing import Optional

import httpx
import structlog

from weatherb.exceptions import ProviderError
from weatherb.markets.models import City
from weatherb.providers.base import WeatherProvider

logger = structlog.get_logger()


@dataclass(frozen=True)
class Observation:
    temp_f_tenths: int
    observed_timestamp: int
    source: str
    proof: Optional[str] = None


class ObservationSource(ABC):
    @abstractmethod
    async def fetch_observation(self, city: City, resolve_time_sec: int) -> Observation:
        """First observation at or after ``resolve_time_sec`` for ``city``."""

    async def close(self) -> None:
        pass


class ProviderObservationSource(ObservationSource):
    """Reads straight from the weather provider; no proof attached."""

    def __init__(self, provider: WeatherProvider) -> None:
        self.provider = provider

    async def fetch_observation(self, city: City, resolve_time_sec: int) -> Observation:
        reading = await self.provider.get_first_reading_at_or_after(
            city.latitude, city.longitude, resolve_time_sec,
        )
        return Observation(
            temp_f_tenths=reading.temp_f_tenths,
            observed_timestamp=reading.observed_timestamp,
            source=reading.source,
        )


class ProofServiceClient(ObservationSource):
    """HTTP client for an attested-observation service.

    ``POST {base_url}/observations`` with the city and target time; the
    response carries ``tempTenths``, ``observedTimestamp`` and ``proof``.
    Every failure is a ProviderError, which the settler retries.
    """

    def __init__(
        self,
        base_url: str,
        *,
        timeout: float = 30.0,
        client: Optional[httpx.AsyncClient] = None,
    ) -> None:
        self.base_url = base_url.rstrip("/")
        self._client = client or httpx.AsyncClient(timeout=timeout)

    async def close(self) -> None:
        await self._client.aclose()

    async def fetch_observation(self, city: City, resolve_time_sec: int) -> Observation:
        body = {
            "cityId": city.id,
            "latitude": city.latitude,
            "longitude": city.longitude,
            "timestamp": resolve_time_sec,
        }
        try:
            resp = await self._client.post(f"{self.base_url}/observations", json=body)
            resp.raise_for_status()
            data = resp.json()
        except httpx.HTTPError as exc:
            raise ProviderError(f"proof service request failed: {exc}") from exc
        except ValueError as exc:
            raise ProviderError("proof service returned invalid JSON") from exc

        try:
            observation = Observation(
                temp_f_tenths=int(data["tempTenths"]),
                observed_timestamp=int(data["observedTimestamp"]),
                source=str(data.get("source", "proof-service")),
                proof=data.get("proof"),
            )
        except (KeyError, TypeError, ValueError) as exc:
            raise ProviderError(f"malformed proof service response: {exc}") from exc

        if observation.observed_timestamp < resolve_time_sec:
            raise ProviderError(
                f"observation at {observation.observed_timestamp} precedes resolve time {resolve_time_sec}"
            )
        logger.debug("proof_observation_fetched", city=city.id,
                     observed_timestamp=observation.observed_timestamp)
        return observation
