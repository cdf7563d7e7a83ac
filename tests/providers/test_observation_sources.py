"""Tests for the proof service client and the provider-backed source."""

from unittest.mock import AsyncMock

import httpx
import pytest
import respx

from weatherb.exceptions import ProviderError
from weatherb.markets.cities import CITIES
from weatherb.providers.base import WeatherReading
from weatherb.providers.observation import ProofServiceClient, ProviderObservationSource

PROOF_URL = "https://proofs.example.test"
NYC = CITIES[0]


@pytest.mark.asyncio
@respx.mock
async def test_proof_service_returns_attested_observation():
    route = respx.post(f"{PROOF_URL}/observations").mock(return_value=httpx.Response(200, json={
        "tempTenths": 731,
        "observedTimestamp": 1_700_000_300,
        "proof": "0xproof",
    }))
    client = ProofServiceClient(PROOF_URL + "/")

    observation = await client.fetch_observation(NYC, 1_700_000_000)

    assert observation.temp_f_tenths == 731
    assert observation.observed_timestamp == 1_700_000_300
    assert observation.proof == "0xproof"
    body = route.calls.last.request.read()
    assert b'"cityId":"nyc"' in body.replace(b" ", b"")
    await client.close()


@pytest.mark.asyncio
@respx.mock
async def test_proof_service_error_is_provider_error():
    respx.post(f"{PROOF_URL}/observations").mock(return_value=httpx.Response(502))
    client = ProofServiceClient(PROOF_URL)

    with pytest.raises(ProviderError):
        await client.fetch_observation(NYC, 1_700_000_000)
    await client.close()


@pytest.mark.asyncio
@respx.mock
async def test_proof_service_rejects_observation_before_resolve_time():
    respx.post(f"{PROOF_URL}/observations").mock(return_value=httpx.Response(200, json={
        "tempTenths": 731, "observedTimestamp": 1_699_999_999,
    }))
    client = ProofServiceClient(PROOF_URL)

    with pytest.raises(ProviderError):
        await client.fetch_observation(NYC, 1_700_000_000)
    await client.close()


@pytest.mark.asyncio
@respx.mock
async def test_proof_service_malformed_response():
    respx.post(f"{PROOF_URL}/observations").mock(return_value=httpx.Response(200, json={"temp": 1}))
    client = ProofServiceClient(PROOF_URL)

    with pytest.raises(ProviderError):
        await client.fetch_observation(NYC, 1_700_000_000)
    await client.close()


@pytest.mark.asyncio
async def test_provider_source_passes_city_coordinates():
    provider = AsyncMock()
    provider.get_first_reading_at_or_after.return_value = WeatherReading(
        temp_f_tenths=650, observed_timestamp=1_700_000_100, source="met-no",
    )

    observation = await ProviderObservationSource(provider).fetch_observation(NYC, 1_700_000_000)

    provider.get_first_reading_at_or_after.assert_awaited_once_with(
        NYC.latitude, NYC.longitude, 1_700_000_000,
    )
    assert observation.temp_f_tenths == 650
    assert observation.proof is None
