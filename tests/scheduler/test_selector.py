"""Tests for daily city rotation and threshold rounding."""

import pytest

from weatherb.db.database import open_database
from weatherb.markets.cities import CITIES, find_city_by_bytes32
from weatherb.markets.models import City, city_id_to_bytes32
from weatherb.scheduler.selector import (
    default_spacing_seconds,
    forecast_tenths_to_threshold_tenths,
    select_markets_for_day,
)
from weatherb.store import CITY_INDEX_KEY, SharedStore


@pytest.fixture
def db_url(tmp_path):
    return f"sqlite+aiosqlite:///{tmp_path / 'test_selector.db'}"


def test_threshold_rounds_to_whole_degrees():
    assert forecast_tenths_to_threshold_tenths(723) == 720
    assert forecast_tenths_to_threshold_tenths(726) == 730
    assert forecast_tenths_to_threshold_tenths(700) == 700


def test_default_spacing_divides_the_day():
    assert default_spacing_seconds(5) == 17_280
    assert default_spacing_seconds(1) == 86_400
    assert default_spacing_seconds(0) == 86_400


def test_city_bytes32_is_keccak_of_slug():
    value = city_id_to_bytes32("nyc")
    assert value.startswith("0x") and len(value) == 66
    assert find_city_by_bytes32(value).name == "New York City"
    assert find_city_by_bytes32(value.upper().replace("0X", "0x")).id == "nyc"
    assert find_city_by_bytes32("0x" + "00" * 32) is None


@pytest.mark.asyncio
async def test_resolve_times_are_spaced(db_url):
    db = await open_database(db_url)
    store = SharedStore(db)
    base = 1_700_000_000

    specs = await select_markets_for_day(store, 5, base, 17_280)

    assert [s.resolve_time_sec for s in specs] == [base + (i + 1) * 17_280 for i in range(5)]
    assert [s.city.id for s in specs] == ["nyc", "la", "chi", "miami", "seattle"]
    assert specs[0].city_id_bytes32 == CITIES[0].id_bytes32
    await db.close()


@pytest.mark.asyncio
async def test_rotation_index_advances_by_batch_size(db_url):
    db = await open_database(db_url)
    store = SharedStore(db)

    await select_markets_for_day(store, 5, 0, 3600)
    assert await store.get(CITY_INDEX_KEY) == "5"

    second = await select_markets_for_day(store, 5, 0, 3600)
    assert [s.city.id for s in second] == ["denver", "phoenix", "austin", "nyc", "la"]
    assert await store.get(CITY_INDEX_KEY) == "10"
    await db.close()


@pytest.mark.asyncio
async def test_more_than_five_markets_is_rejected(db_url):
    db = await open_database(db_url)
    with pytest.raises(ValueError):
        await select_markets_for_day(SharedStore(db), 6, 0, 3600)
    await db.close()


@pytest.mark.asyncio
async def test_empty_catalogue_is_rejected(db_url):
    db = await open_database(db_url)
    with pytest.raises(ValueError):
        await select_markets_for_day(SharedStore(db), 1, 0, 3600, cities=[])
    await db.close()


@pytest.mark.asyncio
async def test_custom_catalogue_wraps(db_url):
    db = await open_database(db_url)
    cities = [City(id="a", name="A", latitude=0, longitude=0),
              City(id="b", name="B", latitude=1, longitude=1)]

    specs = await select_markets_for_day(SharedStore(db), 3, 0, 60, cities=cities)

    assert [s.city.id for s in specs] == ["a", "b", "a"]
    await db.close()
