from __future__ import annotations

from typing import Optional, Sequence

from weatherb.markets.models import City

CITIES: tuple[City, ...] = (
    City(id="nyc", name="New York City", latitude=40.7128, longitude=-74.006, country_code="US"),
    City(id="la", name="Los Angeles", latitude=34.0522, longitude=-118.2437, country_code="US"),
    City(id="chi", name="Chicago", latitude=41.8781, longitude=-87.6298, country_code="US"),
    City(id="miami", name="Miami", latitude=25.7617, longitude=-80.1918, country_code="US"),
    City(id="seattle", name="Seattle", latitude=47.6062, longitude=-122.3321, country_code="US"),
    City(id="denver", name="Denver", latitude=39.7392, longitude=-104.9903, country_code="US"),
    City(id="phoenix", name="Phoenix", latitude=33.4484, longitude=-112.074, country_code="US"),
    City(id="austin", name="Austin", latitude=30.2672, longitude=-97.7431, country_code="US"),
)


def find_city_by_bytes32(city_id_bytes32: str, cities: Sequence[City] = CITIES) -> Optional[City]:
    """Look up a city by the bytes32 id stored on-chain."""
    wanted = city_id_bytes32.lower()
    for city in cities:
        if city.id_bytes32.lower() == wanted:
            return city
    return None
