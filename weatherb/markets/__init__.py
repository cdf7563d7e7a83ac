from weatherb.markets.cities import CITIES, find_city_by_bytes32
from weatherb.markets.models import City, Market, MarketStatus, city_id_to_bytes32

__all__ = [
    "CITIES",
    "City",
    "Market",
    "MarketStatus",
    "city_id_to_bytes32",
    "find_city_by_bytes32",
]
