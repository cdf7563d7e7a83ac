from weatherb.chain.abi import WEATHER_MARKET_ABI, ZERO_ADDRESS
from weatherb.chain.contract import TxResult, WeatherMarketContract, market_from_tuple
from weatherb.chain.errors import ERROR_SELECTORS, classify_contract_error, decode_selector

__all__ = [
    "ERROR_SELECTORS",
    "TxResult",
    "WEATHER_MARKET_ABI",
    "WeatherMarketContract",
    "ZERO_ADDRESS",
    "classify_contract_error",
    "decode_selector",
    "market_from_tuple",
]
