"""The slice of the WeatherMarket ABI the engine calls."""

ZERO_ADDRESS = "0x0000000000000000000000000000000000000000"


def _uint(name: str, bits: int = 256) -> dict:
    return {"name": name, "type": f"uint{bits}", "internalType": f"uint{bits}"}


_MARKET_STRUCT = {
    "name": "",
    "type": "tuple",
    "internalType": "struct IWeatherMarket.Market",
    "components": [
        {"name": "cityId", "type": "bytes32", "internalType": "bytes32"},
        _uint("resolveTime", 64),
        _uint("bettingDeadline", 64),
        _uint("thresholdTenths"),
        {"name": "currency", "type": "address", "internalType": "address"},
        {"name": "status", "type": "uint8", "internalType": "enum IWeatherMarket.MarketStatus"},
        _uint("yesPool"),
        _uint("noPool"),
        _uint("totalFees"),
        _uint("resolvedTempTenths"),
        _uint("observedTimestamp", 64),
        {"name": "outcome", "type": "bool", "internalType": "bool"},
    ],
}

WEATHER_MARKET_ABI: list[dict] = [
    {
        "type": "function",
        "name": "createMarket",
        "inputs": [
            {"name": "cityId", "type": "bytes32", "internalType": "bytes32"},
            _uint("resolveTime", 64),
            _uint("thresholdTenths"),
            {"name": "currency", "type": "address", "internalType": "address"},
        ],
        "outputs": [_uint("marketId")],
        "stateMutability": "nonpayable",
    },
    {
        "type": "function",
        "name": "resolveMarket",
        "inputs": [_uint("marketId"), _uint("tempTenths"), _uint("observedTimestamp", 64)],
        "outputs": [],
        "stateMutability": "nonpayable",
    },
    {
        "type": "function",
        "name": "cancelMarketBySettler",
        "inputs": [_uint("marketId")],
        "outputs": [],
        "stateMutability": "nonpayable",
    },
    {
        "type": "function",
        "name": "getMarketCount",
        "inputs": [],
        "outputs": [_uint("count")],
        "stateMutability": "view",
    },
    {
        "type": "function",
        "name": "getMarket",
        "inputs": [_uint("marketId")],
        "outputs": [_MARKET_STRUCT],
        "stateMutability": "view",
    },
]

WEATHER_MARKET_ERRORS: tuple[str, ...] = (
    "AlreadyBet",
    "BetTooSmall",
    "BettingClosed",
    "InvalidMarket",
    "InvalidParams",
    "InvalidStatus",
    "NotCancelled",
    "NotOwner",
    "NotResolved",
    "NotSettler",
    "NothingToClaim",
    "OnlyNativeCurrency",
    "Paused",
    "TooEarly",
    "TransferFailed",
    "ZeroAddress",
)

WEATHER_MARKET_ABI.extend(
    {"type": "error", "name": name, "inputs": []} for name in WEATHER_MARKET_ERRORS
)
