"""Working copies of on-chain markets and the city catalogue types."""

from __future__ import annotations

from dataclasses import dataclass
from enum import IntEnum
from typing import Optional

from web3 import Web3


class MarketStatus(IntEnum):
    """Mirrors ``IWeatherMarket.MarketStatus``; values are the on-chain enum indexes."""
    OPEN = 0
    CLOSED = 1
    RESOLVED = 2
    CANCELLED = 3

    @property
    def is_terminal(self) -> bool:
        return self in (MarketStatus.RESOLVED, MarketStatus.CANCELLED)


@dataclass(frozen=True)
class City:
    id: str
    name: str
    latitude: float
    longitude: float
    country_code: Optional[str] = None

    @property
    def id_bytes32(self) -> str:
        return city_id_to_bytes32(self.id)


@dataclass(frozen=True)
class Market:
    """Transient copy of a market read from the contract."""
    market_id: int
    city_id: str  # bytes32 hex
    resolve_time_sec: int
    betting_deadline_sec: int
    threshold_tenths: int
    currency: str
    status: MarketStatus
    yes_pool: int = 0
    no_pool: int = 0

    @property
    def is_pending(self) -> bool:
        return not self.status.is_terminal

    def is_due(self, now_sec: float) -> bool:
        """Pending and past its resolve time."""
        return self.is_pending and now_sec >= self.resolve_time_sec


def city_id_to_bytes32(city_id: str) -> str:
    """keccak256 of the city slug, as the contract stores it."""
    return Web3.to_hex(Web3.keccak(text=city_id))
