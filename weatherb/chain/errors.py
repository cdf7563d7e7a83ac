"""Decode WeatherMarket reverts into permanent or transient failures."""

from __future__ import annotations

import re
from typing import Optional

from web3 import Web3
from web3.exceptions import ContractLogicError, TimeExhausted

from weatherb.chain.abi import WEATHER_MARKET_ABI
from weatherb.exceptions import ChainError, ChainRevertError, TransientChainError


def error_selector(entry: dict) -> str:
    """First four bytes of keccak256 over an ABI error's canonical signature."""
    types = ",".join(arg["type"] for arg in entry.get("inputs", []))
    return Web3.to_hex(Web3.keccak(text=f"{entry['name']}({types})")[:4])


ERROR_SELECTORS: dict[str, str] = {
    error_selector(entry): entry["name"]
    for entry in WEATHER_MARKET_ABI
    if entry["type"] == "error"
}

# Reverts that on-chain state or a clock tick can still clear.
RETRYABLE_REVERTS = frozenset({"TooEarly", "TransferFailed"})

_SELECTOR_RE = re.compile(r"0x[0-9a-fA-F]{8}")
_NONCE_MARKERS = ("nonce too low", "already known", "replacement transaction underpriced")


def decode_selector(data: object) -> Optional[str]:
    """Return the custom error name for revert data, if it is one we know."""
    if data is None:
        return None
    if isinstance(data, (bytes, bytearray)):
        text = "0x" + bytes(data).hex()
    else:
        text = str(data)
    for match in _SELECTOR_RE.findall(text):
        name = ERROR_SELECTORS.get(match.lower())
        if name:
            return name
    return None


def classify_contract_error(exc: BaseException) -> ChainError:
    """Map a web3 failure onto the engine's chain error types."""
    if isinstance(exc, ChainError):
        return exc
    if isinstance(exc, ContractLogicError):
        name = decode_selector(getattr(exc, "data", None)) or decode_selector(str(exc))
        if name is None:
            return ChainRevertError(f"execution reverted: {exc}", reason="unknown", permanent=False)
        return ChainRevertError(
            f"execution reverted: {name}",
            reason=name,
            permanent=name not in RETRYABLE_REVERTS,
        )
    if isinstance(exc, TimeExhausted):
        return TransientChainError(f"transaction not confirmed in time: {exc}")
    message = str(exc)
    if any(marker in message.lower() for marker in _NONCE_MARKERS):
        return TransientChainError(f"nonce contention: {message}")
    return TransientChainError(f"{type(exc).__name__}: {message}")
