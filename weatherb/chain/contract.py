"""Async client for the WeatherMarket contract.

Every write goes through the same three steps: simulate the call with
``eth_call`` so a revert surfaces before any gas is spent, sign and
broadcast, then wait for the receipt for at most ``confirm_timeout``
seconds. Writes from one signer are serialized so nonces never collide
inside a process; collisions with another process surface as transient
errors and are retried by the queue.
"""

from __future__ import annotations

import asyncio
from dataclasses import dataclass
from typing import Any, Optional

import structlog
from eth_account import Account
from web3 import AsyncHTTPProvider, AsyncWeb3

from weatherb.chain.abi import WEATHER_MARKET_ABI, ZERO_ADDRESS
from weatherb.chain.errors import classify_contract_error
from weatherb.exceptions import ChainError, ConfigError, TransientChainError
from weatherb.markets.models import Market, MarketStatus

logger = structlog.get_logger()


@dataclass(frozen=True)
class TxResult:
    tx_hash: str
    block_number: int
    return_value: Any = None


def market_from_tuple(market_id: int, raw: Any) -> Market:
    """Build a Market from the ``getMarket`` struct tuple."""
    try:
        status = MarketStatus(int(raw[5]))
    except ValueError:
        status = MarketStatus.OPEN
    return Market(
        market_id=market_id,
        city_id=AsyncWeb3.to_hex(raw[0]),
        resolve_time_sec=int(raw[1]),
        betting_deadline_sec=int(raw[2]),
        threshold_tenths=int(raw[3]),
        currency=str(raw[4]),
        status=status,
        yes_pool=int(raw[6]),
        no_pool=int(raw[7]),
    )


class WeatherMarketContract:

    def __init__(
        self,
        w3: AsyncWeb3,
        address: str,
        *,
        chain_id: int,
        private_key: Optional[str] = None,
        confirm_timeout: float = 120.0,
    ) -> None:
        self.w3 = w3
        self.address = AsyncWeb3.to_checksum_address(address)
        self.chain_id = chain_id
        self.confirm_timeout = confirm_timeout
        self.contract = w3.eth.contract(address=self.address, abi=WEATHER_MARKET_ABI)
        self._account = Account.from_key(private_key) if private_key else None
        self._tx_lock = asyncio.Lock()

    @classmethod
    def from_settings(cls, settings, *, private_key: str) -> "WeatherMarketContract":
        w3 = AsyncWeb3(AsyncHTTPProvider(settings.RPC_URL))
        return cls(
            w3,
            settings.CONTRACT_ADDRESS,
            chain_id=settings.CHAIN_ID,
            private_key=private_key,
            confirm_timeout=settings.TX_CONFIRM_TIMEOUT_SECONDS,
        )

    @property
    def signer_address(self) -> Optional[str]:
        return self._account.address if self._account else None

    # ── Reads ───────────────────────────────────────────────────────

    async def get_market_count(self) -> int:
        try:
            return int(await self.contract.functions.getMarketCount().call())
        except Exception as exc:
            raise classify_contract_error(exc) from exc

    async def get_market(self, market_id: int) -> Market:
        try:
            raw = await self.contract.functions.getMarket(market_id).call()
        except Exception as exc:
            raise classify_contract_error(exc) from exc
        return market_from_tuple(market_id, raw)

    async def fetch_pending_markets(self, *, due_at: Optional[float] = None) -> list[Market]:
        """Markets still Open or Closed, optionally only those due by ``due_at``."""
        count = await self.get_market_count()
        pending: list[Market] = []
        for market_id in range(count):
            market = await self.get_market(market_id)
            if not market.is_pending:
                continue
            if due_at is not None and not market.is_due(due_at):
                continue
            pending.append(market)
        return pending

    async def find_market(
        self, city_id_bytes32: str, resolve_time_sec: int, *, lookback: int = 50,
    ) -> Optional[Market]:
        """Newest market for this city and resolve time, in any status.

        Only the last ``lookback`` markets are scanned; a creation retry
        looks for its own earlier transaction, which is always recent.
        """
        count = await self.get_market_count()
        wanted = city_id_bytes32.lower()
        for market_id in range(count - 1, max(count - lookback, 0) - 1, -1):
            market = await self.get_market(market_id)
            if market.city_id.lower() == wanted and market.resolve_time_sec == resolve_time_sec:
                return market
        return None

    # ── Writes ──────────────────────────────────────────────────────

    async def create_market(
        self,
        city_id_bytes32: str,
        resolve_time_sec: int,
        threshold_tenths: int,
        currency: str = ZERO_ADDRESS,
    ) -> TxResult:
        fn = self.contract.functions.createMarket(
            city_id_bytes32, resolve_time_sec, threshold_tenths,
            AsyncWeb3.to_checksum_address(currency),
        )
        return await self._write(fn, "createMarket", resolve_time=resolve_time_sec)

    async def resolve_market(self, market_id: int, temp_tenths: int, observed_timestamp: int) -> TxResult:
        fn = self.contract.functions.resolveMarket(market_id, temp_tenths, observed_timestamp)
        return await self._write(fn, "resolveMarket", market_id=market_id)

    async def cancel_market_by_settler(self, market_id: int) -> TxResult:
        fn = self.contract.functions.cancelMarketBySettler(market_id)
        return await self._write(fn, "cancelMarketBySettler", market_id=market_id)

    async def _write(self, fn, action: str, **log_ctx) -> TxResult:
        if self._account is None:
            raise ConfigError(f"{action} needs a signing key")
        account = self._account
        async with self._tx_lock:
            try:
                simulated = await fn.call({"from": account.address})
            except Exception as exc:
                error = classify_contract_error(exc)
                logger.warning("tx_simulation_failed", action=action, error=str(error), **log_ctx)
                raise error from exc

            try:
                nonce = await self.w3.eth.get_transaction_count(account.address, "pending")
                tx = await fn.build_transaction({
                    "from": account.address,
                    "nonce": nonce,
                    "chainId": self.chain_id,
                })
                signed = account.sign_transaction(tx)
                tx_hash = await self.w3.eth.send_raw_transaction(signed.raw_transaction)
                logger.info("tx_sent", action=action, tx_hash=AsyncWeb3.to_hex(tx_hash), **log_ctx)
                receipt = await self.w3.eth.wait_for_transaction_receipt(
                    tx_hash, timeout=self.confirm_timeout,
                )
            except ChainError:
                raise
            except Exception as exc:
                error = classify_contract_error(exc)
                logger.warning("tx_failed", action=action, error=str(error), **log_ctx)
                raise error from exc

        hex_hash = AsyncWeb3.to_hex(tx_hash)
        if receipt["status"] != 1:
            # Simulation passed, so state moved between simulate and mine;
            # the next attempt's simulation tells which way.
            raise TransientChainError(f"{action} reverted on-chain in tx {hex_hash}")
        logger.info("tx_confirmed", action=action, tx_hash=hex_hash,
                    block=receipt["blockNumber"], **log_ctx)
        return TxResult(tx_hash=hex_hash, block_number=int(receipt["blockNumber"]),
                        return_value=simulated)
