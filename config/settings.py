"""Runtime configuration for the scheduler and settler processes."""

import re
from typing import Optional

from pydantic import Field, field_validator
from pydantic_settings import BaseSettings

_ADDRESS_RE = re.compile(r"^0x[a-fA-F0-9]{40}$")
_PRIVATE_KEY_RE = re.compile(r"^0x[a-fA-F0-9]{64}$")
WEATHER_PROVIDERS = ("met-no", "nws", "open-meteo")


class Settings(BaseSettings):
    # === Shared store / queue ===
    DATABASE_URL: str = "sqlite+aiosqlite:///data/weatherb.db"
    JOB_LEASE_SECONDS: float = Field(default=600.0, gt=0)
    WORKER_POLL_INTERVAL_SECONDS: float = Field(default=1.0, gt=0)

    # === Ledger ===
    RPC_URL: str = "http://127.0.0.1:8545"
    CHAIN_ID: int = 114  # Coston2
    CONTRACT_ADDRESS: str = ""
    SCHEDULER_PRIVATE_KEY: str = ""
    SETTLER_PRIVATE_KEY: str = ""
    TX_CONFIRM_TIMEOUT_SECONDS: float = Field(default=120.0, gt=0)

    # === Weather provider / proof service ===
    # Primary source; the other two follow it as fallbacks.
    WEATHER_PROVIDER: str = "met-no"
    WEATHER_USER_AGENT: str = "weatherb/1.0 (ops@weatherb.local)"
    WEATHER_HTTP_TIMEOUT_SECONDS: float = Field(default=10.0, gt=0)
    FORECAST_CACHE_TTL_SECONDS: float = Field(default=180.0, ge=0)
    READING_CACHE_TTL_SECONDS: float = Field(default=86_400.0, ge=0)
    HEALTH_YELLOW_LATENCY_MS: float = Field(default=2000.0, gt=0)
    PROOF_SERVICE_URL: str = ""
    PROOF_SERVICE_TIMEOUT_SECONDS: float = Field(default=30.0, gt=0)

    # === Market creation scheduler ===
    SCHEDULE_TIME_CRON: str = "0 0 * * *"
    DAILY_MARKET_COUNT: int = Field(default=5, ge=1, le=5)
    MARKET_SPACING_HOURS: Optional[float] = Field(default=None, gt=0)
    CREATION_MAX_RETRIES: int = Field(default=3, ge=0, le=5)
    CREATION_BACKOFF_MS: int = Field(default=5000, gt=0)

    # === Settlement engine ===
    SETTLEMENT_POLL_INTERVAL_SECONDS: float = Field(default=60.0, gt=0)
    MAX_SETTLEMENT_RETRIES: int = Field(default=5, ge=1, le=5)
    SETTLEMENT_BACKOFF_MS: int = Field(default=5000, gt=0)
    SETTLEMENT_WORKER_CONCURRENCY: int = Field(default=3, ge=1)
    SETTLEMENT_DEFER_SECONDS: float = Field(default=60.0, gt=0)
    CANCEL_ON_DEAD_LETTER: bool = True

    # === Outage controller ===
    OUTAGE_POLL_INTERVAL_SECONDS: float = Field(default=300.0, gt=0)
    OUTAGE_ON_YELLOW: bool = False
    CANCEL_ON_OUTAGE: bool = True

    # === Telegram ===
    TELEGRAM_BOT_TOKEN: str = ""
    TELEGRAM_CHAT_ID: str = ""

    model_config = {"env_file": ".env", "extra": "ignore"}

    @field_validator("CONTRACT_ADDRESS")
    @classmethod
    def _check_address(cls, value: str) -> str:
        if value and not _ADDRESS_RE.match(value):
            raise ValueError("CONTRACT_ADDRESS must be a 0x-prefixed 20-byte hex address")
        return value

    @field_validator("SCHEDULER_PRIVATE_KEY", "SETTLER_PRIVATE_KEY")
    @classmethod
    def _check_private_key(cls, value: str) -> str:
        if value and not _PRIVATE_KEY_RE.match(value):
            raise ValueError("private keys must be 0x-prefixed 32-byte hex strings")
        return value

    @field_validator("WEATHER_PROVIDER")
    @classmethod
    def _check_provider(cls, value: str) -> str:
        if value not in WEATHER_PROVIDERS:
            raise ValueError(f"unsupported WEATHER_PROVIDER: {value}")
        return value

    @property
    def market_spacing_seconds(self) -> int:
        """Spacing between resolve times of one day's markets."""
        if self.MARKET_SPACING_HOURS is not None:
            hours = self.MARKET_SPACING_HOURS
        else:
            hours = 24 / min(5, max(1, self.DAILY_MARKET_COUNT))
        return round(hours * 3600)


settings = Settings()
