"""Operator pause flags, read from the shared store on every check."""

from __future__ import annotations

import structlog
from pydantic import BaseModel, ConfigDict, Field, ValidationError

from weatherb.store import ADMIN_CONFIG_KEY, SharedStore

logger = structlog.get_logger()


class AdminConfig(BaseModel):
    """``paused`` stops everything; ``settler_paused`` stops chain writes only."""

    model_config = ConfigDict(populate_by_name=True, frozen=True)

    paused: bool = Field(default=False, alias="isPaused")
    settler_paused: bool = Field(default=False, alias="settlerPaused")

    @property
    def chain_writes_blocked(self) -> bool:
        return self.paused or self.settler_paused


class AdminGate:
    """Reads the admin config with no caching, so a pause takes effect on the next check."""

    def __init__(self, store: SharedStore) -> None:
        self.store = store

    async def read(self) -> AdminConfig:
        raw = await self.store.get(ADMIN_CONFIG_KEY)
        if raw is None:
            return AdminConfig()
        try:
            return AdminConfig.model_validate_json(raw)
        except ValidationError as exc:
            logger.warning("admin_config_malformed", error=str(exc))
            return AdminConfig()

    async def write(self, config: AdminConfig) -> None:
        await self.store.set(ADMIN_CONFIG_KEY, config.model_dump_json(by_alias=True))
        logger.info("admin_config_updated", paused=config.paused,
                    settler_paused=config.settler_paused)
