"""Shared key-value store backed by the ``kv_store`` table.

Every process (scheduler, settlement workers, status API) reads the same
rows, so the outage sentinel and the admin flags have one consistent view.
"""

from __future__ import annotations

from typing import Optional

from sqlalchemy import delete as sa_delete, select

from weatherb.db.database import Database
from weatherb.db.models import KeyValue

OUTAGE_KEY = "weatherb:outage"
ADMIN_CONFIG_KEY = "weatherb:admin:config"
CITY_INDEX_KEY = "weatherb:scheduler:cityIndex"


class SharedStore:
    """Async get/set/delete over the shared database."""

    def __init__(self, db: Database) -> None:
        self._db = db

    async def get(self, key: str) -> Optional[str]:
        async with self._db.session() as s:
            result = await s.execute(select(KeyValue.value).where(KeyValue.key == key))
            return result.scalar_one_or_none()

    async def set(self, key: str, value: str) -> None:
        async with self._db.session() as s:
            await s.merge(KeyValue(key=key, value=value))

    async def delete(self, key: str) -> bool:
        """Delete ``key``. Returns True if a row was deleted."""
        async with self._db.session() as s:
            result = await s.execute(sa_delete(KeyValue).where(KeyValue.key == key))
            return result.rowcount > 0
