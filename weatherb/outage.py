"""Outage controller: a circuit breaker on the weather provider's health.

The breaker state lives in the shared store under ``weatherb:outage`` so the
scheduler, every settlement worker and the status API agree on it. Only the
settlement process runs the controller loop; everyone else just reads the
sentinel.

``red`` means outage and ``green`` means healthy. ``yellow`` counts as
healthy unless ``yellow_is_outage`` is set.
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import Optional

import structlog

from weatherb.exceptions import HealthProbeError
from weatherb.providers.base import HealthStatus, ProviderHealth, WeatherProvider
from weatherb.store import OUTAGE_KEY, SharedStore

logger = structlog.get_logger()

OUTAGE_SENTINEL_VALUE = "red"


def next_outage_state(
    prev: bool,
    status: HealthStatus,
    *,
    yellow_is_outage: bool = False,
) -> tuple[bool, bool]:
    """Return ``(next, changed)`` for a health reading."""
    if status == "red":
        nxt = True
    elif status == "yellow":
        nxt = yellow_is_outage
    else:
        nxt = False
    return nxt, nxt != prev


@dataclass(frozen=True)
class OutageTick:
    changed: bool
    is_outage: bool
    status: HealthStatus
    health: Optional[ProviderHealth] = None


class OutageController:
    """Probe the provider and keep the shared outage sentinel in step.

    The sentinel is written only on a transition, so a run of ``red`` ticks
    costs one write. A failed probe leaves the state alone and marks it
    unknown until the next successful probe.
    """

    def __init__(
        self,
        store: SharedStore,
        provider: WeatherProvider,
        *,
        yellow_is_outage: bool = False,
    ) -> None:
        self.store = store
        self.provider = provider
        self.yellow_is_outage = yellow_is_outage
        self._in_outage = False
        self._probe_unknown = False
        self._seeded = False

    @property
    def in_outage(self) -> bool:
        """This process's view of the breaker."""
        return self._in_outage

    @property
    def probe_unknown(self) -> bool:
        """True after a failed probe, until a probe succeeds."""
        return self._probe_unknown

    async def seed(self) -> bool:
        """Load the breaker state left by a previous run."""
        self._in_outage = await self.store.get(OUTAGE_KEY) is not None
        self._seeded = True
        logger.info("outage_state_seeded", in_outage=self._in_outage)
        return self._in_outage

    async def is_outage(self) -> bool:
        """Shared view, read from the sentinel."""
        return await self.store.get(OUTAGE_KEY) is not None

    async def tick(self) -> OutageTick:
        if not self._seeded:
            await self.seed()
        try:
            health = await self.provider.health_check()
        except HealthProbeError:
            self._probe_unknown = True
            raise
        self._probe_unknown = False

        nxt, changed = next_outage_state(
            self._in_outage, health.status, yellow_is_outage=self.yellow_is_outage,
        )
        if changed:
            if nxt:
                await self.store.set(OUTAGE_KEY, OUTAGE_SENTINEL_VALUE)
            else:
                await self.store.delete(OUTAGE_KEY)
            self._in_outage = nxt
            logger.info("outage_state_changed", in_outage=nxt, status=health.status,
                        latency_ms=round(health.latency_ms))
        return OutageTick(changed=changed, is_outage=nxt, status=health.status, health=health)
