"""Read-through cache of reward mechanics.

Readers get an immutable tuple snapshot and never wait on a refresh that is
not due. A refresh is due once the snapshot is older than ``ttl_seconds``
or after ``invalidate()``; concurrent callers share one refresh.
"""

from __future__ import annotations

import asyncio
import time
from typing import Callable

from loguru import logger
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from .accrual_store import AccrualOrderStore
from .rewards import MechanicRule


class MechanicCache:
    def __init__(
        self,
        session_factory: async_sessionmaker[AsyncSession],
        *,
        ttl_seconds: float = 30.0,
        clock: Callable[[], float] = time.monotonic,
    ) -> None:
        self._session_factory = session_factory
        self._ttl_seconds = ttl_seconds
        self._clock = clock
        self._rules: tuple[MechanicRule, ...] = ()
        self._loaded_at: float | None = None
        self._generation = 0
        self._refresh_lock = asyncio.Lock()

    @property
    def ttl_seconds(self) -> float:
        return self._ttl_seconds

    def is_stale(self) -> bool:
        if self._loaded_at is None:
            return True
        return self._clock() - self._loaded_at >= self._ttl_seconds

    def invalidate(self) -> None:
        self._generation += 1
        self._loaded_at = None

    async def get_rules(self) -> tuple[MechanicRule, ...]:
        """Return the current rule snapshot, refreshing it first when stale."""

        if self.is_stale():
            await self.refresh()
        return self._rules

    async def refresh(self) -> tuple[MechanicRule, ...]:
        async with self._refresh_lock:
            # another caller may have refreshed while we waited
            if not self.is_stale():
                return self._rules
            generation = self._generation
            async with self._session_factory() as session:
                mechanics = await AccrualOrderStore(session).list_mechanics()
            self._rules = tuple(MechanicRule.from_model(mechanic) for mechanic in mechanics)
            # an invalidate() during the read leaves the snapshot stale
            if generation == self._generation:
                self._loaded_at = self._clock()
            logger.debug("Reward mechanic cache refreshed", mechanics=len(self._rules))
            return self._rules

    async def add(self, rule: MechanicRule) -> tuple[MechanicRule, ...]:
        """Publish a freshly registered rule, then reload from the table.

        The rule is visible immediately; the reload replaces any refresh that
        read the table before the rule was committed.
        """

        if all(existing.match != rule.match for existing in self._rules):
            self._rules = (*self._rules, rule)
        self.invalidate()
        return await self.refresh()


__all__ = ["MechanicCache"]
