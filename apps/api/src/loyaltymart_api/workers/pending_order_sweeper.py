"""Worker re-enqueueing non-terminal orders into the order pool."""

from __future__ import annotations

import asyncio
from typing import Awaitable, Callable, Dict

from loguru import logger
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from loyaltymart_api.domain.errors import OrderQueueFullError, PoolClosedError, StorageError

from .order_pool import OrderWorkerPool, SubmitOutcome

PendingLoader = Callable[[AsyncSession, int], Awaitable[list[str]]]


class PendingOrderSweeper:
    """Periodically hands orders left non-terminal back to the worker pool.

    Picks up orders deferred after exhausting their polling attempts,
    orders rejected by a full queue, and orders abandoned by a previous
    shutdown.
    """

    # meta: worker: pending-order-sweep

    def __init__(
        self,
        session_factory: async_sessionmaker[AsyncSession],
        pool: OrderWorkerPool,
        load_pending: PendingLoader,
        *,
        interval_seconds: float = 60,
        limit: int = 100,
        name: str = "orders",
    ) -> None:
        self._session_factory = session_factory
        self._pool = pool
        self._load_pending = load_pending
        self.interval_seconds = interval_seconds
        self._limit = limit
        self._name = name
        self._stop_event = asyncio.Event()
        self._task: asyncio.Task | None = None
        self.is_running: bool = False

    def start(self) -> None:
        if self._task and not self._task.done():
            return
        self._stop_event.clear()
        self._task = asyncio.create_task(self._run_loop())
        self.is_running = True
        logger.info(
            "Pending order sweeper started",
            pool=self._name,
            interval_seconds=self.interval_seconds,
            limit=self._limit,
        )

    async def stop(self) -> None:
        if not self._task:
            return
        self._stop_event.set()
        await self._task
        self._task = None
        self.is_running = False
        logger.info("Pending order sweeper stopped", pool=self._name)

    async def run_once(self) -> Dict[str, int]:
        """Enqueue one batch of pending orders and report what happened."""

        summary: Dict[str, int] = {"scanned": 0, "enqueued": 0, "skipped": 0}
        async with self._session_factory() as session:
            numbers = await self._load_pending(session, self._limit)
        summary["scanned"] = len(numbers)

        for number in numbers:
            try:
                outcome = self._pool.submit(number)
            except (OrderQueueFullError, PoolClosedError) as exc:
                logger.info("Pending order sweep stopped early", pool=self._name, reason=str(exc))
                break
            if outcome == SubmitOutcome.DUPLICATE:
                summary["skipped"] += 1
            else:
                summary["enqueued"] += 1

        if summary["enqueued"]:
            logger.info("Pending order sweep completed", pool=self._name, **summary)
        return summary

    async def _run_loop(self) -> None:
        while not self._stop_event.is_set():
            try:
                await self.run_once()
            except (StorageError, SQLAlchemyError) as exc:
                logger.exception("Pending order sweep failed", pool=self._name, error=str(exc))
            try:
                await asyncio.wait_for(self._stop_event.wait(), timeout=self.interval_seconds)
            except asyncio.TimeoutError:
                continue


__all__ = ["PendingLoader", "PendingOrderSweeper"]
