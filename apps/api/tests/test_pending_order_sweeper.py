from __future__ import annotations

import asyncio
from decimal import Decimal

import pytest

from loyaltymart_api.models.order import OrderStatusEnum
from loyaltymart_api.services.ledger import LedgerService
from loyaltymart_api.workers.order_pool import OrderWorkerPool, WorkerContext
from loyaltymart_api.workers.pending_order_sweeper import PendingOrderSweeper


async def _load_pending(session, limit):
    return await LedgerService(session).list_pending_orders(limit=limit)


async def _seed(session_factory) -> None:
    async with session_factory() as session:
        ledger = LedgerService(session)
        user = await ledger.create_user("alice")
        for number in ("18", "26", "34"):
            await ledger.create_order(user.id, number)
        await ledger.finalize_order("34", OrderStatusEnum.INVALID, Decimal("0"))


@pytest.mark.asyncio
async def test_run_once_enqueues_non_terminal_orders(session_factory):
    await _seed(session_factory)
    handled = []
    gate = asyncio.Event()

    async def handler(number: str, context: WorkerContext) -> None:
        await gate.wait()
        handled.append(number)

    pool = OrderWorkerPool(handler, worker_count=2, queue_size=4)
    pool.start()
    sweeper = PendingOrderSweeper(session_factory, pool, _load_pending, interval_seconds=60, limit=10)

    first = await sweeper.run_once()
    second = await sweeper.run_once()

    assert first == {"scanned": 2, "enqueued": 2, "skipped": 0}
    assert second == {"scanned": 2, "enqueued": 0, "skipped": 2}

    gate.set()
    await pool.shutdown(timeout=1.0, interrupt=False)
    assert sorted(handled) == ["18", "26"]


@pytest.mark.asyncio
async def test_sweep_stops_when_queue_rejects(session_factory):
    await _seed(session_factory)
    gate = asyncio.Event()

    async def handler(number: str, context: WorkerContext) -> None:
        await gate.wait()

    pool = OrderWorkerPool(handler, worker_count=1, queue_size=1, overflow_policy="reject")
    sweeper = PendingOrderSweeper(session_factory, pool, _load_pending, limit=10)

    summary = await sweeper.run_once()

    assert summary == {"scanned": 2, "enqueued": 1, "skipped": 0}
    pool.start()
    gate.set()
    await pool.shutdown(timeout=1.0, interrupt=False)


@pytest.mark.asyncio
async def test_start_and_stop_loop(session_factory):
    await _seed(session_factory)
    handled = []

    async def handler(number: str, context: WorkerContext) -> None:
        handled.append(number)

    pool = OrderWorkerPool(handler, worker_count=1, queue_size=4)
    pool.start()
    sweeper = PendingOrderSweeper(session_factory, pool, _load_pending, interval_seconds=60, limit=10)

    sweeper.start()
    assert sweeper.is_running
    await asyncio.sleep(0.1)
    await sweeper.stop()
    await pool.shutdown(timeout=1.0, interrupt=False)

    assert not sweeper.is_running
    assert sorted(handled) == ["18", "26"]
