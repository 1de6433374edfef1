from __future__ import annotations

import asyncio
from decimal import Decimal

import pytest

from loyaltymart_api.models.order import OrderStatusEnum
from loyaltymart_api.observability.pipeline import PipelineObservabilityStore
from loyaltymart_api.services.accrual.client import (
    AccrualOrderSnapshot,
    NotYetAvailable,
    RateLimited,
    TransientFailure,
)
from loyaltymart_api.services.ledger import LedgerService
from loyaltymart_api.workers.accrual_reconciler import AccrualReconciliationProcessor, PollingPolicy
from loyaltymart_api.workers.order_pool import WorkerContext

ORDER = "79927398713"


class ScriptedAccrualClient:
    """Replays a fixed list of poll results, repeating the last one."""

    def __init__(self, *results) -> None:
        self._results = list(results)
        self.calls = 0

    async def fetch_order(self, number: str):
        self.calls += 1
        if len(self._results) > 1:
            return self._results.pop(0)
        return self._results[0]


class RecordingContext(WorkerContext):
    def __init__(self) -> None:
        super().__init__(asyncio.Event())
        self.sleeps: list[float] = []

    async def sleep(self, seconds: float) -> bool:
        self.sleeps.append(seconds)
        return not self.stopping


async def _seed_order(session_factory) -> None:
    async with session_factory() as session:
        ledger = LedgerService(session)
        user = await ledger.create_user("alice")
        await ledger.create_order(user.id, ORDER)


async def _state(session_factory):
    async with session_factory() as session:
        ledger = LedgerService(session)
        order = await ledger.get_order(ORDER)
        balance = await ledger.get_balance(order.user_id)
    return order, balance


def _processor(session_factory, client, store=None, **policy):
    return AccrualReconciliationProcessor(
        session_factory,
        client,
        policy=PollingPolicy(
            poll_interval_seconds=policy.get("poll", 5.0),
            retry_interval_seconds=policy.get("retry", 1.0),
            backoff_ceiling_seconds=policy.get("ceiling", 8.0),
            max_attempts=policy.get("max_attempts", 10),
        ),
        observability=store or PipelineObservabilityStore(),
    )


@pytest.mark.asyncio
async def test_order_is_processed_and_credited(session_factory):
    await _seed_order(session_factory)
    client = ScriptedAccrualClient(
        NotYetAvailable(204),
        AccrualOrderSnapshot(ORDER, OrderStatusEnum.PROCESSING, Decimal("0")),
        AccrualOrderSnapshot(ORDER, OrderStatusEnum.PROCESSED, Decimal("200")),
    )
    store = PipelineObservabilityStore()
    context = RecordingContext()

    await _processor(session_factory, client, store)(ORDER, context)

    order, balance = await _state(session_factory)
    assert order.status is OrderStatusEnum.PROCESSED
    assert order.accrual == Decimal("200")
    assert balance.current == Decimal("200")
    assert context.sleeps == [5.0, 5.0]
    assert store.snapshot().totals["processed"] == 1


@pytest.mark.asyncio
async def test_invalid_order_is_not_credited(session_factory):
    await _seed_order(session_factory)
    client = ScriptedAccrualClient(AccrualOrderSnapshot(ORDER, OrderStatusEnum.INVALID, Decimal("0")))

    await _processor(session_factory, client)(ORDER, RecordingContext())

    order, balance = await _state(session_factory)
    assert order.status is OrderStatusEnum.INVALID
    assert balance.current == Decimal("0")


@pytest.mark.asyncio
async def test_rate_limit_waits_without_spending_attempts(session_factory):
    await _seed_order(session_factory)
    client = ScriptedAccrualClient(
        RateLimited(60.0),
        RateLimited(60.0),
        RateLimited(60.0),
        AccrualOrderSnapshot(ORDER, OrderStatusEnum.PROCESSED, Decimal("15")),
    )
    store = PipelineObservabilityStore()
    context = RecordingContext()

    await _processor(session_factory, client, store, max_attempts=1)(ORDER, context)

    order, balance = await _state(session_factory)
    assert order.status is OrderStatusEnum.PROCESSED
    assert balance.current == Decimal("15")
    assert context.sleeps == [60.0, 60.0, 60.0]
    assert store.snapshot().totals["rate_limited"] == 3


@pytest.mark.asyncio
async def test_transient_failures_back_off_up_to_ceiling(session_factory):
    await _seed_order(session_factory)
    client = ScriptedAccrualClient(
        TransientFailure("timeout"),
        TransientFailure("timeout"),
        TransientFailure("http_500"),
        TransientFailure("http_500"),
        TransientFailure("http_500"),
        AccrualOrderSnapshot(ORDER, OrderStatusEnum.PROCESSED, Decimal("1")),
    )
    context = RecordingContext()

    await _processor(session_factory, client, retry=1.0, ceiling=8.0)(ORDER, context)

    assert context.sleeps == [1.0, 2.0, 4.0, 8.0, 8.0]


@pytest.mark.asyncio
async def test_exhausted_attempts_defer_order(session_factory):
    await _seed_order(session_factory)
    client = ScriptedAccrualClient(NotYetAvailable(204))
    store = PipelineObservabilityStore()

    await _processor(session_factory, client, store, max_attempts=3)(ORDER, RecordingContext())

    order, balance = await _state(session_factory)
    assert client.calls == 3
    assert order.status is OrderStatusEnum.PROCESSING
    assert balance.current == Decimal("0")
    snapshot = store.snapshot()
    assert snapshot.totals["deferred"] == 1
    assert snapshot.events.last_deferred_order == ORDER


@pytest.mark.asyncio
async def test_shutdown_abandons_order_non_terminal(session_factory):
    await _seed_order(session_factory)
    client = ScriptedAccrualClient(NotYetAvailable(204))
    stop = asyncio.Event()
    processor = _processor(session_factory, client, poll=30.0)

    task = asyncio.create_task(processor(ORDER, WorkerContext(stop)))
    await asyncio.sleep(0.05)
    stop.set()
    await asyncio.wait_for(task, timeout=1.0)

    order, _ = await _state(session_factory)
    assert order.status is OrderStatusEnum.PROCESSING
    assert client.calls == 1


@pytest.mark.asyncio
async def test_terminal_order_is_not_polled(session_factory):
    await _seed_order(session_factory)
    async with session_factory() as session:
        await LedgerService(session).finalize_order(ORDER, OrderStatusEnum.PROCESSED, Decimal("3"))
    client = ScriptedAccrualClient(NotYetAvailable(204))

    await _processor(session_factory, client)(ORDER, RecordingContext())

    _, balance = await _state(session_factory)
    assert client.calls == 0
    assert balance.current == Decimal("3")


def test_backoff_grows_exponentially_and_caps():
    policy = PollingPolicy(retry_interval_seconds=5.0, backoff_ceiling_seconds=120.0)

    assert [policy.backoff_for(n) for n in range(1, 8)] == [5.0, 10.0, 20.0, 40.0, 80.0, 120.0, 120.0]
