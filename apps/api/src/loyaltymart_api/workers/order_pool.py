"""Bounded worker pool driving per-order processing."""

from __future__ import annotations

import asyncio
from enum import Enum
from typing import Awaitable, Callable, Literal

from loguru import logger

from loyaltymart_api.domain.errors import (
    OrderQueueFullError,
    PoolClosedError,
    PoolShutdownTimeoutError,
)
from loyaltymart_api.observability.pipeline import PipelineObservabilityStore
from loyaltymart_api.observability.tracing import order_span

OverflowPolicy = Literal["spawn", "reject"]


class SubmitOutcome(str, Enum):
    QUEUED = "queued"
    OVERFLOW = "overflow"
    DUPLICATE = "duplicate"


class WorkerContext:
    """Handed to order handlers so every wait observes pool shutdown."""

    def __init__(self, stop_event: asyncio.Event) -> None:
        self._stop_event = stop_event

    @property
    def stopping(self) -> bool:
        return self._stop_event.is_set()

    async def sleep(self, seconds: float) -> bool:
        """Wait ``seconds``; returns False when shutdown interrupted the wait."""

        if self._stop_event.is_set():
            return False
        if seconds <= 0:
            await asyncio.sleep(0)
            return not self._stop_event.is_set()
        try:
            await asyncio.wait_for(self._stop_event.wait(), timeout=seconds)
        except asyncio.TimeoutError:
            return True
        return False


OrderHandler = Callable[[str, WorkerContext], Awaitable[None]]


class OrderWorkerPool:
    """Fixed set of asyncio workers draining a bounded FIFO of order numbers.

    ``submit`` never blocks. An order number already queued or in flight is
    ignored, so one order is handled by at most one task at a time. When the
    queue is full the ``spawn`` policy runs the order in a tracked overflow
    task (awaited on shutdown) and the ``reject`` policy raises
    ``OrderQueueFullError``.
    """

    def __init__(
        self,
        handler: OrderHandler,
        *,
        worker_count: int = 20,
        queue_size: int = 20,
        overflow_policy: OverflowPolicy = "spawn",
        observability: PipelineObservabilityStore | None = None,
        name: str = "orders",
    ) -> None:
        if worker_count <= 0:
            raise ValueError("worker_count must be positive")
        if queue_size <= 0:
            raise ValueError("queue_size must be positive")
        self._handler = handler
        self._worker_count = worker_count
        self._queue_size = queue_size
        self._overflow_policy = overflow_policy
        self._observability = observability or PipelineObservabilityStore()
        self._name = name
        self._queue: asyncio.Queue[str] = asyncio.Queue(maxsize=queue_size)
        self._stop_event = asyncio.Event()
        self._context = WorkerContext(self._stop_event)
        self._workers: list[asyncio.Task] = []
        self._overflow_tasks: set[asyncio.Task] = set()
        self._pending: set[str] = set()
        self._active = 0
        self._closed = False

    @property
    def is_running(self) -> bool:
        return bool(self._workers) and not self._closed

    @property
    def worker_count(self) -> int:
        return self._worker_count

    @property
    def queue_size(self) -> int:
        return self._queue_size

    @property
    def overflow_policy(self) -> OverflowPolicy:
        return self._overflow_policy

    def start(self) -> None:
        if self._workers:
            return
        self._workers = [
            asyncio.create_task(self._worker_loop(index), name=f"{self._name}-worker-{index}")
            for index in range(self._worker_count)
        ]
        logger.info(
            "Order worker pool started",
            pool=self._name,
            worker_count=self._worker_count,
            queue_size=self._queue_size,
            overflow_policy=self._overflow_policy,
        )

    def is_pending(self, number: str) -> bool:
        return number in self._pending

    def submit(self, number: str) -> SubmitOutcome:
        if self._closed:
            raise PoolClosedError(f"Pool {self._name} is shutting down")
        if number in self._pending:
            return SubmitOutcome.DUPLICATE

        try:
            self._queue.put_nowait(number)
        except asyncio.QueueFull:
            if self._overflow_policy == "reject":
                self._observability.record_rejected()
                logger.warning("Order queue full; submission rejected", pool=self._name, order_number=number)
                raise OrderQueueFullError(f"Order queue {self._name} is full")
            self._pending.add(number)
            task = asyncio.create_task(self._run(number), name=f"{self._name}-overflow-{number}")
            self._overflow_tasks.add(task)
            task.add_done_callback(self._overflow_tasks.discard)
            self._observability.record_overflow()
            logger.warning("Order queue full; processing in overflow task", pool=self._name, order_number=number)
            return SubmitOutcome.OVERFLOW

        self._pending.add(number)
        self._observability.record_enqueued()
        return SubmitOutcome.QUEUED

    async def shutdown(self, timeout: float, *, interrupt: bool = True) -> None:
        """Stop intake and wait for queued, in-flight and overflow work.

        With ``interrupt`` the handlers are told to stop at their next wait,
        leaving unfinished orders non-terminal. Work still running after
        ``timeout`` is left alone and reported via ``PoolShutdownTimeoutError``.
        """

        self._closed = True
        if interrupt:
            self._stop_event.set()

        join_task = asyncio.create_task(self._queue.join())
        waiting = {join_task, *self._overflow_tasks}
        _, still_pending = await asyncio.wait(waiting, timeout=timeout)

        if still_pending:
            join_task.cancel()
            unfinished = self._active + self._queue.qsize()
            logger.error(
                "Order worker pool drain timed out",
                pool=self._name,
                unfinished=unfinished,
                timeout=timeout,
            )
            raise PoolShutdownTimeoutError(unfinished, timeout)

        for worker in self._workers:
            worker.cancel()
        await asyncio.gather(*self._workers, return_exceptions=True)
        self._workers = []
        logger.info("Order worker pool stopped", pool=self._name)

    def stats(self) -> dict[str, object]:
        return {
            "pool": self._name,
            "workers": self._worker_count,
            "queue_size": self._queue_size,
            "queued": self._queue.qsize(),
            "in_flight": self._active,
            "overflow_active": len(self._overflow_tasks),
            "overflow_policy": self._overflow_policy,
            "closed": self._closed,
        }

    async def _worker_loop(self, index: int) -> None:
        while True:
            number = await self._queue.get()
            try:
                await self._run(number)
            finally:
                self._queue.task_done()

    async def _run(self, number: str) -> None:
        self._active += 1
        try:
            with logger.contextualize(pool=self._name, order_number=number), order_span(self._name, number):
                await self._handler(number, self._context)
        except asyncio.CancelledError:
            raise
        except Exception as exc:
            self._observability.record_failure(number, str(exc))
            logger.exception("Order task failed", pool=self._name, order_number=number, error=str(exc))
        finally:
            self._active -= 1
            self._pending.discard(number)


__all__ = [
    "OrderHandler",
    "OrderWorkerPool",
    "OverflowPolicy",
    "SubmitOutcome",
    "WorkerContext",
]
