"""Mart-side order processor polling the accrual service until a terminal result."""

from __future__ import annotations

from dataclasses import dataclass

from loguru import logger
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from loyaltymart_api.core.settings import Settings
from loyaltymart_api.domain.errors import StorageError
from loyaltymart_api.models.order import OrderStatusEnum
from loyaltymart_api.observability.pipeline import PipelineObservabilityStore
from loyaltymart_api.services.accrual.client import (
    AccrualClient,
    AccrualOrderSnapshot,
    NotYetAvailable,
    RateLimited,
    TransientFailure,
)
from loyaltymart_api.services.ledger import LedgerService
from loyaltymart_api.services.orders.state_machine import is_terminal

from .order_pool import WorkerContext


@dataclass(frozen=True)
class PollingPolicy:
    """Wait and retry budget applied to one order's polling loop."""

    poll_interval_seconds: float = 5.0
    retry_interval_seconds: float = 5.0
    backoff_ceiling_seconds: float = 120.0
    max_attempts: int = 60

    @classmethod
    def from_settings(cls, config: Settings) -> "PollingPolicy":
        return cls(
            poll_interval_seconds=config.accrual_poll_interval_seconds,
            retry_interval_seconds=config.accrual_retry_interval_seconds,
            backoff_ceiling_seconds=config.accrual_backoff_ceiling_seconds,
            max_attempts=config.accrual_max_attempts,
        )

    def backoff_for(self, consecutive_failures: int) -> float:
        exponent = max(consecutive_failures - 1, 0)
        return min(self.backoff_ceiling_seconds, self.retry_interval_seconds * (2**exponent))


class AccrualReconciliationProcessor:
    """Drive one mart order from NEW to a terminal status.

    Rate-limited responses wait for the advertised delay without spending
    an attempt. Every other poll spends one; once ``max_attempts`` are spent
    the order is deferred and left for the pending-order sweep.
    """

    def __init__(
        self,
        session_factory: async_sessionmaker[AsyncSession],
        client: AccrualClient,
        *,
        policy: PollingPolicy | None = None,
        observability: PipelineObservabilityStore | None = None,
    ) -> None:
        self._session_factory = session_factory
        self._client = client
        self._policy = policy or PollingPolicy()
        self._observability = observability or PipelineObservabilityStore()

    @property
    def policy(self) -> PollingPolicy:
        return self._policy

    async def __call__(self, number: str, context: WorkerContext) -> None:
        try:
            await self.process(number, context)
        except (StorageError, SQLAlchemyError) as exc:
            self._observability.record_failure(number, str(exc))
            logger.exception("Ledger store failed during reconciliation", order_number=number, error=str(exc))

    async def process(self, number: str, context: WorkerContext) -> None:
        if not await self._begin(number):
            return

        attempts = 0
        consecutive_failures = 0
        while attempts < self._policy.max_attempts:
            if context.stopping:
                self._log_abandoned(number, attempts)
                return

            result = await self._client.fetch_order(number)

            if isinstance(result, RateLimited):
                self._observability.record_rate_limited(result.retry_after_seconds)
                logger.info(
                    "Accrual service rate limited polling",
                    order_number=number,
                    retry_after_seconds=result.retry_after_seconds,
                )
                if not await context.sleep(result.retry_after_seconds):
                    self._log_abandoned(number, attempts)
                    return
                continue

            attempts += 1
            if isinstance(result, AccrualOrderSnapshot):
                if is_terminal(result.status):
                    await self._finalize(number, result)
                    return
                consecutive_failures = 0
                delay = self._policy.poll_interval_seconds
            elif isinstance(result, NotYetAvailable):
                consecutive_failures = 0
                delay = self._policy.poll_interval_seconds
            else:
                consecutive_failures += 1
                delay = self._policy.backoff_for(consecutive_failures)
                self._observability.record_retry()
                logger.warning(
                    "Accrual poll failed; backing off",
                    order_number=number,
                    reason=result.reason if isinstance(result, TransientFailure) else None,
                    attempt=attempts,
                    delay_seconds=delay,
                )

            if attempts >= self._policy.max_attempts:
                break
            if not await context.sleep(delay):
                self._log_abandoned(number, attempts)
                return

        self._observability.record_deferred(number)
        logger.warning(
            "Accrual polling attempts exhausted; order deferred",
            order_number=number,
            attempts=attempts,
        )

    async def _begin(self, number: str) -> bool:
        async with self._session_factory() as session:
            ledger = LedgerService(session)
            order = await ledger.get_order(number)
            if order is None:
                logger.warning("Order vanished before reconciliation", order_number=number)
                return False
            if is_terminal(order.status):
                return False
            if order.status != OrderStatusEnum.PROCESSING:
                await ledger.advance_order_status(number, OrderStatusEnum.PROCESSING)
        return True

    async def _finalize(self, number: str, snapshot: AccrualOrderSnapshot) -> None:
        async with self._session_factory() as session:
            applied = await LedgerService(session).finalize_order(number, snapshot.status, snapshot.accrual)
        if applied:
            self._observability.record_outcome(snapshot.status.value)

    def _log_abandoned(self, number: str, attempts: int) -> None:
        logger.info("Reconciliation interrupted by shutdown", order_number=number, attempts=attempts)


__all__ = ["AccrualReconciliationProcessor", "PollingPolicy"]
