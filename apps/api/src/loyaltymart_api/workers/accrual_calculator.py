"""Accrual-side order processor computing rewards for registered orders."""

from __future__ import annotations

from decimal import Decimal, InvalidOperation

from loguru import logger
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from loyaltymart_api.models.order import OrderStatusEnum
from loyaltymart_api.observability.pipeline import PipelineObservabilityStore
from loyaltymart_api.services.accrual.accrual_store import AccrualOrderStore
from loyaltymart_api.services.accrual.mechanic_cache import MechanicCache
from loyaltymart_api.services.accrual.rewards import GoodsItem, calculate_accrual
from loyaltymart_api.services.orders.state_machine import is_terminal

from .order_pool import WorkerContext


class AccrualCalculationProcessor:
    """REGISTERED -> PROCESSING -> PROCESSED with simulated processing delays."""

    def __init__(
        self,
        session_factory: async_sessionmaker[AsyncSession],
        mechanic_cache: MechanicCache,
        *,
        processing_delay_seconds: float = 5.0,
        processed_delay_seconds: float = 10.0,
        observability: PipelineObservabilityStore | None = None,
    ) -> None:
        self._session_factory = session_factory
        self._mechanic_cache = mechanic_cache
        self._processing_delay = processing_delay_seconds
        self._processed_delay = processed_delay_seconds
        self._observability = observability or PipelineObservabilityStore()

    async def __call__(self, number: str, context: WorkerContext) -> None:
        try:
            await self.process(number, context)
        except SQLAlchemyError as exc:
            self._observability.record_failure(number, str(exc))
            logger.exception("Accrual store failed during calculation", order_number=number, error=str(exc))

    async def process(self, number: str, context: WorkerContext) -> None:
        async with self._session_factory() as session:
            order = await AccrualOrderStore(session).get_order(number)
        if order is None or is_terminal(order.status):
            return

        if order.status != OrderStatusEnum.PROCESSING:
            if not await context.sleep(self._processing_delay):
                logger.info("Accrual calculation interrupted by shutdown", order_number=number)
                return
            async with self._session_factory() as session:
                await AccrualOrderStore(session).advance_status(number, OrderStatusEnum.PROCESSING)

        if not await context.sleep(self._processed_delay):
            logger.info("Accrual calculation interrupted by shutdown", order_number=number)
            return

        try:
            goods = [GoodsItem.from_payload(item) for item in order.goods or []]
        except (InvalidOperation, TypeError, AttributeError) as exc:
            logger.warning("Stored goods could not be decoded; order invalid", order_number=number, error=str(exc))
            await self._finish(number, OrderStatusEnum.INVALID, Decimal("0"))
            return

        rules = await self._mechanic_cache.get_rules()
        await self._finish(number, OrderStatusEnum.PROCESSED, calculate_accrual(goods, rules))

    async def _finish(self, number: str, status: OrderStatusEnum, accrual: Decimal) -> None:
        async with self._session_factory() as session:
            store = AccrualOrderStore(session)
            applied = await store.finalize(number, status, accrual)
        if applied:
            self._observability.record_outcome(status.value)
            logger.info(
                "Accrual order finalized",
                order_number=number,
                status=status.value,
                accrual=str(accrual),
            )


__all__ = ["AccrualCalculationProcessor"]
