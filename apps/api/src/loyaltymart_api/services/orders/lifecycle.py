"""Order intake for the mart and accrual services.

Both lifecycles validate, persist and then enqueue. Persisting comes first,
so an order that cannot be enqueued (full queue under the ``reject``
policy, or a pool that is shutting down) is still picked up by the
pending-order sweep.
"""

from __future__ import annotations

from decimal import Decimal
from enum import Enum
from typing import Sequence
from uuid import UUID

from loguru import logger
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from loyaltymart_api.domain.errors import (
    OrderQueueFullError,
    PoolClosedError,
    ValidationError,
)
from loyaltymart_api.models.accrual import AccrualOrder, RewardMechanic, RewardTypeEnum
from loyaltymart_api.models.user import User
from loyaltymart_api.models.withdrawal import Withdrawal
from loyaltymart_api.services.accrual.accrual_store import AccrualOrderStore
from loyaltymart_api.services.accrual.mechanic_cache import MechanicCache
from loyaltymart_api.services.accrual.rewards import GoodsItem, MechanicRule
from loyaltymart_api.services.ledger import LedgerService
from loyaltymart_api.workers.order_pool import OrderWorkerPool
from loyaltymart_api.workers.pending_order_sweeper import PendingOrderSweeper

from .luhn import validate_luhn
from .state_machine import is_terminal


class SubmissionOutcome(str, Enum):
    ACCEPTED = "accepted"
    ALREADY_SUBMITTED = "already_submitted"


def _require_valid_number(number: str) -> str:
    normalized = number.strip()
    if not validate_luhn(normalized):
        raise ValidationError(f"Order number {normalized!r} fails the Luhn check")
    return normalized


class _PipelineLifecycle:
    def __init__(
        self,
        session_factory: async_sessionmaker[AsyncSession],
        pool: OrderWorkerPool,
        *,
        sweeper: PendingOrderSweeper | None = None,
    ) -> None:
        self._session_factory = session_factory
        self._pool = pool
        self._sweeper = sweeper

    @property
    def pool(self) -> OrderWorkerPool:
        return self._pool

    @property
    def sweeper(self) -> PendingOrderSweeper | None:
        return self._sweeper

    async def start(self) -> None:
        self._pool.start()
        if self._sweeper is not None:
            self._sweeper.start()

    async def shutdown(self, timeout: float) -> None:
        """Stop the sweep, then drain the pool within ``timeout`` seconds."""

        if self._sweeper is not None:
            await self._sweeper.stop()
        await self._pool.shutdown(timeout)

    def _enqueue(self, number: str) -> None:
        try:
            self._pool.submit(number)
        except (OrderQueueFullError, PoolClosedError) as exc:
            logger.warning("Order persisted but not enqueued", order_number=number, reason=str(exc))


class MartOrderLifecycle(_PipelineLifecycle):
    """User-facing operations of the mart: registration, orders, withdrawals."""

    async def register_user(self, login: str) -> User:
        normalized = login.strip()
        if not normalized:
            raise ValidationError("Login must not be empty")
        async with self._session_factory() as session:
            user = await LedgerService(session).create_user(normalized)
        logger.info("User registered", user_id=str(user.id), login=normalized)
        return user

    async def submit_order(self, user_id: UUID, number: str) -> SubmissionOutcome:
        normalized = _require_valid_number(number)
        async with self._session_factory() as session:
            registration = await LedgerService(session).create_order(user_id, normalized)

        if not registration.created:
            # resubmission keeps a stalled order moving
            if not is_terminal(registration.order.status):
                self._enqueue(normalized)
            return SubmissionOutcome.ALREADY_SUBMITTED

        logger.info("Order submitted", order_number=normalized, user_id=str(user_id))
        self._enqueue(normalized)
        return SubmissionOutcome.ACCEPTED

    async def withdraw(self, user_id: UUID, number: str, amount: Decimal) -> Withdrawal:
        normalized = _require_valid_number(number)
        async with self._session_factory() as session:
            return await LedgerService(session).withdraw(user_id, normalized, amount)


class AccrualOrderLifecycle(_PipelineLifecycle):
    """Accrual-side intake of orders and reward mechanics."""

    def __init__(
        self,
        session_factory: async_sessionmaker[AsyncSession],
        pool: OrderWorkerPool,
        mechanic_cache: MechanicCache,
        *,
        sweeper: PendingOrderSweeper | None = None,
    ) -> None:
        super().__init__(session_factory, pool, sweeper=sweeper)
        self._mechanic_cache = mechanic_cache

    @property
    def mechanic_cache(self) -> MechanicCache:
        return self._mechanic_cache

    async def register_order(self, number: str, goods: Sequence[GoodsItem]) -> AccrualOrder:
        normalized = _require_valid_number(number)
        async with self._session_factory() as session:
            order = await AccrualOrderStore(session).create_order(normalized, goods)
        logger.info("Accrual order registered", order_number=normalized, goods=len(goods))
        self._enqueue(normalized)
        return order

    async def register_mechanic(
        self,
        match: str,
        reward: Decimal,
        reward_type: str | RewardTypeEnum,
    ) -> RewardMechanic:
        if not match.strip():
            raise ValidationError("Reward match must not be empty")
        if reward < 0:
            raise ValidationError("Reward must not be negative")
        try:
            parsed_type = (
                reward_type if isinstance(reward_type, RewardTypeEnum) else RewardTypeEnum.parse(reward_type)
            )
        except ValueError as exc:
            raise ValidationError(f"Unknown reward type {reward_type!r}") from exc

        async with self._session_factory() as session:
            mechanic = await AccrualOrderStore(session).save_mechanic(
                match=match,
                reward=reward,
                reward_type=parsed_type,
            )
        try:
            await self._mechanic_cache.add(MechanicRule.from_model(mechanic))
        except SQLAlchemyError as exc:
            # the cache stays stale, so the next reader reloads it
            logger.warning("Reward mechanic cache reload failed", match=match, error=str(exc))
        logger.info(
            "Reward mechanic registered",
            match=match,
            reward=str(reward),
            reward_type=parsed_type.value,
        )
        return mechanic


__all__ = ["AccrualOrderLifecycle", "MartOrderLifecycle", "SubmissionOutcome"]
