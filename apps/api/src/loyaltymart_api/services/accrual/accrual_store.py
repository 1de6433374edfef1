"""Persistence for accrual orders and reward mechanics."""

from __future__ import annotations

from decimal import Decimal
from typing import Sequence

from loguru import logger
from sqlalchemy import select, update
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession

from loyaltymart_api.domain.errors import ConflictError
from loyaltymart_api.models.accrual import AccrualOrder, RewardMechanic, RewardTypeEnum
from loyaltymart_api.models.order import OrderStatusEnum
from loyaltymart_api.services.orders.state_machine import (
    TERMINAL_STATUSES,
    allowed_predecessors,
)

from .rewards import GoodsItem


class AccrualOrderStore:
    """Ledger store operations for the accrual service."""

    def __init__(self, session: AsyncSession) -> None:
        self._session = session

    async def get_order(self, number: str) -> AccrualOrder | None:
        stmt = select(AccrualOrder).where(AccrualOrder.number == number)
        result = await self._session.execute(stmt)
        return result.scalar_one_or_none()

    async def create_order(self, number: str, goods: Sequence[GoodsItem]) -> AccrualOrder:
        """Insert a REGISTERED order; a duplicate number raises ``ConflictError``."""

        order = AccrualOrder(
            number=number,
            status=OrderStatusEnum.REGISTERED,
            accrual=Decimal("0"),
            goods=[item.as_payload() for item in goods],
        )
        self._session.add(order)
        try:
            await self._session.commit()
        except IntegrityError as exc:
            await self._session.rollback()
            raise ConflictError(f"Order {number} is already registered") from exc
        await self._session.refresh(order)
        return order

    async def advance_status(self, number: str, target_status: OrderStatusEnum) -> bool:
        """Move an order forward if its current status allows it; returns whether it moved."""

        stmt = (
            update(AccrualOrder)
            .where(AccrualOrder.number == number)
            .where(AccrualOrder.status.in_(allowed_predecessors(target_status)))
            .values(status=target_status)
            .execution_options(synchronize_session=False)
        )
        result = await self._session.execute(stmt)
        await self._session.commit()
        return result.rowcount == 1

    async def finalize(self, number: str, status: OrderStatusEnum, accrual: Decimal) -> bool:
        """Write the terminal status and amount unless the order is already terminal."""

        if status not in TERMINAL_STATUSES:
            raise ValueError(f"{status.value} is not a terminal status")
        amount = accrual if status == OrderStatusEnum.PROCESSED else Decimal("0")
        stmt = (
            update(AccrualOrder)
            .where(AccrualOrder.number == number)
            .where(AccrualOrder.status.in_(allowed_predecessors(status)))
            .values(status=status, accrual=amount)
            .execution_options(synchronize_session=False)
        )
        result = await self._session.execute(stmt)
        await self._session.commit()
        applied = result.rowcount == 1
        if not applied:
            logger.info("Accrual order already finalized", order_number=number, status=status.value)
        return applied

    async def list_pending(self, *, limit: int = 100) -> list[str]:
        stmt = (
            select(AccrualOrder.number)
            .where(AccrualOrder.status.not_in(TERMINAL_STATUSES))
            .order_by(AccrualOrder.created_at.asc())
            .limit(limit)
        )
        result = await self._session.execute(stmt)
        return list(result.scalars())

    async def save_mechanic(
        self,
        *,
        match: str,
        reward: Decimal,
        reward_type: RewardTypeEnum,
    ) -> RewardMechanic:
        mechanic = RewardMechanic(match=match, reward=reward, reward_type=reward_type)
        self._session.add(mechanic)
        try:
            await self._session.commit()
        except IntegrityError as exc:
            await self._session.rollback()
            raise ConflictError(f"Reward mechanic {match!r} already exists") from exc
        await self._session.refresh(mechanic)
        return mechanic

    async def list_mechanics(self) -> list[RewardMechanic]:
        stmt = select(RewardMechanic).order_by(RewardMechanic.created_at.asc())
        result = await self._session.execute(stmt)
        return list(result.scalars())


__all__ = ["AccrualOrderStore"]
