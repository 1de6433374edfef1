"""Mart ledger store: users, orders, balances and withdrawals.

Every mutation that guards an invariant is a single conditional statement:
status writes are keyed on the allowed predecessor statuses, and balance
debits only apply while ``current_balance >= sum``.
"""

from __future__ import annotations

from contextlib import asynccontextmanager
from dataclasses import dataclass
from decimal import Decimal
from typing import AsyncIterator
from uuid import UUID

from loguru import logger
from sqlalchemy import select, update
from sqlalchemy.exc import IntegrityError, SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession

from loyaltymart_api.domain.errors import (
    ConflictError,
    InsufficientFundsError,
    NotFoundError,
    StorageError,
)
from loyaltymart_api.models.order import Order, OrderStatusEnum
from loyaltymart_api.models.user import User
from loyaltymart_api.models.withdrawal import Withdrawal
from loyaltymart_api.services.orders.state_machine import (
    TERMINAL_STATUSES,
    allowed_predecessors,
)


@dataclass(frozen=True, slots=True)
class BalanceSnapshot:
    current: Decimal
    withdrawn: Decimal


@dataclass(frozen=True, slots=True)
class OrderRegistration:
    """Result of ``create_order``: the stored order and whether this call inserted it."""

    order: Order
    created: bool


class LedgerService:
    """Ledger store operations for the user-facing mart service."""

    def __init__(self, session: AsyncSession) -> None:
        self._session = session

    @asynccontextmanager
    async def _storage_guard(self, operation: str) -> AsyncIterator[None]:
        try:
            yield
        except SQLAlchemyError as exc:
            await self._session.rollback()
            raise StorageError(f"{operation} failed: {exc}") from exc

    async def create_user(self, login: str) -> User:
        user = User(login=login, current_balance=Decimal("0"), withdrawn=Decimal("0"))
        async with self._storage_guard("create_user"):
            self._session.add(user)
            try:
                await self._session.commit()
            except IntegrityError as exc:
                await self._session.rollback()
                raise ConflictError(f"Login {login!r} is already taken") from exc
            await self._session.refresh(user)
        return user

    async def get_user(self, user_id: UUID) -> User | None:
        async with self._storage_guard("get_user"):
            return await self._session.get(User, user_id)

    async def get_order(self, number: str) -> Order | None:
        stmt = select(Order).where(Order.number == number)
        async with self._storage_guard("get_order"):
            result = await self._session.execute(stmt)
        return result.scalar_one_or_none()

    async def create_order(self, user_id: UUID, number: str) -> OrderRegistration:
        """Insert a NEW order owned by ``user_id``.

        An existing order owned by the same user is returned with
        ``created=False``; one owned by another user raises ``ConflictError``.
        Concurrent inserts of the same number resolve through the unique index.
        """

        existing = await self.get_order(number)
        if existing is None:
            order = Order(number=number, user_id=user_id, status=OrderStatusEnum.NEW, accrual=Decimal("0"))
            async with self._storage_guard("create_order"):
                self._session.add(order)
                try:
                    await self._session.commit()
                except IntegrityError:
                    await self._session.rollback()
                    existing = await self.get_order(number)
                    if existing is None:
                        raise
                else:
                    await self._session.refresh(order)
                    return OrderRegistration(order=order, created=True)

        if existing.user_id != user_id:
            raise ConflictError(f"Order {number} was submitted by another user")
        return OrderRegistration(order=existing, created=False)

    async def list_user_orders(self, user_id: UUID) -> list[Order]:
        stmt = (
            select(Order)
            .where(Order.user_id == user_id)
            .order_by(Order.uploaded_at.desc(), Order.number.desc())
        )
        async with self._storage_guard("list_user_orders"):
            result = await self._session.execute(stmt)
        return list(result.scalars())

    async def list_pending_orders(self, *, limit: int = 100) -> list[str]:
        stmt = (
            select(Order.number)
            .where(Order.status.not_in(TERMINAL_STATUSES))
            .order_by(Order.uploaded_at.asc())
            .limit(limit)
        )
        async with self._storage_guard("list_pending_orders"):
            result = await self._session.execute(stmt)
        return list(result.scalars())

    async def advance_order_status(self, number: str, target_status: OrderStatusEnum) -> bool:
        """Move a non-terminal order forward; returns whether the write applied."""

        stmt = (
            update(Order)
            .where(Order.number == number)
            .where(Order.status.in_(allowed_predecessors(target_status)))
            .values(status=target_status)
            .execution_options(synchronize_session=False)
        )
        async with self._storage_guard("advance_order_status"):
            result = await self._session.execute(stmt)
            await self._session.commit()
        return result.rowcount == 1

    async def finalize_order(self, number: str, status: OrderStatusEnum, accrual: Decimal) -> bool:
        """Write a terminal status and, for PROCESSED, credit the owner once.

        The status write and the credit share one transaction; the credit only
        runs when the guarded status write changed the row, so repeated or
        concurrent finalization of the same order cannot credit twice.
        """

        if status not in TERMINAL_STATUSES:
            raise ValueError(f"{status.value} is not a terminal status")
        amount = accrual if status == OrderStatusEnum.PROCESSED else Decimal("0")

        status_stmt = (
            update(Order)
            .where(Order.number == number)
            .where(Order.status.in_(allowed_predecessors(status)))
            .values(status=status, accrual=amount)
            .execution_options(synchronize_session=False)
        )
        owner_subquery = select(Order.user_id).where(Order.number == number).scalar_subquery()
        credit_stmt = (
            update(User)
            .where(User.id == owner_subquery)
            .values(current_balance=User.current_balance + amount)
            .execution_options(synchronize_session=False)
        )

        async with self._storage_guard("finalize_order"):
            result = await self._session.execute(status_stmt)
            applied = result.rowcount == 1
            if applied and amount > 0:
                await self._session.execute(credit_stmt)
            await self._session.commit()

        if applied:
            logger.info(
                "Order finalized",
                order_number=number,
                status=status.value,
                accrual=str(amount),
            )
        else:
            logger.info("Order already terminal; finalization skipped", order_number=number)
        return applied

    async def get_balance(self, user_id: UUID) -> BalanceSnapshot:
        user = await self.get_user(user_id)
        if user is None:
            raise NotFoundError(f"User {user_id} not found")
        return BalanceSnapshot(
            current=Decimal(user.current_balance or 0),
            withdrawn=Decimal(user.withdrawn or 0),
        )

    async def withdraw(self, user_id: UUID, order_number: str, amount: Decimal) -> Withdrawal:
        """Debit ``amount`` and record the withdrawal, or raise without mutating."""

        if amount <= 0:
            raise ValueError("Withdrawal sum must be positive")

        debit_stmt = (
            update(User)
            .where(User.id == user_id)
            .where(User.current_balance >= amount)
            .values(
                current_balance=User.current_balance - amount,
                withdrawn=User.withdrawn + amount,
            )
            .execution_options(synchronize_session=False)
        )
        async with self._storage_guard("withdraw"):
            result = await self._session.execute(debit_stmt)
            if result.rowcount != 1:
                await self._session.rollback()
                user = await self.get_user(user_id)
                if user is None:
                    raise NotFoundError(f"User {user_id} not found")
                raise InsufficientFundsError(amount, Decimal(user.current_balance or 0))

            withdrawal = Withdrawal(user_id=user_id, order_number=order_number, sum=amount)
            self._session.add(withdrawal)
            await self._session.commit()
        await self._session.refresh(withdrawal)
        logger.info(
            "Withdrawal recorded",
            user_id=str(user_id),
            order_number=order_number,
            amount=str(amount),
        )
        return withdrawal

    async def list_withdrawals(self, user_id: UUID) -> list[Withdrawal]:
        stmt = (
            select(Withdrawal)
            .where(Withdrawal.user_id == user_id)
            .order_by(Withdrawal.processed_at.desc())
        )
        async with self._storage_guard("list_withdrawals"):
            result = await self._session.execute(stmt)
        return list(result.scalars())


__all__ = ["BalanceSnapshot", "LedgerService", "OrderRegistration"]
