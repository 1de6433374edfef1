"""Balance, withdrawal and withdrawal history endpoints."""

from __future__ import annotations

from datetime import datetime
from decimal import Decimal
from typing import List

from fastapi import APIRouter, Depends, HTTPException, Response, status
from pydantic import BaseModel, Field
from sqlalchemy.ext.asyncio import AsyncSession

from loyaltymart_api.api.dependencies.pipeline import get_mart_lifecycle
from loyaltymart_api.api.dependencies.session import require_mart_user
from loyaltymart_api.db.session import get_session
from loyaltymart_api.domain.errors import (
    InsufficientFundsError,
    NotFoundError,
    StorageError,
    ValidationError,
)
from loyaltymart_api.models.user import User
from loyaltymart_api.services.ledger import LedgerService
from loyaltymart_api.services.orders.lifecycle import MartOrderLifecycle


router = APIRouter(prefix="/user", tags=["Balance"])


class BalanceResponse(BaseModel):
    current: float
    withdrawn: float


class WithdrawRequest(BaseModel):
    order: str = Field(..., min_length=1, description="Order number the points are spent on")
    sum: Decimal = Field(..., gt=0, decimal_places=2, description="Points to withdraw, at most two decimal places")


class WithdrawalResponse(BaseModel):
    order: str
    sum: float
    processed_at: datetime


@router.get("/balance", response_model=BalanceResponse)
async def get_balance(
    current_user: User = Depends(require_mart_user),
    db: AsyncSession = Depends(get_session),
) -> BalanceResponse:
    try:
        snapshot = await LedgerService(db).get_balance(current_user.id)
    except NotFoundError as exc:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail=str(exc)) from exc
    except StorageError as exc:
        raise HTTPException(status_code=status.HTTP_503_SERVICE_UNAVAILABLE, detail=str(exc)) from exc
    return BalanceResponse(current=float(snapshot.current), withdrawn=float(snapshot.withdrawn))


@router.post(
    "/balance/withdraw",
    responses={
        402: {"description": "Insufficient funds"},
        422: {"description": "Order number fails the Luhn check"},
    },
)
async def withdraw(
    payload: WithdrawRequest,
    current_user: User = Depends(require_mart_user),
    lifecycle: MartOrderLifecycle = Depends(get_mart_lifecycle),
) -> Response:
    """Spend points against an order number."""
    try:
        await lifecycle.withdraw(current_user.id, payload.order, payload.sum)
    except ValidationError as exc:
        raise HTTPException(status_code=422, detail=str(exc)) from exc
    except InsufficientFundsError as exc:
        raise HTTPException(status_code=status.HTTP_402_PAYMENT_REQUIRED, detail=str(exc)) from exc
    except NotFoundError as exc:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail=str(exc)) from exc
    except StorageError as exc:
        raise HTTPException(status_code=status.HTTP_503_SERVICE_UNAVAILABLE, detail=str(exc)) from exc
    return Response(status_code=status.HTTP_200_OK)


@router.get(
    "/withdrawals",
    response_model=List[WithdrawalResponse],
    responses={204: {"description": "No withdrawals"}},
)
async def list_withdrawals(
    current_user: User = Depends(require_mart_user),
    db: AsyncSession = Depends(get_session),
):
    try:
        withdrawals = await LedgerService(db).list_withdrawals(current_user.id)
    except StorageError as exc:
        raise HTTPException(status_code=status.HTTP_503_SERVICE_UNAVAILABLE, detail=str(exc)) from exc
    if not withdrawals:
        return Response(status_code=status.HTTP_204_NO_CONTENT)
    return [
        WithdrawalResponse(
            order=withdrawal.order_number,
            sum=float(withdrawal.sum),
            processed_at=withdrawal.processed_at,
        )
        for withdrawal in withdrawals
    ]
