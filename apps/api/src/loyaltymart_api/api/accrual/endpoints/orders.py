"""Accrual service order registration and polling endpoints."""

from __future__ import annotations

from decimal import Decimal
from typing import List, Optional

from fastapi import APIRouter, Depends, HTTPException, Response, status
from pydantic import BaseModel, Field
from sqlalchemy.ext.asyncio import AsyncSession

from loyaltymart_api.api.dependencies.pipeline import get_accrual_lifecycle
from loyaltymart_api.api.dependencies.rate_limit import enforce_rate_limit
from loyaltymart_api.db.session import get_session
from loyaltymart_api.domain.errors import ConflictError, ValidationError
from loyaltymart_api.models.order import OrderStatusEnum
from loyaltymart_api.services.accrual.accrual_store import AccrualOrderStore
from loyaltymart_api.services.accrual.rewards import GoodsItem
from loyaltymart_api.services.orders.lifecycle import AccrualOrderLifecycle
from loyaltymart_api.services.orders.luhn import validate_luhn


router = APIRouter(prefix="/orders", tags=["Accrual orders"])


class GoodsItemPayload(BaseModel):
    description: str = Field(..., description="Free-text description matched against reward mechanics")
    price: Decimal = Field(..., ge=0, description="Item price")


class AccrualOrderCreate(BaseModel):
    order: str = Field(..., min_length=1, description="Luhn-valid order number")
    goods: List[GoodsItemPayload] = Field(default_factory=list)


class AccrualOrderResponse(BaseModel):
    order: str
    status: OrderStatusEnum
    accrual: Optional[float] = None


@router.get(
    "/{number}",
    response_model=AccrualOrderResponse,
    response_model_exclude_none=True,
    dependencies=[Depends(enforce_rate_limit)],
    responses={
        204: {"description": "Order is not registered"},
        429: {"description": "Too many requests"},
    },
)
async def get_accrual_order(number: str, db: AsyncSession = Depends(get_session)):
    """Report an order's accrual status; the amount appears once PROCESSED."""
    if not validate_luhn(number):
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail="Invalid order number")

    order = await AccrualOrderStore(db).get_order(number)
    if order is None:
        return Response(status_code=status.HTTP_204_NO_CONTENT)

    accrual = float(order.accrual) if order.status == OrderStatusEnum.PROCESSED else None
    return AccrualOrderResponse(order=order.number, status=order.status, accrual=accrual)


@router.post("", status_code=status.HTTP_202_ACCEPTED)
async def register_accrual_order(
    payload: AccrualOrderCreate,
    lifecycle: AccrualOrderLifecycle = Depends(get_accrual_lifecycle),
) -> dict[str, str]:
    goods = [GoodsItem(description=item.description, price=item.price) for item in payload.goods]
    try:
        order = await lifecycle.register_order(payload.order, goods)
    except ValidationError as exc:
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail=str(exc)) from exc
    except ConflictError as exc:
        raise HTTPException(status_code=status.HTTP_409_CONFLICT, detail=str(exc)) from exc
    return {"order": order.number, "status": order.status.value}
