"""Mart order submission and listing endpoints."""

from __future__ import annotations

from datetime import datetime
from typing import List, Optional

from fastapi import APIRouter, Depends, HTTPException, Request, Response, status
from loguru import logger
from pydantic import BaseModel
from sqlalchemy.ext.asyncio import AsyncSession

from loyaltymart_api.api.dependencies.pipeline import get_mart_lifecycle
from loyaltymart_api.api.dependencies.session import require_mart_user
from loyaltymart_api.db.session import get_session
from loyaltymart_api.domain.errors import ConflictError, StorageError, ValidationError
from loyaltymart_api.models.order import Order, OrderStatusEnum
from loyaltymart_api.models.user import User
from loyaltymart_api.services.ledger import LedgerService
from loyaltymart_api.services.orders.lifecycle import MartOrderLifecycle, SubmissionOutcome


router = APIRouter(prefix="/user/orders", tags=["Orders"])


class OrderResponse(BaseModel):
    """Order as shown to its owner; ``accrual`` is only set once PROCESSED."""
    number: str
    status: OrderStatusEnum
    accrual: Optional[float] = None
    uploaded_at: datetime


def _order_response(order: Order) -> OrderResponse:
    accrual = float(order.accrual) if order.status == OrderStatusEnum.PROCESSED else None
    return OrderResponse(
        number=order.number,
        status=order.status,
        accrual=accrual,
        uploaded_at=order.uploaded_at,
    )


@router.post(
    "",
    status_code=status.HTTP_202_ACCEPTED,
    responses={
        200: {"description": "Order was already submitted by this user"},
        409: {"description": "Order was submitted by another user"},
        422: {"description": "Order number fails the Luhn check"},
    },
)
async def submit_order(
    request: Request,
    current_user: User = Depends(require_mart_user),
    lifecycle: MartOrderLifecycle = Depends(get_mart_lifecycle),
) -> Response:
    """Accept a plain-text order number for accrual reconciliation."""
    content_type = request.headers.get("content-type", "")
    if not content_type.startswith("text/plain"):
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail="Expected text/plain body")

    number = (await request.body()).decode("utf-8", errors="replace").strip()
    if not number:
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail="Order number is required")

    try:
        outcome = await lifecycle.submit_order(current_user.id, number)
    except ValidationError as exc:
        raise HTTPException(status_code=422, detail=str(exc)) from exc
    except ConflictError as exc:
        raise HTTPException(status_code=status.HTTP_409_CONFLICT, detail=str(exc)) from exc
    except StorageError as exc:
        logger.exception("Order submission failed", order_number=number, error=str(exc))
        raise HTTPException(status_code=status.HTTP_503_SERVICE_UNAVAILABLE, detail=str(exc)) from exc

    if outcome == SubmissionOutcome.ALREADY_SUBMITTED:
        return Response(status_code=status.HTTP_200_OK)
    return Response(status_code=status.HTTP_202_ACCEPTED)


@router.get("", response_model=List[OrderResponse], responses={204: {"description": "No orders"}})
async def list_orders(
    current_user: User = Depends(require_mart_user),
    db: AsyncSession = Depends(get_session),
):
    """List the caller's orders, newest first."""
    try:
        orders = await LedgerService(db).list_user_orders(current_user.id)
    except StorageError as exc:
        raise HTTPException(status_code=status.HTTP_503_SERVICE_UNAVAILABLE, detail=str(exc)) from exc
    if not orders:
        return Response(status_code=status.HTTP_204_NO_CONTENT)
    return [_order_response(order) for order in orders]


@router.get("/{number}", response_model=OrderResponse)
async def get_order(
    number: str,
    current_user: User = Depends(require_mart_user),
    db: AsyncSession = Depends(get_session),
) -> OrderResponse:
    try:
        order = await LedgerService(db).get_order(number)
    except StorageError as exc:
        raise HTTPException(status_code=status.HTTP_503_SERVICE_UNAVAILABLE, detail=str(exc)) from exc
    if order is None or order.user_id != current_user.id:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="Order not found")
    return _order_response(order)
