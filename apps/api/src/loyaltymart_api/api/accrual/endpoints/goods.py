"""Reward mechanic registration."""

from __future__ import annotations

from decimal import Decimal

from fastapi import APIRouter, Depends, HTTPException, status
from pydantic import BaseModel, Field

from loyaltymart_api.api.dependencies.pipeline import get_accrual_lifecycle
from loyaltymart_api.domain.errors import ConflictError, ValidationError
from loyaltymart_api.services.orders.lifecycle import AccrualOrderLifecycle


router = APIRouter(prefix="/goods", tags=["Reward mechanics"])


class RewardMechanicCreate(BaseModel):
    match: str = Field(..., min_length=1, description="Case-insensitive substring of goods descriptions")
    reward: Decimal = Field(..., description="Percent of the price or a fixed number of points")
    reward_type: str = Field(..., description="percent (or %) / points (or pt)")


class RewardMechanicResponse(BaseModel):
    match: str
    reward: float
    reward_type: str


@router.post("", response_model=RewardMechanicResponse)
async def register_mechanic(
    payload: RewardMechanicCreate,
    lifecycle: AccrualOrderLifecycle = Depends(get_accrual_lifecycle),
) -> RewardMechanicResponse:
    try:
        mechanic = await lifecycle.register_mechanic(payload.match, payload.reward, payload.reward_type)
    except ValidationError as exc:
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail=str(exc)) from exc
    except ConflictError as exc:
        raise HTTPException(status_code=status.HTTP_409_CONFLICT, detail=str(exc)) from exc
    return RewardMechanicResponse(
        match=mechanic.match,
        reward=float(mechanic.reward),
        reward_type=mechanic.reward_type.value,
    )
