"""Mart user registration."""

from __future__ import annotations

from fastapi import APIRouter, Depends, HTTPException, status
from pydantic import BaseModel, Field

from loyaltymart_api.api.dependencies.pipeline import get_mart_lifecycle
from loyaltymart_api.domain.errors import ConflictError, StorageError, ValidationError
from loyaltymart_api.services.orders.lifecycle import MartOrderLifecycle


router = APIRouter(prefix="/user", tags=["Users"])


class UserRegisterRequest(BaseModel):
    login: str = Field(..., min_length=1, description="Unique user login")


class UserResponse(BaseModel):
    id: str
    login: str


@router.post("/register", response_model=UserResponse, status_code=status.HTTP_201_CREATED)
async def register_user(
    payload: UserRegisterRequest,
    lifecycle: MartOrderLifecycle = Depends(get_mart_lifecycle),
) -> UserResponse:
    """Create a user with a zero balance."""
    try:
        user = await lifecycle.register_user(payload.login)
    except ValidationError as exc:
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail=str(exc)) from exc
    except ConflictError as exc:
        raise HTTPException(status_code=status.HTTP_409_CONFLICT, detail=str(exc)) from exc
    except StorageError as exc:
        raise HTTPException(status_code=status.HTTP_503_SERVICE_UNAVAILABLE, detail=str(exc)) from exc
    return UserResponse(id=str(user.id), login=user.login)
