"""Accessors for pipeline components stored on ``app.state`` by the lifespan."""

from __future__ import annotations

from fastapi import HTTPException, Request, status

from loyaltymart_api.observability.pipeline import PipelineObservabilityStore
from loyaltymart_api.services.orders.lifecycle import AccrualOrderLifecycle, MartOrderLifecycle


def _state_attr(request: Request, name: str):
    value = getattr(request.app.state, name, None)
    if value is None:
        raise HTTPException(
            status_code=status.HTTP_503_SERVICE_UNAVAILABLE,
            detail="Order pipeline is not running",
        )
    return value


def get_mart_lifecycle(request: Request) -> MartOrderLifecycle:
    return _state_attr(request, "lifecycle")


def get_accrual_lifecycle(request: Request) -> AccrualOrderLifecycle:
    return _state_attr(request, "lifecycle")


def get_pipeline_store(request: Request) -> PipelineObservabilityStore:
    return _state_attr(request, "pipeline_store")
