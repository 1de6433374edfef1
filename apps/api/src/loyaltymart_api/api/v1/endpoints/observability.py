"""Observability endpoint for the order pipeline."""

from __future__ import annotations

from fastapi import APIRouter, Depends, Request

from loyaltymart_api.api.dependencies.pipeline import get_pipeline_store
from loyaltymart_api.observability.pipeline import PipelineObservabilityStore


router = APIRouter(prefix="/observability", tags=["Observability"])


@router.get("/pipeline", summary="Order pipeline observability snapshot")
async def get_pipeline_snapshot(
    request: Request,
    store: PipelineObservabilityStore = Depends(get_pipeline_store),
) -> dict[str, object]:
    """Counters, recent events and worker pool occupancy."""
    payload = store.snapshot().as_dict()
    pool = getattr(request.app.state, "order_pool", None)
    payload["pool"] = pool.stats() if pool is not None else None
    return payload
