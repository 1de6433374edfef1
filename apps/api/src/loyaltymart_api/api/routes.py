from fastapi import APIRouter

from .accrual import router as accrual_v1_router
from .v1 import router as v1_router

api_router = APIRouter(prefix="/api")
api_router.include_router(v1_router)

accrual_api_router = APIRouter(prefix="/api")
accrual_api_router.include_router(accrual_v1_router)
