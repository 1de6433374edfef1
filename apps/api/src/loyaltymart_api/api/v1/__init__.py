from fastapi import APIRouter

from .endpoints import balance, observability, orders, users

router = APIRouter()

router.include_router(users.router)
router.include_router(orders.router)
router.include_router(balance.router)
router.include_router(observability.router)
