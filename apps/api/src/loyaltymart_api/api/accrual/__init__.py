from fastapi import APIRouter

from loyaltymart_api.api.v1.endpoints import observability

from .endpoints import goods, orders

router = APIRouter()

router.include_router(orders.router)
router.include_router(goods.router)
router.include_router(observability.router)
