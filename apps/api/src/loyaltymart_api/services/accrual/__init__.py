"""Accrual calculation, rule caching and polling client exports."""

from .accrual_store import AccrualOrderStore  # noqa: F401
from .client import (  # noqa: F401
    AccrualClient,
    AccrualOrderSnapshot,
    AccrualPollResult,
    NotYetAvailable,
    RateLimited,
    TransientFailure,
)
from .mechanic_cache import MechanicCache  # noqa: F401
from .rewards import GoodsItem, MechanicRule, calculate_accrual  # noqa: F401
