"""SQLAlchemy models package."""

from .accrual import AccrualOrder, RewardMechanic, RewardTypeEnum  # noqa: F401
from .order import Order, OrderStatusEnum  # noqa: F401
from .user import User  # noqa: F401
from .withdrawal import Withdrawal  # noqa: F401
