"""Order lifecycle transitions shared by the mart and accrual ledgers."""

from __future__ import annotations

from loyaltymart_api.models.order import OrderStatusEnum


TERMINAL_STATUSES: frozenset[OrderStatusEnum] = frozenset(
    {OrderStatusEnum.INVALID, OrderStatusEnum.PROCESSED}
)

_ALLOWED_TRANSITIONS: dict[OrderStatusEnum, frozenset[OrderStatusEnum]] = {
    OrderStatusEnum.NEW: frozenset(
        {
            OrderStatusEnum.REGISTERED,
            OrderStatusEnum.PROCESSING,
            OrderStatusEnum.INVALID,
            OrderStatusEnum.PROCESSED,
        }
    ),
    OrderStatusEnum.REGISTERED: frozenset(
        {
            OrderStatusEnum.PROCESSING,
            OrderStatusEnum.INVALID,
            OrderStatusEnum.PROCESSED,
        }
    ),
    OrderStatusEnum.PROCESSING: frozenset(
        {
            OrderStatusEnum.INVALID,
            OrderStatusEnum.PROCESSED,
        }
    ),
    OrderStatusEnum.INVALID: frozenset(),
    OrderStatusEnum.PROCESSED: frozenset(),
}


def can_transition(current_status: OrderStatusEnum, target_status: OrderStatusEnum) -> bool:
    return target_status in _ALLOWED_TRANSITIONS.get(current_status, frozenset())


def allowed_predecessors(target_status: OrderStatusEnum) -> frozenset[OrderStatusEnum]:
    """Statuses an order may be in for a conditional write to ``target_status``."""

    return frozenset(status for status in _ALLOWED_TRANSITIONS if can_transition(status, target_status))


def is_terminal(status: OrderStatusEnum) -> bool:
    return status in TERMINAL_STATUSES


__all__ = [
    "TERMINAL_STATUSES",
    "allowed_predecessors",
    "can_transition",
    "is_terminal",
]
