"""Reward matching for accrual calculation."""

from __future__ import annotations

from dataclasses import dataclass
from decimal import ROUND_HALF_UP, Decimal
from typing import Any, Iterable, Mapping

from loyaltymart_api.models.accrual import RewardMechanic, RewardTypeEnum

_CENT = Decimal("0.01")
_HUNDRED = Decimal("100")


@dataclass(frozen=True, slots=True)
class GoodsItem:
    """Line item of an accrual order."""

    description: str
    price: Decimal

    @classmethod
    def from_payload(cls, payload: Mapping[str, Any]) -> "GoodsItem":
        return cls(description=str(payload.get("description", "")), price=Decimal(str(payload.get("price", 0))))

    def as_payload(self) -> dict[str, Any]:
        return {"description": self.description, "price": str(self.price)}


@dataclass(frozen=True, slots=True)
class MechanicRule:
    """Immutable snapshot of a reward mechanic used for matching."""

    match: str
    reward: Decimal
    reward_type: RewardTypeEnum

    @classmethod
    def from_model(cls, mechanic: RewardMechanic) -> "MechanicRule":
        return cls(
            match=mechanic.match,
            reward=Decimal(mechanic.reward),
            reward_type=mechanic.reward_type,
        )

    def matches(self, description: str) -> bool:
        return self.match.lower() in description.lower()

    def reward_for(self, item: GoodsItem) -> Decimal:
        if self.reward_type == RewardTypeEnum.PERCENT:
            return item.price * self.reward / _HUNDRED
        return self.reward


def calculate_accrual(goods: Iterable[GoodsItem], mechanics: Iterable[MechanicRule]) -> Decimal:
    """Sum the rewards of every (item, mechanic) match.

    Several mechanics may match the same item; each match contributes.
    """

    rules = tuple(mechanics)
    total = Decimal("0")
    for item in goods:
        for rule in rules:
            if rule.matches(item.description):
                total += rule.reward_for(item)
    if total < 0:
        total = Decimal("0")
    return total.quantize(_CENT, rounding=ROUND_HALF_UP)


__all__ = ["GoodsItem", "MechanicRule", "calculate_accrual"]
