from decimal import Decimal

import pytest

from loyaltymart_api.models.accrual import RewardTypeEnum
from loyaltymart_api.services.accrual.rewards import GoodsItem, MechanicRule, calculate_accrual


def _rule(match: str, reward: str, reward_type: RewardTypeEnum) -> MechanicRule:
    return MechanicRule(match=match, reward=Decimal(reward), reward_type=reward_type)


def test_percent_rule_uses_item_price():
    goods = [GoodsItem(description="Wireless Mouse", price=Decimal("100"))]
    mechanics = [_rule("wireless", "10", RewardTypeEnum.PERCENT)]

    assert calculate_accrual(goods, mechanics) == Decimal("10.00")


def test_unmatched_points_rule_contributes_nothing():
    goods = [GoodsItem(description="Wireless Mouse", price=Decimal("100"))]
    mechanics = [_rule("Keyboard", "10", RewardTypeEnum.POINTS)]

    assert calculate_accrual(goods, mechanics) == Decimal("0.00")


def test_all_matching_rules_are_summed():
    goods = [
        GoodsItem(description="Bosch Drill 2000", price=Decimal("2000")),
        GoodsItem(description="LG Monitor", price=Decimal("300")),
    ]
    mechanics = [
        _rule("bosch", "10", RewardTypeEnum.PERCENT),
        _rule("DRILL", "15", RewardTypeEnum.POINTS),
        _rule("lg", "5", RewardTypeEnum.PERCENT),
    ]

    assert calculate_accrual(goods, mechanics) == Decimal("230.00")


def test_result_is_rounded_to_cents():
    goods = [GoodsItem(description="Cable", price=Decimal("9.99"))]
    mechanics = [_rule("cable", "3.5", RewardTypeEnum.PERCENT)]

    assert calculate_accrual(goods, mechanics) == Decimal("0.35")


def test_no_goods_yields_zero():
    assert calculate_accrual([], [_rule("x", "5", RewardTypeEnum.POINTS)]) == Decimal("0.00")


def test_goods_payload_round_trip_keeps_decimal_price():
    item = GoodsItem.from_payload({"description": "Chair", "price": 12.5})

    assert item.price == Decimal("12.5")
    assert GoodsItem.from_payload(item.as_payload()) == item


@pytest.mark.parametrize(
    ("raw", "expected"),
    [
        ("%", RewardTypeEnum.PERCENT),
        ("percent", RewardTypeEnum.PERCENT),
        ("pt", RewardTypeEnum.POINTS),
        (" Points ", RewardTypeEnum.POINTS),
    ],
)
def test_reward_type_accepts_aliases(raw, expected):
    assert RewardTypeEnum.parse(raw) is expected


def test_reward_type_rejects_unknown_value():
    with pytest.raises(ValueError):
        RewardTypeEnum.parse("cashback")
