from __future__ import annotations

import asyncio
from decimal import Decimal

import pytest

from loyaltymart_api.models.accrual import RewardTypeEnum
from loyaltymart_api.services.accrual import AccrualOrderStore, MechanicCache, MechanicRule


class FakeClock:
    def __init__(self) -> None:
        self.now = 0.0

    def __call__(self) -> float:
        return self.now


async def _save(session_factory, match: str, reward: str, reward_type=RewardTypeEnum.PERCENT) -> None:
    async with session_factory() as session:
        await AccrualOrderStore(session).save_mechanic(match=match, reward=Decimal(reward), reward_type=reward_type)


@pytest.mark.asyncio
async def test_rules_load_on_first_read(session_factory):
    await _save(session_factory, "Bosch", "10")
    cache = MechanicCache(session_factory, ttl_seconds=30)

    rules = await cache.get_rules()

    assert rules == (MechanicRule(match="Bosch", reward=Decimal("10.00"), reward_type=RewardTypeEnum.PERCENT),)


@pytest.mark.asyncio
async def test_snapshot_is_reused_until_stale(session_factory):
    clock = FakeClock()
    cache = MechanicCache(session_factory, ttl_seconds=30, clock=clock)
    await cache.get_rules()

    await _save(session_factory, "LG", "5", RewardTypeEnum.POINTS)
    clock.now = 29
    assert await cache.get_rules() == ()

    clock.now = 30
    rules = await cache.get_rules()
    assert [rule.match for rule in rules] == ["LG"]


@pytest.mark.asyncio
async def test_invalidate_forces_refresh(session_factory):
    cache = MechanicCache(session_factory, ttl_seconds=300)
    await cache.get_rules()
    await _save(session_factory, "Bosch", "10")

    cache.invalidate()

    assert [rule.match for rule in await cache.get_rules()] == ["Bosch"]


@pytest.mark.asyncio
async def test_added_rule_is_visible_after_registration(session_factory):
    cache = MechanicCache(session_factory, ttl_seconds=300)
    await cache.get_rules()
    await _save(session_factory, "Bosch", "10")
    rule = MechanicRule(match="Bosch", reward=Decimal("10.00"), reward_type=RewardTypeEnum.PERCENT)

    await cache.add(rule)
    await cache.add(rule)

    assert await cache.get_rules() == (rule,)
    assert not cache.is_stale()


@pytest.mark.asyncio
async def test_refresh_overlapping_registration_does_not_drop_new_rule(session_factory, monkeypatch):
    cache = MechanicCache(session_factory, ttl_seconds=300)
    original = AccrualOrderStore.list_mechanics
    entered = asyncio.Event()
    release = asyncio.Event()
    calls = 0

    async def gated_list(self):
        nonlocal calls
        calls += 1
        mechanics = await original(self)
        if calls == 1:
            entered.set()
            await release.wait()
        return mechanics

    monkeypatch.setattr(AccrualOrderStore, "list_mechanics", gated_list)

    reader = asyncio.create_task(cache.get_rules())
    await entered.wait()
    await _save(session_factory, "Bosch", "10")
    registration = asyncio.create_task(
        cache.add(MechanicRule(match="Bosch", reward=Decimal("10.00"), reward_type=RewardTypeEnum.PERCENT))
    )
    await asyncio.sleep(0)
    release.set()
    await asyncio.gather(reader, registration)

    assert [rule.match for rule in await cache.get_rules()] == ["Bosch"]
    assert not cache.is_stale()
    assert calls == 2



@pytest.mark.asyncio
async def test_concurrent_readers_share_one_refresh(session_factory, monkeypatch):
    await _save(session_factory, "Bosch", "10")
    cache = MechanicCache(session_factory, ttl_seconds=300)
    calls = 0
    original = AccrualOrderStore.list_mechanics

    async def counting_list(self):
        nonlocal calls
        calls += 1
        return await original(self)

    monkeypatch.setattr(AccrualOrderStore, "list_mechanics", counting_list)

    results = await asyncio.gather(*(cache.get_rules() for _ in range(5)))

    assert calls == 1
    assert all(len(rules) == 1 for rules in results)
