from __future__ import annotations

from uuid import uuid4

import pytest

from rewardflow_api.models import CampaignCondition, ConditionType, TriggerAction
from rewardflow_api.services.conditions import ConditionCatalogCache
from rewardflow_api.services.conditions.repositories import ConditionCatalogRepository

from support import seed_campaign


class FakeClock:
    def __init__(self) -> None:
        self.now = 1000.0

    def __call__(self) -> float:
        return self.now

    def advance(self, seconds: float) -> None:
        self.now += seconds


@pytest.mark.asyncio
async def test_catalog_is_served_from_cache_until_ttl_expires() -> None:
    clock = FakeClock()
    cache: ConditionCatalogCache[str] = ConditionCatalogCache(ttl_seconds=60, max_entries=10, clock=clock)
    campaign_id = uuid4()
    loads: list[str] = []
    current = {"value": "v1"}

    async def loader(_campaign_id):
        loads.append(current["value"])
        return current["value"]

    assert await cache.get_or_load(campaign_id, loader) == "v1"
    current["value"] = "v2"
    clock.advance(59)
    assert await cache.get_or_load(campaign_id, loader) == "v1"

    clock.advance(1)
    assert await cache.get_or_load(campaign_id, loader) == "v2"
    assert loads == ["v1", "v2"]

    stats = cache.stats()
    assert stats.hits == 1
    assert stats.misses == 2


def test_oldest_entry_is_evicted_when_full() -> None:
    clock = FakeClock()
    cache: ConditionCatalogCache[int] = ConditionCatalogCache(ttl_seconds=60, max_entries=2, clock=clock)
    first, second, third = uuid4(), uuid4(), uuid4()

    cache.put(first, 1)
    clock.advance(1)
    cache.put(second, 2)
    clock.advance(1)
    cache.put(third, 3)

    assert len(cache) == 2
    assert cache.get(first) is None
    assert cache.get(second) == 2
    assert cache.get(third) == 3
    assert cache.stats().evictions == 1


def test_invalidate_and_clear() -> None:
    cache: ConditionCatalogCache[int] = ConditionCatalogCache(ttl_seconds=60, max_entries=5, clock=FakeClock())
    campaign_id = uuid4()
    cache.put(campaign_id, 7)

    assert cache.invalidate(campaign_id) is True
    assert cache.invalidate(campaign_id) is False

    cache.put(campaign_id, 8)
    cache.clear()
    assert len(cache) == 0


@pytest.mark.parametrize("options", [{"ttl_seconds": 0}, {"max_entries": 0}])
def test_cache_rejects_non_positive_limits(options) -> None:
    with pytest.raises(ValueError):
        ConditionCatalogCache(**options)


@pytest.mark.asyncio
async def test_stale_catalog_is_bounded_by_ttl(session_factory) -> None:
    campaign, _, _, _ = await seed_campaign(
        session_factory,
        [{"condition_type": ConditionType.MANUAL, "trigger_action": TriggerAction.UPDATE_CRM}],
    )
    clock = FakeClock()
    cache = ConditionCatalogCache(ttl_seconds=30, max_entries=10, clock=clock)
    repository = ConditionCatalogRepository(session_factory)

    first = await cache.get_or_load(campaign.id, repository.load_catalog)
    await _add_second_condition(session_factory, campaign.id)

    clock.advance(10)
    assert await cache.get_or_load(campaign.id, repository.load_catalog) == first

    clock.advance(30)
    refreshed = await cache.get_or_load(campaign.id, repository.load_catalog)
    assert [condition.sequence_order for condition in refreshed] == [1, 2]


async def _add_second_condition(session_factory, campaign_id) -> None:
    async with session_factory() as session:
        session.add(
            CampaignCondition(
                campaign_id=campaign_id,
                condition_number=2,
                sequence_order=2,
                condition_type=ConditionType.FORM_SUBMITTED,
                trigger_action=TriggerAction.SEND_SMS,
            )
        )
        await session.commit()
