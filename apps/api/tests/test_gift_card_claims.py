from __future__ import annotations

import asyncio
from decimal import Decimal
from uuid import uuid4

import pytest
from sqlalchemy import func, select

from rewardflow_api.models import (
    ConditionType,
    GiftCard,
    GiftCardStatus,
    RecipientGiftCardAssignment,
    TriggerAction,
)
from rewardflow_api.observability.conditions import get_condition_store
from rewardflow_api.services.conditions import GiftCardClaimService, NoAvailableInventory
from rewardflow_api.services.conditions.errors import MissingRewardPool

from support import add_recipient, seed_campaign

GIFT_CARD_CONDITION = {
    "condition_type": ConditionType.FORM_SUBMITTED,
    "trigger_action": TriggerAction.SEND_GIFT_CARD,
    "gift_card_pool_id": "pool",
}


async def _assigned_cards(session_factory, pool_id) -> int:
    async with session_factory() as session:
        stmt = select(func.count()).select_from(GiftCard).where(
            GiftCard.pool_id == pool_id,
            GiftCard.status == GiftCardStatus.ASSIGNED,
        )
        return (await session.execute(stmt)).scalar_one()


async def _assignments(session_factory) -> int:
    async with session_factory() as session:
        return (await session.execute(select(func.count()).select_from(RecipientGiftCardAssignment))).scalar_one()


@pytest.mark.asyncio
async def test_claim_assigns_card_and_repeats_return_same_unit(session_factory) -> None:
    campaign, recipient, pool, (condition,) = await seed_campaign(
        session_factory,
        [GIFT_CARD_CONDITION],
        pool_size=3,
        card_value=Decimal("10.00"),
    )
    service = GiftCardClaimService(session_factory)

    first = await service.claim(
        pool_id=pool.id,
        recipient_id=recipient.id,
        campaign_id=campaign.id,
        condition_id=condition.id,
    )
    second = await service.claim(
        pool_id=pool.id,
        recipient_id=recipient.id,
        campaign_id=campaign.id,
        condition_id=condition.id,
    )

    assert first.claimed is True
    assert first.already_assigned is False
    assert first.denomination == Decimal("10.00")
    assert first.brand_name == "Amazon"
    assert second.claimed is False
    assert second.already_assigned is True
    assert second.unit_id == first.unit_id
    assert second.code == first.code
    assert await _assigned_cards(session_factory, pool.id) == 1
    assert get_condition_store().snapshot().claims == {"claimed": 1, "already_assigned": 1}

    lookup = await service.get_assignment(recipient.id, condition.id)
    assert lookup is not None and lookup.unit_id == first.unit_id


@pytest.mark.asyncio
async def test_distinct_recipients_get_distinct_cards(session_factory) -> None:
    campaign, recipient, pool, (condition,) = await seed_campaign(
        session_factory,
        [GIFT_CARD_CONDITION],
        pool_size=2,
    )
    other = await add_recipient(session_factory, campaign.id, first_name="Grace", phone="5559876543")
    service = GiftCardClaimService(session_factory)

    claims = [
        await service.claim(
            pool_id=pool.id,
            recipient_id=person_id,
            campaign_id=campaign.id,
            condition_id=condition.id,
        )
        for person_id in (recipient.id, other.id)
    ]

    assert claims[0].unit_id != claims[1].unit_id
    assert await _assigned_cards(session_factory, pool.id) == 2


@pytest.mark.asyncio
async def test_empty_pool_raises_no_available_inventory(session_factory) -> None:
    campaign, recipient, pool, (condition,) = await seed_campaign(
        session_factory,
        [GIFT_CARD_CONDITION],
        pool_size=1,
    )
    other = await add_recipient(session_factory, campaign.id, first_name="Grace")
    service = GiftCardClaimService(session_factory)
    await service.claim(pool_id=pool.id, recipient_id=recipient.id, campaign_id=campaign.id, condition_id=condition.id)

    with pytest.raises(NoAvailableInventory) as excinfo:
        await service.claim(pool_id=pool.id, recipient_id=other.id, campaign_id=campaign.id, condition_id=condition.id)

    assert excinfo.value.pool_id == pool.id
    assert excinfo.value.kind == "inventory"
    assert await service.get_assignment(other.id, condition.id) is None
    assert await _assignments(session_factory) == 1


@pytest.mark.asyncio
async def test_unknown_pool_is_a_configuration_error(session_factory) -> None:
    campaign, recipient, _, (condition,) = await seed_campaign(session_factory, [GIFT_CARD_CONDITION])
    service = GiftCardClaimService(session_factory)

    with pytest.raises(MissingRewardPool):
        await service.claim(
            pool_id=uuid4(),
            recipient_id=recipient.id,
            campaign_id=campaign.id,
            condition_id=condition.id,
        )


@pytest.mark.asyncio
async def test_concurrent_identical_claims_assign_exactly_one_card(file_session_factory) -> None:
    campaign, recipient, pool, (condition,) = await seed_campaign(
        file_session_factory,
        [GIFT_CARD_CONDITION],
        pool_size=10,
    )
    service = GiftCardClaimService(file_session_factory)

    results = await asyncio.gather(
        *[
            service.claim(
                pool_id=pool.id,
                recipient_id=recipient.id,
                campaign_id=campaign.id,
                condition_id=condition.id,
            )
            for _ in range(50)
        ]
    )

    claimed = [result for result in results if result.claimed]
    assert len(claimed) == 1
    assert sum(1 for result in results if result.already_assigned) == 49
    assert {result.unit_id for result in results} == {claimed[0].unit_id}
    assert await _assigned_cards(file_session_factory, pool.id) == 1
    assert await _assignments(file_session_factory) == 1


@pytest.mark.asyncio
async def test_inventory_summarizes_available_and_assigned(session_factory) -> None:
    campaign, recipient, pool, (condition,) = await seed_campaign(
        session_factory,
        [GIFT_CARD_CONDITION],
        pool_size=3,
    )
    service = GiftCardClaimService(session_factory)
    await service.claim(pool_id=pool.id, recipient_id=recipient.id, campaign_id=campaign.id, condition_id=condition.id)

    (summary,) = await service.inventory([pool.id])

    assert summary.pool_id == pool.id
    assert summary.available == 2
    assert summary.assigned == 1
    assert summary.total == 3
    assert await service.inventory([]) == []
