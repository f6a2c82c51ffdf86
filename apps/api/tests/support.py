"""Shared builders for condition engine tests."""

from __future__ import annotations

from decimal import Decimal

import httpx

from rewardflow_api.models import (
    Campaign,
    CampaignCondition,
    GiftCard,
    GiftCardPool,
    Recipient,
)

DEFAULT_RECIPIENT = {"first_name": "Ada", "phone": "5551234567", "email": "ada@example.com"}


class WebhookRecorder:
    """httpx.MockTransport handler that records requests and replays a canned response."""

    def __init__(self) -> None:
        self.requests: list[httpx.Request] = []
        self.status_code = 200
        self.json_body: object | None = {"ok": True}
        self.text_body: str | None = None
        self.error: Exception | None = None

    def __call__(self, request: httpx.Request) -> httpx.Response:
        self.requests.append(request)
        if self.error is not None:
            raise self.error
        if self.text_body is not None:
            return httpx.Response(self.status_code, text=self.text_body)
        return httpx.Response(self.status_code, json=self.json_body)


async def seed_campaign(
    session_factory,
    conditions: list[dict],
    *,
    recipient: dict | None = None,
    pool_size: int = 0,
    card_value: Decimal = Decimal("25.00"),
):
    """Insert a campaign with one recipient, an optional pool and the given conditions.

    Each condition dict needs ``condition_type`` and ``trigger_action``; a
    ``gift_card_pool_id`` of ``"pool"`` is replaced with the seeded pool id.
    """

    async with session_factory() as session:
        campaign = Campaign(name="Spring mailer")
        session.add(campaign)
        await session.flush()

        pool = None
        if pool_size or any(item.get("gift_card_pool_id") == "pool" for item in conditions):
            pool = GiftCardPool(name="Amazon $25", brand_name="Amazon", provider="Tillo", card_value=card_value)
            session.add(pool)
            await session.flush()
            for index in range(pool_size):
                session.add(
                    GiftCard(
                        pool_id=pool.id,
                        card_code=f"CODE-{campaign.id.hex[:8]}-{index:03d}",
                        card_value=card_value,
                    )
                )

        person = Recipient(campaign_id=campaign.id, **(recipient or DEFAULT_RECIPIENT))
        session.add(person)

        created = []
        for position, item in enumerate(conditions, start=1):
            values = dict(item)
            if values.get("gift_card_pool_id") == "pool":
                values["gift_card_pool_id"] = pool.id
            values.setdefault("condition_number", position)
            values.setdefault("sequence_order", position)
            condition = CampaignCondition(campaign_id=campaign.id, **values)
            session.add(condition)
            created.append(condition)
        await session.commit()

    return campaign, person, pool, created


async def add_recipient(session_factory, campaign_id, **fields) -> Recipient:
    async with session_factory() as session:
        person = Recipient(campaign_id=campaign_id, **(fields or DEFAULT_RECIPIENT))
        session.add(person)
        await session.commit()
    return person
