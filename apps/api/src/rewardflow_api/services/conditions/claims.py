"""Atomic gift card claiming with at-most-one card per (recipient, condition).

The existence check, the card flip and the assignment insert run inside one
database transaction. Two layers keep concurrent claims honest:

* cards are reserved with ``SELECT ... FOR UPDATE SKIP LOCKED`` followed by a
  conditional ``UPDATE ... WHERE status = 'available'``, so a card is never
  handed to two callers;
* ``recipient_gift_cards`` is unique on ``(recipient_id, condition_id)``. The
  loser of a race hits the constraint, its transaction (card flip included)
  rolls back, and it reports the winner's card as already assigned.

SQLite engines open transactions with ``BEGIN IMMEDIATE`` (see ``db.session``)
which serializes the whole sequence.
"""

from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime, timezone
from decimal import Decimal
from typing import Any
from uuid import UUID

from loguru import logger
from sqlalchemy import func, select, update
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession

from rewardflow_api.models.gift_card import (
    GiftCard,
    GiftCardPool,
    GiftCardStatus,
    RecipientGiftCardAssignment,
)
from rewardflow_api.observability.conditions import get_condition_store
from rewardflow_api.services.conditions.errors import (
    GiftCardClaimContention,
    MissingRewardPool,
    NoAvailableInventory,
)
from rewardflow_api.services.conditions.repositories import SessionFactory


@dataclass(frozen=True, slots=True)
class ClaimResult:
    """Outcome of a claim; ``already_assigned`` means no new card was taken."""

    claimed: bool
    already_assigned: bool
    unit_id: UUID
    pool_id: UUID
    code: str
    card_number: str | None
    denomination: Decimal
    brand_name: str
    provider: str | None

    def as_metadata(self) -> dict[str, Any]:
        return {
            "giftCardId": str(self.unit_id),
            "poolId": str(self.pool_id),
            "alreadyAssigned": self.already_assigned,
            "denomination": str(self.denomination),
            "brandName": self.brand_name,
        }


@dataclass
class PoolInventory:
    pool_id: UUID
    name: str
    brand_name: str
    card_value: Decimal
    available: int
    assigned: int

    @property
    def total(self) -> int:
        return self.available + self.assigned


class GiftCardClaimService:
    def __init__(self, session_factory: SessionFactory, *, max_attempts: int = 5) -> None:
        self._session_factory = session_factory
        self._max_attempts = max(1, max_attempts)

    async def claim(
        self,
        *,
        pool_id: UUID,
        recipient_id: UUID,
        campaign_id: UUID,
        condition_id: UUID,
    ) -> ClaimResult:
        """Assign one available card of ``pool_id`` to (recipient, condition).

        Raises ``NoAvailableInventory`` when the pool is empty; in that case no
        assignment is recorded.
        """

        store = get_condition_store()
        try:
            async with self._session_factory() as session:
                async with session.begin():
                    existing = await self._load_assignment(session, recipient_id, condition_id)
                    if existing is not None:
                        store.record_claim("already_assigned")
                        logger.info(
                            "Gift card already assigned for condition",
                            recipient_id=str(recipient_id),
                            condition_id=str(condition_id),
                            gift_card_id=str(existing.unit_id),
                        )
                        return existing

                    pool = await session.get(GiftCardPool, pool_id)
                    if pool is None:
                        raise MissingRewardPool(condition_id)

                    card = await self._reserve_card(
                        session,
                        pool_id=pool_id,
                        recipient_id=recipient_id,
                        campaign_id=campaign_id,
                        condition_id=condition_id,
                    )
                    if card is None:
                        store.record_claim("no_inventory")
                        raise NoAvailableInventory(pool_id)

                    session.add(
                        RecipientGiftCardAssignment(
                            recipient_id=recipient_id,
                            campaign_id=campaign_id,
                            condition_id=condition_id,
                            gift_card_id=card.id,
                        )
                    )
                    await session.flush()
                    result = ClaimResult(
                        claimed=True,
                        already_assigned=False,
                        unit_id=card.id,
                        pool_id=pool.id,
                        code=card.card_code,
                        card_number=card.card_number,
                        denomination=Decimal(card.card_value),
                        brand_name=pool.brand_name,
                        provider=pool.provider,
                    )
            store.record_claim("claimed")
            logger.info(
                "Claimed gift card",
                pool_id=str(pool_id),
                recipient_id=str(recipient_id),
                condition_id=str(condition_id),
                gift_card_id=str(result.unit_id),
            )
            return result
        except IntegrityError:
            logger.warning(
                "Concurrent gift card claim lost the assignment race",
                pool_id=str(pool_id),
                recipient_id=str(recipient_id),
                condition_id=str(condition_id),
            )

        async with self._session_factory() as session:
            existing = await self._load_assignment(session, recipient_id, condition_id)
        if existing is None:
            raise GiftCardClaimContention(pool_id, self._max_attempts)
        store.record_claim("already_assigned")
        return existing

    async def get_assignment(self, recipient_id: UUID, condition_id: UUID) -> ClaimResult | None:
        async with self._session_factory() as session:
            return await self._load_assignment(session, recipient_id, condition_id)

    async def inventory(self, pool_ids: list[UUID]) -> list[PoolInventory]:
        """Available/assigned counts per pool, for diagnostics."""

        if not pool_ids:
            return []
        stmt = (
            select(
                GiftCardPool.id,
                GiftCardPool.name,
                GiftCardPool.brand_name,
                GiftCardPool.card_value,
                GiftCard.status,
                func.count(GiftCard.id),
            )
            .outerjoin(GiftCard, GiftCard.pool_id == GiftCardPool.id)
            .where(GiftCardPool.id.in_(pool_ids))
            .group_by(
                GiftCardPool.id,
                GiftCardPool.name,
                GiftCardPool.brand_name,
                GiftCardPool.card_value,
                GiftCard.status,
            )
        )
        async with self._session_factory() as session:
            rows = (await session.execute(stmt)).all()

        summaries: dict[UUID, PoolInventory] = {}
        for pool_id, name, brand_name, card_value, status, count in rows:
            summary = summaries.setdefault(
                pool_id,
                PoolInventory(
                    pool_id=pool_id,
                    name=name,
                    brand_name=brand_name,
                    card_value=Decimal(card_value),
                    available=0,
                    assigned=0,
                ),
            )
            if status == GiftCardStatus.AVAILABLE:
                summary.available += count
            elif status == GiftCardStatus.ASSIGNED:
                summary.assigned += count
        return list(summaries.values())

    async def _reserve_card(
        self,
        session: AsyncSession,
        *,
        pool_id: UUID,
        recipient_id: UUID,
        campaign_id: UUID,
        condition_id: UUID,
    ) -> GiftCard | None:
        # Any available card will do; selection order is not significant.
        for attempt in range(1, self._max_attempts + 1):
            candidate = await session.execute(
                select(GiftCard.id)
                .where(GiftCard.pool_id == pool_id, GiftCard.status == GiftCardStatus.AVAILABLE)
                .limit(1)
                .with_for_update(skip_locked=True)
            )
            card_id = candidate.scalar_one_or_none()
            if card_id is None:
                return None

            flipped = await session.execute(
                update(GiftCard)
                .where(GiftCard.id == card_id, GiftCard.status == GiftCardStatus.AVAILABLE)
                .values(
                    status=GiftCardStatus.ASSIGNED,
                    assigned_at=datetime.now(timezone.utc),
                    assigned_recipient_id=recipient_id,
                    assigned_campaign_id=campaign_id,
                    assigned_condition_id=condition_id,
                )
                .execution_options(synchronize_session=False)
            )
            if flipped.rowcount == 1:
                return await session.get(GiftCard, card_id)
            logger.debug("Gift card taken by a concurrent claim", gift_card_id=str(card_id), attempt=attempt)

        raise GiftCardClaimContention(pool_id, self._max_attempts)

    @staticmethod
    async def _load_assignment(
        session: AsyncSession,
        recipient_id: UUID,
        condition_id: UUID,
    ) -> ClaimResult | None:
        stmt = (
            select(GiftCard, GiftCardPool)
            .join(RecipientGiftCardAssignment, RecipientGiftCardAssignment.gift_card_id == GiftCard.id)
            .join(GiftCardPool, GiftCardPool.id == GiftCard.pool_id)
            .where(
                RecipientGiftCardAssignment.recipient_id == recipient_id,
                RecipientGiftCardAssignment.condition_id == condition_id,
            )
            .limit(1)
        )
        row = (await session.execute(stmt)).first()
        if row is None:
            return None
        card, pool = row
        return ClaimResult(
            claimed=False,
            already_assigned=True,
            unit_id=card.id,
            pool_id=pool.id,
            code=card.card_code,
            card_number=card.card_number,
            denomination=Decimal(card.card_value),
            brand_name=pool.brand_name,
            provider=pool.provider,
        )


__all__ = ["ClaimResult", "GiftCardClaimService", "PoolInventory"]
