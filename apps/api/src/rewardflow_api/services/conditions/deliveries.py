"""Gift card delivery records and provider status callbacks."""

from __future__ import annotations

from datetime import datetime, timezone
from typing import Any, Mapping
from uuid import UUID

from loguru import logger
from sqlalchemy import update

from rewardflow_api.models.gift_card import (
    DeliveryMethod,
    DeliveryStatus,
    GiftCardDelivery,
    RecipientGiftCardAssignment,
)
from rewardflow_api.services.conditions.claims import ClaimResult
from rewardflow_api.services.conditions.repositories import ConditionDescriptor, SessionFactory

# Stage order; a delivery never moves to a lower stage.
_STATUS_RANK = {
    DeliveryStatus.PENDING: 0,
    DeliveryStatus.SENT: 1,
    DeliveryStatus.DELIVERED: 2,
    DeliveryStatus.FAILED: 2,
    DeliveryStatus.BOUNCED: 2,
}


class GiftCardDeliveryRepository:
    def __init__(self, session_factory: SessionFactory) -> None:
        self._session_factory = session_factory

    async def create(
        self,
        *,
        claim: ClaimResult,
        recipient_id: UUID,
        campaign_id: UUID,
        condition: ConditionDescriptor,
        method: DeliveryMethod,
        address: str,
        message_body: str,
        metadata: Mapping[str, Any] | None = None,
    ) -> UUID:
        async with self._session_factory() as session:
            async with session.begin():
                delivery = GiftCardDelivery(
                    gift_card_id=claim.unit_id,
                    recipient_id=recipient_id,
                    campaign_id=campaign_id,
                    condition_id=condition.id,
                    condition_number=condition.condition_number,
                    delivery_method=method,
                    delivery_address=address,
                    delivery_status=DeliveryStatus.PENDING,
                    message_body=message_body,
                    metadata_json=dict(metadata or {}),
                )
                session.add(delivery)
            return delivery.id

    async def get(self, delivery_id: UUID) -> GiftCardDelivery | None:
        async with self._session_factory() as session:
            return await session.get(GiftCardDelivery, delivery_id)

    async def record_status(
        self,
        delivery_id: UUID,
        status: DeliveryStatus,
        *,
        provider_message_id: str | None = None,
        error_message: str | None = None,
    ) -> GiftCardDelivery | None:
        """Move a delivery to ``status`` and mirror it onto the assignment row.

        A transition to an earlier stage than the current one is ignored, apart
        from filling in a missing provider message id.
        """

        now = datetime.now(timezone.utc)
        async with self._session_factory() as session:
            async with session.begin():
                delivery = await session.get(GiftCardDelivery, delivery_id)
                if delivery is None:
                    logger.warning("Delivery status update for unknown delivery", delivery_id=str(delivery_id))
                    return None

                current = DeliveryStatus(delivery.delivery_status)
                if _STATUS_RANK[status] < _STATUS_RANK[current]:
                    if provider_message_id and not delivery.provider_message_id:
                        delivery.provider_message_id = provider_message_id
                    logger.info(
                        "Ignoring out-of-order delivery status",
                        delivery_id=str(delivery_id),
                        current_status=current.value,
                        requested_status=status.value,
                    )
                    return delivery

                delivery.delivery_status = status
                if provider_message_id:
                    delivery.provider_message_id = provider_message_id
                if error_message is not None:
                    delivery.error_message = error_message
                if status == DeliveryStatus.SENT and delivery.sent_at is None:
                    delivery.sent_at = now
                delivered_at = now if status == DeliveryStatus.DELIVERED else None
                if delivered_at is not None:
                    delivery.delivered_at = delivered_at

                values: dict[str, Any] = {"delivery_status": status}
                if delivered_at is not None:
                    values["delivered_at"] = delivered_at
                await session.execute(
                    update(RecipientGiftCardAssignment)
                    .where(
                        RecipientGiftCardAssignment.gift_card_id == delivery.gift_card_id,
                        RecipientGiftCardAssignment.recipient_id == delivery.recipient_id,
                    )
                    .values(**values)
                    .execution_options(synchronize_session=False)
                )
            return delivery

    async def mark_sent(self, delivery_id: UUID, provider_message_id: str | None) -> None:
        await self.record_status(delivery_id, DeliveryStatus.SENT, provider_message_id=provider_message_id)

    async def mark_failed(self, delivery_id: UUID, error_message: str) -> None:
        await self.record_status(delivery_id, DeliveryStatus.FAILED, error_message=error_message)


__all__ = ["GiftCardDeliveryRepository"]
