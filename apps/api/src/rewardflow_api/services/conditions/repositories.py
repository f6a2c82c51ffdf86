"""Persistence seams for the condition engine.

Each repository opens its own short-lived session from the injected session
factory. Nothing here keeps a session open across awaits on external services,
so concurrent evaluations never share transactional state.
"""

from __future__ import annotations

from dataclasses import dataclass, replace
from datetime import datetime, timezone
from typing import Any, Callable, Mapping, Sequence
from uuid import UUID

from sqlalchemy import func, or_, select
from sqlalchemy.dialects.postgresql import insert as pg_insert
from sqlalchemy.dialects.sqlite import insert as sqlite_insert
from sqlalchemy.ext.asyncio import AsyncSession

from rewardflow_api.models.campaign import (
    Campaign,
    CampaignCondition,
    ConditionType,
    CrmIntegration,
    Recipient,
    TriggerAction,
)
from rewardflow_api.models.condition import (
    ConditionStatus,
    ConditionTrigger,
    ConditionTriggerStatus,
    RecipientConditionStatus,
)
from rewardflow_api.models.messaging import SmsDeliveryLog, SmsDeliveryStatus
from rewardflow_api.services.conditions.errors import MalformedCatalog

SessionFactory = Callable[[], AsyncSession]


@dataclass(frozen=True, slots=True)
class ConditionDescriptor:
    """Immutable snapshot of a campaign condition as evaluated by the engine."""

    id: UUID
    campaign_id: UUID
    condition_number: int
    sequence_order: int
    condition_type: ConditionType
    trigger_action: TriggerAction
    is_required: bool = True
    condition_name: str | None = None
    gift_card_pool_id: UUID | None = None
    sms_template: str | None = None
    email_subject: str | None = None
    email_template: str | None = None
    webhook_url: str | None = None

    @classmethod
    def from_model(cls, condition: CampaignCondition) -> "ConditionDescriptor":
        return cls(
            id=condition.id,
            campaign_id=condition.campaign_id,
            condition_number=condition.condition_number,
            sequence_order=condition.sequence_order,
            condition_type=ConditionType(condition.condition_type),
            trigger_action=TriggerAction(condition.trigger_action),
            is_required=bool(condition.is_required),
            condition_name=condition.condition_name,
            gift_card_pool_id=condition.gift_card_pool_id,
            sms_template=condition.sms_template,
            email_subject=condition.email_subject,
            email_template=condition.email_template,
            webhook_url=condition.webhook_url,
        )

    def with_webhook_url(self, url: str) -> "ConditionDescriptor":
        return replace(self, webhook_url=url)


def _dialect_insert(session: AsyncSession):
    dialect = session.bind.dialect.name
    if dialect == "postgresql":
        return pg_insert
    if dialect == "sqlite":
        return sqlite_insert
    raise RuntimeError(f"Conflict-aware upserts are not supported on {dialect}")


class CampaignRepository:
    """Reads campaigns, recipients and CRM integrations."""

    def __init__(self, session_factory: SessionFactory) -> None:
        self._session_factory = session_factory

    async def get_campaign(self, campaign_id: UUID) -> Campaign | None:
        async with self._session_factory() as session:
            return await session.get(Campaign, campaign_id)

    async def get_recipient(self, recipient_id: UUID) -> Recipient | None:
        async with self._session_factory() as session:
            return await session.get(Recipient, recipient_id)

    async def get_active_crm_integration(self, campaign_id: UUID) -> CrmIntegration | None:
        stmt = (
            select(CrmIntegration)
            .where(CrmIntegration.campaign_id == campaign_id, CrmIntegration.is_active.is_(True))
            .order_by(CrmIntegration.created_at.desc())
            .limit(1)
        )
        async with self._session_factory() as session:
            result = await session.execute(stmt)
            return result.scalar_one_or_none()

    async def count_recipients_missing(self, campaign_id: UUID, channel: str) -> int:
        """Recipients of the campaign with no usable ``phone`` or ``email``."""

        column = Recipient.phone if channel == "phone" else Recipient.email
        stmt = (
            select(func.count())
            .select_from(Recipient)
            .where(Recipient.campaign_id == campaign_id, or_(column.is_(None), func.trim(column) == ""))
        )
        async with self._session_factory() as session:
            return (await session.execute(stmt)).scalar_one()


class ConditionCatalogRepository:
    def __init__(self, session_factory: SessionFactory) -> None:
        self._session_factory = session_factory

    async def load_catalog(self, campaign_id: UUID) -> tuple[ConditionDescriptor, ...]:
        """Active conditions for a campaign in ascending ``sequence_order``."""

        stmt = (
            select(CampaignCondition)
            .where(
                CampaignCondition.campaign_id == campaign_id,
                CampaignCondition.is_active.is_(True),
            )
            .order_by(CampaignCondition.sequence_order.asc())
        )
        try:
            async with self._session_factory() as session:
                result = await session.execute(stmt)
                descriptors = tuple(ConditionDescriptor.from_model(row) for row in result.scalars().all())
        except (LookupError, ValueError) as exc:
            # Unknown enum values stored by an external writer.
            raise MalformedCatalog(campaign_id, str(exc)) from exc
        _validate_catalog(campaign_id, descriptors)
        return descriptors


def _validate_catalog(campaign_id: UUID, catalog: Sequence[ConditionDescriptor]) -> None:
    seen: set[int] = set()
    for condition in catalog:
        if condition.sequence_order is None or condition.sequence_order < 1:
            raise MalformedCatalog(
                campaign_id,
                f"condition {condition.id} has non-positive sequence_order {condition.sequence_order}",
            )
        if condition.sequence_order in seen:
            raise MalformedCatalog(
                campaign_id,
                f"duplicate sequence_order {condition.sequence_order}",
            )
        seen.add(condition.sequence_order)


class ConditionStatusRepository:
    def __init__(self, session_factory: SessionFactory) -> None:
        self._session_factory = session_factory

    async def load_statuses(self, recipient_id: UUID, campaign_id: UUID) -> dict[UUID, ConditionStatus]:
        stmt = select(RecipientConditionStatus.condition_id, RecipientConditionStatus.status).where(
            RecipientConditionStatus.recipient_id == recipient_id,
            RecipientConditionStatus.campaign_id == campaign_id,
        )
        async with self._session_factory() as session:
            result = await session.execute(stmt)
            return {condition_id: ConditionStatus(status) for condition_id, status in result.all()}

    async def mark_completed(
        self,
        *,
        recipient_id: UUID,
        campaign_id: UUID,
        condition: ConditionDescriptor,
        metadata: Mapping[str, Any],
    ) -> bool:
        """Upsert the status row to completed.

        Returns ``True`` only for the call that performed the pending -> completed
        transition. A row that is already completed is left untouched, so a
        redelivered event gets ``False`` and must not dispatch again.
        """

        table = RecipientConditionStatus.__table__
        now = datetime.now(timezone.utc)
        async with self._session_factory() as session:
            async with session.begin():
                insert = _dialect_insert(session)
                stmt = insert(table).values(
                    recipient_id=recipient_id,
                    campaign_id=campaign_id,
                    condition_id=condition.id,
                    condition_number=condition.condition_number,
                    status=ConditionStatus.COMPLETED,
                    completed_at=now,
                    metadata=dict(metadata),
                )
                stmt = stmt.on_conflict_do_update(
                    index_elements=[table.c.recipient_id, table.c.condition_id],
                    set_={
                        "status": ConditionStatus.COMPLETED,
                        "completed_at": now,
                        "metadata": dict(metadata),
                        "updated_at": now,
                    },
                    where=table.c.status != ConditionStatus.COMPLETED,
                ).returning(table.c.id)
                result = await session.execute(stmt)
                return result.first() is not None


class TriggerLogRepository:
    """Append-only audit trail of trigger executions."""

    def __init__(self, session_factory: SessionFactory) -> None:
        self._session_factory = session_factory

    async def create(
        self,
        *,
        recipient_id: UUID,
        campaign_id: UUID,
        condition: ConditionDescriptor,
        metadata: Mapping[str, Any],
    ) -> UUID:
        async with self._session_factory() as session:
            async with session.begin():
                trigger = ConditionTrigger(
                    recipient_id=recipient_id,
                    campaign_id=campaign_id,
                    condition_id=condition.id,
                    condition_number=condition.condition_number,
                    trigger_action=condition.trigger_action,
                    status=ConditionTriggerStatus.PROCESSING,
                    metadata_json=dict(metadata),
                )
                session.add(trigger)
            return trigger.id

    async def update(self, trigger_id: UUID, *, metadata: Mapping[str, Any] | None = None, **fields: Any) -> None:
        async with self._session_factory() as session:
            async with session.begin():
                trigger = await session.get(ConditionTrigger, trigger_id)
                if trigger is None:
                    raise LookupError(f"Condition trigger {trigger_id} not found")
                for key, value in fields.items():
                    setattr(trigger, key, value)
                if metadata:
                    trigger.metadata_json = {**(trigger.metadata_json or {}), **metadata}

    async def mark_completed(self, trigger_id: UUID, **fields: Any) -> None:
        await self.update(
            trigger_id,
            status=ConditionTriggerStatus.COMPLETED,
            completed_at=datetime.now(timezone.utc),
            **fields,
        )

    async def mark_failed(self, trigger_id: UUID, *, error_message: str, error_kind: str) -> None:
        await self.update(
            trigger_id,
            status=ConditionTriggerStatus.FAILED,
            error_message=error_message,
            error_kind=error_kind,
            completed_at=datetime.now(timezone.utc),
        )

    async def get(self, trigger_id: UUID) -> ConditionTrigger | None:
        async with self._session_factory() as session:
            return await session.get(ConditionTrigger, trigger_id)

    async def list_recent_failures(self, campaign_id: UUID, *, limit: int = 25) -> list[ConditionTrigger]:
        stmt = (
            select(ConditionTrigger)
            .where(
                ConditionTrigger.campaign_id == campaign_id,
                ConditionTrigger.status == ConditionTriggerStatus.FAILED,
            )
            .order_by(ConditionTrigger.created_at.desc())
            .limit(limit)
        )
        async with self._session_factory() as session:
            result = await session.execute(stmt)
            return list(result.scalars().all())


class SmsLogRepository:
    def __init__(self, session_factory: SessionFactory) -> None:
        self._session_factory = session_factory

    async def create(self, *, recipient_id: UUID, campaign_id: UUID, phone_number: str, body: str) -> UUID:
        async with self._session_factory() as session:
            async with session.begin():
                entry = SmsDeliveryLog(
                    recipient_id=recipient_id,
                    campaign_id=campaign_id,
                    phone_number=phone_number,
                    message_body=body,
                    delivery_status=SmsDeliveryStatus.PENDING,
                )
                session.add(entry)
            return entry.id

    async def mark_sent(self, log_id: UUID, provider_message_id: str | None) -> None:
        async with self._session_factory() as session:
            async with session.begin():
                entry = await session.get(SmsDeliveryLog, log_id)
                if entry is None:
                    return
                entry.delivery_status = SmsDeliveryStatus.SENT
                entry.provider_message_id = provider_message_id
                entry.sent_at = datetime.now(timezone.utc)

    async def mark_failed(self, log_id: UUID, error_message: str) -> None:
        async with self._session_factory() as session:
            async with session.begin():
                entry = await session.get(SmsDeliveryLog, log_id)
                if entry is None:
                    return
                entry.delivery_status = SmsDeliveryStatus.FAILED
                entry.error_message = error_message


__all__ = [
    "CampaignRepository",
    "ConditionCatalogRepository",
    "ConditionDescriptor",
    "ConditionStatusRepository",
    "SessionFactory",
    "SmsLogRepository",
    "TriggerLogRepository",
]
