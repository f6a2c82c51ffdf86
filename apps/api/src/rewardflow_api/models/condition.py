"""Per-recipient condition progress and trigger audit trail."""

from __future__ import annotations

from enum import Enum
from uuid import uuid4

from sqlalchemy import (
    Column,
    DateTime,
    Enum as SqlEnum,
    ForeignKey,
    Integer,
    String,
    Text,
    JSON,
    UniqueConstraint,
    func,
)
from sqlalchemy.dialects.postgresql import UUID

from rewardflow_api.db.base import Base
from rewardflow_api.models.campaign import TriggerAction


class ConditionStatus(str, Enum):
    PENDING = "pending"
    COMPLETED = "completed"


class ConditionTriggerStatus(str, Enum):
    PROCESSING = "processing"
    COMPLETED = "completed"
    FAILED = "failed"


class RecipientConditionStatus(Base):
    """Completion record for one condition of one recipient; completed is terminal."""

    __tablename__ = "recipient_condition_statuses"
    __table_args__ = (
        UniqueConstraint("recipient_id", "condition_id", name="uq_recipient_condition_status"),
    )

    id = Column(UUID(as_uuid=True), primary_key=True, default=uuid4)
    recipient_id = Column(
        UUID(as_uuid=True),
        ForeignKey("recipients.id", ondelete="CASCADE"),
        nullable=False,
    )
    campaign_id = Column(
        UUID(as_uuid=True),
        ForeignKey("campaigns.id", ondelete="CASCADE"),
        nullable=False,
        index=True,
    )
    condition_id = Column(
        UUID(as_uuid=True),
        ForeignKey("campaign_conditions.id", ondelete="CASCADE"),
        nullable=False,
    )
    condition_number = Column(Integer, nullable=True)
    status = Column(
        SqlEnum(
            ConditionStatus,
            name="recipient_condition_status",
            values_callable=lambda enum: [member.value for member in enum],
        ),
        nullable=False,
        default=ConditionStatus.PENDING,
    )
    completed_at = Column(DateTime(timezone=True), nullable=True)
    metadata_json = Column("metadata", JSON, nullable=True)
    created_at = Column(DateTime(timezone=True), server_default=func.now(), nullable=False)
    updated_at = Column(DateTime(timezone=True), server_default=func.now(), onupdate=func.now(), nullable=False)


class ConditionTrigger(Base):
    """One attempted trigger-action execution. Rows are never deleted."""

    __tablename__ = "condition_triggers"

    id = Column(UUID(as_uuid=True), primary_key=True, default=uuid4)
    recipient_id = Column(
        UUID(as_uuid=True),
        ForeignKey("recipients.id", ondelete="CASCADE"),
        nullable=False,
        index=True,
    )
    campaign_id = Column(
        UUID(as_uuid=True),
        ForeignKey("campaigns.id", ondelete="CASCADE"),
        nullable=False,
        index=True,
    )
    condition_id = Column(
        UUID(as_uuid=True),
        ForeignKey("campaign_conditions.id", ondelete="CASCADE"),
        nullable=False,
    )
    condition_number = Column(Integer, nullable=True)
    trigger_action = Column(
        SqlEnum(
            TriggerAction,
            name="condition_trigger_action",
            values_callable=lambda enum: [member.value for member in enum],
        ),
        nullable=False,
    )
    status = Column(
        SqlEnum(
            ConditionTriggerStatus,
            name="condition_trigger_status",
            values_callable=lambda enum: [member.value for member in enum],
        ),
        nullable=False,
        default=ConditionTriggerStatus.PROCESSING,
    )
    error_message = Column(Text, nullable=True)
    error_kind = Column(String, nullable=True)
    gift_card_delivery_id = Column(
        UUID(as_uuid=True),
        ForeignKey("gift_card_deliveries.id", ondelete="SET NULL"),
        nullable=True,
    )
    sms_message_id = Column(String, nullable=True)
    webhook_response = Column(JSON, nullable=True)
    metadata_json = Column("metadata", JSON, nullable=True)
    completed_at = Column(DateTime(timezone=True), nullable=True)
    created_at = Column(DateTime(timezone=True), server_default=func.now(), nullable=False)
    updated_at = Column(DateTime(timezone=True), server_default=func.now(), onupdate=func.now(), nullable=False)


__all__ = [
    "ConditionStatus",
    "ConditionTrigger",
    "ConditionTriggerStatus",
    "RecipientConditionStatus",
]
