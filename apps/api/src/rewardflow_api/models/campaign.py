"""Campaign, recipient, and condition catalog models."""

from __future__ import annotations

from enum import Enum
from uuid import uuid4

from sqlalchemy import (
    Boolean,
    CheckConstraint,
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
from sqlalchemy.orm import relationship

from rewardflow_api.db.base import Base


class ConditionType(str, Enum):
    """Lifecycle events a condition can wait for."""

    MAIL_DELIVERED = "mail_delivered"
    MAIL_CAMPAIGN_SENT = "mail_campaign_sent"
    CALL_COMPLETED = "call_completed"
    QR_SCANNED = "qr_scanned"
    PURL_VISITED = "purl_visited"
    FORM_SUBMITTED = "form_submitted"
    MANUAL = "manual"


class TriggerAction(str, Enum):
    """Side effect executed once a condition is newly satisfied."""

    SEND_GIFT_CARD = "send_gift_card"
    SEND_SMS = "send_sms"
    SEND_EMAIL = "send_email"
    TRIGGER_WEBHOOK = "trigger_webhook"
    UPDATE_CRM = "update_crm"


class Campaign(Base):
    __tablename__ = "campaigns"

    id = Column(UUID(as_uuid=True), primary_key=True, default=uuid4)
    name = Column(String, nullable=False)
    status = Column(String, nullable=False, default="active", server_default="active")
    created_at = Column(DateTime(timezone=True), server_default=func.now(), nullable=False)
    updated_at = Column(DateTime(timezone=True), server_default=func.now(), onupdate=func.now(), nullable=False)

    recipients = relationship("Recipient", back_populates="campaign", cascade="all, delete-orphan")
    conditions = relationship(
        "CampaignCondition",
        back_populates="campaign",
        cascade="all, delete-orphan",
        order_by="CampaignCondition.sequence_order",
    )


class Recipient(Base):
    """Mail recipient enrolled in a campaign."""

    __tablename__ = "recipients"

    id = Column(UUID(as_uuid=True), primary_key=True, default=uuid4)
    campaign_id = Column(
        UUID(as_uuid=True),
        ForeignKey("campaigns.id", ondelete="CASCADE"),
        nullable=False,
        index=True,
    )
    first_name = Column(String, nullable=True)
    last_name = Column(String, nullable=True)
    email = Column(String, nullable=True)
    phone = Column(String, nullable=True)
    redemption_code = Column(String, nullable=True, index=True)
    created_at = Column(DateTime(timezone=True), server_default=func.now(), nullable=False)
    updated_at = Column(DateTime(timezone=True), server_default=func.now(), onupdate=func.now(), nullable=False)

    campaign = relationship("Campaign", back_populates="recipients")

    def as_payload(self) -> dict[str, object]:
        """Full recipient record as sent in webhook envelopes."""
        return {
            "id": str(self.id),
            "campaign_id": str(self.campaign_id),
            "first_name": self.first_name,
            "last_name": self.last_name,
            "email": self.email,
            "phone": self.phone,
            "redemption_code": self.redemption_code,
            "created_at": self.created_at.isoformat() if self.created_at else None,
        }


class CampaignCondition(Base):
    """Ordered rule that fires a trigger action when its event arrives."""

    __tablename__ = "campaign_conditions"
    __table_args__ = (
        UniqueConstraint("campaign_id", "sequence_order", name="uq_campaign_conditions_sequence"),
        CheckConstraint("sequence_order > 0", name="ck_campaign_conditions_sequence_positive"),
    )

    id = Column(UUID(as_uuid=True), primary_key=True, default=uuid4)
    campaign_id = Column(
        UUID(as_uuid=True),
        ForeignKey("campaigns.id", ondelete="CASCADE"),
        nullable=False,
        index=True,
    )
    condition_number = Column(Integer, nullable=False)
    condition_name = Column(String, nullable=True)
    sequence_order = Column(Integer, nullable=False)
    condition_type = Column(
        SqlEnum(
            ConditionType,
            name="condition_type",
            values_callable=lambda enum: [member.value for member in enum],
        ),
        nullable=False,
    )
    is_required = Column(Boolean, nullable=False, default=True, server_default="true")
    is_active = Column(Boolean, nullable=False, default=True, server_default="true")
    trigger_action = Column(
        SqlEnum(
            TriggerAction,
            name="condition_trigger_action",
            values_callable=lambda enum: [member.value for member in enum],
        ),
        nullable=False,
    )
    gift_card_pool_id = Column(
        UUID(as_uuid=True),
        ForeignKey("gift_card_pools.id", ondelete="SET NULL"),
        nullable=True,
    )
    sms_template = Column(Text, nullable=True)
    email_subject = Column(String, nullable=True)
    email_template = Column(Text, nullable=True)
    webhook_url = Column(String, nullable=True)
    created_at = Column(DateTime(timezone=True), server_default=func.now(), nullable=False)
    updated_at = Column(DateTime(timezone=True), server_default=func.now(), onupdate=func.now(), nullable=False)

    campaign = relationship("Campaign", back_populates="conditions")
    gift_card_pool = relationship("GiftCardPool")


class CrmIntegration(Base):
    """Outbound CRM hook configured for a campaign."""

    __tablename__ = "crm_integrations"

    id = Column(UUID(as_uuid=True), primary_key=True, default=uuid4)
    campaign_id = Column(
        UUID(as_uuid=True),
        ForeignKey("campaigns.id", ondelete="CASCADE"),
        nullable=False,
        index=True,
    )
    crm_provider = Column(String, nullable=False)
    webhook_url = Column(String, nullable=False)
    is_active = Column(Boolean, nullable=False, default=True, server_default="true")
    metadata_json = Column("metadata", JSON, nullable=True)
    created_at = Column(DateTime(timezone=True), server_default=func.now(), nullable=False)
    updated_at = Column(DateTime(timezone=True), server_default=func.now(), onupdate=func.now(), nullable=False)


__all__ = [
    "Campaign",
    "CampaignCondition",
    "ConditionType",
    "CrmIntegration",
    "Recipient",
    "TriggerAction",
]
