"""Gift card inventory, assignments, and deliveries."""

from __future__ import annotations

from enum import Enum
from uuid import uuid4

from sqlalchemy import (
    Boolean,
    Column,
    DateTime,
    Enum as SqlEnum,
    ForeignKey,
    Integer,
    Numeric,
    String,
    Text,
    JSON,
    UniqueConstraint,
    func,
)
from sqlalchemy.dialects.postgresql import UUID
from sqlalchemy.orm import relationship

from rewardflow_api.db.base import Base


class GiftCardStatus(str, Enum):
    AVAILABLE = "available"
    ASSIGNED = "assigned"


class DeliveryMethod(str, Enum):
    SMS = "sms"
    EMAIL = "email"


class DeliveryStatus(str, Enum):
    PENDING = "pending"
    SENT = "sent"
    DELIVERED = "delivered"
    FAILED = "failed"
    BOUNCED = "bounced"


class GiftCardPool(Base):
    """Group of interchangeable gift card codes of one brand and value."""

    __tablename__ = "gift_card_pools"

    id = Column(UUID(as_uuid=True), primary_key=True, default=uuid4)
    name = Column(String, nullable=False)
    brand_name = Column(String, nullable=False)
    provider = Column(String, nullable=True)
    card_value = Column(Numeric(10, 2), nullable=False)
    is_active = Column(Boolean, nullable=False, default=True, server_default="true")
    created_at = Column(DateTime(timezone=True), server_default=func.now(), nullable=False)
    updated_at = Column(DateTime(timezone=True), server_default=func.now(), onupdate=func.now(), nullable=False)

    cards = relationship("GiftCard", back_populates="pool", cascade="all, delete-orphan")


class GiftCard(Base):
    """Single claimable code. Once assigned it is never handed out again."""

    __tablename__ = "gift_cards"

    id = Column(UUID(as_uuid=True), primary_key=True, default=uuid4)
    pool_id = Column(
        UUID(as_uuid=True),
        ForeignKey("gift_card_pools.id", ondelete="CASCADE"),
        nullable=False,
        index=True,
    )
    card_code = Column(String, nullable=False, unique=True)
    card_number = Column(String, nullable=True)
    card_value = Column(Numeric(10, 2), nullable=False)
    status = Column(
        SqlEnum(
            GiftCardStatus,
            name="gift_card_status",
            values_callable=lambda enum: [member.value for member in enum],
        ),
        nullable=False,
        default=GiftCardStatus.AVAILABLE,
        index=True,
    )
    assigned_at = Column(DateTime(timezone=True), nullable=True)
    assigned_recipient_id = Column(UUID(as_uuid=True), nullable=True)
    assigned_campaign_id = Column(UUID(as_uuid=True), nullable=True)
    assigned_condition_id = Column(UUID(as_uuid=True), nullable=True)
    created_at = Column(DateTime(timezone=True), server_default=func.now(), nullable=False)

    pool = relationship("GiftCardPool", back_populates="cards")


class RecipientGiftCardAssignment(Base):
    """Which card was granted for which (recipient, condition); at most one row per pair."""

    __tablename__ = "recipient_gift_cards"
    __table_args__ = (
        UniqueConstraint(
            "recipient_id",
            "condition_id",
            name="recipient_gift_cards_recipient_condition_unique",
        ),
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
    gift_card_id = Column(
        UUID(as_uuid=True),
        ForeignKey("gift_cards.id"),
        nullable=False,
        index=True,
    )
    delivery_status = Column(
        SqlEnum(
            DeliveryStatus,
            name="gift_card_delivery_status",
            values_callable=lambda enum: [member.value for member in enum],
        ),
        nullable=False,
        default=DeliveryStatus.PENDING,
    )
    assigned_at = Column(DateTime(timezone=True), server_default=func.now(), nullable=False)
    delivered_at = Column(DateTime(timezone=True), nullable=True)

    gift_card = relationship("GiftCard")


class GiftCardDelivery(Base):
    """Attempt to notify a recipient about a granted card."""

    __tablename__ = "gift_card_deliveries"

    id = Column(UUID(as_uuid=True), primary_key=True, default=uuid4)
    gift_card_id = Column(
        UUID(as_uuid=True),
        ForeignKey("gift_cards.id"),
        nullable=False,
    )
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
    condition_id = Column(UUID(as_uuid=True), nullable=True)
    condition_number = Column(Integer, nullable=True)
    delivery_method = Column(
        SqlEnum(
            DeliveryMethod,
            name="gift_card_delivery_method",
            values_callable=lambda enum: [member.value for member in enum],
        ),
        nullable=False,
    )
    delivery_address = Column(String, nullable=False)
    delivery_status = Column(
        SqlEnum(
            DeliveryStatus,
            name="gift_card_delivery_status",
            values_callable=lambda enum: [member.value for member in enum],
        ),
        nullable=False,
        default=DeliveryStatus.PENDING,
    )
    message_body = Column(Text, nullable=True)
    provider_message_id = Column(String, nullable=True)
    error_message = Column(Text, nullable=True)
    metadata_json = Column("metadata", JSON, nullable=True)
    sent_at = Column(DateTime(timezone=True), nullable=True)
    delivered_at = Column(DateTime(timezone=True), nullable=True)
    created_at = Column(DateTime(timezone=True), server_default=func.now(), nullable=False)
    updated_at = Column(DateTime(timezone=True), server_default=func.now(), onupdate=func.now(), nullable=False)


__all__ = [
    "DeliveryMethod",
    "DeliveryStatus",
    "GiftCard",
    "GiftCardDelivery",
    "GiftCardPool",
    "GiftCardStatus",
    "RecipientGiftCardAssignment",
]
