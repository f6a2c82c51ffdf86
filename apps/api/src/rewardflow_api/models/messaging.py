"""SMS delivery log for plain (non-reward) messages."""

from __future__ import annotations

from enum import Enum
from uuid import uuid4

from sqlalchemy import Column, DateTime, Enum as SqlEnum, ForeignKey, String, Text, func
from sqlalchemy.dialects.postgresql import UUID

from rewardflow_api.db.base import Base


class SmsDeliveryStatus(str, Enum):
    PENDING = "pending"
    SENT = "sent"
    FAILED = "failed"


class SmsDeliveryLog(Base):
    __tablename__ = "sms_delivery_log"

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
    phone_number = Column(String, nullable=False)
    message_body = Column(Text, nullable=False)
    delivery_status = Column(
        SqlEnum(
            SmsDeliveryStatus,
            name="sms_delivery_status",
            values_callable=lambda enum: [member.value for member in enum],
        ),
        nullable=False,
        default=SmsDeliveryStatus.PENDING,
    )
    provider_message_id = Column(String, nullable=True)
    error_message = Column(Text, nullable=True)
    sent_at = Column(DateTime(timezone=True), nullable=True)
    created_at = Column(DateTime(timezone=True), server_default=func.now(), nullable=False)
    updated_at = Column(DateTime(timezone=True), server_default=func.now(), onupdate=func.now(), nullable=False)


__all__ = ["SmsDeliveryLog", "SmsDeliveryStatus"]
