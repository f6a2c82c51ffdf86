"""Condition engine tables.

Revision ID: 20261018_01
Revises:
Create Date: 2026-10-18
"""

from typing import Sequence, Union

from alembic import op
import sqlalchemy as sa
from sqlalchemy.dialects import postgresql


revision: str = "20261018_01"
down_revision: Union[str, None] = None
branch_labels: Union[str, Sequence[str], None] = None
depends_on: Union[str, Sequence[str], None] = None

UUID = postgresql.UUID(as_uuid=True)

condition_type = sa.Enum(
    "mail_delivered",
    "mail_campaign_sent",
    "call_completed",
    "qr_scanned",
    "purl_visited",
    "form_submitted",
    "manual",
    name="condition_type",
)
trigger_action = sa.Enum(
    "send_gift_card",
    "send_sms",
    "send_email",
    "trigger_webhook",
    "update_crm",
    name="condition_trigger_action",
)
condition_status = sa.Enum("pending", "completed", name="recipient_condition_status")
trigger_status = sa.Enum("processing", "completed", "failed", name="condition_trigger_status")
gift_card_status = sa.Enum("available", "assigned", name="gift_card_status")
delivery_method = sa.Enum("sms", "email", name="gift_card_delivery_method")
delivery_status = sa.Enum("pending", "sent", "delivered", "failed", "bounced", name="gift_card_delivery_status")
sms_status = sa.Enum("pending", "sent", "failed", name="sms_delivery_status")


def _timestamps() -> list[sa.Column]:
    return [
        sa.Column("created_at", sa.DateTime(timezone=True), server_default=sa.func.now(), nullable=False),
        sa.Column("updated_at", sa.DateTime(timezone=True), server_default=sa.func.now(), nullable=False),
    ]


def upgrade() -> None:
    op.create_table(
        "campaigns",
        sa.Column("id", UUID, primary_key=True),
        sa.Column("name", sa.String(), nullable=False),
        sa.Column("status", sa.String(), nullable=False, server_default="active"),
        *_timestamps(),
    )

    op.create_table(
        "recipients",
        sa.Column("id", UUID, primary_key=True),
        sa.Column("campaign_id", UUID, sa.ForeignKey("campaigns.id", ondelete="CASCADE"), nullable=False),
        sa.Column("first_name", sa.String(), nullable=True),
        sa.Column("last_name", sa.String(), nullable=True),
        sa.Column("email", sa.String(), nullable=True),
        sa.Column("phone", sa.String(), nullable=True),
        sa.Column("redemption_code", sa.String(), nullable=True),
        *_timestamps(),
    )
    op.create_index("ix_recipients_campaign_id", "recipients", ["campaign_id"])
    op.create_index("ix_recipients_redemption_code", "recipients", ["redemption_code"])

    op.create_table(
        "gift_card_pools",
        sa.Column("id", UUID, primary_key=True),
        sa.Column("name", sa.String(), nullable=False),
        sa.Column("brand_name", sa.String(), nullable=False),
        sa.Column("provider", sa.String(), nullable=True),
        sa.Column("card_value", sa.Numeric(10, 2), nullable=False),
        sa.Column("is_active", sa.Boolean(), nullable=False, server_default=sa.true()),
        *_timestamps(),
    )

    op.create_table(
        "campaign_conditions",
        sa.Column("id", UUID, primary_key=True),
        sa.Column("campaign_id", UUID, sa.ForeignKey("campaigns.id", ondelete="CASCADE"), nullable=False),
        sa.Column("condition_number", sa.Integer(), nullable=False),
        sa.Column("condition_name", sa.String(), nullable=True),
        sa.Column("sequence_order", sa.Integer(), nullable=False),
        sa.Column("condition_type", condition_type, nullable=False),
        sa.Column("is_required", sa.Boolean(), nullable=False, server_default=sa.true()),
        sa.Column("is_active", sa.Boolean(), nullable=False, server_default=sa.true()),
        sa.Column("trigger_action", trigger_action, nullable=False),
        sa.Column(
            "gift_card_pool_id",
            UUID,
            sa.ForeignKey("gift_card_pools.id", ondelete="SET NULL"),
            nullable=True,
        ),
        sa.Column("sms_template", sa.Text(), nullable=True),
        sa.Column("email_subject", sa.String(), nullable=True),
        sa.Column("email_template", sa.Text(), nullable=True),
        sa.Column("webhook_url", sa.String(), nullable=True),
        *_timestamps(),
        sa.UniqueConstraint("campaign_id", "sequence_order", name="uq_campaign_conditions_sequence"),
        sa.CheckConstraint("sequence_order > 0", name="ck_campaign_conditions_sequence_positive"),
    )
    op.create_index("ix_campaign_conditions_campaign_id", "campaign_conditions", ["campaign_id"])

    op.create_table(
        "crm_integrations",
        sa.Column("id", UUID, primary_key=True),
        sa.Column("campaign_id", UUID, sa.ForeignKey("campaigns.id", ondelete="CASCADE"), nullable=False),
        sa.Column("crm_provider", sa.String(), nullable=False),
        sa.Column("webhook_url", sa.String(), nullable=False),
        sa.Column("is_active", sa.Boolean(), nullable=False, server_default=sa.true()),
        sa.Column("metadata", sa.JSON(), nullable=True),
        *_timestamps(),
    )
    op.create_index("ix_crm_integrations_campaign_id", "crm_integrations", ["campaign_id"])

    op.create_table(
        "gift_cards",
        sa.Column("id", UUID, primary_key=True),
        sa.Column("pool_id", UUID, sa.ForeignKey("gift_card_pools.id", ondelete="CASCADE"), nullable=False),
        sa.Column("card_code", sa.String(), nullable=False, unique=True),
        sa.Column("card_number", sa.String(), nullable=True),
        sa.Column("card_value", sa.Numeric(10, 2), nullable=False),
        sa.Column("status", gift_card_status, nullable=False),
        sa.Column("assigned_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("assigned_recipient_id", UUID, nullable=True),
        sa.Column("assigned_campaign_id", UUID, nullable=True),
        sa.Column("assigned_condition_id", UUID, nullable=True),
        sa.Column("created_at", sa.DateTime(timezone=True), server_default=sa.func.now(), nullable=False),
    )
    op.create_index("ix_gift_cards_pool_id", "gift_cards", ["pool_id"])
    op.create_index("ix_gift_cards_status", "gift_cards", ["status"])

    op.create_table(
        "recipient_gift_cards",
        sa.Column("id", UUID, primary_key=True),
        sa.Column("recipient_id", UUID, sa.ForeignKey("recipients.id", ondelete="CASCADE"), nullable=False),
        sa.Column("campaign_id", UUID, sa.ForeignKey("campaigns.id", ondelete="CASCADE"), nullable=False),
        sa.Column(
            "condition_id",
            UUID,
            sa.ForeignKey("campaign_conditions.id", ondelete="CASCADE"),
            nullable=False,
        ),
        sa.Column("gift_card_id", UUID, sa.ForeignKey("gift_cards.id"), nullable=False),
        sa.Column("delivery_status", delivery_status, nullable=False),
        sa.Column("assigned_at", sa.DateTime(timezone=True), server_default=sa.func.now(), nullable=False),
        sa.Column("delivered_at", sa.DateTime(timezone=True), nullable=True),
        sa.UniqueConstraint(
            "recipient_id",
            "condition_id",
            name="recipient_gift_cards_recipient_condition_unique",
        ),
    )
    op.create_index("ix_recipient_gift_cards_campaign_id", "recipient_gift_cards", ["campaign_id"])
    op.create_index("ix_recipient_gift_cards_gift_card_id", "recipient_gift_cards", ["gift_card_id"])

    op.create_table(
        "gift_card_deliveries",
        sa.Column("id", UUID, primary_key=True),
        sa.Column("gift_card_id", UUID, sa.ForeignKey("gift_cards.id"), nullable=False),
        sa.Column("recipient_id", UUID, sa.ForeignKey("recipients.id", ondelete="CASCADE"), nullable=False),
        sa.Column("campaign_id", UUID, sa.ForeignKey("campaigns.id", ondelete="CASCADE"), nullable=False),
        sa.Column("condition_id", UUID, nullable=True),
        sa.Column("condition_number", sa.Integer(), nullable=True),
        sa.Column("delivery_method", delivery_method, nullable=False),
        sa.Column("delivery_address", sa.String(), nullable=False),
        sa.Column("delivery_status", delivery_status, nullable=False),
        sa.Column("message_body", sa.Text(), nullable=True),
        sa.Column("provider_message_id", sa.String(), nullable=True),
        sa.Column("error_message", sa.Text(), nullable=True),
        sa.Column("metadata", sa.JSON(), nullable=True),
        sa.Column("sent_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("delivered_at", sa.DateTime(timezone=True), nullable=True),
        *_timestamps(),
    )
    op.create_index("ix_gift_card_deliveries_recipient_id", "gift_card_deliveries", ["recipient_id"])
    op.create_index("ix_gift_card_deliveries_campaign_id", "gift_card_deliveries", ["campaign_id"])

    op.create_table(
        "recipient_condition_statuses",
        sa.Column("id", UUID, primary_key=True),
        sa.Column("recipient_id", UUID, sa.ForeignKey("recipients.id", ondelete="CASCADE"), nullable=False),
        sa.Column("campaign_id", UUID, sa.ForeignKey("campaigns.id", ondelete="CASCADE"), nullable=False),
        sa.Column(
            "condition_id",
            UUID,
            sa.ForeignKey("campaign_conditions.id", ondelete="CASCADE"),
            nullable=False,
        ),
        sa.Column("condition_number", sa.Integer(), nullable=True),
        sa.Column("status", condition_status, nullable=False),
        sa.Column("completed_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("metadata", sa.JSON(), nullable=True),
        *_timestamps(),
        sa.UniqueConstraint("recipient_id", "condition_id", name="uq_recipient_condition_status"),
    )
    op.create_index(
        "ix_recipient_condition_statuses_campaign_id",
        "recipient_condition_statuses",
        ["campaign_id"],
    )

    op.create_table(
        "condition_triggers",
        sa.Column("id", UUID, primary_key=True),
        sa.Column("recipient_id", UUID, sa.ForeignKey("recipients.id", ondelete="CASCADE"), nullable=False),
        sa.Column("campaign_id", UUID, sa.ForeignKey("campaigns.id", ondelete="CASCADE"), nullable=False),
        sa.Column(
            "condition_id",
            UUID,
            sa.ForeignKey("campaign_conditions.id", ondelete="CASCADE"),
            nullable=False,
        ),
        sa.Column("condition_number", sa.Integer(), nullable=True),
        sa.Column("trigger_action", trigger_action, nullable=False),
        sa.Column("status", trigger_status, nullable=False),
        sa.Column("error_message", sa.Text(), nullable=True),
        sa.Column("error_kind", sa.String(), nullable=True),
        sa.Column(
            "gift_card_delivery_id",
            UUID,
            sa.ForeignKey("gift_card_deliveries.id", ondelete="SET NULL"),
            nullable=True,
        ),
        sa.Column("sms_message_id", sa.String(), nullable=True),
        sa.Column("webhook_response", sa.JSON(), nullable=True),
        sa.Column("metadata", sa.JSON(), nullable=True),
        sa.Column("completed_at", sa.DateTime(timezone=True), nullable=True),
        *_timestamps(),
    )
    op.create_index("ix_condition_triggers_recipient_id", "condition_triggers", ["recipient_id"])
    op.create_index("ix_condition_triggers_campaign_id", "condition_triggers", ["campaign_id"])

    op.create_table(
        "sms_delivery_log",
        sa.Column("id", UUID, primary_key=True),
        sa.Column("recipient_id", UUID, sa.ForeignKey("recipients.id", ondelete="CASCADE"), nullable=False),
        sa.Column("campaign_id", UUID, sa.ForeignKey("campaigns.id", ondelete="CASCADE"), nullable=False),
        sa.Column("phone_number", sa.String(), nullable=False),
        sa.Column("message_body", sa.Text(), nullable=False),
        sa.Column("delivery_status", sms_status, nullable=False),
        sa.Column("provider_message_id", sa.String(), nullable=True),
        sa.Column("error_message", sa.Text(), nullable=True),
        sa.Column("sent_at", sa.DateTime(timezone=True), nullable=True),
        *_timestamps(),
    )
    op.create_index("ix_sms_delivery_log_recipient_id", "sms_delivery_log", ["recipient_id"])
    op.create_index("ix_sms_delivery_log_campaign_id", "sms_delivery_log", ["campaign_id"])


def downgrade() -> None:
    op.drop_table("sms_delivery_log")
    op.drop_table("condition_triggers")
    op.drop_table("recipient_condition_statuses")
    op.drop_table("gift_card_deliveries")
    op.drop_table("recipient_gift_cards")
    op.drop_table("gift_cards")
    op.drop_table("crm_integrations")
    op.drop_table("campaign_conditions")
    op.drop_table("gift_card_pools")
    op.drop_table("recipients")
    op.drop_table("campaigns")

    bind = op.get_bind()
    for enum in (
        sms_status,
        delivery_status,
        delivery_method,
        gift_card_status,
        trigger_status,
        condition_status,
        trigger_action,
        condition_type,
    ):
        enum.drop(bind, checkfirst=True)
