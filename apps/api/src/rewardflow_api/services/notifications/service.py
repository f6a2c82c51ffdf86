"""High-level notification service for reward and condition messages."""

from __future__ import annotations

from dataclasses import dataclass, field
from decimal import Decimal
from typing import Any, Optional
from uuid import UUID

from loguru import logger

from rewardflow_api.core.settings import Settings, get_settings

from .backend import (
    EmailBackend,
    InMemoryEmailBackend,
    InMemorySMSBackend,
    NotificationBackendError,
    SMSBackend,
    SMTPEmailBackend,
    TwilioSMSBackend,
)
from .templates import (
    RenderedTemplate,
    gift_card_variables,
    render_condition_email,
    render_gift_card_email,
    render_gift_card_sms,
    render_inventory_alert,
)


@dataclass
class NotificationEvent:
    """Representation of a notification that was sent."""

    channel: str
    recipient: str
    subject: str | None
    body_text: str
    event_type: str
    provider_message_id: str | None
    metadata: dict[str, Any] = field(default_factory=dict)


@dataclass
class GiftCardNotification:
    """Everything a sender needs to compose a reward message and report back on it."""

    delivery_id: UUID
    recipient_id: UUID
    campaign_id: UUID
    condition_number: int | None
    address: str
    code: str
    denomination: Decimal
    brand_name: str
    provider: str | None = None
    card_number: str | None = None
    first_name: str | None = None
    last_name: str | None = None
    message_body: str | None = None

    def variables(self) -> dict[str, Any]:
        return gift_card_variables(
            code=self.code,
            value=self.denomination,
            brand=self.brand_name,
            provider=self.provider,
            first_name=self.first_name,
            last_name=self.last_name,
            card_number=self.card_number,
        )


class RewardNotifier:
    """Coordinates reward and condition messages via pluggable backends."""

    def __init__(
        self,
        *,
        sms_backend: Optional[SMSBackend] = None,
        email_backend: Optional[EmailBackend] = None,
        settings: Settings | None = None,
    ) -> None:
        self._settings = settings or get_settings()
        self._sms_backend = sms_backend or self._build_default_sms_backend()
        self._email_backend = email_backend or self._build_default_email_backend()
        self._events: list[NotificationEvent] = []

    @property
    def sent_events(self) -> list[NotificationEvent]:
        """Expose events (useful for tests when using in-memory backends)."""
        return self._events

    def use_in_memory_backends(self) -> tuple[InMemorySMSBackend, InMemoryEmailBackend]:
        """Replace both backends with in-memory implementations (useful for tests)."""
        sms_backend = InMemorySMSBackend()
        email_backend = InMemoryEmailBackend()
        self._sms_backend = sms_backend
        self._email_backend = email_backend
        return sms_backend, email_backend

    @staticmethod
    def render_gift_card_sms(template: str | None, notification: GiftCardNotification) -> str:
        return render_gift_card_sms(template, notification.variables())

    async def send_sms(self, phone: str, body: str, *, event_type: str, metadata: dict[str, Any] | None = None) -> str:
        if self._sms_backend is None:
            raise NotificationBackendError("SMS gateway is not configured")
        message_id = await self._sms_backend.send_sms(phone, body)
        self._events.append(
            NotificationEvent(
                channel="sms",
                recipient=phone,
                subject=None,
                body_text=body,
                event_type=event_type,
                provider_message_id=message_id,
                metadata=metadata or {},
            )
        )
        logger.info("SMS dispatched", event_type=event_type, provider_message_id=message_id)
        return message_id

    async def send_gift_card_sms(self, notification: GiftCardNotification, *, template: str | None = None) -> str:
        body = notification.message_body or self.render_gift_card_sms(template, notification)
        return await self.send_sms(
            notification.address,
            body,
            event_type="gift_card_sms",
            metadata=self._gift_card_metadata(notification),
        )

    async def send_gift_card_email(
        self,
        notification: GiftCardNotification,
        *,
        subject_template: str | None = None,
        body_template: str | None = None,
    ) -> str | None:
        template = render_gift_card_email(
            subject_template=subject_template,
            body_template=body_template,
            variables=notification.variables(),
            brand_display_name=self._settings.brand_display_name,
        )
        return await self._deliver_email(
            notification.address,
            template,
            event_type="gift_card_email",
            metadata=self._gift_card_metadata(notification),
        )

    async def send_condition_email(
        self,
        email: str,
        *,
        subject_template: str | None,
        body_template: str | None,
        variables: dict[str, Any],
        condition_label: str,
        metadata: dict[str, Any] | None = None,
    ) -> str | None:
        template = render_condition_email(
            subject_template=subject_template,
            body_template=body_template,
            variables=variables,
            condition_label=condition_label,
            brand_display_name=self._settings.brand_display_name,
        )
        return await self._deliver_email(email, template, event_type="condition_email", metadata=metadata or {})

    async def send_inventory_alert(
        self,
        *,
        pool_id: UUID,
        pool_name: str | None,
        campaign_id: UUID,
        condition_number: int | None,
        remediation: str | None,
    ) -> int:
        """Email operators about an empty pool. Returns the number of alerts sent.

        Alerting is best-effort; a failing mail relay is logged, never raised.
        """

        recipients = self._settings.operator_alert_email_recipients
        if not recipients or self._email_backend is None:
            return 0

        template = render_inventory_alert(
            pool_id=str(pool_id),
            pool_name=pool_name,
            campaign_id=str(campaign_id),
            condition_number=condition_number,
            remediation=remediation,
            brand_display_name=self._settings.brand_display_name,
        )
        sent = 0
        for recipient in recipients:
            try:
                await self._deliver_email(
                    recipient,
                    template,
                    event_type="inventory_alert",
                    metadata={"pool_id": str(pool_id), "campaign_id": str(campaign_id)},
                )
            except NotificationBackendError as exc:
                logger.warning("Inventory alert email failed", recipient=recipient, error=str(exc))
                continue
            sent += 1
        return sent

    async def _deliver_email(
        self,
        recipient: str,
        template: RenderedTemplate,
        *,
        event_type: str,
        metadata: dict[str, Any],
    ) -> str | None:
        if self._email_backend is None:
            raise NotificationBackendError("Email delivery is not configured")
        message_id = await self._email_backend.send_email(
            recipient,
            template.subject,
            template.text_body,
            body_html=template.html_body,
        )
        self._events.append(
            NotificationEvent(
                channel="email",
                recipient=recipient,
                subject=template.subject,
                body_text=template.text_body,
                event_type=event_type,
                provider_message_id=message_id,
                metadata=metadata,
            )
        )
        logger.info("Email dispatched", event_type=event_type, provider_message_id=message_id)
        return message_id

    @staticmethod
    def _gift_card_metadata(notification: GiftCardNotification) -> dict[str, Any]:
        return {
            "delivery_id": str(notification.delivery_id),
            "recipient_id": str(notification.recipient_id),
            "campaign_id": str(notification.campaign_id),
            "condition_number": notification.condition_number,
        }

    def _build_default_sms_backend(self) -> Optional[SMSBackend]:
        settings = self._settings
        if not settings.twilio_account_sid or not settings.twilio_auth_token or not settings.twilio_from_number:
            return None

        return TwilioSMSBackend(
            account_sid=settings.twilio_account_sid,
            auth_token=settings.twilio_auth_token,
            from_number=settings.twilio_from_number,
            api_base_url=settings.twilio_api_base_url,
            timeout_seconds=settings.sms_timeout_seconds,
        )

    def _build_default_email_backend(self) -> Optional[EmailBackend]:
        settings = self._settings
        if not settings.smtp_host or not settings.smtp_sender_email:
            return None

        return SMTPEmailBackend(
            host=settings.smtp_host,
            port=settings.smtp_port,
            username=settings.smtp_username,
            password=settings.smtp_password,
            use_tls=settings.smtp_use_tls,
            sender_email=settings.smtp_sender_email,
        )


__all__ = ["GiftCardNotification", "NotificationEvent", "RewardNotifier"]
