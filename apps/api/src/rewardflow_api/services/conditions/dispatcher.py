"""Execute the side effect configured on a newly satisfied condition.

Every dispatch writes a ``condition_triggers`` row in ``processing`` before any
side effect runs. The row is finalized as ``completed`` with whatever the
action produced, or as ``failed`` with the error message and kind before the
exception is re-raised to the evaluator.
"""

from __future__ import annotations

import re
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Any, Awaitable, Callable, Mapping
from uuid import UUID

import httpx
from loguru import logger

from rewardflow_api.core.settings import Settings, get_settings
from rewardflow_api.models.campaign import Campaign, Recipient, TriggerAction
from rewardflow_api.models.gift_card import DeliveryMethod
from rewardflow_api.observability.conditions import get_condition_store
from rewardflow_api.observability.tracing import tracer
from rewardflow_api.services.conditions.claims import ClaimResult, GiftCardClaimService
from rewardflow_api.services.conditions.deliveries import GiftCardDeliveryRepository
from rewardflow_api.services.conditions.errors import (
    CampaignNotFound,
    ConditionEngineError,
    MissingRewardPool,
    MissingWebhookUrl,
    NoAvailableInventory,
    NotificationDeliveryError,
    RecipientMissingChannel,
    RecipientNotFound,
    UnexpectedTriggerError,
    WebhookDeliveryError,
    error_kind,
)
from rewardflow_api.services.conditions.repositories import (
    CampaignRepository,
    ConditionDescriptor,
    SessionFactory,
    SmsLogRepository,
    TriggerLogRepository,
)
from rewardflow_api.services.notifications import (
    GiftCardNotification,
    NotificationBackendError,
    RewardNotifier,
)
from rewardflow_api.services.notifications.templates import (
    gift_card_variables,
    render_gift_card_email,
    render_gift_card_sms,
    render_message,
)

DEFAULT_SMS_MESSAGE = "Thank you for your response!"
WEBHOOK_RESPONSE_TEXT_LIMIT = 2000


def format_phone_e164(phone: str) -> str:
    """Normalize a North American number to E.164; other numbers get a ``+`` prefix."""

    digits = re.sub(r"\D", "", phone)
    if len(digits) == 10:
        return f"+1{digits}"
    if len(digits) == 11 and digits.startswith("1"):
        return f"+{digits}"
    if phone.startswith("+"):
        return phone
    return f"+{digits}"


@dataclass
class TriggerContext:
    trigger_id: UUID
    recipient: Recipient
    campaign: Campaign
    condition: ConditionDescriptor
    metadata: Mapping[str, Any]


@dataclass
class ActionOutcome:
    """What an action produced; merged into the trigger row on completion."""

    gift_card_delivery_id: UUID | None = None
    sms_message_id: str | None = None
    webhook_response: Any = None
    metadata: dict[str, Any] = field(default_factory=dict)

    def trigger_fields(self) -> dict[str, Any]:
        fields: dict[str, Any] = {}
        if self.gift_card_delivery_id is not None:
            fields["gift_card_delivery_id"] = self.gift_card_delivery_id
        if self.sms_message_id is not None:
            fields["sms_message_id"] = self.sms_message_id
        if self.webhook_response is not None:
            fields["webhook_response"] = self.webhook_response
        return fields


ActionHandler = Callable[[TriggerContext], Awaitable[ActionOutcome]]


class TriggerActionDispatcher:
    def __init__(
        self,
        session_factory: SessionFactory,
        *,
        claim_service: GiftCardClaimService | None = None,
        notifier: RewardNotifier | None = None,
        http_client: httpx.AsyncClient | None = None,
        settings: Settings | None = None,
    ) -> None:
        self._settings = settings or get_settings()
        self._campaigns = CampaignRepository(session_factory)
        self._triggers = TriggerLogRepository(session_factory)
        self._sms_log = SmsLogRepository(session_factory)
        self._deliveries = GiftCardDeliveryRepository(session_factory)
        self._claims = claim_service or GiftCardClaimService(
            session_factory,
            max_attempts=self._settings.gift_card_claim_max_attempts,
        )
        self._notifier = notifier or RewardNotifier(settings=self._settings)
        self._http_client = http_client
        self._webhook_timeout = self._settings.condition_webhook_timeout_seconds
        self._handlers: dict[TriggerAction, ActionHandler] = {
            TriggerAction.SEND_GIFT_CARD: self._send_gift_card,
            TriggerAction.SEND_SMS: self._send_sms,
            TriggerAction.SEND_EMAIL: self._send_email,
            TriggerAction.TRIGGER_WEBHOOK: self._trigger_webhook,
            TriggerAction.UPDATE_CRM: self._update_crm,
        }

    @property
    def triggers(self) -> TriggerLogRepository:
        return self._triggers

    async def dispatch(
        self,
        *,
        recipient_id: UUID,
        campaign_id: UUID,
        condition: ConditionDescriptor,
        metadata: Mapping[str, Any],
    ) -> UUID:
        """Run the condition's trigger action and return the trigger row id."""

        store = get_condition_store()
        action = condition.trigger_action
        trigger_id = await self._triggers.create(
            recipient_id=recipient_id,
            campaign_id=campaign_id,
            condition=condition,
            metadata=metadata,
        )

        with tracer.start_as_current_span("conditions.dispatch") as span:
            span.set_attribute("rewardflow.trigger_action", action.value)
            span.set_attribute("rewardflow.condition_number", condition.condition_number)
            span.set_attribute("rewardflow.trigger_id", str(trigger_id))
            try:
                context = await self._build_context(trigger_id, recipient_id, campaign_id, condition, metadata)
                outcome = await self._handlers[action](context)
            except Exception as exc:
                kind = error_kind(exc)
                failure = exc if isinstance(exc, ConditionEngineError) else UnexpectedTriggerError(str(exc))
                failure.trigger_id = trigger_id
                await self._triggers.mark_failed(trigger_id, error_message=str(exc), error_kind=kind)
                store.record_trigger(action.value, "failed")
                store.record_failure(kind)
                span.set_attribute("rewardflow.error_kind", kind)
                log = logger.exception if kind == "unexpected" else logger.warning
                log(
                    "Trigger action failed",
                    trigger_id=str(trigger_id),
                    trigger_action=action.value,
                    condition_id=str(condition.id),
                    recipient_id=str(recipient_id),
                    error_kind=kind,
                    error=str(exc),
                )
                if failure is exc:
                    raise
                raise failure from exc

            await self._triggers.mark_completed(trigger_id, metadata=outcome.metadata, **outcome.trigger_fields())
            store.record_trigger(action.value, "completed")
            logger.info(
                "Trigger action completed",
                trigger_id=str(trigger_id),
                trigger_action=action.value,
                condition_id=str(condition.id),
                recipient_id=str(recipient_id),
            )
        return trigger_id

    async def _build_context(
        self,
        trigger_id: UUID,
        recipient_id: UUID,
        campaign_id: UUID,
        condition: ConditionDescriptor,
        metadata: Mapping[str, Any],
    ) -> TriggerContext:
        recipient = await self._campaigns.get_recipient(recipient_id)
        if recipient is None:
            raise RecipientNotFound(recipient_id, campaign_id)
        campaign = await self._campaigns.get_campaign(campaign_id)
        if campaign is None:
            raise CampaignNotFound(campaign_id)
        return TriggerContext(
            trigger_id=trigger_id,
            recipient=recipient,
            campaign=campaign,
            condition=condition,
            metadata=metadata,
        )

    async def _send_gift_card(self, context: TriggerContext) -> ActionOutcome:
        recipient = context.recipient
        if not recipient.phone:
            raise RecipientMissingChannel(recipient.id, "phone")
        return await self._deliver_reward(context, DeliveryMethod.SMS, format_phone_e164(recipient.phone))

    async def _send_sms(self, context: TriggerContext) -> ActionOutcome:
        recipient = context.recipient
        if not recipient.phone:
            raise RecipientMissingChannel(recipient.id, "phone")

        phone = format_phone_e164(recipient.phone)
        body = render_message(context.condition.sms_template or DEFAULT_SMS_MESSAGE, _recipient_variables(recipient))
        log_id = await self._sms_log.create(
            recipient_id=recipient.id,
            campaign_id=context.campaign.id,
            phone_number=phone,
            body=body,
        )
        try:
            message_id = await self._notifier.send_sms(
                phone,
                body,
                event_type="condition_sms",
                metadata={"trigger_id": str(context.trigger_id)},
            )
        except NotificationBackendError as exc:
            await self._sms_log.mark_failed(log_id, str(exc))
            raise NotificationDeliveryError("sms", str(exc)) from exc

        await self._sms_log.mark_sent(log_id, message_id)
        return ActionOutcome(sms_message_id=message_id, metadata={"smsLogId": str(log_id)})

    async def _send_email(self, context: TriggerContext) -> ActionOutcome:
        recipient = context.recipient
        condition = context.condition
        if not recipient.email:
            raise RecipientMissingChannel(recipient.id, "email")

        if condition.gift_card_pool_id is not None:
            return await self._deliver_reward(context, DeliveryMethod.EMAIL, recipient.email)

        try:
            message_id = await self._notifier.send_condition_email(
                recipient.email,
                subject_template=condition.email_subject,
                body_template=condition.email_template,
                variables=_recipient_variables(recipient),
                condition_label=condition.condition_name or f"condition {condition.condition_number}",
                metadata={"trigger_id": str(context.trigger_id)},
            )
        except NotificationBackendError as exc:
            raise NotificationDeliveryError("email", str(exc)) from exc
        return ActionOutcome(metadata={"emailMessageId": message_id})

    async def _trigger_webhook(self, context: TriggerContext) -> ActionOutcome:
        url = context.condition.webhook_url
        if not url:
            raise MissingWebhookUrl(context.condition.id)
        return await self._post_webhook(context, url)

    async def _update_crm(self, context: TriggerContext) -> ActionOutcome:
        integration = await self._campaigns.get_active_crm_integration(context.campaign.id)
        if integration is None:
            logger.info("No active CRM integration; skipping", campaign_id=str(context.campaign.id))
            return ActionOutcome(metadata={"crmSkipped": True, "reason": "no_active_integration"})

        outcome = await self._post_webhook(context, integration.webhook_url)
        outcome.metadata["crmProvider"] = integration.crm_provider
        return outcome

    async def _deliver_reward(self, context: TriggerContext, method: DeliveryMethod, address: str) -> ActionOutcome:
        condition = context.condition
        recipient = context.recipient
        if condition.gift_card_pool_id is None:
            raise MissingRewardPool(condition.id)

        try:
            claim = await self._claims.claim(
                pool_id=condition.gift_card_pool_id,
                recipient_id=recipient.id,
                campaign_id=context.campaign.id,
                condition_id=condition.id,
            )
        except NoAvailableInventory as exc:
            await self._notifier.send_inventory_alert(
                pool_id=exc.pool_id,
                pool_name=None,
                campaign_id=context.campaign.id,
                condition_number=condition.condition_number,
                remediation=exc.remediation,
            )
            raise

        if claim.already_assigned:
            # Reward already granted for this (recipient, condition); never re-send.
            return ActionOutcome(metadata=claim.as_metadata())

        variables = gift_card_variables(
            code=claim.code,
            value=claim.denomination,
            brand=claim.brand_name,
            provider=claim.provider,
            first_name=recipient.first_name,
            last_name=recipient.last_name,
            card_number=claim.card_number,
        )
        if method == DeliveryMethod.SMS:
            message_body = render_gift_card_sms(condition.sms_template, variables)
        else:
            message_body = render_gift_card_email(
                subject_template=condition.email_subject,
                body_template=condition.email_template,
                variables=variables,
                brand_display_name=self._settings.brand_display_name,
            ).text_body

        delivery_id = await self._deliveries.create(
            claim=claim,
            recipient_id=recipient.id,
            campaign_id=context.campaign.id,
            condition=condition,
            method=method,
            address=address,
            message_body=message_body,
            metadata={"triggerId": str(context.trigger_id)},
        )
        notification = self._build_notification(context, claim, delivery_id, address, message_body)
        try:
            if method == DeliveryMethod.SMS:
                message_id = await self._notifier.send_gift_card_sms(notification)
            else:
                message_id = await self._notifier.send_gift_card_email(
                    notification,
                    subject_template=condition.email_subject,
                    body_template=condition.email_template,
                )
        except NotificationBackendError as exc:
            await self._deliveries.mark_failed(delivery_id, str(exc))
            await self._triggers.update(context.trigger_id, gift_card_delivery_id=delivery_id)
            raise NotificationDeliveryError(method.value, str(exc)) from exc

        await self._deliveries.mark_sent(delivery_id, message_id)
        return ActionOutcome(
            gift_card_delivery_id=delivery_id,
            metadata={**claim.as_metadata(), "deliveryMethod": method.value},
        )

    @staticmethod
    def _build_notification(
        context: TriggerContext,
        claim: ClaimResult,
        delivery_id: UUID,
        address: str,
        message_body: str,
    ) -> GiftCardNotification:
        return GiftCardNotification(
            delivery_id=delivery_id,
            recipient_id=context.recipient.id,
            campaign_id=context.campaign.id,
            condition_number=context.condition.condition_number,
            address=address,
            code=claim.code,
            denomination=claim.denomination,
            brand_name=claim.brand_name,
            provider=claim.provider,
            card_number=claim.card_number,
            first_name=context.recipient.first_name,
            last_name=context.recipient.last_name,
            message_body=message_body,
        )

    async def _post_webhook(self, context: TriggerContext, url: str) -> ActionOutcome:
        condition = context.condition
        payload = {
            "event": "condition_met",
            "condition_number": condition.condition_number,
            "condition_type": condition.condition_type.value,
            "campaign_id": str(context.campaign.id),
            "campaign_name": context.campaign.name,
            "recipient": context.recipient.as_payload(),
            "timestamp": datetime.now(timezone.utc).isoformat(),
        }

        close_client = False
        client = self._http_client
        if client is None:
            client = httpx.AsyncClient(timeout=self._webhook_timeout)
            close_client = True

        try:
            response = await client.post(url, json=payload, timeout=self._webhook_timeout)
        except httpx.TimeoutException as exc:
            raise WebhookDeliveryError(url, f"timed out after {self._webhook_timeout:g}s") from exc
        except httpx.RequestError as exc:
            raise WebhookDeliveryError(url, str(exc) or exc.__class__.__name__) from exc
        finally:
            if close_client:
                await client.aclose()

        body = _response_body(response)
        if not response.is_success:
            await self._triggers.update(
                context.trigger_id,
                webhook_response=body,
                metadata={"webhookUrl": url, "webhookStatusCode": response.status_code},
            )
            raise WebhookDeliveryError(url, f"HTTP {response.status_code}", status_code=response.status_code)

        return ActionOutcome(
            webhook_response=body,
            metadata={"webhookUrl": url, "webhookStatusCode": response.status_code},
        )


def _recipient_variables(recipient: Recipient) -> dict[str, Any]:
    return {
        "first_name": recipient.first_name,
        "last_name": recipient.last_name,
        "email": recipient.email,
        "phone": recipient.phone,
        "redemption_code": recipient.redemption_code,
    }


def _response_body(response: httpx.Response) -> Any:
    try:
        return response.json()
    except ValueError:
        return {"text": response.text[:WEBHOOK_RESPONSE_TEXT_LIMIT]}


__all__ = [
    "ActionOutcome",
    "TriggerActionDispatcher",
    "TriggerContext",
    "format_phone_e164",
]
