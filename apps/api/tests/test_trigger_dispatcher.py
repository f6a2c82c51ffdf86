from __future__ import annotations

import json

import httpx
import pytest
from sqlalchemy import select

from rewardflow_api.models import (
    CampaignCondition,
    ConditionTriggerStatus,
    ConditionType,
    CrmIntegration,
    DeliveryMethod,
    DeliveryStatus,
    GiftCardDelivery,
    SmsDeliveryLog,
    SmsDeliveryStatus,
    TriggerAction,
)
from rewardflow_api.services.conditions import TriggerConfigurationError
from rewardflow_api.services.conditions.dispatcher import DEFAULT_SMS_MESSAGE, format_phone_e164
from rewardflow_api.services.conditions.errors import (
    NotificationDeliveryError,
    RecipientMissingChannel,
    UnexpectedTriggerError,
    WebhookDeliveryError,
)
from rewardflow_api.services.conditions.repositories import ConditionDescriptor
from rewardflow_api.services.notifications import RewardNotifier, SMSDeliveryError

from support import seed_campaign


class FailingSMSBackend:
    async def send_sms(self, recipient: str, body_text: str) -> str:
        raise SMSDeliveryError("carrier rejected the message", status_code=400)


async def _seed_single(session_factory, recipient=None, pool_size=0, **condition):
    campaign, person, pool, (row,) = await seed_campaign(
        session_factory,
        [{"condition_type": ConditionType.FORM_SUBMITTED, **condition}],
        recipient=recipient,
        pool_size=pool_size,
    )
    async with session_factory() as session:
        descriptor = ConditionDescriptor.from_model(await session.get(CampaignCondition, row.id))
    return campaign, person, pool, descriptor


async def _dispatch(engine, campaign, person, descriptor, metadata=None):
    return await engine.dispatcher.dispatch(
        recipient_id=person.id,
        campaign_id=campaign.id,
        condition=descriptor,
        metadata=metadata or {},
    )


@pytest.mark.parametrize(
    ("raw", "expected"),
    [
        ("(555) 123-4567", "+15551234567"),
        ("1-555-123-4567", "+15551234567"),
        ("+44 20 7946 0958", "+44 20 7946 0958"),
        ("4420 7946 0958", "+442079460958"),
    ],
)
def test_format_phone_e164(raw: str, expected: str) -> None:
    assert format_phone_e164(raw) == expected


@pytest.mark.asyncio
async def test_send_sms_renders_template_and_logs_delivery(session_factory, condition_engine, notifier) -> None:
    campaign, person, _, descriptor = await _seed_single(
        session_factory,
        trigger_action=TriggerAction.SEND_SMS,
        sms_template="Thanks {FIRST_NAME}, your code is {redemption_code}",
        recipient={"first_name": "Ada", "phone": "555-123-4567", "redemption_code": "RF-42"},
    )

    trigger_id = await _dispatch(condition_engine, campaign, person, descriptor)

    (event,) = notifier.sent_events
    assert event.recipient == "+15551234567"
    assert event.body_text == "Thanks Ada, your code is RF-42"
    trigger = await condition_engine.dispatcher.triggers.get(trigger_id)
    assert trigger.status == ConditionTriggerStatus.COMPLETED
    assert trigger.sms_message_id == event.provider_message_id

    async with session_factory() as session:
        (log,) = (await session.execute(select(SmsDeliveryLog))).scalars().all()
    assert log.delivery_status == SmsDeliveryStatus.SENT
    assert log.provider_message_id == event.provider_message_id
    assert trigger.metadata_json["smsLogId"] == str(log.id)


@pytest.mark.asyncio
async def test_send_sms_without_template_uses_default_message(session_factory, condition_engine, notifier) -> None:
    campaign, person, _, descriptor = await _seed_single(session_factory, trigger_action=TriggerAction.SEND_SMS)

    await _dispatch(condition_engine, campaign, person, descriptor)

    assert notifier.sent_events[0].body_text == DEFAULT_SMS_MESSAGE


@pytest.mark.asyncio
async def test_send_sms_failure_marks_log_and_trigger_failed(session_factory, engine_factory, test_settings) -> None:
    notifier = RewardNotifier(sms_backend=FailingSMSBackend(), settings=test_settings)
    engine = engine_factory(session_factory, notifier=notifier)
    campaign, person, _, descriptor = await _seed_single(session_factory, trigger_action=TriggerAction.SEND_SMS)

    with pytest.raises(NotificationDeliveryError) as excinfo:
        await _dispatch(engine, campaign, person, descriptor)

    assert excinfo.value.kind == "transient"
    trigger = await engine.dispatcher.triggers.get(excinfo.value.trigger_id)
    assert trigger.status == ConditionTriggerStatus.FAILED
    assert trigger.error_kind == "transient"
    assert "carrier rejected the message" in trigger.error_message
    async with session_factory() as session:
        (log,) = (await session.execute(select(SmsDeliveryLog))).scalars().all()
    assert log.delivery_status == SmsDeliveryStatus.FAILED


@pytest.mark.asyncio
async def test_gift_card_requires_phone(session_factory, condition_engine) -> None:
    campaign, person, _, descriptor = await _seed_single(
        session_factory,
        trigger_action=TriggerAction.SEND_GIFT_CARD,
        gift_card_pool_id="pool",
        pool_size=1,
        recipient={"first_name": "Ada", "email": "ada@example.com"},
    )

    with pytest.raises(RecipientMissingChannel) as excinfo:
        await _dispatch(condition_engine, campaign, person, descriptor)

    assert isinstance(excinfo.value, TriggerConfigurationError)
    trigger = await condition_engine.dispatcher.triggers.get(excinfo.value.trigger_id)
    assert trigger.status == ConditionTriggerStatus.FAILED
    assert trigger.error_message == "Recipient has no phone number"


@pytest.mark.asyncio
async def test_gift_card_sms_failure_keeps_assignment_and_links_delivery(
    session_factory, engine_factory, test_settings
) -> None:
    notifier = RewardNotifier(sms_backend=FailingSMSBackend(), settings=test_settings)
    engine = engine_factory(session_factory, notifier=notifier)
    campaign, person, _, descriptor = await _seed_single(
        session_factory,
        trigger_action=TriggerAction.SEND_GIFT_CARD,
        gift_card_pool_id="pool",
        pool_size=1,
    )

    with pytest.raises(NotificationDeliveryError) as excinfo:
        await _dispatch(engine, campaign, person, descriptor)

    trigger = await engine.dispatcher.triggers.get(excinfo.value.trigger_id)
    delivery = await engine.deliveries.get(trigger.gift_card_delivery_id)
    assert delivery.delivery_status == DeliveryStatus.FAILED
    assert delivery.delivery_method == DeliveryMethod.SMS
    assert await engine.claims.get_assignment(person.id, descriptor.id) is not None


@pytest.mark.asyncio
async def test_send_email_with_pool_delivers_gift_card_by_email(session_factory, condition_engine, notifier) -> None:
    campaign, person, _, descriptor = await _seed_single(
        session_factory,
        trigger_action=TriggerAction.SEND_EMAIL,
        gift_card_pool_id="pool",
        pool_size=1,
        email_subject="Your {brand} reward",
    )

    trigger_id = await _dispatch(condition_engine, campaign, person, descriptor)

    (event,) = notifier.sent_events
    assert event.channel == "email"
    assert event.recipient == "ada@example.com"
    assert event.subject == "Your Amazon reward"
    assert "Code: CODE-" in event.body_text
    trigger = await condition_engine.dispatcher.triggers.get(trigger_id)
    async with session_factory() as session:
        delivery = await session.get(GiftCardDelivery, trigger.gift_card_delivery_id)
    assert delivery.delivery_method == DeliveryMethod.EMAIL
    assert delivery.delivery_status == DeliveryStatus.SENT


@pytest.mark.asyncio
async def test_send_email_without_pool_sends_condition_email(session_factory, condition_engine, notifier) -> None:
    campaign, person, _, descriptor = await _seed_single(
        session_factory,
        trigger_action=TriggerAction.SEND_EMAIL,
        condition_name="Survey complete",
    )

    trigger_id = await _dispatch(condition_engine, campaign, person, descriptor)

    (event,) = notifier.sent_events
    assert event.event_type == "condition_email"
    assert event.subject == "Update: Survey complete"
    trigger = await condition_engine.dispatcher.triggers.get(trigger_id)
    assert trigger.status == ConditionTriggerStatus.COMPLETED
    assert trigger.gift_card_delivery_id is None


@pytest.mark.asyncio
async def test_webhook_posts_condition_envelope(session_factory, condition_engine, webhook) -> None:
    webhook.json_body = {"received": True}
    campaign, person, _, descriptor = await _seed_single(
        session_factory,
        trigger_action=TriggerAction.TRIGGER_WEBHOOK,
        webhook_url="https://hooks.example.com/conditions",
    )

    trigger_id = await _dispatch(condition_engine, campaign, person, descriptor)

    (request,) = webhook.requests
    payload = json.loads(request.content)
    assert payload["event"] == "condition_met"
    assert payload["condition_number"] == 1
    assert payload["condition_type"] == "form_submitted"
    assert payload["campaign_id"] == str(campaign.id)
    assert payload["campaign_name"] == "Spring mailer"
    assert payload["recipient"]["id"] == str(person.id)
    assert payload["recipient"]["first_name"] == "Ada"
    assert "timestamp" in payload

    trigger = await condition_engine.dispatcher.triggers.get(trigger_id)
    assert trigger.webhook_response == {"received": True}
    assert trigger.metadata_json["webhookStatusCode"] == 200


@pytest.mark.asyncio
async def test_webhook_error_status_is_recorded_then_raised(session_factory, condition_engine, webhook) -> None:
    webhook.status_code = 502
    webhook.text_body = "upstream unavailable"
    campaign, person, _, descriptor = await _seed_single(
        session_factory,
        trigger_action=TriggerAction.TRIGGER_WEBHOOK,
        webhook_url="https://hooks.example.com/conditions",
    )

    with pytest.raises(WebhookDeliveryError) as excinfo:
        await _dispatch(condition_engine, campaign, person, descriptor)

    assert excinfo.value.status_code == 502
    trigger = await condition_engine.dispatcher.triggers.get(excinfo.value.trigger_id)
    assert trigger.status == ConditionTriggerStatus.FAILED
    assert trigger.webhook_response == {"text": "upstream unavailable"}
    assert trigger.metadata_json["webhookStatusCode"] == 502


@pytest.mark.asyncio
async def test_webhook_timeout_is_transient(session_factory, condition_engine, webhook) -> None:
    webhook.error = httpx.ReadTimeout("slow consumer")
    campaign, person, _, descriptor = await _seed_single(
        session_factory,
        trigger_action=TriggerAction.TRIGGER_WEBHOOK,
        webhook_url="https://hooks.example.com/conditions",
    )

    with pytest.raises(WebhookDeliveryError) as excinfo:
        await _dispatch(condition_engine, campaign, person, descriptor)

    assert excinfo.value.kind == "transient"
    assert "timed out" in str(excinfo.value)


@pytest.mark.asyncio
async def test_update_crm_without_integration_is_a_no_op(session_factory, condition_engine, webhook) -> None:
    campaign, person, _, descriptor = await _seed_single(session_factory, trigger_action=TriggerAction.UPDATE_CRM)

    trigger_id = await _dispatch(condition_engine, campaign, person, descriptor)

    trigger = await condition_engine.dispatcher.triggers.get(trigger_id)
    assert trigger.status == ConditionTriggerStatus.COMPLETED
    assert trigger.metadata_json["crmSkipped"] is True
    assert webhook.requests == []


@pytest.mark.asyncio
async def test_update_crm_posts_to_active_integration(session_factory, condition_engine, webhook) -> None:
    campaign, person, _, descriptor = await _seed_single(session_factory, trigger_action=TriggerAction.UPDATE_CRM)
    async with session_factory() as session:
        session.add(
            CrmIntegration(
                campaign_id=campaign.id,
                crm_provider="hubspot",
                webhook_url="https://crm.example.com/hook",
            )
        )
        await session.commit()

    trigger_id = await _dispatch(condition_engine, campaign, person, descriptor)

    assert [str(request.url) for request in webhook.requests] == ["https://crm.example.com/hook"]
    trigger = await condition_engine.dispatcher.triggers.get(trigger_id)
    assert trigger.metadata_json["crmProvider"] == "hubspot"


@pytest.mark.asyncio
async def test_trigger_row_keeps_event_metadata(session_factory, condition_engine) -> None:
    campaign, person, _, descriptor = await _seed_single(session_factory, trigger_action=TriggerAction.UPDATE_CRM)

    trigger_id = await _dispatch(condition_engine, campaign, person, descriptor, metadata={"formId": "lead"})

    trigger = await condition_engine.dispatcher.triggers.get(trigger_id)
    assert trigger.metadata_json["formId"] == "lead"
    assert trigger.trigger_action == TriggerAction.UPDATE_CRM
    assert trigger.completed_at is not None


@pytest.mark.asyncio
async def test_webhook_plain_text_success_is_kept_as_text(session_factory, condition_engine, webhook) -> None:
    webhook.text_body = "accepted"
    campaign, person, _, descriptor = await _seed_single(
        session_factory,
        trigger_action=TriggerAction.TRIGGER_WEBHOOK,
        webhook_url="https://hooks.example.com/conditions",
    )

    trigger_id = await _dispatch(condition_engine, campaign, person, descriptor)

    trigger = await condition_engine.dispatcher.triggers.get(trigger_id)
    assert trigger.status == ConditionTriggerStatus.COMPLETED
    assert trigger.webhook_response == {"text": "accepted"}
    assert trigger.metadata_json["webhookStatusCode"] == 200


@pytest.mark.asyncio
async def test_unexpected_action_error_is_wrapped_and_recorded(session_factory, condition_engine, webhook) -> None:
    original = ValueError("consumer exploded")
    webhook.error = original
    campaign, person, _, descriptor = await _seed_single(
        session_factory,
        trigger_action=TriggerAction.TRIGGER_WEBHOOK,
        webhook_url="https://hooks.example.com/conditions",
    )

    with pytest.raises(UnexpectedTriggerError) as excinfo:
        await _dispatch(condition_engine, campaign, person, descriptor)

    assert excinfo.value.__cause__ is original
    assert not hasattr(original, "trigger_id")
    trigger = await condition_engine.dispatcher.triggers.get(excinfo.value.trigger_id)
    assert trigger.status == ConditionTriggerStatus.FAILED
    assert trigger.error_kind == "unexpected"
    assert trigger.error_message == "consumer exploded"
