from __future__ import annotations

from uuid import uuid4

import pytest

from rewardflow_api.models import ConditionType, TriggerAction

from support import add_recipient, seed_campaign


@pytest.mark.asyncio
async def test_diagnostics_reports_gaps_and_failures(app_with_db, api_client) -> None:
    _, session_factory = app_with_db
    campaign, recipient, pool, _ = await seed_campaign(
        session_factory,
        [
            {
                "condition_type": ConditionType.MAIL_DELIVERED,
                "trigger_action": TriggerAction.SEND_GIFT_CARD,
                "gift_card_pool_id": "pool",
            },
            {
                "condition_type": ConditionType.FORM_SUBMITTED,
                "trigger_action": TriggerAction.TRIGGER_WEBHOOK,
                "is_required": False,
            },
            {
                "condition_type": ConditionType.CALL_COMPLETED,
                "trigger_action": TriggerAction.UPDATE_CRM,
                "is_required": False,
            },
        ],
        pool_size=0,
    )
    await api_client.post(
        "/api/v1/conditions/evaluate",
        json={"recipientId": str(recipient.id), "campaignId": str(campaign.id), "eventType": "mail_delivered"},
    )

    response = await api_client.get(f"/api/v1/conditions/campaigns/{campaign.id}/diagnostics")

    assert response.status_code == 200
    payload = response.json()
    assert payload["healthy"] is False
    assert payload["activeConditions"] == 3
    codes = {gap["code"] for gap in payload["configurationGaps"]}
    assert codes == {"missing_webhook_url", "no_active_crm_integration", "pool_exhausted"}
    (inventory,) = payload["inventory"]
    assert inventory["poolId"] == str(pool.id)
    assert inventory["available"] == 0
    (failure,) = payload["recentFailures"]
    assert failure["errorKind"] == "inventory"
    assert failure["triggerAction"] == "send_gift_card"
    assert any("Restock" in step for step in payload["remediation"])


@pytest.mark.asyncio
async def test_diagnostics_for_healthy_campaign(condition_engine, session_factory) -> None:
    campaign, _, _, _ = await seed_campaign(
        session_factory,
        [
            {
                "condition_type": ConditionType.QR_SCANNED,
                "trigger_action": TriggerAction.SEND_GIFT_CARD,
                "gift_card_pool_id": "pool",
            }
        ],
        pool_size=2,
    )

    diagnostics = await condition_engine.diagnostics.diagnose(campaign.id)

    assert diagnostics.healthy is True
    assert diagnostics.configuration_gaps == []
    assert diagnostics.inventory[0].available == 2


@pytest.mark.asyncio
async def test_diagnostics_unknown_campaign_is_404(api_client) -> None:
    response = await api_client.get(f"/api/v1/conditions/campaigns/{uuid4()}/diagnostics")

    assert response.status_code == 404


@pytest.mark.asyncio
async def test_diagnostics_flags_recipients_without_a_phone(condition_engine, session_factory) -> None:
    campaign, _, _, _ = await seed_campaign(
        session_factory,
        [
            {"condition_type": ConditionType.QR_SCANNED, "trigger_action": TriggerAction.SEND_SMS},
            {"condition_type": ConditionType.FORM_SUBMITTED, "trigger_action": TriggerAction.SEND_EMAIL},
        ],
    )
    await add_recipient(session_factory, campaign.id, first_name="Grace", email="grace@example.com")
    await add_recipient(session_factory, campaign.id, first_name="Linus", phone="  ", email="linus@example.com")

    diagnostics = await condition_engine.diagnostics.diagnose(campaign.id)

    (gap,) = diagnostics.configuration_gaps
    assert gap.code == "recipients_missing_phone"
    assert gap.severity == "warning"
    assert gap.message.startswith("2 recipient(s) have no phone number")
    assert "Add the missing contact detail" in gap.remediation
    assert diagnostics.healthy is True
