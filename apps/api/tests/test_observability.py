from __future__ import annotations

import pytest

from rewardflow_api.models import ConditionType, TriggerAction
from rewardflow_api.observability.conditions import ConditionObservabilityStore

from support import seed_campaign


def test_store_snapshot_and_reset() -> None:
    store = ConditionObservabilityStore()
    store.record_evaluation("manual", matched=0)
    store.record_evaluation("manual", matched=2)
    store.record_condition_completed("manual")
    store.record_trigger("send_sms", "completed")
    store.record_trigger("send_sms", "failed")
    store.record_claim("claimed")
    store.record_failure("")

    snapshot = store.snapshot().as_dict()

    assert snapshot["evaluations"] == {"total": 2, "event:manual": 2, "no_match": 1}
    assert snapshot["conditions"] == {"manual": 1}
    assert snapshot["triggers"] == {
        "by_action": {"send_sms": 2},
        "by_status": {"completed": 1, "failed": 1},
    }
    assert snapshot["claims"] == {"claimed": 1}
    assert snapshot["failures"] == {"unexpected": 1}

    store.reset()
    assert store.snapshot().as_dict()["evaluations"] == {}


@pytest.mark.asyncio
async def test_observability_endpoint_includes_cache_stats(app_with_db, api_client) -> None:
    _, session_factory = app_with_db
    campaign, recipient, _, _ = await seed_campaign(
        session_factory,
        [{"condition_type": ConditionType.MANUAL, "trigger_action": TriggerAction.UPDATE_CRM}],
    )
    for _ in range(2):
        await api_client.post(
            "/api/v1/conditions/evaluate",
            json={"recipientId": str(recipient.id), "campaignId": str(campaign.id), "eventType": "manual"},
        )

    response = await api_client.get("/api/v1/observability/conditions")

    assert response.status_code == 200
    payload = response.json()
    assert payload["evaluations"]["total"] == 2
    assert payload["evaluations"]["event:manual"] == 2
    assert payload["evaluations"]["no_match"] == 1
    assert payload["triggers"]["by_action"] == {"update_crm": 1}
    cache = payload["catalogCache"]
    assert cache["hits"] == 1
    assert cache["misses"] == 1
    assert cache["entries"] == 1
