from __future__ import annotations

from uuid import uuid4

import pytest

from rewardflow_api.celery_tasks import conditions as condition_tasks
from rewardflow_api.core.settings import settings
from rewardflow_api.models import ConditionType, TriggerAction
from rewardflow_api.services.conditions import RecipientNotFound
from rewardflow_api.tasks.conditions import process_condition_event

from support import seed_campaign


@pytest.mark.asyncio
async def test_process_condition_event_returns_summary(session_factory, condition_engine) -> None:
    campaign, recipient, _, (condition,) = await seed_campaign(
        session_factory,
        [{"condition_type": ConditionType.PURL_VISITED, "trigger_action": TriggerAction.UPDATE_CRM}],
    )

    summary = await process_condition_event(
        recipient.id,
        campaign.id,
        event_type=ConditionType.PURL_VISITED,
        metadata={"url": "https://example.com/ada"},
        engine=condition_engine,
    )

    assert summary["success"] is True
    assert summary["completedCount"] == 1
    assert summary["failedCount"] == 0
    assert summary["conditions"][0]["conditionId"] == str(condition.id)
    assert summary["conditions"][0]["outcome"] == "dispatched"


def test_celery_task_delegates_to_sync_wrapper(monkeypatch) -> None:
    calls = []

    def fake_sync(recipient_id, campaign_id, *, event_type=None, metadata=None):
        calls.append((recipient_id, campaign_id, event_type, metadata))
        return {"success": True, "message": "Completed 1 condition(s)"}

    monkeypatch.setattr(condition_tasks, "process_condition_event_sync", fake_sync)
    recipient_id, campaign_id = str(uuid4()), str(uuid4())

    result = condition_tasks.evaluate_event.run(recipient_id, campaign_id, "manual", {"completedBy": "ops"})

    assert result["success"] is True
    assert calls == [(recipient_id, campaign_id, "manual", {"completedBy": "ops"})]


def test_celery_task_swallows_data_integrity_errors(monkeypatch) -> None:
    recipient_id, campaign_id = uuid4(), uuid4()

    def fake_sync(*args, **kwargs):
        raise RecipientNotFound(recipient_id, campaign_id)

    monkeypatch.setattr(condition_tasks, "process_condition_event_sync", fake_sync)

    result = condition_tasks.evaluate_event.run(str(recipient_id), str(campaign_id))

    assert result["success"] is False
    assert result["errorKind"] == "data_integrity"


def test_celery_task_reraises_unexpected_errors(monkeypatch) -> None:
    def fake_sync(*args, **kwargs):
        raise RuntimeError("database unavailable")

    monkeypatch.setattr(condition_tasks, "process_condition_event_sync", fake_sync)

    with pytest.raises(RuntimeError):
        condition_tasks.evaluate_event.run(str(uuid4()), str(uuid4()))


def test_celery_task_retries_with_bounded_backoff() -> None:
    task = condition_tasks.evaluate_event

    assert task.autoretry_for == (Exception,)
    assert task.max_retries == settings.condition_evaluation_max_retries
    assert task.retry_backoff is True
    assert task.retry_backoff_max == settings.condition_evaluation_retry_backoff_max_seconds
