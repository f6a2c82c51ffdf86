from __future__ import annotations

from typing import Any

from loguru import logger

from rewardflow_api.celery_app import celery_app
from rewardflow_api.core.settings import settings
from rewardflow_api.services.conditions import DataIntegrityError
from rewardflow_api.tasks.conditions import process_condition_event_sync


@celery_app.task(
    name="conditions.evaluate_event",
    queue=settings.condition_evaluation_task_queue,
    autoretry_for=(Exception,),
    max_retries=settings.condition_evaluation_max_retries,
    retry_backoff=True,
    retry_backoff_max=settings.condition_evaluation_retry_backoff_max_seconds,
    retry_jitter=True,
)
def evaluate_event(
    recipient_id: str,
    campaign_id: str,
    event_type: str | None = None,
    metadata: dict[str, Any] | None = None,
) -> dict[str, object]:
    """Celery entrypoint for evaluating a single queued recipient event.

    Unexpected failures are retried with jittered exponential backoff up to
    ``condition_evaluation_max_retries`` times.
    """

    try:
        return process_condition_event_sync(
            recipient_id,
            campaign_id,
            event_type=event_type,
            metadata=metadata,
        )
    except DataIntegrityError as exc:
        # Redelivering cannot fix a missing recipient or a malformed catalog.
        logger.warning(
            "Queued condition event rejected",
            recipient_id=recipient_id,
            campaign_id=campaign_id,
            error=str(exc),
        )
        return {"success": False, "message": str(exc), "errorKind": exc.kind}
    except Exception:
        logger.exception("Queued condition event failed", recipient_id=recipient_id, campaign_id=campaign_id)
        raise
