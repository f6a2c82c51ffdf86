"""Condition evaluation helpers for queued events.

Celery (or a CLI runner) calls the sync wrapper; the evaluation itself runs the
same service layer as the HTTP endpoint.
"""

from __future__ import annotations

import asyncio
from typing import Any
from uuid import UUID

from loguru import logger

from rewardflow_api.db.session import async_session, engine as db_engine
from rewardflow_api.models.campaign import ConditionType
from rewardflow_api.services.conditions import ConditionEngine, build_condition_engine

_WORKER_ENGINE: ConditionEngine | None = None


def get_worker_engine() -> ConditionEngine:
    """One condition engine, and so one catalog cache, per worker process."""

    global _WORKER_ENGINE
    if _WORKER_ENGINE is None:
        _WORKER_ENGINE = build_condition_engine(async_session)
    return _WORKER_ENGINE


async def process_condition_event(
    recipient_id: UUID,
    campaign_id: UUID,
    *,
    event_type: ConditionType | None = None,
    metadata: dict[str, Any] | None = None,
    engine: ConditionEngine | None = None,
) -> dict[str, Any]:
    """Evaluate one queued event and return the summary payload."""

    condition_engine = engine or get_worker_engine()
    result = await condition_engine.evaluator.evaluate(
        recipient_id=recipient_id,
        campaign_id=campaign_id,
        event_type=event_type,
        metadata=metadata,
    )
    logger.info(
        "Queued condition event processed",
        recipient_id=str(recipient_id),
        campaign_id=str(campaign_id),
        completed_count=result.completed_count,
        failed_count=result.failed_count,
    )
    return {
        "success": result.success,
        "message": result.message,
        "conditions": [outcome.as_dict() for outcome in result.conditions],
        "completedCount": result.completed_count,
        "failedCount": result.failed_count,
    }


def process_condition_event_sync(
    recipient_id: str | UUID,
    campaign_id: str | UUID,
    *,
    event_type: str | None = None,
    metadata: dict[str, Any] | None = None,
    engine: ConditionEngine | None = None,
) -> dict[str, Any]:
    """Convenience wrapper so Celery/cron integrations can call the async evaluator."""

    async def _run() -> dict[str, Any]:
        try:
            return await process_condition_event(
                UUID(str(recipient_id)),
                UUID(str(campaign_id)),
                event_type=ConditionType(event_type) if event_type else None,
                metadata=metadata,
                engine=engine,
            )
        finally:
            if engine is None:
                # Pooled connections are bound to this run's event loop.
                await db_engine.dispose()

    return asyncio.run(_run())


__all__ = ["get_worker_engine", "process_condition_event", "process_condition_event_sync"]
