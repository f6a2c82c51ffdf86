"""Observability endpoints for the condition engine."""

from __future__ import annotations

from fastapi import APIRouter, Depends

from rewardflow_api.api.dependencies.conditions import get_condition_engine
from rewardflow_api.api.dependencies.security import require_internal_api_key
from rewardflow_api.observability.conditions import get_condition_store
from rewardflow_api.services.conditions import ConditionEngine


router = APIRouter(prefix="/observability", tags=["Observability"])


@router.get(
    "/conditions",
    dependencies=[Depends(require_internal_api_key)],
    summary="Condition engine observability snapshot",
)
async def get_conditions_snapshot(engine: ConditionEngine = Depends(get_condition_engine)) -> dict[str, object]:
    """Counters for evaluations, triggers, claims and failures, plus catalog cache stats."""
    snapshot = get_condition_store().snapshot().as_dict()
    snapshot["catalogCache"] = {
        **engine.catalog_cache.stats().as_dict(),
        "entries": len(engine.catalog_cache),
        "maxEntries": engine.catalog_cache.max_entries,
        "ttlSeconds": engine.catalog_cache.ttl_seconds,
    }
    return snapshot
