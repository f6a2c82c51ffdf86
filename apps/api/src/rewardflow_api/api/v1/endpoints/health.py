from __future__ import annotations

from typing import Dict, Literal

from fastapi import APIRouter, Request
from loguru import logger
from pydantic import BaseModel, Field
from sqlalchemy import text
from sqlalchemy.exc import SQLAlchemyError


router = APIRouter()


class ComponentStatus(BaseModel):
    status: Literal["ready", "disabled", "error"]
    detail: str | None = Field(default=None, description="Human readable status detail")


class ReadinessPayload(BaseModel):
    status: Literal["ready", "degraded", "error"]
    components: Dict[str, ComponentStatus]


@router.get("/healthz", summary="Service health check")
async def service_health() -> dict[str, str]:
    return {"status": "ok"}


@router.get("/readyz", summary="Service readiness", response_model=ReadinessPayload)
async def service_readiness(request: Request) -> ReadinessPayload:
    components: Dict[str, ComponentStatus] = {}
    status: Literal["ready", "degraded", "error"] = "ready"

    try:
        async with request.app.state.session_factory() as session:
            await session.execute(text("SELECT 1"))
    except SQLAlchemyError as exc:
        logger.warning("Readiness database check failed", error=str(exc))
        components["database"] = ComponentStatus(status="error", detail=str(exc))
        status = "error"
    else:
        components["database"] = ComponentStatus(status="ready")

    engine = getattr(request.app.state, "condition_engine", None)
    if engine is None:
        components["condition_engine"] = ComponentStatus(status="error", detail="Condition engine not initialised")
        status = "error"
    else:
        components["condition_engine"] = ComponentStatus(
            status="ready",
            detail=f"{len(engine.catalog_cache)} catalog(s) cached",
        )

    return ReadinessPayload(status=status, components=components)
