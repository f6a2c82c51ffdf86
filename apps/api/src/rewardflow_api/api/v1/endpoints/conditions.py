"""Inbound event trigger, delivery callbacks and diagnostics for the condition engine."""

from __future__ import annotations

from uuid import UUID

from fastapi import APIRouter, Depends, HTTPException, status
from loguru import logger
from pydantic import ValidationError

from rewardflow_api.api.dependencies.conditions import get_condition_engine
from rewardflow_api.api.dependencies.security import require_internal_api_key
from rewardflow_api.celery_app import celery_app
from rewardflow_api.core.settings import settings
from rewardflow_api.schemas.conditions import (
    CatalogCacheInvalidationResponse,
    CompleteConditionRequest,
    ConditionOutcomeResponse,
    DeliveryStatusResponse,
    DeliveryStatusUpdate,
    EvaluateConditionsRequest,
    EvaluateConditionsResponse,
    EvaluationQueuedResponse,
    normalize_event_metadata,
)
from rewardflow_api.services.conditions import (
    CampaignNotFound,
    ConditionEngine,
    ConditionNotEligible,
    ConditionNotFound,
    DataIntegrityError,
    MalformedCatalog,
    RecipientNotFound,
)
from rewardflow_api.services.conditions.evaluator import EvaluationResult

EVALUATE_TASK_NAME = "conditions.evaluate_event"

router = APIRouter(
    prefix="/conditions",
    tags=["Conditions"],
    dependencies=[Depends(require_internal_api_key)],
)


def _raise_for_integrity_error(exc: DataIntegrityError) -> None:
    if isinstance(exc, (CampaignNotFound, ConditionNotFound, RecipientNotFound)):
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail=str(exc)) from exc
    if isinstance(exc, MalformedCatalog):
        raise HTTPException(status_code=status.HTTP_422_UNPROCESSABLE_ENTITY, detail=str(exc)) from exc
    raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail=str(exc)) from exc


def _normalized_metadata(payload: EvaluateConditionsRequest) -> dict:
    try:
        return normalize_event_metadata(payload.event_type, payload.metadata)
    except ValidationError as exc:
        raise HTTPException(
            status_code=status.HTTP_422_UNPROCESSABLE_ENTITY,
            detail=exc.errors(include_url=False, include_context=False),
        ) from exc


@router.post(
    "/evaluate",
    response_model=EvaluateConditionsResponse,
    summary="Evaluate a recipient event against the campaign's conditions",
)
async def evaluate_conditions(
    payload: EvaluateConditionsRequest,
    engine: ConditionEngine = Depends(get_condition_engine),
) -> EvaluateConditionsResponse:
    metadata = _normalized_metadata(payload)
    try:
        result = await engine.evaluator.evaluate(
            recipient_id=payload.recipient_id,
            campaign_id=payload.campaign_id,
            event_type=payload.event_type,
            metadata=metadata,
        )
    except DataIntegrityError as exc:
        logger.warning(
            "Condition evaluation rejected",
            recipient_id=str(payload.recipient_id),
            campaign_id=str(payload.campaign_id),
            error=str(exc),
        )
        _raise_for_integrity_error(exc)

    return _evaluation_response(result)


@router.post(
    "/complete",
    response_model=EvaluateConditionsResponse,
    summary="Complete one condition by number, e.g. from a call center agent",
)
async def complete_condition(
    payload: CompleteConditionRequest,
    engine: ConditionEngine = Depends(get_condition_engine),
) -> EvaluateConditionsResponse:
    try:
        metadata = payload.completion_metadata()
    except ValidationError as exc:
        raise HTTPException(
            status_code=status.HTTP_422_UNPROCESSABLE_ENTITY,
            detail=exc.errors(include_url=False, include_context=False),
        ) from exc

    try:
        result = await engine.evaluator.complete_condition(
            recipient_id=payload.recipient_id,
            campaign_id=payload.campaign_id,
            condition_number=payload.condition_number,
            metadata=metadata,
        )
    except ConditionNotEligible as exc:
        raise HTTPException(status_code=status.HTTP_409_CONFLICT, detail=str(exc)) from exc
    except DataIntegrityError as exc:
        logger.warning(
            "Condition completion rejected",
            recipient_id=str(payload.recipient_id),
            campaign_id=str(payload.campaign_id),
            condition_number=payload.condition_number,
            error=str(exc),
        )
        _raise_for_integrity_error(exc)

    return _evaluation_response(result)


def _evaluation_response(result: EvaluationResult) -> EvaluateConditionsResponse:
    return EvaluateConditionsResponse(
        success=result.success,
        message=result.message,
        conditions=[
            ConditionOutcomeResponse(
                condition_id=outcome.condition_id,
                condition_number=outcome.condition_number,
                sequence_order=outcome.sequence_order,
                trigger_action=outcome.trigger_action,
                outcome=outcome.outcome,
                trigger_id=outcome.trigger_id,
                error=outcome.error,
                error_kind=outcome.error_kind,
            )
            for outcome in result.conditions
        ],
        completed_count=result.completed_count,
        failed_count=result.failed_count,
    )


@router.post(
    "/evaluate/async",
    response_model=EvaluationQueuedResponse,
    status_code=status.HTTP_202_ACCEPTED,
    summary="Queue a recipient event for evaluation by the Celery worker",
)
async def enqueue_evaluation(payload: EvaluateConditionsRequest) -> EvaluationQueuedResponse:
    metadata = _normalized_metadata(payload)
    result = celery_app.send_task(
        EVALUATE_TASK_NAME,
        kwargs={
            "recipient_id": str(payload.recipient_id),
            "campaign_id": str(payload.campaign_id),
            "event_type": payload.event_type.value if payload.event_type else None,
            "metadata": metadata,
        },
        queue=settings.condition_evaluation_task_queue,
    )
    logger.info(
        "Queued condition evaluation",
        task_id=result.id,
        recipient_id=str(payload.recipient_id),
        campaign_id=str(payload.campaign_id),
    )
    return EvaluationQueuedResponse(task_id=str(result.id))


@router.post(
    "/deliveries/{delivery_id}/status",
    response_model=DeliveryStatusResponse,
    summary="Record an asynchronous provider delivery status",
)
async def update_delivery_status(
    delivery_id: UUID,
    payload: DeliveryStatusUpdate,
    engine: ConditionEngine = Depends(get_condition_engine),
) -> DeliveryStatusResponse:
    delivery = await engine.deliveries.record_status(
        delivery_id,
        payload.status,
        provider_message_id=payload.provider_message_id,
        error_message=payload.error_message,
    )
    if delivery is None:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="Delivery not found")
    return DeliveryStatusResponse(
        delivery_id=delivery.id,
        status=delivery.delivery_status,
        provider_message_id=delivery.provider_message_id,
        error_message=delivery.error_message,
    )


@router.get(
    "/campaigns/{campaign_id}/diagnostics",
    summary="Recent trigger failures, inventory and configuration gaps for a campaign",
)
async def get_campaign_diagnostics(
    campaign_id: UUID,
    engine: ConditionEngine = Depends(get_condition_engine),
) -> dict[str, object]:
    try:
        diagnostics = await engine.diagnostics.diagnose(campaign_id)
    except DataIntegrityError as exc:
        _raise_for_integrity_error(exc)
    return diagnostics.as_dict()


@router.delete(
    "/campaigns/{campaign_id}/catalog-cache",
    response_model=CatalogCacheInvalidationResponse,
    summary="Drop the cached condition catalog after a configuration edit",
)
async def invalidate_catalog_cache(
    campaign_id: UUID,
    engine: ConditionEngine = Depends(get_condition_engine),
) -> CatalogCacheInvalidationResponse:
    invalidated = engine.catalog_cache.invalidate(campaign_id)
    return CatalogCacheInvalidationResponse(campaign_id=campaign_id, invalidated=invalidated)
