"""Sequential, gated evaluation of a campaign's conditions for one recipient event."""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any, Mapping
from uuid import UUID

from loguru import logger

from rewardflow_api.models.campaign import ConditionType
from rewardflow_api.models.condition import ConditionStatus
from rewardflow_api.observability.conditions import get_condition_store
from rewardflow_api.observability.tracing import tracer
from rewardflow_api.services.conditions.catalog_cache import ConditionCatalogCache
from rewardflow_api.services.conditions.dispatcher import TriggerActionDispatcher
from rewardflow_api.services.conditions.errors import (
    CampaignNotFound,
    ConditionAlreadyCompleted,
    ConditionEngineError,
    ConditionNotEligible,
    ConditionNotFound,
    RecipientNotFound,
    error_kind,
)
from rewardflow_api.services.conditions.repositories import (
    CampaignRepository,
    ConditionCatalogRepository,
    ConditionDescriptor,
    ConditionStatusRepository,
    SessionFactory,
)

NO_CONDITIONS_MESSAGE = "No conditions to evaluate"

Catalog = tuple[ConditionDescriptor, ...]


@dataclass
class ConditionOutcome:
    condition_id: UUID
    condition_number: int
    sequence_order: int
    trigger_action: str
    outcome: str
    trigger_id: UUID | None = None
    error: str | None = None
    error_kind: str | None = None

    @property
    def failed(self) -> bool:
        return self.outcome == "failed"

    def as_dict(self) -> dict[str, Any]:
        return {
            "conditionId": str(self.condition_id),
            "conditionNumber": self.condition_number,
            "sequenceOrder": self.sequence_order,
            "triggerAction": self.trigger_action,
            "outcome": self.outcome,
            "triggerId": str(self.trigger_id) if self.trigger_id else None,
            "error": self.error,
            "errorKind": self.error_kind,
        }


@dataclass
class EvaluationResult:
    success: bool
    message: str
    conditions: list[ConditionOutcome] = field(default_factory=list)

    @property
    def completed_count(self) -> int:
        return len(self.conditions)

    @property
    def failed_count(self) -> int:
        return sum(1 for outcome in self.conditions if outcome.failed)

    @property
    def trigger_ids(self) -> list[UUID]:
        return [outcome.trigger_id for outcome in self.conditions if outcome.trigger_id is not None]


class ConditionEvaluator:
    """Walks a campaign's catalog in sequence order and fires newly satisfied conditions.

    Gating reads the status snapshot taken when the evaluation starts, so a
    single event advances a recipient past at most one required gate.
    """

    def __init__(
        self,
        session_factory: SessionFactory,
        *,
        catalog_cache: ConditionCatalogCache[Catalog],
        dispatcher: TriggerActionDispatcher,
    ) -> None:
        self._campaigns = CampaignRepository(session_factory)
        self._catalog = ConditionCatalogRepository(session_factory)
        self._statuses = ConditionStatusRepository(session_factory)
        self._cache = catalog_cache
        self._dispatcher = dispatcher

    async def evaluate(
        self,
        *,
        recipient_id: UUID,
        campaign_id: UUID,
        event_type: ConditionType | None = None,
        metadata: Mapping[str, Any] | None = None,
    ) -> EvaluationResult:
        event_label = event_type.value if event_type is not None else "any"
        event_metadata = dict(metadata or {})

        with tracer.start_as_current_span("conditions.evaluate") as span:
            span.set_attribute("rewardflow.campaign_id", str(campaign_id))
            span.set_attribute("rewardflow.event_type", event_label)

            await self._ensure_membership(recipient_id, campaign_id)
            catalog = await self._cache.get_or_load(campaign_id, self._catalog.load_catalog)
            if not catalog:
                get_condition_store().record_evaluation(event_label, matched=0)
                return EvaluationResult(success=True, message=NO_CONDITIONS_MESSAGE)

            completed = await self._completed_ids(recipient_id, campaign_id)

            outcomes: list[ConditionOutcome] = []
            for index, condition in enumerate(catalog):
                if condition.id in completed:
                    continue
                if event_type is not None and condition.condition_type != event_type:
                    continue
                if _is_gated(catalog, index, completed):
                    logger.debug(
                        "Required condition gated by earlier required conditions",
                        condition_id=str(condition.id),
                        sequence_order=condition.sequence_order,
                    )
                    continue

                transitioned = await self._statuses.mark_completed(
                    recipient_id=recipient_id,
                    campaign_id=campaign_id,
                    condition=condition,
                    metadata=event_metadata,
                )
                if not transitioned:
                    # A concurrent delivery of the same event already completed it.
                    logger.info(
                        "Condition already completed; skipping dispatch",
                        recipient_id=str(recipient_id),
                        condition_id=str(condition.id),
                    )
                    continue

                get_condition_store().record_condition_completed(condition.condition_type.value)
                outcomes.append(await self._dispatch(recipient_id, campaign_id, condition, event_metadata))

            get_condition_store().record_evaluation(event_label, matched=len(outcomes))
            result = EvaluationResult(
                success=True,
                message=_summarize(outcomes),
                conditions=outcomes,
            )
            span.set_attribute("rewardflow.completed_count", result.completed_count)
            span.set_attribute("rewardflow.failed_count", result.failed_count)

        logger.info(
            "Evaluated campaign conditions",
            recipient_id=str(recipient_id),
            campaign_id=str(campaign_id),
            event_type=event_label,
            completed_count=result.completed_count,
            failed_count=result.failed_count,
        )
        return result

    async def complete_condition(
        self,
        *,
        recipient_id: UUID,
        campaign_id: UUID,
        condition_number: int,
        metadata: Mapping[str, Any] | None = None,
    ) -> EvaluationResult:
        """Complete one condition by number, e.g. when a call center agent marks it met.

        Follows the same gating, completion and dispatch path as :meth:`evaluate`
        but targets a single condition regardless of its type. Raises
        ``ConditionNotFound`` for an unknown or inactive number and
        ``ConditionNotEligible`` when the condition is gated or already completed.
        """

        event_metadata = dict(metadata or {})
        with tracer.start_as_current_span("conditions.complete") as span:
            span.set_attribute("rewardflow.campaign_id", str(campaign_id))
            span.set_attribute("rewardflow.condition_number", condition_number)

            await self._ensure_membership(recipient_id, campaign_id)
            catalog = await self._cache.get_or_load(campaign_id, self._catalog.load_catalog)
            index = next(
                (position for position, item in enumerate(catalog) if item.condition_number == condition_number),
                None,
            )
            if index is None:
                raise ConditionNotFound(campaign_id, condition_number)
            condition = catalog[index]

            completed = await self._completed_ids(recipient_id, campaign_id)
            if condition.id in completed:
                raise ConditionAlreadyCompleted(condition_number)
            if _is_gated(catalog, index, completed):
                raise ConditionNotEligible(condition_number, "earlier required conditions are not complete")

            transitioned = await self._statuses.mark_completed(
                recipient_id=recipient_id,
                campaign_id=campaign_id,
                condition=condition,
                metadata=event_metadata,
            )
            if not transitioned:
                raise ConditionAlreadyCompleted(condition_number)

            get_condition_store().record_condition_completed(condition.condition_type.value)
            outcome = await self._dispatch(recipient_id, campaign_id, condition, event_metadata)
            get_condition_store().record_evaluation("complete_condition", matched=1)

        logger.info(
            "Completed condition on request",
            recipient_id=str(recipient_id),
            campaign_id=str(campaign_id),
            condition_number=condition_number,
            agent_id=event_metadata.get("agentId"),
            outcome=outcome.outcome,
        )
        return EvaluationResult(success=True, message=_summarize([outcome]), conditions=[outcome])

    async def _completed_ids(self, recipient_id: UUID, campaign_id: UUID) -> set[UUID]:
        statuses = await self._statuses.load_statuses(recipient_id, campaign_id)
        return {condition_id for condition_id, status in statuses.items() if status == ConditionStatus.COMPLETED}

    async def _ensure_membership(self, recipient_id: UUID, campaign_id: UUID) -> None:
        campaign = await self._campaigns.get_campaign(campaign_id)
        if campaign is None:
            raise CampaignNotFound(campaign_id)
        recipient = await self._campaigns.get_recipient(recipient_id)
        if recipient is None or recipient.campaign_id != campaign_id:
            raise RecipientNotFound(recipient_id, campaign_id)

    async def _dispatch(
        self,
        recipient_id: UUID,
        campaign_id: UUID,
        condition: ConditionDescriptor,
        metadata: Mapping[str, Any],
    ) -> ConditionOutcome:
        outcome = ConditionOutcome(
            condition_id=condition.id,
            condition_number=condition.condition_number,
            sequence_order=condition.sequence_order,
            trigger_action=condition.trigger_action.value,
            outcome="dispatched",
        )
        try:
            outcome.trigger_id = await self._dispatcher.dispatch(
                recipient_id=recipient_id,
                campaign_id=campaign_id,
                condition=condition,
                metadata=metadata,
            )
        except Exception as exc:
            # The failure is already on the trigger row; the status stays completed.
            outcome.outcome = "failed"
            outcome.trigger_id = exc.trigger_id if isinstance(exc, ConditionEngineError) else None
            outcome.error = str(exc)
            outcome.error_kind = error_kind(exc)
        return outcome


def _is_gated(catalog: Catalog, index: int, completed: set[UUID]) -> bool:
    # Only required conditions gate; an incomplete optional one never blocks later steps.
    condition = catalog[index]
    if not condition.is_required or condition.sequence_order <= 1:
        return False
    return not all(previous.id in completed for previous in catalog[:index] if previous.is_required)


def _summarize(outcomes: list[ConditionOutcome]) -> str:
    if not outcomes:
        return "No conditions newly satisfied"
    failed = sum(1 for outcome in outcomes if outcome.failed)
    if failed:
        return f"Completed {len(outcomes)} condition(s); {failed} trigger action(s) failed"
    return f"Completed {len(outcomes)} condition(s)"


__all__ = ["ConditionEvaluator", "ConditionOutcome", "EvaluationResult", "NO_CONDITIONS_MESSAGE"]
