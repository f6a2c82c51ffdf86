from __future__ import annotations

from typing import Any, Literal
from uuid import UUID

from pydantic import BaseModel, ConfigDict, Field

from rewardflow_api.models.campaign import ConditionType
from rewardflow_api.models.gift_card import DeliveryStatus


def _to_camel(value: str) -> str:
    parts = value.split("_")
    return parts[0] + "".join(word.capitalize() for word in parts[1:])


class _CamelModel(BaseModel):
    model_config = ConfigDict(populate_by_name=True, alias_generator=_to_camel)


class _EventMetadata(BaseModel):
    """Known fields per event source; anything else passes through untouched."""

    model_config = ConfigDict(extra="allow", populate_by_name=True, alias_generator=_to_camel)

    source: str | None = Field(default=None, max_length=120)
    notes: str | None = Field(default=None, max_length=2000)


class MailDeliveredMetadata(_EventMetadata):
    tracking_number: str | None = Field(default=None, max_length=120)
    carrier: str | None = Field(default=None, max_length=120)


class MailCampaignSentMetadata(_EventMetadata):
    mail_batch_id: str | None = Field(default=None, max_length=120)


class CallCompletedMetadata(_EventMetadata):
    call_session_id: str | None = Field(default=None, max_length=120)
    agent_id: str | None = Field(default=None, max_length=120)
    disposition: str | None = Field(default=None, max_length=120)
    duration_seconds: int | None = Field(default=None, ge=0)


class QrScannedMetadata(_EventMetadata):
    qr_code: str | None = Field(default=None, max_length=255)
    user_agent: str | None = Field(default=None, max_length=512)


class PurlVisitedMetadata(_EventMetadata):
    landing_page_id: str | None = Field(default=None, max_length=120)
    url: str | None = Field(default=None, max_length=2048)


class FormSubmittedMetadata(_EventMetadata):
    form_id: str | None = Field(default=None, max_length=120)
    submission_id: str | None = Field(default=None, max_length=120)


class ManualMetadata(_EventMetadata):
    completed_by: str | None = Field(default=None, max_length=255)
    reason: str | None = Field(default=None, max_length=2000)


_METADATA_MODELS: dict[ConditionType, type[_EventMetadata]] = {
    ConditionType.MAIL_DELIVERED: MailDeliveredMetadata,
    ConditionType.MAIL_CAMPAIGN_SENT: MailCampaignSentMetadata,
    ConditionType.CALL_COMPLETED: CallCompletedMetadata,
    ConditionType.QR_SCANNED: QrScannedMetadata,
    ConditionType.PURL_VISITED: PurlVisitedMetadata,
    ConditionType.FORM_SUBMITTED: FormSubmittedMetadata,
    ConditionType.MANUAL: ManualMetadata,
}


def normalize_event_metadata(event_type: ConditionType | None, metadata: dict[str, Any] | None) -> dict[str, Any]:
    """Validate the known fields for ``event_type`` and return the metadata as sent.

    Keys keep the caller's spelling; the models only reject badly shaped values.
    Raises ``pydantic.ValidationError`` when a known field has the wrong shape.
    """

    if not metadata:
        return {}
    model = _METADATA_MODELS.get(event_type) if event_type is not None else _EventMetadata
    model.model_validate(metadata)
    return dict(metadata)


class EvaluateConditionsRequest(_CamelModel):
    recipient_id: UUID
    campaign_id: UUID
    event_type: ConditionType | None = None
    metadata: dict[str, Any] | None = None


class CompleteConditionRequest(_CamelModel):
    recipient_id: UUID
    campaign_id: UUID
    condition_number: int = Field(ge=1)
    call_session_id: str | None = Field(default=None, max_length=120)
    agent_id: str | None = Field(default=None, max_length=120)
    notes: str | None = Field(default=None, max_length=2000)
    metadata: dict[str, Any] | None = None

    def completion_metadata(self) -> dict[str, Any]:
        """Caller metadata plus agent attribution, stored on the status and trigger rows."""

        metadata = normalize_event_metadata(None, self.metadata)
        metadata.setdefault("source", "call_center")
        attribution = {
            "callSessionId": self.call_session_id,
            "agentId": self.agent_id,
            "notes": self.notes,
        }
        metadata.update({key: value for key, value in attribution.items() if value is not None})
        return metadata


class ConditionOutcomeResponse(_CamelModel):
    condition_id: UUID
    condition_number: int
    sequence_order: int
    trigger_action: str
    outcome: Literal["dispatched", "failed"]
    trigger_id: UUID | None = None
    error: str | None = None
    error_kind: str | None = None


class EvaluateConditionsResponse(_CamelModel):
    success: bool
    message: str
    conditions: list[ConditionOutcomeResponse] = Field(default_factory=list)
    completed_count: int = 0
    failed_count: int = 0


class EvaluationQueuedResponse(_CamelModel):
    status: Literal["queued"] = "queued"
    task_id: str


class DeliveryStatusUpdate(_CamelModel):
    status: DeliveryStatus
    provider_message_id: str | None = Field(default=None, max_length=255)
    error_message: str | None = Field(default=None, max_length=2000)


class DeliveryStatusResponse(_CamelModel):
    delivery_id: UUID
    status: DeliveryStatus
    provider_message_id: str | None = None
    error_message: str | None = None


class CatalogCacheInvalidationResponse(_CamelModel):
    campaign_id: UUID
    invalidated: bool


__all__ = [
    "CallCompletedMetadata",
    "CatalogCacheInvalidationResponse",
    "CompleteConditionRequest",
    "ConditionOutcomeResponse",
    "DeliveryStatusResponse",
    "DeliveryStatusUpdate",
    "EvaluateConditionsRequest",
    "EvaluateConditionsResponse",
    "EvaluationQueuedResponse",
    "FormSubmittedMetadata",
    "MailCampaignSentMetadata",
    "MailDeliveredMetadata",
    "ManualMetadata",
    "PurlVisitedMetadata",
    "QrScannedMetadata",
    "normalize_event_metadata",
]
