"""Error taxonomy for condition evaluation and trigger dispatch.

Every engine error carries a ``kind`` so the trigger audit trail, logs and the
diagnostics view can tell an empty gift card pool apart from a misconfigured
condition or a flaky SMS gateway.
"""

from __future__ import annotations

from uuid import UUID


class ConditionEngineError(Exception):
    kind = "unexpected"
    remediation: str | None = None
    # Set by the dispatcher once the failure is recorded on a trigger row.
    trigger_id: UUID | None = None


class TriggerConfigurationError(ConditionEngineError):
    kind = "configuration"
    remediation = "Update the condition configuration; the trigger will not be retried automatically."


class MissingRewardPool(TriggerConfigurationError):
    def __init__(self, condition_id: UUID) -> None:
        super().__init__("No gift card pool configured")
        self.condition_id = condition_id


class MissingWebhookUrl(TriggerConfigurationError):
    def __init__(self, condition_id: UUID) -> None:
        super().__init__("No webhook URL configured")
        self.condition_id = condition_id


class RecipientMissingChannel(TriggerConfigurationError):
    remediation = "Add the missing contact detail to the recipient record."

    def __init__(self, recipient_id: UUID, channel: str) -> None:
        label = "phone number" if channel == "phone" else channel
        super().__init__(f"Recipient has no {label}")
        self.recipient_id = recipient_id
        self.channel = channel


class NoAvailableInventory(ConditionEngineError):
    kind = "inventory"
    remediation = "Restock the gift card pool or configure an external purchasing fallback."

    def __init__(self, pool_id: UUID) -> None:
        super().__init__(f"No available gift cards in pool {pool_id}")
        self.pool_id = pool_id


class TransientTriggerError(ConditionEngineError):
    kind = "transient"
    remediation = "Provider failure; redelivering the event is safe."


class NotificationDeliveryError(TransientTriggerError):
    def __init__(self, channel: str, detail: str) -> None:
        super().__init__(f"{channel} delivery failed: {detail}")
        self.channel = channel
        self.detail = detail


class GiftCardClaimContention(TransientTriggerError):
    def __init__(self, pool_id: UUID, attempts: int) -> None:
        super().__init__(f"Could not reserve a gift card in pool {pool_id} after {attempts} attempts")
        self.pool_id = pool_id
        self.attempts = attempts


class WebhookDeliveryError(TransientTriggerError):
    def __init__(self, url: str, detail: str, *, status_code: int | None = None) -> None:
        super().__init__(f"Webhook {url} failed: {detail}")
        self.url = url
        self.detail = detail
        self.status_code = status_code


class UnexpectedTriggerError(ConditionEngineError):
    """Wraps a non-engine exception raised inside a trigger action."""

    def __init__(self, detail: str) -> None:
        super().__init__(detail)
        self.detail = detail


class ConditionNotEligible(ConditionEngineError):
    kind = "not_eligible"

    def __init__(self, condition_number: int, reason: str) -> None:
        super().__init__(f"Condition {condition_number} cannot be completed: {reason}")
        self.condition_number = condition_number
        self.reason = reason


class ConditionAlreadyCompleted(ConditionNotEligible):
    def __init__(self, condition_number: int) -> None:
        super().__init__(condition_number, "already completed")


class DataIntegrityError(ConditionEngineError):
    kind = "data_integrity"
    remediation = "Check that the recipient belongs to the campaign and the condition catalog is well formed."


class CampaignNotFound(DataIntegrityError):
    def __init__(self, campaign_id: UUID) -> None:
        super().__init__(f"Campaign {campaign_id} not found")
        self.campaign_id = campaign_id


class RecipientNotFound(DataIntegrityError):
    def __init__(self, recipient_id: UUID, campaign_id: UUID | None = None) -> None:
        if campaign_id is None:
            message = f"Recipient {recipient_id} not found"
        else:
            message = f"Recipient {recipient_id} not found in campaign {campaign_id}"
        super().__init__(message)
        self.recipient_id = recipient_id
        self.campaign_id = campaign_id


class ConditionNotFound(DataIntegrityError):
    def __init__(self, campaign_id: UUID, condition_number: int) -> None:
        super().__init__(f"Condition {condition_number} not found in campaign {campaign_id}")
        self.campaign_id = campaign_id
        self.condition_number = condition_number


class MalformedCatalog(DataIntegrityError):
    def __init__(self, campaign_id: UUID, detail: str) -> None:
        super().__init__(f"Condition catalog for campaign {campaign_id} is malformed: {detail}")
        self.campaign_id = campaign_id
        self.detail = detail


def error_kind(exc: BaseException) -> str:
    """Classify any exception raised inside a trigger action."""
    if isinstance(exc, ConditionEngineError):
        return exc.kind
    return ConditionEngineError.kind


_REMEDIATION_BY_KIND = {
    TriggerConfigurationError.kind: TriggerConfigurationError.remediation,
    NoAvailableInventory.kind: NoAvailableInventory.remediation,
    TransientTriggerError.kind: TransientTriggerError.remediation,
    DataIntegrityError.kind: DataIntegrityError.remediation,
    ConditionEngineError.kind: "Unexpected failure; inspect the service logs for the trigger id.",
}


def remediation_for(kind: str | None) -> str:
    return _REMEDIATION_BY_KIND.get(kind or ConditionEngineError.kind, _REMEDIATION_BY_KIND[ConditionEngineError.kind])


__all__ = [
    "CampaignNotFound",
    "ConditionAlreadyCompleted",
    "ConditionEngineError",
    "ConditionNotEligible",
    "ConditionNotFound",
    "DataIntegrityError",
    "GiftCardClaimContention",
    "MalformedCatalog",
    "MissingRewardPool",
    "MissingWebhookUrl",
    "NoAvailableInventory",
    "NotificationDeliveryError",
    "RecipientMissingChannel",
    "RecipientNotFound",
    "TransientTriggerError",
    "TriggerConfigurationError",
    "UnexpectedTriggerError",
    "WebhookDeliveryError",
    "error_kind",
    "remediation_for",
]
