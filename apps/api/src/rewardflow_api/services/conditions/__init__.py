"""Condition evaluation, trigger dispatch and reward claiming."""

from .errors import (
    CampaignNotFound,
    ConditionAlreadyCompleted,
    ConditionEngineError,
    ConditionNotEligible,
    ConditionNotFound,
    DataIntegrityError,
    MalformedCatalog,
    NoAvailableInventory,
    RecipientNotFound,
    TransientTriggerError,
    TriggerConfigurationError,
)
from .repositories import ConditionDescriptor, SessionFactory
from .catalog_cache import ConditionCatalogCache
from .claims import ClaimResult, GiftCardClaimService
from .deliveries import GiftCardDeliveryRepository
from .dispatcher import ActionOutcome, TriggerActionDispatcher
from .evaluator import ConditionEvaluator, ConditionOutcome, EvaluationResult
from .diagnostics import CampaignDiagnostics, ConditionDiagnosticsService
from .engine import ConditionEngine, build_condition_engine

__all__ = [
    "ActionOutcome",
    "CampaignDiagnostics",
    "CampaignNotFound",
    "ClaimResult",
    "ConditionAlreadyCompleted",
    "ConditionCatalogCache",
    "ConditionDescriptor",
    "ConditionDiagnosticsService",
    "ConditionEngine",
    "ConditionEngineError",
    "ConditionEvaluator",
    "ConditionNotEligible",
    "ConditionNotFound",
    "ConditionOutcome",
    "DataIntegrityError",
    "EvaluationResult",
    "GiftCardClaimService",
    "GiftCardDeliveryRepository",
    "MalformedCatalog",
    "NoAvailableInventory",
    "RecipientNotFound",
    "SessionFactory",
    "TransientTriggerError",
    "TriggerActionDispatcher",
    "TriggerConfigurationError",
    "build_condition_engine",
]
