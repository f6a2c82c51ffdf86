"""Per-process wiring of the condition engine collaborators."""

from __future__ import annotations

from dataclasses import dataclass

import httpx

from rewardflow_api.core.settings import Settings, get_settings
from rewardflow_api.services.conditions.catalog_cache import Clock, ConditionCatalogCache
from rewardflow_api.services.conditions.claims import GiftCardClaimService
from rewardflow_api.services.conditions.diagnostics import ConditionDiagnosticsService
from rewardflow_api.services.conditions.dispatcher import TriggerActionDispatcher
from rewardflow_api.services.conditions.evaluator import Catalog, ConditionEvaluator
from rewardflow_api.services.conditions.deliveries import GiftCardDeliveryRepository
from rewardflow_api.services.conditions.repositories import SessionFactory
from rewardflow_api.services.notifications import RewardNotifier


@dataclass
class ConditionEngine:
    catalog_cache: ConditionCatalogCache[Catalog]
    claims: GiftCardClaimService
    deliveries: GiftCardDeliveryRepository
    dispatcher: TriggerActionDispatcher
    evaluator: ConditionEvaluator
    diagnostics: ConditionDiagnosticsService


def build_condition_engine(
    session_factory: SessionFactory,
    *,
    settings: Settings | None = None,
    notifier: RewardNotifier | None = None,
    http_client: httpx.AsyncClient | None = None,
    clock: Clock | None = None,
) -> ConditionEngine:
    """Build one engine per process; the catalog cache lives as long as the engine."""

    settings = settings or get_settings()
    catalog_cache: ConditionCatalogCache[Catalog] = ConditionCatalogCache(
        ttl_seconds=settings.condition_catalog_cache_ttl_seconds,
        max_entries=settings.condition_catalog_cache_max_entries,
        clock=clock,
    )
    claims = GiftCardClaimService(session_factory, max_attempts=settings.gift_card_claim_max_attempts)
    dispatcher = TriggerActionDispatcher(
        session_factory,
        claim_service=claims,
        notifier=notifier or RewardNotifier(settings=settings),
        http_client=http_client,
        settings=settings,
    )
    return ConditionEngine(
        catalog_cache=catalog_cache,
        claims=claims,
        deliveries=GiftCardDeliveryRepository(session_factory),
        dispatcher=dispatcher,
        evaluator=ConditionEvaluator(session_factory, catalog_cache=catalog_cache, dispatcher=dispatcher),
        diagnostics=ConditionDiagnosticsService(
            session_factory,
            claim_service=claims,
            recent_failure_limit=settings.diagnostics_recent_failure_limit,
        ),
    )


__all__ = ["ConditionEngine", "build_condition_engine"]
