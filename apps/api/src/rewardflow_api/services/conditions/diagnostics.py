"""Campaign health view: recent trigger failures, pool inventory and configuration gaps."""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Any
from uuid import UUID

from rewardflow_api.models.campaign import TriggerAction
from rewardflow_api.services.conditions.claims import GiftCardClaimService, PoolInventory
from rewardflow_api.services.conditions.errors import (
    CampaignNotFound,
    MissingRewardPool,
    MissingWebhookUrl,
    NoAvailableInventory,
    RecipientMissingChannel,
    remediation_for,
)
from rewardflow_api.services.conditions.repositories import (
    CampaignRepository,
    ConditionCatalogRepository,
    SessionFactory,
    TriggerLogRepository,
)


@dataclass
class ConfigurationGap:
    code: str
    message: str
    severity: str
    condition_id: UUID | None = None
    condition_number: int | None = None
    pool_id: UUID | None = None
    remediation: str | None = None

    def as_dict(self) -> dict[str, Any]:
        return {
            "code": self.code,
            "message": self.message,
            "severity": self.severity,
            "conditionId": str(self.condition_id) if self.condition_id else None,
            "conditionNumber": self.condition_number,
            "poolId": str(self.pool_id) if self.pool_id else None,
            "remediation": self.remediation,
        }


@dataclass
class CampaignDiagnostics:
    campaign_id: UUID
    campaign_name: str
    generated_at: datetime
    active_conditions: int
    recent_failures: list[dict[str, Any]] = field(default_factory=list)
    inventory: list[PoolInventory] = field(default_factory=list)
    configuration_gaps: list[ConfigurationGap] = field(default_factory=list)

    @property
    def healthy(self) -> bool:
        return not self.recent_failures and not any(gap.severity == "error" for gap in self.configuration_gaps)

    @property
    def remediation(self) -> list[str]:
        steps: list[str] = []
        for gap in self.configuration_gaps:
            if gap.remediation and gap.remediation not in steps:
                steps.append(gap.remediation)
        for failure in self.recent_failures:
            hint = failure.get("remediation")
            if hint and hint not in steps:
                steps.append(hint)
        return steps

    def as_dict(self) -> dict[str, Any]:
        return {
            "campaignId": str(self.campaign_id),
            "campaignName": self.campaign_name,
            "generatedAt": self.generated_at.isoformat(),
            "healthy": self.healthy,
            "activeConditions": self.active_conditions,
            "recentFailures": list(self.recent_failures),
            "inventory": [
                {
                    "poolId": str(pool.pool_id),
                    "name": pool.name,
                    "brandName": pool.brand_name,
                    "cardValue": str(pool.card_value),
                    "available": pool.available,
                    "assigned": pool.assigned,
                    "total": pool.total,
                }
                for pool in self.inventory
            ],
            "configurationGaps": [gap.as_dict() for gap in self.configuration_gaps],
            "remediation": self.remediation,
        }


_CHANNEL_BY_ACTION = {
    TriggerAction.SEND_SMS: "phone",
    TriggerAction.SEND_GIFT_CARD: "phone",
    TriggerAction.SEND_EMAIL: "email",
}


class ConditionDiagnosticsService:
    def __init__(
        self,
        session_factory: SessionFactory,
        *,
        claim_service: GiftCardClaimService | None = None,
        recent_failure_limit: int = 25,
    ) -> None:
        self._campaigns = CampaignRepository(session_factory)
        self._catalog = ConditionCatalogRepository(session_factory)
        self._triggers = TriggerLogRepository(session_factory)
        self._claims = claim_service or GiftCardClaimService(session_factory)
        self._recent_failure_limit = recent_failure_limit

    async def diagnose(self, campaign_id: UUID) -> CampaignDiagnostics:
        """Build the health view from a fresh catalog read, bypassing the cache."""

        campaign = await self._campaigns.get_campaign(campaign_id)
        if campaign is None:
            raise CampaignNotFound(campaign_id)

        catalog = await self._catalog.load_catalog(campaign_id)
        gaps: list[ConfigurationGap] = []
        pool_ids: list[UUID] = []
        needs_crm = False
        channels: dict[str, list[int]] = {}
        for condition in catalog:
            uses_pool = condition.trigger_action == TriggerAction.SEND_GIFT_CARD or (
                condition.trigger_action == TriggerAction.SEND_EMAIL and condition.gift_card_pool_id is not None
            )
            if condition.trigger_action == TriggerAction.SEND_GIFT_CARD and condition.gift_card_pool_id is None:
                gaps.append(
                    ConfigurationGap(
                        code="missing_reward_pool",
                        message=f"Condition {condition.condition_number} sends a gift card but has no pool",
                        severity="error",
                        condition_id=condition.id,
                        condition_number=condition.condition_number,
                        remediation=MissingRewardPool.remediation,
                    )
                )
            elif uses_pool and condition.gift_card_pool_id not in pool_ids:
                pool_ids.append(condition.gift_card_pool_id)
            if condition.trigger_action == TriggerAction.TRIGGER_WEBHOOK and not condition.webhook_url:
                gaps.append(
                    ConfigurationGap(
                        code="missing_webhook_url",
                        message=f"Condition {condition.condition_number} triggers a webhook but has no URL",
                        severity="error",
                        condition_id=condition.id,
                        condition_number=condition.condition_number,
                        remediation=MissingWebhookUrl.remediation,
                    )
                )
            if condition.trigger_action == TriggerAction.UPDATE_CRM:
                needs_crm = True
            channel = _CHANNEL_BY_ACTION.get(condition.trigger_action)
            if channel is not None:
                channels.setdefault(channel, []).append(condition.condition_number)

        if needs_crm and await self._campaigns.get_active_crm_integration(campaign_id) is None:
            gaps.append(
                ConfigurationGap(
                    code="no_active_crm_integration",
                    message="CRM update conditions will be skipped until an integration is activated",
                    severity="info",
                )
            )

        for channel, condition_numbers in channels.items():
            missing = await self._campaigns.count_recipients_missing(campaign_id, channel)
            if missing:
                label = "phone number" if channel == "phone" else channel
                gaps.append(
                    ConfigurationGap(
                        code=f"recipients_missing_{channel}",
                        message=(
                            f"{missing} recipient(s) have no {label}; conditions "
                            f"{', '.join(str(number) for number in condition_numbers)} will fail for them"
                        ),
                        severity="warning",
                        remediation=RecipientMissingChannel.remediation,
                    )
                )

        inventory = await self._claims.inventory(pool_ids)
        known_pools = {pool.pool_id for pool in inventory}
        for pool_id in pool_ids:
            if pool_id not in known_pools:
                gaps.append(
                    ConfigurationGap(
                        code="unknown_reward_pool",
                        message=f"Gift card pool {pool_id} does not exist",
                        severity="error",
                        pool_id=pool_id,
                        remediation=MissingRewardPool.remediation,
                    )
                )
        for pool in inventory:
            if pool.available == 0:
                gaps.append(
                    ConfigurationGap(
                        code="pool_exhausted",
                        message=f"Gift card pool '{pool.name}' has no available cards",
                        severity="error",
                        pool_id=pool.pool_id,
                        remediation=NoAvailableInventory.remediation,
                    )
                )

        failures = await self._triggers.list_recent_failures(campaign_id, limit=self._recent_failure_limit)
        recent_failures = [
            {
                "triggerId": str(trigger.id),
                "recipientId": str(trigger.recipient_id),
                "conditionId": str(trigger.condition_id),
                "conditionNumber": trigger.condition_number,
                "triggerAction": getattr(trigger.trigger_action, "value", trigger.trigger_action),
                "errorKind": trigger.error_kind,
                "errorMessage": trigger.error_message,
                "createdAt": trigger.created_at.isoformat() if trigger.created_at else None,
                "remediation": remediation_for(trigger.error_kind),
            }
            for trigger in failures
        ]

        return CampaignDiagnostics(
            campaign_id=campaign.id,
            campaign_name=campaign.name,
            generated_at=datetime.now(timezone.utc),
            active_conditions=len(catalog),
            recent_failures=recent_failures,
            inventory=inventory,
            configuration_gaps=gaps,
        )


__all__ = ["CampaignDiagnostics", "ConditionDiagnosticsService", "ConfigurationGap"]
