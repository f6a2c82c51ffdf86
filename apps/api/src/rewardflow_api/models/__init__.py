"""SQLAlchemy models package."""

# Import all models
from .campaign import (  # noqa: F401
    Campaign,
    CampaignCondition,
    ConditionType,
    CrmIntegration,
    Recipient,
    TriggerAction,
)
from .condition import (  # noqa: F401
    ConditionStatus,
    ConditionTrigger,
    ConditionTriggerStatus,
    RecipientConditionStatus,
)
from .gift_card import (  # noqa: F401
    DeliveryMethod,
    DeliveryStatus,
    GiftCard,
    GiftCardDelivery,
    GiftCardPool,
    GiftCardStatus,
    RecipientGiftCardAssignment,
)
from .messaging import SmsDeliveryLog, SmsDeliveryStatus  # noqa: F401
