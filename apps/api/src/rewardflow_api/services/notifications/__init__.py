"""Notification service package."""

from .backend import (
    EmailBackend,
    EmailDeliveryError,
    InMemoryEmailBackend,
    InMemorySMSBackend,
    NotificationBackendError,
    SMSBackend,
    SMSDeliveryError,
    SMTPEmailBackend,
    TwilioSMSBackend,
)
from .service import GiftCardNotification, NotificationEvent, RewardNotifier

__all__ = [
    "EmailBackend",
    "EmailDeliveryError",
    "GiftCardNotification",
    "InMemoryEmailBackend",
    "InMemorySMSBackend",
    "NotificationBackendError",
    "NotificationEvent",
    "RewardNotifier",
    "SMSBackend",
    "SMSDeliveryError",
    "SMTPEmailBackend",
    "TwilioSMSBackend",
]
