"""Domain models for the subscription engine."""

from .audit import AdminNote, AuditEntry, AuditLedger
from .subscription import (
    DurationUnit,
    PaymentStatus,
    Subscription,
    SubscriptionDraft,
    SubscriptionStatus,
    Variant,
)
from .user import User

__all__ = [
    "AdminNote",
    "AuditEntry",
    "AuditLedger",
    "DurationUnit",
    "PaymentStatus",
    "Subscription",
    "SubscriptionDraft",
    "SubscriptionStatus",
    "User",
    "Variant",
]
