"""Subscription domain model: a purchased plan with its lifecycle state."""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime
from decimal import Decimal
from enum import Enum
from typing import Any, Dict, Optional

from .audit import AuditLedger


class SubscriptionStatus(str, Enum):
    ACTIVE = "active"
    EXPIRESOON = "expiresoon"
    EXPIRED = "expired"


class PaymentStatus(str, Enum):
    PENDING = "pending"
    COMPLETED = "completed"
    FAILED = "failed"
    REFUNDED = "refunded"


class DurationUnit(str, Enum):
    MINUTES = "minutes"
    HOURS = "hours"
    DAYS = "days"
    WEEKS = "weeks"
    MONTHS = "months"
    YEARS = "years"


@dataclass(frozen=True, slots=True)
class Variant:
    """Snapshot of the purchased plan, copied from the catalog at assignment time."""

    duration_label: str
    duration_value: int
    duration_unit: DurationUnit
    price: Decimal

    def to_dict(self) -> Dict[str, Any]:
        return {
            "duration_label": self.duration_label,
            "duration_value": self.duration_value,
            "duration_unit": self.duration_unit.value,
            "price": str(self.price),
        }


@dataclass(slots=True)
class SubscriptionDraft:
    """Values for a subscription that has not been persisted yet."""

    user_id: int
    product_id: str
    variant: Variant
    start_date: datetime
    end_date: datetime
    status: SubscriptionStatus
    payment_status: PaymentStatus
    historical_article_limit: int
    is_latest: bool = True
    replaced_subscription_id: Optional[int] = None
    payment_id: Optional[str] = None
    transaction_id: Optional[str] = None


@dataclass(slots=True)
class Subscription:
    """
    Subscription entity.

    Attributes:
        id: Unique identifier
        user_id: Owner reference
        product_id: Catalog product reference
        variant: Immutable plan snapshot (duration and price)
        start_date: Start of coverage
        end_date: End of coverage; None when the stored value could not be parsed
        status: Last persisted status, may lag the real-time one
        payment_status: Result of the triggering payment
        is_latest: True for the current subscription of a renewal chain
        replaced_subscription_id: Prior subscription this one supersedes
        historical_article_limit: Number of pre-subscription articles accessible
        metadata: Append-only audit ledger
        version: Optimistic-concurrency token, bumped by every mutation
    """

    id: int
    user_id: int
    product_id: str
    variant: Variant
    start_date: datetime
    end_date: Optional[datetime]
    status: SubscriptionStatus
    payment_status: PaymentStatus
    is_latest: bool
    historical_article_limit: int
    created_at: datetime
    updated_at: datetime
    version: int = 1
    replaced_subscription_id: Optional[int] = None
    payment_id: Optional[str] = None
    transaction_id: Optional[str] = None
    last_status_check: Optional[datetime] = None
    metadata: AuditLedger = field(default_factory=AuditLedger)

    def __repr__(self) -> str:
        return (
            f"<Subscription id={self.id} user_id={self.user_id} "
            f"product_id={self.product_id} status={self.status.value}>"
        )
