"""Real-time status computation.

Pure functions only: nothing here touches storage or mutates the
subscription passed in, so listing and reading stay side-effect free.
"""

from __future__ import annotations

import math
from dataclasses import dataclass
from datetime import datetime, timezone
from typing import Optional, Tuple

from .models.subscription import PaymentStatus, Subscription, SubscriptionStatus

EXPIRING_SOON_THRESHOLD_DAYS = 10

_MS_PER_DAY = 86_400_000


@dataclass(frozen=True, slots=True)
class StatusSnapshot:
    real_time_status: SubscriptionStatus
    is_active: bool
    is_expiring_soon: bool
    days_remaining: int
    needs_status_update: bool


def _as_utc(moment: datetime) -> datetime:
    if moment.tzinfo is None:
        return moment.replace(tzinfo=timezone.utc)
    return moment


def classify(
    payment_status: PaymentStatus,
    stored_status: SubscriptionStatus,
    end_date: Optional[datetime],
    now: datetime,
) -> Tuple[SubscriptionStatus, int]:
    """Return ``(real_time_status, days_remaining)``.

    Shared by per-record display and aggregate statistics; both must agree.
    """
    if payment_status != PaymentStatus.COMPLETED:
        return stored_status, 0
    if not isinstance(end_date, datetime):
        return SubscriptionStatus.EXPIRED, 0

    remaining_ms = (_as_utc(end_date) - _as_utc(now)).total_seconds() * 1000
    if remaining_ms <= 0:
        return SubscriptionStatus.EXPIRED, 0

    days_remaining = math.ceil(remaining_ms / _MS_PER_DAY)
    if days_remaining <= EXPIRING_SOON_THRESHOLD_DAYS:
        return SubscriptionStatus.EXPIRESOON, days_remaining
    return SubscriptionStatus.ACTIVE, days_remaining


def compute_status(subscription: Subscription, now: datetime) -> StatusSnapshot:
    real_time_status, days_remaining = classify(
        subscription.payment_status,
        subscription.status,
        subscription.end_date,
        now,
    )
    completed = subscription.payment_status == PaymentStatus.COMPLETED
    # Expiring-soon subscriptions still grant access but are not reported as active.
    return StatusSnapshot(
        real_time_status=real_time_status,
        is_active=completed and real_time_status == SubscriptionStatus.ACTIVE,
        is_expiring_soon=completed and real_time_status == SubscriptionStatus.EXPIRESOON,
        days_remaining=days_remaining,
        needs_status_update=real_time_status != subscription.status,
    )
