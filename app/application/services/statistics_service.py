from __future__ import annotations

from dataclasses import asdict, dataclass
from datetime import datetime
from decimal import Decimal
from typing import Any, Dict, Iterable

from ...domain.models import PaymentStatus, Subscription, SubscriptionStatus
from ...domain.ports.persistence import SubscriptionQuery, SubscriptionRepository
from ...domain.status import classify


@dataclass(slots=True)
class SubscriptionStats:
    total: int = 0
    active: int = 0
    expired: int = 0
    expiresoon: int = 0
    total_revenue: Decimal = Decimal("0")
    pending_payments: int = 0
    failed_payments: int = 0
    refunded_payments: int = 0
    needs_status_update: int = 0

    def to_dict(self) -> Dict[str, Any]:
        data = asdict(self)
        data["total_revenue"] = str(self.total_revenue)
        return data


def summarize(subscriptions: Iterable[Subscription], now: datetime) -> SubscriptionStats:
    """Roll subscriptions up with the same classifier used for per-record display."""
    stats = SubscriptionStats()
    for subscription in subscriptions:
        stats.total += 1
        real_time_status, _ = classify(
            subscription.payment_status,
            subscription.status,
            subscription.end_date,
            now,
        )
        if real_time_status != subscription.status:
            stats.needs_status_update += 1

        if subscription.payment_status == PaymentStatus.COMPLETED:
            stats.total_revenue += subscription.variant.price
            if real_time_status == SubscriptionStatus.ACTIVE:
                stats.active += 1
            elif real_time_status == SubscriptionStatus.EXPIRESOON:
                stats.expiresoon += 1
            else:
                stats.expired += 1
        elif subscription.payment_status == PaymentStatus.PENDING:
            stats.pending_payments += 1
        elif subscription.payment_status == PaymentStatus.FAILED:
            stats.failed_payments += 1
        elif subscription.payment_status == PaymentStatus.REFUNDED:
            stats.refunded_payments += 1
    return stats


class StatisticsService:
    """Per-user subscription rollups."""

    def __init__(self, repository: SubscriptionRepository) -> None:
        self._repository = repository

    def compute_stats(self, user_id: int, now: datetime) -> SubscriptionStats:
        return summarize(self._repository.list_subscriptions(SubscriptionQuery(user_id=user_id)), now)
