from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime
from typing import Optional

from ...domain.models import PaymentStatus, Subscription, SubscriptionStatus
from ...domain.ports.persistence import SubscriptionRepository
from ...domain.status import compute_status

GRANTING_STATUSES = (SubscriptionStatus.ACTIVE, SubscriptionStatus.EXPIRESOON)


@dataclass(slots=True)
class AccessCheck:
    has_access: bool
    is_active: bool
    real_time_status: Optional[SubscriptionStatus]
    subscription: Optional[Subscription]


class AccessService:
    """Answers whether a user currently holds a product, for cart and checkout validation."""

    def __init__(self, repository: SubscriptionRepository) -> None:
        self._repository = repository

    def check_access(self, user_id: int, product_id: str, now: datetime) -> AccessCheck:
        latest = [
            item
            for item in self._repository.get_latest_subscriptions(user_id, product_id)
            if item.payment_status == PaymentStatus.COMPLETED
        ]
        if not latest:
            return AccessCheck(has_access=False, is_active=False, real_time_status=None, subscription=None)

        subscription = latest[0]
        snapshot = compute_status(subscription, now)
        return AccessCheck(
            has_access=snapshot.real_time_status in GRANTING_STATUSES,
            is_active=snapshot.is_active,
            real_time_status=snapshot.real_time_status,
            subscription=subscription,
        )
