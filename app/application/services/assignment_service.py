from __future__ import annotations

import logging
import threading
from datetime import datetime
from decimal import Decimal, InvalidOperation
from typing import Any, List, Optional

from ...domain.durations import add_duration, parse_unit
from ...domain.errors import ConflictError, NotFoundError, ValidationError
from ...domain.models import (
    AuditEntry,
    PaymentStatus,
    Subscription,
    SubscriptionDraft,
    SubscriptionStatus,
    Variant,
)
from ...domain.models.audit import make_entry
from ...domain.ports.persistence import SubscriptionRepository, Supersession
from .access_service import AccessService
from .subscription_update_service import Clock, utc_now

logger = logging.getLogger(__name__)

DEFAULT_HISTORICAL_ARTICLE_LIMIT = 5


def build_variant(duration_label: str, duration_value: Any, duration_unit: Any, price: Any) -> Variant:
    """Validate a catalog variant and freeze it into a snapshot."""
    unit = parse_unit(duration_unit)
    if unit is None:
        raise ValidationError(f"Unknown duration unit {duration_unit!r}.")
    if isinstance(duration_value, bool) or not isinstance(duration_value, int):
        raise ValidationError("Duration value must be an integer.")
    if duration_value < 0:
        raise ValidationError("Duration value must not be negative.")
    try:
        amount = Decimal(str(price))
    except (InvalidOperation, TypeError) as exc:
        raise ValidationError(f"Invalid price {price!r}.") from exc
    if not amount.is_finite() or amount < 0:
        raise ValidationError("Price must not be negative.")
    label = (duration_label or "").strip() or f"{duration_value} {unit.value}"
    return Variant(duration_label=label, duration_value=duration_value, duration_unit=unit, price=amount)


class AssignmentService:
    """Creates subscriptions from a variant and maintains the renewal chain."""

    def __init__(self, repository: SubscriptionRepository, *, clock: Clock = utc_now) -> None:
        self._repository = repository
        self._clock = clock
        self._access = AccessService(repository)
        self._lock = threading.Lock()

    def create_subscription(
        self,
        user_id: int,
        product_id: str,
        variant: Variant,
        start_moment: datetime,
        *,
        payment_status: PaymentStatus = PaymentStatus.COMPLETED,
        payment_id: Optional[str] = None,
        transaction_id: Optional[str] = None,
        actor: str = "system",
    ) -> Subscription:
        with self._lock:
            return self._create_locked(
                user_id,
                product_id,
                variant,
                start_moment,
                payment_status=payment_status,
                payment_id=payment_id,
                transaction_id=transaction_id,
                actor=actor,
            )

    def _create_locked(
        self,
        user_id: int,
        product_id: str,
        variant: Variant,
        start_moment: datetime,
        *,
        payment_status: PaymentStatus,
        payment_id: Optional[str],
        transaction_id: Optional[str],
        actor: str,
    ) -> Subscription:
        clean_product = (product_id or "").strip()
        if not clean_product:
            raise ValidationError("Product id is required.")
        end_date = add_duration(start_moment, variant.duration_value, variant.duration_unit)
        if end_date <= start_moment:
            raise ValidationError("Variant duration must produce an end date after the start date.")

        now = self._clock()
        previous = self._repository.get_latest_subscriptions(user_id, clean_product)
        supersede = [
            Supersession(
                subscription_id=item.id,
                entry=make_entry("is_latest", True, False, now, actor),
            )
            for item in previous
        ]
        draft = SubscriptionDraft(
            user_id=user_id,
            product_id=clean_product,
            variant=variant,
            start_date=start_moment,
            end_date=end_date,
            status=SubscriptionStatus.ACTIVE,
            payment_status=payment_status,
            historical_article_limit=DEFAULT_HISTORICAL_ARTICLE_LIMIT,
            is_latest=True,
            replaced_subscription_id=previous[0].id if previous else None,
            payment_id=payment_id,
            transaction_id=transaction_id,
        )
        changes: List[AuditEntry] = [
            make_entry("created", None, SubscriptionStatus.ACTIVE, now, actor),
        ]
        subscription = self._repository.create_subscription(draft, changes, supersede)

        logger.info(
            "Subscription %s created for user %s product %s (%s %s, payment %s)%s",
            subscription.id,
            user_id,
            clean_product,
            variant.duration_value,
            variant.duration_unit.value,
            payment_status.value,
            f", supersedes {', '.join(str(item.id) for item in previous)}" if previous else "",
        )
        return subscription

    def assign(
        self,
        user_id: int,
        product_id: str,
        variant: Variant,
        actor: str,
        *,
        start_moment: Optional[datetime] = None,
    ) -> Subscription:
        """Manual assignment by an operator: always a completed payment."""
        moment = start_moment or self._clock()
        manual_id = f"MANUAL_ADMIN_{int(moment.timestamp() * 1000)}_{str(user_id)[-4:]}"
        return self.create_subscription(
            user_id,
            product_id,
            variant,
            moment,
            payment_status=PaymentStatus.COMPLETED,
            payment_id=manual_id,
            actor=actor,
        )

    def complete_checkout(
        self,
        user_id: int,
        product_id: str,
        variant: Variant,
        payment_status: PaymentStatus,
        *,
        payment_id: Optional[str] = None,
        transaction_id: Optional[str] = None,
        actor: str = "system:checkout",
    ) -> Subscription:
        """Record the outcome of a checkout; refuses when the product is already held."""
        with self._lock:
            now = self._clock()
            access = self._access.check_access(user_id, product_id, now)
            if access.has_access:
                raise ConflictError(
                    f"User {user_id} already has access to product {product_id} "
                    f"until {access.subscription.end_date.isoformat()}."
                )
            return self._create_locked(
                user_id,
                product_id,
                variant,
                now,
                payment_status=payment_status,
                payment_id=payment_id,
                transaction_id=transaction_id,
                actor=actor,
            )

    def renew(
        self,
        subscription_id: int,
        variant: Variant,
        actor: str,
        *,
        payment_id: Optional[str] = None,
        transaction_id: Optional[str] = None,
    ) -> Subscription:
        """Start a new subscription where the current one ends, or now if it already lapsed."""
        subscription = self._repository.get_subscription(subscription_id)
        if subscription is None:
            raise NotFoundError(f"Subscription {subscription_id} not found.")
        now = self._clock()
        start = subscription.end_date if subscription.end_date and subscription.end_date > now else now
        return self.create_subscription(
            subscription.user_id,
            subscription.product_id,
            variant,
            start,
            payment_status=PaymentStatus.COMPLETED,
            payment_id=payment_id,
            transaction_id=transaction_id,
            actor=actor,
        )
