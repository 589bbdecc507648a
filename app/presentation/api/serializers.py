from __future__ import annotations

from datetime import datetime
from typing import Any, Dict, Optional

from ...domain.models import AuditLedger, Subscription, User
from ...domain.status import StatusSnapshot, compute_status


def _iso(value: Optional[datetime]) -> Optional[str]:
    return value.isoformat() if value else None


def serialize_subscription(
    subscription: Subscription,
    now: datetime,
    snapshot: Optional[StatusSnapshot] = None,
) -> Dict[str, Any]:
    """Render a subscription with its real-time status; ``stored_status`` is what the database holds."""
    snapshot = snapshot or compute_status(subscription, now)
    return {
        "id": subscription.id,
        "user_id": subscription.user_id,
        "product_id": subscription.product_id,
        "variant": subscription.variant.to_dict(),
        "start_date": _iso(subscription.start_date),
        "end_date": _iso(subscription.end_date),
        "status": snapshot.real_time_status.value,
        "stored_status": subscription.status.value,
        "payment_status": subscription.payment_status.value,
        "is_active": snapshot.is_active,
        "is_expiring_soon": snapshot.is_expiring_soon,
        "days_remaining": snapshot.days_remaining,
        "needs_status_update": snapshot.needs_status_update,
        "is_latest": subscription.is_latest,
        "replaced_subscription_id": subscription.replaced_subscription_id,
        "historical_article_limit": subscription.historical_article_limit,
        "payment_id": subscription.payment_id,
        "transaction_id": subscription.transaction_id,
        "last_status_check": _iso(subscription.last_status_check),
        "version": subscription.version,
        "created_at": _iso(subscription.created_at),
        "updated_at": _iso(subscription.updated_at),
        "metadata": subscription.metadata.to_dict(),
    }


def serialize_ledger(subscription_id: int, ledger: AuditLedger) -> Dict[str, Any]:
    data = ledger.to_dict()
    data["subscription_id"] = subscription_id
    return data


def serialize_user(user: User) -> Dict[str, Any]:
    return {
        "id": user.id,
        "email": user.email,
        "is_active": user.is_active,
        "created_at": user.created_at.replace(microsecond=0).isoformat(),
        "updated_at": user.updated_at.replace(microsecond=0).isoformat(),
    }
