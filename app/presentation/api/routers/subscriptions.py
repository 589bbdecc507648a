from __future__ import annotations

import math
from typing import Any, Dict, Optional

from fastapi import APIRouter, Depends, HTTPException, Query, status

from ....application.services.assignment_service import AssignmentService, build_variant
from ....application.services.reconciliation_service import ReconciliationService
from ....application.services.statistics_service import StatisticsService
from ....application.services.subscription_update_service import (
    SubscriptionPatch,
    SubscriptionUpdateService,
    parse_moment,
    utc_now,
)
from ....core.dependencies import (
    get_assignment_service,
    get_persistence_gateway,
    get_reconciliation_service,
    get_statistics_service,
    get_update_service,
)
from ....domain.models import PaymentStatus, SubscriptionStatus, User
from ....domain.ports.persistence import PersistenceGateway, SubscriptionQuery
from ...api.dependencies import require_admin_user
from ...api.errors import to_http_exception
from ...api.schemas.subscription import (
    ReconcilePayload,
    SubscriptionAssignPayload,
    SubscriptionPatchPayload,
    SubscriptionRenewPayload,
)
from ...api.serializers import serialize_ledger, serialize_subscription

router = APIRouter(prefix="/api/admin", tags=["Subscriptions"])


@router.get("/users/{user_id}/subscriptions")
def list_user_subscriptions(
    user_id: int,
    status_filter: Optional[SubscriptionStatus] = Query(default=None, alias="status"),
    payment_status: Optional[PaymentStatus] = Query(default=None),
    product_id: Optional[str] = Query(default=None, max_length=120),
    sort_by: str = Query(default="created_at"),
    sort_order: str = Query(default="desc", pattern="^(asc|desc)$"),
    page: int = Query(default=1, ge=1),
    limit: int = Query(default=10, ge=1, le=100),
    _: User = Depends(require_admin_user),
    persistence: PersistenceGateway = Depends(get_persistence_gateway),
    statistics: StatisticsService = Depends(get_statistics_service),
) -> Dict[str, Any]:
    now = utc_now()
    query = SubscriptionQuery(
        user_id=user_id,
        status=status_filter,
        payment_status=payment_status,
        product_id=product_id,
        sort_by=sort_by,
        sort_order=sort_order,
        limit=limit,
        offset=(page - 1) * limit,
    )
    try:
        subscriptions = persistence.list_subscriptions(query)
    except ValueError as exc:
        raise to_http_exception(exc) from exc
    total = persistence.count_subscriptions(query)
    stats = statistics.compute_stats(user_id, now)
    return {
        "items": [serialize_subscription(item, now) for item in subscriptions],
        "statistics": stats.to_dict(),
        "pagination": {
            "page": page,
            "limit": limit,
            "total": total,
            "pages": math.ceil(total / limit) if total else 0,
        },
    }


@router.get("/subscriptions/{subscription_id}")
def get_subscription(
    subscription_id: int,
    _: User = Depends(require_admin_user),
    service: SubscriptionUpdateService = Depends(get_update_service),
) -> Dict[str, Any]:
    try:
        subscription = service.get(subscription_id)
    except ValueError as exc:
        raise to_http_exception(exc) from exc
    return serialize_subscription(subscription, utc_now())


@router.patch("/subscriptions/{subscription_id}")
def update_subscription(
    subscription_id: int,
    payload: SubscriptionPatchPayload,
    current_user: User = Depends(require_admin_user),
    service: SubscriptionUpdateService = Depends(get_update_service),
) -> Dict[str, Any]:
    patch = SubscriptionPatch.from_mapping(payload.model_dump(exclude_unset=True, exclude={"version"}))
    try:
        result = service.update(
            subscription_id,
            patch,
            current_user.email,
            expected_version=payload.version,
        )
    except ValueError as exc:
        raise to_http_exception(exc) from exc
    return {
        "subscription": serialize_subscription(result.subscription, utc_now(), result.snapshot),
        "changes": [entry.to_dict() for entry in result.changes],
    }


@router.post("/subscriptions/assign", status_code=status.HTTP_201_CREATED)
def assign_subscription(
    payload: SubscriptionAssignPayload,
    current_user: User = Depends(require_admin_user),
    service: AssignmentService = Depends(get_assignment_service),
) -> Dict[str, Any]:
    try:
        variant = build_variant(
            payload.variant.duration_label,
            payload.variant.duration_value,
            payload.variant.duration_unit,
            payload.variant.price,
        )
        start = parse_moment(payload.start_date, "start date") if payload.start_date else None
        subscription = service.assign(
            payload.user_id,
            payload.product_id,
            variant,
            current_user.email,
            start_moment=start,
        )
    except ValueError as exc:
        raise to_http_exception(exc) from exc
    return serialize_subscription(subscription, utc_now())


@router.post("/subscriptions/{subscription_id}/renew", status_code=status.HTTP_201_CREATED)
def renew_subscription(
    subscription_id: int,
    payload: SubscriptionRenewPayload,
    current_user: User = Depends(require_admin_user),
    service: AssignmentService = Depends(get_assignment_service),
) -> Dict[str, Any]:
    try:
        variant = build_variant(
            payload.variant.duration_label,
            payload.variant.duration_value,
            payload.variant.duration_unit,
            payload.variant.price,
        )
        subscription = service.renew(
            subscription_id,
            variant,
            current_user.email,
            payment_id=payload.payment_id,
            transaction_id=payload.transaction_id,
        )
    except ValueError as exc:
        raise to_http_exception(exc) from exc
    return serialize_subscription(subscription, utc_now())


@router.get("/subscriptions/{subscription_id}/history")
def subscription_history(
    subscription_id: int,
    _: User = Depends(require_admin_user),
    persistence: PersistenceGateway = Depends(get_persistence_gateway),
) -> Dict[str, Any]:
    if persistence.get_subscription(subscription_id) is None:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail=f"Subscription {subscription_id} not found.")
    return serialize_ledger(subscription_id, persistence.get_audit_ledger(subscription_id))


@router.post("/subscriptions/reconcile")
def reconcile_subscriptions(
    payload: Optional[ReconcilePayload] = None,
    _: User = Depends(require_admin_user),
    service: ReconciliationService = Depends(get_reconciliation_service),
) -> Dict[str, Any]:
    report = service.reconcile(utc_now(), user_id=payload.user_id if payload else None)
    return report.to_dict()
