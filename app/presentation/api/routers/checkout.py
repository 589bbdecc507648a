from __future__ import annotations

from typing import Any, Dict

from fastapi import APIRouter, Depends, status

from ....application.services.assignment_service import AssignmentService, build_variant
from ....application.services.subscription_update_service import utc_now
from ....core.dependencies import get_assignment_service
from ....domain.errors import ValidationError
from ....domain.models import PaymentStatus, User
from ...api.dependencies import require_admin_user
from ...api.errors import to_http_exception
from ...api.schemas.checkout import CheckoutCompletionPayload
from ...api.serializers import serialize_subscription

router = APIRouter(prefix="/api/checkout", tags=["Checkout"])


@router.post("/complete", status_code=status.HTTP_201_CREATED)
def complete_checkout(
    payload: CheckoutCompletionPayload,
    current_user: User = Depends(require_admin_user),
    service: AssignmentService = Depends(get_assignment_service),
) -> Dict[str, Any]:
    try:
        try:
            payment_status = PaymentStatus(payload.payment_status.strip().lower())
        except ValueError as exc:
            raise ValidationError(f"Invalid payment status {payload.payment_status!r}.") from exc
        variant = build_variant(
            payload.variant.duration_label,
            payload.variant.duration_value,
            payload.variant.duration_unit,
            payload.variant.price,
        )
        subscription = service.complete_checkout(
            payload.user_id,
            payload.product_id,
            variant,
            payment_status,
            payment_id=payload.payment_id,
            transaction_id=payload.transaction_id,
            actor=f"checkout:{current_user.email}",
        )
    except ValueError as exc:
        raise to_http_exception(exc) from exc
    return serialize_subscription(subscription, utc_now())
