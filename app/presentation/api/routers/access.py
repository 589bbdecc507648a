from __future__ import annotations

from typing import Any, Dict

from fastapi import APIRouter, Depends

from ....application.services.access_service import AccessService
from ....application.services.subscription_update_service import utc_now
from ....core.dependencies import get_access_service
from ....domain.models import User
from ...api.dependencies import require_admin_user
from ...api.serializers import serialize_subscription

router = APIRouter(prefix="/api/access", tags=["Access"])


@router.get("/{user_id}/{product_id}")
def check_access(
    user_id: int,
    product_id: str,
    _: User = Depends(require_admin_user),
    service: AccessService = Depends(get_access_service),
) -> Dict[str, Any]:
    now = utc_now()
    result = service.check_access(user_id, product_id, now)
    return {
        "has_access": result.has_access,
        "is_active": result.is_active,
        "status": result.real_time_status.value if result.real_time_status else None,
        "subscription": serialize_subscription(result.subscription, now) if result.subscription else None,
    }
