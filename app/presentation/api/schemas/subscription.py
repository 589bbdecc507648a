from __future__ import annotations

from decimal import Decimal
from typing import Optional

from pydantic import BaseModel, Field


class VariantPayload(BaseModel):
    duration_label: str = Field(default="", max_length=80)
    duration_value: int
    duration_unit: str = Field(..., min_length=1, max_length=20)
    price: Decimal


class SubscriptionPatchPayload(BaseModel):
    """Operator patch; enum and range checks are left to the update engine."""

    version: int = Field(..., ge=1)
    status: Optional[str] = None
    payment_status: Optional[str] = None
    start_date: Optional[str] = None
    end_date: Optional[str] = None
    is_latest: Optional[bool] = None
    historical_article_limit: Optional[int] = None
    notes: Optional[str] = Field(default=None, max_length=2000)
    extend_duration: Optional[int] = None
    extend_unit: Optional[str] = None


class SubscriptionAssignPayload(BaseModel):
    user_id: int = Field(..., ge=1)
    product_id: str = Field(..., min_length=1, max_length=120)
    variant: VariantPayload
    start_date: Optional[str] = None


class SubscriptionRenewPayload(BaseModel):
    variant: VariantPayload
    payment_id: Optional[str] = Field(default=None, max_length=120)
    transaction_id: Optional[str] = Field(default=None, max_length=120)


class ReconcilePayload(BaseModel):
    user_id: Optional[int] = Field(default=None, ge=1)
