from __future__ import annotations

from typing import Optional

from pydantic import BaseModel, Field

from .subscription import VariantPayload


class CheckoutCompletionPayload(BaseModel):
    user_id: int = Field(..., ge=1)
    product_id: str = Field(..., min_length=1, max_length=120)
    variant: VariantPayload
    payment_status: str = Field(default="completed", min_length=1, max_length=20)
    payment_id: Optional[str] = Field(default=None, max_length=120)
    transaction_id: Optional[str] = Field(default=None, max_length=120)
