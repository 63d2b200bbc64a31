"""
Pydantic schemas for coupons.
"""

from datetime import datetime
from decimal import Decimal
from typing import Literal, Optional

from pydantic import AwareDatetime, BaseModel, Field, model_validator


class CouponCreate(BaseModel):
    code: str = Field(..., min_length=3, max_length=50, pattern=r"^[A-Za-z0-9_-]+$")
    discount_type: Literal["percentage", "fixed"]
    discount_value: Decimal = Field(..., gt=0, max_digits=12, decimal_places=2)
    event_id: Optional[str] = None
    max_uses: Optional[int] = Field(None, gt=0)
    min_purchase_amount: Optional[Decimal] = Field(None, ge=0, max_digits=12, decimal_places=2)
    valid_from: Optional[AwareDatetime] = None
    valid_until: Optional[AwareDatetime] = None
    is_active: bool = True

    @model_validator(mode="after")
    def check_bounds(self):
        if self.discount_type == "percentage" and self.discount_value > 100:
            raise ValueError("percentage discount cannot exceed 100")
        if self.valid_from and self.valid_until and self.valid_until <= self.valid_from:
            raise ValueError("valid_until must be after valid_from")
        return self


class CouponResponse(BaseModel):
    id: str
    organizer_id: str
    code: str
    discount_type: str
    discount_value: Decimal
    event_id: Optional[str]
    max_uses: Optional[int]
    used_count: int
    min_purchase_amount: Optional[Decimal]
    valid_from: Optional[datetime]
    valid_until: Optional[datetime]
    is_active: bool
    created_at: datetime

    model_config = {"from_attributes": True}


class CouponPreviewRequest(BaseModel):
    event_id: str
    code: str = Field(..., min_length=1, max_length=50)
    subtotal: Decimal = Field(..., ge=0, max_digits=12, decimal_places=2)


class CouponPreviewResponse(BaseModel):
    code: str
    subtotal: Decimal
    discount: Decimal
    total_after_discount: Decimal
