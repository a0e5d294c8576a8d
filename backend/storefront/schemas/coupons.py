from datetime import datetime
from decimal import Decimal
from enum import Enum
from typing import Optional

from pydantic import BaseModel, Field, field_validator


class DiscountType(str, Enum):
    PERCENTAGE = "percentage"
    FIXED = "fixed"


class Coupon(BaseModel):
    code: str
    discount_type: DiscountType
    discount_value: Decimal = Field(ge=0)
    min_purchase_amount: Optional[Decimal] = None
    max_discount_amount: Optional[Decimal] = None
    expires_at: datetime
    usage_limit: int = Field(ge=0)
    used_count: int = Field(default=0, ge=0)
    is_active: bool = True
    description: Optional[str] = None

    @field_validator("code")
    @classmethod
    def upper_code(cls, v: str) -> str:
        return v.strip().upper()
