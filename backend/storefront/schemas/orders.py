# schemas/orders.py
# ============================================================================
# STOREFRONT PAYMENTS — ORDER SCHEMAS
# ============================================================================
# Order entity, checkout draft and the money breakdown they share
# ============================================================================

import secrets
from datetime import datetime, timezone
from decimal import Decimal, ROUND_HALF_UP
from enum import Enum
from typing import Optional

from pydantic import BaseModel, Field, field_validator, model_validator

CENTS = Decimal("0.01")


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


def to_money(value) -> Decimal:
    return Decimal(str(value)).quantize(CENTS, rounding=ROUND_HALF_UP)


# ============================================================================
# SECTION 1: ENUMS
# ============================================================================

class OrderStatus(str, Enum):
    PENDING = "Pending"
    PROCESSING = "Processing"
    SHIPPED = "Shipped"
    DELIVERED = "Delivered"
    CANCELLED = "Cancelled"

    @property
    def is_terminal(self) -> bool:
        return self in (OrderStatus.DELIVERED, OrderStatus.CANCELLED)


# Orders past these statuses have left the warehouse
FULFILLED_STATUSES = frozenset({OrderStatus.SHIPPED, OrderStatus.DELIVERED})


# ============================================================================
# SECTION 2: COMPONENTS
# ============================================================================

class OrderItem(BaseModel):
    """Cart line snapshotted when the order is created."""
    product_id: str = Field(min_length=1)
    name: Optional[str] = None
    price: Decimal = Field(default=Decimal("0"), ge=0)
    quantity: int = Field(ge=1)
    selected_color: Optional[str] = None
    selected_size: Optional[str] = None

    @field_validator("price")
    @classmethod
    def round_price(cls, v: Decimal) -> Decimal:
        return to_money(v)


class ShippingInfo(BaseModel):
    first_name: str = Field(min_length=1)
    last_name: str = ""
    email: str = Field(min_length=3)
    phone: str = Field(min_length=5)
    address: str = Field(min_length=1)
    city: str = ""
    state: str = ""
    zip_code: str = ""


class PaymentInfo(BaseModel):
    """Gateway identifiers used to reconcile an order with its payment."""
    gateway_order_id: Optional[str] = None
    gateway_payment_id: Optional[str] = None
    gateway_signature: Optional[str] = None
    payment_method: Optional[str] = None
    payment_status: Optional[str] = None


class OrderTotals(BaseModel):
    """
    Money breakdown shared by drafts and orders.

    total must equal subtotal + shipping + tax - discount.
    """
    subtotal: Decimal = Field(ge=0)
    shipping: Decimal = Field(default=Decimal("0"), ge=0)
    tax: Decimal = Field(default=Decimal("0"), ge=0)
    discount: Decimal = Field(default=Decimal("0"), ge=0)
    total: Decimal = Field(ge=0)

    @field_validator("subtotal", "shipping", "tax", "discount", "total")
    @classmethod
    def round_money(cls, v: Decimal) -> Decimal:
        return to_money(v)

    @model_validator(mode="after")
    def check_total(self):
        expected = self.subtotal + self.shipping + self.tax - self.discount
        if expected != self.total:
            raise ValueError(
                f"total {self.total} does not equal subtotal + shipping + tax - discount ({expected})"
            )
        return self


# ============================================================================
# SECTION 3: ORDER
# ============================================================================

class Order(OrderTotals):
    """Core order entity. One per gateway payment id."""
    id: Optional[str] = None
    order_number: Optional[str] = None
    user_id: Optional[str] = None
    items: list[OrderItem] = Field(min_length=1)
    shipping_info: ShippingInfo
    payment_info: PaymentInfo = Field(default_factory=PaymentInfo)
    coupon_code: Optional[str] = None
    status: OrderStatus = OrderStatus.PENDING
    created_at: datetime = Field(default_factory=utcnow)
    updated_at: datetime = Field(default_factory=utcnow)

    @staticmethod
    def generate_order_number(now: Optional[datetime] = None) -> str:
        now = now or utcnow()
        return f"ORD-{now.strftime('%Y%m%d')}-{100000 + secrets.randbelow(900000)}"

    def transition_to(self, new_status: OrderStatus) -> "Order":
        return self.model_copy(update={"status": new_status, "updated_at": utcnow()})


# ============================================================================
# SECTION 4: CHECKOUT DRAFT
# ============================================================================

class OrderDraft(OrderTotals):
    """Cart and shipping snapshot staged before redirecting to the gateway."""
    user_id: Optional[str] = None
    items: list[OrderItem] = Field(min_length=1)
    shipping_info: ShippingInfo
    coupon_code: Optional[str] = None
    currency: str = "INR"
    gateway_order_id: Optional[str] = None

    @field_validator("coupon_code")
    @classmethod
    def normalize_coupon(cls, v: Optional[str]) -> Optional[str]:
        if v is None:
            return None
        v = v.strip().upper()
        return v or None

    def to_order(self, payment_info: PaymentInfo, status: OrderStatus) -> Order:
        return Order(
            user_id=self.user_id,
            items=self.items,
            shipping_info=self.shipping_info,
            payment_info=payment_info,
            subtotal=self.subtotal,
            shipping=self.shipping,
            tax=self.tax,
            discount=self.discount,
            total=self.total,
            coupon_code=self.coupon_code,
            status=status,
        )


class DraftReservation(BaseModel):
    """Server-issued handle to a staged draft."""
    token: str
    expires_at: datetime
