"""
Coupon rules: eligibility checks and discount arithmetic.
"""

from datetime import datetime
from decimal import Decimal
from typing import Optional

from storefront.errors import CouponError
from storefront.schemas.coupons import Coupon, DiscountType
from storefront.schemas.orders import to_money, utcnow


def validate_coupon(coupon: Optional[Coupon], cart_total: Decimal, now: Optional[datetime] = None) -> Coupon:
    if coupon is None:
        raise CouponError("Coupon code not found")
    if not coupon.is_active:
        raise CouponError("Coupon is not active")
    if coupon.expires_at < (now or utcnow()):
        raise CouponError("Coupon has expired")
    if coupon.used_count >= coupon.usage_limit:
        raise CouponError("Coupon usage limit reached")
    if coupon.min_purchase_amount and cart_total < coupon.min_purchase_amount:
        raise CouponError(f"Minimum purchase amount of ₹{coupon.min_purchase_amount} required")
    return coupon


def compute_discount(coupon: Coupon, cart_total: Decimal) -> Decimal:
    """Percentage discounts are capped by max_discount_amount; fixed ones by the cart total."""
    if coupon.discount_type == DiscountType.PERCENTAGE:
        discount = cart_total * coupon.discount_value / 100
        if coupon.max_discount_amount and discount > coupon.max_discount_amount:
            discount = coupon.max_discount_amount
    else:
        discount = min(coupon.discount_value, cart_total)
    return to_money(discount)
