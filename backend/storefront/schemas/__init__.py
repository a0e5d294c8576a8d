# schemas/__init__.py
from storefront.schemas.orders import (
    Order,
    OrderItem,
    OrderDraft,
    OrderStatus,
    OrderTotals,
    PaymentInfo,
    ShippingInfo,
    DraftReservation,
)
from storefront.schemas.payments import (
    PaymentRecord,
    GatewayOrder,
    ConfirmationEvent,
    WebhookEnvelope,
    SUCCESSFUL_PAYMENT_STATUSES,
)
from storefront.schemas.coupons import Coupon, DiscountType

__all__ = [
    "Order",
    "OrderItem",
    "OrderDraft",
    "OrderStatus",
    "OrderTotals",
    "PaymentInfo",
    "ShippingInfo",
    "DraftReservation",
    "PaymentRecord",
    "GatewayOrder",
    "ConfirmationEvent",
    "WebhookEnvelope",
    "SUCCESSFUL_PAYMENT_STATUSES",
    "Coupon",
    "DiscountType",
]
