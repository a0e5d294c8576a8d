"""
Checkout staging: everything that happens before the gateway redirect.

Creates the gateway order the payment widget charges against, and stages
the cart/shipping draft server-side bound to that gateway order id.
"""

import time
from datetime import datetime
from typing import Any, Dict, Optional

import structlog
from pydantic import BaseModel

from storefront.coupons import compute_discount, validate_coupon
from storefront.errors import InvalidDraftError
from storefront.payments.gateway_client import IPaymentGateway
from storefront.schemas.orders import OrderDraft
from storefront.storage.coupons import ICouponRepository
from storefront.storage.drafts import IDraftStore

logger = structlog.get_logger().bind(component="checkout")


class CheckoutSession(BaseModel):
    id: str  # gateway order id
    amount: int
    currency: str
    receipt: Optional[str] = None
    draft_token: str
    expires_at: datetime


class CheckoutService:

    def __init__(
        self,
        gateway: IPaymentGateway,
        drafts: IDraftStore,
        coupons: Optional[ICouponRepository] = None,
    ):
        self.gateway = gateway
        self.drafts = drafts
        self.coupons = coupons

    async def _check_discount(self, draft: OrderDraft) -> None:
        if not draft.coupon_code:
            if draft.discount > 0:
                raise InvalidDraftError("Discount given without a coupon")
            return
        if self.coupons is None:
            return

        coupon = validate_coupon(await self.coupons.get_by_code(draft.coupon_code), draft.subtotal)
        expected = compute_discount(coupon, draft.subtotal)
        if expected != draft.discount:
            raise InvalidDraftError(
                f"Discount {draft.discount} does not match coupon {coupon.code} ({expected})"
            )

    async def begin(
        self,
        draft: OrderDraft,
        receipt: Optional[str] = None,
        notes: Optional[Dict[str, Any]] = None,
    ) -> CheckoutSession:
        if draft.total <= 0:
            raise InvalidDraftError("Invalid amount")

        await self._check_discount(draft)

        receipt = receipt or f"receipt_{int(time.time() * 1000)}"
        gateway_order = await self.gateway.create_order(
            amount=draft.total,
            currency=draft.currency,
            receipt=receipt,
            notes={**(notes or {}), "user_id": draft.user_id or "guest"},
        )

        reservation = await self.drafts.stage(
            draft.model_copy(update={"gateway_order_id": gateway_order.id})
        )

        logger.info("checkout_started", gateway_order_id=gateway_order.id,
                    amount=gateway_order.amount, coupon_code=draft.coupon_code)

        return CheckoutSession(
            id=gateway_order.id,
            amount=gateway_order.amount,
            currency=gateway_order.currency,
            receipt=gateway_order.receipt,
            draft_token=reservation.token,
            expires_at=reservation.expires_at,
        )
