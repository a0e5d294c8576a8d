"""
Order Reconciler
================
Converges payment signals from the webhook stream and the client redirect
into exactly one order per gateway payment id.

Per payment id:  Unseen -> Pending -> Processing -> Shipped -> Delivered
                                              \\-> Cancelled

- Only the client confirmation path creates orders; the webhook alone
  lacks the cart and shipping snapshot.
- "Order already exists" always wins over "create": creation follows a
  fresh point lookup, and a uniqueness violation on insert is read as
  "someone else created it" and answered with the existing order.
- Status changes are compare-and-set against the status the decision was
  based on, so a stale event cannot overwrite a newer transition.
"""

import uuid
from enum import Enum
from typing import Optional

import structlog
from pydantic import BaseModel, Field

from storefront.errors import DuplicateOrderError, OrderCreationError, PaymentNotSuccessfulError
from storefront.schemas.orders import (
    FULFILLED_STATUSES,
    Order,
    OrderDraft,
    OrderStatus,
    PaymentInfo,
)
from storefront.schemas.payments import SUCCESSFUL_PAYMENT_STATUSES, ConfirmationEvent
from storefront.storage.coupons import ICouponRepository
from storefront.storage.customers import ICustomerProfileStore
from storefront.storage.orders import IOrderRepository


class ReconciliationOutcome(str, Enum):
    CREATED = "created"
    EXISTING = "existing"
    TRANSITIONED = "transitioned"
    UNCHANGED = "unchanged"
    NOT_FOUND = "not_found"
    CONFLICT = "conflict"
    ALREADY_HANDLED = "already_handled"


class ReconciliationResult(BaseModel):
    outcome: ReconciliationOutcome
    order: Optional[Order] = None
    previous_status: Optional[OrderStatus] = None
    warnings: list[str] = Field(default_factory=list)


class OrderReconciler:
    """
    Decides create-vs-update for every payment confirmation.

    Example:
        reconciler = OrderReconciler(orders)
        await reconciler.on_payment_captured(event)                # webhook
        await reconciler.confirm_client_payment(event, draft)      # redirect
    """

    def __init__(
        self,
        orders: IOrderRepository,
        coupons: Optional[ICouponRepository] = None,
        customers: Optional[ICustomerProfileStore] = None,
    ):
        self.orders = orders
        self.coupons = coupons
        self.customers = customers
        self._base_logger = structlog.get_logger()

    def _get_logger(self, event: ConfirmationEvent):
        return self._base_logger.bind(
            component="reconciler",
            correlation_id=event.gateway_payment_id or event.gateway_order_id or str(uuid.uuid4()),
            payment_id=event.gateway_payment_id,
            gateway_order_id=event.gateway_order_id,
        )

    # =========================================================================
    # WEBHOOK PATH (reconciliation only, never creates)
    # =========================================================================

    async def on_payment_captured(self, event: ConfirmationEvent) -> ReconciliationResult:
        """payment.captured / payment.authorized"""
        log = self._get_logger(event)

        order = await self.orders.find_by_payment_key(
            gateway_payment_id=event.gateway_payment_id,
            gateway_order_id=event.gateway_order_id,
        )
        if order is None:
            log.info("payment_captured_no_order",
                     detail="order will be created by the client confirmation path")
            return ReconciliationResult(outcome=ReconciliationOutcome.NOT_FOUND)

        return await self._advance_to_processing(order, log)

    async def on_order_paid(self, event: ConfirmationEvent) -> ReconciliationResult:
        """order.paid, keyed by gateway order id"""
        log = self._get_logger(event)

        order = await self.orders.find_by_payment_key(gateway_order_id=event.gateway_order_id)
        if order is None:
            log.info("order_paid_no_order")
            return ReconciliationResult(outcome=ReconciliationOutcome.NOT_FOUND)

        return await self._advance_to_processing(order, log)

    async def on_payment_failed(self, event: ConfirmationEvent) -> ReconciliationResult:
        """payment.failed: cancel unless the order has already shipped."""
        log = self._get_logger(event)

        order = await self.orders.find_by_payment_key(
            gateway_payment_id=event.gateway_payment_id,
            gateway_order_id=event.gateway_order_id,
        )
        if order is None:
            log.info("payment_failed_no_order")
            return ReconciliationResult(outcome=ReconciliationOutcome.NOT_FOUND)

        # A failed retry on a gateway order that another payment already paid
        recorded_payment_id = order.payment_info.gateway_payment_id
        if recorded_payment_id and event.gateway_payment_id and recorded_payment_id != event.gateway_payment_id:
            log.info("payment_failed_for_other_attempt", order_id=order.id,
                     recorded_payment_id=recorded_payment_id)
            return ReconciliationResult(outcome=ReconciliationOutcome.UNCHANGED, order=order)

        if order.status == OrderStatus.CANCELLED:
            return ReconciliationResult(outcome=ReconciliationOutcome.UNCHANGED, order=order)

        if order.status in FULFILLED_STATUSES:
            log.error("payment_failed_for_fulfilled_order", order_id=order.id,
                      order_number=order.order_number, status=order.status.value)
            return ReconciliationResult(
                outcome=ReconciliationOutcome.CONFLICT,
                order=order,
                warnings=[f"Payment failure reported for {order.status.value.lower()} order {order.order_number}"],
            )

        return await self._transition(
            order, OrderStatus.CANCELLED, {OrderStatus.PENDING, OrderStatus.PROCESSING}, log
        )

    # =========================================================================
    # CLIENT CONFIRMATION PATH (owns order creation)
    # =========================================================================

    async def confirm_client_payment(
        self,
        event: ConfirmationEvent,
        draft: Optional[OrderDraft] = None,
    ) -> ReconciliationResult:
        """
        Materialize the order for a verified, successful payment.

        Raises:
            PaymentNotSuccessfulError: status outside captured/authorized
            OrderCreationError: the payment went through but the order could
                not be looked up, created or advanced
        """
        log = self._get_logger(event)

        if event.verified_payment_status not in SUCCESSFUL_PAYMENT_STATUSES:
            raise PaymentNotSuccessfulError(event.gateway_payment_id, event.verified_payment_status)

        try:
            return await self._materialize(event, draft, log)
        except Exception as e:
            log.critical("order_creation_failed_after_payment",
                         error=str(e), error_type=type(e).__name__,
                         total=str(draft.total) if draft else None)
            raise OrderCreationError(event.gateway_payment_id, cause=e) from e

    async def _materialize(
        self,
        event: ConfirmationEvent,
        draft: Optional[OrderDraft],
        log,
    ) -> ReconciliationResult:
        existing = await self.orders.find_by_payment_key(gateway_payment_id=event.gateway_payment_id)
        if existing:
            log.info("client_confirmation_replay", order_id=existing.id)
            return await self._existing(existing, log)

        if draft is None:
            log.warning("client_confirmation_without_draft")
            return ReconciliationResult(
                outcome=ReconciliationOutcome.ALREADY_HANDLED,
                warnings=[
                    "Payment verified successfully. If you don't see your order, "
                    "please check your account or contact support."
                ],
            )

        payment_info = PaymentInfo(
            gateway_order_id=event.gateway_order_id,
            gateway_payment_id=event.gateway_payment_id,
            gateway_signature=event.gateway_signature,
            payment_method=event.payment_method or "razorpay",
            payment_status=event.verified_payment_status,
        )

        try:
            order = await self.orders.create(draft.to_order(payment_info, OrderStatus.PROCESSING))
        except DuplicateOrderError as e:
            log.info("client_confirmation_lost_race", order_id=e.existing.id)
            return await self._existing(e.existing, log)

        log.info("order_created", order_id=order.id, order_number=order.order_number,
                 total=str(order.total), status=order.status.value)

        warnings = await self._after_create(order, log)
        return ReconciliationResult(outcome=ReconciliationOutcome.CREATED, order=order, warnings=warnings)

    async def _existing(self, order: Order, log) -> ReconciliationResult:
        # A verified capture also settles an order still waiting on payment
        if order.status == OrderStatus.PENDING:
            advanced = await self._advance_to_processing(order, log)
            return ReconciliationResult(
                outcome=ReconciliationOutcome.EXISTING,
                order=advanced.order,
                previous_status=advanced.previous_status,
            )
        return ReconciliationResult(outcome=ReconciliationOutcome.EXISTING, order=order)

    async def _after_create(self, order: Order, log) -> list[str]:
        """Best-effort follow-ups; failures never undo the order."""
        warnings = []

        if order.coupon_code and self.coupons:
            try:
                await self.coupons.mark_used(order.coupon_code)
            except Exception as e:
                log.warning("coupon_mark_used_failed", code=order.coupon_code, error=str(e))
                warnings.append(f"Coupon {order.coupon_code} could not be marked as used")

        if order.user_id and self.customers:
            try:
                await self.customers.save_shipping_info(order.user_id, order.shipping_info)
            except Exception as e:
                log.warning("shipping_info_save_failed", user_id=order.user_id, error=str(e))
                warnings.append("Shipping details could not be saved for next time")

        return warnings

    # =========================================================================
    # TRANSITIONS
    # =========================================================================

    async def _advance_to_processing(self, order: Order, log) -> ReconciliationResult:
        if order.status != OrderStatus.PENDING:
            log.info("order_already_advanced", order_id=order.id, status=order.status.value)
            return ReconciliationResult(outcome=ReconciliationOutcome.UNCHANGED, order=order)

        return await self._transition(order, OrderStatus.PROCESSING, {OrderStatus.PENDING}, log)

    async def _transition(
        self,
        order: Order,
        new_status: OrderStatus,
        from_statuses: set[OrderStatus],
        log,
    ) -> ReconciliationResult:
        changed = await self.orders.update_status(order.id, new_status, from_statuses=from_statuses)
        current = await self.orders.get(order.id) or order

        if not changed:
            log.info("order_transition_skipped", order_id=order.id,
                     wanted=new_status.value, status=current.status.value)
            return ReconciliationResult(outcome=ReconciliationOutcome.UNCHANGED, order=current)

        log.info("order_transitioned", order_id=order.id,
                 previous_status=order.status.value, status=new_status.value)
        return ReconciliationResult(
            outcome=ReconciliationOutcome.TRANSITIONED,
            order=current,
            previous_status=order.status,
        )
