"""
Client Confirmation Flow
========================
Runs when the shopper lands back from the gateway redirect.

signature check -> gateway fetch -> reconciler -> discard staged draft

Every failure is reported with the furthest step reached and the payment
id, because support reconciles manual cases by payment id.
"""

from enum import Enum
from typing import Optional

import structlog
from pydantic import BaseModel, Field, computed_field

from storefront.errors import (
    GatewayRequestError,
    GatewayUnavailableError,
    OrderCreationError,
    PaymentNotSuccessfulError,
    SignatureVerificationError,
    UnverifiableInputError,
)
from storefront.payments.verification import PaymentVerifier, ensure_successful
from storefront.reconciliation.reconciler import OrderReconciler, ReconciliationOutcome
from storefront.schemas.payments import ConfirmationEvent
from storefront.storage.drafts import IDraftStore

logger = structlog.get_logger().bind(component="confirmation_flow")


class ConfirmationReason(str, Enum):
    CONFIRMED = "confirmed"
    ALREADY_CONFIRMED = "already_confirmed"
    ALREADY_HANDLED = "already_handled"
    CANCELLED = "cancelled"
    MISSING_INFORMATION = "missing_information"
    VERIFICATION_FAILED = "verification_failed"
    GATEWAY_UNREACHABLE = "gateway_unreachable"
    GATEWAY_ERROR = "gateway_error"
    PAYMENT_NOT_SUCCESSFUL = "payment_not_successful"
    ORDER_CREATION_FAILED = "order_creation_failed"


SUCCESS_REASONS = frozenset({
    ConfirmationReason.CONFIRMED,
    ConfirmationReason.ALREADY_CONFIRMED,
    ConfirmationReason.ALREADY_HANDLED,
})

_OUTCOME_REASONS = {
    ReconciliationOutcome.CREATED: ConfirmationReason.CONFIRMED,
    ReconciliationOutcome.EXISTING: ConfirmationReason.ALREADY_CONFIRMED,
    ReconciliationOutcome.ALREADY_HANDLED: ConfirmationReason.ALREADY_HANDLED,
}


class RedirectParams(BaseModel):
    """Query parameters the gateway appends to the redirect URL."""
    razorpay_payment_id: Optional[str] = None
    razorpay_order_id: Optional[str] = None
    razorpay_signature: Optional[str] = None
    status: Optional[str] = None
    draft_token: Optional[str] = None


class ConfirmationResult(BaseModel):
    reason: ConfirmationReason
    message: str
    payment_id: Optional[str] = None
    payment_status: Optional[str] = None
    order_id: Optional[str] = None
    order_number: Optional[str] = None
    warnings: list[str] = Field(default_factory=list)
    draft_cleared: bool = False

    @computed_field
    @property
    def success(self) -> bool:
        return self.reason in SUCCESS_REASONS


class ClientConfirmationFlow:

    def __init__(self, verifier: PaymentVerifier, reconciler: OrderReconciler, drafts: IDraftStore):
        self.verifier = verifier
        self.reconciler = reconciler
        self.drafts = drafts

    async def confirm(self, params: RedirectParams) -> ConfirmationResult:
        payment_id = params.razorpay_payment_id
        log = logger.bind(correlation_id=payment_id, gateway_order_id=params.razorpay_order_id)

        if not (payment_id and params.razorpay_order_id and params.razorpay_signature):
            return self._incomplete(params, log)

        # Step 1 + 2: signature, then gateway
        try:
            payment = await self.verifier.verify(
                params.razorpay_order_id, payment_id, params.razorpay_signature
            )
        except UnverifiableInputError:
            return self._incomplete(params, log)
        except SignatureVerificationError:
            log.warning("confirmation_signature_rejected")
            return ConfirmationResult(
                reason=ConfirmationReason.VERIFICATION_FAILED,
                message="Payment verification failed. Please contact support.",
                payment_id=payment_id,
            )
        except GatewayUnavailableError as e:
            log.warning("confirmation_gateway_unreachable", error=e.message)
            return ConfirmationResult(
                reason=ConfirmationReason.GATEWAY_UNREACHABLE,
                message="We could not reach the payment gateway to confirm your payment. "
                        "Please try again in a moment.",
                payment_id=payment_id,
            )
        except GatewayRequestError as e:
            log.error("confirmation_gateway_rejected", error=e.message, gateway_status=e.gateway_status)
            return ConfirmationResult(
                reason=ConfirmationReason.GATEWAY_ERROR,
                message=f"Payment could not be verified with the gateway. "
                        f"Please contact support with your payment ID: {payment_id}",
                payment_id=payment_id,
            )

        try:
            ensure_successful(payment)
        except PaymentNotSuccessfulError:
            log.warning("confirmation_payment_not_successful", status=payment.status)
            return ConfirmationResult(
                reason=ConfirmationReason.PAYMENT_NOT_SUCCESSFUL,
                message=f"Payment status: {payment.status}. Please contact support.",
                payment_id=payment_id,
                payment_status=payment.status,
            )

        # Step 3: reconcile
        try:
            draft = await self.drafts.peek(params.draft_token) if params.draft_token else None
        except Exception as e:
            log.critical("order_creation_failed_after_payment", step="draft_lookup",
                         error=str(e), error_type=type(e).__name__)
            return self._creation_failed(OrderCreationError(payment_id, cause=e), payment.status)

        if draft and draft.gateway_order_id and draft.gateway_order_id != params.razorpay_order_id:
            log.warning("confirmation_draft_mismatch", draft_gateway_order_id=draft.gateway_order_id)
            draft = None

        event = ConfirmationEvent(
            gateway_order_id=params.razorpay_order_id,
            gateway_payment_id=payment_id,
            verified_payment_status=payment.status,
            payment_method=payment.method,
            gateway_signature=params.razorpay_signature,
        )
        try:
            result = await self.reconciler.confirm_client_payment(event, draft)
        except OrderCreationError as e:
            return self._creation_failed(e, payment.status)

        # Step 4: the staged draft is spent
        warnings = list(result.warnings)
        draft_cleared = False
        if params.draft_token:
            try:
                draft_cleared = await self.drafts.discard(params.draft_token)
            except Exception as e:
                log.warning("draft_discard_failed", error=str(e))
                warnings.append("Checkout details could not be cleared")

        reason = _OUTCOME_REASONS[result.outcome]
        log.info("confirmation_complete", reason=reason.value, draft_cleared=draft_cleared,
                 order_id=result.order.id if result.order else None)

        return ConfirmationResult(
            reason=reason,
            message="Your order has been placed successfully.",
            payment_id=payment_id,
            payment_status=payment.status,
            order_id=result.order.id if result.order else None,
            order_number=result.order.order_number if result.order else None,
            warnings=warnings,
            draft_cleared=draft_cleared,
        )

    def _creation_failed(self, error: OrderCreationError, payment_status: str) -> ConfirmationResult:
        return ConfirmationResult(
            reason=ConfirmationReason.ORDER_CREATION_FAILED,
            message=error.message,
            payment_id=error.payment_id,
            payment_status=payment_status,
        )

    def _incomplete(self, params: RedirectParams, log) -> ConfirmationResult:
        if not params.status or params.status == "cancelled":
            log.info("confirmation_cancelled")
            return ConfirmationResult(
                reason=ConfirmationReason.CANCELLED,
                message="Payment was cancelled. Please try again.",
                payment_id=params.razorpay_payment_id,
            )
        log.warning("confirmation_missing_information", status=params.status)
        return ConfirmationResult(
            reason=ConfirmationReason.MISSING_INFORMATION,
            message="Missing payment information. Please contact support.",
            payment_id=params.razorpay_payment_id,
        )
