"""
Webhook Processing
==================
Server-to-server entry point for gateway notifications.

- Signature over the raw body is checked before the body is parsed
- Handlers are registered per event type on a WebhookRouter
- Unknown event types are acknowledged without side effects, since the
  gateway retries anything that is not 2xx
- Deliveries are at-least-once; handlers are idempotent and processed
  event ids are recorded so exact redeliveries short-circuit
"""

import uuid
from typing import Any, Awaitable, Callable, Optional

import structlog
from pydantic import ValidationError

from storefront.errors import MalformedWebhookError, SignatureVerificationError
from storefront.payments.signature import SignatureVerifier
from storefront.reconciliation.reconciler import OrderReconciler
from storefront.schemas.payments import ConfirmationEvent, WebhookEnvelope
from storefront.storage.webhook_events import IWebhookEventLog

WebhookHandler = Callable[[WebhookEnvelope, str], Awaitable[Any]]


# =============================================================================
# WEBHOOK ROUTER
# =============================================================================

class WebhookRouter:
    """Maps event type strings to handlers."""

    def __init__(self):
        self._handlers: dict[str, WebhookHandler] = {}
        self._logger = structlog.get_logger().bind(component="webhook_router")

    def register(self, *event_types: str):
        """Decorator to register a handler for one or more event types"""
        def decorator(handler: WebhookHandler):
            for event_type in event_types:
                self._handlers[event_type] = handler
                self._logger.debug("handler_registered", event_type=event_type)
            return handler
        return decorator

    async def route(self, envelope: WebhookEnvelope, correlation_id: str) -> Optional[Any]:
        handler = self._handlers.get(envelope.event)
        if not handler:
            self._logger.info("webhook_event_ignored", event_type=envelope.event,
                              correlation_id=correlation_id)
            return None
        return await handler(envelope, correlation_id)

    @property
    def supported_events(self) -> list[str]:
        return list(self._handlers.keys())


# =============================================================================
# WEBHOOK PROCESSOR
# =============================================================================

def payment_event(envelope: WebhookEnvelope) -> ConfirmationEvent:
    payment = envelope.entity("payment")
    return ConfirmationEvent(
        gateway_order_id=payment.get("order_id"),
        gateway_payment_id=payment.get("id"),
        verified_payment_status=payment.get("status"),
        payment_method=payment.get("method"),
    )


def order_event(envelope: WebhookEnvelope) -> ConfirmationEvent:
    order = envelope.entity("order")
    return ConfirmationEvent(
        gateway_order_id=order.get("id"),
        verified_payment_status=order.get("status"),
    )


class WebhookProcessor:
    """
    Verifies and dispatches gateway webhooks to the reconciler.

    Example:
        processor = WebhookProcessor(SignatureVerifier(secret), reconciler)
        await processor.process(raw_body, request.headers["x-razorpay-signature"])
    """

    def __init__(
        self,
        verifier: SignatureVerifier,
        reconciler: OrderReconciler,
        event_log: Optional[IWebhookEventLog] = None,
    ):
        self.verifier = verifier
        self.reconciler = reconciler
        self.event_log = event_log
        self.router = WebhookRouter()
        self._register_handlers()
        self._base_logger = structlog.get_logger()

    def _get_logger(self, correlation_id: str = None):
        return self._base_logger.bind(
            component="webhook_processor",
            correlation_id=correlation_id or str(uuid.uuid4()),
        )

    def _register_handlers(self):

        @self.router.register("payment.captured", "payment.authorized")
        async def handle_payment_success(envelope: WebhookEnvelope, correlation_id: str):
            return await self.reconciler.on_payment_captured(payment_event(envelope))

        @self.router.register("payment.failed")
        async def handle_payment_failed(envelope: WebhookEnvelope, correlation_id: str):
            return await self.reconciler.on_payment_failed(payment_event(envelope))

        @self.router.register("order.paid")
        async def handle_order_paid(envelope: WebhookEnvelope, correlation_id: str):
            return await self.reconciler.on_order_paid(order_event(envelope))

    async def process(
        self,
        payload: bytes,
        signature: Optional[str],
        event_id: Optional[str] = None,
    ) -> dict:
        """
        Verify, parse and dispatch one delivery.

        Raises:
            SignatureVerificationError: missing or invalid signature
            MalformedWebhookError: signed body is not a webhook envelope
        Anything else raised by a handler propagates so the caller can
        answer 5xx and let the gateway retry.
        """
        log = self._get_logger(event_id)

        if not signature:
            log.warning("webhook_signature_missing")
            raise SignatureVerificationError("Missing signature")

        if not self.verifier.verify(payload, signature):
            log.warning("webhook_signature_invalid")
            raise SignatureVerificationError("Invalid signature")

        try:
            envelope = WebhookEnvelope.model_validate_json(payload)
        except ValidationError as e:
            log.warning("webhook_body_malformed", error=str(e))
            raise MalformedWebhookError("Malformed webhook body") from e

        if event_id and self.event_log and await self.event_log.is_processed(event_id):
            log.info("webhook_duplicate_delivery", event_type=envelope.event)
            return {"received": True}

        log.info("webhook_received", event_type=envelope.event)
        result = await self.router.route(envelope, correlation_id=event_id or str(uuid.uuid4()))

        if event_id and self.event_log:
            await self.event_log.mark_processed(event_id, envelope.event)

        if result is not None:
            log.info("webhook_processed", event_type=envelope.event,
                     outcome=result.outcome.value,
                     order_id=result.order.id if result.order else None)

        return {"received": True}
