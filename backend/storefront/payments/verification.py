"""
Payment verification: signature first, gateway second.

The gateway is never contacted for an assertion whose signature does not
check out, so unauthenticated callers learn nothing about which payment
ids exist.
"""

from typing import Optional

import structlog

from storefront.errors import PaymentNotSuccessfulError, SignatureVerificationError
from storefront.payments.gateway_client import IPaymentGateway
from storefront.payments.signature import SignatureVerifier
from storefront.schemas.payments import PaymentRecord

logger = structlog.get_logger().bind(component="payment_verifier")


class PaymentVerifier:

    def __init__(self, signatures: SignatureVerifier, gateway: IPaymentGateway):
        self.signatures = signatures
        self.gateway = gateway

    async def verify(
        self,
        gateway_order_id: Optional[str],
        gateway_payment_id: Optional[str],
        signature: Optional[str],
    ) -> PaymentRecord:
        """
        Verify a redirect assertion and fetch the payment it names.

        Raises:
            UnverifiableInputError: a field is missing
            SignatureVerificationError: signature mismatch
            GatewayUnavailableError / GatewayRequestError: from the gateway
        """
        log = logger.bind(payment_id=gateway_payment_id, gateway_order_id=gateway_order_id)

        if not self.signatures.verify_payment_assertion(gateway_order_id, gateway_payment_id, signature):
            log.warning("payment_signature_invalid")
            raise SignatureVerificationError("Invalid payment signature")

        payment = await self.gateway.fetch_payment(gateway_payment_id)

        if payment.order_id and payment.order_id != gateway_order_id:
            log.warning("payment_order_mismatch", gateway_reported_order_id=payment.order_id)

        log.info("payment_verified", status=payment.status, method=payment.method)
        return payment


def ensure_successful(payment: PaymentRecord) -> PaymentRecord:
    if not payment.is_successful:
        raise PaymentNotSuccessfulError(payment.id, payment.status)
    return payment
