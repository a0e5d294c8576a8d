"""
Gateway signature verification.

The gateway signs two kinds of payloads with HMAC-SHA256:
- redirect assertions: "{gateway_order_id}|{gateway_payment_id}"
- webhook deliveries: the raw request body, byte for byte

Checks go through the Razorpay SDK's utility. A mismatch is a normal
negative result, never an exception.
"""

from typing import Optional, Union

import razorpay
import structlog
from razorpay.errors import SignatureVerificationError as GatewaySignatureError

from storefront.errors import UnverifiableInputError

logger = structlog.get_logger().bind(component="signature_verifier")


def assertion_payload(gateway_order_id: str, gateway_payment_id: str) -> str:
    return f"{gateway_order_id}|{gateway_payment_id}"


class SignatureVerifier:
    """Verifier bound to one shared secret."""

    def __init__(self, secret: str, key_id: Optional[str] = None):
        if not secret:
            raise ValueError("Signature secret must not be empty")
        self._secret = secret
        self._utility = razorpay.Client(auth=(key_id or "", secret)).utility

    def verify(self, payload: Union[bytes, str], signature: Optional[str]) -> bool:
        """Webhook check: signature over the raw body."""
        if not signature or not signature.isascii():
            return False
        if isinstance(payload, bytes):
            try:
                payload = payload.decode("utf-8")
            except UnicodeDecodeError:
                logger.warning("signature_payload_not_utf8")
                return False

        try:
            return bool(self._utility.verify_webhook_signature(payload, signature, self._secret))
        except GatewaySignatureError:
            return False

    def verify_payment_assertion(
        self,
        gateway_order_id: Optional[str],
        gateway_payment_id: Optional[str],
        signature: Optional[str],
    ) -> bool:
        """
        Verify a redirect assertion.

        Raises UnverifiableInputError when any field is absent, so callers
        can tell "could not check" apart from "checked and wrong".
        """
        missing = [
            name for name, value in (
                ("razorpay_order_id", gateway_order_id),
                ("razorpay_payment_id", gateway_payment_id),
                ("razorpay_signature", signature),
            )
            if not value
        ]
        if missing:
            raise UnverifiableInputError(missing)

        if not signature.isascii():
            return False

        try:
            return bool(self._utility.verify_payment_signature({
                "razorpay_order_id": gateway_order_id,
                "razorpay_payment_id": gateway_payment_id,
                "razorpay_signature": signature,
            }))
        except GatewaySignatureError:
            return False
