"""
Error taxonomy for payment confirmation and order reconciliation.

Every error the HTTP layer translates into a response derives from
StorefrontError. Non-fatal auxiliary failures (coupon marking, saving a
shipping profile) are not raised; they surface as warnings on results.
"""

from typing import Optional


class StorefrontError(Exception):
    """Base class for all service errors"""

    status_code: int = 500

    def __init__(self, message: str):
        super().__init__(message)
        self.message = message


# =============================================================================
# CLIENT / AUTHENTICATION ERRORS
# =============================================================================

class SignatureVerificationError(StorefrontError):
    """Signature missing or not produced by the gateway"""

    status_code = 400


class UnverifiableInputError(StorefrontError):
    """Required fields for verification are absent"""

    status_code = 400

    def __init__(self, missing: list[str]):
        super().__init__(f"Missing payment verification data: {', '.join(missing)}")
        self.missing = missing


class MalformedWebhookError(StorefrontError):
    status_code = 400


class InvalidDraftError(StorefrontError):
    status_code = 400


class CouponError(StorefrontError):
    status_code = 400


# =============================================================================
# GATEWAY ERRORS
# =============================================================================

class GatewayUnavailableError(StorefrontError):
    """Gateway timed out or could not be reached. Transient."""

    status_code = 503


class GatewayRequestError(StorefrontError):
    """Gateway rejected the request (4xx)"""

    status_code = 502

    def __init__(self, message: str, gateway_status: Optional[int] = None):
        super().__init__(message)
        self.gateway_status = gateway_status


class PaymentNotSuccessfulError(StorefrontError):
    """Gateway reports a status other than captured/authorized"""

    status_code = 402

    def __init__(self, payment_id: str, status: str):
        super().__init__(f"Payment status: {status}")
        self.payment_id = payment_id
        self.status = status


# =============================================================================
# ORDER STORE ERRORS
# =============================================================================

class OrderNotFoundError(StorefrontError):
    status_code = 404


class DuplicateOrderError(StorefrontError):
    """An order already exists for the gateway payment id or order id"""

    status_code = 409

    def __init__(self, existing):
        super().__init__(f"Order already exists: {existing.id}")
        self.existing = existing


class OrderCreationError(StorefrontError):
    """Payment verified but the order could not be persisted"""

    status_code = 500

    def __init__(self, payment_id: str, cause: Optional[BaseException] = None):
        super().__init__(
            "Payment was successful but order creation failed. "
            f"Please contact support with your payment ID: {payment_id}"
        )
        self.payment_id = payment_id
        self.cause = cause
