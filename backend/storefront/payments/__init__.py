# Payments - gateway signature checks and REST client

from .signature import SignatureVerifier, assertion_payload
from .gateway_client import IPaymentGateway, RazorpayClient, to_minor_units
from .verification import PaymentVerifier, ensure_successful

__all__ = [
    "SignatureVerifier",
    "assertion_payload",
    "IPaymentGateway",
    "RazorpayClient",
    "to_minor_units",
    "PaymentVerifier",
    "ensure_successful",
]
