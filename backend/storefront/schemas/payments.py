# schemas/payments.py
# ============================================================================
# STOREFRONT PAYMENTS — GATEWAY SCHEMAS
# ============================================================================
# Payment records, gateway orders, webhook envelopes, confirmation events
# ============================================================================

from typing import Any, Dict, Optional

from pydantic import BaseModel, Field, computed_field

# Gateway statuses that mean money has been secured
SUCCESSFUL_PAYMENT_STATUSES = frozenset({"captured", "authorized"})


class PaymentRecord(BaseModel):
    """Authoritative payment state as reported by the gateway."""
    id: str
    order_id: Optional[str] = None
    amount: int = 0  # minor units (paise)
    currency: str = "INR"
    status: str
    method: Optional[str] = None
    created_at: Optional[int] = None  # unix seconds

    @computed_field
    @property
    def is_successful(self) -> bool:
        return self.status in SUCCESSFUL_PAYMENT_STATUSES


class GatewayOrder(BaseModel):
    id: str
    amount: int
    currency: str
    receipt: Optional[str] = None
    status: Optional[str] = None
    notes: Dict[str, Any] = Field(default_factory=dict)


class ConfirmationEvent(BaseModel):
    """A verified observation that a payment happened."""
    gateway_order_id: Optional[str] = None
    gateway_payment_id: Optional[str] = None
    verified_payment_status: Optional[str] = None
    payment_method: Optional[str] = None
    gateway_signature: Optional[str] = None

    @classmethod
    def from_payment(cls, payment: PaymentRecord, signature: Optional[str] = None) -> "ConfirmationEvent":
        return cls(
            gateway_order_id=payment.order_id,
            gateway_payment_id=payment.id,
            verified_payment_status=payment.status,
            payment_method=payment.method,
            gateway_signature=signature,
        )


class WebhookEnvelope(BaseModel):
    """Body of a gateway webhook delivery."""
    event: str
    payload: Dict[str, Any] = Field(default_factory=dict)

    def entity(self, name: str) -> Dict[str, Any]:
        container = self.payload.get(name) or {}
        return container.get("entity") or {}
