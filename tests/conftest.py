import hashlib
import hmac
import json
from decimal import Decimal
from typing import Any, Dict, Optional

import pytest

from storefront.config import Settings
from storefront.errors import GatewayRequestError
from storefront.payments.gateway_client import IPaymentGateway, to_minor_units
from storefront.payments.signature import SignatureVerifier, assertion_payload
from storefront.payments.verification import PaymentVerifier
from storefront.reconciliation.reconciler import OrderReconciler
from storefront.schemas.coupons import Coupon
from storefront.schemas.orders import OrderDraft
from storefront.schemas.payments import GatewayOrder, PaymentRecord
from storefront.storage.coupons import InMemoryCouponRepository
from storefront.storage.customers import InMemoryCustomerProfileStore
from storefront.storage.drafts import InMemoryDraftStore
from storefront.storage.orders import InMemoryOrderRepository
from storefront.storage.webhook_events import InMemoryWebhookEventLog

KEY_SECRET = "test_key_secret"
WEBHOOK_SECRET = "test_webhook_secret"


def gateway_sign(secret: str, payload) -> str:
    """Sign the way the gateway does: hex HMAC-SHA256"""
    if isinstance(payload, str):
        payload = payload.encode()
    return hmac.new(secret.encode(), payload, hashlib.sha256).hexdigest()


class StubSettings(Settings):
    RAZORPAY_KEY_ID = "rzp_test_key"
    RAZORPAY_KEY_SECRET = KEY_SECRET
    RAZORPAY_WEBHOOK_SECRET = WEBHOOK_SECRET
    STORAGE_BACKEND = "memory"
    REDIS_URL = None
    DRAFT_TTL_SECONDS = 1800


class FakeGateway(IPaymentGateway):
    """Gateway double that records every call"""

    def __init__(self):
        self.payments: Dict[str, PaymentRecord] = {}
        self.fetch_calls: list[str] = []
        self.created_orders: list[GatewayOrder] = []
        self.error: Optional[Exception] = None

    def add_payment(self, payment_id: str, order_id: str, status: str = "captured",
                    amount: int = 105000, method: str = "upi") -> PaymentRecord:
        payment = PaymentRecord(id=payment_id, order_id=order_id, amount=amount,
                                status=status, method=method)
        self.payments[payment_id] = payment
        return payment

    async def fetch_payment(self, payment_id: str) -> PaymentRecord:
        self.fetch_calls.append(payment_id)
        if self.error:
            raise self.error
        if payment_id not in self.payments:
            raise GatewayRequestError("The id provided does not exist", gateway_status=400)
        return self.payments[payment_id]

    async def create_order(self, amount: Decimal, currency: str, receipt: str,
                           notes: Optional[Dict[str, Any]] = None) -> GatewayOrder:
        if self.error:
            raise self.error
        order = GatewayOrder(
            id=f"order_test{len(self.created_orders) + 1}",
            amount=to_minor_units(amount),
            currency=currency,
            receipt=receipt,
            status="created",
            notes=notes or {},
        )
        self.created_orders.append(order)
        return order


# =============================================================================
# STORES
# =============================================================================

@pytest.fixture
def orders():
    return InMemoryOrderRepository()


@pytest.fixture
def drafts():
    return InMemoryDraftStore(default_ttl_seconds=1800)


@pytest.fixture
def coupons():
    return InMemoryCouponRepository()


@pytest.fixture
def customers():
    return InMemoryCustomerProfileStore()


@pytest.fixture
def event_log():
    return InMemoryWebhookEventLog()


@pytest.fixture
def gateway():
    return FakeGateway()


# =============================================================================
# COMPONENTS
# =============================================================================

@pytest.fixture
def signatures():
    return SignatureVerifier(KEY_SECRET)


@pytest.fixture
def webhook_signatures():
    return SignatureVerifier(WEBHOOK_SECRET)


@pytest.fixture
def verifier(signatures, gateway):
    return PaymentVerifier(signatures, gateway)


@pytest.fixture
def reconciler(orders, coupons, customers):
    return OrderReconciler(orders, coupons, customers)


# =============================================================================
# FACTORIES
# =============================================================================

@pytest.fixture
def make_draft():
    def _make(**overrides) -> OrderDraft:
        data = {
            "user_id": "user_1",
            "items": [
                {"product_id": "p1", "name": "Linen Shirt", "price": "500.00", "quantity": 2,
                 "selected_color": "white", "selected_size": "M"},
            ],
            "shipping_info": {
                "first_name": "Asha", "last_name": "Rao", "email": "asha@example.com",
                "phone": "9876543210", "address": "12 MG Road", "city": "Bengaluru",
                "state": "KA", "zip_code": "560001",
            },
            "subtotal": "1000.00",
            "shipping": "50.00",
            "tax": "0.00",
            "discount": "0.00",
            "total": "1050.00",
        }
        data.update(overrides)
        return OrderDraft.model_validate(data)
    return _make


@pytest.fixture
def make_coupon():
    def _make(**overrides) -> Coupon:
        data = {
            "code": "SAVE10",
            "discount_type": "percentage",
            "discount_value": "10",
            "min_purchase_amount": "500",
            "max_discount_amount": "150",
            "expires_at": "2099-12-31T23:59:59+00:00",
            "usage_limit": 100,
        }
        data.update(overrides)
        return Coupon.model_validate(data)
    return _make


@pytest.fixture
def sign_assertion():
    def _sign(gateway_order_id: str, gateway_payment_id: str) -> str:
        return gateway_sign(KEY_SECRET, assertion_payload(gateway_order_id, gateway_payment_id))
    return _sign


@pytest.fixture
def webhook_body():
    def _body(event: str, payment_id: Optional[str] = None, order_id: Optional[str] = None,
              status: str = "captured") -> bytes:
        payload: Dict[str, Any] = {}
        if event.startswith("payment."):
            payload["payment"] = {"entity": {
                "id": payment_id, "order_id": order_id, "status": status,
                "method": "upi", "amount": 105000, "currency": "INR",
            }}
        elif event.startswith("order."):
            payload["order"] = {"entity": {"id": order_id, "status": "paid"}}
        return json.dumps({"entity": "event", "event": event, "payload": payload}).encode()
    return _body
