"""
Payment Gateway Client
======================
Async REST client for the payment gateway (Razorpay API v1).

- fetch_payment: authoritative payment status for a payment id
- create_order: gateway-side order that the checkout widget pays against

Every call carries a bounded timeout. Timeouts, transport failures and
gateway 5xx responses raise GatewayUnavailableError (transient); 4xx
responses raise GatewayRequestError.
"""

from abc import ABC, abstractmethod
from decimal import Decimal, ROUND_HALF_UP
from typing import Any, Dict, Optional

import httpx
import structlog

from storefront.config import settings
from storefront.errors import GatewayRequestError, GatewayUnavailableError
from storefront.schemas.payments import GatewayOrder, PaymentRecord

logger = structlog.get_logger().bind(component="gateway_client")


def to_minor_units(amount: Decimal) -> int:
    """Rupees to paise"""
    return int((Decimal(str(amount)) * 100).quantize(Decimal("1"), rounding=ROUND_HALF_UP))


class IPaymentGateway(ABC):
    """Gateway operations the service relies on"""

    @abstractmethod
    async def fetch_payment(self, payment_id: str) -> PaymentRecord:
        pass

    @abstractmethod
    async def create_order(
        self,
        amount: Decimal,
        currency: str,
        receipt: str,
        notes: Optional[Dict[str, Any]] = None,
    ) -> GatewayOrder:
        pass


class RazorpayClient(IPaymentGateway):
    """httpx-backed gateway client with basic auth"""

    def __init__(
        self,
        key_id: Optional[str] = None,
        key_secret: Optional[str] = None,
        base_url: Optional[str] = None,
        timeout_seconds: Optional[float] = None,
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ):
        self.key_id = key_id or settings.RAZORPAY_KEY_ID
        self._key_secret = key_secret or settings.RAZORPAY_KEY_SECRET
        self.base_url = base_url or settings.RAZORPAY_API_URL
        self.timeout_seconds = timeout_seconds or settings.GATEWAY_TIMEOUT_SECONDS
        self._transport = transport
        self._client: Optional[httpx.AsyncClient] = None

    async def initialize(self) -> None:
        if self._client is None:
            self._client = httpx.AsyncClient(
                base_url=self.base_url,
                timeout=self.timeout_seconds,
                auth=(self.key_id, self._key_secret),
                transport=self._transport,
            )
            logger.info("gateway_client_initialized", base_url=self.base_url,
                        timeout_seconds=self.timeout_seconds)

    async def close(self) -> None:
        if self._client:
            await self._client.aclose()
            self._client = None

    async def _request(self, method: str, path: str, **kwargs) -> Dict[str, Any]:
        await self.initialize()

        try:
            response = await self._client.request(method, path, **kwargs)
        except httpx.TimeoutException as e:
            logger.error("gateway_timeout", path=path, timeout_seconds=self.timeout_seconds)
            raise GatewayUnavailableError(
                f"Payment gateway did not respond within {self.timeout_seconds:g}s"
            ) from e
        except httpx.TransportError as e:
            logger.error("gateway_unreachable", path=path, error=str(e))
            raise GatewayUnavailableError(f"Payment gateway unreachable: {e}") from e

        if response.status_code >= 500:
            logger.error("gateway_server_error", path=path, status=response.status_code)
            raise GatewayUnavailableError(
                f"Payment gateway error (HTTP {response.status_code})"
            )

        if response.status_code >= 400:
            description = _error_description(response)
            logger.warning("gateway_request_rejected", path=path,
                           status=response.status_code, description=description)
            raise GatewayRequestError(description, gateway_status=response.status_code)

        return response.json()

    async def fetch_payment(self, payment_id: str) -> PaymentRecord:
        data = await self._request("GET", f"/payments/{payment_id}")
        payment = PaymentRecord(
            id=data["id"],
            order_id=data.get("order_id"),
            amount=data.get("amount", 0),
            currency=data.get("currency", "INR"),
            status=data["status"],
            method=data.get("method"),
            created_at=data.get("created_at"),
        )
        logger.info("payment_fetched", payment_id=payment.id, status=payment.status)
        return payment

    async def create_order(
        self,
        amount: Decimal,
        currency: str,
        receipt: str,
        notes: Optional[Dict[str, Any]] = None,
    ) -> GatewayOrder:
        data = await self._request("POST", "/orders", json={
            "amount": to_minor_units(amount),
            "currency": currency,
            "receipt": receipt,
            "notes": notes or {},
        })
        order = GatewayOrder(
            id=data["id"],
            amount=data["amount"],
            currency=data["currency"],
            receipt=data.get("receipt"),
            status=data.get("status"),
            notes=data.get("notes") or {},
        )
        logger.info("gateway_order_created", gateway_order_id=order.id, amount=order.amount)
        return order


def _error_description(response: httpx.Response) -> str:
    try:
        body = response.json()
    except ValueError:
        return f"Gateway rejected request (HTTP {response.status_code})"
    error = body.get("error") if isinstance(body, dict) else None
    if isinstance(error, dict) and error.get("description"):
        return error["description"]
    return f"Gateway rejected request (HTTP {response.status_code})"
