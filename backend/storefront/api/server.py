"""
Storefront Payments Server
==========================
FastAPI surface for the payment confirmation flow:
- POST /webhook           gateway webhooks (signed)
- POST /verify-payment    redirect assertion verification
- POST /create-order      checkout staging + gateway order
- GET  /payment/confirm   redirect landing: verify, reconcile, clear draft
- GET  /orders/{key}      track order by id or order number
- GET  /health

pip install fastapi uvicorn pydantic structlog httpx asyncpg redis razorpay
"""

from contextlib import asynccontextmanager
from datetime import datetime, timezone
from typing import Any, Dict, Optional

import structlog
import uvicorn
from fastapi import FastAPI, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from pydantic import BaseModel

from storefront.checkout import CheckoutSession
from storefront.config import settings
from storefront.confirmation import ConfirmationReason, RedirectParams
from storefront.errors import (
    GatewayRequestError,
    GatewayUnavailableError,
    MalformedWebhookError,
    SignatureVerificationError,
    StorefrontError,
    UnverifiableInputError,
)
from storefront.log import configure_logging
from storefront.schemas.orders import OrderDraft
from storefront.services import ServiceContainer, build_services

logger = structlog.get_logger().bind(component="server")

START_TIME = datetime.now(timezone.utc)

CONFIRMATION_HTTP_STATUS = {
    ConfirmationReason.CONFIRMED: 200,
    ConfirmationReason.ALREADY_CONFIRMED: 200,
    ConfirmationReason.ALREADY_HANDLED: 200,
    ConfirmationReason.CANCELLED: 400,
    ConfirmationReason.MISSING_INFORMATION: 400,
    ConfirmationReason.VERIFICATION_FAILED: 400,
    ConfirmationReason.PAYMENT_NOT_SUCCESSFUL: 402,
    ConfirmationReason.GATEWAY_ERROR: 502,
    ConfirmationReason.GATEWAY_UNREACHABLE: 503,
    ConfirmationReason.ORDER_CREATION_FAILED: 500,
}


# =============================================================================
# REQUEST/RESPONSE MODELS
# =============================================================================

class VerifyPaymentRequest(BaseModel):
    razorpay_order_id: Optional[str] = None
    razorpay_payment_id: Optional[str] = None
    razorpay_signature: Optional[str] = None


class CreateOrderRequest(OrderDraft):
    receipt: Optional[str] = None
    notes: Dict[str, Any] = {}


class HealthResponse(BaseModel):
    status: str
    version: str
    uptime_seconds: float
    storage_backend: str


# =============================================================================
# APP FACTORY
# =============================================================================

def create_app(services: Optional[ServiceContainer] = None) -> FastAPI:
    """
    Build the app. With no container, stores are wired from settings at
    startup and torn down at shutdown.
    """

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        owned = app.state.services is None
        if owned:
            app.state.services = await build_services()
        logger.info("server_started", env=settings.ENV,
                    storage_backend=app.state.services.config.STORAGE_BACKEND)

        yield

        await app.state.services.close()
        if owned and app.state.services.config.STORAGE_BACKEND == "postgres":
            from storefront.storage.database import Database
            await Database.close()
        logger.info("server_stopped")

    app = FastAPI(
        title="Storefront Payments",
        description="Payment confirmation and order reconciliation",
        version="1.0.0",
        lifespan=lifespan,
    )
    app.state.services = services

    app.add_middleware(
        CORSMiddleware,
        allow_origins=settings.CORS_ORIGINS,
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )

    @app.exception_handler(StorefrontError)
    async def storefront_error_handler(request: Request, exc: StorefrontError):
        return JSONResponse(status_code=exc.status_code, content={"error": exc.message})

    def get_services(request: Request) -> ServiceContainer:
        return request.app.state.services

    # =========================================================================
    # WEBHOOK
    # =========================================================================

    @app.post("/webhook")
    async def gateway_webhook(request: Request):
        """Gateway webhook: 200 for processed or ignored, 400 bad signature, 500 retry."""
        payload = await request.body()
        signature = request.headers.get("x-razorpay-signature")
        event_id = request.headers.get("x-razorpay-event-id")

        try:
            return await get_services(request).webhooks.process(payload, signature, event_id)
        except (SignatureVerificationError, MalformedWebhookError) as e:
            return JSONResponse(status_code=400, content={"error": e.message})
        except Exception as e:
            logger.error("webhook_processing_failed", error=str(e),
                         error_type=type(e).__name__, event_id=event_id)
            return JSONResponse(status_code=500, content={"error": "Webhook processing failed"})

    @app.get("/webhook")
    async def webhook_ping():
        return {
            "message": "Payment webhook endpoint is active",
            "endpoint": "/webhook",
        }

    # =========================================================================
    # PAYMENT VERIFICATION
    # =========================================================================

    @app.post("/verify-payment")
    async def verify_payment(body: VerifyPaymentRequest, request: Request):
        try:
            payment = await get_services(request).verifier.verify(
                body.razorpay_order_id, body.razorpay_payment_id, body.razorpay_signature
            )
        except UnverifiableInputError:
            return JSONResponse(status_code=400, content={
                "error": "Missing payment verification data", "verified": False,
            })
        except SignatureVerificationError:
            return JSONResponse(status_code=400, content={
                "error": "Invalid payment signature", "verified": False,
            })
        except (GatewayUnavailableError, GatewayRequestError) as e:
            return JSONResponse(status_code=e.status_code, content={
                "error": e.message, "verified": False,
            })
        except Exception as e:
            logger.error("verify_payment_failed", error=str(e), error_type=type(e).__name__)
            return JSONResponse(status_code=500, content={
                "error": "Failed to verify payment", "verified": False,
            })

        return {
            "verified": True,
            "payment": payment.model_dump(mode="json", exclude={"is_successful"}),
        }

    # =========================================================================
    # CHECKOUT + CONFIRMATION
    # =========================================================================

    @app.post("/create-order", response_model=CheckoutSession)
    async def create_order(body: CreateOrderRequest, request: Request):
        draft = OrderDraft.model_validate(body.model_dump(exclude={"receipt", "notes"}))
        return await get_services(request).checkout.begin(draft, receipt=body.receipt, notes=body.notes)

    @app.get("/payment/confirm")
    async def confirm_payment(
        request: Request,
        razorpay_payment_id: Optional[str] = None,
        razorpay_order_id: Optional[str] = None,
        razorpay_signature: Optional[str] = None,
        status: Optional[str] = None,
        draft_token: Optional[str] = None,
    ):
        result = await get_services(request).confirmation.confirm(RedirectParams(
            razorpay_payment_id=razorpay_payment_id,
            razorpay_order_id=razorpay_order_id,
            razorpay_signature=razorpay_signature,
            status=status,
            draft_token=draft_token,
        ))
        return JSONResponse(
            status_code=CONFIRMATION_HTTP_STATUS[result.reason],
            content=result.model_dump(mode="json"),
        )

    # =========================================================================
    # ORDERS
    # =========================================================================

    @app.get("/orders/{id_or_number}")
    async def track_order(id_or_number: str, request: Request):
        order = await get_services(request).orders.get_by_id_or_number(id_or_number)
        if order is None:
            return JSONResponse(status_code=404, content={"error": "Order not found"})
        return order.model_dump(mode="json")

    @app.get("/health", response_model=HealthResponse)
    async def health(request: Request):
        return HealthResponse(
            status="healthy",
            version=app.version,
            uptime_seconds=(datetime.now(timezone.utc) - START_TIME).total_seconds(),
            storage_backend=get_services(request).config.STORAGE_BACKEND,
        )

    return app


def main():
    configure_logging()
    uvicorn.run(create_app(), host=settings.HOST, port=settings.PORT)


if __name__ == "__main__":
    main()
