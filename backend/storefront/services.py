# storefront/services.py
# ============================================================================
# STOREFRONT PAYMENTS — SERVICE WIRING
# ============================================================================
# Builds the verifier / reconciler / flows on top of one set of stores
# ============================================================================

from typing import Optional

import structlog

from storefront.checkout import CheckoutService
from storefront.config import Settings, settings as default_settings
from storefront.confirmation import ClientConfirmationFlow
from storefront.payments.gateway_client import IPaymentGateway, RazorpayClient
from storefront.payments.signature import SignatureVerifier
from storefront.payments.verification import PaymentVerifier
from storefront.reconciliation.reconciler import OrderReconciler
from storefront.storage.coupons import ICouponRepository, InMemoryCouponRepository
from storefront.storage.customers import ICustomerProfileStore, InMemoryCustomerProfileStore
from storefront.storage.drafts import IDraftStore, InMemoryDraftStore, RedisDraftStore
from storefront.storage.orders import IOrderRepository, InMemoryOrderRepository
from storefront.storage.webhook_events import IWebhookEventLog, InMemoryWebhookEventLog
from storefront.webhooks import WebhookProcessor

logger = structlog.get_logger().bind(component="services")


class ServiceContainer:
    """
    One wired instance of every component.

    Stores default to in-memory implementations; pass real ones to swap
    PostgreSQL/Redis in without touching the flows.
    """

    def __init__(
        self,
        config: Optional[Settings] = None,
        orders: Optional[IOrderRepository] = None,
        drafts: Optional[IDraftStore] = None,
        coupons: Optional[ICouponRepository] = None,
        customers: Optional[ICustomerProfileStore] = None,
        webhook_events: Optional[IWebhookEventLog] = None,
        gateway: Optional[IPaymentGateway] = None,
    ):
        self.config = config or default_settings

        # Dependency injection with defaults
        self.orders = orders or InMemoryOrderRepository()
        self.drafts = drafts or InMemoryDraftStore(self.config.DRAFT_TTL_SECONDS)
        self.coupons = coupons or InMemoryCouponRepository()
        self.customers = customers or InMemoryCustomerProfileStore()
        self.webhook_events = webhook_events or InMemoryWebhookEventLog()
        self.gateway = gateway or RazorpayClient(
            key_id=self.config.RAZORPAY_KEY_ID,
            key_secret=self.config.RAZORPAY_KEY_SECRET,
            base_url=self.config.RAZORPAY_API_URL,
            timeout_seconds=self.config.GATEWAY_TIMEOUT_SECONDS,
        )

        self.signatures = SignatureVerifier(self.config.RAZORPAY_KEY_SECRET, key_id=self.config.RAZORPAY_KEY_ID)
        self.webhook_signatures = SignatureVerifier(self.config.RAZORPAY_WEBHOOK_SECRET)

        self.verifier = PaymentVerifier(self.signatures, self.gateway)
        self.reconciler = OrderReconciler(self.orders, self.coupons, self.customers)
        self.webhooks = WebhookProcessor(self.webhook_signatures, self.reconciler, self.webhook_events)
        self.confirmation = ClientConfirmationFlow(self.verifier, self.reconciler, self.drafts)
        self.checkout = CheckoutService(self.gateway, self.drafts, self.coupons)

    async def close(self) -> None:
        if isinstance(self.gateway, RazorpayClient):
            await self.gateway.close()
        if isinstance(self.drafts, RedisDraftStore):
            await self.drafts.close()


async def build_services(config: Optional[Settings] = None) -> ServiceContainer:
    """Wire stores according to STORAGE_BACKEND / REDIS_URL."""
    config = config or default_settings
    stores = {}

    if config.STORAGE_BACKEND == "postgres":
        from storefront.storage.database import Database
        from storefront.storage.postgres import (
            PostgresCouponRepository,
            PostgresCustomerProfileStore,
            PostgresOrderRepository,
            PostgresWebhookEventLog,
        )

        await Database.initialize(config.DATABASE_URL)
        stores.update(
            orders=PostgresOrderRepository(),
            coupons=PostgresCouponRepository(),
            customers=PostgresCustomerProfileStore(),
            webhook_events=PostgresWebhookEventLog(),
        )
        logger.info("storage_backend_selected", backend="postgres")
    else:
        logger.warning("storage_backend_selected", backend="memory",
                       detail="orders are lost on restart")

    if config.REDIS_URL:
        stores["drafts"] = await RedisDraftStore.connect(config.REDIS_URL)

    return ServiceContainer(config=config, **stores)
