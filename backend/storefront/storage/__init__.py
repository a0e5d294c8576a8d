# storage/__init__.py
# ============================================================================
# STOREFRONT PAYMENTS — STORAGE MODULE
# ============================================================================
# Repository interfaces with in-memory and PostgreSQL/Redis implementations
# ============================================================================

from storefront.storage.orders import IOrderRepository, InMemoryOrderRepository
from storefront.storage.drafts import IDraftStore, InMemoryDraftStore, RedisDraftStore
from storefront.storage.coupons import ICouponRepository, InMemoryCouponRepository
from storefront.storage.customers import ICustomerProfileStore, InMemoryCustomerProfileStore
from storefront.storage.webhook_events import IWebhookEventLog, InMemoryWebhookEventLog

__all__ = [
    "IOrderRepository",
    "InMemoryOrderRepository",
    "IDraftStore",
    "InMemoryDraftStore",
    "RedisDraftStore",
    "ICouponRepository",
    "InMemoryCouponRepository",
    "ICustomerProfileStore",
    "InMemoryCustomerProfileStore",
    "IWebhookEventLog",
    "InMemoryWebhookEventLog",
]
