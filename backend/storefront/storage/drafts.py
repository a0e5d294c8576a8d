"""
Draft reservations.

Checkout stages the cart and shipping snapshot server-side and hands the
browser a short-lived token. The confirmation flow reads the draft back
with that token after the gateway redirect and discards it once the order
exists. Only the first discard after staging reports True.
"""

import asyncio
import secrets
from abc import ABC, abstractmethod
from datetime import datetime, timedelta
from typing import Optional

import structlog

from storefront.config import settings
from storefront.schemas.orders import DraftReservation, OrderDraft, utcnow

logger = structlog.get_logger().bind(component="draft_store")


def new_draft_token() -> str:
    return secrets.token_urlsafe(24)


class IDraftStore(ABC):

    @abstractmethod
    async def stage(self, draft: OrderDraft, ttl_seconds: Optional[int] = None) -> DraftReservation:
        pass

    @abstractmethod
    async def peek(self, token: str) -> Optional[OrderDraft]:
        """Return the draft if the token is known and unexpired"""
        pass

    @abstractmethod
    async def discard(self, token: str) -> bool:
        """Remove the draft. True only if this call removed it."""
        pass


class InMemoryDraftStore(IDraftStore):
    """Draft cache with expiry"""

    def __init__(self, default_ttl_seconds: Optional[int] = None):
        self.default_ttl_seconds = default_ttl_seconds or settings.DRAFT_TTL_SECONDS
        self._drafts: dict[str, tuple[OrderDraft, datetime]] = {}
        self._lock = asyncio.Lock()

    async def stage(self, draft: OrderDraft, ttl_seconds: Optional[int] = None) -> DraftReservation:
        token = new_draft_token()
        expires_at = utcnow() + timedelta(seconds=ttl_seconds or self.default_ttl_seconds)
        async with self._lock:
            self._drafts[token] = (draft, expires_at)
        logger.info("draft_staged", gateway_order_id=draft.gateway_order_id,
                    expires_at=expires_at.isoformat())
        return DraftReservation(token=token, expires_at=expires_at)

    async def peek(self, token: str) -> Optional[OrderDraft]:
        async with self._lock:
            entry = self._drafts.get(token)
            if entry:
                draft, expires = entry
                if utcnow() < expires:
                    return draft
                del self._drafts[token]
            return None

    async def discard(self, token: str) -> bool:
        async with self._lock:
            entry = self._drafts.pop(token, None)
            return entry is not None and utcnow() < entry[1]


class RedisDraftStore(IDraftStore):
    """Drafts as JSON strings under draft:<token> with a Redis TTL"""

    KEY_PREFIX = "draft:"

    def __init__(self, redis_client, default_ttl_seconds: Optional[int] = None):
        self._redis = redis_client
        self.default_ttl_seconds = default_ttl_seconds or settings.DRAFT_TTL_SECONDS

    @classmethod
    async def connect(cls, url: Optional[str] = None) -> "RedisDraftStore":
        import redis.asyncio as redis
        client = redis.from_url(url or settings.REDIS_URL)
        await client.ping()
        logger.info("redis_connected", url=(url or settings.REDIS_URL)[:20] + "...")
        return cls(client)

    async def close(self) -> None:
        await self._redis.aclose()

    async def stage(self, draft: OrderDraft, ttl_seconds: Optional[int] = None) -> DraftReservation:
        token = new_draft_token()
        ttl = ttl_seconds or self.default_ttl_seconds
        await self._redis.setex(f"{self.KEY_PREFIX}{token}", ttl, draft.model_dump_json())
        expires_at = utcnow() + timedelta(seconds=ttl)
        logger.info("draft_staged", gateway_order_id=draft.gateway_order_id,
                    expires_at=expires_at.isoformat())
        return DraftReservation(token=token, expires_at=expires_at)

    async def peek(self, token: str) -> Optional[OrderDraft]:
        data = await self._redis.get(f"{self.KEY_PREFIX}{token}")
        if not data:
            return None
        return OrderDraft.model_validate_json(data)

    async def discard(self, token: str) -> bool:
        return await self._redis.delete(f"{self.KEY_PREFIX}{token}") == 1
