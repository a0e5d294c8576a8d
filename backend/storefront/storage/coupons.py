import asyncio
from abc import ABC, abstractmethod
from typing import Optional

import structlog

from storefront.errors import CouponError
from storefront.schemas.coupons import Coupon

logger = structlog.get_logger().bind(component="coupon_store")


class ICouponRepository(ABC):

    @abstractmethod
    async def get_by_code(self, code: str) -> Optional[Coupon]:
        pass

    @abstractmethod
    async def save(self, coupon: Coupon) -> Coupon:
        pass

    @abstractmethod
    async def mark_used(self, code: str) -> int:
        """Increment used_count; returns the new count"""
        pass


class InMemoryCouponRepository(ICouponRepository):

    def __init__(self):
        self._coupons: dict[str, Coupon] = {}
        self._lock = asyncio.Lock()

    async def get_by_code(self, code: str) -> Optional[Coupon]:
        async with self._lock:
            return self._coupons.get(code.strip().upper())

    async def save(self, coupon: Coupon) -> Coupon:
        async with self._lock:
            self._coupons[coupon.code] = coupon
            return coupon

    async def mark_used(self, code: str) -> int:
        key = code.strip().upper()
        async with self._lock:
            coupon = self._coupons.get(key)
            if coupon is None:
                raise CouponError(f"Coupon not found: {key}")
            updated = coupon.model_copy(update={"used_count": coupon.used_count + 1})
            self._coupons[key] = updated
            logger.info("coupon_marked_used", code=key, used_count=updated.used_count)
            return updated.used_count
