import asyncio
from abc import ABC, abstractmethod
from typing import Optional

from storefront.schemas.orders import ShippingInfo


class ICustomerProfileStore(ABC):
    """Last-used shipping details per customer, for prefilling checkout"""

    @abstractmethod
    async def save_shipping_info(self, user_id: str, info: ShippingInfo) -> None:
        pass

    @abstractmethod
    async def get_shipping_info(self, user_id: str) -> Optional[ShippingInfo]:
        pass


class InMemoryCustomerProfileStore(ICustomerProfileStore):

    def __init__(self):
        self._profiles: dict[str, ShippingInfo] = {}
        self._lock = asyncio.Lock()

    async def save_shipping_info(self, user_id: str, info: ShippingInfo) -> None:
        async with self._lock:
            self._profiles[user_id] = info

    async def get_shipping_info(self, user_id: str) -> Optional[ShippingInfo]:
        async with self._lock:
            return self._profiles.get(user_id)
