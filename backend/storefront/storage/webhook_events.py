import asyncio
from abc import ABC, abstractmethod
from datetime import datetime

from storefront.schemas.orders import utcnow


class IWebhookEventLog(ABC):
    """Gateway event ids that have been fully processed"""

    @abstractmethod
    async def is_processed(self, event_id: str) -> bool:
        pass

    @abstractmethod
    async def mark_processed(self, event_id: str, event_type: str) -> None:
        pass


class InMemoryWebhookEventLog(IWebhookEventLog):

    def __init__(self):
        self._processed: dict[str, tuple[str, datetime]] = {}
        self._lock = asyncio.Lock()

    async def is_processed(self, event_id: str) -> bool:
        async with self._lock:
            return event_id in self._processed

    async def mark_processed(self, event_id: str, event_type: str) -> None:
        async with self._lock:
            self._processed.setdefault(event_id, (event_type, utcnow()))
