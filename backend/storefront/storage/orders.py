"""
Order Store
===========
Persistence interface for orders plus the in-memory implementation.

Lookups by gateway payment id and gateway order id go through unique
secondary indexes; both keys are unique across orders so that two
confirmation paths racing for the same payment cannot both insert.
"""

import asyncio
import uuid
from abc import ABC, abstractmethod
from typing import Iterable, Optional

import structlog

from storefront.errors import DuplicateOrderError, OrderNotFoundError
from storefront.schemas.orders import Order, OrderStatus, utcnow

logger = structlog.get_logger().bind(component="order_store")


class IOrderRepository(ABC):
    """Order-specific repository interface"""

    @abstractmethod
    async def create(self, order: Order) -> Order:
        """
        Assign id and order number, then persist.

        Raises DuplicateOrderError if an order already holds the same
        gateway payment id or gateway order id.
        """
        pass

    @abstractmethod
    async def get(self, order_id: str) -> Optional[Order]:
        pass

    @abstractmethod
    async def list_all(self) -> list[Order]:
        """Full scan, newest first. Not for reconciliation lookups."""
        pass

    @abstractmethod
    async def find_by_payment_key(
        self,
        gateway_payment_id: Optional[str] = None,
        gateway_order_id: Optional[str] = None,
    ) -> Optional[Order]:
        pass

    @abstractmethod
    async def find_by_order_number(self, order_number: str) -> Optional[Order]:
        pass

    @abstractmethod
    async def update_status(
        self,
        order_id: str,
        status: OrderStatus,
        from_statuses: Optional[Iterable[OrderStatus]] = None,
    ) -> bool:
        """
        Set the order's status.

        Returns False without writing when the order is already in the
        target status, or when from_statuses is given and the current
        status is not among them. Raises OrderNotFoundError for unknown ids.
        """
        pass

    async def get_by_id_or_number(self, value: str) -> Optional[Order]:
        order = await self.get(value)
        if order:
            return order
        return await self.find_by_order_number(value)


class InMemoryOrderRepository(IOrderRepository):
    """In-memory order repository with unique key indexes"""

    def __init__(self):
        self._orders: dict[str, Order] = {}
        self._by_payment_id: dict[str, str] = {}
        self._by_gateway_order_id: dict[str, str] = {}
        self._by_order_number: dict[str, str] = {}
        self._lock = asyncio.Lock()

    def _lookup(self, gateway_payment_id: Optional[str], gateway_order_id: Optional[str]) -> Optional[Order]:
        if gateway_payment_id and gateway_payment_id in self._by_payment_id:
            return self._orders[self._by_payment_id[gateway_payment_id]]
        if gateway_order_id and gateway_order_id in self._by_gateway_order_id:
            return self._orders[self._by_gateway_order_id[gateway_order_id]]
        return None

    def _new_order_number(self) -> str:
        while True:
            number = Order.generate_order_number()
            if number not in self._by_order_number:
                return number

    async def create(self, order: Order) -> Order:
        payment = order.payment_info
        async with self._lock:
            existing = self._lookup(payment.gateway_payment_id, payment.gateway_order_id)
            if existing:
                logger.info("order_duplicate_rejected",
                            existing_order_id=existing.id,
                            payment_id=payment.gateway_payment_id)
                raise DuplicateOrderError(existing)

            now = utcnow()
            stored = order.model_copy(update={
                "id": str(uuid.uuid4()),
                "order_number": self._new_order_number(),
                "created_at": now,
                "updated_at": now,
            })

            self._orders[stored.id] = stored
            self._by_order_number[stored.order_number] = stored.id
            if payment.gateway_payment_id:
                self._by_payment_id[payment.gateway_payment_id] = stored.id
            if payment.gateway_order_id:
                self._by_gateway_order_id[payment.gateway_order_id] = stored.id

            logger.info("order_stored", order_id=stored.id, order_number=stored.order_number,
                        status=stored.status.value)
            return stored

    async def get(self, order_id: str) -> Optional[Order]:
        async with self._lock:
            return self._orders.get(order_id)

    async def list_all(self) -> list[Order]:
        async with self._lock:
            return sorted(self._orders.values(), key=lambda o: o.created_at, reverse=True)

    async def find_by_payment_key(
        self,
        gateway_payment_id: Optional[str] = None,
        gateway_order_id: Optional[str] = None,
    ) -> Optional[Order]:
        async with self._lock:
            return self._lookup(gateway_payment_id, gateway_order_id)

    async def find_by_order_number(self, order_number: str) -> Optional[Order]:
        async with self._lock:
            order_id = self._by_order_number.get(order_number.strip().upper())
            return self._orders.get(order_id) if order_id else None

    async def update_status(
        self,
        order_id: str,
        status: OrderStatus,
        from_statuses: Optional[Iterable[OrderStatus]] = None,
    ) -> bool:
        async with self._lock:
            order = self._orders.get(order_id)
            if order is None:
                raise OrderNotFoundError(f"Order not found: {order_id}")
            if order.status == status:
                return False
            if from_statuses is not None and order.status not in set(from_statuses):
                return False

            self._orders[order_id] = order.transition_to(status)
            logger.info("order_status_updated", order_id=order_id,
                        previous_status=order.status.value, status=status.value)
            return True
