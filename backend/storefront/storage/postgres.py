"""
PostgreSQL implementations of the storage interfaces.

Insert-or-detect-conflict: order creation relies on the unique indexes on
gateway_payment_id / gateway_order_id and turns a violation into
DuplicateOrderError carrying the row that won.
"""

import uuid
from typing import Iterable, Optional

import asyncpg
import structlog

from storefront.errors import CouponError, DuplicateOrderError, OrderNotFoundError
from storefront.schemas.coupons import Coupon
from storefront.schemas.orders import Order, OrderStatus, ShippingInfo, utcnow
from storefront.storage.coupons import ICouponRepository
from storefront.storage.customers import ICustomerProfileStore
from storefront.storage.database import Database, load_json, rows_affected
from storefront.storage.orders import IOrderRepository
from storefront.storage.webhook_events import IWebhookEventLog

logger = structlog.get_logger().bind(component="postgres_store")

ORDER_NUMBER_CONSTRAINT = "orders_order_number_key"
MAX_ORDER_NUMBER_ATTEMPTS = 5


def _row_to_order(row: asyncpg.Record) -> Order:
    document = load_json(row["document"])
    document.update({
        "id": row["id"],
        "order_number": row["order_number"],
        "status": row["status"],
        "created_at": row["created_at"],
        "updated_at": row["updated_at"],
    })
    return Order.model_validate(document)


class PostgresOrderRepository(IOrderRepository):

    def __init__(self, db=Database):
        self.db = db

    async def create(self, order: Order) -> Order:
        payment = order.payment_info

        for _ in range(MAX_ORDER_NUMBER_ATTEMPTS):
            now = utcnow()
            stored = order.model_copy(update={
                "id": str(uuid.uuid4()),
                "order_number": Order.generate_order_number(now),
                "created_at": now,
                "updated_at": now,
            })
            try:
                await self.db.execute(
                    """
                    INSERT INTO orders
                    (id, order_number, user_id, gateway_order_id, gateway_payment_id,
                     status, document, created_at, updated_at)
                    VALUES ($1, $2, $3, $4, $5, $6, $7::jsonb, $8, $9)
                    """,
                    stored.id,
                    stored.order_number,
                    stored.user_id,
                    payment.gateway_order_id,
                    payment.gateway_payment_id,
                    stored.status.value,
                    stored.model_dump_json(exclude={"id", "order_number", "status", "created_at", "updated_at"}),
                    now,
                    now,
                )
            except asyncpg.UniqueViolationError as e:
                if e.constraint_name == ORDER_NUMBER_CONSTRAINT:
                    continue
                existing = await self.find_by_payment_key(payment.gateway_payment_id, payment.gateway_order_id)
                if existing is None:
                    raise
                logger.info("order_duplicate_rejected", existing_order_id=existing.id,
                            payment_id=payment.gateway_payment_id)
                raise DuplicateOrderError(existing) from e

            logger.info("order_stored", order_id=stored.id, order_number=stored.order_number,
                        status=stored.status.value)
            return stored

        raise RuntimeError("Could not allocate a unique order number")

    async def get(self, order_id: str) -> Optional[Order]:
        row = await self.db.fetch_one("SELECT * FROM orders WHERE id = $1", order_id)
        return _row_to_order(row) if row else None

    async def list_all(self) -> list[Order]:
        rows = await self.db.fetch_all("SELECT * FROM orders ORDER BY created_at DESC")
        return [_row_to_order(row) for row in rows]

    async def find_by_payment_key(
        self,
        gateway_payment_id: Optional[str] = None,
        gateway_order_id: Optional[str] = None,
    ) -> Optional[Order]:
        if gateway_payment_id:
            row = await self.db.fetch_one(
                "SELECT * FROM orders WHERE gateway_payment_id = $1", gateway_payment_id
            )
            if row:
                return _row_to_order(row)
        if gateway_order_id:
            row = await self.db.fetch_one(
                "SELECT * FROM orders WHERE gateway_order_id = $1", gateway_order_id
            )
            if row:
                return _row_to_order(row)
        return None

    async def find_by_order_number(self, order_number: str) -> Optional[Order]:
        row = await self.db.fetch_one(
            "SELECT * FROM orders WHERE order_number = $1", order_number.strip().upper()
        )
        return _row_to_order(row) if row else None

    async def update_status(
        self,
        order_id: str,
        status: OrderStatus,
        from_statuses: Optional[Iterable[OrderStatus]] = None,
    ) -> bool:
        if from_statuses is None:
            result = await self.db.execute(
                """
                UPDATE orders SET status = $2, updated_at = $3
                WHERE id = $1 AND status <> $2
                """,
                order_id, status.value, utcnow(),
            )
        else:
            result = await self.db.execute(
                """
                UPDATE orders SET status = $2, updated_at = $3
                WHERE id = $1 AND status <> $2 AND status = ANY($4::varchar[])
                """,
                order_id, status.value, utcnow(), [s.value for s in from_statuses],
            )

        if rows_affected(result) == 1:
            logger.info("order_status_updated", order_id=order_id, status=status.value)
            return True

        exists = await self.db.fetch_one("SELECT 1 FROM orders WHERE id = $1", order_id)
        if not exists:
            raise OrderNotFoundError(f"Order not found: {order_id}")
        return False


class PostgresCouponRepository(ICouponRepository):

    def __init__(self, db=Database):
        self.db = db

    async def get_by_code(self, code: str) -> Optional[Coupon]:
        row = await self.db.fetch_one("SELECT * FROM coupons WHERE code = $1", code.strip().upper())
        if not row:
            return None
        document = load_json(row["document"])
        document["used_count"] = row["used_count"]
        return Coupon.model_validate(document)

    async def save(self, coupon: Coupon) -> Coupon:
        await self.db.execute(
            """
            INSERT INTO coupons (code, document, used_count, updated_at)
            VALUES ($1, $2::jsonb, $3, NOW())
            ON CONFLICT (code) DO UPDATE SET document = EXCLUDED.document, updated_at = NOW()
            """,
            coupon.code,
            coupon.model_dump_json(exclude={"used_count"}),
            coupon.used_count,
        )
        return coupon

    async def mark_used(self, code: str) -> int:
        row = await self.db.fetch_one(
            """
            UPDATE coupons SET used_count = used_count + 1, updated_at = NOW()
            WHERE code = $1
            RETURNING used_count
            """,
            code.strip().upper(),
        )
        if not row:
            raise CouponError(f"Coupon not found: {code}")
        return row["used_count"]


class PostgresCustomerProfileStore(ICustomerProfileStore):

    def __init__(self, db=Database):
        self.db = db

    async def save_shipping_info(self, user_id: str, info: ShippingInfo) -> None:
        await self.db.execute(
            """
            INSERT INTO customer_profiles (user_id, shipping_info, updated_at)
            VALUES ($1, $2::jsonb, NOW())
            ON CONFLICT (user_id) DO UPDATE
            SET shipping_info = EXCLUDED.shipping_info, updated_at = NOW()
            """,
            user_id,
            info.model_dump_json(),
        )

    async def get_shipping_info(self, user_id: str) -> Optional[ShippingInfo]:
        row = await self.db.fetch_one(
            "SELECT shipping_info FROM customer_profiles WHERE user_id = $1", user_id
        )
        return ShippingInfo.model_validate(load_json(row["shipping_info"])) if row else None


class PostgresWebhookEventLog(IWebhookEventLog):

    def __init__(self, db=Database):
        self.db = db

    async def is_processed(self, event_id: str) -> bool:
        row = await self.db.fetch_one("SELECT 1 FROM webhook_events WHERE event_id = $1", event_id)
        return row is not None

    async def mark_processed(self, event_id: str, event_type: str) -> None:
        await self.db.execute(
            """
            INSERT INTO webhook_events (event_id, event_type)
            VALUES ($1, $2)
            ON CONFLICT (event_id) DO NOTHING
            """,
            event_id,
            event_type,
        )
