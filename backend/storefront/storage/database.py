"""
Database Module
===============
AsyncPG connection pool and schema migrations for the PostgreSQL backend.

Orders are stored one document per row (JSONB) with the reconciliation
keys lifted into columns carrying unique indexes.
"""

import json
from contextlib import asynccontextmanager
from typing import Any, List, Optional

import asyncpg
import structlog

from storefront.config import settings

logger = structlog.get_logger().bind(component="database")


MIGRATIONS = [
    # Orders: document plus indexed lookup keys
    """
    CREATE TABLE IF NOT EXISTS orders (
        id VARCHAR(36) PRIMARY KEY,
        order_number VARCHAR(32) NOT NULL UNIQUE,
        user_id VARCHAR(128),
        gateway_order_id VARCHAR(64),
        gateway_payment_id VARCHAR(64),
        status VARCHAR(20) NOT NULL,
        document JSONB NOT NULL,
        created_at TIMESTAMPTZ NOT NULL DEFAULT NOW(),
        updated_at TIMESTAMPTZ NOT NULL DEFAULT NOW()
    )
    """,
    "CREATE UNIQUE INDEX IF NOT EXISTS uq_orders_gateway_payment_id ON orders(gateway_payment_id)",
    "CREATE UNIQUE INDEX IF NOT EXISTS uq_orders_gateway_order_id ON orders(gateway_order_id)",
    "CREATE INDEX IF NOT EXISTS idx_orders_user ON orders(user_id)",
    "CREATE INDEX IF NOT EXISTS idx_orders_status ON orders(status)",

    # Coupons
    """
    CREATE TABLE IF NOT EXISTS coupons (
        code VARCHAR(64) PRIMARY KEY,
        document JSONB NOT NULL,
        used_count INTEGER NOT NULL DEFAULT 0,
        updated_at TIMESTAMPTZ NOT NULL DEFAULT NOW()
    )
    """,

    # Saved shipping details per customer
    """
    CREATE TABLE IF NOT EXISTS customer_profiles (
        user_id VARCHAR(128) PRIMARY KEY,
        shipping_info JSONB NOT NULL,
        updated_at TIMESTAMPTZ NOT NULL DEFAULT NOW()
    )
    """,

    # Processed webhook deliveries
    """
    CREATE TABLE IF NOT EXISTS webhook_events (
        event_id VARCHAR(64) PRIMARY KEY,
        event_type VARCHAR(64) NOT NULL,
        processed_at TIMESTAMPTZ NOT NULL DEFAULT NOW()
    )
    """,
]


class Database:
    """Async database connection pool manager"""

    _pool: Optional[asyncpg.Pool] = None
    _initialized: bool = False

    @classmethod
    async def initialize(cls, dsn: Optional[str] = None):
        """Initialize the connection pool"""
        if cls._initialized:
            return

        try:
            cls._pool = await asyncpg.create_pool(
                dsn or settings.DATABASE_URL,
                min_size=settings.DB_MIN_POOL_SIZE,
                max_size=settings.DB_MAX_POOL_SIZE,
            )
            cls._initialized = True
            logger.info("database_pool_initialized")

            await cls._run_migrations()

        except Exception as e:
            logger.error("database_init_failed", error=str(e))
            raise

    @classmethod
    async def close(cls):
        """Close the connection pool"""
        if cls._pool:
            await cls._pool.close()
            cls._pool = None
            cls._initialized = False
            logger.info("database_pool_closed")

    @classmethod
    @asynccontextmanager
    async def acquire(cls):
        """Acquire a connection from the pool"""
        if not cls._pool:
            await cls.initialize()

        async with cls._pool.acquire() as conn:
            yield conn

    @classmethod
    async def execute(cls, query: str, *args) -> str:
        async with cls.acquire() as conn:
            return await conn.execute(query, *args)

    @classmethod
    async def fetch_one(cls, query: str, *args) -> Optional[asyncpg.Record]:
        async with cls.acquire() as conn:
            return await conn.fetchrow(query, *args)

    @classmethod
    async def fetch_all(cls, query: str, *args) -> List[asyncpg.Record]:
        async with cls.acquire() as conn:
            return await conn.fetch(query, *args)

    @classmethod
    async def _run_migrations(cls):
        async with cls.acquire() as conn:
            for migration in MIGRATIONS:
                await conn.execute(migration)

        logger.info("database_migrations_complete", count=len(MIGRATIONS))


def load_json(value: Any) -> Any:
    """JSONB columns come back as text unless a codec is registered"""
    return json.loads(value) if isinstance(value, str) else value


def rows_affected(status: str) -> int:
    """Parse asyncpg command status, e.g. 'UPDATE 1'"""
    try:
        return int(status.split()[-1])
    except (ValueError, IndexError):
        return 0
