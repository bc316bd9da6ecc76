"""
Database Module
===============
asyncpg connection pool and schema migrations for the store tables.

This module provides:
- AsyncPG connection pool for PostgreSQL (lazy, process-wide)
- Transaction helper for multi-statement atomic operations
- Idempotent startup migrations: categories, products, orders, order_items

Row-level access lives in storage/postgres.py.
"""

from contextlib import asynccontextmanager
from typing import List, Optional

import asyncpg
import structlog

from config import settings

logger = structlog.get_logger(component="database")


# =============================================================================
# SCHEMA
# =============================================================================

MIGRATIONS = [
    """
    CREATE TABLE IF NOT EXISTS categories (
        id TEXT PRIMARY KEY,
        name VARCHAR(100) NOT NULL,
        slug VARCHAR(120) NOT NULL UNIQUE,
        description TEXT,
        image TEXT,
        created_at TIMESTAMPTZ DEFAULT NOW(),
        updated_at TIMESTAMPTZ DEFAULT NOW()
    )
    """,
    """
    CREATE TABLE IF NOT EXISTS products (
        id TEXT PRIMARY KEY,
        name VARCHAR(200) NOT NULL,
        slug VARCHAR(220) NOT NULL UNIQUE,
        description TEXT NOT NULL DEFAULT '',
        price NUMERIC(12, 2) NOT NULL,
        compare_at_price NUMERIC(12, 2),
        images TEXT[] NOT NULL DEFAULT '{}',
        category_id TEXT REFERENCES categories(id),
        stock INTEGER NOT NULL DEFAULT 0 CHECK (stock >= 0),
        is_active BOOLEAN NOT NULL DEFAULT TRUE,
        is_featured BOOLEAN NOT NULL DEFAULT FALSE,
        created_at TIMESTAMPTZ DEFAULT NOW(),
        updated_at TIMESTAMPTZ DEFAULT NOW()
    )
    """,
    # Money columns are unconstrained NUMERIC so totals like 60.589 keep every digit
    """
    CREATE TABLE IF NOT EXISTS orders (
        id TEXT PRIMARY KEY,
        user_id TEXT NOT NULL,
        subtotal NUMERIC NOT NULL,
        shipping NUMERIC NOT NULL,
        tax NUMERIC NOT NULL,
        total NUMERIC NOT NULL,
        status VARCHAR(20) NOT NULL DEFAULT 'PENDING',
        shipping_address JSONB,
        billing_address JSONB,
        payment_session_id VARCHAR(255),
        payment_intent_id VARCHAR(255),
        stock_committed BOOLEAN NOT NULL DEFAULT FALSE,
        created_at TIMESTAMPTZ DEFAULT NOW(),
        updated_at TIMESTAMPTZ DEFAULT NOW()
    )
    """,
    """
    CREATE TABLE IF NOT EXISTS order_items (
        id TEXT PRIMARY KEY,
        order_id TEXT NOT NULL REFERENCES orders(id),
        product_id TEXT NOT NULL REFERENCES products(id),
        product_name VARCHAR(200) NOT NULL,
        quantity INTEGER NOT NULL CHECK (quantity > 0),
        price NUMERIC(12, 2) NOT NULL
    )
    """,
    "CREATE INDEX IF NOT EXISTS idx_products_category ON products(category_id)",
    "CREATE INDEX IF NOT EXISTS idx_products_active ON products(is_active, created_at DESC)",
    "CREATE INDEX IF NOT EXISTS idx_orders_user ON orders(user_id, created_at DESC)",
    "CREATE INDEX IF NOT EXISTS idx_orders_session ON orders(payment_session_id)",
    "CREATE INDEX IF NOT EXISTS idx_orders_intent ON orders(payment_intent_id)",
    "CREATE INDEX IF NOT EXISTS idx_order_items_order ON order_items(order_id)",
    "CREATE INDEX IF NOT EXISTS idx_order_items_product ON order_items(product_id)",
]


# =============================================================================
# CONNECTION POOL
# =============================================================================

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
            logger.info("pool_initialized", min_size=settings.DB_MIN_POOL_SIZE)

            await cls._run_migrations()

        except (OSError, asyncpg.PostgresError) as e:
            logger.error("pool_init_failed", error=str(e))
            raise

    @classmethod
    async def close(cls):
        """Close the connection pool"""
        if cls._pool:
            await cls._pool.close()
            cls._pool = None
            cls._initialized = False
            logger.info("pool_closed")

    @classmethod
    @asynccontextmanager
    async def acquire(cls):
        """Acquire a connection from the pool"""
        if not cls._pool:
            await cls.initialize()

        async with cls._pool.acquire() as conn:
            yield conn

    @classmethod
    @asynccontextmanager
    async def transaction(cls):
        """Acquire a connection with an open transaction"""
        async with cls.acquire() as conn:
            async with conn.transaction():
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
    async def fetch_value(cls, query: str, *args):
        async with cls.acquire() as conn:
            return await conn.fetchval(query, *args)

    @classmethod
    async def ping(cls) -> bool:
        """Readiness probe"""
        try:
            return await cls.fetch_value("SELECT 1") == 1
        except (OSError, asyncpg.PostgresError) as e:
            logger.warning("ping_failed", error=str(e))
            return False

    @classmethod
    async def _run_migrations(cls):
        """Create tables and indexes if missing"""
        async with cls.acquire() as conn:
            for migration in MIGRATIONS:
                await conn.execute(migration)

        logger.info("migrations_complete", statements=len(MIGRATIONS))


# =============================================================================
# INITIALIZATION
# =============================================================================

async def init_database():
    """Initialize database on app startup"""
    await Database.initialize()


async def close_database():
    """Close database on app shutdown"""
    await Database.close()
