"""
Database Module
===============
AsyncPG connection pool for PostgreSQL.

The pool is an explicitly owned resource: the application creates one
``Database`` at startup, hands it to each repository, and closes it on
shutdown. It is shared by all concurrent request handlers and by the
reconciliation worker.
"""

import json
from contextlib import asynccontextmanager
from typing import List, Optional

import asyncpg
import structlog

from storefront.config import database_config
from storefront.exceptions import StoreError

logger = structlog.get_logger(component="database")


MIGRATIONS = [
    # Orders, keyed by the Stripe checkout session id
    """
    CREATE TABLE IF NOT EXISTS orders (
        session_id TEXT PRIMARY KEY,
        products JSONB NOT NULL,
        total_amount NUMERIC(14, 2) NOT NULL,
        customer_details JSONB NOT NULL DEFAULT '{}',
        status VARCHAR(20) NOT NULL DEFAULT 'pending'
            CHECK (status IN ('pending', 'completed')),
        payment_intent_id TEXT,
        payment_method JSONB,
        created_at TIMESTAMPTZ NOT NULL DEFAULT NOW(),
        updated_at TIMESTAMPTZ NOT NULL DEFAULT NOW()
    )
    """,

    # Product catalog documents
    """
    CREATE TABLE IF NOT EXISTS products (
        id UUID PRIMARY KEY DEFAULT gen_random_uuid(),
        document JSONB NOT NULL,
        created_at TIMESTAMPTZ NOT NULL DEFAULT NOW()
    )
    """,

    # Durable reconciliation queue, one job per checkout session
    """
    CREATE TABLE IF NOT EXISTS reconciliation_jobs (
        session_id TEXT PRIMARY KEY,
        payment_intent_id TEXT NOT NULL,
        event_id TEXT,
        status VARCHAR(20) NOT NULL DEFAULT 'queued',
        attempts INTEGER NOT NULL DEFAULT 0,
        next_run_at TIMESTAMPTZ NOT NULL DEFAULT NOW(),
        locked_until TIMESTAMPTZ,
        last_error TEXT,
        created_at TIMESTAMPTZ NOT NULL DEFAULT NOW(),
        updated_at TIMESTAMPTZ NOT NULL DEFAULT NOW()
    )
    """,

    "CREATE INDEX IF NOT EXISTS idx_orders_status ON orders(status)",
    "CREATE INDEX IF NOT EXISTS idx_products_created ON products(created_at)",
    "CREATE INDEX IF NOT EXISTS idx_jobs_due ON reconciliation_jobs(status, next_run_at)",
]


async def _init_connection(conn: asyncpg.Connection):
    """Decode JSONB columns to Python objects"""
    await conn.set_type_codec(
        "jsonb",
        encoder=json.dumps,
        decoder=json.loads,
        schema="pg_catalog",
    )


class Database:
    """Async database connection pool manager"""

    def __init__(
        self,
        dsn: str = database_config.DATABASE_URL,
        min_size: int = database_config.MIN_POOL_SIZE,
        max_size: int = database_config.MAX_POOL_SIZE,
    ):
        self._dsn = dsn
        self._min_size = min_size
        self._max_size = max_size
        self._pool: Optional[asyncpg.Pool] = None

    @property
    def is_connected(self) -> bool:
        return self._pool is not None

    async def connect(self):
        """Create the pool and run migrations"""
        if self._pool:
            return

        try:
            self._pool = await asyncpg.create_pool(
                self._dsn,
                min_size=self._min_size,
                max_size=self._max_size,
                init=_init_connection,
            )
        except (OSError, asyncpg.PostgresError) as e:
            logger.error("database_connect_failed", error=str(e))
            raise StoreError(f"Could not connect to database: {e}") from e

        logger.info("database_pool_initialized",
                    min_size=self._min_size,
                    max_size=self._max_size)
        await self._run_migrations()

    async def close(self):
        """Close the connection pool"""
        if self._pool:
            await self._pool.close()
            self._pool = None
            logger.info("database_pool_closed")

    @asynccontextmanager
    async def acquire(self):
        """Acquire a connection from the pool"""
        if not self._pool:
            raise StoreError("Database is not connected")

        async with self._pool.acquire() as conn:
            yield conn

    async def execute(self, query: str, *args) -> str:
        """Execute a query"""
        try:
            async with self.acquire() as conn:
                return await conn.execute(query, *args)
        except asyncpg.PostgresError as e:
            raise StoreError(str(e), {"sqlstate": e.sqlstate}) from e

    async def fetch_one(self, query: str, *args) -> Optional[asyncpg.Record]:
        """Fetch a single row"""
        try:
            async with self.acquire() as conn:
                return await conn.fetchrow(query, *args)
        except asyncpg.PostgresError as e:
            raise StoreError(str(e), {"sqlstate": e.sqlstate}) from e

    async def fetch_all(self, query: str, *args) -> List[asyncpg.Record]:
        """Fetch all rows"""
        try:
            async with self.acquire() as conn:
                return await conn.fetch(query, *args)
        except asyncpg.PostgresError as e:
            raise StoreError(str(e), {"sqlstate": e.sqlstate}) from e

    async def fetch_val(self, query: str, *args):
        """Fetch the first column of the first row"""
        try:
            async with self.acquire() as conn:
                return await conn.fetchval(query, *args)
        except asyncpg.PostgresError as e:
            raise StoreError(str(e), {"sqlstate": e.sqlstate}) from e

    async def health_check(self) -> bool:
        if not self._pool:
            return False
        try:
            return await self.fetch_val("SELECT 1") == 1
        except StoreError:
            return False

    async def _run_migrations(self):
        """Run database migrations"""
        async with self.acquire() as conn:
            for migration in MIGRATIONS:
                await conn.execute(migration)

        logger.info("database_migrations_complete", count=len(MIGRATIONS))
