# shared/database.py
import logging
import os
import ssl
from typing import Any, Optional

import asyncpg

logger = logging.getLogger(__name__)

DATABASE_URL = os.getenv("DATABASE_URL")

if not DATABASE_URL:
    # Build from individual components if DATABASE_URL not provided
    DB_HOST = os.getenv("DB_HOST", "localhost")
    DB_PORT = os.getenv("DB_PORT", "5432")
    DB_NAME = os.getenv("DB_NAME", "sweetmagic")
    DB_USER = os.getenv("DB_USER", "postgres")
    DB_PASSWORD = os.getenv("DB_PASSWORD", "")

    DATABASE_URL = f"postgresql://{DB_USER}:{DB_PASSWORD}@{DB_HOST}:{DB_PORT}/{DB_NAME}"
else:
    # Supabase/Heroku style postgres:// URLs are not accepted by asyncpg
    if DATABASE_URL.startswith("postgres://"):
        DATABASE_URL = DATABASE_URL.replace("postgres://", "postgresql://", 1)

# Connection pool
_pool: Optional[asyncpg.Pool] = None


class Database:
    """Database wrapper for asyncpg with connection pooling"""

    def __init__(self, pool: asyncpg.Pool):
        self.pool = pool

    async def fetch_one(self, query: str, *args) -> Optional[dict[str, Any]]:
        """Fetch a single row"""
        async with self.pool.acquire() as conn:
            row = await conn.fetchrow(query, *args)
            return dict(row) if row else None

    async def fetch_all(self, query: str, *args) -> list[dict[str, Any]]:
        """Fetch multiple rows"""
        async with self.pool.acquire() as conn:
            rows = await conn.fetch(query, *args)
            return [dict(row) for row in rows]

    async def fetch_val(self, query: str, *args) -> Any:
        """Fetch the first column of the first row"""
        async with self.pool.acquire() as conn:
            return await conn.fetchval(query, *args)

    async def execute(self, query: str, *args) -> str:
        """Execute a query without returning results"""
        async with self.pool.acquire() as conn:
            return await conn.execute(query, *args)

    async def execute_schema(self, query: str, *args) -> str:
        """Execute a schema/DDL query with extended timeout"""
        async with self.pool.acquire() as conn:
            return await conn.execute(query, *args, timeout=300)


def affected_rows(status: str) -> int:
    """Row count from an asyncpg command status such as 'DELETE 12'"""
    try:
        return int(status.split()[-1])
    except (AttributeError, IndexError, ValueError):
        return 0


async def init_db():
    """Initialize database connection pool"""
    global _pool

    try:
        logger.info("Starting database initialization...")

        ssl_context = None
        environment = os.getenv("ENVIRONMENT", "development")

        if environment in ["production", "staging"]:
            # Hosted Postgres requires TLS but ships self-signed certs
            ssl_context = ssl.create_default_context()
            ssl_context.check_hostname = False
            ssl_context.verify_mode = ssl.CERT_NONE

        min_size = int(os.getenv("DB_POOL_MIN_SIZE", 2))
        max_size = int(os.getenv("DB_POOL_MAX_SIZE", 10))

        logger.info(f"Creating database connection pool (min: {min_size}, max: {max_size})...")
        _pool = await asyncpg.create_pool(
            DATABASE_URL,
            ssl=ssl_context,
            min_size=min_size,
            max_size=max_size,
            max_queries=50000,
            max_cached_statement_lifetime=300,
            command_timeout=30,
            max_inactive_connection_lifetime=300,
        )
        logger.info("Database connection pool created successfully")

        skip_schema_init = os.getenv("SKIP_SCHEMA_INIT", "false").lower() == "true"
        if not skip_schema_init:
            await create_tables()
        else:
            logger.info("Skipping schema initialization (SKIP_SCHEMA_INIT=true)")

    except Exception as e:
        logger.error(f"Database initialization failed: {e}")
        if _pool:
            await _pool.close()
            _pool = None
        raise


async def close_db():
    """Close database connection pool"""
    global _pool
    if _pool:
        await _pool.close()
        _pool = None


async def get_db() -> Database:
    """Dependency to get database instance"""
    if not _pool:
        await init_db()
    return Database(_pool)


async def create_tables():
    """Create database tables if they don't exist"""
    db = await get_db()
    logger.info("Starting database schema creation/update...")

    await db.execute("SELECT 1")
    logger.info("Database connection verified")

    # Users table
    await db.execute_schema(
        """
        CREATE TABLE IF NOT EXISTS users (
            id UUID PRIMARY KEY,
            email VARCHAR(255) UNIQUE NOT NULL,
            name VARCHAR(255),
            plan VARCHAR(20) NOT NULL DEFAULT 'free',
            credits INTEGER NOT NULL DEFAULT 3,
            credits_renewed_at TIMESTAMP WITH TIME ZONE DEFAULT CURRENT_TIMESTAMP,
            created_at TIMESTAMP WITH TIME ZONE DEFAULT CURRENT_TIMESTAMP,
            updated_at TIMESTAMP WITH TIME ZONE DEFAULT CURRENT_TIMESTAMP,
            CONSTRAINT check_plan CHECK (plan IN ('free', 'premium')),
            CONSTRAINT check_credits_non_negative CHECK (credits >= 0)
        );

        CREATE INDEX IF NOT EXISTS idx_users_email ON users(email);
        CREATE INDEX IF NOT EXISTS idx_users_plan_renewal ON users(plan, credits_renewed_at);
    """
    )

    # Generated desserts
    await db.execute_schema(
        """
        CREATE TABLE IF NOT EXISTS desserts (
            id UUID PRIMARY KEY,
            user_id UUID NOT NULL REFERENCES users(id) ON DELETE CASCADE,
            ingredients TEXT NOT NULL,
            name VARCHAR(255) NOT NULL,
            recipe JSONB NOT NULL,
            image_url TEXT,
            theme VARCHAR(20) NOT NULL DEFAULT 'feminine',
            language VARCHAR(5) NOT NULL DEFAULT 'pt',
            cache_key VARCHAR(32) UNIQUE,
            created_at TIMESTAMP WITH TIME ZONE DEFAULT CURRENT_TIMESTAMP
        );

        CREATE INDEX IF NOT EXISTS idx_desserts_user ON desserts(user_id, created_at DESC);
        CREATE INDEX IF NOT EXISTS idx_desserts_created ON desserts(created_at DESC);
    """
    )

    # Usage audit trail
    await db.execute_schema(
        """
        CREATE TABLE IF NOT EXISTS usage_logs (
            id UUID PRIMARY KEY,
            user_id UUID NOT NULL REFERENCES users(id) ON DELETE CASCADE,
            action VARCHAR(50) NOT NULL,
            credits_used INTEGER NOT NULL DEFAULT 0,
            details JSONB DEFAULT '{}',
            ip_address VARCHAR(64),
            created_at TIMESTAMP WITH TIME ZONE DEFAULT CURRENT_TIMESTAMP
        );

        CREATE INDEX IF NOT EXISTS idx_usage_logs_user ON usage_logs(user_id, created_at DESC);
        CREATE INDEX IF NOT EXISTS idx_usage_logs_action ON usage_logs(action, created_at DESC);
    """
    )

    # Persistent tier of the generation cache
    await db.execute_schema(
        """
        CREATE TABLE IF NOT EXISTS cache (
            id BIGSERIAL PRIMARY KEY,
            cache_key VARCHAR(64) UNIQUE NOT NULL,
            data JSONB NOT NULL,
            hits INTEGER NOT NULL DEFAULT 0,
            created_at TIMESTAMP WITH TIME ZONE DEFAULT CURRENT_TIMESTAMP,
            expires_at TIMESTAMP WITH TIME ZONE NOT NULL
        );

        CREATE INDEX IF NOT EXISTS idx_cache_expires ON cache(expires_at);
    """
    )

    logger.info("Database schema creation/update completed successfully")
