"""PostgreSQL access for the credential, refresh and reset tables.

One asyncpg pool per process, created in the app lifespan. Stores that need
several writes to land together go through transaction().
"""

from contextlib import asynccontextmanager
from pathlib import Path
from typing import AsyncIterator, Optional

import asyncpg
import structlog

from src.config import get_settings

logger = structlog.get_logger(__name__)

_pool: Optional[asyncpg.Pool] = None

POOL_MIN_SIZE = 2
POOL_MAX_SIZE = 10


async def get_pool() -> asyncpg.Pool:
    """Return the process pool.

    Raises:
        RuntimeError: If the lifespan has not called init_database() yet
    """
    if _pool is None:
        raise RuntimeError("Database pool not initialized. Call init_database() first.")
    return _pool


async def init_database() -> asyncpg.Pool:
    """Create the pool from POSTGRES_URL. Calling it again is a no-op."""
    global _pool

    if _pool is not None:
        return _pool

    settings = get_settings()

    try:
        _pool = await asyncpg.create_pool(
            settings.postgres_url,
            min_size=POOL_MIN_SIZE,
            max_size=POOL_MAX_SIZE,
            command_timeout=60,
        )
        logger.info("database_pool_created", min_size=POOL_MIN_SIZE, max_size=POOL_MAX_SIZE)
        return _pool
    except Exception as e:
        logger.error("database_pool_creation_failed", error=str(e))
        raise


async def close_database() -> None:
    """Close the pool at shutdown, after pending reset emails have drained."""
    global _pool

    if _pool is not None:
        await _pool.close()
        _pool = None
        logger.info("database_pool_closed")


@asynccontextmanager
async def transaction() -> AsyncIterator[asyncpg.Connection]:
    """Acquire a pooled connection and run the block inside one transaction.

    The transaction commits when the block exits normally and rolls back
    when it raises.
    """
    pool = await get_pool()
    async with pool.acquire() as conn:
        async with conn.transaction():
            yield conn


async def run_migrations() -> None:
    """Apply migrations/*.sql in file-name order on every startup.

    Each file uses IF NOT EXISTS, so re-applying users, refresh_tokens and
    password_reset_tokens leaves existing rows untouched.
    """
    pool = await get_pool()
    migrations_dir = Path(__file__).parent.parent / "migrations"

    if not migrations_dir.exists():
        logger.warning("migrations_directory_not_found", path=str(migrations_dir))
        return

    migration_files = sorted(migrations_dir.glob("*.sql"))

    if not migration_files:
        logger.info("no_migrations_found")
        return

    async with pool.acquire() as conn:
        for migration_file in migration_files:
            try:
                await conn.execute(migration_file.read_text())
                logger.info("migration_applied", file=migration_file.name)
            except Exception as e:
                logger.error(
                    "migration_failed",
                    file=migration_file.name,
                    error=str(e),
                )
                raise


async def health_check() -> bool:
    """Report whether a pooled connection answers SELECT 1, for GET /health."""
    try:
        pool = await get_pool()
        async with pool.acquire() as conn:
            result = await conn.fetchval("SELECT 1")
            return result == 1
    except Exception as e:
        logger.error("database_health_check_failed", error=str(e))
        return False
