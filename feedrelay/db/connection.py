"""PostgreSQL pool for the subscriptions store.

One asyncpg pool per process. JSONB columns are decoded to Python objects
by a per-connection codec, so callers see the recent-message cache as a
dict rather than a JSON string.
"""

import asyncio
import json
import logging
from contextlib import asynccontextmanager
from pathlib import Path
from typing import Optional

import asyncpg

logger = logging.getLogger("feedrelay.db")

_pool: Optional[asyncpg.Pool] = None

SCHEMA_PATH = Path(__file__).with_name("schema.sql")
CONNECT_ATTEMPTS = 5
MAX_BACKOFF = 8


async def _setup_connection(conn: asyncpg.Connection):
    await conn.set_type_codec("jsonb", encoder=json.dumps, decoder=json.loads, schema="pg_catalog")


async def init_db(dsn: str, min_size: int = 1, max_size: int = 5) -> asyncpg.Pool:
    """Open the pool, retrying while the server is still starting.

    Backoff doubles from 2 seconds up to MAX_BACKOFF.
    """
    global _pool

    for attempt in range(1, CONNECT_ATTEMPTS + 1):
        try:
            _pool = await asyncpg.create_pool(
                dsn, min_size=min_size, max_size=max_size, init=_setup_connection,
            )
            logger.info(f"Database pool ready (attempt {attempt})")
            return _pool
        except (OSError, asyncpg.PostgresError, asyncpg.InterfaceError) as e:
            if attempt == CONNECT_ATTEMPTS:
                logger.error(f"Database unreachable after {attempt} attempts: {e}")
                raise
            delay = min(2 ** attempt, MAX_BACKOFF)
            logger.warning(f"Database not ready ({attempt}/{CONNECT_ATTEMPTS}): {e}. Retrying in {delay}s...")
            await asyncio.sleep(delay)


async def ensure_schema() -> None:
    """Create the subscriptions table if it does not exist."""
    async with get_connection() as conn:
        await conn.execute(SCHEMA_PATH.read_text())
    logger.info("Schema ensured")


async def close_db():
    global _pool
    if _pool:
        await _pool.close()
        _pool = None


def get_pool() -> asyncpg.Pool:
    if _pool is None:
        raise RuntimeError("Database not initialized. Call init_db() first.")
    return _pool


@asynccontextmanager
async def get_connection():
    """Borrow a pooled connection."""
    async with get_pool().acquire() as conn:
        yield conn


@asynccontextmanager
async def get_transaction():
    """Borrow a pooled connection inside a transaction."""
    async with get_pool().acquire() as conn:
        async with conn.transaction():
            yield conn
