"""Database connection pool factory and health check."""

import asyncio
import logging

import asyncpg

from healtone.config import AppConfig

logger = logging.getLogger(__name__)

CONNECT_TIMEOUT_SECONDS = 5.0
CLOSE_TIMEOUT_SECONDS = 5.0


async def create_pool(config: AppConfig) -> asyncpg.Pool:
    """
    Open a connection pool and verify the datastore answers.

    The caller owns the returned pool and must pass it to close_pool().
    The privileged access key is sent as the connection password and
    overrides any password embedded in the DSN.

    Raises:
        asyncio.TimeoutError: If connecting takes longer than 5 seconds
        RuntimeError: If the health check fails
    """
    try:
        pool = await asyncio.wait_for(
            asyncpg.create_pool(
                str(config.db_dsn),
                password=config.db_service_key.get_secret_value(),
                min_size=config.db_pool_min,
                max_size=config.db_pool_max,
            ),
            timeout=CONNECT_TIMEOUT_SECONDS,
        )
    except asyncio.TimeoutError:
        raise asyncio.TimeoutError(
            f"Datastore connection timed out after {CONNECT_TIMEOUT_SECONDS:g} seconds"
        )

    try:
        async with pool.acquire() as conn:
            result = await conn.fetchval("SELECT 1")
        if result != 1:
            raise RuntimeError(f"expected 1, got {result}")
    except Exception as e:
        await pool.close()
        raise RuntimeError(f"Database health check failed: {e}") from e

    logger.info(
        f"Database pool ready: min={config.db_pool_min}, max={config.db_pool_max}"
    )
    return pool


async def close_pool(pool: asyncpg.Pool) -> None:
    """Close gracefully; terminate if connections are still held after 5 seconds."""
    try:
        await asyncio.wait_for(pool.close(), timeout=CLOSE_TIMEOUT_SECONDS)
    except asyncio.TimeoutError:
        logger.warning("Pool close timed out; terminating (likely leaked connection)")
        pool.terminate()
