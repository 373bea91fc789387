"""asyncpg connection pool singleton with a startup health check."""

import asyncio
import logging
from typing import Optional

import asyncpg

from nflsim.config import get_config

logger = logging.getLogger(__name__)

CONNECT_TIMEOUT_SECONDS = 5.0
CLOSE_TIMEOUT_SECONDS = 5.0

_pool: Optional[asyncpg.Pool] = None


async def get_pool() -> asyncpg.Pool:
    """
    Return the process-wide connection pool, creating it on first use.

    A freshly created pool must answer ``SELECT 1`` before it is handed out;
    if it does not, the pool is closed again and the error is raised.

    Raises:
        asyncio.TimeoutError: If PostgreSQL does not accept connections in time
        RuntimeError: If the health check fails
    """
    global _pool

    if _pool is not None:
        return _pool

    config = get_config()

    try:
        pool = await asyncio.wait_for(
            asyncpg.create_pool(
                str(config.db_dsn),
                min_size=config.db_pool_min,
                max_size=config.db_pool_max,
                command_timeout=config.db_command_timeout,
            ),
            timeout=CONNECT_TIMEOUT_SECONDS,
        )
    except asyncio.TimeoutError:
        raise asyncio.TimeoutError(
            f"Could not connect to PostgreSQL within {CONNECT_TIMEOUT_SECONDS:.0f} seconds. "
            "Check DB_DSN and that the server is running."
        )

    try:
        async with pool.acquire() as conn:
            result = await conn.fetchval("SELECT 1")
        if result != 1:
            raise RuntimeError(f"expected 1, got {result}")
    except Exception as e:
        await pool.close()
        raise RuntimeError(f"Database health check failed: {e}") from e

    logger.debug(
        f"Pool ready: min={config.db_pool_min}, max={config.db_pool_max}"
    )
    _pool = pool
    return _pool


async def close_pool() -> None:
    """
    Close the pool if one is open.

    Leaked connections can make a graceful close hang, so after
    CLOSE_TIMEOUT_SECONDS the pool is terminated instead.
    """
    global _pool
    if _pool is None:
        return

    pool, _pool = _pool, None
    try:
        await asyncio.wait_for(pool.close(), timeout=CLOSE_TIMEOUT_SECONDS)
    except asyncio.TimeoutError:
        logger.warning(
            f"Pool close timed out after {CLOSE_TIMEOUT_SECONDS:.0f} seconds, terminating"
        )
        pool.terminate()
