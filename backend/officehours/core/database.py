"""asyncpg connection pool for backups, attendance and workspace settings."""

from __future__ import annotations

import asyncio
import logging

import asyncpg

logger = logging.getLogger(__name__)


class DatabasePool:
    """Owns the process-wide asyncpg pool.

    The bot runs without a database when ``DATABASE_URL`` is empty; callers
    check :meth:`is_connected` before touching repositories.
    """

    _pool: asyncpg.Pool | None = None

    @classmethod
    def is_connected(cls) -> bool:
        return cls._pool is not None

    @classmethod
    async def connect(
        cls,
        database_url: str,
        max_retries: int = 3,
        retry_delay: float = 5.0,
    ) -> asyncpg.Pool:
        """Create the pool with retry. Returns the existing pool if connected."""
        if cls._pool is not None:
            return cls._pool
        if not database_url:
            raise ValueError("DATABASE_URL environment variable is not set")

        safe_url = database_url.split("@")[-1] if "@" in database_url else "invalid"
        logger.info(f"Connecting to database: {safe_url}")

        # PgBouncer transaction mode does not support prepared statements
        cache_size = 0 if ":6543" in database_url else 100

        for attempt in range(1, max_retries + 1):
            try:
                cls._pool = await asyncpg.create_pool(
                    database_url,
                    min_size=1,
                    max_size=4,
                    command_timeout=30,
                    timeout=30,
                    statement_cache_size=cache_size,
                    max_inactive_connection_lifetime=300.0,
                )
                logger.info(f"Database pool created (cache={cache_size})")
                return cls._pool
            except Exception as e:
                if attempt < max_retries:
                    logger.warning(
                        f"Database connection attempt {attempt}/{max_retries} failed: {e}, "
                        f"retrying in {retry_delay}s..."
                    )
                    await asyncio.sleep(retry_delay)
                else:
                    logger.exception(
                        f"Database connection failed after {max_retries} attempts: {e}"
                    )
                    raise

        raise ValueError(f"max_retries must be at least 1, got {max_retries}")

    @classmethod
    def get_pool(cls) -> asyncpg.Pool:
        if cls._pool is None:
            raise RuntimeError("Database pool not initialized. Call connect() first.")
        return cls._pool

    @classmethod
    async def close(cls) -> None:
        if cls._pool is not None:
            await cls._pool.close()
            cls._pool = None
            logger.info("Database connection pool closed")
