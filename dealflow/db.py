"""asyncpg pool for the postgres write backend."""
from typing import Optional

import asyncpg

from .config import settings

_pool: asyncpg.Pool | None = None


async def init_db_pool(dsn: Optional[str] = None) -> asyncpg.Pool:
    global _pool
    if _pool is not None:
        return _pool

    dsn = dsn or settings.database_url
    if not dsn:
        raise RuntimeError("DATABASE_URL is not set; the postgres write backend needs it")
    _pool = await asyncpg.create_pool(
        dsn=dsn,
        min_size=1,
        max_size=5,
        command_timeout=15,
        server_settings={"application_name": settings.service_name},
    )
    return _pool


async def close_db_pool() -> None:
    global _pool
    pool, _pool = _pool, None
    if pool is not None:
        await pool.close()


async def get_pool() -> asyncpg.Pool:
    return _pool if _pool is not None else await init_db_pool()


async def ping() -> bool:
    """True when the pool can run a trivial query. False when no pool is open."""
    if _pool is None:
        return False
    async with _pool.acquire() as conn:
        return await conn.fetchval("SELECT 1") == 1
