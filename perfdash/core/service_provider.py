"""
Process-wide DashboardService.

Built lazily on first use under a lock so concurrent first requests share
one pool and one façade. A connection-level failure seen by the pool drops
the façade and closes the pool; the next request rebuilds both. A closed
pool stays closed, so requests still holding the old façade fail fast
instead of opening a second, untracked pool.
"""

from __future__ import annotations

import asyncio
import logging
from typing import Optional

from perfdash.connectors import postgres_pool
from perfdash.connectors.postgres_pool import ErrorHook, PostgresConnectionPool
from perfdash.core.dashboard_service import DashboardService
from perfdash.core.run_store import RunStore

logger = logging.getLogger(__name__)

_service: Optional[DashboardService] = None
_lock = asyncio.Lock()


def _pool_error_hook(pool: PostgresConnectionPool) -> ErrorHook:
    async def _on_pool_error(exc: BaseException) -> None:
        # A late error from a pool that was already replaced must not tear
        # down its successor.
        if not postgres_pool.is_default_pool(pool):
            logger.info("Ignoring connection error from a retired pool: %s", exc)
            return
        logger.warning("Connection-level error, resetting dashboard service: %s", exc)
        await invalidate_dashboard_service(close_pool=True)

    return _on_pool_error


async def get_dashboard_service() -> DashboardService:
    global _service

    if _service is not None:
        return _service

    async with _lock:
        if _service is not None:
            return _service

        pool = postgres_pool.get_default_pool()
        await pool.initialize()
        pool.add_error_hook(_pool_error_hook(pool))
        _service = DashboardService(RunStore(pool))
        logger.info("Dashboard service ready")
        return _service


async def invalidate_dashboard_service(*, close_pool: bool = False) -> None:
    """Forget the current façade; optionally close the pool it reads through."""
    global _service

    _service = None
    if close_pool:
        await postgres_pool.close_all_pools()


async def close_dashboard_service() -> None:
    await invalidate_dashboard_service(close_pool=True)
