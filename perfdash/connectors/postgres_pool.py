"""
Postgres Connection Pool Manager

Manages the asyncpg pool the dashboard reads through, with retry on startup,
a fixed per-query timeout and idle-connection recycling.
"""

import asyncio
import json
import logging
import random
import socket
from contextlib import asynccontextmanager
from typing import Any, Awaitable, Callable, Dict, List, Optional, Sequence

import asyncpg
from asyncpg import Pool
from asyncpg.exceptions import (
    CannotConnectNowError,
    PostgresConnectionError,
    TooManyConnectionsError,
)

from perfdash.config import settings
from perfdash.core.errors import QueryExecutionError

logger = logging.getLogger(__name__)

ErrorHook = Callable[[BaseException], Awaitable[None]]

# Errors that mean the pool itself is unusable, as opposed to a bad query.
CONNECTION_ERRORS = (
    PostgresConnectionError,
    asyncpg.InterfaceError,
    ConnectionError,
    socket.gaierror,
)


async def _init_connection(conn: asyncpg.Connection) -> None:
    """Decode json/jsonb columns into Python objects."""
    for typename in ("json", "jsonb"):
        await conn.set_type_codec(
            typename, encoder=json.dumps, decoder=json.loads, schema="pg_catalog"
        )


class PostgresConnectionPool:
    """
    Async connection pool for Postgres with health monitoring and retry logic.

    Implements the ``execute(sql, params)`` capability the run store needs.
    """

    def __init__(
        self,
        host: str,
        port: int,
        database: str,
        user: str,
        password: str,
        min_size: int = 1,
        max_size: int = 20,
        max_retries: int = 3,
        retry_delay: float = 1.0,
        query_timeout: float = 30.0,
        connect_timeout: float = 10.0,
        idle_timeout: float = 30.0,
        pool_name: str = "default",
    ):
        """
        Initialize Postgres connection pool.

        Args:
            host: Database host
            port: Database port
            database: Database name
            user: Username
            password: Password
            min_size: Minimum pool size
            max_size: Maximum pool size
            max_retries: Max retry attempts for transient failures at startup
            retry_delay: Delay between retries in seconds
            query_timeout: Timeout applied to every query, in seconds
            connect_timeout: Timeout for establishing a connection
            idle_timeout: Idle connections are closed after this many seconds
            pool_name: Descriptive name for logging
        """
        self.host = host
        self.port = port
        self.database = database
        self.user = user
        self.password = password
        self.min_size = min_size
        self.max_size = max_size
        self.max_retries = max_retries
        self.retry_delay = retry_delay
        self.query_timeout = query_timeout
        self.connect_timeout = connect_timeout
        self.idle_timeout = idle_timeout
        self.pool_name = pool_name

        self._pool: Optional[Pool] = None
        self._initialized = False
        # Once closed, the object never builds another asyncpg pool.
        self._closed = False
        self._init_lock = asyncio.Lock()
        self._error_hooks: List[ErrorHook] = []

        logger.info(
            f"[{pool_name}] Postgres pool configured: {user}@{host}:{port}/{database}, "
            f"size={min_size}-{max_size}"
        )

    def add_error_hook(self, hook: ErrorHook) -> None:
        """Register a callback run when a connection-level error is seen."""
        self._error_hooks.append(hook)

    async def initialize(self):
        """Initialize the connection pool."""
        if self._initialized:
            return

        async with self._init_lock:
            if self._initialized:
                return
            if self._closed:
                raise QueryExecutionError(f"Postgres pool '{self.pool_name}' is closed")
            await self._create_pool()

    async def _create_pool(self):
        logger.info(f"[{self.pool_name}] Creating Postgres connection pool...")

        for attempt in range(self.max_retries):
            try:
                self._pool = await asyncpg.create_pool(
                    host=self.host,
                    port=self.port,
                    database=self.database,
                    user=self.user,
                    password=self.password,
                    min_size=self.min_size,
                    max_size=self.max_size,
                    command_timeout=self.query_timeout,
                    timeout=self.connect_timeout,
                    max_inactive_connection_lifetime=self.idle_timeout,
                    init=_init_connection,
                )

                self._initialized = True
                logger.info(
                    f"[{self.pool_name}] Postgres pool ready "
                    f"(size: {self.min_size}-{self.max_size})"
                )
                return

            except (CannotConnectNowError, TooManyConnectionsError) as e:
                if attempt < self.max_retries - 1:
                    logger.warning(
                        f"Pool creation attempt {attempt + 1} failed, retrying: {e}"
                    )
                    await asyncio.sleep(self.retry_delay * (attempt + 1))
                else:
                    logger.error(
                        f"Failed to create pool after {self.max_retries} attempts"
                    )
                    raise
            except (socket.gaierror, OSError) as e:
                if attempt < self.max_retries - 1:
                    # Jitter keeps simultaneously started workers off DNS in lockstep
                    jitter = random.uniform(0, 0.5)
                    delay = self.retry_delay * (attempt + 1) + jitter
                    logger.warning(
                        f"[{self.pool_name}] Pool creation attempt {attempt + 1} failed "
                        f"(DNS/network error: {e}), retrying in {delay:.1f}s..."
                    )
                    await asyncio.sleep(delay)
                else:
                    logger.error(
                        f"[{self.pool_name}] DNS/network error creating pool after {self.max_retries} "
                        f"attempts: {e}. Host: {self.host!r}, Port: {self.port}"
                    )
                    raise

    @asynccontextmanager
    async def get_connection(self):
        """
        Get a connection from the pool (async context manager).

        Usage:
            async with pool.get_connection() as conn:
                result = await conn.fetch("SELECT 1")
        """
        if self._closed:
            raise QueryExecutionError(f"Postgres pool '{self.pool_name}' is closed")

        if not self._initialized:
            await self.initialize()

        if self._pool is None:
            raise QueryExecutionError("Postgres pool not initialized")

        async with self._pool.acquire() as conn:
            yield conn

    async def _notify_error(self, exc: BaseException) -> None:
        for hook in list(self._error_hooks):
            try:
                await hook(exc)
            except Exception as hook_error:
                logger.warning(f"[{self.pool_name}] Pool error hook failed: {hook_error}")

    async def execute(self, sql: str, params: Sequence[Any]) -> List[Dict[str, Any]]:
        """
        Run one read query and return its rows as dicts.

        Timeouts and database errors are raised as QueryExecutionError with the
        SQL attached; connection-level failures also fire the error hooks.
        """
        try:
            async with self.get_connection() as conn:
                rows = await conn.fetch(sql, *params, timeout=self.query_timeout)
        except asyncio.TimeoutError as e:
            logger.error(
                f"[{self.pool_name}] Query timed out after {self.query_timeout}s\nSQL: {sql}"
            )
            raise QueryExecutionError(
                f"Query timed out after {self.query_timeout}s", sql=sql
            ) from e
        except CONNECTION_ERRORS as e:
            logger.error(f"[{self.pool_name}] Connection error: {type(e).__name__}: {e}\nSQL: {sql}")
            await self._notify_error(e)
            raise QueryExecutionError(f"Database connection error: {e}", sql=sql) from e
        except asyncpg.PostgresError as e:
            logger.error(f"[{self.pool_name}] Query failed: {type(e).__name__}: {e}\nSQL: {sql}")
            raise QueryExecutionError(f"Query failed: {e}", sql=sql) from e
        except OSError as e:
            logger.error(f"[{self.pool_name}] Network error: {e}\nSQL: {sql}")
            await self._notify_error(e)
            raise QueryExecutionError(f"Database connection error: {e}", sql=sql) from e

        return [dict(row) for row in rows]

    async def fetch_val(self, query: str, *args, timeout: Optional[float] = None) -> Any:
        async with self.get_connection() as conn:
            return await conn.fetchval(query, *args, timeout=timeout or self.query_timeout)

    async def is_healthy(self) -> bool:
        """
        Check if the connection pool is healthy.

        Returns:
            bool: True if pool is healthy
        """
        if not self._initialized or self._pool is None:
            return False

        try:
            result = await self.fetch_val("SELECT 1")
            return result == 1
        except (asyncpg.PostgresError, asyncpg.InterfaceError, OSError, asyncio.TimeoutError) as e:
            logger.error(f"Health check failed: {e}")
            return False

    async def get_pool_stats(self) -> Dict[str, Any]:
        """
        Get connection pool statistics.

        Returns:
            Dict with pool statistics
        """
        if not self._initialized or self._pool is None:
            return {
                "initialized": False,
                "size": 0,
                "free": 0,
            }

        return {
            "initialized": True,
            "min_size": self.min_size,
            "max_size": self.max_size,
            "size": self._pool.get_size(),
            "free": self._pool.get_idle_size(),
            "in_use": self._pool.get_size() - self._pool.get_idle_size(),
        }

    async def close(self):
        """Close the connection pool for good; later queries raise instead of reconnecting."""
        self._closed = True
        self._initialized = False
        pool, self._pool = self._pool, None
        if pool is not None:
            logger.info(f"[{self.pool_name}] Closing Postgres connection pool...")
            await pool.close()
            logger.info(f"[{self.pool_name}] Postgres pool closed")


# Global connection pool instance
_default_pool: Optional[PostgresConnectionPool] = None


def get_default_pool() -> PostgresConnectionPool:
    """
    Get or create the default Postgres connection pool.

    Returns:
        PostgresConnectionPool: Default pool instance
    """
    global _default_pool

    if _default_pool is None:
        _default_pool = PostgresConnectionPool(
            host=settings.POSTGRES_HOST,
            port=settings.POSTGRES_PORT,
            database=settings.POSTGRES_DATABASE,
            user=settings.POSTGRES_USER,
            password=settings.POSTGRES_PASSWORD,
            min_size=settings.POSTGRES_POOL_MIN_SIZE,
            max_size=settings.pool_max_size,
            query_timeout=settings.POSTGRES_QUERY_TIMEOUT_SECONDS,
            connect_timeout=settings.POSTGRES_CONNECT_TIMEOUT_SECONDS,
            idle_timeout=settings.POSTGRES_POOL_IDLE_TIMEOUT_SECONDS,
            pool_name="dashboard",
        )

    return _default_pool


def is_default_pool(pool: Any) -> bool:
    """True while ``pool`` is still the process-wide default."""
    return _default_pool is not None and _default_pool is pool


async def close_all_pools():
    """Close and forget the default pool."""
    global _default_pool

    pool, _default_pool = _default_pool, None
    if pool is not None:
        logger.info("Closing default pool...")
        await pool.close()
