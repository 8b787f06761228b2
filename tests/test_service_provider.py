from __future__ import annotations

import asyncio
from contextlib import asynccontextmanager
from unittest.mock import AsyncMock

import pytest

from perfdash.connectors import postgres_pool
from perfdash.core import service_provider
from perfdash.core.dashboard_service import DashboardService
from perfdash.core.errors import QueryExecutionError


class _StubPool:
    def __init__(self):
        self.hooks = []
        self.initialize_calls = 0

    async def initialize(self):
        self.initialize_calls += 1
        await asyncio.sleep(0)

    def add_error_hook(self, hook):
        self.hooks.append(hook)

    async def execute(self, sql, params):
        return []


@pytest.fixture
def stub_pool(monkeypatch):
    pool = _StubPool()
    monkeypatch.setattr(postgres_pool, "_default_pool", pool)
    monkeypatch.setattr(postgres_pool, "get_default_pool", lambda: pool)
    monkeypatch.setattr(service_provider, "_service", None)
    monkeypatch.setattr(service_provider, "_lock", asyncio.Lock())
    return pool


@pytest.mark.asyncio
async def test_concurrent_first_requests_share_one_service(stub_pool):
    services = await asyncio.gather(
        *(service_provider.get_dashboard_service() for _ in range(5))
    )

    assert isinstance(services[0], DashboardService)
    assert all(s is services[0] for s in services)
    assert stub_pool.initialize_calls == 1
    assert len(stub_pool.hooks) == 1


@pytest.mark.asyncio
async def test_pool_error_drops_service_and_closes_pool(stub_pool, monkeypatch):
    close_all = AsyncMock()
    monkeypatch.setattr(postgres_pool, "close_all_pools", close_all)

    first = await service_provider.get_dashboard_service()
    (hook,) = stub_pool.hooks
    await hook(ConnectionResetError("reset"))

    close_all.assert_awaited_once()
    second = await service_provider.get_dashboard_service()
    assert second is not first
    assert stub_pool.initialize_calls == 2


@pytest.mark.asyncio
async def test_late_error_from_retired_pool_keeps_current_service(stub_pool, monkeypatch):
    close_all = AsyncMock()
    monkeypatch.setattr(postgres_pool, "close_all_pools", close_all)

    current = await service_provider.get_dashboard_service()
    (hook,) = stub_pool.hooks
    monkeypatch.setattr(postgres_pool, "_default_pool", _StubPool())

    await hook(ConnectionResetError("reset"))

    close_all.assert_not_awaited()
    assert await service_provider.get_dashboard_service() is current


@pytest.mark.asyncio
async def test_invalidate_without_closing(stub_pool, monkeypatch):
    close_all = AsyncMock()
    monkeypatch.setattr(postgres_pool, "close_all_pools", close_all)

    await service_provider.get_dashboard_service()
    await service_provider.invalidate_dashboard_service()

    assert service_provider._service is None
    close_all.assert_not_awaited()


class _ResettingConnection:
    async def fetch(self, sql, *args, timeout=None):
        raise ConnectionResetError("reset by peer")


class _AsyncpgPoolStub:
    def __init__(self):
        self.closed = False

    @asynccontextmanager
    async def acquire(self):
        yield _ResettingConnection()

    async def close(self):
        self.closed = True


@pytest.mark.asyncio
async def test_in_flight_service_cannot_reopen_a_reset_pool(monkeypatch):
    created = []

    async def create_pool(**kwargs):
        created.append(_AsyncpgPoolStub())
        return created[-1]

    monkeypatch.setattr(postgres_pool.asyncpg, "create_pool", create_pool)
    monkeypatch.setattr(postgres_pool, "_default_pool", None)
    monkeypatch.setattr(service_provider, "_service", None)
    monkeypatch.setattr(service_provider, "_lock", asyncio.Lock())

    stale = await service_provider.get_dashboard_service()
    stale_pool = postgres_pool._default_pool

    with pytest.raises(QueryExecutionError, match="connection error"):
        await stale.store.fetch_runs_by_ids(["r1"])

    assert created[0].closed
    assert postgres_pool._default_pool is None
    assert service_provider._service is None

    # A request that grabbed the old façade before the reset keeps using it.
    with pytest.raises(QueryExecutionError, match="is closed"):
        await stale.store.fetch_runs_by_ids(["r1"])
    assert len(created) == 1
    assert stale_pool._pool is None

    fresh = await service_provider.get_dashboard_service()
    assert fresh is not stale
    assert postgres_pool._default_pool is not stale_pool
    assert len(created) == 2
