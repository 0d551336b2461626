"""
Pytest configuration and shared fixtures for wotgraph tests.

Provides:
- Mock asyncpg connection and pool, a Pool and a Database wired to them
- Canonical sample pubkeys
- An in-memory follow-list fetcher for propagation and builder tests
"""

from __future__ import annotations

import asyncio
import logging
from typing import Any
from unittest.mock import AsyncMock, MagicMock

import pytest

from wotgraph.core.database import Database
from wotgraph.core.exceptions import FetchFailure, FetchTimeout
from wotgraph.core.pool import DatabaseConfig, Pool, PoolConfig


# ============================================================================
# Logging Configuration
# ============================================================================


@pytest.fixture(scope="session", autouse=True)
def setup_logging() -> None:
    logging.basicConfig(level=logging.DEBUG)


# ============================================================================
# Mock Fixtures
# ============================================================================


@pytest.fixture
def mock_connection() -> MagicMock:
    """Create a mock asyncpg connection."""
    conn = MagicMock()
    conn.fetch = AsyncMock(return_value=[])
    conn.fetchrow = AsyncMock(return_value=None)
    conn.fetchval = AsyncMock(return_value=1)
    conn.execute = AsyncMock(return_value="OK")

    mock_transaction = MagicMock()
    mock_transaction.__aenter__ = AsyncMock(return_value=conn)
    mock_transaction.__aexit__ = AsyncMock(return_value=None)
    conn.transaction = MagicMock(return_value=mock_transaction)

    return conn


@pytest.fixture
def mock_asyncpg_pool(mock_connection: MagicMock) -> MagicMock:
    """Create a mock asyncpg pool."""
    pool = MagicMock()
    pool.close = AsyncMock()

    mock_acquire = MagicMock()
    mock_acquire.__aenter__ = AsyncMock(return_value=mock_connection)
    mock_acquire.__aexit__ = AsyncMock(return_value=None)
    pool.acquire = MagicMock(return_value=mock_acquire)

    return pool


@pytest.fixture
def mock_pool(
    mock_asyncpg_pool: MagicMock, mock_connection: MagicMock, monkeypatch: pytest.MonkeyPatch
) -> Pool:
    """Create a Pool with mocked internals."""
    monkeypatch.setenv("WOTGRAPH_DB_PASSWORD", "test_password")

    config = PoolConfig(
        database=DatabaseConfig(host="localhost", port=5432, database="test_db", user="test_user")
    )
    pool = Pool(config=config)
    pool._pool = mock_asyncpg_pool
    pool._is_connected = True
    pool._mock_connection = mock_connection  # type: ignore[attr-defined]
    return pool


@pytest.fixture
def mock_database(mock_pool: Pool) -> Database:
    """Create a Database facade over the mocked pool."""
    return Database(pool=mock_pool)


@pytest.fixture
def mock_db() -> MagicMock:
    """A Database stand-in with every query method stubbed.

    ``mock_db._mock_conn`` is the connection yielded by ``transaction()``.
    """
    db = MagicMock()
    db.fetch = AsyncMock(return_value=[])
    db.fetchrow = AsyncMock(return_value=None)
    db.fetchval = AsyncMock(return_value=None)
    db.execute = AsyncMock(return_value="UPDATE 0")
    db.insert_graph_nodes = AsyncMock(return_value=0)

    conn = MagicMock()
    conn.fetch = AsyncMock(return_value=[])
    conn.fetchval = AsyncMock(return_value=None)
    conn.execute = AsyncMock(return_value="UPDATE 1")
    tx = MagicMock()
    tx.__aenter__ = AsyncMock(return_value=conn)
    tx.__aexit__ = AsyncMock(return_value=False)
    db.transaction = MagicMock(return_value=tx)
    db._mock_conn = conn
    return db


# ============================================================================
# Sample Data
# ============================================================================


def _key(char: str) -> str:
    return char * 64


@pytest.fixture
def keys() -> dict[str, str]:
    """Readable aliases for canonical pubkeys: ``keys["a"] == "a" * 64``."""
    return {c: _key(c) for c in "abcdef0123456789"}


class FakeFetcher:
    """In-memory follow graph implementing ``FollowsFetcher``.

    Keys listed in ``failing`` raise ``FetchFailure``, keys in ``slow``
    raise ``FetchTimeout``. Every call is recorded in ``calls``.
    """

    def __init__(
        self,
        graph: dict[str, set[str]] | None = None,
        *,
        failing: set[str] | None = None,
        slow: set[str] | None = None,
        delay: float = 0.0,
    ) -> None:
        self.graph = graph or {}
        self.failing = failing or set()
        self.slow = slow or set()
        self.delay = delay
        self.calls: list[str] = []
        self.in_flight = 0
        self.max_in_flight = 0

    async def fetch_follows(self, pubkey: str, timeout: float) -> set[str]:  # noqa: ASYNC109
        self.calls.append(pubkey)
        self.in_flight += 1
        self.max_in_flight = max(self.max_in_flight, self.in_flight)
        try:
            if self.delay:
                await asyncio.sleep(self.delay)
            if pubkey in self.failing:
                raise FetchFailure(f"relay error for {pubkey}")
            if pubkey in self.slow:
                raise FetchTimeout(f"timed out for {pubkey}")
            return set(self.graph.get(pubkey, set()))
        finally:
            self.in_flight -= 1


@pytest.fixture
def fake_fetcher_cls() -> type[FakeFetcher]:
    return FakeFetcher


def make_record(**fields: Any) -> dict[str, Any]:
    """Row stand-in: asyncpg records are read by key only."""
    return dict(fields)


@pytest.fixture
def record() -> Any:
    return make_record


# ============================================================================
# Pytest Configuration
# ============================================================================


def pytest_collection_modifyitems(config: pytest.Config, items: list[pytest.Item]) -> None:
    """Auto-mark tests based on location."""
    for item in items:
        if "integration" in str(item.fspath):
            item.add_marker(pytest.mark.integration)
        elif "unit" in str(item.fspath):
            item.add_marker(pytest.mark.unit)
