"""Integration test fixtures providing ephemeral PostgreSQL via testcontainers.

The PostgresContainer is session-scoped to avoid the Docker startup per test.
The schema is recreated per test (function-scoped ``db`` fixture) for isolation.
"""

from __future__ import annotations

from pathlib import Path

import asyncpg
import pytest
from pydantic import SecretStr
from testcontainers.postgres import PostgresContainer

from wotgraph.core.database import Database
from wotgraph.core.pool import DatabaseConfig, Pool, PoolConfig


SCHEMA = Path(__file__).parent.parent.parent / "sql" / "schema.sql"


# ---------------------------------------------------------------------------
# Session-scoped container
# ---------------------------------------------------------------------------


@pytest.fixture(scope="session")
def pg_container():
    """Spawn an ephemeral PostgreSQL 16 container for the test session."""
    with PostgresContainer("postgres:16-alpine") as pg:
        yield pg


@pytest.fixture(scope="session")
def pg_dsn(pg_container: PostgresContainer) -> dict[str, str | int]:
    return {
        "host": pg_container.get_container_host_ip(),
        "port": int(pg_container.get_exposed_port(5432)),
        "database": pg_container.dbname,
        "user": pg_container.username,
        "password": pg_container.password,
    }


# ---------------------------------------------------------------------------
# Function-scoped Database with fresh schema
# ---------------------------------------------------------------------------


@pytest.fixture
async def db(pg_dsn: dict[str, str | int]):
    """A connected Database on a freshly created schema."""
    host = str(pg_dsn["host"])
    port = int(pg_dsn["port"])
    database = str(pg_dsn["database"])
    user = str(pg_dsn["user"])
    password = str(pg_dsn["password"])

    conn = await asyncpg.connect(
        host=host, port=port, database=database, user=user, password=password
    )
    try:
        await conn.execute("DROP SCHEMA public CASCADE")
        await conn.execute("CREATE SCHEMA public")
        await conn.execute(SCHEMA.read_text())
    finally:
        await conn.close()

    config = PoolConfig(
        database=DatabaseConfig(
            host=host,
            port=port,
            database=database,
            user=user,
            password=SecretStr(password),
        ),
    )
    async with Database(pool=Pool(config=config)) as database_instance:
        yield database_instance
