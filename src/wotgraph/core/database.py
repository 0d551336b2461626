"""
Database facade used by every service.

[Database][wotgraph.core.database.Database] composes a private
[Pool][wotgraph.core.pool.Pool], applies configured default timeouts to
every query, and owns the one bulk write whose shape depends on the
database: staging a build's nodes with array parameters and ``unnest``.
Domain SQL lives in [queries][wotgraph.services.common.queries].
"""

from __future__ import annotations

from typing import TYPE_CHECKING, Any

import asyncpg  # noqa: TC002
from pydantic import BaseModel, Field, field_validator

from .logger import Logger
from .pool import Pool
from .yaml import load_yaml


if TYPE_CHECKING:
    from collections.abc import Sequence
    from contextlib import AbstractAsyncContextManager

    from wotgraph.models import GraphNode


_MIN_TIMEOUT_SECONDS = 0.1


# ---------------------------------------------------------------------------
# Configuration Models
# ---------------------------------------------------------------------------


class BatchConfig(BaseModel):
    """Rows per round-trip for bulk inserts. Larger inputs are split."""

    max_size: int = Field(
        default=5000, ge=1, le=100_000, description="Maximum rows per bulk insert statement"
    )


class DatabaseTimeoutsConfig(BaseModel):
    """Default client-side timeouts in seconds (``None`` waits forever)."""

    query: float | None = Field(default=60.0, description="Query timeout (seconds, None=infinite)")
    batch: float | None = Field(
        default=120.0, description="Bulk insert timeout (seconds, None=infinite)"
    )

    @field_validator("query", "batch", mode="after")
    @classmethod
    def validate_timeout(cls, v: float | None) -> float | None:
        if v is not None and v < _MIN_TIMEOUT_SECONDS:
            raise ValueError(
                f"Timeout must be None (infinite) or >= {_MIN_TIMEOUT_SECONDS} seconds"
            )
        return v


class DatabaseFacadeConfig(BaseModel):
    batch: BatchConfig = Field(default_factory=BatchConfig)
    timeouts: DatabaseTimeoutsConfig = Field(default_factory=DatabaseTimeoutsConfig)


# ---------------------------------------------------------------------------
# Database Class
# ---------------------------------------------------------------------------


class Database:
    """Query facade over a private connection pool.

    Example:
        ```python
        db = Database.from_yaml("config/database.yaml")
        async with db:
            rows = await db.fetch("SELECT pubkey FROM seeder")
        ```
    """

    def __init__(
        self,
        pool: Pool | None = None,
        config: DatabaseFacadeConfig | None = None,
    ) -> None:
        self._pool = pool or Pool()
        self._config = config or DatabaseFacadeConfig()
        self._logger = Logger("database")

    @property
    def config(self) -> DatabaseFacadeConfig:
        return self._config

    @classmethod
    def from_yaml(cls, config_path: str) -> Database:
        """Build from a YAML file with a ``pool`` section plus facade settings."""
        return cls.from_dict(load_yaml(config_path))

    @classmethod
    def from_dict(cls, config_dict: dict[str, Any]) -> Database:
        pool = Pool.from_dict(config_dict["pool"]) if "pool" in config_dict else None
        facade = {k: v for k, v in config_dict.items() if k != "pool"}
        config = DatabaseFacadeConfig(**facade) if facade else None
        return cls(pool=pool, config=config)

    # -------------------------------------------------------------------------
    # Helper Methods
    # -------------------------------------------------------------------------

    def _chunks(self, rows: Sequence[Any]) -> list[Sequence[Any]]:
        size = self._config.batch.max_size
        return [rows[i : i + size] for i in range(0, len(rows), size)]

    @staticmethod
    def _transpose_to_columns(params: Sequence[tuple[Any, ...]]) -> tuple[list[Any], ...]:
        """Turn row tuples into per-column lists for ``unnest($1::t[], ...)`` inserts.

        Raises:
            ValueError: If the rows do not all have the same width.
        """
        if not params:
            return ()

        width = len(params[0])
        for i, row in enumerate(params):
            if len(row) != width:
                raise ValueError(f"Row {i} has {len(row)} columns, expected {width}")

        return tuple(list(col) for col in zip(*params, strict=True))

    def _query_timeout(self, timeout: float | None) -> float | None:
        return timeout if timeout is not None else self._config.timeouts.query

    # -------------------------------------------------------------------------
    # Generic Query Facade
    # -------------------------------------------------------------------------

    async def fetch(
        self,
        query: str,
        *args: Any,
        timeout: float | None = None,  # noqa: ASYNC109
    ) -> list[asyncpg.Record]:
        return await self._pool.fetch(query, *args, timeout=self._query_timeout(timeout))

    async def fetchrow(
        self,
        query: str,
        *args: Any,
        timeout: float | None = None,  # noqa: ASYNC109
    ) -> asyncpg.Record | None:
        return await self._pool.fetchrow(query, *args, timeout=self._query_timeout(timeout))

    async def fetchval(self, query: str, *args: Any, timeout: float | None = None) -> Any:  # noqa: ASYNC109
        return await self._pool.fetchval(query, *args, timeout=self._query_timeout(timeout))

    async def execute(self, query: str, *args: Any, timeout: float | None = None) -> str:  # noqa: ASYNC109
        return await self._pool.execute(query, *args, timeout=self._query_timeout(timeout))

    def transaction(self) -> AbstractAsyncContextManager[asyncpg.Connection[asyncpg.Record]]:
        """Return the pool's transaction context manager.

        Example:
            ```python
            async with db.transaction() as conn:
                await conn.execute("UPDATE build_run ...")
                await conn.execute("DELETE FROM graph_node ...")
            ```
        """
        return self._pool.transaction()

    # -------------------------------------------------------------------------
    # Bulk Writes
    # -------------------------------------------------------------------------

    async def insert_graph_nodes(self, records: Sequence[GraphNode], generation: int) -> int:
        """Stage nodes under *generation* in one transaction.

        Rows are sent in chunks of ``batch.max_size`` using array parameters.
        Nothing becomes visible to readers until the generation's run is
        marked ``COMPLETED``.

        Args:
            records: Validated nodes, unique by pubkey.
            generation: Id of the ``build_run`` that produced them.

        Returns:
            Number of rows inserted.
        """
        if not records:
            return 0

        inserted = 0
        async with self._pool.transaction() as conn:
            for chunk in self._chunks(records):
                columns = self._transpose_to_columns([node.to_db_params() for node in chunk])
                status: str = await conn.execute(
                    """
                    INSERT INTO graph_node (generation, pubkey, depth, score, trusted_followers)
                    SELECT $1, *
                    FROM unnest($2::text[], $3::integer[], $4::double precision[], $5::integer[])
                    """,
                    generation,
                    *columns,
                    timeout=self._config.timeouts.batch,
                )
                inserted += int(status.rsplit(" ", 1)[-1])

        self._logger.debug("graph_nodes_staged", generation=generation, count=inserted)
        return inserted

    # -------------------------------------------------------------------------
    # Lifecycle
    # -------------------------------------------------------------------------

    async def connect(self) -> None:
        await self._pool.connect()

    async def close(self) -> None:
        await self._pool.close()

    async def __aenter__(self) -> Database:
        await self.connect()
        return self

    async def __aexit__(self, exc_type: Any, exc_val: Any, exc_tb: Any) -> None:
        await self.close()

    def __repr__(self) -> str:
        db = self._pool.config.database
        return (
            f"Database(host={db.host}, database={db.database}, "
            f"connected={self._pool.is_connected})"
        )
