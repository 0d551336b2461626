"""
Async PostgreSQL connection pool built on asyncpg.

The pool owns connection lifecycle (connect with backoff, close) and
retries queries that fail because a pooled connection went away. Query-level
errors such as constraint violations are never retried; they reach the
caller unchanged so that, for example, a ``UniqueViolationError`` on
``build_run`` can be turned into a build conflict.

Examples:
    ```python
    pool = Pool.from_yaml("config/database.yaml")

    async with pool:
        total = await pool.fetchval("SELECT count(*) FROM seeder")
    ```

See Also:
    [Database][wotgraph.core.database.Database]: The facade services use
        instead of this class.
"""

from __future__ import annotations

import asyncio
import os
from collections.abc import AsyncIterator  # noqa: TC003
from contextlib import AbstractAsyncContextManager, asynccontextmanager
from typing import Any, Literal, cast

import asyncpg
from pydantic import BaseModel, Field, SecretStr, ValidationInfo, field_validator, model_validator

from .logger import Logger
from .yaml import load_yaml


_DEFAULT_PASSWORD_ENV = "WOTGRAPH_DB_PASSWORD"  # pragma: allowlist secret


# ---------------------------------------------------------------------------
# Configuration Models
# ---------------------------------------------------------------------------


class DatabaseConfig(BaseModel):
    """Where to connect and as whom.

    The password never comes from a config file. It is read from the
    environment variable named by ``password_env`` unless passed explicitly.
    """

    host: str = Field(default="localhost", min_length=1)
    port: int = Field(default=5432, ge=1, le=65535)
    database: str = Field(default="wotgraph", min_length=1)
    user: str = Field(default="wotgraph", min_length=1)
    password_env: str = Field(default=_DEFAULT_PASSWORD_ENV, min_length=1)
    password: SecretStr

    @model_validator(mode="before")
    @classmethod
    def resolve_password(cls, data: Any) -> Any:
        if not isinstance(data, dict) or "password" in data:
            return data
        env_var = data.get("password_env", _DEFAULT_PASSWORD_ENV)
        secret = os.getenv(env_var)
        if not secret:
            raise ValueError(f"{env_var} environment variable not set")
        return {**data, "password": SecretStr(secret)}


class PoolLimitsConfig(BaseModel):
    min_size: int = Field(default=1, ge=1, le=100, description="Connections kept open")
    max_size: int = Field(default=10, ge=1, le=200, description="Connection ceiling")
    max_inactive_connection_lifetime: float = Field(
        default=300.0, ge=0.0, description="Seconds before an idle connection is closed"
    )

    @field_validator("max_size")
    @classmethod
    def validate_max_size(cls, v: int, info: ValidationInfo) -> int:
        min_size = info.data.get("min_size", 1)
        if v < min_size:
            raise ValueError(f"max_size ({v}) must be >= min_size ({min_size})")
        return v


class PoolTimeoutsConfig(BaseModel):
    acquisition: float = Field(default=10.0, ge=0.1, description="Seconds to wait for a connection")


class PoolRetryConfig(BaseModel):
    """Backoff shared by connection attempts and dropped-connection retries.

    Exponential mode waits ``initial_delay * 2**attempt``, linear mode
    ``initial_delay * (attempt + 1)``, both capped at ``max_delay``.
    """

    max_attempts: int = Field(default=3, ge=1, le=10)
    initial_delay: float = Field(default=1.0, ge=0.1)
    max_delay: float = Field(default=10.0, ge=0.1)
    exponential_backoff: bool = True

    @field_validator("max_delay")
    @classmethod
    def validate_max_delay(cls, v: float, info: ValidationInfo) -> float:
        initial_delay = info.data.get("initial_delay", 1.0)
        if v < initial_delay:
            raise ValueError(f"max_delay ({v}) must be >= initial_delay ({initial_delay})")
        return v


class ServerSettingsConfig(BaseModel):
    """Session settings sent with every pooled connection.

    ``statement_timeout`` is in milliseconds, 0 meaning unlimited. It bounds
    queries server-side regardless of the client timeouts.
    """

    application_name: str = "wotgraph"
    timezone: str = "UTC"
    statement_timeout: int = Field(default=300_000, ge=0)

    def as_server_settings(self) -> dict[str, str]:
        return {
            "application_name": self.application_name,
            "timezone": self.timezone,
            "statement_timeout": str(self.statement_timeout),
        }


class PoolConfig(BaseModel):
    """The ``pool`` section of ``database.yaml``."""

    database: DatabaseConfig = Field(default_factory=lambda: DatabaseConfig.model_validate({}))
    limits: PoolLimitsConfig = Field(default_factory=PoolLimitsConfig)
    timeouts: PoolTimeoutsConfig = Field(default_factory=PoolTimeoutsConfig)
    retry: PoolRetryConfig = Field(default_factory=PoolRetryConfig)
    server_settings: ServerSettingsConfig = Field(default_factory=ServerSettingsConfig)


# ---------------------------------------------------------------------------
# Pool Class
# ---------------------------------------------------------------------------


_QueryOperation = Literal["fetch", "fetchrow", "fetchval", "execute"]

# A pooled connection that the server or network dropped. Anything else
# (constraint violations, syntax errors, timeouts) is the caller's problem.
_DROPPED_CONNECTION = (asyncpg.InterfaceError, asyncpg.ConnectionDoesNotExistError)


class Pool:
    """Async PostgreSQL connection pool manager.

    Created disconnected; call [connect()][wotgraph.core.pool.Pool.connect]
    or use it as an async context manager.
    """

    def __init__(self, config: PoolConfig | None = None) -> None:
        self._config = config or PoolConfig()
        self._pool: asyncpg.Pool[asyncpg.Record] | None = None
        self._is_connected: bool = False
        self._connection_lock = asyncio.Lock()
        self._logger = Logger("pool")

    @classmethod
    def from_yaml(cls, config_path: str) -> Pool:
        return cls.from_dict(load_yaml(config_path))

    @classmethod
    def from_dict(cls, config_dict: dict[str, Any]) -> Pool:
        return cls(config=PoolConfig(**config_dict))

    @property
    def is_connected(self) -> bool:
        return self._is_connected

    @property
    def config(self) -> PoolConfig:
        return self._config

    def _retry_delay(self, attempt: int) -> float:
        retry = self._config.retry
        steps = 2**attempt if retry.exponential_backoff else attempt + 1
        return float(min(retry.initial_delay * steps, retry.max_delay))

    async def _backoff(self, event: str, attempt: int, error: Exception, **context: Any) -> None:
        delay = self._retry_delay(attempt)
        self._logger.warning(event, attempt=attempt + 1, delay_s=delay, error=str(error), **context)
        await asyncio.sleep(delay)

    # -------------------------------------------------------------------------
    # Connection Lifecycle
    # -------------------------------------------------------------------------

    async def _create_pool(self) -> asyncpg.Pool[asyncpg.Record]:
        db = self._config.database
        limits = self._config.limits
        session = self._config.server_settings
        return await asyncpg.create_pool(
            host=db.host,
            port=db.port,
            database=db.database,
            user=db.user,
            password=db.password.get_secret_value(),
            min_size=limits.min_size,
            max_size=limits.max_size,
            max_inactive_connection_lifetime=limits.max_inactive_connection_lifetime,
            timeout=self._config.timeouts.acquisition,
            server_settings=session.as_server_settings(),
        )

    async def connect(self) -> None:
        """Create the asyncpg pool, retrying with backoff.

        Idempotent and guarded by a lock so concurrent callers create a
        single pool.

        Raises:
            ConnectionError: If every attempt failed.
        """
        async with self._connection_lock:
            if self._is_connected:
                return

            db = self._config.database
            attempts = self._config.retry.max_attempts
            self._logger.info("pool_connecting", host=db.host, port=db.port, database=db.database)

            for attempt in range(attempts):
                try:
                    self._pool = await self._create_pool()
                except (asyncpg.PostgresError, OSError, ConnectionError) as e:
                    if attempt + 1 == attempts:
                        self._logger.error("pool_connect_failed", attempts=attempts, error=str(e))
                        raise ConnectionError(
                            f"could not reach {db.host}:{db.port} after {attempts} attempts: {e}"
                        ) from e
                    await self._backoff("pool_connect_retry", attempt, e)
                else:
                    self._is_connected = True
                    self._logger.info("pool_connected")
                    return

    async def close(self) -> None:
        """Close the pool. Safe to call more than once."""
        async with self._connection_lock:
            pool, self._pool = self._pool, None
            self._is_connected = False
            if pool is not None:
                await pool.close()
                self._logger.info("pool_closed")

    async def __aenter__(self) -> Pool:
        await self.connect()
        return self

    async def __aexit__(
        self,
        exc_type: type[BaseException] | None,
        exc_val: BaseException | None,
        exc_tb: Any | None,
    ) -> None:
        await self.close()

    # -------------------------------------------------------------------------
    # Connections and Queries
    # -------------------------------------------------------------------------

    def acquire(self) -> AbstractAsyncContextManager[asyncpg.Connection[asyncpg.Record]]:
        """Borrow a connection for the duration of an ``async with`` block.

        Raises:
            RuntimeError: If the pool has not been connected yet.
        """
        if self._pool is None or not self._is_connected:
            raise RuntimeError("Pool not connected. Call connect() first.")
        return cast(
            "AbstractAsyncContextManager[asyncpg.Connection[asyncpg.Record]]",
            self._pool.acquire(),
        )

    @asynccontextmanager
    async def transaction(self) -> AsyncIterator[asyncpg.Connection[asyncpg.Record]]:
        """Borrow a connection inside a transaction.

        Commits on normal exit and rolls back when an exception escapes the
        block. Statements inside are not retried.
        """
        async with self.acquire() as conn, conn.transaction():
            yield conn

    async def _run(
        self,
        operation: _QueryOperation,
        query: str,
        args: tuple[Any, ...],
        **kwargs: Any,
    ) -> Any:
        """Run ``conn.<operation>`` on a fresh connection per attempt.

        Raises:
            ConnectionError: When connections kept dropping for the whole
                retry budget.
        """
        attempts = self._config.retry.max_attempts
        for attempt in range(attempts):
            try:
                async with self.acquire() as conn:
                    return await getattr(conn, operation)(query, *args, **kwargs)
            except _DROPPED_CONNECTION as e:
                if attempt + 1 == attempts:
                    self._logger.error(
                        "query_failed", operation=operation, attempts=attempts, error=str(e)
                    )
                    raise ConnectionError(
                        f"{operation} failed after {attempts} attempts: {e}"
                    ) from e
                await self._backoff("query_retry", attempt, e, operation=operation)
        raise AssertionError("unreachable")

    async def fetch(
        self,
        query: str,
        *args: Any,
        timeout: float | None = None,  # noqa: ASYNC109
    ) -> list[asyncpg.Record]:
        return cast("list[asyncpg.Record]", await self._run("fetch", query, args, timeout=timeout))

    async def fetchrow(
        self,
        query: str,
        *args: Any,
        timeout: float | None = None,  # noqa: ASYNC109
    ) -> asyncpg.Record | None:
        row = await self._run("fetchrow", query, args, timeout=timeout)
        return cast("asyncpg.Record | None", row)

    async def fetchval(
        self,
        query: str,
        *args: Any,
        column: int = 0,
        timeout: float | None = None,  # noqa: ASYNC109
    ) -> Any:
        return await self._run("fetchval", query, args, timeout=timeout, column=column)

    async def execute(self, query: str, *args: Any, timeout: float | None = None) -> str:  # noqa: ASYNC109
        """Run a statement and return its status tag, e.g. ``"UPDATE 5"``."""
        return cast("str", await self._run("execute", query, args, timeout=timeout))

    def __repr__(self) -> str:
        db = self._config.database
        return f"Pool(host={db.host}, database={db.database}, connected={self._is_connected})"
