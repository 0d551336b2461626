"""
Abstract base class for wotgraph services.

``BaseService[ConfigT]`` gives every service the same lifecycle: a
structured [Logger][wotgraph.core.logger.Logger] named after the service,
graceful shutdown through an ``asyncio.Event``, interval cycling with
[run_forever()][wotgraph.core.base_service.BaseService.run_forever],
a consecutive-failure limit and Prometheus bookkeeping.

Lifecycle used by the CLI:

```python
async with database, service:
    await service.run_forever()   # or: await service.run() for --once
```
"""

import asyncio
import time
from abc import ABC, abstractmethod
from types import TracebackType
from typing import Any, ClassVar, Generic, Self, TypeVar, cast

from pydantic import BaseModel, Field

from wotgraph.models.constants import ServiceName

from .database import Database
from .logger import Logger
from .metrics import (
    CYCLE_DURATION_SECONDS,
    SERVICE_COUNTER,
    SERVICE_GAUGE,
    SERVICE_INFO,
    MetricsConfig,
)
from .yaml import load_yaml


class BaseServiceConfig(BaseModel):
    """Settings every service accepts.

    Subclasses add their own fields. ``interval`` is the pause between two
    ``run()`` cycles of ``run_forever()``.
    """

    interval: float = Field(
        default=3600.0,
        ge=60.0,
        description="Seconds between run cycles",
    )
    max_consecutive_failures: int = Field(
        default=5,
        ge=0,
        description="Stop after this many consecutive errors (0 = unlimited)",
    )
    metrics: MetricsConfig = Field(
        default_factory=MetricsConfig,
        description="Prometheus metrics configuration",
    )


ConfigT = TypeVar("ConfigT", bound=BaseServiceConfig)


class BaseService(ABC, Generic[ConfigT]):
    """Base for all services.

    Subclasses set ``SERVICE_NAME`` and ``CONFIG_CLASS`` and implement
    [run()][wotgraph.core.base_service.BaseService.run].

    Attributes:
        SERVICE_NAME: Identifier used for the logger name and metric labels.
        CONFIG_CLASS: Pydantic model used by the factory methods.
        _db: [Database][wotgraph.core.database.Database] facade.
        _config: Typed service configuration.
        _logger: Logger named after the service.
        _shutdown_event: Set once shutdown has been requested.
    """

    SERVICE_NAME: ClassVar[ServiceName]
    CONFIG_CLASS: ClassVar[type[BaseModel]]

    def __init__(self, database: Database, config: ConfigT | None = None) -> None:
        self._db = database
        self._config: ConfigT = (
            config if config is not None else cast("ConfigT", self.CONFIG_CLASS())
        )
        self._logger = Logger(self.SERVICE_NAME)
        self._shutdown_event = asyncio.Event()

    @property
    def config(self) -> ConfigT:
        return self._config

    @abstractmethod
    async def run(self) -> None:
        """Execute one bounded unit of work.

        Exceptions propagate to
        [run_forever()][wotgraph.core.base_service.BaseService.run_forever],
        which counts them towards the consecutive failure limit.
        """
        ...

    def request_shutdown(self) -> None:
        """Ask the run loop to stop. Safe to call from a signal handler."""
        self._shutdown_event.set()

    @property
    def is_running(self) -> bool:
        return not self._shutdown_event.is_set()

    async def wait(self, timeout: float) -> bool:  # noqa: ASYNC109
        """Sleep up to *timeout* seconds; return ``True`` if shutdown interrupted it."""
        try:
            await asyncio.wait_for(self._shutdown_event.wait(), timeout=timeout)
        except TimeoutError:
            return False
        return True

    async def run_forever(self) -> None:
        """Call ``run()`` every ``config.interval`` seconds until shutdown.

        Stops early once ``config.max_consecutive_failures`` cycles in a row
        have raised (``0`` disables the limit). ``CancelledError``,
        ``KeyboardInterrupt`` and ``SystemExit`` propagate without being
        counted.
        """
        interval = self._config.interval
        limit = self._config.max_consecutive_failures

        if self._config.metrics.enabled:
            SERVICE_INFO.info({"service": self.SERVICE_NAME})
        self._logger.info("run_forever_started", interval=interval, max_consecutive_failures=limit)

        failures = 0
        while self.is_running:
            failures = 0 if await self._run_cycle() else failures + 1
            self.set_gauge("consecutive_failures", failures)

            if 0 < limit <= failures:
                self._logger.critical(
                    "max_consecutive_failures_reached", failures=failures, limit=limit
                )
                break
            if await self.wait(interval):
                break

        self._logger.info("run_forever_stopped")

    async def _run_cycle(self) -> bool:
        """Run one cycle and record its outcome; ``False`` if it raised."""
        started = time.monotonic()
        try:
            await self.run()
        except (asyncio.CancelledError, KeyboardInterrupt, SystemExit):
            raise
        except Exception as e:  # Error boundary: one failed cycle must not end the loop
            error_type = type(e).__name__
            self.inc_counter("cycles_failed")
            self.inc_counter(f"errors_{error_type}")
            self._logger.error("run_cycle_error", error=str(e), error_type=error_type)
            return False

        elapsed = time.monotonic() - started
        if self._config.metrics.enabled:
            CYCLE_DURATION_SECONDS.labels(service=self.SERVICE_NAME).observe(elapsed)
        self.inc_counter("cycles_success")
        self.set_gauge("last_cycle_timestamp", time.time())
        self._logger.info(
            "cycle_completed", duration_s=round(elapsed, 2), next_cycle_s=self._config.interval
        )
        return True

    # -------------------------------------------------------------------------
    # Factory Methods
    # -------------------------------------------------------------------------

    @classmethod
    def from_yaml(cls, config_path: str, database: Database, **kwargs: Any) -> Self:
        return cls.from_dict(load_yaml(config_path), database=database, **kwargs)

    @classmethod
    def from_dict(cls, data: dict[str, Any], database: Database, **kwargs: Any) -> Self:
        """Validate *data* with ``CONFIG_CLASS`` and construct the service."""
        config = cast("ConfigT", cls.CONFIG_CLASS(**data))
        return cls(database=database, config=config, **kwargs)

    # -------------------------------------------------------------------------
    # Context Manager
    # -------------------------------------------------------------------------

    async def __aenter__(self) -> Self:
        self._shutdown_event.clear()
        self._logger.info("service_started")
        return self

    async def __aexit__(
        self,
        _exc_type: type[BaseException] | None,
        _exc_val: BaseException | None,
        _exc_tb: TracebackType | None,
    ) -> None:
        self._shutdown_event.set()
        self._logger.info("service_stopped")

    # -------------------------------------------------------------------------
    # Custom Metrics
    # -------------------------------------------------------------------------

    def set_gauge(self, name: str, value: float) -> None:
        """Set ``SERVICE_GAUGE{service, name}``. No-op with metrics disabled."""
        if not self._config.metrics.enabled:
            return
        SERVICE_GAUGE.labels(service=self.SERVICE_NAME, name=name).set(value)

    def inc_counter(self, name: str, value: float = 1) -> None:
        """Increment ``SERVICE_COUNTER{service, name}``. No-op with metrics disabled."""
        if not self._config.metrics.enabled:
            return
        SERVICE_COUNTER.labels(service=self.SERVICE_NAME, name=name).inc(value)
