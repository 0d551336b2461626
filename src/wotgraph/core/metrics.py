"""
Prometheus metrics shared by all services, plus the scrape endpoint.

Metric objects are module-level singletons. ``BaseService.run_forever()``
records cycle outcomes on its own; services publish domain values through
``set_gauge()`` and ``inc_counter()`` on the base class.

Metrics:
    SERVICE_INFO: Static metadata published once at startup.
    SERVICE_GAUGE: Point-in-time values labelled ``{service, name}``,
        e.g. ``name="nodes_count"``.
    SERVICE_COUNTER: Monotonic totals labelled ``{service, name}``,
        e.g. ``name="fetch_failures"``.
    CYCLE_DURATION_SECONDS: Histogram of ``run()`` durations.
    BUILD_DURATION_SECONDS: Histogram of graph build durations by outcome.
"""

from __future__ import annotations

from aiohttp import web
from prometheus_client import (
    CONTENT_TYPE_LATEST,
    Counter,
    Gauge,
    Histogram,
    Info,
    generate_latest,
)
from pydantic import BaseModel, Field


class MetricsConfig(BaseModel):
    """Prometheus endpoint settings. Use ``host: 0.0.0.0`` inside containers."""

    enabled: bool = Field(default=False, description="Enable metrics collection")
    port: int = Field(default=8000, ge=1024, le=65535, description="Metrics HTTP port")
    host: str = Field(default="127.0.0.1", description="Metrics HTTP bind address")
    path: str = Field(default="/metrics", description="Metrics endpoint path")


SERVICE_INFO = Info("wotgraph_service", "Service information and metadata")

CYCLE_DURATION_SECONDS = Histogram(
    "wotgraph_cycle_duration_seconds",
    "Duration of service cycle in seconds",
    ["service"],
    buckets=(1, 5, 10, 30, 60, 120, 300, 600, 1800, 3600),
)

BUILD_DURATION_SECONDS = Histogram(
    "wotgraph_build_duration_seconds",
    "Duration of trust graph builds in seconds",
    ["status"],
    buckets=(5, 15, 30, 60, 120, 300, 600, 1200, 2400, 3600),
)

SERVICE_GAUGE = Gauge(
    "wotgraph_service_gauge",
    "Service gauge values (point-in-time state)",
    ["service", "name"],
)

SERVICE_COUNTER = Counter(
    "wotgraph_service_counter",
    "Service counter values (cumulative totals)",
    ["service", "name"],
)


class MetricsServer:
    """aiohttp server answering Prometheus scrapes on ``config.path``.

    Example:
        ```python
        server = MetricsServer(MetricsConfig(enabled=True, port=8001))
        await server.start()
        ...
        await server.stop()
        ```
    """

    def __init__(self, config: MetricsConfig) -> None:
        self._config = config
        self._runner: web.AppRunner | None = None

    @property
    def is_running(self) -> bool:
        return self._runner is not None

    async def start(self) -> None:
        """Bind the endpoint. Does nothing when metrics are disabled.

        Raises:
            OSError: If the port cannot be bound.
        """
        if not self._config.enabled:
            return

        app = web.Application()
        app.router.add_get(self._config.path, self._handle_metrics)

        self._runner = web.AppRunner(app, access_log=None)
        await self._runner.setup()
        site = web.TCPSite(self._runner, self._config.host, self._config.port)
        await site.start()

    async def stop(self) -> None:
        if self._runner is not None:
            await self._runner.cleanup()
            self._runner = None

    @staticmethod
    async def _handle_metrics(_request: web.Request) -> web.Response:
        return web.Response(body=generate_latest(), headers={"Content-Type": CONTENT_TYPE_LATEST})


async def start_metrics_server(config: MetricsConfig | None = None) -> MetricsServer:
    """Create and start a [MetricsServer][wotgraph.core.metrics.MetricsServer]."""
    server = MetricsServer(config or MetricsConfig())
    await server.start()
    return server
