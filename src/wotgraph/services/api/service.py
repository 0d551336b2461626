"""Admin HTTP API for the trust graph via FastAPI.

Routes:

* ``GET /health``: liveness check.
* ``GET /api/trust/{pubkey}``: public trust lookup.
* ``GET /api/user/seeder-status?pubkey=``: public seeder check.
* ``GET /api/admin/graph/analytics``: distributions and rankings.
* ``GET|POST /api/admin/graph``: graph status and manual rebuild.
* ``POST /api/cron/rebuild-graph``: rebuild trigger for schedulers.
* ``POST /api/admin/graph/recalculate``: rescore the current graph.
* ``/api/admin/seeders``: seeder registry CRUD.

Everything under ``/api/admin`` and ``/api/cron`` requires a bearer token
from [ApiConfig.tokens][wotgraph.services.api.configs.ApiConfig]. Errors
are returned as ``{"error": message}``.

The HTTP server runs as a background ``asyncio.Task`` alongside the
standard ``run_forever()`` cycle. Each ``run()`` cycle logs request
statistics and updates Prometheus metrics.

See Also:
    [GraphBuilder][wotgraph.services.builder.GraphBuilder]: Executes the
        builds and graph queries behind these routes.
    [SeederRegistry][wotgraph.services.common.SeederRegistry]: Seeder CRUD.
"""

from __future__ import annotations

import asyncio
import contextlib
import hmac
import time
from typing import TYPE_CHECKING, Any, ClassVar

import uvicorn
from fastapi import Depends, FastAPI, Request, Response
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from pydantic import BaseModel
from starlette.exceptions import HTTPException

from wotgraph.core.base_service import BaseService
from wotgraph.core.exceptions import DuplicateSeeder, InvalidInput, SeederNotFound
from wotgraph.models.constants import ServiceName
from wotgraph.services.builder import GraphBuilder
from wotgraph.services.common import KEEP
from wotgraph.utils.keys import normalize_pubkey

from .configs import AdminToken, ApiConfig


if TYPE_CHECKING:
    from types import TracebackType

    from wotgraph.core.database import Database
    from wotgraph.services.builder import BuildResult

_HTTP_ERROR_THRESHOLD = 400


class SeederCreate(BaseModel):
    pubkey: str
    region: str
    label: str | None = None


class SeederUpdate(BaseModel):
    """Partial update; omitted fields are kept, an explicit ``null`` label clears it."""

    region: str | None = None
    label: str | None = None


class AdminApi(BaseService[ApiConfig]):
    """Admin and trust lookup API over a [GraphBuilder][wotgraph.services.builder.GraphBuilder].

    Lifecycle:
        1. ``__aenter__``: build the FastAPI app, start uvicorn.
        2. ``run()``: log statistics and update Prometheus counters.
        3. ``__aexit__``: cancel the HTTP server task.

    Rebuilds triggered over HTTP run inside the request, so the caller gets
    the final outcome. A trigger during a build is answered with 409.
    """

    SERVICE_NAME: ClassVar[ServiceName] = ServiceName.API
    CONFIG_CLASS: ClassVar[type[ApiConfig]] = ApiConfig

    def __init__(
        self,
        database: Database,
        config: ApiConfig | None = None,
        *,
        builder: GraphBuilder | None = None,
    ) -> None:
        super().__init__(database=database, config=config)
        self._config: ApiConfig
        self._builder = builder or GraphBuilder(database, self._config.builder)
        self._registry = self._builder.registry
        self._server_task: asyncio.Task[None] | None = None
        self._requests_total = 0
        self._requests_failed = 0

    @property
    def builder(self) -> GraphBuilder:
        return self._builder

    async def __aenter__(self) -> AdminApi:
        await super().__aenter__()
        app = self._build_app()
        self._server_task = asyncio.create_task(self._run_server(app))
        self._logger.info("http_server_started", host=self._config.host, port=self._config.port)
        return self

    async def __aexit__(
        self,
        _exc_type: type[BaseException] | None,
        _exc_val: BaseException | None,
        _exc_tb: TracebackType | None,
    ) -> None:
        if self._server_task is not None:
            self._server_task.cancel()
            with contextlib.suppress(asyncio.CancelledError):
                await self._server_task
            self._server_task = None
        self._logger.info("http_server_stopped")
        await super().__aexit__(_exc_type, _exc_val, _exc_tb)

    async def run(self) -> None:
        """Log request stats and update Prometheus counters."""
        if self._server_task is not None and self._server_task.done():
            exc = self._server_task.exception() if not self._server_task.cancelled() else None
            self._logger.error("http_server_crashed", error=str(exc) if exc else "cancelled")
            raise RuntimeError("HTTP server task has stopped unexpectedly") from exc

        total = self._requests_total
        failed = self._requests_failed
        self._requests_total = 0
        self._requests_failed = 0

        self._logger.info("cycle_stats", requests_total=total, requests_failed=failed)
        self.inc_counter("requests_total", total)
        self.inc_counter("requests_failed", failed)

    # -------------------------------------------------------------------------
    # Authentication
    # -------------------------------------------------------------------------

    def _authenticate(self, request: Request) -> AdminToken:
        header = request.headers.get("authorization", "")
        scheme, _, supplied = header.partition(" ")
        if scheme.lower() != "bearer" or not supplied.strip():
            raise HTTPException(status_code=401, detail="Authentication required")

        supplied_bytes = supplied.strip().encode()
        match: AdminToken | None = None
        for admin in self._config.tokens:
            if hmac.compare_digest(admin.token.get_secret_value().encode(), supplied_bytes):
                match = admin
        if match is None:
            raise HTTPException(status_code=401, detail="Invalid or expired token")
        return match

    # -------------------------------------------------------------------------
    # Application
    # -------------------------------------------------------------------------

    def _build_app(self) -> FastAPI:  # noqa: C901, PLR0915
        """Construct the FastAPI application."""
        app = FastAPI(title="wotgraph API")
        require_admin = Depends(self._authenticate)

        if self._config.cors_origins:
            app.add_middleware(
                CORSMiddleware,
                allow_origins=self._config.cors_origins,
                allow_methods=["GET", "POST", "PATCH", "DELETE"],
                allow_headers=["Authorization", "Content-Type"],
            )

        @app.middleware("http")
        async def log_requests(request: Request, call_next: Any) -> Response:
            start = time.monotonic()
            try:
                response: Response = await call_next(request)
            except Exception as exc:  # HTTP request error boundary
                self._logger.error(
                    "unhandled_error",
                    error=str(exc),
                    error_type=type(exc).__name__,
                    path=request.url.path,
                )
                response = JSONResponse({"error": "Internal server error"}, status_code=500)
            duration_ms = round((time.monotonic() - start) * 1000, 1)
            self._requests_total += 1
            if response.status_code >= _HTTP_ERROR_THRESHOLD:
                self._requests_failed += 1
                self._logger.warning(
                    "request_failed",
                    method=request.method,
                    path=request.url.path,
                    status=response.status_code,
                    duration_ms=duration_ms,
                )
            else:
                self._logger.info(
                    "request_completed",
                    method=request.method,
                    path=request.url.path,
                    status=response.status_code,
                    duration_ms=duration_ms,
                )
            return response

        @app.exception_handler(HTTPException)
        async def http_error(_request: Request, exc: HTTPException) -> JSONResponse:
            return JSONResponse({"error": exc.detail}, status_code=exc.status_code)

        @app.exception_handler(RequestValidationError)
        async def validation_error(_request: Request, exc: RequestValidationError) -> JSONResponse:
            errors = exc.errors()
            message = errors[0].get("msg", "invalid request") if errors else "invalid request"
            return JSONResponse({"error": message}, status_code=400)

        @app.exception_handler(InvalidInput)
        async def invalid_input(_request: Request, exc: InvalidInput) -> JSONResponse:
            return JSONResponse({"error": str(exc)}, status_code=400)

        @app.exception_handler(DuplicateSeeder)
        async def duplicate_seeder(_request: Request, exc: DuplicateSeeder) -> JSONResponse:
            return JSONResponse({"error": str(exc)}, status_code=400)

        @app.exception_handler(SeederNotFound)
        async def seeder_not_found(_request: Request, exc: SeederNotFound) -> JSONResponse:
            return JSONResponse({"error": str(exc)}, status_code=404)

        @app.exception_handler(TimeoutError)
        async def query_timeout(_request: Request, _exc: TimeoutError) -> JSONResponse:
            return JSONResponse({"error": "Query timeout"}, status_code=504)

        @app.get("/health")
        async def health() -> dict[str, str]:
            return {"status": "ok"}

        # Public

        @app.get("/api/trust/{pubkey}")
        async def trust(pubkey: str) -> JSONResponse:
            try:
                key = normalize_pubkey(pubkey)
            except ValueError as e:
                raise InvalidInput(str(e)) from e
            node = await self._read(self._builder.get_graph_node(key))
            if node is None:
                return JSONResponse({"pubkey": key, "score": None, "depth": None})
            return JSONResponse({"pubkey": node.pubkey, "score": node.score, "depth": node.depth})

        @app.get("/api/user/seeder-status")
        async def seeder_status(pubkey: str | None = None) -> JSONResponse:
            if not pubkey:
                raise InvalidInput("pubkey is required")
            seeder = await self._read(self._registry.get(pubkey))
            return JSONResponse(
                {
                    "isSeeder": seeder is not None,
                    "seeder": (
                        {"label": seeder.label, "region": seeder.region} if seeder else None
                    ),
                }
            )

        # Graph

        @app.get("/api/admin/graph")
        async def graph_status(_admin: AdminToken = require_admin) -> JSONResponse:
            stats = await self._read(self._builder.get_graph_stats())
            history = await self._read(self._builder.get_build_history())
            running = await self._read(self._builder.is_build_running())
            return JSONResponse(
                {
                    "stats": stats.to_dict(),
                    "history": [run.to_dict() for run in history],
                    "isRunning": running,
                }
            )

        @app.get("/api/admin/graph/analytics")
        async def graph_analytics(_admin: AdminToken = require_admin) -> JSONResponse:
            analytics = await self._read(self._builder.get_graph_analytics())
            return JSONResponse(analytics.to_dict())

        @app.post("/api/admin/graph")
        async def rebuild(admin_token: AdminToken = require_admin) -> JSONResponse:
            return await self._trigger_build("admin", admin_token)

        @app.post("/api/cron/rebuild-graph")
        async def cron_rebuild(admin_token: AdminToken = require_admin) -> JSONResponse:
            return await self._trigger_build("cron", admin_token)

        @app.post("/api/admin/graph/recalculate")
        async def recalculate(_admin: AdminToken = require_admin) -> JSONResponse:
            if await self._builder.is_build_running():
                return JSONResponse({"error": "A build is already in progress"}, status_code=409)
            result = await self._builder.recalculate_scores()
            return JSONResponse(
                {"success": True, "updated": result.updated, "removed": result.removed}
            )

        # Seeders

        @app.get("/api/admin/seeders")
        async def list_seeders(
            region: str | None = None, _admin: AdminToken = require_admin
        ) -> JSONResponse:
            seeders = await self._read(self._registry.list(region))
            return JSONResponse({"seeders": [seeder.to_dict() for seeder in seeders]})

        @app.post("/api/admin/seeders")
        async def create_seeder(
            body: SeederCreate, admin_token: AdminToken = require_admin
        ) -> JSONResponse:
            seeder = await self._registry.create(
                body.pubkey, body.region, body.label, added_by=admin_token.pubkey
            )
            return JSONResponse({"success": True, "seeder": seeder.to_dict()})

        @app.get("/api/admin/seeders/{pubkey}")
        async def get_seeder(pubkey: str, _admin: AdminToken = require_admin) -> JSONResponse:
            seeder = await self._read(self._registry.get(pubkey))
            if seeder is None:
                raise SeederNotFound(pubkey)
            return JSONResponse({"seeder": seeder.to_dict()})

        @app.patch("/api/admin/seeders/{pubkey}")
        async def update_seeder(
            pubkey: str, body: SeederUpdate, _admin: AdminToken = require_admin
        ) -> JSONResponse:
            provided = body.model_fields_set
            if "region" in provided and body.region is None:
                raise InvalidInput("region must not be null")
            seeder = await self._registry.update(
                pubkey,
                region=body.region if "region" in provided else KEEP,
                label=body.label if "label" in provided else KEEP,
            )
            return JSONResponse({"success": True, "seeder": seeder.to_dict()})

        @app.delete("/api/admin/seeders/{pubkey}")
        async def delete_seeder(pubkey: str, _admin: AdminToken = require_admin) -> JSONResponse:
            await self._registry.delete(pubkey)
            return JSONResponse({"success": True})

        return app

    async def _read(self, coro: Any) -> Any:
        return await asyncio.wait_for(coro, timeout=self._config.request_timeout)

    async def _trigger_build(self, source: str, admin_token: AdminToken) -> JSONResponse:
        self._logger.info("rebuild_requested", source=source, admin=admin_token.pubkey)
        result: BuildResult = await self._builder.build_community_graph()
        if result.conflict:
            return JSONResponse({"error": "A build is already in progress"}, status_code=409)
        if not result.success:
            return JSONResponse({"error": result.error or "Build failed"}, status_code=500)
        return JSONResponse({"success": True, "nodesCount": result.nodes_count})

    async def _run_server(self, app: FastAPI) -> None:
        """Run uvicorn as an asyncio server."""
        config = uvicorn.Config(
            app,
            host=self._config.host,
            port=self._config.port,
            log_level="warning",
            access_log=False,
        )
        server = uvicorn.Server(config)
        await server.serve()
