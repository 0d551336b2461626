"""CLI entry point for wotgraph services.

Runs the graph builder or the admin API either once (``--once``) or
continuously with a Prometheus metrics server.

Examples:
    ```bash
    python -m wotgraph builder --once
    python -m wotgraph builder --log-level DEBUG
    python -m wotgraph api --config config/services/api.yaml
    ```
"""

import argparse
import asyncio
import logging
import signal
import sys
from pathlib import Path
from typing import Any, NamedTuple

from wotgraph.core import Database, start_metrics_server
from wotgraph.core.base_service import BaseService
from wotgraph.core.logger import Logger, StructuredFormatter
from wotgraph.core.yaml import load_yaml
from wotgraph.models.constants import ServiceName
from wotgraph.services.api import AdminApi
from wotgraph.services.builder import GraphBuilder


CONFIG_BASE = Path("config")
DATABASE_CONFIG = CONFIG_BASE / "database.yaml"


class ServiceEntry(NamedTuple):
    """Registry entry mapping a service to its class and default config path."""

    cls: type[BaseService[Any]]
    config_path: Path


SERVICE_REGISTRY: dict[str, ServiceEntry] = {
    ServiceName.BUILDER: ServiceEntry(GraphBuilder, CONFIG_BASE / "services" / "builder.yaml"),
    ServiceName.API: ServiceEntry(AdminApi, CONFIG_BASE / "services" / "api.yaml"),
}

logger = Logger("cli")


async def run_service(
    service_name: str,
    service_class: type[BaseService[Any]],
    database: Database,
    service_dict: dict[str, Any],
    *,
    once: bool,
) -> int:
    """Run a service for one cycle or until a shutdown signal.

    Returns:
        Exit code: 0 for success, 1 for failure.
    """
    service = (
        service_class.from_dict(service_dict, database)
        if service_dict
        else service_class(database)
    )
    try:
        if once:
            await _run_once(service)
        else:
            await _run_continuously(service)
    except Exception as e:  # CLI error boundary
        logger.error(f"{service_name}_failed", error=str(e), error_type=type(e).__name__)
        return 1
    logger.info(f"{service_name}_completed" if once else f"{service_name}_stopped")
    return 0


async def _run_once(service: BaseService[Any]) -> None:
    async with service:
        await service.run()


async def _run_continuously(service: BaseService[Any]) -> None:
    """``run_forever()`` behind a metrics endpoint, stopped by SIGINT or SIGTERM."""
    metrics = service.config.metrics
    metrics_server = await start_metrics_server(metrics)
    if metrics.enabled:
        logger.info("metrics_server_started", host=metrics.host, port=metrics.port)

    loop = asyncio.get_running_loop()
    for sig in (signal.SIGINT, signal.SIGTERM):
        loop.add_signal_handler(sig, _on_signal, service, sig)

    try:
        async with service:
            await service.run_forever()
    finally:
        await metrics_server.stop()


def _on_signal(service: BaseService[Any], sig: signal.Signals) -> None:
    logger.info("shutdown_signal", signal=sig.name)
    service.request_shutdown()


def parse_args(argv: list[str] | None = None) -> argparse.Namespace:
    parser = argparse.ArgumentParser(prog="wotgraph", description="wotgraph service runner")
    parser.add_argument("service", choices=list(SERVICE_REGISTRY), help="Service to run")
    parser.add_argument(
        "--config",
        type=Path,
        help="Service config path (default: config/services/<service>.yaml)",
    )
    parser.add_argument(
        "--db-config",
        type=Path,
        default=DATABASE_CONFIG,
        help=f"Database config path (default: {DATABASE_CONFIG})",
    )
    parser.add_argument(
        "--log-level",
        choices=["DEBUG", "INFO", "WARNING", "ERROR"],
        default="INFO",
        help="Log level (default: INFO)",
    )
    parser.add_argument(
        "--once",
        action="store_true",
        help="Run one cycle and exit (default: run continuously)",
    )
    return parser.parse_args(argv)


def setup_logging(level: str) -> None:
    """Install ``StructuredFormatter`` on the root handler.

    Output from ``Logger`` and from plain ``logging.getLogger()`` calls in
    helper modules shares the ``level name message key=value`` layout.
    """
    handler = logging.StreamHandler()
    handler.setFormatter(StructuredFormatter())
    logging.root.addHandler(handler)
    logging.root.setLevel(getattr(logging, level))


def _load_yaml_dict(path: Path) -> dict[str, Any]:
    """Load a YAML mapping, or ``{}`` when the file does not exist."""
    if not path.exists():
        logger.warning("config_not_found", path=str(path))
        return {}
    return load_yaml(str(path))


def _apply_application_name(db_dict: dict[str, Any], service_name: str) -> None:
    server_settings = db_dict.setdefault("pool", {}).setdefault("server_settings", {})
    server_settings.setdefault("application_name", f"wotgraph-{service_name}")


async def main(argv: list[str] | None = None) -> int:
    args = parse_args(argv)
    setup_logging(args.log_level)

    entry = SERVICE_REGISTRY[args.service]
    db_dict = _load_yaml_dict(args.db_config)
    service_dict = _load_yaml_dict(args.config or entry.config_path)
    _apply_application_name(db_dict, args.service)

    database = Database.from_dict(db_dict)

    try:
        async with database:
            return await run_service(
                service_name=args.service,
                service_class=entry.cls,
                database=database,
                service_dict=service_dict,
                once=args.once,
            )
    except ConnectionError as e:
        logger.error("connection_failed", error=str(e))
        return 1
    except KeyboardInterrupt:
        logger.info("interrupted")
        return 130


def cli() -> None:
    """Synchronous entry point for console_scripts."""
    sys.exit(asyncio.run(main()))


if __name__ == "__main__":
    cli()
