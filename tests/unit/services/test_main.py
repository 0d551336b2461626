"""
Unit tests for the wotgraph CLI module.

Tests:
- parse_args argument parsing
- SERVICE_REGISTRY completeness
- Database config preparation
- run_service one-shot and continuous modes
- main() exit codes
"""

from pathlib import Path
from unittest.mock import AsyncMock, MagicMock, patch

import pytest

from wotgraph.__main__ import (
    DATABASE_CONFIG,
    SERVICE_REGISTRY,
    _apply_application_name,
    _load_yaml_dict,
    main,
    parse_args,
    run_service,
)
from wotgraph.core.base_service import BaseService
from wotgraph.models.constants import ServiceName
from wotgraph.services.api import AdminApi
from wotgraph.services.builder import GraphBuilder


class TestServiceRegistry:
    def test_all_services_registered(self) -> None:
        assert set(SERVICE_REGISTRY) == {ServiceName.BUILDER, ServiceName.API}

    def test_classes(self) -> None:
        assert SERVICE_REGISTRY["builder"].cls is GraphBuilder
        assert SERVICE_REGISTRY["api"].cls is AdminApi

    def test_config_paths(self) -> None:
        for name, entry in SERVICE_REGISTRY.items():
            assert issubclass(entry.cls, BaseService)
            assert entry.config_path == Path("config") / "services" / f"{name}.yaml"


class TestParseArgs:
    def test_defaults(self) -> None:
        args = parse_args(["builder"])
        assert args.service == "builder"
        assert args.config is None
        assert args.db_config == DATABASE_CONFIG
        assert args.log_level == "INFO"
        assert args.once is False

    def test_all_options(self) -> None:
        args = parse_args(
            [
                "api",
                "--config",
                "a.yaml",
                "--db-config",
                "db.yaml",
                "--log-level",
                "DEBUG",
                "--once",
            ]
        )
        assert args.config == Path("a.yaml")
        assert args.db_config == Path("db.yaml")
        assert args.log_level == "DEBUG"
        assert args.once is True

    def test_unknown_service(self) -> None:
        with pytest.raises(SystemExit):
            parse_args(["crawler"])

    def test_log_level_case_sensitive(self) -> None:
        with pytest.raises(SystemExit):
            parse_args(["builder", "--log-level", "debug"])


class TestConfigHelpers:
    def test_missing_yaml_is_empty(self, tmp_path: Path) -> None:
        assert _load_yaml_dict(tmp_path / "absent.yaml") == {}

    def test_yaml_loaded(self, tmp_path: Path) -> None:
        path = tmp_path / "builder.yaml"
        path.write_text("interval: 600\n")
        assert _load_yaml_dict(path) == {"interval": 600}

    def test_application_name_added(self) -> None:
        db_dict: dict = {}
        _apply_application_name(db_dict, "builder")
        assert db_dict["pool"]["server_settings"]["application_name"] == "wotgraph-builder"

    def test_application_name_kept(self) -> None:
        db_dict = {"pool": {"server_settings": {"application_name": "custom"}}}
        _apply_application_name(db_dict, "api")
        assert db_dict["pool"]["server_settings"]["application_name"] == "custom"


class TestRunService:
    async def test_once_success(self, mock_db: MagicMock) -> None:
        with patch.object(GraphBuilder, "run", new_callable=AsyncMock) as run:
            code = await run_service("builder", GraphBuilder, mock_db, {}, once=True)
        assert code == 0
        run.assert_awaited_once()

    async def test_once_failure(self, mock_db: MagicMock) -> None:
        failing = AsyncMock(side_effect=RuntimeError("x"))
        with patch.object(GraphBuilder, "run", failing):
            code = await run_service("builder", GraphBuilder, mock_db, {}, once=True)
        assert code == 1

    async def test_once_uses_service_dict(self, mock_db: MagicMock) -> None:
        with (
            patch.object(GraphBuilder, "run", new_callable=AsyncMock),
            patch.object(GraphBuilder, "from_dict", wraps=GraphBuilder.from_dict) as from_dict,
        ):
            await run_service("builder", GraphBuilder, mock_db, {"interval": 600}, once=True)
        from_dict.assert_called_once_with({"interval": 600}, mock_db)

    async def test_continuous_stops_metrics_server(self, mock_db: MagicMock) -> None:
        server = MagicMock()
        server.stop = AsyncMock()
        with (
            patch(
                "wotgraph.__main__.start_metrics_server",
                new_callable=AsyncMock,
                return_value=server,
            ),
            patch.object(GraphBuilder, "run_forever", new_callable=AsyncMock) as run_forever,
        ):
            code = await run_service("builder", GraphBuilder, mock_db, {}, once=False)
        assert code == 0
        run_forever.assert_awaited_once()
        server.stop.assert_awaited_once()


class TestMain:
    async def test_connection_error(self, tmp_path: Path, monkeypatch: pytest.MonkeyPatch) -> None:
        monkeypatch.setenv("WOTGRAPH_DB_PASSWORD", "secret")
        db = MagicMock()
        db.__aenter__ = AsyncMock(side_effect=ConnectionError("refused"))
        db.__aexit__ = AsyncMock(return_value=False)
        with (
            patch("wotgraph.__main__.setup_logging"),
            patch("wotgraph.__main__.Database.from_dict", return_value=db),
        ):
            code = await main(["builder", "--once", "--db-config", str(tmp_path / "none.yaml")])
        assert code == 1

    async def test_runs_selected_service(
        self, tmp_path: Path, monkeypatch: pytest.MonkeyPatch
    ) -> None:
        monkeypatch.setenv("WOTGRAPH_DB_PASSWORD", "secret")
        db = MagicMock()
        db.__aenter__ = AsyncMock(return_value=db)
        db.__aexit__ = AsyncMock(return_value=False)
        config = tmp_path / "builder.yaml"
        config.write_text("interval: 600\n")
        with (
            patch("wotgraph.__main__.setup_logging"),
            patch("wotgraph.__main__.Database.from_dict", return_value=db) as from_dict,
            patch("wotgraph.__main__.run_service", new_callable=AsyncMock, return_value=0) as run,
        ):
            code = await main(
                [
                    "builder",
                    "--once",
                    "--config",
                    str(config),
                    "--db-config",
                    str(tmp_path / "none.yaml"),
                ]
            )

        assert code == 0
        assert from_dict.call_args.args[0]["pool"]["server_settings"]["application_name"] == (
            "wotgraph-builder"
        )
        kwargs = run.await_args.kwargs
        assert kwargs["service_class"] is GraphBuilder
        assert kwargs["service_dict"] == {"interval": 600}
        assert kwargs["once"] is True
