"""Shared fixtures for services.api test package."""

from __future__ import annotations

from unittest.mock import AsyncMock, MagicMock

import pytest
from fastapi.testclient import TestClient
from pydantic import SecretStr

from wotgraph.models import GraphNode
from wotgraph.services.api.configs import AdminToken, ApiConfig
from wotgraph.services.api.service import AdminApi
from wotgraph.services.builder import BuildResult, GraphAnalytics, GraphStats
from wotgraph.services.common.queries import ScoreUpdate


ADMIN_PUBKEY = "f" * 64


@pytest.fixture
def api_config() -> ApiConfig:
    """Minimal API config with one admin token."""
    return ApiConfig(
        interval=60.0,
        host="127.0.0.1",
        port=9999,
        tokens=[
            AdminToken(token=SecretStr("secret"), pubkey=ADMIN_PUBKEY),
            AdminToken(token=SecretStr("cron-only")),
        ],
    )


@pytest.fixture
def mock_builder() -> MagicMock:
    """GraphBuilder stand-in with every coroutine stubbed."""
    builder = MagicMock()
    builder.build_community_graph = AsyncMock(
        return_value=BuildResult(success=True, nodes_count=12, run_id=3)
    )
    builder.is_build_running = AsyncMock(return_value=False)
    builder.recalculate_scores = AsyncMock(return_value=ScoreUpdate(updated=7, removed=2))
    builder.get_graph_stats = AsyncMock(
        return_value=GraphStats(total_nodes=0, nodes_by_depth={}, last_build=None)
    )
    builder.get_build_history = AsyncMock(return_value=[])
    builder.get_graph_analytics = AsyncMock(
        return_value=GraphAnalytics(
            total_nodes=5,
            nodes_by_depth={0: 2, 1: 3},
            nodes_by_score={"0.8-1.0": 2, "0.4-0.6": 3},
            nodes_by_seeder_followers={"2 seeders": 1, "1 seeder": 2},
            aggregates={
                "avg_trusted_followers": 1.33,
                "max_trusted_followers": 2.0,
                "avg_score": 0.4,
                "max_score": 0.4,
            },
            top_by_seeder_follows=[GraphNode("b" * 64, 1, 0.4, 2)],
            top_by_trusted_followers=[GraphNode("b" * 64, 1, 0.4, 2)],
            top_by_score=[GraphNode("b" * 64, 1, 0.4, 2)],
            history=[],
        )
    )
    builder.get_graph_node = AsyncMock(return_value=None)

    registry = MagicMock()
    registry.list = AsyncMock(return_value=[])
    registry.get = AsyncMock(return_value=None)
    registry.create = AsyncMock()
    registry.update = AsyncMock()
    registry.delete = AsyncMock()
    builder.registry = registry
    return builder


@pytest.fixture
def api_service(mock_db: MagicMock, api_config: ApiConfig, mock_builder: MagicMock) -> AdminApi:
    return AdminApi(mock_db, api_config, builder=mock_builder)


@pytest.fixture
def test_client(api_service: AdminApi) -> TestClient:
    """FastAPI TestClient from the AdminApi service."""
    return TestClient(api_service._build_app())
