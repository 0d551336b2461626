"""Unit tests for services.api.service module.

Tests:
- Bearer token authentication
- Graph status, rebuild triggers and score recalculation
- Seeder CRUD routes and error mapping
- Public trust lookup
- Run cycle metrics and server task monitoring
"""

import asyncio
from unittest.mock import MagicMock, patch

import pytest
from fastapi.testclient import TestClient

from wotgraph.core.exceptions import DuplicateSeeder, InvalidInput, SeederNotFound
from wotgraph.models import BuildRun, BuildStatus, GraphNode, Seeder
from wotgraph.models.constants import ServiceName
from wotgraph.services.api.service import AdminApi
from wotgraph.services.builder import BuildResult


ADMIN_PUBKEY = "f" * 64
AUTH = {"Authorization": "Bearer secret"}
A = "a" * 64
B = "b" * 64


# ============================================================================
# Service
# ============================================================================


class TestAdminApi:
    def test_service_name(self) -> None:
        assert AdminApi.SERVICE_NAME == ServiceName.API

    def test_init(self, api_service: AdminApi, mock_builder: MagicMock) -> None:
        assert api_service.builder is mock_builder
        assert api_service._registry is mock_builder.registry
        assert api_service._server_task is None


# ============================================================================
# Authentication
# ============================================================================


class TestAuthentication:
    def test_health_is_public(self, test_client: TestClient) -> None:
        resp = test_client.get("/health")
        assert resp.status_code == 200
        assert resp.json() == {"status": "ok"}

    def test_missing_header(self, test_client: TestClient) -> None:
        resp = test_client.get("/api/admin/graph")
        assert resp.status_code == 401
        assert resp.json() == {"error": "Authentication required"}

    def test_wrong_scheme(self, test_client: TestClient) -> None:
        resp = test_client.get("/api/admin/graph", headers={"Authorization": "Basic secret"})
        assert resp.status_code == 401

    def test_unknown_token(self, test_client: TestClient) -> None:
        resp = test_client.post(
            "/api/cron/rebuild-graph", headers={"Authorization": "Bearer nope"}
        )
        assert resp.status_code == 401
        assert resp.json() == {"error": "Invalid or expired token"}

    def test_second_token_accepted(
        self, test_client: TestClient, mock_builder: MagicMock
    ) -> None:
        resp = test_client.post(
            "/api/cron/rebuild-graph", headers={"Authorization": "Bearer cron-only"}
        )
        assert resp.status_code == 200
        mock_builder.build_community_graph.assert_awaited_once()

    def test_unknown_route(self, test_client: TestClient) -> None:
        resp = test_client.get("/api/nothing")
        assert resp.status_code == 404
        assert "error" in resp.json()


# ============================================================================
# Graph
# ============================================================================


class TestGraphRoutes:
    def test_status(self, test_client: TestClient, mock_builder: MagicMock) -> None:
        mock_builder.get_build_history.return_value = [
            BuildRun(id=2, status=BuildStatus.RUNNING, started_at=1_700_000_000)
        ]
        mock_builder.is_build_running.return_value = True

        resp = test_client.get("/api/admin/graph", headers=AUTH)

        assert resp.status_code == 200
        data = resp.json()
        assert data["isRunning"] is True
        assert data["stats"]["totalNodes"] == 0
        assert data["history"][0]["status"] == "RUNNING"

    @pytest.mark.parametrize("path", ["/api/admin/graph", "/api/cron/rebuild-graph"])
    def test_rebuild_success(self, test_client: TestClient, path: str) -> None:
        resp = test_client.post(path, headers=AUTH)
        assert resp.status_code == 200
        assert resp.json() == {"success": True, "nodesCount": 12}

    def test_rebuild_conflict(self, test_client: TestClient, mock_builder: MagicMock) -> None:
        mock_builder.build_community_graph.return_value = BuildResult(
            success=False, error="busy", conflict=True
        )
        resp = test_client.post("/api/admin/graph", headers=AUTH)
        assert resp.status_code == 409
        assert resp.json() == {"error": "A build is already in progress"}

    def test_rebuild_failure(self, test_client: TestClient, mock_builder: MagicMock) -> None:
        mock_builder.build_community_graph.return_value = BuildResult(
            success=False, run_id=4, error="all follow fetches failed at depth 0: down"
        )
        resp = test_client.post("/api/cron/rebuild-graph", headers=AUTH)
        assert resp.status_code == 500
        assert resp.json()["error"].startswith("all follow fetches failed")

    def test_analytics(self, test_client: TestClient, mock_builder: MagicMock) -> None:
        resp = test_client.get("/api/admin/graph/analytics", headers=AUTH)
        assert resp.status_code == 200
        body = resp.json()
        assert body["summary"]["seederCount"] == 2
        assert body["summary"]["nonSeederCount"] == 3
        assert body["distributions"]["byScore"][0] == {"bucket": "0.8-1.0", "count": 2}
        assert body["topUsers"]["byScore"][0]["pubkey"] == B

    def test_analytics_requires_auth(self, test_client: TestClient) -> None:
        assert test_client.get("/api/admin/graph/analytics").status_code == 401

    def test_recalculate(self, test_client: TestClient) -> None:
        resp = test_client.post("/api/admin/graph/recalculate", headers=AUTH)
        assert resp.status_code == 200
        assert resp.json() == {"success": True, "updated": 7, "removed": 2}

    def test_recalculate_during_build(
        self, test_client: TestClient, mock_builder: MagicMock
    ) -> None:
        mock_builder.is_build_running.return_value = True
        resp = test_client.post("/api/admin/graph/recalculate", headers=AUTH)
        assert resp.status_code == 409
        mock_builder.recalculate_scores.assert_not_awaited()


# ============================================================================
# Seeders
# ============================================================================


class TestSeederRoutes:
    def test_list(self, test_client: TestClient, mock_builder: MagicMock) -> None:
        mock_builder.registry.list.return_value = [Seeder(A, "lisbon", created_at=1)]
        resp = test_client.get("/api/admin/seeders?region=lisbon", headers=AUTH)
        assert resp.status_code == 200
        assert resp.json()["seeders"][0]["pubkey"] == A
        mock_builder.registry.list.assert_awaited_once_with("lisbon")

    def test_create_records_admin(
        self, test_client: TestClient, mock_builder: MagicMock
    ) -> None:
        mock_builder.registry.create.return_value = Seeder(
            A, "lisbon", added_by=ADMIN_PUBKEY, created_at=1
        )

        resp = test_client.post(
            "/api/admin/seeders", headers=AUTH, json={"pubkey": A, "region": "lisbon"}
        )

        assert resp.status_code == 200
        assert resp.json()["success"] is True
        mock_builder.registry.create.assert_awaited_once_with(
            A, "lisbon", None, added_by=ADMIN_PUBKEY
        )

    def test_create_duplicate(self, test_client: TestClient, mock_builder: MagicMock) -> None:
        mock_builder.registry.create.side_effect = DuplicateSeeder(A)
        resp = test_client.post(
            "/api/admin/seeders", headers=AUTH, json={"pubkey": A, "region": "lisbon"}
        )
        assert resp.status_code == 400
        assert "already exists" in resp.json()["error"]

    def test_create_invalid_pubkey(
        self, test_client: TestClient, mock_builder: MagicMock
    ) -> None:
        mock_builder.registry.create.side_effect = InvalidInput("bad pubkey")
        resp = test_client.post(
            "/api/admin/seeders", headers=AUTH, json={"pubkey": "x", "region": "lisbon"}
        )
        assert resp.status_code == 400
        assert resp.json() == {"error": "bad pubkey"}

    def test_create_missing_region(self, test_client: TestClient) -> None:
        resp = test_client.post("/api/admin/seeders", headers=AUTH, json={"pubkey": A})
        assert resp.status_code == 400
        assert "error" in resp.json()

    def test_get_missing(self, test_client: TestClient) -> None:
        resp = test_client.get(f"/api/admin/seeders/{A}", headers=AUTH)
        assert resp.status_code == 404

    def test_get(self, test_client: TestClient, mock_builder: MagicMock) -> None:
        mock_builder.registry.get.return_value = Seeder(A, "porto", created_at=1)
        resp = test_client.get(f"/api/admin/seeders/{A}", headers=AUTH)
        assert resp.json()["seeder"]["region"] == "porto"

    def test_update_partial(self, test_client: TestClient, mock_builder: MagicMock) -> None:
        from wotgraph.services.common import KEEP

        mock_builder.registry.update.return_value = Seeder(A, "lisbon", created_at=1)

        resp = test_client.patch(f"/api/admin/seeders/{A}", headers=AUTH, json={"label": None})

        assert resp.status_code == 200
        kwargs = mock_builder.registry.update.await_args.kwargs
        assert kwargs["region"] is KEEP
        assert kwargs["label"] is None

    def test_update_null_region(self, test_client: TestClient, mock_builder: MagicMock) -> None:
        resp = test_client.patch(f"/api/admin/seeders/{A}", headers=AUTH, json={"region": None})
        assert resp.status_code == 400
        mock_builder.registry.update.assert_not_awaited()

    def test_update_missing(self, test_client: TestClient, mock_builder: MagicMock) -> None:
        mock_builder.registry.update.side_effect = SeederNotFound(A)
        resp = test_client.patch(
            f"/api/admin/seeders/{A}", headers=AUTH, json={"region": "porto"}
        )
        assert resp.status_code == 404

    def test_delete(self, test_client: TestClient, mock_builder: MagicMock) -> None:
        resp = test_client.delete(f"/api/admin/seeders/{A}", headers=AUTH)
        assert resp.status_code == 200
        assert resp.json() == {"success": True}
        mock_builder.registry.delete.assert_awaited_once_with(A)

    def test_requires_auth(self, test_client: TestClient) -> None:
        assert test_client.delete(f"/api/admin/seeders/{A}").status_code == 401


# ============================================================================
# Trust lookup and error boundary
# ============================================================================


class TestTrustRoute:
    def test_known_key(self, test_client: TestClient, mock_builder: MagicMock) -> None:
        mock_builder.get_graph_node.return_value = GraphNode(B, 1, 0.4, 2)
        resp = test_client.get(f"/api/trust/{B.upper()}")
        assert resp.json() == {"pubkey": B, "score": 0.4, "depth": 1}
        mock_builder.get_graph_node.assert_awaited_once_with(B)

    def test_unknown_key(self, test_client: TestClient) -> None:
        resp = test_client.get(f"/api/trust/{A}")
        assert resp.status_code == 200
        assert resp.json() == {"pubkey": A, "score": None, "depth": None}

    def test_invalid_key(self, test_client: TestClient) -> None:
        resp = test_client.get("/api/trust/not-a-key")
        assert resp.status_code == 400

    def test_unhandled_error(self, test_client: TestClient, mock_builder: MagicMock) -> None:
        mock_builder.get_graph_node.side_effect = RuntimeError("unexpected DB failure")
        resp = test_client.get(f"/api/trust/{A}")
        assert resp.status_code == 500
        assert resp.json() == {"error": "Internal server error"}

    def test_query_timeout(
        self, test_client: TestClient, api_service: AdminApi, mock_builder: MagicMock
    ) -> None:
        async def slow(*_args: object) -> None:
            await asyncio.sleep(10)

        api_service._config.request_timeout = 0.01
        mock_builder.get_graph_node.side_effect = slow
        resp = test_client.get(f"/api/trust/{A}")
        assert resp.status_code == 504
        assert "timeout" in resp.json()["error"].lower()


class TestSeederStatusRoute:
    def test_is_public(self, test_client: TestClient, mock_builder: MagicMock) -> None:
        mock_builder.registry.get.return_value = Seeder(A, "lisbon", "meetup", None, 1)
        resp = test_client.get("/api/user/seeder-status", params={"pubkey": A})
        assert resp.status_code == 200
        assert resp.json() == {"isSeeder": True, "seeder": {"label": "meetup", "region": "lisbon"}}

    def test_not_a_seeder(self, test_client: TestClient, mock_builder: MagicMock) -> None:
        resp = test_client.get("/api/user/seeder-status", params={"pubkey": B.upper()})
        assert resp.json() == {"isSeeder": False, "seeder": None}
        mock_builder.registry.get.assert_awaited_once_with(B.upper())

    def test_pubkey_required(self, test_client: TestClient) -> None:
        resp = test_client.get("/api/user/seeder-status")
        assert resp.status_code == 400
        assert resp.json() == {"error": "pubkey is required"}

    def test_invalid_pubkey(self, test_client: TestClient, mock_builder: MagicMock) -> None:
        mock_builder.registry.get.side_effect = InvalidInput("not a pubkey")
        resp = test_client.get("/api/user/seeder-status", params={"pubkey": "zz"})
        assert resp.status_code == 400


# ============================================================================
# Run Cycle
# ============================================================================


class TestAdminApiRun:
    async def test_run_reports_and_resets(self, api_service: AdminApi) -> None:
        api_service._requests_total = 42
        api_service._requests_failed = 3

        with patch.object(api_service, "inc_counter") as mock_counter:
            await api_service.run()

        mock_counter.assert_any_call("requests_total", 42)
        mock_counter.assert_any_call("requests_failed", 3)
        assert api_service._requests_total == 0

    async def test_run_detects_crashed_server_task(self, api_service: AdminApi) -> None:
        failed_task = MagicMock(spec=asyncio.Task)
        failed_task.done.return_value = True
        failed_task.cancelled.return_value = False
        failed_task.exception.return_value = OSError("bind failed")
        api_service._server_task = failed_task

        with pytest.raises(RuntimeError, match="stopped unexpectedly"):
            await api_service.run()

    def test_requests_counted(self, test_client: TestClient, api_service: AdminApi) -> None:
        test_client.get("/health")
        test_client.get("/api/admin/graph")
        assert api_service._requests_total == 2
        assert api_service._requests_failed == 1

    async def test_context_manager_starts_and_stops_server(self, api_service: AdminApi) -> None:
        started = asyncio.Event()

        async def fake_server(_app: object) -> None:
            started.set()
            await asyncio.sleep(3600)

        with patch.object(api_service, "_run_server", side_effect=fake_server):
            async with api_service:
                await asyncio.wait_for(started.wait(), 1)
                assert api_service._server_task is not None
            assert api_service._server_task is None
