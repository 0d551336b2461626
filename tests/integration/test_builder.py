"""Integration tests for GraphBuilder against a real database.

Follow lists come from the in-memory fetcher; everything else (run
bookkeeping, generation publishing, the follows cache) hits PostgreSQL.
"""

from __future__ import annotations

import pytest

from wotgraph.core.database import Database
from wotgraph.models import BuildStatus, Seeder
from wotgraph.services.builder import BuilderConfig, CacheConfig, GraphBuilder
from wotgraph.services.common import queries


pytestmark = pytest.mark.integration

NOW = 1_700_000_000
A = "a" * 64
B = "b" * 64
C = "c" * 64
D = "d" * 64


class Clock:
    def __init__(self, now: int = NOW) -> None:
        self.now = now

    def __call__(self) -> float:
        return float(self.now)


@pytest.fixture
async def seeded(db: Database) -> Database:
    await queries.insert_seeder(db, Seeder(A, "lisbon", "meetup", None, NOW))
    return db


def _builder(db: Database, fetcher, clock: Clock, **config) -> GraphBuilder:
    config.setdefault("cache", CacheConfig(enabled=False))
    return GraphBuilder(db, BuilderConfig(**config), fetcher=fetcher, clock=clock)


class TestBuildCycle:
    async def test_build_publishes_graph(self, seeded: Database, fake_fetcher_cls):
        fetcher = fake_fetcher_cls({A: {B, C}, B: {D}})
        builder = _builder(seeded, fetcher, Clock())

        result = await builder.build_community_graph()

        assert result.success
        assert result.nodes_count == 4
        assert await builder.get_trust_scores([A, B, D]) == {A: 1.0, B: 0.4, D: 0.1}
        run = (await builder.get_build_history())[0]
        assert (run.status, run.seeders_count, run.nodes_count) == (BuildStatus.COMPLETED, 1, 4)
        assert not await builder.is_build_running()

    async def test_rebuild_replaces_graph(self, seeded: Database, fake_fetcher_cls):
        clock = Clock()
        await _builder(seeded, fake_fetcher_cls({A: {B}}), clock).build_community_graph()

        clock.now += 86_400
        builder = _builder(seeded, fake_fetcher_cls({A: {C}}), clock)
        assert (await builder.build_community_graph()).success

        assert await builder.get_trust_scores([B, C]) == {B: None, C: 0.4}
        assert await queries.count_graph_nodes(seeded) == 2
        assert await seeded.fetchval("SELECT count(*) FROM graph_node") == 2

    async def test_failed_build_keeps_previous_graph(self, seeded: Database, fake_fetcher_cls):
        clock = Clock()
        await _builder(seeded, fake_fetcher_cls({A: {B}}), clock).build_community_graph()

        clock.now += 86_400
        builder = _builder(seeded, fake_fetcher_cls(failing={A}), clock)
        result = await builder.build_community_graph()

        assert not result.success
        assert await builder.get_trust_score(B) == 0.4
        statuses = [run.status for run in await builder.get_build_history()]
        assert statuses == [BuildStatus.FAILED, BuildStatus.COMPLETED]

    async def test_running_row_from_other_process_conflicts(
        self, seeded: Database, fake_fetcher_cls
    ):
        await queries.insert_build_run(seeded, NOW - 10)
        fetcher = fake_fetcher_cls({A: {B}})

        result = await _builder(seeded, fetcher, Clock()).build_community_graph()

        assert result.conflict
        assert fetcher.calls == []

    async def test_stale_running_row_is_abandoned(self, seeded: Database, fake_fetcher_cls):
        await queries.insert_build_run(seeded, NOW - 86_400)

        result = await _builder(seeded, fake_fetcher_cls({A: {B}}), Clock()).build_community_graph()

        assert result.success
        statuses = [run.status for run in await queries.fetch_build_history(seeded)]
        assert statuses == [BuildStatus.COMPLETED, BuildStatus.FAILED]


class TestCachedBuild:
    async def test_second_build_served_from_cache(self, seeded: Database, fake_fetcher_cls):
        clock = Clock()
        fetcher = fake_fetcher_cls({A: {B}, B: {C}})
        cache = CacheConfig(ttl=3600)
        await _builder(seeded, fetcher, clock, cache=cache).build_community_graph()
        assert sorted(fetcher.calls) == [A, B]

        clock.now += 60
        fetcher.calls.clear()
        result = await _builder(seeded, fetcher, clock, cache=cache).build_community_graph()

        assert result.success
        assert fetcher.calls == []
        assert await queries.fetch_cached_follows(seeded, A, NOW) == [B]


class TestRecalculate:
    async def test_lowered_max_depth_prunes_graph(self, seeded: Database, fake_fetcher_cls):
        clock = Clock()
        fetcher = fake_fetcher_cls({A: {B}, B: {C}})
        await _builder(seeded, fetcher, clock).build_community_graph()

        builder = _builder(
            seeded, fetcher, clock, trust={"max_depth": 1, "depth_scores": [1.0, 0.5]}
        )
        result = await builder.recalculate_scores()

        assert (result.updated, result.removed) == (1, 1)
        assert await builder.get_trust_scores([B, C]) == {B: 0.5, C: None}
        stats = await builder.get_graph_stats()
        assert stats.total_nodes == 2
        assert (await builder.get_build_history())[0].nodes_count == 2

    async def test_analytics_after_build(self, seeded: Database, fake_fetcher_cls):
        fetcher = fake_fetcher_cls({A: {B, C}, B: {D}})
        builder = _builder(seeded, fetcher, Clock())
        await builder.build_community_graph()

        data = (await builder.get_graph_analytics()).to_dict()

        assert data["summary"]["seederCount"] == 1
        assert data["summary"]["nonSeederCount"] == 3
        assert data["distributions"]["bySeederFollowers"][3] == {"bucket": "1 seeder", "count": 2}
        assert {u["pubkey"] for u in data["topUsers"]["byScore"]} == {B, C, D}
