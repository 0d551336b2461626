"""Graph builder service: build lifecycle and trust graph queries.

A build moves one ``build_run`` row through ``RUNNING`` to exactly one of
``COMPLETED`` or ``FAILED``:

1. Abandon ``RUNNING`` runs older than ``lifecycle.stale_after``.
2. Reject the trigger (conflict) if a run is still ``RUNNING``. Inside one
   process an ``asyncio.Lock`` answers first; across processes the partial
   unique index on ``build_run`` turns a lost race into a conflict.
3. Insert the ``RUNNING`` run. Its id is the new generation tag.
4. Load seeders and [propagate trust][wotgraph.services.builder.utils.propagate_trust].
5. Stage the nodes under the new generation.
6. Mark the run ``COMPLETED`` and delete older generations in one
   transaction.

Any exception in steps 4-6 marks the run ``FAILED`` and discards the staged
rows, leaving the previous generation visible. Cancellation is recorded the
same way and then re-raised.

See Also:
    [BuilderConfig][wotgraph.services.builder.BuilderConfig]: Configuration model.
    [AdminApi][wotgraph.services.api.AdminApi]: Triggers builds over HTTP.
"""

from __future__ import annotations

import asyncio
import contextlib
import time
from collections.abc import Callable
from dataclasses import dataclass, field
from typing import TYPE_CHECKING, Any

import asyncpg

from wotgraph.core.base_service import BaseService
from wotgraph.core.exceptions import BuildConflict, BuildFailure, InvalidInput
from wotgraph.core.metrics import BUILD_DURATION_SECONDS
from wotgraph.models import BuildRun, BuildStatus, GraphNode, Relay, ServiceName
from wotgraph.services.common import SeederRegistry, queries
from wotgraph.utils.keys import load_keys_from_env, normalize_pubkey

from .configs import BuilderConfig
from .fetcher import CachedFollowsFetcher, FollowsCache, NostrFollowsFetcher
from .utils import PropagationResult, ScoreTable, propagate_trust


if TYPE_CHECKING:
    from collections.abc import Sequence

    from wotgraph.core.database import Database
    from wotgraph.services.common.queries import ScoreUpdate

    from .fetcher import FollowsFetcher


@dataclass(frozen=True, slots=True)
class BuildResult:
    """Outcome of ``GraphBuilder.build_community_graph()``.

    ``conflict`` is set when the trigger was rejected because another build
    was running; no run is created in that case.
    """

    success: bool
    nodes_count: int = 0
    run_id: int | None = None
    error: str | None = None
    conflict: bool = False


@dataclass(frozen=True, slots=True)
class GraphStats:
    """Summary of the current generation for the admin dashboard."""

    total_nodes: int
    nodes_by_depth: dict[int, int]
    last_build: BuildRun | None
    top_by_seeder_follows: list[GraphNode] = field(default_factory=list)

    def to_dict(self) -> dict[str, Any]:
        return {
            "totalNodes": self.total_nodes,
            "nodesByDepth": {str(depth): count for depth, count in self.nodes_by_depth.items()},
            "lastBuild": self.last_build.to_dict() if self.last_build else None,
            "topBySeederFollows": [node.to_dict() for node in self.top_by_seeder_follows],
        }


@dataclass(frozen=True, slots=True)
class GraphAnalytics:
    """Distributions and rankings of the current generation for dashboards.

    Seeders (depth 0) are excluded from the rankings and aggregates.
    """

    total_nodes: int
    nodes_by_depth: dict[int, int]
    nodes_by_score: dict[str, int]
    nodes_by_seeder_followers: dict[str, int]
    aggregates: dict[str, float]
    top_by_seeder_follows: list[GraphNode]
    top_by_trusted_followers: list[GraphNode]
    top_by_score: list[GraphNode]
    history: list[BuildRun]

    @property
    def seeder_count(self) -> int:
        return self.nodes_by_depth.get(0, 0)

    def to_dict(self) -> dict[str, Any]:
        def buckets(counts: dict[str, int]) -> list[dict[str, Any]]:
            return [{"bucket": label, "count": count} for label, count in counts.items()]

        return {
            "summary": {
                "totalNodes": self.total_nodes,
                "seederCount": self.seeder_count,
                "nonSeederCount": self.total_nodes - self.seeder_count,
                "averages": {
                    "trustedFollowers": self.aggregates["avg_trusted_followers"],
                    "score": self.aggregates["avg_score"],
                },
                "maximums": {
                    "trustedFollowers": int(self.aggregates["max_trusted_followers"]),
                    "score": self.aggregates["max_score"],
                },
            },
            "distributions": {
                "byDepth": [
                    {"depth": depth, "count": count} for depth, count in self.nodes_by_depth.items()
                ],
                "byScore": buckets(self.nodes_by_score),
                "bySeederFollowers": buckets(self.nodes_by_seeder_followers),
            },
            "topUsers": {
                "bySeederFollowers": [node.to_dict() for node in self.top_by_seeder_follows],
                "byTrustedFollowers": [node.to_dict() for node in self.top_by_trusted_followers],
                "byScore": [node.to_dict() for node in self.top_by_score],
            },
            "buildHistory": [run.to_dict() for run in self.history],
        }


class GraphBuilder(BaseService[BuilderConfig]):
    """Builds the Web-of-Trust graph and answers trust lookups.

    Each ``run()`` cycle performs one build. A failed build raises
    [BuildFailure][wotgraph.core.exceptions.BuildFailure] so that
    ``run_forever()`` counts it; a conflict is logged and skipped.

    Args:
        database: Database facade.
        config: Service configuration.
        fetcher: Follow-list source. When omitted, each build opens a
            [NostrFollowsFetcher][wotgraph.services.builder.fetcher.NostrFollowsFetcher]
            on the configured relays.
        clock: Returns the current unix time.
    """

    SERVICE_NAME = ServiceName.BUILDER
    CONFIG_CLASS = BuilderConfig

    def __init__(
        self,
        database: Database,
        config: BuilderConfig | None = None,
        *,
        fetcher: FollowsFetcher | None = None,
        clock: Callable[[], float] = time.time,
    ) -> None:
        super().__init__(database=database, config=config)
        self._config: BuilderConfig
        self._fetcher = fetcher
        self._clock = clock
        self._build_lock = asyncio.Lock()
        self._registry = SeederRegistry(database)
        self._cache = FollowsCache(database, self._config.cache.ttl, clock=clock)
        self._score_table = ScoreTable.from_config(
            self._config.trust.depth_scores, self._config.trust.max_depth
        )

    @property
    def registry(self) -> SeederRegistry:
        return self._registry

    @property
    def cache(self) -> FollowsCache:
        return self._cache

    @property
    def score_table(self) -> ScoreTable:
        return self._score_table

    def _now(self) -> int:
        return int(self._clock())

    # -------------------------------------------------------------------------
    # Service cycle
    # -------------------------------------------------------------------------

    async def run(self) -> None:
        result = await self.build_community_graph()
        if result.conflict:
            self._logger.info("build_skipped", reason=result.error)
            return
        if not result.success:
            raise BuildFailure(result.error or "build failed")

    # -------------------------------------------------------------------------
    # Build lifecycle
    # -------------------------------------------------------------------------

    async def is_build_running(self) -> bool:
        """Whether a build is in progress in this process or recorded as RUNNING."""
        if self._build_lock.locked():
            return True
        return await queries.fetch_running_build(self._db) is not None

    async def abandon_stale_runs(self) -> int:
        """Fail RUNNING runs older than ``lifecycle.stale_after`` seconds."""
        stale_after = self._config.lifecycle.stale_after
        if stale_after <= 0:
            return 0
        now = self._now()
        abandoned = await queries.abandon_stale_runs(self._db, now - stale_after, now)
        if abandoned:
            self._logger.warning("stale_runs_abandoned", count=abandoned, stale_after=stale_after)
            self.inc_counter("stale_runs_abandoned", abandoned)
        return abandoned

    def _conflict(self, reason: str) -> BuildResult:
        self._logger.info("build_conflict", reason=reason)
        self.inc_counter("build_conflicts")
        return BuildResult(success=False, error=reason, conflict=True)

    async def build_community_graph(self) -> BuildResult:
        """Run one full build and report its outcome.

        Never raises for build errors: they are recorded on the run and
        returned as ``success=False``. Only cancellation propagates.
        """
        if self._build_lock.locked():
            return self._conflict("a build is already running in this process")

        async with self._build_lock:
            try:
                run_id = await self._start_run()
            except BuildConflict as e:
                return self._conflict(str(e))
            except (asyncpg.PostgresError, OSError) as e:
                self._logger.error("build_start_failed", error=str(e))
                return BuildResult(success=False, error=f"could not start build: {e}")

            return await self._execute_build(run_id)

    async def _start_run(self) -> int:
        """Insert the RUNNING run and return its id.

        Raises:
            BuildConflict: If another run is RUNNING.
        """
        await self.abandon_stale_runs()
        running = await queries.fetch_running_build(self._db)
        if running is not None:
            raise BuildConflict(f"build {running.id} is already running")
        try:
            return await queries.insert_build_run(self._db, self._now())
        except asyncpg.UniqueViolationError as e:
            raise BuildConflict("another process started a build") from e

    async def _execute_build(self, run_id: int) -> BuildResult:
        started = time.monotonic()
        self._logger.info("build_started", run_id=run_id)

        try:
            seeders = await self._registry.list()
            await queries.set_build_seeders_count(self._db, run_id, len(seeders))
            self.set_gauge("seeders_count", len(seeders))

            nodes: list[GraphNode] = []
            if seeders:
                result = await self._propagate([seeder.pubkey for seeder in seeders])
                nodes = result.nodes
                await queries.stage_graph_nodes(self._db, nodes, run_id)
            else:
                self._logger.warning("build_without_seeders", run_id=run_id)

            if not await queries.complete_build_run(self._db, run_id, len(nodes), self._now()):
                raise BuildFailure(f"build {run_id} was abandoned before it could complete")

        except asyncio.CancelledError:
            await self._record_failure(run_id, "build cancelled")
            self._observe_duration(BuildStatus.FAILED, started)
            raise
        except Exception as e:  # Error boundary: every failure ends the run as FAILED
            message = str(e) or type(e).__name__
            await self._record_failure(run_id, message)
            self._observe_duration(BuildStatus.FAILED, started)
            self.inc_counter("builds_failed")
            self._logger.error(
                "build_failed", run_id=run_id, error=message, error_type=type(e).__name__
            )
            return BuildResult(success=False, run_id=run_id, error=message)

        duration = self._observe_duration(BuildStatus.COMPLETED, started)
        self.inc_counter("builds_completed")
        self.set_gauge("nodes_count", len(nodes))
        self._logger.info(
            "build_completed", run_id=run_id, nodes=len(nodes), duration_s=round(duration, 2)
        )
        await self._purge_expired_cache()
        return BuildResult(success=True, nodes_count=len(nodes), run_id=run_id)

    async def _propagate(self, seeders: Sequence[str]) -> PropagationResult:
        fetch_config = self._config.fetch
        async with contextlib.AsyncExitStack() as stack:
            source = self._fetcher
            if source is None:
                keys = load_keys_from_env(fetch_config.keys_env) if fetch_config.keys_env else None
                source = await stack.enter_async_context(
                    NostrFollowsFetcher(
                        [Relay(url) for url in fetch_config.relays],
                        keys=keys,
                        connect_timeout=fetch_config.connect_timeout,
                    )
                )
            fetcher: FollowsFetcher = source
            if self._config.cache.enabled:
                fetcher = CachedFollowsFetcher(source, self._cache)

            result = await propagate_trust(
                seeders,
                fetcher,
                score_table=self._score_table,
                concurrency=fetch_config.max_concurrency,
                timeout=fetch_config.timeout,
            )

        for depth, count in result.nodes_by_depth.items():
            self.set_gauge(f"nodes_depth_{depth}", count)
        self.inc_counter("fetch_failures", result.failures)
        self.inc_counter("fetch_timeouts", result.timeouts)
        if isinstance(fetcher, CachedFollowsFetcher):
            for name, value in fetcher.stats().items():
                self.inc_counter(name, value)
        self._logger.info(
            "propagation_completed",
            nodes=len(result.nodes),
            fetched=result.fetched,
            timeouts=result.timeouts,
            failures=result.failures,
        )
        return result

    async def _record_failure(self, run_id: int, message: str) -> None:
        try:
            await queries.fail_build_run(self._db, run_id, message, self._now())
        except (asyncpg.PostgresError, OSError) as e:
            # The run stays RUNNING until the stale sweep abandons it.
            self._logger.error("build_failure_not_recorded", run_id=run_id, error=str(e))

    async def _purge_expired_cache(self) -> None:
        if not (self._config.cache.enabled and self._config.cache.purge_expired):
            return
        try:
            removed = await self._cache.clear_expired()
        except (asyncpg.PostgresError, OSError) as e:
            self._logger.warning("cache_purge_failed", error=str(e))
            return
        if removed:
            self._logger.debug("cache_purged", removed=removed)

    def _observe_duration(self, status: BuildStatus, started: float) -> float:
        duration = time.monotonic() - started
        if self._config.metrics.enabled:
            BUILD_DURATION_SECONDS.labels(status=status.value).observe(duration)
        return duration

    # -------------------------------------------------------------------------
    # Graph queries
    # -------------------------------------------------------------------------

    async def get_graph_stats(self, top: int = 10) -> GraphStats:
        history = await queries.fetch_build_history(self._db, 1)
        return GraphStats(
            total_nodes=await queries.count_graph_nodes(self._db),
            nodes_by_depth=await queries.count_nodes_by_depth(self._db),
            last_build=history[0] if history else None,
            top_by_seeder_follows=await queries.fetch_top_seeder_followed(self._db, top),
        )

    async def get_graph_analytics(self, top: int = 20) -> GraphAnalytics:
        """Score and follower distributions plus the top ``top`` non-seeders per ranking."""
        db = self._db
        return GraphAnalytics(
            total_nodes=await queries.count_graph_nodes(db),
            nodes_by_depth=await queries.count_nodes_by_depth(db),
            nodes_by_score=await queries.count_nodes_by_score_bucket(db),
            nodes_by_seeder_followers=await queries.count_nodes_by_seeder_followers(db),
            aggregates=await queries.fetch_non_seeder_aggregates(db),
            top_by_seeder_follows=await queries.fetch_top_seeder_followed(db, top),
            top_by_trusted_followers=await queries.fetch_top_nodes(db, "trusted_followers", top),
            top_by_score=await queries.fetch_top_nodes(db, "score", top),
            history=await self.get_build_history(),
        )

    async def get_build_history(self, limit: int | None = None) -> list[BuildRun]:
        """Newest runs first; ``limit`` defaults to ``lifecycle.history_limit``."""
        return await queries.fetch_build_history(
            self._db, limit if limit is not None else self._config.lifecycle.history_limit
        )

    async def get_graph_node(self, pubkey: str) -> GraphNode | None:
        return await queries.fetch_graph_node(self._db, self._normalize(pubkey))

    async def get_trust_score(self, pubkey: str) -> float | None:
        """Score of *pubkey* in the current graph, ``None`` if it was not reached."""
        key = self._normalize(pubkey)
        scores = await queries.fetch_trust_scores(self._db, [key])
        return scores.get(key)

    async def get_trust_scores(self, pubkeys: Sequence[str]) -> dict[str, float | None]:
        """Scores keyed by normalized pubkey; unreached keys map to ``None``."""
        keys = [self._normalize(pubkey) for pubkey in pubkeys]
        scores = await queries.fetch_trust_scores(self._db, keys)
        return {key: scores.get(key) for key in keys}

    async def recalculate_scores(self) -> ScoreUpdate:
        """Apply the configured score table to the current graph without refetching.

        Nodes deeper than ``trust.max_depth`` are dropped from the current
        generation.
        """
        result = await queries.update_scores_by_depth(self._db, self._score_table.scores)
        self._logger.info("scores_recalculated", updated=result.updated, removed=result.removed)
        return result

    @staticmethod
    def _normalize(pubkey: str) -> str:
        try:
            return normalize_pubkey(pubkey)
        except ValueError as e:
            raise InvalidInput(str(e)) from e
