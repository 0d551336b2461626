"""Domain SQL for wotgraph services.

Every query a service runs lives here. Each function takes a
[Database][wotgraph.core.database.Database] and returns models or plain
values, so services never embed SQL.

Groups:

- **Seeders**: ``fetch_seeders``, ``fetch_seeder``, ``insert_seeder``,
  ``update_seeder``, ``delete_seeder``, ``count_seeders``,
  ``fetch_seeder_regions``
- **Build runs**: ``insert_build_run``, ``fetch_running_build``,
  ``abandon_stale_runs``, ``set_build_seeders_count``,
  ``complete_build_run``, ``fail_build_run``, ``fetch_build_history``
- **Graph (current generation)**: ``stage_graph_nodes``,
  ``count_graph_nodes``, ``count_nodes_by_depth``, ``fetch_graph_node``,
  ``fetch_trust_scores``, ``fetch_top_seeder_followed``, ``fetch_top_nodes``,
  ``count_nodes_by_score_bucket``, ``count_nodes_by_seeder_followers``,
  ``fetch_non_seeder_aggregates``,
  ``update_scores_by_depth``
- **Follows cache**: ``fetch_cached_follows``, ``upsert_cached_follows``,
  ``delete_cached_follows``, ``delete_expired_follows``

Note:
    The *current generation* is the id of the newest ``COMPLETED``
    build run. A build stages rows under its own id and only becomes
    visible when ``complete_build_run`` flips its status, in the same
    transaction that deletes older generations.
"""

from __future__ import annotations

import logging
from typing import TYPE_CHECKING, Any, NamedTuple

from wotgraph.models import BuildRun, BuildStatus, GraphNode, Seeder


if TYPE_CHECKING:
    from collections.abc import Mapping, Sequence

    from wotgraph.core.database import Database

logger = logging.getLogger(__name__)


_CURRENT_GENERATION = """
    (SELECT max(id) FROM build_run WHERE status = 'COMPLETED')
"""

_BUILD_RUN_COLUMNS = """
    id, status, started_at, completed_at, seeders_count, nodes_count, error_message
"""


# =============================================================================
# Private helpers
# =============================================================================


def _affected_rows(status: str) -> int:
    """Row count from a command tag such as ``"UPDATE 3"`` or ``"INSERT 0 1"``."""
    try:
        return int(status.rsplit(" ", 1)[-1])
    except (AttributeError, ValueError):
        return 0


def _seeder_from_row(row: Mapping[str, Any]) -> Seeder:
    return Seeder(
        pubkey=row["pubkey"],
        region=row["region"],
        label=row["label"],
        added_by=row["added_by"],
        created_at=row["created_at"],
    )


def _build_run_from_row(row: Mapping[str, Any]) -> BuildRun:
    return BuildRun(
        id=row["id"],
        status=BuildStatus(row["status"]),
        started_at=row["started_at"],
        completed_at=row["completed_at"],
        seeders_count=row["seeders_count"],
        nodes_count=row["nodes_count"],
        error_message=row["error_message"],
    )


def _graph_node_from_row(row: Mapping[str, Any]) -> GraphNode:
    return GraphNode(
        pubkey=row["pubkey"],
        depth=row["depth"],
        score=row["score"],
        trusted_followers=row["trusted_followers"],
    )


async def _fetch_seeders(db: Database, query: str, *args: Any) -> list[Seeder]:
    """Run *query* and build Seeder objects, skipping rows that fail validation."""
    seeders: list[Seeder] = []
    for row in await db.fetch(query, *args):
        try:
            seeders.append(_seeder_from_row(row))
        except (ValueError, TypeError) as e:
            logger.warning("Skipping invalid seeder %s: %s", row["pubkey"], e)
    return seeders


# =============================================================================
# Seeders
# =============================================================================


async def fetch_seeders(db: Database, region: str | None = None) -> list[Seeder]:
    """All seeders, optionally restricted to *region*, oldest first."""
    if region is None:
        return await _fetch_seeders(
            db,
            """
            SELECT pubkey, region, label, added_by, created_at
            FROM seeder
            ORDER BY created_at ASC, pubkey ASC
            """,
        )
    return await _fetch_seeders(
        db,
        """
        SELECT pubkey, region, label, added_by, created_at
        FROM seeder
        WHERE region = $1
        ORDER BY created_at ASC, pubkey ASC
        """,
        region,
    )


async def fetch_seeder(db: Database, pubkey: str) -> Seeder | None:
    row = await db.fetchrow(
        """
        SELECT pubkey, region, label, added_by, created_at
        FROM seeder
        WHERE pubkey = $1
        """,
        pubkey,
    )
    return _seeder_from_row(row) if row is not None else None


async def insert_seeder(db: Database, seeder: Seeder) -> bool:
    """Insert *seeder*; return ``False`` if the pubkey was already registered."""
    inserted = await db.fetchval(
        """
        INSERT INTO seeder (pubkey, region, label, added_by, created_at)
        VALUES ($1, $2, $3, $4, $5)
        ON CONFLICT (pubkey) DO NOTHING
        RETURNING pubkey
        """,
        *seeder.to_db_params(),
    )
    return inserted is not None


async def update_seeder(
    db: Database, pubkey: str, region: str, label: str | None
) -> Seeder | None:
    """Overwrite region and label; ``None`` if the pubkey is not registered."""
    row = await db.fetchrow(
        """
        UPDATE seeder
        SET region = $2, label = $3
        WHERE pubkey = $1
        RETURNING pubkey, region, label, added_by, created_at
        """,
        pubkey,
        region,
        label,
    )
    return _seeder_from_row(row) if row is not None else None


async def delete_seeder(db: Database, pubkey: str) -> bool:
    status = await db.execute("DELETE FROM seeder WHERE pubkey = $1", pubkey)
    return _affected_rows(status) > 0


async def count_seeders(db: Database) -> int:
    return int(await db.fetchval("SELECT count(*) FROM seeder") or 0)


async def fetch_seeder_regions(db: Database) -> list[str]:
    rows = await db.fetch("SELECT DISTINCT region FROM seeder ORDER BY region")
    return [row["region"] for row in rows]


# =============================================================================
# Build runs
# =============================================================================


async def insert_build_run(db: Database, started_at: int) -> int:
    """Create a RUNNING run and return its id.

    Raises:
        asyncpg.UniqueViolationError: If another run is already RUNNING
            (enforced by ``build_run_single_running_idx``).
    """
    run_id: int = await db.fetchval(
        """
        INSERT INTO build_run (status, started_at)
        VALUES ('RUNNING', $1)
        RETURNING id
        """,
        started_at,
    )
    return run_id


async def fetch_running_build(db: Database) -> BuildRun | None:
    row = await db.fetchrow(
        f"""
        SELECT {_BUILD_RUN_COLUMNS}
        FROM build_run
        WHERE status = 'RUNNING'
        ORDER BY started_at DESC
        LIMIT 1
        """  # noqa: S608
    )
    return _build_run_from_row(row) if row is not None else None


async def abandon_stale_runs(db: Database, started_before: int, now: int) -> int:
    """Mark RUNNING runs that started before *started_before* as FAILED.

    Their staged nodes are discarded. Returns the number of runs abandoned.
    """
    async with db.transaction() as conn:
        rows = await conn.fetch(
            """
            UPDATE build_run
            SET status = 'FAILED', completed_at = $2,
                error_message = 'abandoned: build exceeded the stale threshold'
            WHERE status = 'RUNNING' AND started_at < $1
            RETURNING id
            """,
            started_before,
            now,
        )
        ids = [row["id"] for row in rows]
        if ids:
            await conn.execute("DELETE FROM graph_node WHERE generation = ANY($1::bigint[])", ids)
    return len(ids)


async def set_build_seeders_count(db: Database, run_id: int, seeders_count: int) -> None:
    await db.execute(
        "UPDATE build_run SET seeders_count = $2 WHERE id = $1",
        run_id,
        seeders_count,
    )


async def complete_build_run(
    db: Database, run_id: int, nodes_count: int, completed_at: int
) -> bool:
    """Publish *run_id* as the current generation and drop all older ones.

    Both statements run in one transaction, so readers switch from the old
    graph to the new one atomically.

    Returns:
        ``False`` without touching any nodes if the run is no longer
        RUNNING (it was abandoned by a stale sweep).
    """
    async with db.transaction() as conn:
        status = await conn.execute(
            """
            UPDATE build_run
            SET status = 'COMPLETED', nodes_count = $2, completed_at = $3
            WHERE id = $1 AND status = 'RUNNING'
            """,
            run_id,
            nodes_count,
            completed_at,
        )
        if _affected_rows(status) != 1:
            return False
        await conn.execute("DELETE FROM graph_node WHERE generation <> $1", run_id)
    return True


async def fail_build_run(db: Database, run_id: int, error_message: str, completed_at: int) -> None:
    """Record *run_id* as FAILED and discard whatever it staged.

    A run that already reached a terminal state is left untouched.
    """
    async with db.transaction() as conn:
        status = await conn.execute(
            """
            UPDATE build_run
            SET status = 'FAILED', error_message = $2, completed_at = $3
            WHERE id = $1 AND status = 'RUNNING'
            """,
            run_id,
            error_message,
            completed_at,
        )
        if _affected_rows(status) == 1:
            await conn.execute("DELETE FROM graph_node WHERE generation = $1", run_id)


async def fetch_build_history(db: Database, limit: int = 10) -> list[BuildRun]:
    """Most recent runs, newest first."""
    rows = await db.fetch(
        f"""
        SELECT {_BUILD_RUN_COLUMNS}
        FROM build_run
        ORDER BY started_at DESC, id DESC
        LIMIT $1
        """,  # noqa: S608
        limit,
    )
    return [_build_run_from_row(row) for row in rows]


# =============================================================================
# Graph (current generation)
# =============================================================================


async def stage_graph_nodes(db: Database, nodes: Sequence[GraphNode], generation: int) -> int:
    return await db.insert_graph_nodes(nodes, generation)


async def count_graph_nodes(db: Database) -> int:
    total = await db.fetchval(
        f"SELECT count(*) FROM graph_node WHERE generation = {_CURRENT_GENERATION}"  # noqa: S608
    )
    return int(total or 0)


async def count_nodes_by_depth(db: Database) -> dict[int, int]:
    rows = await db.fetch(
        f"""
        SELECT depth, count(*) AS nodes
        FROM graph_node
        WHERE generation = {_CURRENT_GENERATION}
        GROUP BY depth
        ORDER BY depth
        """  # noqa: S608
    )
    return {row["depth"]: row["nodes"] for row in rows}


async def fetch_graph_node(db: Database, pubkey: str) -> GraphNode | None:
    row = await db.fetchrow(
        f"""
        SELECT pubkey, depth, score, trusted_followers
        FROM graph_node
        WHERE generation = {_CURRENT_GENERATION} AND pubkey = $1
        """,  # noqa: S608
        pubkey,
    )
    return _graph_node_from_row(row) if row is not None else None


async def fetch_trust_scores(db: Database, pubkeys: Sequence[str]) -> dict[str, float]:
    """Scores for those of *pubkeys* present in the current graph."""
    if not pubkeys:
        return {}
    rows = await db.fetch(
        f"""
        SELECT pubkey, score
        FROM graph_node
        WHERE generation = {_CURRENT_GENERATION} AND pubkey = ANY($1::text[])
        """,  # noqa: S608
        list(pubkeys),
    )
    return {row["pubkey"]: row["score"] for row in rows}


async def fetch_top_seeder_followed(db: Database, limit: int = 10) -> list[GraphNode]:
    """Depth 1 nodes followed by the most seeders."""
    rows = await db.fetch(
        f"""
        SELECT pubkey, depth, score, trusted_followers
        FROM graph_node
        WHERE generation = {_CURRENT_GENERATION} AND depth = 1
        ORDER BY trusted_followers DESC, pubkey ASC
        LIMIT $1
        """,  # noqa: S608
        limit,
    )
    return [_graph_node_from_row(row) for row in rows]


# Score buckets, highest first: (label, inclusive lower bound).
SCORE_BUCKETS: tuple[tuple[str, float], ...] = (
    ("0.8-1.0", 0.8),
    ("0.6-0.8", 0.6),
    ("0.4-0.6", 0.4),
    ("0.2-0.4", 0.2),
    ("0.1-0.2", 0.1),
    ("0.05-0.1", 0.05),
    ("0-0.05", 0.0),
)

# Seeder-follower buckets for non-seeders: (label, inclusive lower bound).
SEEDER_FOLLOWER_BUCKETS: tuple[tuple[str, int], ...] = (
    ("5+ seeders", 5),
    ("3-4 seeders", 3),
    ("2 seeders", 2),
    ("1 seeder", 1),
    ("0 seeders", 0),
)

_TOP_NODE_ORDER = {
    "score": "score DESC, trusted_followers DESC, pubkey ASC",
    "trusted_followers": "trusted_followers DESC, score DESC, pubkey ASC",
}


def _bucket_case(column: str, buckets: Sequence[tuple[str, float]]) -> str:
    branches = " ".join(f"WHEN {column} >= {bound} THEN '{label}'" for label, bound in buckets)
    return f"CASE {branches} END"


async def _bucket_counts(
    db: Database, column: str, buckets: Sequence[tuple[str, float]], where: str = "TRUE"
) -> dict[str, int]:
    rows = await db.fetch(
        f"""
        SELECT {_bucket_case(column, buckets)} AS bucket, count(*) AS nodes
        FROM graph_node
        WHERE generation = {_CURRENT_GENERATION} AND {where}
        GROUP BY bucket
        """  # noqa: S608
    )
    counts = {row["bucket"]: row["nodes"] for row in rows}
    return {label: counts.get(label, 0) for label, _ in buckets}


async def count_nodes_by_score_bucket(db: Database) -> dict[str, int]:
    """Node counts per ``SCORE_BUCKETS`` label, every bucket present."""
    return await _bucket_counts(db, "score", SCORE_BUCKETS)


async def count_nodes_by_seeder_followers(db: Database) -> dict[str, int]:
    """Non-seeder counts per ``SEEDER_FOLLOWER_BUCKETS`` label.

    Only depth 1 nodes are followed by seeders; deeper nodes land in
    ``"0 seeders"``.
    """
    return await _bucket_counts(
        db,
        "CASE WHEN depth = 1 THEN trusted_followers ELSE 0 END",
        SEEDER_FOLLOWER_BUCKETS,
        where="depth > 0",
    )


async def fetch_top_nodes(db: Database, order_by: str, limit: int = 20) -> list[GraphNode]:
    """Highest ranked non-seeders by ``"score"`` or ``"trusted_followers"``.

    Raises:
        ValueError: On any other *order_by*.
    """
    if order_by not in _TOP_NODE_ORDER:
        raise ValueError(f"cannot rank nodes by {order_by!r}")
    rows = await db.fetch(
        f"""
        SELECT pubkey, depth, score, trusted_followers
        FROM graph_node
        WHERE generation = {_CURRENT_GENERATION} AND depth > 0
        ORDER BY {_TOP_NODE_ORDER[order_by]}
        LIMIT $1
        """,  # noqa: S608
        limit,
    )
    return [_graph_node_from_row(row) for row in rows]


_AGGREGATE_KEYS = ("avg_trusted_followers", "max_trusted_followers", "avg_score", "max_score")


async def fetch_non_seeder_aggregates(db: Database) -> dict[str, float]:
    """Average and maximum score and trusted followers over non-seeders (0 when empty)."""
    row = await db.fetchrow(
        f"""
        SELECT
            coalesce(avg(trusted_followers), 0)::double precision AS avg_trusted_followers,
            coalesce(max(trusted_followers), 0)::double precision AS max_trusted_followers,
            coalesce(avg(score), 0)::double precision AS avg_score,
            coalesce(max(score), 0)::double precision AS max_score
        FROM graph_node
        WHERE generation = {_CURRENT_GENERATION} AND depth > 0
        """  # noqa: S608
    )
    return {key: float(row[key]) if row is not None else 0.0 for key in _AGGREGATE_KEYS}


class ScoreUpdate(NamedTuple):
    """Rows rescored and rows pruned by ``update_scores_by_depth``."""

    updated: int
    removed: int


async def update_scores_by_depth(db: Database, scores: Sequence[float]) -> ScoreUpdate:
    """Rescore the current generation from a depth-indexed table.

    Nodes deeper than the table are deleted and the generation's
    ``nodes_count`` is corrected, all in one transaction, so a lowered
    ``max_depth`` takes effect without a rebuild.

    Returns:
        Rows whose score changed and rows removed.
    """
    max_depth = len(scores) - 1
    async with db.transaction() as conn:
        generation = await conn.fetchval(f"SELECT {_CURRENT_GENERATION}")  # noqa: S608
        if generation is None:
            return ScoreUpdate(updated=0, removed=0)

        removed = _affected_rows(
            await conn.execute(
                "DELETE FROM graph_node WHERE generation = $1 AND depth > $2",
                generation,
                max_depth,
            )
        )
        if removed:
            await conn.execute(
                "UPDATE build_run SET nodes_count = nodes_count - $2 WHERE id = $1",
                generation,
                removed,
            )
        updated = _affected_rows(
            await conn.execute(
                """
                UPDATE graph_node AS g
                SET score = s.score
                FROM unnest($2::integer[], $3::double precision[]) AS s(depth, score)
                WHERE g.generation = $1
                  AND g.depth = s.depth
                  AND g.score IS DISTINCT FROM s.score
                """,
                generation,
                list(range(len(scores))),
                list(scores),
            )
        )
    return ScoreUpdate(updated=updated, removed=removed)


# =============================================================================
# Follows cache
# =============================================================================


async def fetch_cached_follows(db: Database, pubkey: str, fresh_since: int) -> list[str] | None:
    """Cached follows fetched at or after *fresh_since*, else ``None``."""
    row = await db.fetchrow(
        """
        SELECT follows
        FROM follows_cache
        WHERE pubkey = $1 AND fetched_at >= $2
        """,
        pubkey,
        fresh_since,
    )
    return list(row["follows"]) if row is not None else None


async def upsert_cached_follows(
    db: Database, pubkey: str, follows: Sequence[str], fetched_at: int
) -> None:
    await db.execute(
        """
        INSERT INTO follows_cache (pubkey, follows, fetched_at)
        VALUES ($1, $2::text[], $3)
        ON CONFLICT (pubkey) DO UPDATE
        SET follows = EXCLUDED.follows, fetched_at = EXCLUDED.fetched_at
        """,
        pubkey,
        sorted(follows),
        fetched_at,
    )


async def delete_cached_follows(db: Database) -> int:
    return _affected_rows(await db.execute("DELETE FROM follows_cache"))


async def delete_expired_follows(db: Database, fresh_since: int) -> int:
    return _affected_rows(
        await db.execute("DELETE FROM follows_cache WHERE fetched_at < $1", fresh_since)
    )
