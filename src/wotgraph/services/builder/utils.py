"""Trust propagation: layered BFS from the seeders over follow edges.

[propagate_trust()][wotgraph.services.builder.utils.propagate_trust] is a
pure coroutine. It reads follow lists through whatever
[FollowsFetcher][wotgraph.services.builder.fetcher.FollowsFetcher] it is
given and returns the finished node set; persistence and run bookkeeping
belong to [GraphBuilder][wotgraph.services.builder.GraphBuilder].

Layer semantics:

* Depth 0 is the deduplicated seeder set, scored ``score_table.score(0)``.
* Layer ``d`` is expanded only after layer ``d - 1`` has been fully fetched,
  so a key is always assigned the smallest depth at which it is reachable.
* Keys already placed at a shallower or equal depth are never revisited.
* Layer ``max_depth`` is not expanded: anything it would reveal lies beyond
  the table and is discarded.
"""

from __future__ import annotations

import asyncio
import logging
from collections import Counter
from dataclasses import dataclass, field
from typing import TYPE_CHECKING

from wotgraph.core.exceptions import BuildFailure, FetchTimeout
from wotgraph.models import GraphNode


if TYPE_CHECKING:
    from collections.abc import Iterable, Sequence

    from .fetcher import FollowsFetcher


logger = logging.getLogger(__name__)


@dataclass(frozen=True, slots=True)
class ScoreTable:
    """Depth-indexed trust scores.

    ``scores[d]`` is the score for depth ``d``; the table length fixes the
    maximum depth. Depths past the end have no score (``None``), which is
    distinct from a score of ``0.0``.

    Examples:
        ```python
        table = ScoreTable((1.0, 0.4, 0.1))
        table.max_depth    # 2
        table.score(1)     # 0.4
        table.score(3)     # None
        ```
    """

    scores: tuple[float, ...] = (1.0, 0.4, 0.1)

    def __post_init__(self) -> None:
        if not self.scores:
            raise ValueError("score table must contain at least the seeder score")
        if any(not 0.0 <= s <= 1.0 for s in self.scores):
            raise ValueError("scores must be within [0, 1]")
        object.__setattr__(self, "scores", tuple(float(s) for s in self.scores))

    @classmethod
    def from_config(cls, depth_scores: Sequence[float], max_depth: int) -> ScoreTable:
        """Truncate a configured score list to ``max_depth + 1`` entries."""
        return cls(tuple(depth_scores[: max_depth + 1]))

    @property
    def max_depth(self) -> int:
        return len(self.scores) - 1

    def score(self, depth: int) -> float | None:
        if 0 <= depth < len(self.scores):
            return self.scores[depth]
        return None


@dataclass(slots=True)
class LayerStats:
    """Fetch outcomes for one BFS layer."""

    depth: int
    size: int
    fetched: int = 0
    timeouts: int = 0
    failures: int = 0
    last_error: str | None = None

    @property
    def total_failure(self) -> bool:
        """No key in a non-empty layer was fetched and at least one hard failure occurred."""
        return self.size > 0 and self.fetched == 0 and self.failures > 0


@dataclass(slots=True)
class PropagationResult:
    """Output of [propagate_trust()][wotgraph.services.builder.utils.propagate_trust].

    Attributes:
        nodes: Every reached node, ordered by ``(depth, pubkey)``.
        layers: Fetch statistics for each expanded layer.
    """

    nodes: list[GraphNode] = field(default_factory=list)
    layers: list[LayerStats] = field(default_factory=list)

    @property
    def nodes_by_depth(self) -> dict[int, int]:
        return dict(sorted(Counter(node.depth for node in self.nodes).items()))

    @property
    def fetched(self) -> int:
        return sum(layer.fetched for layer in self.layers)

    @property
    def timeouts(self) -> int:
        return sum(layer.timeouts for layer in self.layers)

    @property
    def failures(self) -> int:
        return sum(layer.failures for layer in self.layers)


async def _fetch_layer(
    frontier: Sequence[str],
    depth: int,
    fetcher: FollowsFetcher,
    *,
    concurrency: int,
    timeout: float,  # noqa: ASYNC109
) -> tuple[dict[str, set[str]], LayerStats]:
    """Fetch follow sets for a whole layer under a semaphore.

    Returns once every key has either produced a follow set or been
    recorded as a tolerated timeout or failure.
    """
    stats = LayerStats(depth=depth, size=len(frontier))
    follows: dict[str, set[str]] = {}
    semaphore = asyncio.Semaphore(concurrency)

    async def _fetch_one(pubkey: str) -> None:
        async with semaphore:
            try:
                async with asyncio.timeout(timeout):
                    result = await fetcher.fetch_follows(pubkey, timeout)
            except (FetchTimeout, TimeoutError):
                stats.timeouts += 1
                logger.debug("fetch_timeout pubkey=%s depth=%s", pubkey, depth)
                return
            except Exception as e:  # Error boundary: one key's failure must not sink the layer
                stats.failures += 1
                stats.last_error = str(e) or type(e).__name__
                logger.warning(
                    "fetch_failed pubkey=%s depth=%s error_type=%s error=%s",
                    pubkey,
                    depth,
                    type(e).__name__,
                    e,
                )
                return
            follows[pubkey] = result
            stats.fetched += 1

    async with asyncio.TaskGroup() as tg:
        for pubkey in frontier:
            tg.create_task(_fetch_one(pubkey))

    return follows, stats


async def propagate_trust(
    seeders: Iterable[str],
    fetcher: FollowsFetcher,
    *,
    score_table: ScoreTable,
    concurrency: int = 10,
    timeout: float = 10.0,  # noqa: ASYNC109
) -> PropagationResult:
    """Compute depths and scores for everything reachable from *seeders*.

    Args:
        seeders: Canonical hex pubkeys of the depth 0 layer (duplicates ignored).
        fetcher: Source of follow sets.
        score_table: Depth to score mapping; its length bounds the traversal.
        concurrency: Maximum in-flight fetches within a layer.
        timeout: Per-key fetch timeout in seconds. A timeout counts as
            zero follows.

    Returns:
        The reached nodes and per-layer fetch statistics. Identical inputs
        and fetch results always produce the same output.

    Raises:
        BuildFailure: If no key of some non-empty layer could be fetched and
            at least one fetch failed outright.
    """
    result = PropagationResult()
    frontier = sorted(set(seeders))
    if not frontier:
        return result

    seeder_score = score_table.score(0)
    assert seeder_score is not None  # noqa: S101
    depth_of: dict[str, int] = dict.fromkeys(frontier, 0)
    result.nodes.extend(GraphNode(pubkey, 0, seeder_score) for pubkey in frontier)

    for depth in range(score_table.max_depth):
        follows, stats = await _fetch_layer(
            frontier, depth, fetcher, concurrency=concurrency, timeout=timeout
        )
        result.layers.append(stats)
        logger.info(
            "layer_fetched depth=%s size=%s fetched=%s timeouts=%s failures=%s",
            depth,
            stats.size,
            stats.fetched,
            stats.timeouts,
            stats.failures,
        )
        if stats.total_failure:
            raise BuildFailure(
                f"all follow fetches failed at depth {depth}: {stats.last_error}"
            )

        next_depth = depth + 1
        next_score = score_table.score(next_depth)
        assert next_score is not None  # noqa: S101

        in_edges: Counter[str] = Counter()
        for source in frontier:
            for target in follows.get(source, ()):
                if target not in depth_of:
                    in_edges[target] += 1

        frontier = sorted(in_edges)
        if not frontier:
            break
        for pubkey in frontier:
            depth_of[pubkey] = next_depth
            result.nodes.append(GraphNode(pubkey, next_depth, next_score, in_edges[pubkey]))

    return result
