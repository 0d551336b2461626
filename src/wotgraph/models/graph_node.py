"""Trust graph node produced by a build."""

from __future__ import annotations

from dataclasses import dataclass
from typing import Any, NamedTuple

from ._validation import validate_non_negative_int, validate_pubkey, validate_score


class GraphNodeDbParams(NamedTuple):
    """Positional parameters for the ``graph_node`` bulk insert (generation excluded)."""

    pubkey: str
    depth: int
    score: float
    trusted_followers: int


@dataclass(frozen=True, slots=True)
class GraphNode:
    """One pubkey's position in the trust graph.

    Attributes:
        pubkey: 64-character lowercase hex public key.
        depth: Shortest follow distance from any seeder (0 for seeders).
        score: Trust score for ``depth`` from the build's score table.
        trusted_followers: Distinct nodes at ``depth - 1`` that follow this
            key. Always 0 for seeders.

    Examples:
        ```python
        GraphNode("ab" * 32, depth=1, score=0.4, trusted_followers=3)
        ```
    """

    pubkey: str
    depth: int
    score: float
    trusted_followers: int = 0

    def __post_init__(self) -> None:
        validate_pubkey(self.pubkey)
        validate_non_negative_int(self.depth, "depth")
        validate_score(self.score)
        validate_non_negative_int(self.trusted_followers, "trusted_followers")
        object.__setattr__(self, "score", float(self.score))

    @property
    def is_seeder(self) -> bool:
        return self.depth == 0

    def to_db_params(self) -> GraphNodeDbParams:
        return GraphNodeDbParams(self.pubkey, self.depth, self.score, self.trusted_followers)

    def to_dict(self) -> dict[str, Any]:
        return {
            "pubkey": self.pubkey,
            "depth": self.depth,
            "score": self.score,
            "trustedFollowers": self.trusted_followers,
        }
