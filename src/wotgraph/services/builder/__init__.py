"""Graph builder service: trust propagation and build lifecycle.

See Also:
    [GraphBuilder][wotgraph.services.builder.service.GraphBuilder]: The service class.
    [BuilderConfig][wotgraph.services.builder.configs.BuilderConfig]: Service configuration.
    [propagate_trust][wotgraph.services.builder.utils.propagate_trust]: The BFS itself.
"""

from .configs import BuilderConfig, CacheConfig, FetchConfig, LifecycleConfig, TrustConfig
from .fetcher import CachedFollowsFetcher, FollowsCache, FollowsFetcher, NostrFollowsFetcher
from .service import BuildResult, GraphAnalytics, GraphBuilder, GraphStats
from .utils import LayerStats, PropagationResult, ScoreTable, propagate_trust


__all__ = [
    "BuildResult",
    "BuilderConfig",
    "CacheConfig",
    "CachedFollowsFetcher",
    "FetchConfig",
    "FollowsCache",
    "FollowsFetcher",
    "GraphAnalytics",
    "GraphBuilder",
    "GraphStats",
    "LayerStats",
    "LifecycleConfig",
    "NostrFollowsFetcher",
    "PropagationResult",
    "ScoreTable",
    "TrustConfig",
    "propagate_trust",
]
