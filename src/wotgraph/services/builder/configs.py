"""Graph builder configuration models.

See Also:
    [GraphBuilder][wotgraph.services.builder.GraphBuilder]: The service class
        that consumes these configurations.
    [BaseServiceConfig][wotgraph.core.base_service.BaseServiceConfig]:
        Base class providing ``interval`` and ``metrics`` fields.
"""

from __future__ import annotations

import os

from pydantic import BaseModel, Field, field_validator, model_validator

from wotgraph.core.base_service import BaseServiceConfig
from wotgraph.models import Relay


class TrustConfig(BaseModel):
    """Depth limit and per-depth trust scores.

    ``depth_scores[d]`` is the score of a node first reached at depth ``d``.
    The default follows community practice: seeders 1.0, people they follow
    0.4, and one more hop 0.1.
    """

    max_depth: int = Field(default=2, ge=0, le=6, description="Deepest layer kept (D)")
    depth_scores: list[float] = Field(
        default_factory=lambda: [1.0, 0.4, 0.1],
        description="Score per depth, index 0 is the seeder layer",
    )

    @field_validator("depth_scores")
    @classmethod
    def _validate_scores(cls, v: list[float]) -> list[float]:
        if not v:
            raise ValueError("depth_scores must not be empty")
        if any(not 0.0 <= score <= 1.0 for score in v):
            raise ValueError("depth_scores values must be within [0, 1]")
        if v[0] != 1.0:
            raise ValueError("depth_scores[0] (seeders) must be 1.0")
        return v

    @model_validator(mode="after")
    def _validate_depth_coverage(self) -> TrustConfig:
        if len(self.depth_scores) < self.max_depth + 1:
            raise ValueError(
                f"depth_scores has {len(self.depth_scores)} entries, "
                f"max_depth={self.max_depth} needs {self.max_depth + 1}"
            )
        return self


class FetchConfig(BaseModel):
    """Follow-list retrieval settings."""

    relays: list[str] = Field(
        default_factory=lambda: ["wss://relay.damus.io", "wss://nos.lol", "wss://relay.primal.net"],
        min_length=1,
        description="Relays queried for kind 3 contact lists",
    )
    timeout: float = Field(
        default=10.0, ge=0.5, le=120.0, description="Per-pubkey fetch timeout (seconds)"
    )
    connect_timeout: float = Field(
        default=10.0, ge=0.5, le=120.0, description="Relay connection timeout (seconds)"
    )
    max_concurrency: int = Field(
        default=10, ge=1, le=200, description="Concurrent follow-list fetches"
    )
    keys_env: str | None = Field(
        default=None,
        description="Environment variable holding a private key for NIP-42 relay auth",
    )

    @field_validator("relays")
    @classmethod
    def _normalize_relays(cls, v: list[str]) -> list[str]:
        urls: list[str] = []
        for raw in v:
            url = Relay(raw).url
            if url not in urls:
                urls.append(url)
        return urls

    @model_validator(mode="after")
    def _validate_keys_env(self) -> FetchConfig:
        if self.keys_env is not None and not os.getenv(self.keys_env):
            raise ValueError(f"{self.keys_env} environment variable not set")
        return self


class CacheConfig(BaseModel):
    """Follows cache in front of the relays."""

    enabled: bool = Field(default=True, description="Serve follow lists from the cache")
    ttl: int = Field(
        default=21_600, ge=0, description="Seconds a cached follow list stays fresh"
    )
    purge_expired: bool = Field(
        default=True, description="Delete expired cache rows after each build"
    )


class LifecycleConfig(BaseModel):
    """Build run bookkeeping."""

    stale_after: int = Field(
        default=21_600,
        ge=0,
        description="Seconds after which a RUNNING build is considered abandoned (0 = never)",
    )
    history_limit: int = Field(
        default=10, ge=1, le=1000, description="Default number of runs returned as history"
    )


class BuilderConfig(BaseServiceConfig):
    """Graph builder service configuration.

    ``interval`` defaults to daily rebuilds.
    """

    interval: float = Field(default=86_400.0, ge=60.0, description="Seconds between builds")
    trust: TrustConfig = Field(default_factory=TrustConfig)
    fetch: FetchConfig = Field(default_factory=FetchConfig)
    cache: CacheConfig = Field(default_factory=CacheConfig)
    lifecycle: LifecycleConfig = Field(default_factory=LifecycleConfig)
