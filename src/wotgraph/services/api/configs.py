"""Admin API configuration models.

See Also:
    [AdminApi][wotgraph.services.api.AdminApi]: The service class that
        consumes these configurations.
    [BuilderConfig][wotgraph.services.builder.BuilderConfig]: Builder
        settings used for graph rebuilds triggered over HTTP.
"""

from __future__ import annotations

import os
from typing import Any

from pydantic import BaseModel, Field, SecretStr, field_validator, model_validator

from wotgraph.core.base_service import BaseServiceConfig
from wotgraph.services.builder.configs import BuilderConfig
from wotgraph.utils.keys import normalize_pubkey


_DEFAULT_TOKENS_ENV = "WOTGRAPH_ADMIN_TOKENS"  # noqa: S105


class AdminToken(BaseModel):
    """One accepted bearer token and the admin it identifies."""

    token: SecretStr
    pubkey: str | None = Field(default=None, description="Admin pubkey recorded as added_by")

    @field_validator("token")
    @classmethod
    def _validate_token(cls, v: SecretStr) -> SecretStr:
        if not v.get_secret_value().strip():
            raise ValueError("admin token must not be empty")
        return v

    @field_validator("pubkey")
    @classmethod
    def _normalize_pubkey(cls, v: str | None) -> str | None:
        return normalize_pubkey(v) if v else None


class ApiConfig(BaseServiceConfig):
    """Configuration for the admin API service.

    Admin tokens are read from the environment variable named by
    ``tokens_env`` as a comma separated list. Each entry is either
    ``token`` or ``token:pubkey``; the pubkey (hex or npub) is recorded as
    ``added_by`` on seeders created with that token.

    Attributes:
        host: Bind address for the HTTP server.
        port: Port for the HTTP server.
        tokens_env: Environment variable holding the admin tokens.
        tokens: Resolved admin tokens.
        cors_origins: Allowed CORS origins. Empty list disables CORS.
        request_timeout: Timeout for read endpoints in seconds.
        builder: Settings for builds started from the API.
    """

    host: str = Field(default="0.0.0.0", min_length=1, description="HTTP bind address")  # noqa: S104
    port: int = Field(default=8080, ge=1, le=65535, description="HTTP port")
    tokens_env: str = Field(
        default=_DEFAULT_TOKENS_ENV,
        min_length=1,
        description="Environment variable name for admin bearer tokens",
    )
    tokens: list[AdminToken] = Field(
        min_length=1, description="Admin bearer tokens (loaded from tokens_env)"
    )
    cors_origins: list[str] = Field(default_factory=list)
    request_timeout: float = Field(default=30.0, ge=1.0, le=300.0)
    builder: BuilderConfig = Field(default_factory=BuilderConfig)

    @model_validator(mode="before")
    @classmethod
    def resolve_tokens(cls, data: Any) -> Any:
        """Fill ``tokens`` from the environment when not given explicitly."""
        if isinstance(data, dict) and "tokens" not in data:
            env_var = data.get("tokens_env", _DEFAULT_TOKENS_ENV)
            value = os.getenv(env_var)
            if not value:
                raise ValueError(f"{env_var} environment variable not set")
            data["tokens"] = [
                {"token": token, "pubkey": pubkey or None}
                for token, _, pubkey in (
                    entry.strip().partition(":") for entry in value.split(",") if entry.strip()
                )
            ]
        return data
