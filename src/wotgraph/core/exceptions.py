"""wotgraph exception hierarchy.

Each failure the system can report has its own type so that callers catch
exactly what they can handle and let ``asyncio.CancelledError`` pass through.

```text
WotGraphError (base -- never raised directly)
├── ConfigurationError      -- bad YAML, missing env vars, invalid settings
├── RegistryError           -- seeder registry rejected an operation
│   ├── InvalidInput        -- malformed pubkey or empty region
│   ├── DuplicateSeeder     -- pubkey already registered
│   └── SeederNotFound      -- update/delete of an unknown pubkey
├── FetchError              -- follow list could not be retrieved
│   ├── FetchTimeout        -- relays did not answer in time (zero edges)
│   └── FetchFailure        -- relay/SDK error for one pubkey
└── BuildError              -- graph build did not complete
    ├── BuildConflict       -- another build is RUNNING
    └── BuildFailure        -- systemic failure, run marked FAILED
```

See Also:
    [SeederRegistry][wotgraph.services.common.registry.SeederRegistry]:
        Raises the ``RegistryError`` family.
    [propagate_trust()][wotgraph.services.builder.utils.propagate_trust]:
        Absorbs per-key ``FetchError`` and raises ``BuildFailure`` when a
        whole layer fails.
"""

from __future__ import annotations


class WotGraphError(Exception):
    """Base exception for all wotgraph errors."""


class ConfigurationError(WotGraphError):
    """Invalid or missing configuration (YAML, env vars, CLI flags)."""


# ---------------------------------------------------------------------------
# Seeder registry
# ---------------------------------------------------------------------------


class RegistryError(WotGraphError):
    """Base for seeder registry rejections."""


class InvalidInput(RegistryError):  # noqa: N818
    """A pubkey did not normalize to 64 hex characters, or a required field was empty."""


class DuplicateSeeder(RegistryError):  # noqa: N818
    """The pubkey is already registered as a seeder."""

    def __init__(self, pubkey: str) -> None:
        super().__init__(f"Seeder already exists: {pubkey}")
        self.pubkey = pubkey


class SeederNotFound(RegistryError):  # noqa: N818
    """No seeder is registered under the pubkey."""

    def __init__(self, pubkey: str) -> None:
        super().__init__(f"Seeder not found: {pubkey}")
        self.pubkey = pubkey


# ---------------------------------------------------------------------------
# Social graph fetch
# ---------------------------------------------------------------------------


class FetchError(WotGraphError):
    """Base for follow-list retrieval errors. Always scoped to one pubkey."""


class FetchTimeout(FetchError):  # noqa: N818
    """Relays did not return a contact list within the timeout.

    The builder treats this as an empty follow set.
    """


class FetchFailure(FetchError):
    """Relay or client error while fetching one pubkey's contact list."""


# ---------------------------------------------------------------------------
# Build lifecycle
# ---------------------------------------------------------------------------


class BuildError(WotGraphError):
    """Base for graph build errors."""


class BuildConflict(BuildError):  # noqa: N818
    """A build is already RUNNING; the trigger was rejected, not queued."""


class BuildFailure(BuildError):
    """The build could not complete and its run was recorded as FAILED."""
