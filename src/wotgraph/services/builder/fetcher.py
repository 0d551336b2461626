"""Follow-list sources for the graph builder.

The builder only depends on the
[FollowsFetcher][wotgraph.services.builder.fetcher.FollowsFetcher] protocol.
Two implementations compose:

* [NostrFollowsFetcher][wotgraph.services.builder.fetcher.NostrFollowsFetcher]
  reads kind 3 contact lists from relays with nostr-sdk.
* [CachedFollowsFetcher][wotgraph.services.builder.fetcher.CachedFollowsFetcher]
  puts a [FollowsCache][wotgraph.services.builder.fetcher.FollowsCache] in
  front of another fetcher.

Examples:
    ```python
    async with NostrFollowsFetcher(relays) as relay_fetcher:
        fetcher = CachedFollowsFetcher(relay_fetcher, FollowsCache(db, ttl=21_600))
        follows = await fetcher.fetch_follows(pubkey, timeout=10.0)
    ```
"""

from __future__ import annotations

import time
from collections.abc import Callable
from datetime import timedelta
from typing import TYPE_CHECKING, Any, Protocol, Self

import asyncpg
from nostr_sdk import NostrSdkError

from wotgraph.core.exceptions import FetchFailure, FetchTimeout
from wotgraph.core.logger import Logger
from wotgraph.services.common import queries
from wotgraph.utils.protocol import (
    connect_relays,
    contact_list_filter,
    create_client,
    extract_follows,
    latest_event,
    shutdown_client,
)


if TYPE_CHECKING:
    from collections.abc import Sequence

    from nostr_sdk import Client, Keys

    from wotgraph.core.database import Database
    from wotgraph.models import Relay


class FollowsFetcher(Protocol):
    """Anything that can return the set of pubkeys a pubkey follows.

    Implementations return canonical lowercase hex keys. An empty set means
    no contact list was found. Errors are reported as
    [FetchTimeout][wotgraph.core.exceptions.FetchTimeout] or
    [FetchFailure][wotgraph.core.exceptions.FetchFailure].
    """

    async def fetch_follows(self, pubkey: str, timeout: float) -> set[str]: ...  # noqa: ASYNC109


class NostrFollowsFetcher:
    """Reads contact lists from a fixed relay set over one shared client.

    Must be opened (``async with`` or ``open()``) before use. A relay that
    stays silent until the deadline yields an empty follow set, matching
    how relays answer for authors they have never seen.
    """

    def __init__(
        self,
        relays: Sequence[Relay],
        *,
        keys: Keys | None = None,
        connect_timeout: float = 10.0,
    ) -> None:
        self._relays = list(relays)
        self._keys = keys
        self._connect_timeout = connect_timeout
        self._client: Client | None = None
        self._logger = Logger("fetcher")

    async def open(self) -> None:
        """Connect to the configured relays.

        Raises:
            FetchFailure: If no relay could be added to the client.
        """
        if self._client is not None:
            return
        client = create_client(self._keys)
        added = await connect_relays(client, self._relays, self._connect_timeout)
        if not added:
            await shutdown_client(client)
            raise FetchFailure("no usable relay configured")
        self._client = client
        self._logger.info("relays_connected", relays=added)

    async def close(self) -> None:
        if self._client is not None:
            client, self._client = self._client, None
            await shutdown_client(client)
            self._logger.debug("relays_disconnected")

    async def __aenter__(self) -> Self:
        await self.open()
        return self

    async def __aexit__(self, *_exc: object) -> None:
        await self.close()

    async def fetch_follows(self, pubkey: str, timeout: float) -> set[str]:  # noqa: ASYNC109
        if self._client is None:
            raise RuntimeError("NostrFollowsFetcher is not open")
        try:
            events = await self._client.fetch_events(
                contact_list_filter(pubkey), timedelta(seconds=timeout)
            )
        except TimeoutError as e:
            raise FetchTimeout(f"contact list request timed out for {pubkey}") from e
        except (NostrSdkError, OSError) as e:
            raise FetchFailure(f"contact list request failed for {pubkey}: {e}") from e

        event = latest_event(events)
        return extract_follows(event) if event is not None else set()


class FollowsCache:
    """Persistent follow-list cache with a staleness window.

    Entries older than ``ttl`` seconds are treated as missing. An empty
    follow list is a valid cached value. ``ttl=0`` makes every entry stale.

    Args:
        db: Database facade.
        ttl: Freshness window in seconds.
        clock: Returns the current unix time; injectable for tests.
    """

    def __init__(
        self,
        db: Database,
        ttl: int = 21_600,
        *,
        clock: Callable[[], float] = time.time,
    ) -> None:
        if ttl < 0:
            raise ValueError("ttl must be non-negative")
        self._db = db
        self._ttl = ttl
        self._clock = clock

    def _now(self) -> int:
        return int(self._clock())

    def _fresh_since(self) -> int:
        # ttl=0 must never match, so the cutoff is strictly in the future.
        return self._now() - self._ttl if self._ttl > 0 else self._now() + 1

    async def get(self, pubkey: str) -> set[str] | None:
        """Fresh cached follows, or ``None`` when absent or stale."""
        follows = await queries.fetch_cached_follows(self._db, pubkey, self._fresh_since())
        return set(follows) if follows is not None else None

    async def put(self, pubkey: str, follows: set[str]) -> None:
        await queries.upsert_cached_follows(self._db, pubkey, sorted(follows), self._now())

    async def refresh(self, pubkey: str, fetcher: FollowsFetcher, timeout: float) -> set[str]:  # noqa: ASYNC109
        """Fetch *pubkey* again regardless of freshness and store the result."""
        follows = await fetcher.fetch_follows(pubkey, timeout)
        await self.put(pubkey, follows)
        return follows

    async def clear(self) -> int:
        return await queries.delete_cached_follows(self._db)

    async def clear_expired(self) -> int:
        """Delete stale entries and return how many were removed."""
        return await queries.delete_expired_follows(self._db, self._fresh_since())


class CachedFollowsFetcher:
    """Serves fresh cache hits and stores successful fetches from *inner*.

    Failures and timeouts from *inner* propagate and are never cached. A
    cache that cannot be read or written is bypassed for that key, so a
    database hiccup never discards a follow list fetched from the relays.
    """

    def __init__(self, inner: FollowsFetcher, cache: FollowsCache) -> None:
        self._inner = inner
        self._cache = cache
        self._logger = Logger("follows_cache")
        self.hits = 0
        self.misses = 0
        self.errors = 0

    async def fetch_follows(self, pubkey: str, timeout: float) -> set[str]:  # noqa: ASYNC109
        try:
            cached = await self._cache.get(pubkey)
        except (asyncpg.PostgresError, OSError) as e:
            self._cache_error("cache_read_failed", pubkey, e)
            cached = None
        if cached is not None:
            self.hits += 1
            return cached

        self.misses += 1
        follows = await self._inner.fetch_follows(pubkey, timeout)
        try:
            await self._cache.put(pubkey, follows)
        except (asyncpg.PostgresError, OSError) as e:
            self._cache_error("cache_write_failed", pubkey, e)
        return follows

    def _cache_error(self, event: str, pubkey: str, error: Exception) -> None:
        self.errors += 1
        self._logger.warning(event, pubkey=pubkey, error=str(error))

    def stats(self) -> dict[str, Any]:
        return {"cache_hits": self.hits, "cache_misses": self.misses, "cache_errors": self.errors}
