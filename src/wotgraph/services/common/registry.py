"""Seeder registry: the curated identities at depth 0 of the trust graph.

Every operation normalizes the pubkey it receives (``npub`` or hex in any
case) before touching the database. Rejections are raised as the
``RegistryError`` family from [wotgraph.core.exceptions][]. Changing the
registry never triggers a rebuild; the next build picks changes up.

Examples:
    ```python
    registry = SeederRegistry(db)
    seeder = await registry.create("npub1...", region="lisbon", label="Lisbon meetup")
    await registry.update(seeder.pubkey, region="porto")
    ```
"""

from __future__ import annotations

from typing import TYPE_CHECKING, Any, Final

from wotgraph.core.exceptions import DuplicateSeeder, InvalidInput, SeederNotFound
from wotgraph.core.logger import Logger
from wotgraph.models import Seeder
from wotgraph.utils.keys import normalize_pubkey

from . import queries


if TYPE_CHECKING:
    from wotgraph.core.database import Database


KEEP: Final[Any] = object()
"""Sentinel for ``update()`` fields that should stay unchanged."""


def _pubkey(value: str) -> str:
    try:
        return normalize_pubkey(value)
    except ValueError as e:
        raise InvalidInput(str(e)) from e


def _region(value: Any) -> str:
    if not isinstance(value, str) or not value.strip():
        raise InvalidInput("region must be a non-empty string")
    return value.strip()


def _label(value: Any) -> str | None:
    if value is None:
        return None
    if not isinstance(value, str):
        raise InvalidInput("label must be a string")
    return value.strip() or None


class SeederRegistry:
    """CRUD over the ``seeder`` table."""

    def __init__(self, db: Database) -> None:
        self._db = db
        self._logger = Logger("registry")

    async def list(self, region: str | None = None) -> list[Seeder]:
        """Registered seeders ordered by ``created_at``, optionally for one region."""
        if region is not None:
            region = _region(region)
        return await queries.fetch_seeders(self._db, region)

    async def get(self, pubkey: str) -> Seeder | None:
        return await queries.fetch_seeder(self._db, _pubkey(pubkey))

    async def create(
        self,
        pubkey: str,
        region: str,
        label: str | None = None,
        added_by: str | None = None,
    ) -> Seeder:
        """Register a new seeder.

        Raises:
            InvalidInput: If the pubkey does not normalize or the region is blank.
            DuplicateSeeder: If the pubkey is already registered.
        """
        seeder = Seeder(
            pubkey=_pubkey(pubkey),
            region=_region(region),
            label=_label(label),
            added_by=_pubkey(added_by) if added_by is not None else None,
        )
        if not await queries.insert_seeder(self._db, seeder):
            raise DuplicateSeeder(seeder.pubkey)

        self._logger.info("seeder_created", pubkey=seeder.pubkey, region=seeder.region)
        return seeder

    async def update(self, pubkey: str, *, region: Any = KEEP, label: Any = KEEP) -> Seeder:
        """Change a seeder's region and/or label.

        Omitted fields keep their value; ``label=None`` clears the label.

        Raises:
            InvalidInput: On a malformed pubkey or blank region.
            SeederNotFound: If the pubkey is not registered.
        """
        key = _pubkey(pubkey)
        current = await queries.fetch_seeder(self._db, key)
        if current is None:
            raise SeederNotFound(key)

        new_region = current.region if region is KEEP else _region(region)
        new_label = current.label if label is KEEP else _label(label)

        updated = await queries.update_seeder(self._db, key, new_region, new_label)
        if updated is None:
            raise SeederNotFound(key)

        self._logger.info("seeder_updated", pubkey=key, region=updated.region)
        return updated

    async def delete(self, pubkey: str) -> None:
        """Remove a seeder.

        Raises:
            InvalidInput: On a malformed pubkey.
            SeederNotFound: If the pubkey is not registered.
        """
        key = _pubkey(pubkey)
        if not await queries.delete_seeder(self._db, key):
            raise SeederNotFound(key)
        self._logger.info("seeder_deleted", pubkey=key)

    async def count(self) -> int:
        return await queries.count_seeders(self._db)

    async def regions(self) -> list[str]:
        return await queries.fetch_seeder_regions(self._db)
