"""Community seeder: a curated identity at depth 0 of the trust graph.

See Also:
    [SeederRegistry][wotgraph.services.common.registry.SeederRegistry]:
        CRUD over the ``seeder`` table.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from time import time
from typing import Any, NamedTuple

from ._validation import (
    validate_optional_str,
    validate_pubkey,
    validate_str_not_empty,
    validate_timestamp,
)


class SeederDbParams(NamedTuple):
    """Positional parameters in ``seeder`` column order."""

    pubkey: str
    region: str
    label: str | None
    added_by: str | None
    created_at: int


@dataclass(frozen=True, slots=True)
class Seeder:
    """A registered community seeder.

    Attributes:
        pubkey: 64-character lowercase hex public key (unique).
        region: Community region the seeder vouches for, e.g. ``"lisbon"``.
        label: Optional human-readable name.
        added_by: Pubkey of the admin who registered the seeder, if known.
        created_at: Unix timestamp of registration.

    Raises:
        TypeError: If a field has the wrong type.
        ValueError: If the pubkey is not canonical or the region is blank.
    """

    pubkey: str
    region: str
    label: str | None = None
    added_by: str | None = None
    created_at: int = field(default_factory=lambda: int(time()))

    def __post_init__(self) -> None:
        validate_pubkey(self.pubkey)
        validate_str_not_empty(self.region, "region")
        validate_optional_str(self.label, "label")
        validate_optional_str(self.added_by, "added_by")
        validate_timestamp(self.created_at, "created_at")
        object.__setattr__(self, "region", self.region.strip())

    def to_db_params(self) -> SeederDbParams:
        return SeederDbParams(
            pubkey=self.pubkey,
            region=self.region,
            label=self.label,
            added_by=self.added_by,
            created_at=self.created_at,
        )

    def to_dict(self) -> dict[str, Any]:
        """JSON-ready representation with camelCase keys."""
        return {
            "pubkey": self.pubkey,
            "region": self.region,
            "label": self.label,
            "addedBy": self.added_by,
            "createdAt": self.created_at,
        }
