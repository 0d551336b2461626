"""Unit tests for models.seeder module."""

from __future__ import annotations

import pytest

from wotgraph.models import Seeder, SeederDbParams


PK = "ab" * 32


class TestSeederConstruction:
    def test_minimal(self) -> None:
        seeder = Seeder(pubkey=PK, region="lisbon", created_at=1700000000)
        assert seeder.pubkey == PK
        assert seeder.region == "lisbon"
        assert seeder.label is None
        assert seeder.added_by is None

    def test_created_at_defaults_to_now(self) -> None:
        seeder = Seeder(pubkey=PK, region="lisbon")
        assert seeder.created_at > 1_600_000_000

    def test_region_is_stripped(self) -> None:
        assert Seeder(pubkey=PK, region="  porto ").region == "porto"

    def test_frozen(self) -> None:
        seeder = Seeder(pubkey=PK, region="lisbon")
        with pytest.raises(AttributeError):
            seeder.region = "porto"  # type: ignore[misc]


class TestSeederValidation:
    @pytest.mark.parametrize(
        "pubkey",
        ["AB" * 32, "ab" * 31, "zz" * 32, "npub1xyz", ""],
    )
    def test_rejects_non_canonical_pubkey(self, pubkey: str) -> None:
        with pytest.raises(ValueError, match="pubkey"):
            Seeder(pubkey=pubkey, region="lisbon")

    @pytest.mark.parametrize("region", ["", "   "])
    def test_rejects_blank_region(self, region: str) -> None:
        with pytest.raises(ValueError, match="region"):
            Seeder(pubkey=PK, region=region)

    def test_rejects_null_bytes_in_label(self) -> None:
        with pytest.raises(ValueError, match="null"):
            Seeder(pubkey=PK, region="lisbon", label="bad\x00label")

    def test_rejects_negative_created_at(self) -> None:
        with pytest.raises(ValueError, match="created_at"):
            Seeder(pubkey=PK, region="lisbon", created_at=-1)

    def test_rejects_non_str_region(self) -> None:
        with pytest.raises(TypeError):
            Seeder(pubkey=PK, region=42)  # type: ignore[arg-type]


class TestSeederSerialization:
    def test_to_db_params_column_order(self) -> None:
        seeder = Seeder(PK, "lisbon", "Meetup", "cd" * 32, 1700000000)
        params = seeder.to_db_params()
        assert isinstance(params, SeederDbParams)
        assert tuple(params) == (PK, "lisbon", "Meetup", "cd" * 32, 1700000000)

    def test_to_dict_uses_camel_case(self) -> None:
        seeder = Seeder(PK, "lisbon", "Meetup", None, 1700000000)
        assert seeder.to_dict() == {
            "pubkey": PK,
            "region": "lisbon",
            "label": "Meetup",
            "addedBy": None,
            "createdAt": 1700000000,
        }
