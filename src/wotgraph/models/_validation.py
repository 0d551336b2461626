"""Shared validation helpers for frozen dataclass models.

Private module used by ``__post_init__`` methods in sibling model modules.
"""

from __future__ import annotations

import math
import re
from typing import Any

from .constants import PUBKEY_HEX_LENGTH


_PUBKEY_PATTERN = re.compile(rf"^[0-9a-f]{{{PUBKEY_HEX_LENGTH}}}$")


def validate_non_negative_int(value: Any, name: str) -> None:
    """Raise if *value* is not a non-negative ``int`` (``bool`` excluded)."""
    if isinstance(value, bool) or not isinstance(value, int):
        raise TypeError(f"{name} must be an int, got {type(value).__name__}")
    if value < 0:
        raise ValueError(f"{name} must be non-negative")


# Unix timestamps share the integer rule.
validate_timestamp = validate_non_negative_int


def validate_str_no_null(value: Any, name: str) -> None:
    """Raise if *value* is not a ``str`` or contains null bytes."""
    if not isinstance(value, str):
        raise TypeError(f"{name} must be a str, got {type(value).__name__}")
    if "\x00" in value:
        raise ValueError(f"{name} contains null bytes")


def validate_str_not_empty(value: Any, name: str) -> None:
    """Raise if *value* is not a non-blank ``str`` without null bytes."""
    validate_str_no_null(value, name)
    if not value.strip():
        raise ValueError(f"{name} must not be empty")


def validate_optional_str(value: Any, name: str) -> None:
    if value is not None:
        validate_str_no_null(value, name)


def validate_pubkey(value: Any, name: str = "pubkey") -> None:
    """Raise if *value* is not a 64-character lowercase hex public key.

    Models only accept the canonical form; mixed case and ``npub`` input are
    normalized by [normalize_pubkey()][wotgraph.utils.keys.normalize_pubkey]
    before reaching a constructor.
    """
    validate_str_no_null(value, name)
    if not _PUBKEY_PATTERN.match(value):
        raise ValueError(f"{name} must be {PUBKEY_HEX_LENGTH} lowercase hex characters")


def validate_score(value: Any, name: str = "score") -> None:
    """Raise if *value* is not a finite real number in ``[0, 1]``."""
    if isinstance(value, bool) or not isinstance(value, (int, float)):
        raise TypeError(f"{name} must be a float, got {type(value).__name__}")
    if not math.isfinite(value) or not 0.0 <= value <= 1.0:
        raise ValueError(f"{name} must be within [0, 1], got {value}")
