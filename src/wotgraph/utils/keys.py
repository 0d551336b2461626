"""Nostr key helpers.

Public keys arrive from admins and relays in several spellings (``npub1``
bech32, upper or mixed case hex, surrounding whitespace). Everything that
is stored or compared goes through
[normalize_pubkey()][wotgraph.utils.keys.normalize_pubkey] first, so the
rest of the system only ever sees 64-character lowercase hex.

Private keys are optional and only used to authenticate to relays that
require NIP-42; they are read from the environment, never from config files.

Examples:
    ```python
    normalize_pubkey("NPUB1...")          # -> "3bf0c63f..."
    normalize_pubkey("3BF0C63F...")      # -> "3bf0c63f..."
    ```
"""

from __future__ import annotations

import os
import re

from nostr_sdk import Keys, NostrSdkError, PublicKey

from wotgraph.models.constants import PUBKEY_HEX_LENGTH


_HEX_PUBKEY = re.compile(rf"^[0-9a-fA-F]{{{PUBKEY_HEX_LENGTH}}}$")
_NPUB_PREFIX = "npub1"


def is_hex_pubkey(value: str) -> bool:
    """Whether *value* is 64 hex characters in any case (no bech32 decoding)."""
    return bool(_HEX_PUBKEY.match(value))


def normalize_pubkey(value: str) -> str:
    """Return the canonical lowercase hex form of a public key.

    Accepts 64 hex characters in any case or an ``npub1`` bech32 string,
    with surrounding whitespace ignored.

    Raises:
        ValueError: If *value* is neither a hex key nor a valid ``npub``.
    """
    if not isinstance(value, str):
        raise ValueError(f"pubkey must be a string, got {type(value).__name__}")

    candidate = value.strip()
    if is_hex_pubkey(candidate):
        return candidate.lower()

    if candidate.lower().startswith(_NPUB_PREFIX):
        try:
            return PublicKey.parse(candidate.lower()).to_hex()
        except NostrSdkError as e:
            raise ValueError(f"invalid npub: {e}") from e

    raise ValueError(f"pubkey must be {PUBKEY_HEX_LENGTH} hex characters or an npub")


def to_npub(pubkey: str) -> str:
    """Bech32 ``npub1`` rendering of a hex public key, for display."""
    return PublicKey.parse(normalize_pubkey(pubkey)).to_bech32()


def load_keys_from_env(env_var: str) -> Keys:
    """Parse an ``nsec1`` or hex private key from the environment.

    Raises:
        ValueError: If the variable is unset or empty.
        nostr_sdk.NostrSdkError: If the value is not a valid private key.
    """
    value = os.getenv(env_var)
    if not value:
        raise ValueError(f"{env_var} environment variable is required")
    return Keys.parse(value)
