"""Helpers with I/O or third-party protocol dependencies (nostr-sdk)."""

from .keys import is_hex_pubkey, load_keys_from_env, normalize_pubkey, to_npub
from .protocol import (
    connect_relays,
    contact_list_filter,
    create_client,
    extract_follows,
    latest_event,
    shutdown_client,
)


__all__ = [
    "connect_relays",
    "contact_list_filter",
    "create_client",
    "extract_follows",
    "is_hex_pubkey",
    "latest_event",
    "load_keys_from_env",
    "normalize_pubkey",
    "shutdown_client",
    "to_npub",
]
