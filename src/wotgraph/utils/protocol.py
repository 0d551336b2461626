"""Nostr protocol helpers built on nostr-sdk.

Attributes:
    create_client: Client factory with an optional NIP-42 signer.
    connect_relays: Add and connect a set of relays on one client.
    contact_list_filter: Filter for one author's kind 3 contact list.
    latest_event: Pick the newest event from a fetch result.
    extract_follows: Read the followed pubkeys out of a contact list.

Note:
    Contact lists are replaceable events; relays may still return older
    copies alongside the current one, so callers always reduce a fetch
    result with [latest_event()][wotgraph.utils.protocol.latest_event]
    before reading tags.
"""

from __future__ import annotations

import contextlib
import logging
from datetime import timedelta
from typing import TYPE_CHECKING

from nostr_sdk import (
    Client,
    ClientBuilder,
    Filter,
    Kind,
    NostrSdkError,
    NostrSigner,
    PublicKey,
    RelayUrl,
)

from wotgraph.models.constants import EventKind

from .keys import is_hex_pubkey


if TYPE_CHECKING:
    from collections.abc import Iterable

    from nostr_sdk import Event, Events, Keys

    from wotgraph.models import Relay


logger = logging.getLogger(__name__)

_FOLLOW_TAG = "p"


def create_client(keys: Keys | None = None) -> Client:
    """Build a read client; with *keys* it can answer NIP-42 AUTH challenges."""
    builder = ClientBuilder()
    if keys is not None:
        builder = builder.signer(NostrSigner.keys(keys))
    return builder.build()


async def connect_relays(client: Client, relays: Iterable[Relay], timeout: float) -> int:  # noqa: ASYNC109
    """Add *relays* to *client*, connect, and wait up to *timeout* seconds.

    Relays the SDK refuses to add are logged and skipped.

    Returns:
        Number of relays added.
    """
    added = 0
    for relay in relays:
        try:
            await client.add_relay(RelayUrl.parse(relay.url))
        except NostrSdkError as e:
            logger.warning("relay_add_failed relay=%s error=%s", relay.url, e)
            continue
        added += 1

    if added:
        await client.connect()
        await client.wait_for_connection(timedelta(seconds=timeout))
    return added


async def shutdown_client(client: Client) -> None:
    # nostr-sdk raises arbitrary FFI errors from shutdown on half-open sockets.
    with contextlib.suppress(Exception):
        await client.shutdown()


def contact_list_filter(pubkey: str) -> Filter:
    """Filter for the newest kind 3 event authored by *pubkey* (hex)."""
    return (
        Filter()
        .author(PublicKey.parse(pubkey))
        .kind(Kind(EventKind.CONTACTS))
        .limit(1)
    )


def latest_event(events: Events | Iterable[Event]) -> Event | None:
    """Return the event with the greatest ``created_at``, or ``None`` if empty."""
    items = events.to_vec() if hasattr(events, "to_vec") else list(events)
    newest: Event | None = None
    for event in items:
        if newest is None or event.created_at().as_secs() > newest.created_at().as_secs():
            newest = event
    return newest


def extract_follows(event: Event) -> set[str]:
    """Collect the lowercase hex pubkeys of an event's ``p`` tags.

    Tags whose value is not 64 hex characters are ignored, as is a
    self-follow by the event author.
    """
    author = event.author().to_hex()
    follows: set[str] = set()
    for tag in event.tags().to_vec():
        values = tag.as_vec()
        if len(values) < 2 or values[0] != _FOLLOW_TAG:
            continue
        if is_hex_pubkey(values[1]):
            follows.add(values[1].lower())
    follows.discard(author)
    return follows
