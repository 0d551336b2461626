"""Shared enumerations and constants for the models layer.

See Also:
    [BuildRun][wotgraph.models.build_run.BuildRun]: Carries a
        [BuildStatus][wotgraph.models.constants.BuildStatus].
    [BaseService][wotgraph.core.base_service.BaseService]: Uses
        [ServiceName][wotgraph.models.constants.ServiceName] for logging
        and the ``service`` metrics label.
"""

from __future__ import annotations

from enum import IntEnum, StrEnum


PUBKEY_HEX_LENGTH = 64


class ServiceName(StrEnum):
    """Canonical service identifiers used in logging and metrics.

    Attributes:
        BUILDER: Graph build service
            ([GraphBuilder][wotgraph.services.builder.GraphBuilder]).
        API: Admin HTTP service
            ([AdminApi][wotgraph.services.api.AdminApi]).
    """

    BUILDER = "builder"
    API = "api"


class EventKind(IntEnum):
    """Nostr event kinds read by the graph builder.

    Attributes:
        CONTACTS: Kind 3 contact list (NIP-02). Its ``p`` tags are the
            follow edges of the trust graph.
    """

    CONTACTS = 3


class BuildStatus(StrEnum):
    """Lifecycle state of a [BuildRun][wotgraph.models.build_run.BuildRun].

    ``RUNNING`` is the only non-terminal state. A run moves to exactly one of
    ``COMPLETED`` or ``FAILED`` and never changes afterwards.
    """

    RUNNING = "RUNNING"
    COMPLETED = "COMPLETED"
    FAILED = "FAILED"

    @property
    def is_terminal(self) -> bool:
        return self is not BuildStatus.RUNNING


class NetworkType(StrEnum):
    """Network classification of a relay URL.

    Only ``CLEARNET`` and the overlay networks are accepted as relays;
    ``LOCAL`` and ``UNKNOWN`` exist for detection and are always rejected.
    """

    CLEARNET = "clearnet"
    TOR = "tor"
    I2P = "i2p"
    LOKI = "loki"
    LOCAL = "local"
    UNKNOWN = "unknown"
