"""
Validated Nostr relay URL.

Relays are only configuration input here (the builder reads contact lists
from them), so the model keeps the parts that matter for connecting:
the normalized URL and its network. Clearnet relays must use TLS
(``wss://``), overlay networks use ``ws://``, and local or private
addresses are rejected.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from ipaddress import ip_address
from typing import ClassVar

from rfc3986 import uri_reference
from rfc3986.exceptions import UnpermittedComponentError, ValidationError
from rfc3986.validators import Validator

from ._validation import validate_str_no_null
from .constants import NetworkType


@dataclass(frozen=True, slots=True)
class Relay:
    """Immutable, normalized relay URL.

    Attributes:
        url: Normalized URL, default port stripped, no trailing slash.
        network: Detected [NetworkType][wotgraph.models.constants.NetworkType].

    Raises:
        ValueError: If the URL is malformed, not ``ws``/``wss``, has a query
            or fragment, or points at a local address.

    Examples:
        ```python
        Relay("wss://Relay.Damus.io/").url   # 'wss://relay.damus.io'
        Relay("wss://abc.onion").url         # 'ws://abc.onion'
        ```
    """

    raw_url: str = field(repr=False)
    url: str = field(init=False)
    network: NetworkType = field(init=False)

    _OVERLAY_TLDS: ClassVar[dict[str, NetworkType]] = {
        ".onion": NetworkType.TOR,
        ".i2p": NetworkType.I2P,
        ".loki": NetworkType.LOKI,
    }
    _DEFAULT_PORTS: ClassVar[dict[str, int]] = {"ws": 80, "wss": 443}

    def __post_init__(self) -> None:
        validate_str_no_null(self.raw_url, "relay url")

        uri = uri_reference(self.raw_url.strip()).normalize()
        validator = (
            Validator()
            .require_presence_of("scheme", "host")
            .allow_schemes("ws", "wss")
            .check_validity_of("scheme", "host", "port", "path")
        )
        try:
            validator.validate(uri)
        except UnpermittedComponentError:
            raise ValueError("Invalid scheme: must be ws or wss") from None
        except ValidationError as e:
            raise ValueError(f"Invalid URL: {e}") from None
        if uri.query or uri.fragment:
            raise ValueError("Relay URL must not contain a query string or fragment")

        host = uri.host.strip("[]")
        network = self.detect_network(host)
        if network in (NetworkType.LOCAL, NetworkType.UNKNOWN):
            raise ValueError(f"Relay host not allowed: '{host}' ({network})")

        scheme = "wss" if network is NetworkType.CLEARNET else "ws"
        netloc = f"[{host}]" if ":" in host else host
        if uri.port and int(uri.port) != self._DEFAULT_PORTS[scheme]:
            netloc = f"{netloc}:{int(uri.port)}"
        path = (uri.path or "").rstrip("/")

        object.__setattr__(self, "url", f"{scheme}://{netloc}{path}")
        object.__setattr__(self, "network", network)

    @classmethod
    def detect_network(cls, host: str) -> NetworkType:
        """Classify a hostname or IP literal."""
        bare = host.lower().strip("[]")
        if not bare:
            return NetworkType.UNKNOWN
        for tld, network in cls._OVERLAY_TLDS.items():
            if bare.endswith(tld):
                return network
        if bare in ("localhost", "localhost.localdomain"):
            return NetworkType.LOCAL
        try:
            ip = ip_address(bare)
        except ValueError:
            pass
        else:
            return NetworkType.CLEARNET if ip.is_global else NetworkType.LOCAL
        labels = bare.split(".")
        if len(labels) < 2 or not all(
            label and not label.startswith("-") and not label.endswith("-") for label in labels
        ):
            return NetworkType.UNKNOWN
        return NetworkType.CLEARNET

    def __str__(self) -> str:
        return self.url
