"""Pure frozen dataclasses for the trust graph domain.

Bottom of the dependency graph: no I/O and no imports from ``core``,
``utils`` or ``services``. Every model validates itself in
``__post_init__``, so an instance that exists is a valid instance.
"""

from .build_run import BuildRun
from .constants import PUBKEY_HEX_LENGTH, BuildStatus, EventKind, NetworkType, ServiceName
from .graph_node import GraphNode, GraphNodeDbParams
from .relay import Relay
from .seeder import Seeder, SeederDbParams


__all__ = [
    "PUBKEY_HEX_LENGTH",
    "BuildRun",
    "BuildStatus",
    "EventKind",
    "GraphNode",
    "GraphNodeDbParams",
    "NetworkType",
    "Relay",
    "Seeder",
    "SeederDbParams",
    "ServiceName",
]
