r"""wotgraph -- Web-of-Trust graph builder for Nostr communities.

Admins register seeder pubkeys per region. The builder walks kind 3
contact lists outward from the seeders, assigns every reached pubkey the
score of the shallowest depth it appears at, and publishes the result as
one atomic graph generation in PostgreSQL.

Imports flow strictly downward:

```text
          services         Builder, admin API, shared queries
          /      \
       core      utils     Pool, database, service base | keys, relays
          \      /
           models          Frozen dataclasses (zero I/O)
```

Note:
    Top-level imports (``from wotgraph import GraphBuilder``) use lazy
    loading and resolve on first access.
"""

import importlib
from importlib.metadata import version as _get_version


__version__ = _get_version("wotgraph")

__all__ = [
    "AdminApi",
    "ApiConfig",
    "BaseService",
    "BuildRun",
    "BuilderConfig",
    "Database",
    "GraphBuilder",
    "GraphNode",
    "Logger",
    "Pool",
    "Relay",
    "ScoreTable",
    "Seeder",
    "SeederRegistry",
    "propagate_trust",
]

_LAZY_IMPORTS: dict[str, tuple[str, str]] = {
    "BaseService": ("wotgraph.core", "BaseService"),
    "Database": ("wotgraph.core", "Database"),
    "Logger": ("wotgraph.core", "Logger"),
    "Pool": ("wotgraph.core", "Pool"),
    "BuildRun": ("wotgraph.models", "BuildRun"),
    "GraphNode": ("wotgraph.models", "GraphNode"),
    "Relay": ("wotgraph.models", "Relay"),
    "Seeder": ("wotgraph.models", "Seeder"),
    "SeederRegistry": ("wotgraph.services.common", "SeederRegistry"),
    "AdminApi": ("wotgraph.services", "AdminApi"),
    "ApiConfig": ("wotgraph.services", "ApiConfig"),
    "BuilderConfig": ("wotgraph.services", "BuilderConfig"),
    "GraphBuilder": ("wotgraph.services", "GraphBuilder"),
    "ScoreTable": ("wotgraph.services.builder", "ScoreTable"),
    "propagate_trust": ("wotgraph.services.builder", "propagate_trust"),
}


def __getattr__(name: str) -> object:
    if name in _LAZY_IMPORTS:
        module_path, attr_name = _LAZY_IMPORTS[name]
        module = importlib.import_module(module_path)
        value = getattr(module, attr_name)
        globals()[name] = value
        return value
    raise AttributeError(f"module 'wotgraph' has no attribute {name!r}")


def __dir__() -> list[str]:
    return __all__
