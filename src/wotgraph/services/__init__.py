"""Services: the graph builder and the admin API.

Both extend [BaseService][wotgraph.core.base_service.BaseService] and share
one PostgreSQL database through [Database][wotgraph.core.database.Database].

```text
seeders -> GraphBuilder -> graph_node (generation N)
                ^
             AdminApi  (triggers, stats, seeder CRUD, trust lookups)
```

Attributes:
    GraphBuilder: Periodic or on-demand Web-of-Trust graph builds.
    AdminApi: FastAPI server for administration and public trust lookups.

Examples:
    ```python
    from wotgraph.core import Database
    from wotgraph.services import GraphBuilder

    db = Database.from_yaml("config/database.yaml")
    async with db:
        builder = GraphBuilder(database=db)
        result = await builder.build_community_graph()
    ```
"""

from .api import AdminApi, ApiConfig
from .builder import BuilderConfig, GraphBuilder


__all__ = ["AdminApi", "ApiConfig", "BuilderConfig", "GraphBuilder"]
