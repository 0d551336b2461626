"""Admin HTTP API over the graph builder and seeder registry.

See Also:
    [AdminApi][wotgraph.services.api.service.AdminApi]: The service class.
    [ApiConfig][wotgraph.services.api.configs.ApiConfig]: Service configuration.
"""

from .configs import AdminToken, ApiConfig
from .service import AdminApi


__all__ = ["AdminApi", "AdminToken", "ApiConfig"]
