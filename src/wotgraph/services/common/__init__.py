"""Code shared by the builder and API services.

Attributes:
    queries: Domain SQL, one function per query.
    SeederRegistry: Seeder CRUD with input normalization.
"""

from . import queries
from .registry import KEEP, SeederRegistry


__all__ = ["KEEP", "SeederRegistry", "queries"]
