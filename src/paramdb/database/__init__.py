"""
Database integration package for paramdb.

This package provides:
- Async PostgreSQL connection pool with a scoped lifecycle
- Live table inventory
"""

from .connection import ConnectionConfig, ConnectionPool, open_pool
from .introspection import SchemaIntrospector

__all__ = [
    "ConnectionConfig",
    "ConnectionPool",
    "open_pool",
    "SchemaIntrospector",
]
