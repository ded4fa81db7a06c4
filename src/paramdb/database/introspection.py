"""
Table inventory for paramdb.

Reads the set of tables that currently exist in the target schema and
answers existence and row-count questions about single tables.
"""

import logging
from typing import List, Optional

from .connection import ConnectionPool
from ..exceptions import DatabaseError, SchemaError


logger = logging.getLogger(__name__)


class SchemaIntrospector:
    """Database schema introspection utilities."""

    def __init__(self, pool: ConnectionPool, schema: str = "public"):
        self.pool = pool
        self.schema = schema

    async def list_tables(self, schema: Optional[str] = None) -> List[str]:
        """List the base tables of a schema, in name order."""
        schema = schema or self.schema
        query = """
            SELECT table_name
            FROM information_schema.tables
            WHERE table_schema = $1
            AND table_type = 'BASE TABLE'
            ORDER BY table_name
        """

        try:
            rows = await self.pool.fetch(query, schema)
        except Exception as e:
            logger.error(f"Error listing tables in schema {schema}: {e}")
            raise SchemaError(f"Failed to list tables in schema {schema}", cause=e) from e

        return [row["table_name"] for row in rows]

    async def table_exists(self, table: str, schema: Optional[str] = None) -> bool:
        """Check if a table exists."""
        schema = schema or self.schema
        query = """
            SELECT EXISTS (
                SELECT 1 FROM information_schema.tables
                WHERE table_schema = $1 AND lower(table_name) = lower($2)
            )
        """

        try:
            result = await self.pool.fetchval(query, schema, table)
            return bool(result)
        except Exception as e:
            logger.error(f"Error checking table existence for {schema}.{table}: {e}")
            raise DatabaseError(f"Failed to check table existence: {e}") from e

    async def count_rows(self, table: str) -> int:
        """Count the rows of a table."""
        try:
            return await self.pool.fetchval(f"SELECT COUNT(*) FROM {table}") or 0
        except Exception as e:
            raise SchemaError(f"Failed to count rows of {table}", cause=e) from e
