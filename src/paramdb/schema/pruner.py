"""
Removal of superfluous tables.

After the reconciliation pass every table that is neither kept nor was
created by the pass is dropped. Engine-internal tables are never
considered.
"""

import logging
from dataclasses import dataclass, field
from typing import Iterable, List, Optional

from ..database.connection import ConnectionPool
from ..database.introspection import SchemaIntrospector
from ..exceptions import StatementExecutionError
from .dialect import Dialect
from .operations import SchemaOperations, drop_table_change, execution_error
from .script import normalize_table_name


logger = logging.getLogger(__name__)


@dataclass
class PruneResult:
    """Outcome of a pruning pass."""

    pruned_tables: List[str] = field(default_factory=list)
    retained_tables: List[str] = field(default_factory=list)
    system_tables: List[str] = field(default_factory=list)
    errors: List[StatementExecutionError] = field(default_factory=list)


class TablePruner:
    """Drops live tables that are neither kept nor freshly created."""

    def __init__(
        self,
        pool: ConnectionPool,
        operations: SchemaOperations,
        dialect: Dialect,
        schema: str = "public",
    ):
        self.operations = operations
        self.dialect = dialect
        self.introspector = SchemaIntrospector(pool, schema)

    async def prune(
        self,
        keep_tables: Iterable[str],
        created_tables: Iterable[str],
        live_tables: Optional[Iterable[str]] = None,
    ) -> PruneResult:
        """Drop every superfluous table; failures are collected per table."""
        if live_tables is None:
            live_tables = await self.introspector.list_tables()

        protected = {normalize_table_name(t) for t in keep_tables}
        protected |= {normalize_table_name(t) for t in created_tables}

        result = PruneResult()
        for table in live_tables:
            if self.dialect.is_system_table(table):
                result.system_tables.append(table)
                continue
            if normalize_table_name(table) in protected:
                result.retained_tables.append(table)
                continue

            logger.info(f"Dropping superfluous table {table}")
            change = await self.operations.execute_change(drop_table_change(table))
            if change.has_error:
                result.errors.append(
                    execution_error(change, "deleting superfluous table")
                )
            else:
                result.pruned_tables.append(table)

        return result
