"""
Schema operation execution for paramdb.

Every DDL/DML statement issued by a run goes through
SchemaOperations. Statements are executed one at a time without an
explicit transaction, so each commits independently. A failure is
recorded on the change instead of being raised, and the caller decides
how to continue.
"""

import asyncio
import logging
import time
from dataclasses import dataclass, field
from typing import Any, Dict, List, Optional, Tuple
from enum import Enum

from ..database.connection import ConnectionPool
from ..exceptions import StatementExecutionError


logger = logging.getLogger(__name__)


class ChangeType(str, Enum):
    """Types of schema changes."""

    CREATE_TABLE = "create_table"
    DROP_TABLE = "drop_table"
    EMPTY_TABLE = "empty_table"
    INSERT_ROWS = "insert_rows"
    EXECUTE = "execute"
    APPEND_LEDGER = "append_ledger"


class OperationMode(str, Enum):
    """Schema operation modes."""

    EXECUTE = "execute"        # Run every statement against the database
    DRY_RUN = "dry_run"        # Log statements but don't execute


@dataclass
class SchemaChange:
    """A single statement to run against one table."""

    change_type: ChangeType
    table: Optional[str]
    sql: str
    description: str = ""
    params: Tuple[Any, ...] = field(default_factory=tuple)

    # Execution results
    executed: bool = False
    execution_time_ms: Optional[float] = None
    error: Optional[str] = None
    exception: Optional[Exception] = field(default=None, repr=False)

    @property
    def has_error(self) -> bool:
        """Check if this change has an error."""
        return self.error is not None

    @property
    def change_id(self) -> str:
        """Get identifier for this change."""
        return f"{self.change_type.value}_{self.table or 'none'}"


def drop_table_change(table: str) -> SchemaChange:
    return SchemaChange(
        change_type=ChangeType.DROP_TABLE,
        table=table,
        sql=f"DROP TABLE {table}",
        description=f"Drop table {table}",
    )


def empty_table_change(table: str) -> SchemaChange:
    return SchemaChange(
        change_type=ChangeType.EMPTY_TABLE,
        table=table,
        sql=f"DELETE FROM {table}",
        description=f"Delete all rows of {table}",
    )


def execution_error(
    change: SchemaChange, context: Optional[str] = None
) -> StatementExecutionError:
    """Describe a failed change as a StatementExecutionError."""
    return StatementExecutionError(
        change.table, change.sql, cause=change.exception, context=context
    )


class SchemaOperations:
    """Sequential schema statement executor."""

    def __init__(
        self,
        pool: ConnectionPool,
        operation_mode: OperationMode = OperationMode.EXECUTE,
    ):
        self.pool = pool
        self.operation_mode = operation_mode
        self.changes: List[SchemaChange] = []
        self._operation_lock = asyncio.Lock()

    @property
    def dry_run(self) -> bool:
        return self.operation_mode == OperationMode.DRY_RUN

    async def execute_change(self, change: SchemaChange) -> SchemaChange:
        """Execute a change and record the outcome on it."""
        self.changes.append(change)
        if self.dry_run:
            change.executed = False
            logger.info(f"DRY RUN: {change.description or change.change_id}")
            logger.info(f"SQL: {change.sql.strip()}")
            return change

        async with self._operation_lock:
            start_time = time.time()
            try:
                async with self.pool.acquire() as conn:
                    await conn.execute(change.sql, *change.params)
                change.executed = True
                logger.debug(f"Executed {change.change_id}")

            except Exception as e:
                change.executed = False
                change.error = str(e)
                change.exception = e
                logger.error(f"Failed to execute {change.change_id}: {e}")

            finally:
                change.execution_time_ms = (time.time() - start_time) * 1000

        return change

    @staticmethod
    def get_execution_summary(changes: List[SchemaChange]) -> Dict[str, Any]:
        """Get summary of execution results."""
        total = len(changes)
        successful = sum(1 for c in changes if c.executed)
        failed = sum(1 for c in changes if c.error)
        total_time = sum(c.execution_time_ms or 0 for c in changes)

        return {
            "total_operations": total,
            "successful": successful,
            "failed": failed,
            "total_execution_time_ms": total_time,
            "failed_operations": [
                {
                    "change_id": c.change_id,
                    "error": c.error,
                    "change_type": c.change_type.value,
                }
                for c in changes if c.error
            ],
        }
