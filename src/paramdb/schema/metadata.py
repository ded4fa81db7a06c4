"""
Metadata ledger for paramdb.

Every run appends one audit record to the ledger table (``meta_info``)
and reads the schema version table (``db_version``). The version table
is only ever read here; writing versions is the upgrade routine's job.
"""

import logging
from dataclasses import dataclass
from datetime import datetime
from typing import Any, List, Optional, Tuple

from ..database.connection import ConnectionPool
from ..database.introspection import SchemaIntrospector
from ..exceptions import StatementExecutionError
from .operations import ChangeType, SchemaChange, SchemaOperations, execution_error


logger = logging.getLogger(__name__)

LEDGER_COLUMNS = (
    "pid",
    "mod_date",
    "mod_user",
    "affected_tables",
    "affected_columns",
    "remarks",
)


@dataclass
class LedgerRecord:
    """One row of the ledger table."""

    sequence_id: int
    timestamp: datetime
    actor: str
    affected_tables: str = "all"
    affected_columns: str = "all"
    remarks: str = ""

    def as_row(self) -> Tuple[Any, ...]:
        return (
            self.sequence_id,
            self.timestamp,
            self.actor,
            self.affected_tables,
            self.affected_columns,
            self.remarks,
        )

    @classmethod
    def from_row(cls, row: Any) -> "LedgerRecord":
        return cls(
            sequence_id=row["pid"],
            timestamp=row["mod_date"],
            actor=row["mod_user"],
            affected_tables=row["affected_tables"],
            affected_columns=row["affected_columns"],
            remarks=row["remarks"],
        )


@dataclass
class LedgerWrite:
    """Outcome of appending to the ledger."""

    record: Optional[LedgerRecord] = None
    version: Optional[int] = None
    error: Optional[StatementExecutionError] = None

    @property
    def written(self) -> bool:
        return self.record is not None and self.error is None


class MetadataLedger:
    """Reads schema versions and appends audit records."""

    def __init__(
        self,
        pool: ConnectionPool,
        operations: SchemaOperations,
        ledger_table: str = "meta_info",
        version_table: str = "db_version",
        schema: str = "public",
    ):
        self.pool = pool
        self.operations = operations
        self.ledger_table = ledger_table
        self.version_table = version_table
        self.introspector = SchemaIntrospector(pool, schema)

    async def current_version(self) -> Optional[int]:
        """
        Latest version in the version table, or None if there is none.

        The highest version is taken rather than the last inserted row; the
        two agree as long as upgrades only ever move forward.
        """
        if not await self.introspector.table_exists(self.version_table):
            return None

        value = await self.pool.fetchval(f"SELECT MAX(version) FROM {self.version_table}")
        return int(value) if value is not None else None

    async def next_sequence_id(self) -> int:
        """max(existing sequence id) + 1, starting at 1."""
        if not await self.introspector.table_exists(self.ledger_table):
            return 1

        value = await self.pool.fetchval(f"SELECT MAX(pid) FROM {self.ledger_table}")
        return int(value or 0) + 1

    async def append(
        self,
        actor: str,
        affected_tables: str = "all",
        affected_columns: str = "all",
    ) -> LedgerWrite:
        """
        Append one record describing a run.

        The remark names the schema version found in the version table.
        Any failure, whether reading or writing, is returned on the
        LedgerWrite instead of being raised.
        """
        write = LedgerWrite()
        insert_sql = (
            f"INSERT INTO {self.ledger_table} ({', '.join(LEDGER_COLUMNS)}) "
            f"VALUES ({', '.join(f'${i}' for i in range(1, len(LEDGER_COLUMNS) + 1))})"
        )

        try:
            sequence_id = await self.next_sequence_id()
            write.version = await self.current_version()
        except Exception as e:
            logger.error(f"Failed to read {self.ledger_table}/{self.version_table}: {e}")
            write.error = StatementExecutionError(
                self.ledger_table, insert_sql, cause=e, context="reading ledger"
            )
            return write

        version_label = write.version if write.version is not None else "unknown"
        record = LedgerRecord(
            sequence_id=sequence_id,
            timestamp=datetime.now(),
            actor=actor,
            affected_tables=affected_tables,
            affected_columns=affected_columns,
            remarks=f"Created database version {version_label} using paramdb.",
        )

        change = SchemaChange(
            change_type=ChangeType.APPEND_LEDGER,
            table=self.ledger_table,
            sql=insert_sql,
            description=f"Append ledger record {sequence_id}",
            params=record.as_row(),
        )
        change = await self.operations.execute_change(change)
        if change.has_error:
            write.error = execution_error(change, "updating ledger")
            return write

        write.record = record
        logger.info(f"Ledger record {sequence_id} written: {record.remarks}")
        return write

    async def history(self, limit: Optional[int] = None) -> List[LedgerRecord]:
        """Ledger records, newest first."""
        if not await self.introspector.table_exists(self.ledger_table):
            return []

        query = (
            f"SELECT {', '.join(LEDGER_COLUMNS)} FROM {self.ledger_table} "
            f"ORDER BY pid DESC"
        )
        if limit:
            query += f" LIMIT {int(limit)}"

        rows = await self.pool.fetch(query)
        return [LedgerRecord.from_row(row) for row in rows]
