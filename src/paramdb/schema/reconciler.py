"""
Schema reconciliation core logic for paramdb.

Walks the statements of the schema script in order and decides, per
target table, whether to preserve, empty, drop-and-recreate or create
it, given the live table inventory, the overwrite policy and the set of
tables the caller wants kept. Statements run one at a time; a failing
statement is recorded and the pass continues.
"""

import logging
import time
from dataclasses import dataclass, field
from enum import Enum
from typing import Iterable, List, Optional, Set

from ..database.connection import ConnectionPool
from ..database.introspection import SchemaIntrospector
from ..exceptions import StatementExecutionError
from .dialect import EngineFamily, adapt_statement
from .operations import (
    ChangeType,
    SchemaChange,
    SchemaOperations,
    drop_table_change,
    empty_table_change,
    execution_error,
)
from .script import Statement, StatementKind, normalize_table_name


logger = logging.getLogger(__name__)


class PreservationPolicy(str, Enum):
    """What happens to an existing table that is not explicitly kept."""

    NONE = "none"      # leave it alone
    DROP = "drop"      # drop it and recreate it from the script
    EMPTY = "empty"    # delete its rows, keep its structure

    @classmethod
    def parse(cls, value: Optional[str]) -> "PreservationPolicy":
        if value is None or value == "":
            return cls.NONE
        return cls(str(value).lower())


class TableAction(str, Enum):
    """Decision taken for one statement."""

    PRESERVE = "preserve"    # existing table left as it is
    EMPTY = "empty"          # existing table emptied, not recreated
    RECREATE = "recreate"    # existing table dropped, then created
    CREATE = "create"        # missing table created
    EXECUTE = "execute"      # non-create statement run as is
    SKIP_KEPT = "skip_kept"  # non-create statement on a kept table
    BLOCKED = "blocked"      # an earlier statement on the table failed
    REJECTED = "rejected"    # CREATE TABLE with an unrecognised table name


def decide_action(
    statement: Statement,
    live_tables: Set[str],
    policy: PreservationPolicy,
    keep_tables: Set[str],
) -> TableAction:
    """
    Decide what to do with one statement.

    ``live_tables`` and ``keep_tables`` hold normalized table names.
    """
    key = statement.table_key

    if statement.kind == StatementKind.CREATE:
        if key not in live_tables:
            return TableAction.CREATE
        if key in keep_tables:
            return TableAction.PRESERVE
        if policy == PreservationPolicy.DROP:
            return TableAction.RECREATE
        if policy == PreservationPolicy.EMPTY:
            return TableAction.EMPTY
        return TableAction.PRESERVE

    if key is not None and key in keep_tables:
        return TableAction.SKIP_KEPT
    return TableAction.EXECUTE


@dataclass
class StatementOutcome:
    """What happened to one statement of the script."""

    statement: Statement
    action: TableAction
    changes: List[SchemaChange] = field(default_factory=list)
    error: Optional[StatementExecutionError] = None

    @property
    def failed(self) -> bool:
        return self.error is not None


@dataclass
class ReconciliationResult:
    """Result of the main reconciliation pass."""

    policy: PreservationPolicy
    engine_family: EngineFamily
    created_tables: List[str] = field(default_factory=list)
    dropped_tables: List[str] = field(default_factory=list)
    emptied_tables: List[str] = field(default_factory=list)
    preserved_tables: List[str] = field(default_factory=list)
    failed_tables: Set[str] = field(default_factory=set)
    outcomes: List[StatementOutcome] = field(default_factory=list)
    errors: List[StatementExecutionError] = field(default_factory=list)
    execution_time_ms: float = 0.0

    @property
    def created_set(self) -> Set[str]:
        """Normalized names of the tables created by this pass."""
        return {normalize_table_name(t) for t in self.created_tables}

    @property
    def executed_statements(self) -> int:
        return sum(
            1 for o in self.outcomes for c in o.changes if c.executed
        )

    def actions_for(self, table: str) -> List[TableAction]:
        key = normalize_table_name(table)
        return [o.action for o in self.outcomes if o.statement.table_key == key]


class SchemaReconciler:
    """
    Core schema reconciliation engine for paramdb.

    Each statement is adapted to the engine dialect, classified against
    the live inventory and the preservation policy, and executed through
    SchemaOperations. The set of tables created during the pass is
    tracked so the pruner never removes them.
    """

    def __init__(
        self,
        pool: ConnectionPool,
        operations: SchemaOperations,
        engine_family: EngineFamily = EngineFamily.POSTGRESQL,
        schema: str = "public",
    ):
        self.pool = pool
        self.operations = operations
        self.engine_family = engine_family
        self.introspector = SchemaIntrospector(pool, schema)

    async def reconcile(
        self,
        statements: Iterable[Statement],
        policy: PreservationPolicy = PreservationPolicy.NONE,
        keep_tables: Iterable[str] = (),
        live_tables: Optional[Iterable[str]] = None,
    ) -> ReconciliationResult:
        """
        Run the reconciliation pass over the script statements.

        Args:
            statements: Classified statements in script order
            policy: Overwrite policy for existing, non-kept tables
            keep_tables: Tables that must not be touched
            live_tables: Current table inventory; queried when omitted

        Returns:
            ReconciliationResult with per-statement outcomes
        """
        start_time = time.time()

        if live_tables is None:
            live_tables = await self.introspector.list_tables()

        live = {normalize_table_name(t) for t in live_tables}
        keep = {normalize_table_name(t) for t in keep_tables}

        result = ReconciliationResult(policy=policy, engine_family=self.engine_family)

        for statement in statements:
            outcome = await self._apply(statement, live, keep, policy, result)
            result.outcomes.append(outcome)

        result.execution_time_ms = (time.time() - start_time) * 1000
        logger.info(
            f"Reconciliation pass finished: {len(result.created_tables)} created, "
            f"{len(result.dropped_tables)} recreated, {len(result.emptied_tables)} emptied, "
            f"{len(result.preserved_tables)} preserved, {len(result.errors)} errors "
            f"({result.execution_time_ms:.1f}ms)"
        )
        return result

    async def _apply(
        self,
        statement: Statement,
        live: Set[str],
        keep: Set[str],
        policy: PreservationPolicy,
        result: ReconciliationResult,
    ) -> StatementOutcome:
        """Decide on and execute one statement."""
        key = statement.table_key
        table = statement.display_table

        if key is not None and key in result.failed_tables:
            logger.warning(
                f"Skipping statement on {table}: an earlier statement on this table failed"
            )
            return StatementOutcome(statement, TableAction.BLOCKED)

        raw_name = statement.unrecognized_create
        if raw_name is not None:
            logger.error(
                f"Not creating table {raw_name}: only plain names of letters "
                f"and underscores are supported"
            )
            outcome = StatementOutcome(statement, TableAction.REJECTED)
            outcome.error = StatementExecutionError(
                raw_name,
                statement.text,
                context="unsupported table name",
            )
            result.errors.append(outcome.error)
            result.failed_tables.add(normalize_table_name(raw_name))
            return outcome

        action = decide_action(statement, live, policy, keep)
        outcome = StatementOutcome(statement, action)
        sql = adapt_statement(statement.text, self.engine_family)

        if action == TableAction.PRESERVE:
            if policy != PreservationPolicy.EMPTY:
                logger.info(
                    f"Found existing table {table}, preserved. "
                    f"Use overwrite=drop or overwrite=empty to replace it."
                )
            result.preserved_tables.append(table)

        elif action == TableAction.EMPTY:
            logger.info(f"Found existing table {table}, emptying...")
            change = await self._run(outcome, result, empty_table_change(table), "emptying table")
            if change.executed or self.operations.dry_run:
                result.emptied_tables.append(table)

        elif action == TableAction.RECREATE:
            logger.info(f"Found existing table {table}, dropping and recreating...")
            change = await self._run(outcome, result, drop_table_change(table), "dropping table")
            if change.has_error:
                return outcome
            live.discard(key)
            result.dropped_tables.append(table)
            await self._create(outcome, result, live, sql)

        elif action == TableAction.CREATE:
            await self._create(outcome, result, live, sql)

        elif action == TableAction.EXECUTE:
            change_type = (
                ChangeType.INSERT_ROWS
                if statement.kind == StatementKind.INSERT
                else ChangeType.EXECUTE
            )
            change = SchemaChange(
                change_type=change_type,
                table=statement.target_table,
                sql=sql,
                description=f"{change_type.value} on {table}",
            )
            await self._run(outcome, result, change, "executing statement", block=False)

        else:
            logger.debug(f"Not altering kept table {table}")

        return outcome

    async def _create(
        self,
        outcome: StatementOutcome,
        result: ReconciliationResult,
        live: Set[str],
        sql: str,
    ) -> None:
        statement = outcome.statement
        change = SchemaChange(
            change_type=ChangeType.CREATE_TABLE,
            table=statement.target_table,
            sql=sql,
            description=f"Create table {statement.target_table}",
        )
        change = await self._run(outcome, result, change, "creating table")
        if not change.has_error:
            live.add(statement.table_key)
            result.created_tables.append(statement.target_table)

    async def _run(
        self,
        outcome: StatementOutcome,
        result: ReconciliationResult,
        change: SchemaChange,
        context: str,
        block: bool = True,
    ) -> SchemaChange:
        """Execute a change; on failure record the error and optionally block the table."""
        change = await self.operations.execute_change(change)
        outcome.changes.append(change)

        if change.has_error:
            error = execution_error(change, context)
            outcome.error = error
            result.errors.append(error)
            if block and outcome.statement.table_key is not None:
                result.failed_tables.add(outcome.statement.table_key)

        return change
