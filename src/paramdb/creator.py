"""
Parameter database creation service for paramdb.

Drives one invocation end to end: connect, inventory the live tables,
reconcile them with the schema script, prune superfluous tables, write
the ledger record, release the connection and finally hand off to the
version upgrade routine when a later version is requested.
"""

import logging
import time
import warnings
from dataclasses import dataclass, field
from enum import Enum
from typing import List, Optional, Type

from . import __version__
from .config import BASE_SCHEMA_VERSION, ParamDBConfig, ReconcileConfig, check_target_version
from .database.connection import ConnectionPool, open_pool
from .database.introspection import SchemaIntrospector
from .exceptions import (
    EngineRestrictionWarning,
    InconsistentPolicyWarning,
    ParamDBError,
    VersionUpgradeError,
)
from .schema.dialect import EngineFamily, get_dialect, resolve_engine_family
from .schema.metadata import LedgerRecord, MetadataLedger
from .schema.operations import (
    ChangeType,
    OperationMode,
    SchemaChange,
    SchemaOperations,
    execution_error,
)
from .schema.pruner import PruneResult, TablePruner
from .schema.reconciler import PreservationPolicy, ReconciliationResult, SchemaReconciler
from .schema.script import Statement, load_script, normalize_table_name, parse_script
from .upgrade import VersionUpgrader, load_upgrader

logger = logging.getLogger(__name__)


class CreationStage(str, Enum):
    """Stages of one invocation, in order."""

    CONFIGURED = "configured"
    CONNECTED = "connected"
    INVENTORIED = "inventoried"
    RECONCILED = "reconciled"
    PRUNED = "pruned"
    LEDGERED = "ledgered"
    HANDED_OFF = "handed_off"
    CLOSED = "closed"


class CreationStatus(str, Enum):
    """Overall outcome of an invocation."""

    SUCCESS = "success"
    PARTIAL = "partial"
    FAILED = "failed"


@dataclass
class CreationResult:
    """Everything that happened during one invocation."""

    database: str
    policy: PreservationPolicy
    dry_run: bool = False
    stages: List[CreationStage] = field(default_factory=lambda: [CreationStage.CONFIGURED])
    engine_family: Optional[EngineFamily] = None
    server_version: Optional[str] = None
    initial_version: Optional[int] = None
    final_version: Optional[int] = None
    keep_tables: List[str] = field(default_factory=list)
    reconciliation: Optional[ReconciliationResult] = None
    prune: Optional[PruneResult] = None
    ledger_record: Optional[LedgerRecord] = None
    upgrade_calls: List[Optional[int]] = field(default_factory=list)
    changes: List[SchemaChange] = field(default_factory=list)
    warnings: List[str] = field(default_factory=list)
    errors: List[ParamDBError] = field(default_factory=list)
    execution_time_ms: float = 0.0

    @property
    def stage(self) -> CreationStage:
        return self.stages[-1]

    def advance(self, stage: CreationStage) -> None:
        logger.debug(f"{self.database}: {self.stage.value} -> {stage.value}")
        self.stages.append(stage)

    @property
    def created_tables(self) -> List[str]:
        return list(self.reconciliation.created_tables) if self.reconciliation else []

    @property
    def pruned_tables(self) -> List[str]:
        return list(self.prune.pruned_tables) if self.prune else []

    @property
    def status(self) -> CreationStatus:
        if not self.errors:
            return CreationStatus.SUCCESS
        executed = bool(self.reconciliation and self.reconciliation.executed_statements)
        executed = executed or bool(self.pruned_tables) or self.ledger_record is not None
        return CreationStatus.PARTIAL if executed else CreationStatus.FAILED


class DatabaseCreator:
    """
    Creates or repairs a parameter database from the schema script.

    Configuration problems are raised before the database is contacted.
    Connection failures abort the run. Failures of single statements are
    collected on the CreationResult and the run carries on.
    """

    def __init__(
        self,
        config: ParamDBConfig,
        upgrader: Optional[VersionUpgrader] = None,
    ):
        self.config = config
        self._upgrader = upgrader

    @property
    def actor(self) -> str:
        return self.config.bookkeeping.actor or f"paramdb create, v. {__version__}"

    async def create(
        self,
        database: Optional[str] = None,
        options: Optional[ReconcileConfig] = None,
    ) -> CreationResult:
        """
        Run one creation/repair of a database.

        Args:
            database: Name of the database configuration (the only one when None)
            options: Reconciliation options; the configured ones when None

        Returns:
            CreationResult; check ``errors`` for per-statement failures
        """
        options = options or self.config.reconcile
        start_time = time.time()

        # Everything that can be rejected is checked before connecting
        check_target_version(options.target_version)
        db_config = self.config.get_database(database)
        policy = PreservationPolicy.parse(options.overwrite)
        statements = parse_script(load_script(options.schema_file))
        upgrader = self._resolve_upgrader()

        result = CreationResult(
            database=db_config.name, policy=policy, dry_run=options.dry_run
        )
        connection = db_config.connection

        logger.info(
            f"Creating parameter database '{db_config.name}' "
            f"(overwrite={policy.value}, keep={options.keep_tables or '-'}"
            f"{', dry run' if options.dry_run else ''})"
        )

        async with open_pool(connection.to_connection_config()) as pool:
            result.advance(CreationStage.CONNECTED)
            await self._run(pool, statements, policy, options, result)

        await self._hand_off(upgrader, options, result)

        result.advance(CreationStage.CLOSED)
        result.execution_time_ms = (time.time() - start_time) * 1000
        logger.info(
            f"Finished '{db_config.name}': {result.status.value} "
            f"({len(result.errors)} errors, {result.execution_time_ms:.1f}ms)"
        )
        return result

    async def _run(
        self,
        pool: ConnectionPool,
        statements: List[Statement],
        policy: PreservationPolicy,
        options: ReconcileConfig,
        result: CreationResult,
    ) -> None:
        connection = self.config.get_database(result.database).connection
        schema = connection.schema_name
        bookkeeping = self.config.bookkeeping

        result.server_version = await pool.server_version()
        family = resolve_engine_family(result.server_version, connection.engine)
        dialect = get_dialect(family)
        result.engine_family = family
        logger.info(f"Engine family: {family.value}")

        mode = OperationMode.DRY_RUN if options.dry_run else OperationMode.EXECUTE
        operations = SchemaOperations(pool, mode)
        result.changes = operations.changes

        for setup_sql in dialect.session_setup:
            change = await operations.execute_change(
                SchemaChange(ChangeType.EXECUTE, None, setup_sql, "Session setup")
            )
            if change.has_error:
                result.errors.append(execution_error(change, "session setup"))

        if dialect.drop_restricted and policy == PreservationPolicy.DROP:
            self._warn(
                result,
                EngineRestrictionWarning,
                f"overwrite=drop on a {family.value} database may fail because of "
                f"engine restrictions. Drop the tables manually and re-run without "
                f"this option if it does.",
            )

        ledger = MetadataLedger(
            pool,
            operations,
            ledger_table=bookkeeping.ledger_table,
            version_table=bookkeeping.version_table,
            schema=schema,
        )
        initial_version = await ledger.current_version()
        result.initial_version = (
            initial_version if initial_version is not None else BASE_SCHEMA_VERSION
        )

        live_tables = await SchemaIntrospector(pool, schema).list_tables()
        result.advance(CreationStage.INVENTORIED)

        result.keep_tables = self._effective_keep_tables(
            policy, options.keep_tables, live_tables, result
        )

        reconciler = SchemaReconciler(pool, operations, family, schema)
        reconciliation = await reconciler.reconcile(
            statements, policy, result.keep_tables, live_tables=live_tables
        )
        result.reconciliation = reconciliation
        result.errors.extend(reconciliation.errors)
        result.advance(CreationStage.RECONCILED)

        # Emptied tables keep their structure and count as established by this
        # pass; tables whose statements failed are left for the next run
        established = (
            reconciliation.created_tables
            + reconciliation.emptied_tables
            + sorted(reconciliation.failed_tables)
        )
        pruner = TablePruner(pool, operations, dialect, schema)
        result.prune = await pruner.prune(result.keep_tables, established)
        result.errors.extend(result.prune.errors)
        result.advance(CreationStage.PRUNED)

        write = await ledger.append(self.actor)
        result.final_version = write.version
        if write.error is not None:
            result.errors.append(write.error)
        else:
            result.ledger_record = write.record
        result.advance(CreationStage.LEDGERED)

    def _effective_keep_tables(
        self,
        policy: PreservationPolicy,
        keep_tables: List[str],
        live_tables: List[str],
        result: CreationResult,
    ) -> List[str]:
        """
        Work out the tables that must not be touched.

        Without an overwrite policy every existing table is kept. When
        emptying, the version and ledger tables are always kept.
        """
        bookkeeping = self.config.bookkeeping
        keep = list(dict.fromkeys(keep_tables))
        keys = {normalize_table_name(t) for t in keep}

        if policy == PreservationPolicy.DROP and normalize_table_name(bookkeeping.version_table) in keys:
            self._warn(
                result,
                InconsistentPolicyWarning,
                f"Dropping all tables but keeping '{bookkeeping.version_table}' will "
                f"likely corrupt the upgrade process. Do not keep this table or "
                f"reset it manually.",
            )

        extra: List[str] = []
        if policy == PreservationPolicy.EMPTY:
            extra = [bookkeeping.version_table, bookkeeping.ledger_table]
        elif policy == PreservationPolicy.NONE:
            extra = list(live_tables)

        for table in extra:
            if normalize_table_name(table) not in keys:
                keep.append(table)
                keys.add(normalize_table_name(table))

        return keep

    async def _hand_off(
        self,
        upgrader: Optional[VersionUpgrader],
        options: ReconcileConfig,
        result: CreationResult,
    ) -> None:
        """Invoke the upgrade routine when a version beyond the base is wanted."""
        target = options.target_version
        if target is not None and target <= BASE_SCHEMA_VERSION:
            return

        if options.dry_run:
            logger.info("DRY RUN: skipping version upgrade")
            return

        if upgrader is None:
            if target is not None:
                self._warn(
                    result,
                    UserWarning,
                    f"Version {target} requested but no upgrade routine is configured; "
                    f"the database stays at version {BASE_SCHEMA_VERSION}.",
                )
            else:
                logger.info("No upgrade routine configured; database left at base version")
            return

        calls = []
        if options.keep_tables and (result.initial_version or 0) > BASE_SCHEMA_VERSION:
            # Bring the rebuilt tables back to the version the kept tables belong to
            calls.append((result.initial_version, result.keep_tables))
        calls.append((target, None))

        for to_version, keep in calls:
            logger.info(f"Upgrading '{result.database}' to version {to_version or 'latest'}")
            result.upgrade_calls.append(to_version)
            try:
                await upgrader.upgrade(result.database, to_version, keep_tables=keep)
            except Exception as e:
                logger.error(f"Upgrade of '{result.database}' failed: {e}")
                result.errors.append(VersionUpgradeError(to_version, cause=e))
                return

        result.advance(CreationStage.HANDED_OFF)

    def _resolve_upgrader(self) -> Optional[VersionUpgrader]:
        if self._upgrader is None and self.config.upgrade.upgrader:
            self._upgrader = load_upgrader(self.config.upgrade.upgrader)
        return self._upgrader

    @staticmethod
    def _warn(result: CreationResult, category: Type[Warning], message: str) -> None:
        warnings.warn(message, category, stacklevel=3)
        logger.warning(message)
        result.warnings.append(message)


async def create_database(
    config: ParamDBConfig,
    database: Optional[str] = None,
    upgrader: Optional[VersionUpgrader] = None,
    **overrides,
) -> CreationResult:
    """
    Convenience wrapper around DatabaseCreator.

    Keyword overrides (overwrite, keep_tables, target_version,
    schema_file, dry_run) replace the configured reconcile options.
    """
    options = config.reconcile
    if overrides:
        options = ReconcileConfig(**{**config.reconcile.model_dump(), **overrides})
    return await DatabaseCreator(config, upgrader).create(database, options)
