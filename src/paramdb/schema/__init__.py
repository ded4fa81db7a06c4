"""
Schema management package for paramdb.

This package provides:
- Schema script splitting and statement classification
- SQL dialect adaptation
- The reconciliation engine and superfluous table pruner
- The metadata ledger
"""

from .script import Statement, StatementKind, parse_script, load_script
from .dialect import EngineFamily, Dialect, adapt_statement, detect_engine_family, get_dialect
from .operations import SchemaOperations, SchemaChange, ChangeType, OperationMode
from .reconciler import (
    SchemaReconciler,
    ReconciliationResult,
    PreservationPolicy,
    TableAction,
)
from .pruner import TablePruner, PruneResult
from .metadata import MetadataLedger, LedgerRecord

__all__ = [
    "Statement",
    "StatementKind",
    "parse_script",
    "load_script",
    "EngineFamily",
    "Dialect",
    "adapt_statement",
    "detect_engine_family",
    "get_dialect",
    "SchemaOperations",
    "SchemaChange",
    "ChangeType",
    "OperationMode",
    "SchemaReconciler",
    "ReconciliationResult",
    "PreservationPolicy",
    "TableAction",
    "TablePruner",
    "PruneResult",
    "MetadataLedger",
    "LedgerRecord",
]
