"""
paramdb: create and repair the parameter database of a hydrological model.

paramdb applies a base schema script to a relational database, keeping,
emptying or recreating existing tables according to an overwrite policy,
removes tables that do not belong, records the run in an audit ledger and
hands off to an upgrade routine for later schema versions.
"""

__version__ = "0.1.0"
__author__ = "paramdb Contributors"

from .config import ParamDBConfig
from .exceptions import ParamDBError, ConfigurationError, DatabaseError, StatementExecutionError
from .creator import DatabaseCreator, CreationResult, create_database

__all__ = [
    "__version__",
    "ParamDBConfig",
    "ParamDBError",
    "ConfigurationError",
    "DatabaseError",
    "StatementExecutionError",
    "DatabaseCreator",
    "CreationResult",
    "create_database",
]
