"""
Exception and warning classes for paramdb.
"""

from typing import Any, Dict, Optional


class ParamDBError(Exception):
    """Base exception for all paramdb errors."""

    def __init__(
        self,
        message: str,
        details: Optional[Dict[str, Any]] = None,
        cause: Optional[Exception] = None,
    ) -> None:
        super().__init__(message)
        self.message = message
        self.details = details or {}
        self.cause = cause

    def __str__(self) -> str:
        result = self.message
        if self.details:
            details_str = ", ".join(f"{k}={v}" for k, v in self.details.items())
            result += f" [{details_str}]"
        if self.cause:
            result += f" (caused by: {self.cause})"
        return result


class ConfigurationError(ParamDBError):
    """Raised when there's an error in configuration."""

    pass


class DatabaseError(ParamDBError):
    """Raised when there's an error with database operations."""

    pass


class DatabaseConnectionError(DatabaseError):
    """Raised when a database connection cannot be established or used."""

    pass


class SchemaError(DatabaseError):
    """Raised when there's an error inspecting the database schema."""

    pass


class StatementExecutionError(DatabaseError):
    """A single statement failed. Collected on the run result, not raised."""

    def __init__(
        self,
        table_name: Optional[str],
        statement: str,
        cause: Optional[Exception] = None,
        context: Optional[str] = None,
    ) -> None:
        label = table_name or "(none)"
        message = f"Statement on table '{label}' failed"
        if context:
            message += f" ({context})"
        details = {"statement": _shorten(statement)}
        super().__init__(message, details, cause)
        self.table_name = table_name
        self.statement = statement
        self.context = context


class VersionUpgradeError(ParamDBError):
    """Raised when the version upgrade routine fails."""

    def __init__(
        self,
        to_version: Optional[int],
        cause: Optional[Exception] = None,
    ) -> None:
        target = "latest" if to_version is None else str(to_version)
        super().__init__(f"Upgrade to version {target} failed", cause=cause)
        self.to_version = to_version


class InconsistentPolicyWarning(UserWarning):
    """The overwrite policy and the keep-set contradict each other."""

    pass


class EngineRestrictionWarning(UserWarning):
    """The requested operation is known to be unreliable on this engine."""

    pass


def _shorten(statement: str, limit: int = 120) -> str:
    text = " ".join(statement.split())
    if len(text) > limit:
        return text[: limit - 3] + "..."
    return text
