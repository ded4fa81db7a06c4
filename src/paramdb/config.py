"""
Configuration system for paramdb using Pydantic.
"""

import os
from pathlib import Path
from typing import Any, List, Literal, Optional, Union

import yaml
from pydantic import BaseModel, Field, ValidationError, field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict

from .database.connection import ConnectionConfig
from .exceptions import ConfigurationError


# Oldest schema version the base script produces.
BASE_SCHEMA_VERSION = 19


class DatabaseConnection(BaseModel):
    """Database connection configuration."""

    host: str = Field(..., description="Database host")
    port: int = Field(5432, description="Database port")
    database: str = Field(..., description="Database name")
    user: str = Field(..., description="Database user")
    password: str = Field(..., description="Database password")
    ssl_mode: str = Field("prefer", description="SSL mode")
    connect_timeout: int = Field(30, description="Connection timeout in seconds")
    command_timeout: int = Field(60, description="Command timeout in seconds")
    schema_name: str = Field("public", description="Schema holding the parameter tables")
    engine: Optional[Literal["postgresql", "mariadb", "sqlite", "access", "generic"]] = Field(
        None,
        description=(
            "Engine family for servers the version banner does not identify; "
            "the connection itself always uses the PostgreSQL protocol"
        ),
    )

    def to_connection_config(self) -> ConnectionConfig:
        return ConnectionConfig(
            host=self.host,
            port=self.port,
            database=self.database,
            user=self.user,
            password=self.password,
            schema_name=self.schema_name,
            ssl_mode=self.ssl_mode,
            connect_timeout=self.connect_timeout,
            command_timeout=self.command_timeout,
        )


class DatabaseConfig(BaseModel):
    """Configuration for a single database."""

    name: str = Field(..., description="Database configuration name")
    connection: DatabaseConnection = Field(..., description="Connection details")


class ReconcileConfig(BaseModel):
    """How the schema script is applied."""

    overwrite: Literal["none", "drop", "empty"] = Field(
        "none", description="Policy for existing tables that are not kept"
    )
    keep_tables: List[str] = Field(
        default_factory=list, description="Tables that are never touched"
    )
    target_version: Optional[int] = Field(
        None, description="Schema version to reach; latest when unset"
    )
    schema_file: Optional[str] = Field(
        None, description="Schema script; the packaged base script when unset"
    )
    dry_run: bool = Field(False, description="Log statements without executing them")

    @field_validator("overwrite", mode="before")
    @classmethod
    def normalize_overwrite(cls, v: Any) -> Any:
        if v is None or v == "":
            return "none"
        return str(v).lower()

    @field_validator("keep_tables")
    @classmethod
    def strip_keep_tables(cls, v: List[str]) -> List[str]:
        return [name.strip() for name in v if name and name.strip()]


class BookkeepingConfig(BaseModel):
    """Names of the ledger and version tables."""

    ledger_table: str = Field("meta_info", description="Append-only audit table")
    version_table: str = Field("db_version", description="Schema version table")
    actor: Optional[str] = Field(
        None, description="Label written to the ledger; derived from the version when unset"
    )


class UpgradeConfig(BaseModel):
    """Version upgrade routine."""

    upgrader: Optional[str] = Field(
        None, description="Import path 'package.module:attribute' of the upgrade routine"
    )


class LoggingConfig(BaseModel):
    """Logging configuration."""

    level: Literal["DEBUG", "INFO", "WARNING", "ERROR"] = Field(
        "INFO", description="Log level"
    )
    format: str = Field(
        "%(asctime)s - %(name)s - %(levelname)s - %(message)s",
        description="Log format",
    )
    file: Optional[str] = Field(None, description="Log file path")
    max_size: int = Field(10485760, description="Max log file size in bytes")  # 10MB
    backup_count: int = Field(5, description="Number of backup log files")


class ParamDBConfig(BaseSettings):
    """Main paramdb configuration."""

    service_name: str = Field("paramdb", description="Service name")
    debug: bool = Field(False, description="Enable debug mode")

    databases: List[DatabaseConfig] = Field(
        default_factory=list, description="Database configurations"
    )
    reconcile: ReconcileConfig = Field(
        default_factory=ReconcileConfig, description="Reconciliation settings"
    )
    bookkeeping: BookkeepingConfig = Field(
        default_factory=BookkeepingConfig, description="Ledger and version tables"
    )
    upgrade: UpgradeConfig = Field(
        default_factory=UpgradeConfig, description="Version upgrade routine"
    )

    logging: LoggingConfig = Field(
        default_factory=LoggingConfig, description="Logging configuration"
    )

    model_config = SettingsConfigDict(
        env_file=".env",
        env_prefix="PARAMDB_",
        case_sensitive=False,
        extra="ignore"
    )

    @classmethod
    def from_yaml(cls, path: Union[str, Path]) -> "ParamDBConfig":
        """Load configuration from a YAML file."""
        try:
            with open(path, "r", encoding="utf-8") as f:
                data = yaml.safe_load(f) or {}

            # Expand environment variables in the data
            data = cls._expand_env_vars(data)

            return cls(**data)
        except FileNotFoundError:
            raise ConfigurationError(f"Configuration file not found: {path}")
        except yaml.YAMLError as e:
            raise ConfigurationError(f"Invalid YAML in configuration file: {e}")
        except ValidationError as e:
            raise ConfigurationError(f"Invalid configuration: {e}")

    @classmethod
    def _expand_env_vars(cls, data: Any) -> Any:
        """Recursively expand environment variables in configuration data."""
        if isinstance(data, dict):
            return {k: cls._expand_env_vars(v) for k, v in data.items()}
        elif isinstance(data, list):
            return [cls._expand_env_vars(item) for item in data]
        elif isinstance(data, str):
            return os.path.expandvars(data)
        else:
            return data

    def get_database(self, name: Optional[str] = None) -> DatabaseConfig:
        """
        Get database configuration by name.

        Without a name the only configured database is returned.
        """
        if name is None:
            if len(self.databases) == 1:
                return self.databases[0]
            if not self.databases:
                raise ConfigurationError("No databases configured")
            raise ConfigurationError(
                "Several databases configured; choose one of "
                + ", ".join(db.name for db in self.databases)
            )

        for db in self.databases:
            if db.name == name:
                return db
        raise ConfigurationError(f"Database configuration '{name}' not found")

    def validate_config(self) -> None:
        """Validate the entire configuration for consistency."""
        names = [db.name for db in self.databases]
        duplicates = sorted({n for n in names if names.count(n) > 1})
        if duplicates:
            raise ConfigurationError(
                f"Duplicate database configuration names: {', '.join(duplicates)}"
            )

        check_target_version(self.reconcile.target_version)

        upgrader = self.upgrade.upgrader
        if upgrader is not None:
            module, _, attribute = upgrader.partition(":")
            if not module or not attribute:
                raise ConfigurationError(
                    f"Upgrader '{upgrader}' must look like 'package.module:attribute'"
                )

    def to_yaml(self, path: Union[str, Path]) -> None:
        """Save configuration to a YAML file."""
        with open(path, "w", encoding="utf-8") as f:
            yaml.dump(
                self.model_dump(exclude_none=True), f, default_flow_style=False, indent=2
            )


def check_target_version(target_version: Optional[int]) -> None:
    """Reject target versions older than the base schema."""
    if target_version is not None and target_version < BASE_SCHEMA_VERSION:
        raise ConfigurationError(
            f"Target version {target_version} is not possible; "
            f"the earliest version is {BASE_SCHEMA_VERSION}",
            details={"target_version": target_version},
        )
