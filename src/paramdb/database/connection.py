"""
Database connection management for paramdb.

Provides a small async PostgreSQL connection pool with a scoped
lifecycle. A reconciliation run uses a single logical connection and
executes every statement outside an explicit transaction, so each
statement commits on its own.
"""

import asyncio
import logging
from contextlib import asynccontextmanager
from typing import Dict, Optional, Any, AsyncIterator, List

import asyncpg
from pydantic import BaseModel, Field, field_validator

from ..exceptions import DatabaseConnectionError


logger = logging.getLogger(__name__)


class ConnectionConfig(BaseModel):
    """Database connection configuration."""

    host: str = Field(..., description="Database host")
    port: int = Field(5432, description="Database port")
    database: str = Field(..., description="Database name")
    user: str = Field(..., description="Database user")
    password: str = Field(..., description="Database password")
    schema_name: str = Field("public", description="Schema holding the parameter tables")

    # One connection is enough: statements run strictly in sequence
    min_size: int = Field(1, description="Minimum connections in pool")
    max_size: int = Field(1, description="Maximum connections in pool")

    connect_timeout: float = Field(30.0, description="Connection timeout in seconds")
    command_timeout: float = Field(60.0, description="Command timeout in seconds")
    server_settings: Dict[str, str] = Field(
        default_factory=lambda: {"application_name": "paramdb"},
        description="PostgreSQL server settings"
    )

    ssl_mode: Optional[str] = Field(None, description="SSL mode")

    @field_validator('database')
    @classmethod
    def validate_database(cls, v):
        if not v or not v.strip():
            raise ValueError("Database name is required")
        return v

    def to_connection_kwargs(self) -> Dict[str, Any]:
        """Convert to asyncpg connection kwargs."""
        server_settings = dict(self.server_settings)
        server_settings.setdefault("search_path", self.schema_name)

        kwargs = {
            "host": self.host,
            "port": self.port,
            "database": self.database,
            "user": self.user,
            "password": self.password,
            "timeout": self.connect_timeout,
            "command_timeout": self.command_timeout,
            "server_settings": server_settings,
        }
        if self.ssl_mode:
            kwargs["ssl"] = self.ssl_mode

        return kwargs

    @property
    def display_name(self) -> str:
        """Connection target without credentials."""
        return f"{self.host}:{self.port}/{self.database}"


class ConnectionPool:
    """Async PostgreSQL connection pool wrapper."""

    def __init__(self, config: ConnectionConfig):
        self.config = config
        self._pool: Optional[asyncpg.Pool] = None
        self._lock = asyncio.Lock()

    async def initialize(self) -> None:
        """Initialize the connection pool."""
        async with self._lock:
            if self._pool is not None:
                return

            try:
                logger.info(f"Connecting to {self.config.display_name}")

                self._pool = await asyncpg.create_pool(
                    **self.config.to_connection_kwargs(),
                    min_size=self.config.min_size,
                    max_size=self.config.max_size,
                )

                logger.info("Connection established")

            except Exception as e:
                logger.error(f"Failed to connect to {self.config.display_name}: {e}")
                raise DatabaseConnectionError(
                    f"Failed to connect to {self.config.display_name}", cause=e
                ) from e

    async def close(self) -> None:
        """Close the connection pool."""
        async with self._lock:
            if self._pool is not None:
                logger.info("Closing connection")
                pool, self._pool = self._pool, None
                await pool.close()

    @asynccontextmanager
    async def acquire(self) -> AsyncIterator[asyncpg.Connection]:
        """Acquire a connection from the pool."""
        if self._pool is None:
            raise DatabaseConnectionError("Pool is not connected")

        async with self._pool.acquire() as connection:
            yield connection

    async def fetch(self, query: str, *args) -> List[asyncpg.Record]:
        """Fetch all results from a query."""
        async with self.acquire() as conn:
            return await conn.fetch(query, *args)

    async def fetchval(self, query: str, *args, column: int = 0) -> Any:
        """Fetch a single value from a query."""
        async with self.acquire() as conn:
            return await conn.fetchval(query, *args, column=column)

    async def server_version(self) -> str:
        """Return the server's version banner."""
        return await self.fetchval("SELECT version()")

    @property
    def is_initialized(self) -> bool:
        """Check if pool is initialized."""
        return self._pool is not None


@asynccontextmanager
async def open_pool(config: ConnectionConfig) -> AsyncIterator[ConnectionPool]:
    """
    Open a connection pool for the duration of a block.

    The pool is always released on exit. Failures while closing are
    logged and suppressed so they never mask the outcome of the block.
    """
    pool = ConnectionPool(config)
    await pool.initialize()
    try:
        yield pool
    finally:
        try:
            await pool.close()
        except Exception as e:
            logger.debug(f"Ignoring error while closing connection: {e}")
