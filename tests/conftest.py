"""
Pytest configuration and shared fixtures for paramdb tests.

The FakeDatabase below understands the handful of statement shapes
paramdb issues (CREATE/DROP/DELETE/INSERT, the information_schema
lookups and the MAX()/COUNT() reads), which is enough to run whole
creation passes in memory.
"""

import re
from contextlib import asynccontextmanager
from typing import Any, Dict, List, Optional
from unittest.mock import patch

import pytest
import yaml

from paramdb.config import DatabaseConfig, DatabaseConnection, ParamDBConfig


# ============================================================================
# In-memory database
# ============================================================================

class FakeDatabaseError(Exception):
    """Raised by the fake database for failing statements."""


_IDENT = r"""[`"\[]?(\w+)[`"\]]?"""
_CREATE = re.compile(r"^\s*CREATE\s+TABLE\s+(?:IF\s+NOT\s+EXISTS\s+)?" + _IDENT, re.I)
_DROP = re.compile(r"^\s*DROP\s+TABLE\s+" + _IDENT, re.I)
_DELETE = re.compile(r"^\s*DELETE\s+FROM\s+" + _IDENT, re.I)
_INSERT = re.compile(
    r"^\s*INSERT\s+INTO\s+" + _IDENT + r"\s*\(([^)]*)\)\s*VALUES\s*\((.*)\)\s*$", re.I | re.S
)
_MAX = re.compile(r"SELECT\s+MAX\((\w+)\)\s+FROM\s+" + _IDENT, re.I)
_COUNT = re.compile(r"SELECT\s+COUNT\(\*\)\s+FROM\s+" + _IDENT, re.I)
_SELECT_FROM = re.compile(r"\bFROM\s+" + _IDENT + r"\s+ORDER\s+BY\s+(\w+)\s+DESC", re.I)
_LIMIT = re.compile(r"\bLIMIT\s+(\d+)", re.I)


class FakeDatabase:
    """Tables are stored under their case-folded names, as PostgreSQL does."""

    def __init__(self, banner: str = "PostgreSQL 16.2 on x86_64-pc-linux-gnu"):
        self.banner = banner
        self.tables: Dict[str, List[Dict[str, Any]]] = {}
        self.executed: List[str] = []
        self.fail_on: List[str] = []
        self.fail_queries: List[str] = []

    def add_table(self, name: str, rows: Optional[List[Dict[str, Any]]] = None) -> None:
        self.tables[name.lower()] = list(rows or [])

    def table_names(self) -> List[str]:
        return sorted(self.tables)

    def _check(self, sql: str, patterns: List[str]) -> None:
        for pattern in patterns:
            if pattern in sql:
                raise FakeDatabaseError(f"injected failure for {pattern!r}")

    def _table(self, name: str) -> List[Dict[str, Any]]:
        key = name.lower()
        if key not in self.tables:
            raise FakeDatabaseError(f'relation "{key}" does not exist')
        return self.tables[key]

    def execute(self, sql: str, *args: Any) -> str:
        self.executed.append(sql)
        self._check(sql, self.fail_on)

        match = _CREATE.match(sql)
        if match:
            key = match.group(1).lower()
            if key in self.tables:
                raise FakeDatabaseError(f'relation "{key}" already exists')
            self.tables[key] = []
            return "CREATE TABLE"

        match = _DROP.match(sql)
        if match:
            self._table(match.group(1))
            del self.tables[match.group(1).lower()]
            return "DROP TABLE"

        match = _DELETE.match(sql)
        if match:
            rows = self._table(match.group(1))
            count = len(rows)
            rows.clear()
            return f"DELETE {count}"

        match = _INSERT.match(sql)
        if match:
            rows = self._table(match.group(1))
            columns = [c.strip() for c in match.group(2).split(",")]
            if args:
                values = list(args)
            else:
                values = [_literal(v) for v in match.group(3).split(",")]
            rows.append(dict(zip(columns, values)))
            return "INSERT 0 1"

        return "OK"

    def fetch(self, query: str, *args: Any) -> List[Dict[str, Any]]:
        self._check(query, self.fail_queries)

        if "information_schema.tables" in query:
            return [{"table_name": name} for name in self.table_names()]

        match = _SELECT_FROM.search(query)
        if match:
            rows = sorted(
                self._table(match.group(1)), key=lambda r: r[match.group(2)], reverse=True
            )
            limit = _LIMIT.search(query)
            return rows[: int(limit.group(1))] if limit else rows

        raise FakeDatabaseError(f"unsupported query: {query}")

    def fetchval(self, query: str, *args: Any) -> Any:
        self._check(query, self.fail_queries)

        if "SELECT version()" in query:
            return self.banner

        if "SELECT EXISTS" in query:
            return args[1].lower() in self.tables

        match = _MAX.search(query)
        if match:
            values = [r[match.group(1)] for r in self._table(match.group(2))]
            return max(values) if values else None

        match = _COUNT.search(query)
        if match:
            return len(self._table(match.group(1)))

        raise FakeDatabaseError(f"unsupported query: {query}")


def _literal(value: str) -> Any:
    value = value.strip()
    if value.startswith("'") and value.endswith("'"):
        return value[1:-1]
    try:
        return int(value)
    except ValueError:
        return value


class FakeConnection:
    def __init__(self, db: FakeDatabase):
        self.db = db

    async def execute(self, sql: str, *args: Any) -> str:
        return self.db.execute(sql, *args)

    async def fetch(self, query: str, *args: Any):
        return self.db.fetch(query, *args)

    async def fetchval(self, query: str, *args: Any, column: int = 0):
        return self.db.fetchval(query, *args)


class FakePool:
    """Stands in for ConnectionPool, backed by a FakeDatabase."""

    def __init__(self, db: FakeDatabase):
        self.db = db
        self.closed = False

    @asynccontextmanager
    async def acquire(self):
        yield FakeConnection(self.db)

    async def fetch(self, query: str, *args: Any):
        return self.db.fetch(query, *args)

    async def fetchval(self, query: str, *args: Any, column: int = 0):
        return self.db.fetchval(query, *args)

    async def server_version(self) -> str:
        return self.db.fetchval("SELECT version()")

    async def close(self) -> None:
        self.closed = True

    @property
    def is_initialized(self) -> bool:
        return not self.closed


# ============================================================================
# Fixtures
# ============================================================================

@pytest.fixture
def fake_db() -> FakeDatabase:
    """Empty PostgreSQL-flavoured in-memory database."""
    return FakeDatabase()


@pytest.fixture
def fake_pool(fake_db) -> FakePool:
    return FakePool(fake_db)


@pytest.fixture
def patched_open_pool(fake_pool):
    """Route paramdb.creator.open_pool to the fake pool."""
    opened = []

    @asynccontextmanager
    async def fake_open_pool(config):
        opened.append(config)
        try:
            yield fake_pool
        finally:
            await fake_pool.close()

    with patch("paramdb.creator.open_pool", side_effect=fake_open_pool) as mock_open:
        mock_open.opened = opened
        yield mock_open


@pytest.fixture
def database_config() -> DatabaseConfig:
    return DatabaseConfig(
        name="hydro",
        connection=DatabaseConnection(
            host="localhost",
            port=5432,
            database="hydro_params",
            user="postgres",
            password="secret",
        ),
    )


@pytest.fixture
def paramdb_config(database_config) -> ParamDBConfig:
    return ParamDBConfig(databases=[database_config])


@pytest.fixture
def sample_config_data() -> Dict[str, Any]:
    return {
        "service_name": "paramdb",
        "databases": [
            {
                "name": "hydro",
                "connection": {
                    "host": "localhost",
                    "port": 5432,
                    "database": "hydro_params",
                    "user": "postgres",
                    "password": "${PARAMDB_TEST_PASSWORD}",
                },
            }
        ],
        "reconcile": {
            "overwrite": "none",
            "keep_tables": ["horizons"],
        },
        "logging": {"level": "INFO"},
    }


@pytest.fixture
def config_file(tmp_path, sample_config_data, monkeypatch):
    """YAML configuration file on disk."""
    monkeypatch.setenv("PARAMDB_TEST_PASSWORD", "from-env")
    path = tmp_path / "paramdb-config.yaml"
    path.write_text(yaml.safe_dump(sample_config_data), encoding="utf-8")
    return path


@pytest.fixture
def small_script() -> str:
    return (
        "-- two tables\n"
        "CREATE TABLE a (id INTEGER);\n"
        "CREATE TABLE b (id INTEGER, value DOUBLE);\n"
    )
