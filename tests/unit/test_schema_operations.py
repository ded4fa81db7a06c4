"""
Unit tests for schema statement execution.
"""

import pytest
from unittest.mock import AsyncMock, MagicMock

from paramdb.database.connection import ConnectionPool
from paramdb.exceptions import StatementExecutionError
from paramdb.schema.operations import (
    ChangeType,
    OperationMode,
    SchemaChange,
    SchemaOperations,
    drop_table_change,
    empty_table_change,
    execution_error,
)


class TestChangeType:
    """Test change type enumeration."""

    def test_change_type_values(self):
        """Test all change type values are defined."""
        expected_types = {
            "create_table",
            "drop_table",
            "empty_table",
            "insert_rows",
            "execute",
            "append_ledger",
        }

        assert {ct.value for ct in ChangeType} == expected_types


class TestOperationMode:
    """Test operation mode enumeration."""

    def test_operation_mode_values(self):
        assert OperationMode.EXECUTE.value == "execute"
        assert OperationMode.DRY_RUN.value == "dry_run"


class TestSchemaChange:
    """Test schema change dataclass."""

    def test_schema_change_creation(self):
        change = SchemaChange(
            change_type=ChangeType.CREATE_TABLE,
            table="soils",
            sql="CREATE TABLE soils (pid INTEGER)",
        )

        assert change.executed is False
        assert change.has_error is False
        assert change.change_id == "create_table_soils"

    def test_change_without_table(self):
        change = SchemaChange(ChangeType.EXECUTE, None, "SET sql_mode='ANSI'")

        assert change.change_id == "execute_none"

    def test_helpers(self):
        assert drop_table_change("soils").sql == "DROP TABLE soils"
        assert empty_table_change("soils").sql == "DELETE FROM soils"
        assert empty_table_change("soils").change_type == ChangeType.EMPTY_TABLE

    def test_execution_error(self):
        change = drop_table_change("soils")
        change.error = "boom"
        change.exception = RuntimeError("boom")

        error = execution_error(change, "dropping table")

        assert isinstance(error, StatementExecutionError)
        assert error.table_name == "soils"
        assert error.statement == "DROP TABLE soils"
        assert error.context == "dropping table"
        assert "soils" in str(error)
        assert "caused by: boom" in str(error)


class TestSchemaOperations:
    """Test cases for SchemaOperations."""

    @pytest.fixture
    def mock_conn(self):
        return AsyncMock()

    @pytest.fixture
    def mock_pool(self, mock_conn):
        """Create mock connection pool."""
        pool = MagicMock(spec=ConnectionPool)
        pool.acquire.return_value.__aenter__ = AsyncMock(return_value=mock_conn)
        pool.acquire.return_value.__aexit__ = AsyncMock(return_value=False)
        return pool

    @pytest.mark.asyncio
    async def test_execute_change_success(self, mock_pool, mock_conn):
        operations = SchemaOperations(mock_pool)
        change = SchemaChange(ChangeType.CREATE_TABLE, "soils", "CREATE TABLE soils (pid INT)")

        result = await operations.execute_change(change)

        assert result.executed
        assert not result.has_error
        assert result.execution_time_ms is not None
        mock_conn.execute.assert_awaited_once_with("CREATE TABLE soils (pid INT)")

    @pytest.mark.asyncio
    async def test_execute_change_passes_params(self, mock_pool, mock_conn):
        operations = SchemaOperations(mock_pool)
        change = SchemaChange(
            ChangeType.APPEND_LEDGER, "meta_info", "INSERT ... VALUES ($1, $2)", params=(1, "x")
        )

        await operations.execute_change(change)

        mock_conn.execute.assert_awaited_once_with("INSERT ... VALUES ($1, $2)", 1, "x")

    @pytest.mark.asyncio
    async def test_execute_change_failure_recorded(self, mock_pool, mock_conn):
        """A failing statement is recorded, not raised."""
        mock_conn.execute.side_effect = RuntimeError("relation exists")
        operations = SchemaOperations(mock_pool)

        result = await operations.execute_change(drop_table_change("soils"))

        assert not result.executed
        assert result.error == "relation exists"
        assert isinstance(result.exception, RuntimeError)

    @pytest.mark.asyncio
    async def test_dry_run_does_not_execute(self, mock_pool, mock_conn):
        operations = SchemaOperations(mock_pool, OperationMode.DRY_RUN)

        result = await operations.execute_change(drop_table_change("soils"))

        assert operations.dry_run
        assert not result.executed
        assert not result.has_error
        mock_pool.acquire.assert_not_called()

    @pytest.mark.asyncio
    async def test_changes_logged_for_summary(self, mock_pool, mock_conn):
        mock_conn.execute.side_effect = [RuntimeError("boom"), "DROP TABLE"]
        operations = SchemaOperations(mock_pool)

        await operations.execute_change(drop_table_change("a"))
        await operations.execute_change(drop_table_change("b"))

        assert [c.change_id for c in operations.changes] == ["drop_table_a", "drop_table_b"]
        assert operations.changes[0].has_error
        assert operations.changes[1].executed

        summary = SchemaOperations.get_execution_summary(operations.changes)
        assert summary["total_operations"] == 2
        assert summary["successful"] == 1
        assert summary["failed"] == 1
        assert summary["failed_operations"][0]["change_id"] == "drop_table_a"
