"""
Unit tests for the paramdb configuration system.
"""

import pytest
import yaml

from paramdb.config import (
    BASE_SCHEMA_VERSION,
    DatabaseConfig,
    DatabaseConnection,
    ParamDBConfig,
    ReconcileConfig,
    check_target_version,
)
from paramdb.exceptions import ConfigurationError


class TestReconcileConfig:
    """Test reconciliation options."""

    def test_defaults(self):
        config = ReconcileConfig()

        assert config.overwrite == "none"
        assert config.keep_tables == []
        assert config.target_version is None
        assert config.schema_file is None
        assert config.dry_run is False

    @pytest.mark.parametrize("value,expected", [(None, "none"), ("", "none"), ("DROP", "drop")])
    def test_overwrite_normalized(self, value, expected):
        assert ReconcileConfig(overwrite=value).overwrite == expected

    def test_invalid_overwrite(self):
        with pytest.raises(ValueError):
            ReconcileConfig(overwrite="truncate")

    def test_keep_tables_stripped(self):
        config = ReconcileConfig(keep_tables=[" soils ", "", "  ", "horizons"])

        assert config.keep_tables == ["soils", "horizons"]


class TestDatabaseConnection:
    """Test connection settings."""

    def test_to_connection_config(self):
        connection = DatabaseConnection(
            host="db", database="params", user="u", password="p", schema_name="hydro"
        )

        config = connection.to_connection_config()

        assert config.host == "db"
        assert config.port == 5432
        assert config.schema_name == "hydro"
        assert config.ssl_mode == "prefer"

    def test_engine_override(self):
        connection = DatabaseConnection(
            host="db", database="params", user="u", password="p", engine="access"
        )
        assert connection.engine == "access"

        with pytest.raises(ValueError):
            DatabaseConnection(host="db", database="params", user="u", password="p", engine="oracle")


class TestParamDBConfig:
    """Test the root configuration."""

    def test_from_yaml(self, config_file):
        config = ParamDBConfig.from_yaml(config_file)

        assert config.service_name == "paramdb"
        assert config.databases[0].connection.password == "from-env"
        assert config.reconcile.keep_tables == ["horizons"]
        assert config.bookkeeping.ledger_table == "meta_info"
        assert config.bookkeeping.version_table == "db_version"

    def test_from_yaml_missing_file(self, tmp_path):
        with pytest.raises(ConfigurationError, match="not found"):
            ParamDBConfig.from_yaml(tmp_path / "missing.yaml")

    def test_from_yaml_invalid_yaml(self, tmp_path):
        path = tmp_path / "bad.yaml"
        path.write_text("databases: [unclosed", encoding="utf-8")

        with pytest.raises(ConfigurationError, match="Invalid YAML"):
            ParamDBConfig.from_yaml(path)

    def test_from_yaml_invalid_values(self, tmp_path):
        path = tmp_path / "bad.yaml"
        path.write_text(yaml.safe_dump({"reconcile": {"overwrite": "wipe"}}), encoding="utf-8")

        with pytest.raises(ConfigurationError, match="Invalid configuration"):
            ParamDBConfig.from_yaml(path)

    def test_yaml_round_trip(self, tmp_path, paramdb_config):
        path = tmp_path / "out.yaml"

        paramdb_config.to_yaml(path)
        loaded = ParamDBConfig.from_yaml(path)

        assert loaded.databases[0].name == "hydro"
        assert loaded.reconcile == paramdb_config.reconcile

    def test_get_database(self, paramdb_config):
        assert paramdb_config.get_database().name == "hydro"
        assert paramdb_config.get_database("hydro").connection.database == "hydro_params"

        with pytest.raises(ConfigurationError, match="not found"):
            paramdb_config.get_database("other")

    def test_get_database_ambiguous(self, database_config):
        second = DatabaseConfig(name="second", connection=database_config.connection)
        config = ParamDBConfig(databases=[database_config, second])

        with pytest.raises(ConfigurationError, match="Several databases"):
            config.get_database()
        assert config.get_database("second").name == "second"

    def test_get_database_none_configured(self):
        with pytest.raises(ConfigurationError, match="No databases configured"):
            ParamDBConfig().get_database()

    def test_validate_config_ok(self, paramdb_config):
        paramdb_config.validate_config()

    def test_validate_duplicate_names(self, database_config):
        config = ParamDBConfig(databases=[database_config, database_config])

        with pytest.raises(ConfigurationError, match="Duplicate"):
            config.validate_config()

    def test_validate_target_version(self, database_config):
        config = ParamDBConfig(
            databases=[database_config], reconcile=ReconcileConfig(target_version=10)
        )

        with pytest.raises(ConfigurationError, match="Target version 10"):
            config.validate_config()

    def test_validate_upgrader_reference(self, database_config):
        config = ParamDBConfig(
            databases=[database_config], upgrade={"upgrader": "no_colon_here"}
        )

        with pytest.raises(ConfigurationError, match="package.module:attribute"):
            config.validate_config()


class TestCheckTargetVersion:
    """Test target version validation."""

    @pytest.mark.parametrize("version", [None, BASE_SCHEMA_VERSION, 25])
    def test_accepted(self, version):
        check_target_version(version)

    def test_rejected(self):
        with pytest.raises(ConfigurationError) as exc_info:
            check_target_version(BASE_SCHEMA_VERSION - 1)

        assert exc_info.value.details == {"target_version": BASE_SCHEMA_VERSION - 1}
