"""
Unit tests for loading the version upgrade routine.
"""

import textwrap

import pytest

from paramdb.exceptions import ConfigurationError
from paramdb.upgrade import VersionUpgrader, load_upgrader


UPGRADER_MODULE = textwrap.dedent(
    """
    from paramdb.upgrade import VersionUpgrader


    class ChainUpgrader(VersionUpgrader):
        async def upgrade(self, database, to_version, keep_tables=None):
            return None


    chain = ChainUpgrader()
    not_an_upgrader = object()
    """
)


@pytest.fixture
def upgrader_module(tmp_path, monkeypatch):
    """Importable module providing upgraders."""
    (tmp_path / "hydro_upgrades.py").write_text(UPGRADER_MODULE, encoding="utf-8")
    monkeypatch.syspath_prepend(str(tmp_path))
    return "hydro_upgrades"


class TestVersionUpgrader:
    """Test the abstract upgrader interface."""

    def test_cannot_instantiate_abstract(self):
        with pytest.raises(TypeError):
            VersionUpgrader()


class TestLoadUpgrader:
    """Test load_upgrader."""

    def test_load_class(self, upgrader_module):
        upgrader = load_upgrader(f"{upgrader_module}:ChainUpgrader")

        assert isinstance(upgrader, VersionUpgrader)
        assert type(upgrader).__name__ == "ChainUpgrader"

    def test_load_instance(self, upgrader_module):
        upgrader = load_upgrader(f"{upgrader_module}:chain")

        assert isinstance(upgrader, VersionUpgrader)

    @pytest.mark.parametrize("reference", ["no_colon", ":attr", "module:"])
    def test_malformed_reference(self, reference):
        with pytest.raises(ConfigurationError, match="package.module:attribute"):
            load_upgrader(reference)

    def test_missing_module(self):
        with pytest.raises(ConfigurationError, match="Cannot import upgrader module"):
            load_upgrader("paramdb_no_such_module:Upgrader")

    def test_missing_attribute(self, upgrader_module):
        with pytest.raises(ConfigurationError, match="has no attribute 'Missing'"):
            load_upgrader(f"{upgrader_module}:Missing")

    def test_wrong_type(self, upgrader_module):
        with pytest.raises(ConfigurationError, match="is not a VersionUpgrader"):
            load_upgrader(f"{upgrader_module}:not_an_upgrader")
