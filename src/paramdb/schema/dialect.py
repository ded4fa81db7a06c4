"""
SQL dialect adaptation for paramdb.

The schema script is written once. Before a statement is executed it is
rewritten to the identifier quoting and type names of the connected
engine. Everything in this module is pure.
"""

import re
from dataclasses import dataclass
from enum import Enum
from typing import Dict, List, Optional, Tuple

from ..exceptions import ConfigurationError


class EngineFamily(str, Enum):
    """Database engine families with distinct SQL conventions."""

    POSTGRESQL = "postgresql"
    MARIADB = "mariadb"
    SQLITE = "sqlite"
    ACCESS = "access"
    GENERIC = "generic"


@dataclass(frozen=True)
class Dialect:
    """SQL conventions of one engine family."""

    family: EngineFamily
    open_quote: str = '"'
    close_quote: str = '"'
    type_rewrites: Tuple[Tuple[str, str], ...] = ()
    session_setup: Tuple[str, ...] = ()
    system_table_prefixes: Tuple[str, ...] = ()
    drop_restricted: bool = False

    def quote(self, identifier: str) -> str:
        return f"{self.open_quote}{identifier}{self.close_quote}"

    def is_system_table(self, name: str) -> bool:
        return any(name.lower().startswith(p.lower()) for p in self.system_table_prefixes)


_DIALECTS: Dict[EngineFamily, Dialect] = {
    EngineFamily.POSTGRESQL: Dialect(
        family=EngineFamily.POSTGRESQL,
        type_rewrites=(
            (r"\bDOUBLE\b(?!\s+PRECISION)", "DOUBLE PRECISION"),
            (r"\bDATETIME\b", "TIMESTAMP"),
            (r"\bTINYINT\b", "SMALLINT"),
            (r"\bLONGTEXT\b", "TEXT"),
        ),
        system_table_prefixes=("pg_",),
    ),
    # MariaDB/MySQL is switched to ANSI mode at session start, so double
    # quotes are accepted for identifiers.
    EngineFamily.MARIADB: Dialect(
        family=EngineFamily.MARIADB,
        session_setup=("SET sql_mode='ANSI'",),
    ),
    EngineFamily.SQLITE: Dialect(
        family=EngineFamily.SQLITE,
        system_table_prefixes=("sqlite_",),
    ),
    EngineFamily.ACCESS: Dialect(
        family=EngineFamily.ACCESS,
        open_quote="[",
        close_quote="]",
        type_rewrites=(
            (r"\bDOUBLE\s+PRECISION\b", "DOUBLE"),
            (r"\bVARCHAR\s*\(\s*(\d+)\s*\)", r"TEXT(\1)"),
        ),
        system_table_prefixes=("MSys",),
        drop_restricted=True,
    ),
    EngineFamily.GENERIC: Dialect(family=EngineFamily.GENERIC),
}

# Matched case-insensitively against the server version banner.
_BANNER_PATTERNS: List[Tuple[str, EngineFamily]] = [
    ("mariadb", EngineFamily.MARIADB),
    ("mysql", EngineFamily.MARIADB),
    ("sqlite", EngineFamily.SQLITE),
    ("access", EngineFamily.ACCESS),
    ("postgresql", EngineFamily.POSTGRESQL),
    ("cockroachdb", EngineFamily.POSTGRESQL),
]

_BACKTICK_RE = re.compile(r"`([^`]*)`")


def get_dialect(family: EngineFamily) -> Dialect:
    """Look up the dialect of an engine family."""
    return _DIALECTS[EngineFamily(family)]


def detect_engine_family(version_banner: Optional[str]) -> EngineFamily:
    """Map a server version banner to an engine family."""
    if not version_banner:
        return EngineFamily.GENERIC

    banner = version_banner.lower()
    for needle, family in _BANNER_PATTERNS:
        if needle in banner:
            return family
    return EngineFamily.GENERIC


def resolve_engine_family(
    version_banner: Optional[str], configured: Optional[str] = None
) -> EngineFamily:
    """
    Pick the engine family of a connection.

    A configured family applies only to servers whose banner is not
    recognised; contradicting a recognised banner raises
    ConfigurationError.
    """
    detected = detect_engine_family(version_banner)
    if not configured or EngineFamily(configured) == detected:
        return detected
    if detected != EngineFamily.GENERIC:
        raise ConfigurationError(
            f"Engine '{configured}' configured but the server reports {detected.value}",
            details={"server_version": version_banner},
        )
    return EngineFamily(configured)


def adapt_statement(statement: str, family: EngineFamily) -> str:
    """Rewrite a statement for the given engine family."""
    dialect = get_dialect(family)

    adapted = _BACKTICK_RE.sub(
        lambda m: dialect.quote(m.group(1)), statement
    )
    for pattern, replacement in dialect.type_rewrites:
        adapted = re.sub(pattern, replacement, adapted, flags=re.IGNORECASE)

    return adapted
