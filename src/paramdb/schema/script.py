"""
Schema script parsing for paramdb.

Turns a multi-statement SQL script into an ordered list of classified
statements. Only statement boundaries and one target-table token per
statement are recognised; this is not a SQL parser.

Limitations: a terminator or comment marker inside a quoted string
literal is not recognised as such and will mis-split the script.
"""

import logging
import re
from dataclasses import dataclass
from enum import Enum
from importlib import resources
from pathlib import Path
from typing import List, Optional, Union

from ..exceptions import ConfigurationError


logger = logging.getLogger(__name__)

COMMENT_MARKER = "--"
TERMINATOR = ";"
NO_TABLE = "(none)"

# Unquoted or quoted names made of letters and underscores only. Anything
# else (digits, schema-qualified names) is classified as OTHER.
_NAME = r"""[`"\[]?(?P<name>[A-Za-z_]+)[`"\]]?(?=[\s(]|$)"""

_CREATE_RE = re.compile(
    r"^\s*CREATE\s+TABLE\s+(?:IF\s+NOT\s+EXISTS\s+)?" + _NAME, re.IGNORECASE
)
_INSERT_RE = re.compile(r"^\s*INSERT\s+INTO\s+" + _NAME, re.IGNORECASE)

# Any CREATE TABLE, whatever its name looks like
_ANY_CREATE_RE = re.compile(
    r"^\s*CREATE\s+TABLE\s+(?:IF\s+NOT\s+EXISTS\s+)?(?P<name>[^\s(]+)", re.IGNORECASE
)


class StatementKind(str, Enum):
    """What a statement does to its target table."""

    CREATE = "create"
    INSERT = "insert"
    OTHER = "other"


@dataclass(frozen=True)
class Statement:
    """A single classified SQL statement."""

    text: str
    kind: StatementKind
    target_table: Optional[str] = None

    @property
    def is_create(self) -> bool:
        return self.kind == StatementKind.CREATE

    @property
    def table_key(self) -> Optional[str]:
        """Normalized target table name used for comparisons."""
        if self.target_table is None:
            return None
        return normalize_table_name(self.target_table)

    @property
    def display_table(self) -> str:
        return self.target_table or NO_TABLE

    @property
    def unrecognized_create(self) -> Optional[str]:
        """
        Raw name of a CREATE TABLE whose table name was not recognised.

        Such a statement would create a table nobody tracks, so it must
        not be run as an ordinary statement.
        """
        if self.kind != StatementKind.OTHER:
            return None
        match = _ANY_CREATE_RE.match(self.text)
        return match.group("name") if match else None


def normalize_table_name(name: str) -> str:
    """
    Normalize a table name for comparison.

    Whitespace is stripped and the name is case-folded, matching how
    PostgreSQL folds unquoted identifiers.
    """
    return name.strip().lower()


def split_script(script: str) -> List[str]:
    """
    Split script text into statements.

    Line comments and tab characters are removed, the script is joined
    into a single line and split on the statement terminator. Blank
    fragments, including the one after a final terminator, are dropped.
    """
    lines = []
    for line in script.splitlines():
        marker = line.find(COMMENT_MARKER)
        if marker != -1:
            line = line[:marker]
        lines.append(line.replace("\t", ""))

    flattened = " ".join(lines)
    return [part.strip() for part in flattened.split(TERMINATOR) if part.strip()]


def classify_statement(text: str) -> Statement:
    """Classify a statement and extract the table it targets."""
    match = _CREATE_RE.match(text)
    if match:
        return Statement(text, StatementKind.CREATE, match.group("name").strip())

    match = _INSERT_RE.match(text)
    if match:
        return Statement(text, StatementKind.INSERT, match.group("name").strip())

    return Statement(text, StatementKind.OTHER, None)


def parse_script(script: str) -> List[Statement]:
    """Split and classify a whole script."""
    statements = [classify_statement(part) for part in split_script(script)]
    logger.debug(
        f"Parsed {len(statements)} statements "
        f"({sum(1 for s in statements if s.is_create)} CREATE TABLE)"
    )
    return statements


def load_script(path: Optional[Union[str, Path]] = None) -> str:
    """
    Read a schema script.

    Without a path the base schema shipped with the package is used.
    """
    if path is None:
        return (
            resources.files("paramdb")
            .joinpath("sql/create_db.sql")
            .read_text(encoding="utf-8")
        )

    try:
        return Path(path).read_text(encoding="utf-8")
    except FileNotFoundError:
        raise ConfigurationError(f"Schema script not found: {path}")
    except OSError as e:
        raise ConfigurationError(f"Cannot read schema script {path}", cause=e) from e
