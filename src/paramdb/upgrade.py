"""
Hand-off to the incremental version upgrade routine.

paramdb only creates the base schema. Reaching a later version is the
job of an external upgrade routine that implements VersionUpgrader and
is named in the configuration as ``package.module:attribute``.
"""

import importlib
import inspect
import logging
from abc import ABC, abstractmethod
from typing import Iterable, Optional

from .exceptions import ConfigurationError


logger = logging.getLogger(__name__)


class VersionUpgrader(ABC):
    """Brings a database from its current schema version to a later one."""

    @abstractmethod
    async def upgrade(
        self,
        database: str,
        to_version: Optional[int],
        keep_tables: Optional[Iterable[str]] = None,
    ) -> None:
        """
        Upgrade ``database`` to ``to_version`` (latest when None).

        Tables in ``keep_tables`` must not be modified by the upgrade.
        """


def load_upgrader(reference: str) -> VersionUpgrader:
    """
    Load an upgrader from an import path like ``pkg.mod:attr``.

    ``attr`` may name a VersionUpgrader subclass, which is instantiated
    without arguments, or an instance.
    """
    module_name, _, attribute = reference.partition(":")
    if not module_name or not attribute:
        raise ConfigurationError(
            f"Upgrader '{reference}' must look like 'package.module:attribute'"
        )

    try:
        module = importlib.import_module(module_name)
    except ImportError as e:
        raise ConfigurationError(f"Cannot import upgrader module '{module_name}'", cause=e) from e

    try:
        target = getattr(module, attribute)
    except AttributeError:
        raise ConfigurationError(f"Module '{module_name}' has no attribute '{attribute}'")

    if inspect.isclass(target):
        target = target()

    if not isinstance(target, VersionUpgrader):
        raise ConfigurationError(f"'{reference}' is not a VersionUpgrader")

    logger.debug(f"Loaded upgrader {reference}")
    return target
