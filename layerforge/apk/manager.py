"""Package manager seam used by the build pipeline.

Dependency resolution and package installation belong to an external
package manager. Any object with the three methods of
:class:`PackageManager` can be injected into a build. The default,
:class:`InstalledDatabasePackageManager`, works on a tree whose packages
have already been unpacked and recorded in ``lib/apk/db/installed``.
"""

from __future__ import annotations

import logging
from datetime import datetime
from typing import Protocol, runtime_checkable

from layerforge.apk.installed import (
    INSTALLED_DB_PATH,
    WORLD_PATH,
    InstalledDatabaseError,
    parse_installed,
    parse_world,
)
from layerforge.core.fs import WorkingTree
from layerforge.models.packages import InstalledPackage

logger = logging.getLogger(__name__)


class PackageManagerError(RuntimeError):
    """Raised when the package world cannot be finalized or read."""


@runtime_checkable
class PackageManager(Protocol):
    """Protocol for package manager backends."""

    def fixate_world(self, epoch: datetime | None) -> None:
        """Install every selected package's files into the tree."""
        ...

    def get_installed(self) -> list[InstalledPackage]:
        """Packages recorded as installed in the tree."""
        ...

    def resolve_world(self) -> tuple[list[InstalledPackage], list[str]]:
        """Packages that would be installed, plus any conflicts."""
        ...


class InstalledDatabasePackageManager:
    """Package manager over a prepopulated tree.

    ``fixate_world`` verifies that every package named in ``etc/apk/world``
    is recorded as installed; it installs nothing itself.
    """

    def __init__(self, tree: WorkingTree) -> None:
        self._tree = tree
        self._installed: list[InstalledPackage] | None = None

    def _load(self) -> list[InstalledPackage]:
        if self._installed is None:
            if not self._tree.exists(INSTALLED_DB_PATH):
                raise PackageManagerError(
                    f"installed database /{INSTALLED_DB_PATH} not found in {self._tree.root}"
                )
            try:
                self._installed = parse_installed(self._tree.read_text(INSTALLED_DB_PATH))
            except (OSError, InstalledDatabaseError) as exc:
                raise PackageManagerError(f"reading /{INSTALLED_DB_PATH}: {exc}") from exc
        return self._installed

    def _world(self) -> list[str]:
        if not self._tree.exists(WORLD_PATH):
            return []
        return parse_world(self._tree.read_text(WORLD_PATH))

    def fixate_world(self, epoch: datetime | None) -> None:
        installed = {p.name for p in self._load()}
        provided = {
            name.split("=", 1)[0] for p in self._load() for name in p.provides
        }
        missing = [
            name for name in self._world()
            if name not in installed and name not in provided
        ]
        if missing:
            raise PackageManagerError(
                f"world packages not installed: {', '.join(missing)}"
            )
        logger.debug(
            "world fixated with %d installed packages (epoch=%s)",
            len(installed),
            epoch.isoformat() if epoch else "unset",
        )

    def get_installed(self) -> list[InstalledPackage]:
        return list(self._load())

    def resolve_world(self) -> tuple[list[InstalledPackage], list[str]]:
        world = self._world()
        packages = self._load()
        if not world:
            return list(packages), []
        selected = [p for p in packages if p.name in world]
        conflicts = sorted(
            name for name in world if name not in {p.name for p in packages}
        )
        return selected, conflicts
