"""APK package database access and the package manager seam."""

from layerforge.apk.installed import (
    INSTALLED_DB_PATH,
    InstalledDatabaseError,
    newest_build_date,
    ownership_overrides,
    parse_installed,
)
from layerforge.apk.manager import (
    InstalledDatabasePackageManager,
    PackageManager,
    PackageManagerError,
)

__all__ = [
    "INSTALLED_DB_PATH",
    "InstalledDatabaseError",
    "InstalledDatabasePackageManager",
    "PackageManager",
    "PackageManagerError",
    "newest_build_date",
    "ownership_overrides",
    "parse_installed",
]
