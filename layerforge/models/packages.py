"""Installed package records, as read from the APK installed database."""

from __future__ import annotations

from datetime import datetime, timezone

from pydantic import BaseModel, ConfigDict


class FileOwnership(BaseModel):
    """Package-declared owner and mode for one path in the tree."""

    model_config = ConfigDict(frozen=True)

    uid: int
    gid: int
    mode: int | None = None  # permission bits only


class PackageFile(BaseModel):
    model_config = ConfigDict(frozen=True)

    path: str  # relative to the tree root, no leading slash
    checksum: str = ""  # apk "Q1"-prefixed base64 SHA-1, as recorded
    ownership: FileOwnership | None = None


class PackageDirectory(BaseModel):
    model_config = ConfigDict(frozen=True)

    path: str
    ownership: FileOwnership | None = None


class InstalledPackage(BaseModel):
    """One record of ``lib/apk/db/installed``."""

    model_config = ConfigDict(frozen=True)

    name: str
    version: str
    arch: str = ""
    license: str = ""
    origin: str = ""
    description: str = ""
    url: str = ""
    maintainer: str = ""
    build_time: int | None = None
    commit: str = ""
    size: int = 0
    installed_size: int = 0
    checksum: str = ""
    dependencies: list[str] = []
    provides: list[str] = []
    directories: list[PackageDirectory] = []
    files: list[PackageFile] = []

    @property
    def build_date(self) -> datetime | None:
        if self.build_time is None:
            return None
        return datetime.fromtimestamp(self.build_time, tz=timezone.utc)
