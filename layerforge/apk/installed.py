"""Reader for the APK installed-package database (``lib/apk/db/installed``).

Records are blocks of ``K:value`` lines separated by blank lines. File and
directory lines are positional: ``F:`` opens a directory, subsequent ``R:``
lines name files inside it, and ``a:``/``Z:``/``M:`` refine the most recent
file or directory.
"""

from __future__ import annotations

from collections.abc import Iterable
from datetime import datetime, timezone
from typing import Any

from layerforge.models.packages import (
    FileOwnership,
    InstalledPackage,
    PackageDirectory,
    PackageFile,
)

INSTALLED_DB_PATH = "lib/apk/db/installed"
WORLD_PATH = "etc/apk/world"


class InstalledDatabaseError(ValueError):
    """Raised when the installed database cannot be parsed."""


def _parse_acl(value: str, lineno: int) -> FileOwnership:
    parts = value.split(":")
    if len(parts) < 3:
        raise InstalledDatabaseError(f"line {lineno}: malformed acl {value!r}")
    try:
        return FileOwnership(uid=int(parts[0]), gid=int(parts[1]), mode=int(parts[2], 8))
    except ValueError as exc:
        raise InstalledDatabaseError(f"line {lineno}: malformed acl {value!r}") from exc


class _Record:
    """Mutable accumulator for one package block."""

    def __init__(self) -> None:
        self.fields: dict[str, Any] = {"dependencies": [], "provides": []}
        self.directories: list[dict[str, Any]] = []
        self.files: list[dict[str, Any]] = []
        self.current_dir: str = ""

    def build(self, lineno: int) -> InstalledPackage:
        if "name" not in self.fields or "version" not in self.fields:
            raise InstalledDatabaseError(
                f"record ending at line {lineno} has no P: or V: line"
            )
        return InstalledPackage(
            **self.fields,
            directories=[PackageDirectory(**d) for d in self.directories],
            files=[PackageFile(**f) for f in self.files],
        )


_SCALAR_FIELDS = {
    "P": "name",
    "V": "version",
    "A": "arch",
    "L": "license",
    "o": "origin",
    "T": "description",
    "U": "url",
    "m": "maintainer",
    "c": "commit",
    "C": "checksum",
}

_INT_FIELDS = {"S": "size", "I": "installed_size", "t": "build_time"}


def parse_installed(text: str) -> list[InstalledPackage]:
    """Parse the installed database; package order is preserved."""
    packages: list[InstalledPackage] = []
    record: _Record | None = None
    lineno = 0

    for lineno, raw in enumerate(text.splitlines(), start=1):
        line = raw.rstrip("\r")
        if not line.strip():
            if record is not None:
                packages.append(record.build(lineno))
                record = None
            continue

        key, sep, value = line.partition(":")
        if not sep or len(key) != 1:
            raise InstalledDatabaseError(f"line {lineno}: expected K:value, got {line!r}")
        if record is None:
            record = _Record()

        if key in _SCALAR_FIELDS:
            record.fields[_SCALAR_FIELDS[key]] = value
        elif key in _INT_FIELDS:
            try:
                record.fields[_INT_FIELDS[key]] = int(value)
            except ValueError as exc:
                raise InstalledDatabaseError(
                    f"line {lineno}: {key}: expects an integer, got {value!r}"
                ) from exc
        elif key == "D":
            record.fields["dependencies"] = value.split()
        elif key == "p":
            record.fields["provides"] = value.split()
        elif key == "F":
            record.current_dir = value.strip("/")
            record.directories.append({"path": record.current_dir})
        elif key == "M":
            if not record.directories:
                raise InstalledDatabaseError(f"line {lineno}: M: without F:")
            record.directories[-1]["ownership"] = _parse_acl(value, lineno)
        elif key == "R":
            path = f"{record.current_dir}/{value}" if record.current_dir else value
            record.files.append({"path": path})
        elif key == "a":
            if not record.files:
                raise InstalledDatabaseError(f"line {lineno}: a: without R:")
            record.files[-1]["ownership"] = _parse_acl(value, lineno)
        elif key == "Z":
            if not record.files:
                raise InstalledDatabaseError(f"line {lineno}: Z: without R:")
            record.files[-1]["checksum"] = value
        # Remaining keys (r:, q:, i:, f:, ...) carry nothing the build needs.

    if record is not None:
        packages.append(record.build(lineno))
    return packages


def render_installed(packages: Iterable[InstalledPackage]) -> str:
    """Serialize packages back into installed-database form."""
    blocks: list[str] = []
    for pkg in packages:
        lines = [f"P:{pkg.name}", f"V:{pkg.version}"]
        if pkg.arch:
            lines.append(f"A:{pkg.arch}")
        if pkg.size:
            lines.append(f"S:{pkg.size}")
        if pkg.installed_size:
            lines.append(f"I:{pkg.installed_size}")
        for key, attr in (("T", "description"), ("U", "url"), ("L", "license"),
                          ("o", "origin"), ("m", "maintainer")):
            value = getattr(pkg, attr)
            if value:
                lines.append(f"{key}:{value}")
        if pkg.build_time is not None:
            lines.append(f"t:{pkg.build_time}")
        if pkg.commit:
            lines.append(f"c:{pkg.commit}")
        if pkg.dependencies:
            lines.append("D:" + " ".join(pkg.dependencies))
        if pkg.provides:
            lines.append("p:" + " ".join(pkg.provides))

        files_by_dir: dict[str, list[PackageFile]] = {}
        for f in pkg.files:
            files_by_dir.setdefault(f.path.rpartition("/")[0], []).append(f)
        dirs = [d.path for d in pkg.directories]
        for parent in files_by_dir:
            if parent and parent not in dirs:
                dirs.append(parent)
        dir_meta = {d.path: d for d in pkg.directories}
        # Files at the tree root have no F: line and must precede the first one.
        for f in files_by_dir.get("", []):
            lines.append(f"R:{f.path}")
        for d in dirs:
            lines.append(f"F:{d}")
            meta = dir_meta.get(d)
            if meta is not None and meta.ownership is not None:
                lines.append("M:" + _format_acl(meta.ownership))
            for f in files_by_dir.get(d, []):
                lines.append(f"R:{f.path.rpartition('/')[2]}")
                if f.ownership is not None:
                    lines.append("a:" + _format_acl(f.ownership))
                if f.checksum:
                    lines.append(f"Z:{f.checksum}")
        blocks.append("\n".join(lines) + "\n")
    return "\n".join(blocks)


def _format_acl(ownership: FileOwnership) -> str:
    mode = ownership.mode if ownership.mode is not None else 0o644
    return f"{ownership.uid}:{ownership.gid}:{mode:o}"


def ownership_overrides(packages: Iterable[InstalledPackage]) -> dict[str, FileOwnership]:
    """Package-declared ownership for every file and directory that has one."""
    overrides: dict[str, FileOwnership] = {}
    for pkg in packages:
        for d in pkg.directories:
            if d.ownership is not None and d.path:
                overrides[d.path] = d.ownership
        for f in pkg.files:
            if f.ownership is not None:
                overrides[f.path] = f.ownership
    return overrides


def newest_build_date(packages: Iterable[InstalledPackage]) -> datetime | None:
    """Latest package build time, used when no source-date-epoch is set."""
    times = [p.build_time for p in packages if p.build_time is not None]
    if not times:
        return None
    return datetime.fromtimestamp(max(times), tz=timezone.utc)


def parse_world(text: str) -> list[str]:
    """Package names listed in ``etc/apk/world`` (version constraints stripped)."""
    names: list[str] = []
    for token in text.split():
        for sep in ("<", ">", "=", "~"):
            token = token.split(sep, 1)[0]
        if token:
            names.append(token)
    return names
