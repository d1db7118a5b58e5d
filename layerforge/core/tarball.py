"""Deterministic tar serialization of a :class:`WorkingTree`."""

from __future__ import annotations

import tarfile
from collections.abc import Mapping
from datetime import datetime
from typing import BinaryIO

from layerforge.core.fs import EntryKind, TreeEntry, WorkingTree, WorkingTreeError
from layerforge.models.packages import FileOwnership


class TarballError(RuntimeError):
    """Raised when an entry cannot be serialized."""


class TarballWriter:
    """Serialize a tree with normalized timestamps and ownership.

    Every entry gets ``mtime = epoch`` and the default owner. Ownership
    recorded on the tree replaces the default, and *overrides* (declared by
    the package database) replace both.

    Parameters
    ----------
    epoch:
        Reproducibility clock applied to every entry.
    overrides:
        Package-declared ownership and mode keyed by tree-relative path.
    """

    def __init__(
        self,
        epoch: datetime,
        *,
        overrides: Mapping[str, FileOwnership] | None = None,
        default_uid: int = 0,
        default_gid: int = 0,
    ) -> None:
        self._mtime = int(epoch.timestamp())
        self._overrides = dict(overrides or {})
        self._default_uid = default_uid
        self._default_gid = default_gid

    def write_tar(self, out: BinaryIO, tree: WorkingTree) -> int:
        """Write the archive stream to *out*; returns the entry count."""
        hardlinks: dict[tuple[int, int], str] = {}
        count = 0
        with tarfile.open(
            fileobj=out, mode="w|", format=tarfile.PAX_FORMAT, encoding="utf-8"
        ) as tar:
            for entry in tree.walk():
                info = self._tarinfo(entry, tree, hardlinks)
                try:
                    if info.isreg():
                        with tree.open(entry.path) as fh:
                            tar.addfile(info, fh)
                    else:
                        tar.addfile(info)
                except (OSError, WorkingTreeError) as exc:
                    raise TarballError(f"writing {entry.path}: {exc}") from exc
                count += 1
        return count

    def _tarinfo(
        self,
        entry: TreeEntry,
        tree: WorkingTree,
        hardlinks: dict[tuple[int, int], str],
    ) -> tarfile.TarInfo:
        info = tarfile.TarInfo(entry.path)
        info.mtime = self._mtime
        info.mode = entry.mode
        info.uname = ""
        info.gname = ""

        if entry.kind is EntryKind.DIRECTORY:
            info.type = tarfile.DIRTYPE
        elif entry.kind is EntryKind.FILE:
            first = hardlinks.get(entry.inode) if entry.nlink > 1 else None
            if first is not None:
                info.type = tarfile.LNKTYPE
                info.linkname = first
            else:
                info.type = tarfile.REGTYPE
                info.size = entry.size
                if entry.nlink > 1 and entry.inode is not None:
                    hardlinks[entry.inode] = entry.path
        elif entry.kind is EntryKind.SYMLINK:
            info.type = tarfile.SYMTYPE
            info.linkname = entry.link_target
        elif entry.kind is EntryKind.CHAR_DEVICE:
            info.type = tarfile.CHRTYPE
            info.devmajor = entry.dev_major
            info.devminor = entry.dev_minor
        elif entry.kind is EntryKind.FIFO:
            info.type = tarfile.FIFOTYPE
        else:
            raise TarballError(f"unsupported entry kind {entry.kind} at {entry.path}")

        uid, gid = self._default_uid, self._default_gid
        recorded = tree.ownership(entry.path)
        if recorded is not None:
            uid, gid = recorded.uid, recorded.gid
        declared = self._overrides.get(entry.path)
        if declared is not None:
            uid, gid = declared.uid, declared.gid
            if declared.mode is not None and entry.kind is not EntryKind.SYMLINK:
                info.mode = declared.mode
        info.uid = uid
        info.gid = gid
        return info
