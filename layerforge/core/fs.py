"""Working filesystem tree for one architecture's build.

The tree is a real directory on disk plus two pieces of metadata that an
unprivileged process cannot put on disk itself: recorded ownership (from
account and path mutations) and character device nodes. Both are applied
when the tree is archived.

Enumeration is depth-first with the children of each directory sorted by
code point, so the walk order never depends on inode order or locale.

Symlinks met while resolving a path are followed as if the root were
``/``: mutations never reach outside the tree, whatever the links in it
point at. Directories a mutation creates along the way always get mode
0755.
"""

from __future__ import annotations

import os
import stat
from collections.abc import Iterator
from enum import Enum
from pathlib import Path, PurePosixPath
from typing import BinaryIO

from pydantic import BaseModel, ConfigDict

from layerforge.models.packages import FileOwnership

DIR_MODE = 0o755  # intermediate directories created by mutations
MAX_SYMLINK_HOPS = 40


class WorkingTreeError(RuntimeError):
    """Raised when a tree operation fails or escapes the root."""


class EntryKind(str, Enum):
    DIRECTORY = "directory"
    FILE = "file"
    SYMLINK = "symlink"
    CHAR_DEVICE = "char_device"
    FIFO = "fifo"


class DeviceNode(BaseModel):
    model_config = ConfigDict(frozen=True)

    major: int
    minor: int
    mode: int = 0o666


class TreeEntry(BaseModel):
    """One node yielded by :meth:`WorkingTree.walk`."""

    model_config = ConfigDict(frozen=True)

    path: str  # relative POSIX path, no leading slash
    kind: EntryKind
    mode: int  # permission bits
    size: int = 0
    link_target: str = ""
    dev_major: int = 0
    dev_minor: int = 0
    inode: tuple[int, int] | None = None  # (st_dev, st_ino) for regular files
    nlink: int = 1


class WorkingTree:
    """Filesystem rooted at *root*; all paths are interpreted inside it.

    Parameters
    ----------
    root:
        Directory holding the populated image filesystem.
    """

    def __init__(self, root: Path | str) -> None:
        self._root = Path(root)
        self._ownership: dict[str, FileOwnership] = {}
        self._devices: dict[str, DeviceNode] = {}

    @property
    def root(self) -> Path:
        return self._root

    @property
    def devices(self) -> dict[str, DeviceNode]:
        return dict(self._devices)

    def __repr__(self) -> str:
        return f"<WorkingTree root={str(self._root)!r}>"

    # ------------------------------------------------------------------
    # Path handling
    # ------------------------------------------------------------------

    @staticmethod
    def normalize(path: str) -> str:
        """Map ``/etc/passwd``, ``etc/passwd`` or ``./etc/passwd`` to ``etc/passwd``."""
        parts: list[str] = []
        for part in PurePosixPath(path).parts:
            if part in ("/", "."):
                continue
            if part == "..":
                raise WorkingTreeError(f"path escapes the tree root: {path!r}")
            parts.append(part)
        return "/".join(parts)

    def host_path(self, path: str) -> Path:
        """Host location of *path*; the last component itself is not followed."""
        return self._resolve(self.normalize(path), follow=False)

    def _target(self, path: str) -> Path:
        """Host location of *path* with every symlink, the last one included, followed."""
        return self._resolve(self.normalize(path), follow=True)

    def _resolve(self, rel: str, *, follow: bool) -> Path:
        """Resolve symlinks in *rel* as if the root were ``/``.

        Absolute link targets are re-anchored at the root and ``..`` stops
        at the root, so the result is always inside the tree.
        """
        pending = [p for p in reversed(rel.split("/")) if p]
        resolved: list[str] = []
        hops = 0
        while pending:
            part = pending.pop()
            if part == ".":
                continue
            if part == "..":
                if resolved:
                    resolved.pop()
                continue
            candidate = self._root.joinpath(*resolved, part)
            if (pending or follow) and candidate.is_symlink():
                hops += 1
                if hops > MAX_SYMLINK_HOPS:
                    raise WorkingTreeError(f"too many levels of symbolic links in {rel!r}")
                target = os.readlink(candidate)
                if target.startswith("/"):
                    resolved = []
                pending.extend(p for p in reversed(target.split("/")) if p)
                continue
            resolved.append(part)
        return self._root.joinpath(*resolved)

    def _make_dirs(self, host: Path) -> None:
        """Create *host* and its missing ancestors with mode ``DIR_MODE``."""
        current = self._root
        for part in host.relative_to(self._root).parts:
            current = current / part
            if not current.is_dir():
                os.mkdir(current, DIR_MODE)
                os.chmod(current, DIR_MODE)

    # ------------------------------------------------------------------
    # Queries
    # ------------------------------------------------------------------

    def exists(self, path: str) -> bool:
        rel = self.normalize(path)
        return rel in self._devices or os.path.lexists(self._resolve(rel, follow=False))

    def is_dir(self, path: str) -> bool:
        return self._target(path).is_dir()

    def read_bytes(self, path: str) -> bytes:
        return self._target(path).read_bytes()

    def read_text(self, path: str) -> str:
        return self._target(path).read_text(encoding="utf-8")

    def open(self, path: str) -> BinaryIO:
        return open(self._target(path), "rb")

    def listdir(self, path: str = "") -> list[str]:
        rel = self.normalize(path)
        names: set[str] = set()
        host = self.host_path(rel)
        if host.is_dir() and not host.is_symlink():
            names.update(os.listdir(host))
        for dev in self._devices:
            parent, _, name = dev.rpartition("/")
            if parent == rel:
                names.add(name)
        return sorted(names)

    def entry(self, path: str) -> TreeEntry:
        """Describe a single path the way :meth:`walk` would."""
        return self._entry(self.normalize(path))

    def ownership(self, path: str) -> FileOwnership | None:
        return self._ownership.get(self.normalize(path))

    # ------------------------------------------------------------------
    # Mutations
    # ------------------------------------------------------------------

    def mkdir(self, path: str, mode: int = DIR_MODE, *, parents: bool = True) -> None:
        host = self._target(path)
        if parents and host != self._root:
            self._make_dirs(host.parent)
        if not host.is_dir():
            os.mkdir(host, mode)
        os.chmod(host, mode)

    def write_bytes(self, path: str, data: bytes, mode: int = 0o644) -> None:
        host = self._target(path)
        self._make_dirs(host.parent)
        host.write_bytes(data)
        os.chmod(host, mode)

    def write_text(self, path: str, text: str, mode: int = 0o644) -> None:
        self.write_bytes(path, text.encode("utf-8"), mode)

    def chmod(self, path: str, mode: int) -> None:
        rel = self.normalize(path)
        if rel in self._devices:
            dev = self._devices[rel]
            self._devices[rel] = dev.model_copy(update={"mode": mode})
            return
        os.chmod(self._resolve(rel, follow=True), mode)

    def chown(self, path: str, uid: int, gid: int) -> None:
        """Record ownership; applied to the entry when the tree is archived."""
        rel = self.normalize(path)
        if not self.exists(rel):
            raise WorkingTreeError(f"chown: no such path {rel!r}")
        self._ownership[rel] = FileOwnership(uid=uid, gid=gid)

    def symlink(self, target: str, path: str) -> None:
        host = self.host_path(path)
        self._make_dirs(host.parent)
        os.symlink(target, host)

    def link(self, source: str, path: str) -> None:
        host = self.host_path(path)
        self._make_dirs(host.parent)
        os.link(self._target(source), host)

    def mknod(self, path: str, major: int, minor: int, mode: int = 0o666) -> None:
        """Record a character device node."""
        rel = self.normalize(path)
        if self.exists(rel):
            raise WorkingTreeError(f"mknod: {rel!r} already exists")
        parent = rel.rpartition("/")[0]
        if parent:
            self._make_dirs(self._resolve(parent, follow=True))
        self._devices[rel] = DeviceNode(major=major, minor=minor, mode=mode)

    # ------------------------------------------------------------------
    # Enumeration
    # ------------------------------------------------------------------

    def walk(self) -> Iterator[TreeEntry]:
        """Yield every entry below the root in stable depth-first order."""
        yield from self._walk("")

    def _walk(self, rel: str) -> Iterator[TreeEntry]:
        try:
            names = self.listdir(rel)
        except OSError as exc:
            raise WorkingTreeError(f"listing {rel or '/'}: {exc}") from exc
        for name in names:
            child = f"{rel}/{name}" if rel else name
            entry = self._entry(child)
            yield entry
            if entry.kind is EntryKind.DIRECTORY:
                yield from self._walk(child)

    def _entry(self, rel: str) -> TreeEntry:
        dev = self._devices.get(rel)
        if dev is not None:
            return TreeEntry(
                path=rel,
                kind=EntryKind.CHAR_DEVICE,
                mode=dev.mode,
                dev_major=dev.major,
                dev_minor=dev.minor,
            )

        try:
            st = os.lstat(self.host_path(rel))
        except OSError as exc:
            raise WorkingTreeError(f"stat {rel}: {exc}") from exc

        perm = stat.S_IMODE(st.st_mode)
        if stat.S_ISDIR(st.st_mode):
            return TreeEntry(path=rel, kind=EntryKind.DIRECTORY, mode=perm)
        if stat.S_ISREG(st.st_mode):
            return TreeEntry(
                path=rel,
                kind=EntryKind.FILE,
                mode=perm,
                size=st.st_size,
                inode=(st.st_dev, st.st_ino),
                nlink=st.st_nlink,
            )
        if stat.S_ISLNK(st.st_mode):
            return TreeEntry(
                path=rel,
                kind=EntryKind.SYMLINK,
                mode=0o777,
                link_target=os.readlink(self.host_path(rel)),
            )
        if stat.S_ISCHR(st.st_mode):
            return TreeEntry(
                path=rel,
                kind=EntryKind.CHAR_DEVICE,
                mode=perm,
                dev_major=os.major(st.st_rdev),
                dev_minor=os.minor(st.st_rdev),
            )
        if stat.S_ISFIFO(st.st_mode):
            return TreeEntry(path=rel, kind=EntryKind.FIFO, mode=perm)
        raise WorkingTreeError(f"unsupported file type at {rel}")
