"""Symlinks and device nodes every image needs after package install."""

from __future__ import annotations

import logging
from collections.abc import Iterable

from elftools.common.exceptions import ELFError
from elftools.elf.dynamic import DynamicSection
from elftools.elf.elffile import ELFFile

from layerforge.core.fs import EntryKind, WorkingTree, WorkingTreeError
from layerforge.models.packages import InstalledPackage

logger = logging.getLogger(__name__)

BUSYBOX_PATHS = "etc/busybox-paths.d/busybox"
BUSYBOX_BINARY = "/bin/busybox"
LIBRARY_DIRS = ("lib", "usr/lib")

# (path, major, minor)
CHAR_DEVICES: tuple[tuple[str, int, int], ...] = (
    ("dev/zero", 1, 5),
    ("dev/urandom", 1, 9),
    ("dev/null", 1, 3),
    ("dev/random", 1, 8),
    ("dev/console", 5, 1),
)

_ELF_MAGIC = b"\x7fELF"


class LinkInstallError(RuntimeError):
    """Raised when a symlink or device node cannot be installed."""


def install_busybox_links(tree: WorkingTree, installed: Iterable[InstalledPackage]) -> int:
    """Create the applet symlinks busybox lists for itself; returns the count."""
    if not any(p.name == "busybox" for p in installed):
        return 0
    if not tree.exists(BUSYBOX_PATHS):
        logger.debug("busybox installed without %s, no applet links", BUSYBOX_PATHS)
        return 0

    created = 0
    try:
        for line in tree.read_text(BUSYBOX_PATHS).splitlines():
            path = line.strip()
            if not path or tree.exists(path):
                continue
            tree.symlink(BUSYBOX_BINARY, path)
            created += 1
    except (OSError, WorkingTreeError) as exc:
        raise LinkInstallError(f"installing busybox symlinks: {exc}") from exc
    return created


def read_soname(tree: WorkingTree, path: str) -> str:
    """DT_SONAME of an ELF shared object, or ``""`` if it has none."""
    with tree.open(path) as fh:
        if fh.read(4) != _ELF_MAGIC:
            return ""
        fh.seek(0)
        try:
            elf = ELFFile(fh)
            for section in elf.iter_sections():
                if not isinstance(section, DynamicSection):
                    continue
                for tag in section.iter_tags():
                    if tag.entry.d_tag == "DT_SONAME":
                        return tag.soname
        except ELFError as exc:
            logger.debug("skipping %s: %s", path, exc)
    return ""


def install_ldconfig_links(tree: WorkingTree) -> int:
    """Link each shared library's SONAME to its file, as ldconfig would."""
    created = 0
    try:
        for libdir in LIBRARY_DIRS:
            if not tree.is_dir(libdir):
                continue
            for name in tree.listdir(libdir):
                if ".so" not in name:
                    continue
                path = f"{libdir}/{name}"
                entry = tree.entry(path)
                if entry.kind is not EntryKind.FILE:
                    continue
                soname = read_soname(tree, path)
                if not soname or soname == name or "/" in soname:
                    continue
                link = f"{libdir}/{soname}"
                if tree.exists(link):
                    continue
                tree.symlink(name, link)
                created += 1
    except (OSError, WorkingTreeError) as exc:
        raise LinkInstallError(f"installing ldconfig links: {exc}") from exc
    return created


def install_char_devices(tree: WorkingTree) -> int:
    created = 0
    try:
        for path, major, minor in CHAR_DEVICES:
            if tree.exists(path):
                continue
            tree.mknod(path, major, minor, 0o666)
            created += 1
    except (OSError, WorkingTreeError) as exc:
        raise LinkInstallError(f"creating character devices: {exc}") from exc
    return created
