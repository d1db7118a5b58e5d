"""Path mutations: directories, empty files, links and permissions."""

from __future__ import annotations

from collections.abc import Iterable

from layerforge.core.fs import EntryKind, WorkingTree, WorkingTreeError
from layerforge.models.config import PathMutation, PathMutationType


class PathMutationError(RuntimeError):
    """Raised when a path directive cannot be applied."""


def _descendants(tree: WorkingTree, path: str) -> list[str]:
    """*path* and everything below it, in walk order."""
    root = WorkingTree.normalize(path)
    out = [root]
    if tree.is_dir(root):
        sub = WorkingTree(tree.host_path(root))
        out.extend(f"{root}/{entry.path}" for entry in sub.walk()
                   if entry.kind is not EntryKind.SYMLINK)
    return out


def _apply_ownership(tree: WorkingTree, mut: PathMutation, paths: Iterable[str]) -> None:
    for p in paths:
        tree.chmod(p, mut.permissions)
        tree.chown(p, mut.uid, mut.gid)


def mutate_paths(tree: WorkingTree, mutations: Iterable[PathMutation]) -> None:
    """Apply every path directive in order."""
    for mut in mutations:
        try:
            _mutate_one(tree, mut)
        except (OSError, WorkingTreeError) as exc:
            raise PathMutationError(
                f"{mut.type.value} mutation of {mut.path}: {exc}"
            ) from exc


def _mutate_one(tree: WorkingTree, mut: PathMutation) -> None:
    if mut.type is PathMutationType.DIRECTORY:
        tree.mkdir(mut.path, mut.permissions)
        targets = _descendants(tree, mut.path) if mut.recursive else [mut.path]
        _apply_ownership(tree, mut, targets)

    elif mut.type is PathMutationType.EMPTY_FILE:
        tree.write_bytes(mut.path, b"", mut.permissions)
        tree.chown(mut.path, mut.uid, mut.gid)

    elif mut.type is PathMutationType.SYMLINK:
        if not mut.source:
            raise PathMutationError(f"symlink {mut.path} has no source")
        tree.symlink(mut.source, mut.path)
        tree.chown(mut.path, mut.uid, mut.gid)

    elif mut.type is PathMutationType.HARDLINK:
        if not mut.source:
            raise PathMutationError(f"hardlink {mut.path} has no source")
        tree.link(mut.source, mut.path)
        tree.chown(mut.path, mut.uid, mut.gid)

    elif mut.type is PathMutationType.PERMISSIONS:
        if not tree.exists(mut.path):
            raise PathMutationError(f"permissions: {mut.path} does not exist")
        targets = _descendants(tree, mut.path) if mut.recursive else [mut.path]
        _apply_ownership(tree, mut, targets)
