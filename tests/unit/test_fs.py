"""Tests for WorkingTree: path handling, recorded metadata, stable walks."""

from __future__ import annotations

import os
from pathlib import Path

import pytest

from layerforge.core.fs import EntryKind, WorkingTree, WorkingTreeError


@pytest.fixture
def tree(tmp_dir: Path) -> WorkingTree:
    root = tmp_dir / "root"
    root.mkdir()
    return WorkingTree(root)


class TestPaths:
    @pytest.mark.parametrize("raw", ["/etc/passwd", "etc/passwd", "./etc/passwd", "etc//passwd"])
    def test_normalize(self, raw: str):
        assert WorkingTree.normalize(raw) == "etc/passwd"

    def test_parent_reference_rejected(self):
        with pytest.raises(WorkingTreeError):
            WorkingTree.normalize("etc/../../outside")

    def test_host_path_stays_under_root(self, tree: WorkingTree):
        assert tree.host_path("/usr/bin") == tree.root / "usr" / "bin"
        assert tree.host_path("/") == tree.root


class TestMutations:
    def test_write_sets_mode(self, tree: WorkingTree):
        tree.write_text("etc/motd", "hi\n", 0o600)
        assert tree.read_text("/etc/motd") == "hi\n"
        assert tree.entry("etc/motd").mode == 0o600

    def test_chown_is_recorded_not_applied(self, tree: WorkingTree):
        tree.mkdir("home/app")
        tree.chown("/home/app", 1000, 1000)
        own = tree.ownership("home/app")
        assert own is not None and (own.uid, own.gid) == (1000, 1000)

    def test_chown_missing_path_fails(self, tree: WorkingTree):
        with pytest.raises(WorkingTreeError):
            tree.chown("nope", 0, 0)

    def test_mknod_records_virtual_device(self, tree: WorkingTree):
        tree.mknod("dev/null", 1, 3)
        assert tree.exists("/dev/null")
        assert not os.path.lexists(tree.host_path("dev/null"))
        entry = tree.entry("dev/null")
        assert entry.kind is EntryKind.CHAR_DEVICE
        assert (entry.dev_major, entry.dev_minor, entry.mode) == (1, 3, 0o666)

    def test_mknod_existing_path_fails(self, tree: WorkingTree):
        tree.mknod("dev/null", 1, 3)
        with pytest.raises(WorkingTreeError):
            tree.mknod("dev/null", 1, 3)

    def test_chmod_device(self, tree: WorkingTree):
        tree.mknod("dev/console", 5, 1)
        tree.chmod("dev/console", 0o600)
        assert tree.entry("dev/console").mode == 0o600


class TestWalk:
    def test_depth_first_code_point_order(self, tree: WorkingTree):
        for path in ("b/z", "b/a", "a", "B", "b/Z"):
            tree.write_text(path, "")
        assert [e.path for e in tree.walk()] == ["B", "a", "b", "b/Z", "b/a", "b/z"]

    def test_devices_appear_in_listing(self, tree: WorkingTree):
        tree.mkdir("dev")
        tree.write_text("dev/shm-marker", "")
        tree.mknod("dev/null", 1, 3)
        assert tree.listdir("dev") == ["null", "shm-marker"]

    def test_symlinks_are_not_followed(self, tree: WorkingTree):
        tree.mkdir("real")
        tree.write_text("real/file", "x")
        tree.symlink("real", "alias")
        paths = [e.path for e in tree.walk()]
        assert "alias/file" not in paths
        alias = tree.entry("alias")
        assert alias.kind is EntryKind.SYMLINK and alias.link_target == "real"

    def test_hardlinks_share_inode(self, tree: WorkingTree):
        tree.write_text("one", "same")
        tree.link("one", "two")
        one, two = tree.entry("one"), tree.entry("two")
        assert one.inode == two.inode
        assert one.nlink == 2


class TestSymlinkContainment:
    @pytest.fixture
    def outside(self, tmp_dir: Path) -> Path:
        path = tmp_dir / "host-etc"
        path.mkdir()
        return path

    def test_absolute_dir_link_is_reanchored(self, tree: WorkingTree, outside: Path):
        os.symlink(str(outside), tree.root / "etc")
        tree.write_text("etc/passwd", "root:x:0:0::/root:/bin/sh\n")
        assert not (outside / "passwd").exists()
        assert (tree.root / str(outside).lstrip("/") / "passwd").exists()

    def test_absolute_target_resolves_inside_root(self, tree: WorkingTree):
        tree.write_text("usr/lib/os-release", "ID=wolfi\n")
        tree.symlink("/usr/lib/os-release", "etc/os-release")
        assert tree.read_text("etc/os-release") == "ID=wolfi\n"

    def test_parent_references_stop_at_root(self, tree: WorkingTree, outside: Path):
        tree.symlink("../../../../..", "up")
        tree.write_text("up/marker", "x")
        assert (tree.root / "marker").exists()
        assert not (outside.parent / "marker").exists()

    def test_last_component_not_followed_by_host_path(self, tree: WorkingTree):
        tree.symlink("/bin/busybox", "bin/sh")
        assert tree.host_path("bin/sh") == tree.root / "bin" / "sh"
        assert tree.entry("bin/sh").kind is EntryKind.SYMLINK

    def test_symlink_loop(self, tree: WorkingTree):
        tree.symlink("b", "a")
        tree.symlink("a", "b")
        with pytest.raises(WorkingTreeError, match="too many levels"):
            tree.write_text("a/file", "x")


class TestCreatedDirectoryModes:
    @pytest.mark.parametrize("umask", [0o022, 0o077])
    def test_parents_get_fixed_mode(self, tree: WorkingTree, umask: int):
        old = os.umask(umask)
        try:
            tree.write_text("etc/conf.d/app", "x")
            tree.mknod("dev/null", 1, 3)
            tree.symlink("/bin/busybox", "usr/sbin/ifup")
            tree.mkdir("home/app", 0o700)
        finally:
            os.umask(old)
        for path in ("etc", "etc/conf.d", "dev", "usr", "usr/sbin", "home"):
            assert tree.entry(path).mode == 0o755, path
        assert tree.entry("home/app").mode == 0o700
