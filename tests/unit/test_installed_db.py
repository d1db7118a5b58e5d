"""Tests for the installed-database reader and the package manager seam."""

from __future__ import annotations

from collections.abc import Callable
from datetime import datetime, timezone

import pytest

from layerforge.apk.installed import (
    InstalledDatabaseError,
    newest_build_date,
    ownership_overrides,
    parse_installed,
    parse_world,
    render_installed,
)
from layerforge.apk.manager import (
    InstalledDatabasePackageManager,
    PackageManager,
    PackageManagerError,
)
from layerforge.core.fs import WorkingTree
from layerforge.models.packages import (
    FileOwnership,
    InstalledPackage,
    PackageDirectory,
    PackageFile,
)

SAMPLE = """\
C:Q1abcdefabcdefabcdefabcdefabcdefab=
P:musl
V:1.2.4-r2
A:x86_64
S:383152
I:622592
T:the musl c library (libc) implementation
U:https://musl.libc.org/
L:MIT
o:musl
m:Natanael Copa <ncopa@alpinelinux.org>
t:1700000000
c:0123456789abcdef
p:so:libc.musl-x86_64.so.1=1
F:lib
R:ld-musl-x86_64.so.1
a:0:0:755
Z:Q1deadbeefdeadbeefdeadbeefdead=
R:libc.musl-x86_64.so.1

P:busybox
V:1.36.1-r5
A:x86_64
t:1700000500
D:so:libc.musl-x86_64.so.1
F:bin
M:0:0:755
R:busybox
a:0:0:4755
"""


class TestParseInstalled:
    def test_fields(self):
        musl, busybox = parse_installed(SAMPLE)
        assert (musl.name, musl.version, musl.arch) == ("musl", "1.2.4-r2", "x86_64")
        assert musl.license == "MIT"
        assert musl.size == 383152 and musl.installed_size == 622592
        assert musl.build_time == 1700000000
        assert musl.provides == ["so:libc.musl-x86_64.so.1=1"]
        assert busybox.dependencies == ["so:libc.musl-x86_64.so.1"]

    def test_file_paths_and_acls(self):
        musl, busybox = parse_installed(SAMPLE)
        assert [f.path for f in musl.files] == [
            "lib/ld-musl-x86_64.so.1",
            "lib/libc.musl-x86_64.so.1",
        ]
        assert musl.files[0].ownership == FileOwnership(uid=0, gid=0, mode=0o755)
        assert musl.files[0].checksum.startswith("Q1")
        assert busybox.files[0].ownership.mode == 0o4755
        assert busybox.directories[0].ownership == FileOwnership(uid=0, gid=0, mode=0o755)

    def test_malformed_line(self):
        with pytest.raises(InstalledDatabaseError, match="line 1"):
            parse_installed("not a record line\n")

    def test_record_without_name(self):
        with pytest.raises(InstalledDatabaseError):
            parse_installed("V:1.0\n\n")

    def test_bad_integer(self):
        with pytest.raises(InstalledDatabaseError):
            parse_installed("P:x\nV:1\nt:yesterday\n")

    def test_render_round_trip(self):
        packages = [
            InstalledPackage(
                name="conf",
                version="1-r0",
                build_time=5,
                directories=[
                    PackageDirectory(path="etc", ownership=FileOwnership(uid=0, gid=0, mode=0o755))
                ],
                files=[
                    PackageFile(path="top-level"),
                    PackageFile(
                        path="etc/conf",
                        checksum="Q1xyz=",
                        ownership=FileOwnership(uid=10, gid=20, mode=0o640),
                    ),
                ],
            )
        ]
        assert parse_installed(render_installed(packages)) == packages


class TestDerivedData:
    def test_ownership_overrides(self):
        overrides = ownership_overrides(parse_installed(SAMPLE))
        assert overrides["bin/busybox"].mode == 0o4755
        assert overrides["bin"].mode == 0o755
        assert "lib/libc.musl-x86_64.so.1" not in overrides

    def test_newest_build_date(self):
        assert newest_build_date(parse_installed(SAMPLE)) == datetime.fromtimestamp(
            1700000500, tz=timezone.utc
        )
        assert newest_build_date([]) is None

    def test_parse_world_strips_constraints(self):
        assert parse_world("busybox\nmusl>=1.2\nca-certificates~2024\n") == [
            "busybox",
            "musl",
            "ca-certificates",
        ]


class TestInstalledDatabasePackageManager:
    def test_is_a_package_manager(self, hello_tree: WorkingTree):
        assert isinstance(InstalledDatabasePackageManager(hello_tree), PackageManager)

    def test_fixate_and_list(self, hello_tree: WorkingTree):
        pm = InstalledDatabasePackageManager(hello_tree)
        pm.fixate_world(None)
        assert [p.name for p in pm.get_installed()] == ["hello"]

    def test_world_package_missing(self, hello_tree: WorkingTree):
        hello_tree.write_text("etc/apk/world", "hello\nmissing-pkg\n")
        with pytest.raises(PackageManagerError, match="missing-pkg"):
            InstalledDatabasePackageManager(hello_tree).fixate_world(None)

    def test_world_satisfied_by_provides(self, make_rootfs: Callable[..., WorkingTree]):
        tree = make_rootfs(
            packages=[InstalledPackage(name="musl", version="1", provides=["libc=1"])]
        )
        tree.write_text("etc/apk/world", "libc\n")
        InstalledDatabasePackageManager(tree).fixate_world(None)

    def test_missing_database(self, tmp_dir):
        (tmp_dir / "empty").mkdir()
        with pytest.raises(PackageManagerError, match="not found"):
            InstalledDatabasePackageManager(WorkingTree(tmp_dir / "empty")).get_installed()

    def test_resolve_world_conflicts(self, hello_tree: WorkingTree):
        hello_tree.write_text("etc/apk/world", "hello\nghost\n")
        selected, conflicts = InstalledDatabasePackageManager(hello_tree).resolve_world()
        assert [p.name for p in selected] == ["hello"]
        assert conflicts == ["ghost"]
