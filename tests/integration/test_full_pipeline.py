"""End-to-end integration tests: trees through layers, images, SBOMs and index.

These tests exercise MultiArchBuilder, the mutation pipeline, LayerBuilder,
image assembly and both SBOM assemblers working together on real trees.
"""

from __future__ import annotations

import gzip
import hashlib
import json
import tarfile
from pathlib import Path

import pytest

from layerforge.build.driver import BuildResult, MultiArchBuilder
from layerforge.core.fs import WorkingTree
from layerforge.models.arch import Architecture
from layerforge.models.config import (
    Accounts,
    BuildConfiguration,
    Entrypoint,
    Group,
    ImageConfiguration,
    PathMutation,
    PathMutationType,
    SBOMFormat,
    User,
)
from layerforge.models.packages import InstalledPackage, PackageFile

ARCHS = (Architecture.X86_64, Architecture.AARCH64)


def _packages(arch: Architecture) -> list[InstalledPackage]:
    return [
        InstalledPackage(
            name="busybox",
            version="1.36.1-r5",
            arch=arch.to_apk(),
            license="GPL-2.0-only",
            build_time=1690000000,
            files=[PackageFile(path="bin/busybox")],
        ),
        InstalledPackage(
            name="hello",
            version="2.12.1-r0",
            arch=arch.to_apk(),
            license="GPL-3.0-or-later",
            build_time=1700000000,
            files=[PackageFile(path="usr/bin/hello")],
        ),
    ]


def _image_config() -> ImageConfiguration:
    return ImageConfiguration(
        entrypoint=Entrypoint(command="/usr/bin/hello --greeting hi"),
        accounts=Accounts(
            run_as="nonroot",
            users=[User(username="nonroot", uid=65532, home_dir="/home/nonroot")],
            groups=[Group(groupname="nonroot", gid=65532, members=["nonroot"])],
        ),
        paths=[
            PathMutation(
                path="/home/nonroot",
                type=PathMutationType.DIRECTORY,
                uid=65532,
                gid=65532,
                permissions=0o750,
            )
        ],
    )


class TestFullPipeline:
    """Populated trees in, reproducible images and SBOMs out."""

    @pytest.fixture
    def populate(self, make_rootfs):
        def _populate(run: str) -> dict[Architecture, WorkingTree]:
            trees = {}
            for arch in ARCHS:
                trees[arch] = make_rootfs(
                    packages=_packages(arch),
                    files={
                        "bin/busybox": f"busybox for {arch}\n".encode(),
                        "etc/busybox-paths.d/busybox": "/bin/sh\n/usr/bin/env\n".encode(),
                        "usr/bin/hello": f"hello for {arch}\n".encode(),
                    },
                    name=f"{run}-{arch}",
                )
            return trees

        return _populate

    def _build(self, tmp_dir: Path, trees, run: str) -> BuildResult:
        config = BuildConfiguration(
            archs=list(ARCHS),
            tags=["registry.example.org/hello:2.12"],
            output_dir=tmp_dir / run,
            sbom_formats=[SBOMFormat.SPDX, SBOMFormat.CYCLONEDX],
            source_date_epoch=0,
        )
        return MultiArchBuilder(config, _image_config(), trees).build()

    def test_rebuild_is_bit_identical(self, tmp_dir: Path, populate):
        first = self._build(tmp_dir, populate("a"), "a")
        second = self._build(tmp_dir, populate("b"), "b")

        for arch in ARCHS:
            one, two = first.for_arch(arch), second.for_arch(arch)
            assert one.layer.diff_id == two.layer.diff_id
            assert one.layer.digest == two.layer.digest
            assert one.layer.path.read_bytes() == two.layer.path.read_bytes()
            assert one.image.digest == two.image.digest
            assert [s.digest for s in one.sboms] == [s.digest for s in two.sboms]
        assert first.index.digest == second.index.digest
        assert first.index_artifact.sboms[0].digest == second.index_artifact.sboms[0].digest

    def test_layer_digests_match_contents(self, tmp_dir: Path, populate):
        result = self._build(tmp_dir, populate("a"), "a")
        layer = result.for_arch(Architecture.X86_64).layer

        raw = layer.path.read_bytes()
        assert layer.digest == "sha256:" + hashlib.sha256(raw).hexdigest()
        assert layer.diff_id == "sha256:" + hashlib.sha256(gzip.decompress(raw)).hexdigest()
        assert layer.size == len(raw)

    def test_tree_mutations_land_in_layer(self, tmp_dir: Path, populate):
        result = self._build(tmp_dir, populate("a"), "a")
        layer = result.for_arch(Architecture.AARCH64).layer
        with tarfile.open(layer.path, "r:gz") as tar:
            members = {m.name: m for m in tar.getmembers()}
            passwd = tar.extractfile("etc/passwd").read().decode()

        assert "nonroot:x:65532:65532" in passwd
        home = members["home/nonroot"]
        assert (home.uid, home.gid, home.mode) == (65532, 65532, 0o750)
        assert members["bin/sh"].issym() and members["bin/sh"].linkname == "/bin/busybox"
        assert members["dev/null"].ischr()
        assert all(m.mtime == 0 for m in members.values())

    def test_sbom_describes_built_image(self, tmp_dir: Path, populate):
        result = self._build(tmp_dir, populate("a"), "a")
        arm = result.for_arch(Architecture.AARCH64)
        spdx_record, cdx_record = arm.sboms

        assert spdx_record.image_digest == arm.image.manifest.digest
        doc = json.loads(spdx_record.path.read_text())
        assert doc["creationInfo"]["created"] == "1970-01-01T00:00:00Z"
        image_pkg = next(p for p in doc["packages"] if p["SPDXID"].startswith("SPDXRef-Image-"))
        assert image_pkg["checksums"][0]["checksumValue"] == arm.image.digest.removeprefix(
            "sha256:"
        )
        names = {p["name"] for p in doc["packages"]}
        assert {"busybox", "hello"} <= names

        cdx = json.loads(cdx_record.path.read_text())
        assert cdx["metadata"]["component"]["version"] == arm.image.digest

    def test_index_sbom_references_each_arch(self, tmp_dir: Path, populate):
        result = self._build(tmp_dir, populate("a"), "a")
        (index_sbom,) = result.index_artifact.sboms
        doc = json.loads(index_sbom.path.read_text())

        checksums = [r["checksum"]["checksumValue"] for r in doc["externalDocumentRefs"]]
        expected = [
            result.for_arch(a).sboms[0].digest.removeprefix("sha256:")
            for a in (Architecture.AARCH64, Architecture.X86_64)
        ]
        assert checksums == expected
        assert index_sbom.image_digest == result.index.digest
