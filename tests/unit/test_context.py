"""Tests for per-architecture build contexts and the multi-arch driver."""

from __future__ import annotations

import json
import logging
import os
import threading

import pytest

from layerforge.apk.installed import WORLD_PATH
from layerforge.build.context import ArchLoggerAdapter, BuildContext
from layerforge.build.driver import ArchBuildError, MultiArchBuilder
from layerforge.models.arch import Architecture
from layerforge.models.config import BuildConfiguration, SBOMFormat
from layerforge.mutate.pipeline import BuildCancelledError, MutationStepError

ARM = Architecture.AARCH64
AMD = Architecture.X86_64


def _multi_config(tmp_dir, **kwargs) -> BuildConfiguration:
    kwargs.setdefault("sbom_formats", [SBOMFormat.SPDX])
    return BuildConfiguration(
        archs=[AMD, ARM],
        tags=["registry.example.org/hello:latest"],
        output_dir=tmp_dir / "out",
        source_date_epoch=0,
        **kwargs,
    )


@pytest.fixture
def arch_trees(make_rootfs, hello_package):
    """One hello tree per architecture."""
    trees = {}
    for arch in (AMD, ARM):
        pkg = hello_package.model_copy(update={"arch": arch.to_apk()})
        trees[arch] = make_rootfs(
            packages=[pkg],
            files={"usr/bin/hello": f"hello {arch}\n".encode()},
            name=f"rootfs-{arch}",
        )
    return trees


class TestArchLoggerAdapter:
    def test_prefixes_arch(self, caplog):
        log = ArchLoggerAdapter(logging.getLogger("layerforge.test"), {"arch": "aarch64"})
        with caplog.at_level("INFO", logger="layerforge.test"):
            log.info("hello %s", "world")
        assert "[aarch64] hello world" in caplog.text


class TestBuildContext:
    def test_run_produces_layer_image_and_sbom(self, build_config, image_config, hello_tree):
        ctx = BuildContext(build_config, image_config, AMD, hello_tree)
        result = ctx.run()

        assert result.arch is AMD
        assert result.layer.path == build_config.tarball_location(AMD)
        assert result.layer.path.exists()
        assert result.image.manifest.layers[0].digest == result.layer.digest
        assert [s.path.name for s in result.sboms] == ["sbom-x86_64.spdx.json"]
        assert result.sboms[0].image_digest == result.image.digest
        assert result.tags == ["registry.example.org/hello:latest"]
        assert hello_tree.exists("etc/os-release")
        assert hello_tree.exists("dev/null")

    def test_epoch_falls_back_to_newest_package(self, tmp_dir, image_config, hello_tree):
        config = BuildConfiguration(output_dir=tmp_dir / "out", sbom_formats=[])
        ctx = BuildContext(config, image_config, AMD, hello_tree)
        result = ctx.run()
        assert result.epoch.timestamp() == 1700000000
        assert result.sboms == []

    def test_build_package_list(self, build_config, image_config, hello_tree):
        ctx = BuildContext(build_config, image_config, AMD, hello_tree)
        packages, missing = ctx.build_package_list()
        assert [p.name for p in packages] == ["hello"]
        assert missing == []

    def test_layer_independent_of_umask(self, tmp_dir, image_config, make_rootfs, hello_package):
        layers = []
        for umask in (0o022, 0o077):
            tree = make_rootfs(
                packages=[hello_package],
                files={"usr/bin/hello": b"#!/bin/sh\necho hello\n"},
                name=f"rootfs-{umask:o}",
            )
            config = BuildConfiguration(
                output_dir=tmp_dir / f"out-{umask:o}", source_date_epoch=0, sbom_formats=[]
            )
            old = os.umask(umask)
            try:
                layers.append(BuildContext(config, image_config, AMD, tree).run().layer)
            finally:
                os.umask(old)
        first, second = layers
        assert (first.diff_id, first.digest, first.size) == (
            second.diff_id,
            second.digest,
            second.size,
        )

    def test_cancelled_before_tarball(self, build_config, image_config, hello_tree):
        event = threading.Event()
        ctx = BuildContext(build_config, image_config, AMD, hello_tree, cancel_event=event)
        ctx.build_image()
        event.set()
        with pytest.raises(BuildCancelledError, match="before build_tarball"):
            ctx.build_tarball()
        assert not build_config.tarball_location(AMD).exists()


class TestMultiArchBuilder:
    def test_missing_tree_rejected(self, tmp_dir, image_config, arch_trees):
        with pytest.raises(ValueError, match="aarch64"):
            MultiArchBuilder(_multi_config(tmp_dir), image_config, {AMD: arch_trees[AMD]})

    def test_builds_every_arch_and_index(self, tmp_dir, image_config, arch_trees):
        config = _multi_config(tmp_dir)
        result = MultiArchBuilder(config, image_config, arch_trees).build()

        assert [r.arch for r in result.images] == [ARM, AMD]
        assert result.for_arch(ARM).image.digest != result.for_arch(AMD).image.digest

        index = json.loads(result.index.raw)
        assert [m["platform"]["architecture"] for m in index["manifests"]] == ["arm64", "amd64"]
        assert result.index_artifact.path.read_bytes() == result.index.raw
        assert [s.path.name for s in result.index_artifact.sboms] == ["sbom-index.spdx.json"]
        for name in ("sbom-aarch64.spdx.json", "sbom-x86_64.spdx.json"):
            assert (config.sbom_output_dir / name).exists()

    def test_failure_names_arch_and_chains_cause(self, tmp_dir, image_config, arch_trees):
        arch_trees[ARM].write_text(WORLD_PATH, "hello\nmissing-pkg\n")
        builder = MultiArchBuilder(_multi_config(tmp_dir), image_config, arch_trees)

        with pytest.raises(ArchBuildError) as info:
            builder.build()
        assert info.value.arch is ARM
        assert isinstance(info.value.__cause__, MutationStepError)
        assert info.value.__cause__.step == "fixate_world"
        assert builder.cancelled
        assert not (tmp_dir / "out" / "index.json").exists()

    def test_cancel_before_build(self, tmp_dir, image_config, arch_trees):
        builder = MultiArchBuilder(_multi_config(tmp_dir), image_config, arch_trees)
        builder.cancel()
        with pytest.raises(ArchBuildError) as info:
            builder.build()
        assert isinstance(info.value.__cause__, BuildCancelledError)

    def test_package_lists_per_arch(self, tmp_dir, image_config, arch_trees):
        builder = MultiArchBuilder(_multi_config(tmp_dir), image_config, arch_trees)
        lists = builder.build_package_list()
        assert set(lists) == {AMD, ARM}
        assert lists[ARM][0][0].arch == "aarch64"
