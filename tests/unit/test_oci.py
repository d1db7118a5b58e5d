"""Tests for image and index assembly."""

from __future__ import annotations

import json
from datetime import datetime
from pathlib import Path

import pytest

from layerforge.core.hasher import content_address
from layerforge.core.oci import (
    SUPERVISOR_ENTRYPOINT,
    ImageAssemblyError,
    build_image,
    build_index,
)
from layerforge.models.arch import Architecture
from layerforge.models.artifacts import LayerArtifact
from layerforge.models.config import Accounts, Entrypoint, ImageConfiguration
from layerforge.models.oci import (
    DOCKER_LAYER_GZIP,
    DOCKER_MANIFEST,
    DOCKER_MANIFEST_LIST,
    OCI_INDEX,
    OCI_MANIFEST,
)


@pytest.fixture
def layer(tmp_dir: Path) -> LayerArtifact:
    return LayerArtifact(
        path=tmp_dir / "layer.tar.gz",
        diff_id="sha256:" + "1" * 64,
        digest="sha256:" + "2" * 64,
        size=1234,
    )


class TestBuildImage:
    def test_manifest_digest_covers_raw_bytes(self, layer: LayerArtifact, epoch: datetime):
        image = build_image(layer, Architecture.X86_64, epoch, ImageConfiguration())
        assert image.digest == content_address(image.manifest.raw)
        doc = json.loads(image.manifest.raw)
        assert doc["mediaType"] == OCI_MANIFEST
        assert doc["layers"] == [
            {
                "mediaType": "application/vnd.oci.image.layer.v1.tar+gzip",
                "digest": layer.digest,
                "size": layer.size,
            }
        ]
        assert image.layer_path(layer.digest) == layer.path

    def test_docker_media_types(self, layer: LayerArtifact, epoch: datetime):
        image = build_image(
            layer, Architecture.X86_64, epoch, ImageConfiguration(), use_docker=True
        )
        assert image.manifest.media_type == DOCKER_MANIFEST
        assert image.manifest.layers[0].media_type == DOCKER_LAYER_GZIP

    def test_deterministic(self, layer: LayerArtifact, epoch: datetime):
        config = ImageConfiguration(environment={"B": "2", "A": "1"}, cmd="/bin/sh -c 'echo hi'")
        a = build_image(layer, Architecture.AARCH64, epoch, config)
        b = build_image(layer, Architecture.AARCH64, epoch, config)
        assert a.manifest.raw == b.manifest.raw

    def test_container_config(self, layer: LayerArtifact, epoch: datetime):
        config = ImageConfiguration(
            entrypoint=Entrypoint(services={"web": "nginx"}),
            cmd="--verbose",
            work_dir="/srv",
            accounts=Accounts(run_as="65532"),
        )
        image = build_image(layer, Architecture.ARMV7, epoch, config)
        assert image.manifest.config.digest == content_address(image.manifest.config_raw)
        doc = json.loads(image.manifest.config_raw)
        assert (doc["architecture"], doc["variant"]) == ("arm", "v7")
        assert doc["created"] == "1970-01-01T00:00:00Z"
        assert doc["rootfs"] == {"type": "layers", "diff_ids": [layer.diff_id]}
        assert doc["config"]["Entrypoint"] == SUPERVISOR_ENTRYPOINT
        assert doc["config"]["Cmd"] == ["--verbose"]
        assert doc["config"]["WorkingDir"] == "/srv"
        assert doc["config"]["User"] == "65532"
        assert doc["config"]["Env"][0].startswith("PATH=")

    def test_missing_layer_file(self, layer: LayerArtifact, epoch: datetime):
        image = build_image(layer, Architecture.X86_64, epoch, ImageConfiguration())
        with pytest.raises(KeyError):
            image.layer_path("sha256:" + "f" * 64)


class TestBuildIndex:
    def _image(self, tmp_dir: Path, arch: Architecture, epoch: datetime, **kwargs):
        layer = LayerArtifact(
            path=tmp_dir / f"{arch}.tar.gz",
            diff_id="sha256:" + "1" * 64,
            digest="sha256:" + "2" * 64,
            size=1,
        )
        return build_image(layer, arch, epoch, ImageConfiguration(), **kwargs)

    def test_manifests_sorted_by_arch(self, tmp_dir: Path, epoch: datetime):
        images = [
            self._image(tmp_dir, arch, epoch)
            for arch in (Architecture.X86_64, Architecture.RISCV64, Architecture.AARCH64)
        ]
        index = build_index(images)
        platforms = [m.platform["architecture"] for m in index.manifests]
        assert platforms == ["arm64", "riscv64", "amd64"]
        assert index.media_type == OCI_INDEX
        assert index.digest == content_address(index.raw)

    def test_docker_manifest_list(self, tmp_dir: Path, epoch: datetime):
        index = build_index([self._image(tmp_dir, Architecture.X86_64, epoch, use_docker=True)], use_docker=True)
        assert index.media_type == DOCKER_MANIFEST_LIST
        assert index.manifests[0].media_type == DOCKER_MANIFEST

    def test_armv7_platform_variant(self, tmp_dir: Path, epoch: datetime):
        index = build_index([self._image(tmp_dir, Architecture.ARMV7, epoch)])
        assert index.manifests[0].platform == {"architecture": "arm", "os": "linux", "variant": "v7"}

    def test_empty_index_rejected(self):
        with pytest.raises(ImageAssemblyError):
            build_index([])
