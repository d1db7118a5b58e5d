"""OCI / Docker manifest models used when assembling images and indices."""

from __future__ import annotations

from pathlib import Path

from pydantic import BaseModel, ConfigDict

from layerforge.models.arch import Architecture

# Media types
OCI_MANIFEST = "application/vnd.oci.image.manifest.v1+json"
OCI_INDEX = "application/vnd.oci.image.index.v1+json"
OCI_CONFIG = "application/vnd.oci.image.config.v1+json"
OCI_LAYER_GZIP = "application/vnd.oci.image.layer.v1.tar+gzip"

DOCKER_MANIFEST = "application/vnd.docker.distribution.manifest.v2+json"
DOCKER_MANIFEST_LIST = "application/vnd.docker.distribution.manifest.list.v2+json"
DOCKER_CONFIG = "application/vnd.docker.container.image.v1+json"
DOCKER_LAYER_GZIP = "application/vnd.docker.image.rootfs.diff.tar.gzip"


class Descriptor(BaseModel):
    """ref: https://github.com/opencontainers/image-spec/blob/main/descriptor.md"""

    model_config = ConfigDict(frozen=True)

    media_type: str
    digest: str
    size: int
    platform: dict[str, str] | None = None
    annotations: dict[str, str] | None = None

    def to_json(self) -> dict:
        out: dict = {
            "mediaType": self.media_type,
            "digest": self.digest,
            "size": self.size,
        }
        if self.platform:
            out["platform"] = dict(self.platform)
        if self.annotations:
            out["annotations"] = dict(self.annotations)
        return out


class ImageManifest(BaseModel):
    model_config = ConfigDict(frozen=True)

    media_type: str
    raw: bytes
    digest: str
    config: Descriptor
    config_raw: bytes = b""
    layers: list[Descriptor]


class IndexManifest(BaseModel):
    model_config = ConfigDict(frozen=True)

    media_type: str
    raw: bytes
    digest: str
    manifests: list[Descriptor]


class BuiltImage(BaseModel):
    """An assembled single-architecture image and where its layers live."""

    model_config = ConfigDict(frozen=True)

    arch: Architecture
    manifest: ImageManifest
    layer_files: dict[str, Path]  # layer digest -> local tarball

    @property
    def digest(self) -> str:
        return self.manifest.digest

    def layer_path(self, digest: str) -> Path:
        try:
            return self.layer_files[digest]
        except KeyError:
            raise KeyError(f"no local file for layer {digest} of {self.arch}") from None
