"""In-memory image and index assembly.

Config, manifest and index documents are serialized as canonical JSON, so
their digests depend only on the layer digests, the epoch and the image
configuration.
"""

from __future__ import annotations

import shlex
from collections.abc import Iterable
from datetime import datetime
from typing import Any, NamedTuple

from layerforge.core.epoch import timestamp
from layerforge.core.hasher import canonical_json_bytes, content_address
from layerforge.models.arch import Architecture, sorted_architectures
from layerforge.models.artifacts import LayerArtifact
from layerforge.models.config import ImageConfiguration
from layerforge.models.oci import (
    DOCKER_CONFIG,
    DOCKER_LAYER_GZIP,
    DOCKER_MANIFEST,
    DOCKER_MANIFEST_LIST,
    OCI_CONFIG,
    OCI_INDEX,
    OCI_LAYER_GZIP,
    OCI_MANIFEST,
    BuiltImage,
    Descriptor,
    ImageManifest,
    IndexManifest,
)

SUPERVISOR_ENTRYPOINT = ["/bin/s6-svscan", "/sv"]
DEFAULT_PATH = "/usr/local/sbin:/usr/local/bin:/usr/sbin:/usr/bin:/sbin:/bin"


class ImageAssemblyError(RuntimeError):
    """Raised when an image or index cannot be assembled."""


class MediaTypes(NamedTuple):
    manifest: str
    index: str
    config: str
    layer: str


OCI_MEDIA_TYPES = MediaTypes(OCI_MANIFEST, OCI_INDEX, OCI_CONFIG, OCI_LAYER_GZIP)
DOCKER_MEDIA_TYPES = MediaTypes(
    DOCKER_MANIFEST, DOCKER_MANIFEST_LIST, DOCKER_CONFIG, DOCKER_LAYER_GZIP
)


def media_types(use_docker: bool) -> MediaTypes:
    return DOCKER_MEDIA_TYPES if use_docker else OCI_MEDIA_TYPES


def _container_config(image_config: ImageConfiguration) -> dict[str, Any]:
    env = {"PATH": DEFAULT_PATH, **image_config.environment}
    config: dict[str, Any] = {"Env": [f"{k}={v}" for k, v in sorted(env.items())]}

    entrypoint = image_config.entrypoint
    if entrypoint.services:
        config["Entrypoint"] = list(SUPERVISOR_ENTRYPOINT)
    elif entrypoint.command:
        config["Entrypoint"] = shlex.split(entrypoint.command)
    if image_config.cmd:
        config["Cmd"] = shlex.split(image_config.cmd)
    if image_config.work_dir:
        config["WorkingDir"] = image_config.work_dir
    if image_config.accounts.run_as:
        config["User"] = image_config.accounts.run_as
    if image_config.annotations:
        config["Labels"] = dict(image_config.annotations)
    return config


def build_image(
    layer: LayerArtifact,
    arch: Architecture,
    epoch: datetime,
    image_config: ImageConfiguration,
    *,
    use_docker: bool = False,
) -> BuiltImage:
    """Wrap a single layer into an image config and manifest."""
    types = media_types(use_docker)
    created = timestamp(epoch)

    config_doc: dict[str, Any] = {
        "architecture": arch.oci_architecture,
        "os": "linux",
        "created": created,
        "config": _container_config(image_config),
        "rootfs": {"type": "layers", "diff_ids": [layer.diff_id]},
        "history": [
            {
                "created": created,
                "created_by": "layerforge",
                "comment": "single-layer image built by layerforge",
            }
        ],
    }
    if arch.oci_variant:
        config_doc["variant"] = arch.oci_variant
    config_raw = canonical_json_bytes(config_doc)

    config_desc = Descriptor(
        media_type=types.config,
        digest=content_address(config_raw),
        size=len(config_raw),
    )
    layer_desc = Descriptor(media_type=types.layer, digest=layer.digest, size=layer.size)

    manifest_doc: dict[str, Any] = {
        "schemaVersion": 2,
        "mediaType": types.manifest,
        "config": config_desc.to_json(),
        "layers": [layer_desc.to_json()],
    }
    if image_config.annotations and not use_docker:
        manifest_doc["annotations"] = dict(image_config.annotations)
    raw = canonical_json_bytes(manifest_doc)

    manifest = ImageManifest(
        media_type=types.manifest,
        raw=raw,
        digest=content_address(raw),
        config=config_desc,
        config_raw=config_raw,
        layers=[layer_desc],
    )
    return BuiltImage(arch=arch, manifest=manifest, layer_files={layer.digest: layer.path})


def build_index(
    images: Iterable[BuiltImage],
    *,
    use_docker: bool = False,
    annotations: dict[str, str] | None = None,
) -> IndexManifest:
    """Index over *images*, ordered by architecture."""
    by_arch = {img.arch: img for img in images}
    if not by_arch:
        raise ImageAssemblyError("cannot build an index without images")
    types = media_types(use_docker)

    manifests = [
        Descriptor(
            media_type=by_arch[arch].manifest.media_type,
            digest=by_arch[arch].digest,
            size=len(by_arch[arch].manifest.raw),
            platform=arch.to_oci_platform(),
        )
        for arch in sorted_architectures(by_arch)
    ]
    index_doc: dict[str, Any] = {
        "schemaVersion": 2,
        "mediaType": types.index,
        "manifests": [m.to_json() for m in manifests],
    }
    if annotations and not use_docker:
        index_doc["annotations"] = dict(annotations)
    raw = canonical_json_bytes(index_doc)
    return IndexManifest(
        media_type=types.index,
        raw=raw,
        digest=content_address(raw),
        manifests=manifests,
    )
