"""CycloneDX 1.5 JSON documents for images and indices."""

from __future__ import annotations

import uuid
from collections.abc import Mapping, Sequence
from typing import Any

from layerforge.core.epoch import timestamp
from layerforge.core.hasher import digest_hex
from layerforge.models.packages import InstalledPackage
from layerforge.models.sbom import ImageInfo, IndexInfo, ReleaseData
from layerforge.sbom.formats import TOOL_NAME, apk_purl, oci_purl

SPEC_VERSION = "1.5"


def serial_number(digest: str) -> str:
    """Stable ``urn:uuid:`` serial derived from the described digest."""
    return f"urn:uuid:{uuid.uuid5(uuid.NAMESPACE_URL, f'{TOOL_NAME}:{digest}')}"


def _hashes(digest: str) -> list[dict[str, str]]:
    return [{"alg": "SHA-256", "content": digest_hex(digest)}]


def _metadata(epoch, component: dict[str, Any]) -> dict[str, Any]:
    return {
        "timestamp": timestamp(epoch),
        "tools": {"components": [{"type": "application", "name": TOOL_NAME}]},
        "component": component,
    }


def _base(digest: str) -> dict[str, Any]:
    return {
        "bomFormat": "CycloneDX",
        "specVersion": SPEC_VERSION,
        "serialNumber": serial_number(digest),
        "version": 1,
    }


def image_document(
    info: ImageInfo,
    release: ReleaseData,
    packages: Sequence[InstalledPackage],
    files: Mapping[str, str],
) -> dict[str, Any]:
    arch = info.arch.to_apk()
    repository = info.repository or "image"
    image_ref = oci_purl(
        repository,
        info.image_digest,
        arch=info.arch.oci_architecture,
        mediaType=info.image_media_type,
    )
    image: dict[str, Any] = {
        "bom-ref": image_ref,
        "type": "container",
        "name": info.name or digest_hex(info.image_digest),
        "version": info.image_digest,
        "hashes": _hashes(info.image_digest),
        "purl": image_ref,
    }
    if info.vcs_url:
        image["externalReferences"] = [{"type": "vcs", "url": info.vcs_url}]

    os_ref = f"os:{release.id}@{release.version_id or 'unknown'}"
    os_component: dict[str, Any] = {
        "bom-ref": os_ref,
        "type": "operating-system",
        "name": release.id,
        "version": release.version_id,
        "description": release.pretty_name or release.name or release.id,
        "components": [],
    }

    package_refs: list[str] = []
    owner: dict[str, str] = {}
    for pkg in packages:
        purl = apk_purl(release.id, pkg.name, pkg.version, pkg.arch or arch)
        component: dict[str, Any] = {
            "bom-ref": purl,
            "type": "library",
            "name": pkg.name,
            "version": pkg.version,
            "purl": purl,
        }
        if pkg.description:
            component["description"] = pkg.description
        if pkg.license:
            component["licenses"] = [{"expression": pkg.license}]
        if pkg.maintainer:
            component["supplier"] = {"name": pkg.maintainer}
        os_component["components"].append(component)
        package_refs.append(purl)
        for f in pkg.files:
            owner.setdefault(f.path, purl)

    file_components: list[dict[str, Any]] = []
    contained: dict[str, list[str]] = {}
    for path in sorted(files):
        ref = f"file:/{path}"
        file_components.append(
            {
                "bom-ref": ref,
                "type": "file",
                "name": f"/{path}",
                "hashes": _hashes(files[path]),
            }
        )
        contained.setdefault(owner.get(path, image_ref), []).append(ref)

    dependencies = [
        {"ref": image_ref, "dependsOn": [os_ref] + contained.get(image_ref, [])},
        {"ref": os_ref, "dependsOn": package_refs},
    ]
    for ref in package_refs:
        if ref in contained:
            dependencies.append({"ref": ref, "dependsOn": contained[ref]})

    doc = _base(info.image_digest)
    doc["metadata"] = _metadata(info.source_date_epoch, image)
    doc["components"] = [os_component] + file_components
    doc["dependencies"] = dependencies
    if info.layer_digest:
        doc["metadata"]["properties"] = [
            {"name": f"{TOOL_NAME}:layer-digest", "value": info.layer_digest}
        ]
    return doc


def index_document(info: IndexInfo) -> dict[str, Any]:
    repository = info.repository or "image"
    index_ref = oci_purl(repository, info.index_digest, mediaType=info.index_media_type)
    index_component: dict[str, Any] = {
        "bom-ref": index_ref,
        "type": "container",
        "name": info.name or digest_hex(info.index_digest),
        "version": info.index_digest,
        "hashes": _hashes(info.index_digest),
        "purl": index_ref,
    }
    if info.vcs_url:
        index_component["externalReferences"] = [{"type": "vcs", "url": info.vcs_url}]

    components = []
    for image in info.images:
        ref = oci_purl(repository, image.image_digest, arch=image.arch.oci_architecture)
        components.append(
            {
                "bom-ref": ref,
                "type": "container",
                "name": f"{info.name or repository} ({image.arch})",
                "version": image.image_digest,
                "hashes": _hashes(image.image_digest),
                "purl": ref,
                "externalReferences": [
                    {
                        "type": "bom",
                        "url": serial_number(image.image_digest),
                        "hashes": _hashes(image.sbom_digest),
                    }
                ],
            }
        )

    doc = _base(info.index_digest)
    doc["metadata"] = _metadata(info.source_date_epoch, index_component)
    doc["components"] = components
    doc["dependencies"] = [
        {"ref": index_ref, "dependsOn": [c["bom-ref"] for c in components]}
    ]
    return doc
