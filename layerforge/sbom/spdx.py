"""SPDX 2.3 JSON documents for images and indices.

Documents are pure functions of their inputs: the build epoch is the only
timestamp and the namespace is derived from the described digest, so equal
inputs serialize to equal bytes.
"""

from __future__ import annotations

import re
from collections.abc import Mapping, Sequence
from typing import Any

from layerforge.core.epoch import timestamp
from layerforge.core.hasher import digest_hex, sha256_hex
from layerforge.models.packages import InstalledPackage
from layerforge.models.sbom import ImageInfo, IndexInfo, ReleaseData
from layerforge.sbom.formats import TOOL_NAME, apk_purl, oci_purl

SPDX_VERSION = "SPDX-2.3"
DATA_LICENSE = "CC0-1.0"
NAMESPACE_BASE = "https://spdx.org/spdxdocs/layerforge"
NOASSERTION = "NOASSERTION"
DOCUMENT_ID = "SPDXRef-DOCUMENT"

_ID_UNSAFE = re.compile(r"[^A-Za-z0-9.-]+")


def spdx_id(*parts: str) -> str:
    """``SPDXRef-`` identifier built from *parts* with unsafe runs replaced."""
    return "SPDXRef-" + "-".join(_ID_UNSAFE.sub("-", p).strip("-") for p in parts if p)


def _creation_info(epoch) -> dict[str, Any]:
    return {
        "created": timestamp(epoch),
        "creators": [f"Tool: {TOOL_NAME}"],
        "licenseListVersion": "3.22",
    }


def _relationship(element: str, kind: str, related: str) -> dict[str, str]:
    return {
        "spdxElementId": element,
        "relationshipType": kind,
        "relatedSpdxElement": related,
    }


def _checksum(digest: str) -> list[dict[str, str]]:
    return [{"algorithm": "SHA256", "checksumValue": digest_hex(digest)}]


def _purl_ref(purl: str) -> list[dict[str, str]]:
    return [
        {
            "referenceCategory": "PACKAGE-MANAGER",
            "referenceType": "purl",
            "referenceLocator": purl,
        }
    ]


def _image_package(
    *,
    element_id: str,
    name: str,
    digest: str,
    purl: str,
    purpose: str = "CONTAINER",
) -> dict[str, Any]:
    return {
        "SPDXID": element_id,
        "name": name,
        "versionInfo": digest,
        "downloadLocation": NOASSERTION,
        "filesAnalyzed": False,
        "licenseConcluded": NOASSERTION,
        "licenseDeclared": NOASSERTION,
        "copyrightText": NOASSERTION,
        "supplier": NOASSERTION,
        "primaryPackagePurpose": purpose,
        "checksums": _checksum(digest),
        "externalRefs": _purl_ref(purl),
    }


def _apk_package(pkg: InstalledPackage, os_id: str, arch: str) -> dict[str, Any]:
    doc: dict[str, Any] = {
        "SPDXID": spdx_id("Package", pkg.name, pkg.version),
        "name": pkg.name,
        "versionInfo": pkg.version,
        "downloadLocation": pkg.url or NOASSERTION,
        "filesAnalyzed": False,
        "licenseConcluded": NOASSERTION,
        "licenseDeclared": pkg.license or NOASSERTION,
        "copyrightText": NOASSERTION,
        "supplier": f"Organization: {pkg.maintainer}" if pkg.maintainer else NOASSERTION,
        "primaryPackagePurpose": "LIBRARY",
        "externalRefs": _purl_ref(apk_purl(os_id, pkg.name, pkg.version, pkg.arch or arch)),
    }
    if pkg.description:
        doc["description"] = pkg.description
    if pkg.origin and pkg.origin != pkg.name:
        doc["sourceInfo"] = f"built from origin package {pkg.origin}"
    return doc


def image_document(
    info: ImageInfo,
    release: ReleaseData,
    packages: Sequence[InstalledPackage],
    files: Mapping[str, str],
) -> dict[str, Any]:
    """SPDX document for one architecture's image.

    Parameters
    ----------
    info:
        Identity of the image being described.
    release:
        Parsed ``/etc/os-release`` of the image.
    packages:
        Installed packages, in database order.
    files:
        ``path -> sha256:<hex>`` for every regular file in the layer.
    """
    arch = info.arch.to_apk()
    image_id = spdx_id("Image", digest_hex(info.image_digest)[:16])
    os_id = spdx_id("OperatingSystem")
    repository = info.repository or "image"

    doc_packages: list[dict[str, Any]] = [
        _image_package(
            element_id=image_id,
            name=info.name or digest_hex(info.image_digest),
            digest=info.image_digest,
            purl=oci_purl(
                repository,
                info.image_digest,
                arch=info.arch.oci_architecture,
                mediaType=info.image_media_type,
            ),
        ),
        {
            "SPDXID": os_id,
            "name": release.id,
            "versionInfo": release.version_id or NOASSERTION,
            "description": release.pretty_name or release.name or release.id,
            "downloadLocation": release.home_url or NOASSERTION,
            "filesAnalyzed": False,
            "licenseConcluded": NOASSERTION,
            "licenseDeclared": NOASSERTION,
            "copyrightText": NOASSERTION,
            "supplier": NOASSERTION,
            "primaryPackagePurpose": "OPERATING-SYSTEM",
        },
    ]
    relationships = [
        _relationship(DOCUMENT_ID, "DESCRIBES", image_id),
        _relationship(image_id, "CONTAINS", os_id),
    ]

    owner: dict[str, str] = {}
    for pkg in packages:
        pkg_doc = _apk_package(pkg, release.id, arch)
        doc_packages.append(pkg_doc)
        relationships.append(_relationship(os_id, "CONTAINS", pkg_doc["SPDXID"]))
        for f in pkg.files:
            owner.setdefault(f.path, pkg_doc["SPDXID"])

    doc_files: list[dict[str, Any]] = []
    for path in sorted(files):
        file_id = spdx_id("File", sha256_hex(path.encode("utf-8"))[:16])
        doc_files.append(
            {
                "SPDXID": file_id,
                "fileName": f"/{path}",
                "checksums": _checksum(files[path]),
                "licenseConcluded": NOASSERTION,
                "copyrightText": NOASSERTION,
            }
        )
        relationships.append(_relationship(owner.get(path, image_id), "CONTAINS", file_id))

    doc: dict[str, Any] = {
        "SPDXID": DOCUMENT_ID,
        "spdxVersion": SPDX_VERSION,
        "dataLicense": DATA_LICENSE,
        "name": f"sbom-{info.image_digest}",
        "documentNamespace": f"{NAMESPACE_BASE}/{arch}/{digest_hex(info.image_digest)}",
        "creationInfo": _creation_info(info.source_date_epoch),
        "documentDescribes": [image_id],
        "packages": doc_packages,
        "files": doc_files,
        "relationships": relationships,
    }
    if info.layer_digest:
        doc["comment"] = f"layer {info.layer_digest}"
    if info.vcs_url:
        doc_packages[0]["sourceInfo"] = f"built from {info.vcs_url}"
    return doc


def index_document(info: IndexInfo) -> dict[str, Any]:
    """SPDX document for a multi-architecture index and its images."""
    index_id = spdx_id("ImageIndex", digest_hex(info.index_digest)[:16])
    repository = info.repository or "image"

    doc_packages = [
        _image_package(
            element_id=index_id,
            name=info.name or digest_hex(info.index_digest),
            digest=info.index_digest,
            purl=oci_purl(repository, info.index_digest, mediaType=info.index_media_type),
        )
    ]
    relationships = [_relationship(DOCUMENT_ID, "DESCRIBES", index_id)]
    external_refs = []

    for image in info.images:
        image_id = spdx_id("Image", digest_hex(image.image_digest)[:16])
        doc_packages.append(
            _image_package(
                element_id=image_id,
                name=f"{info.name or repository} ({image.arch})",
                digest=image.image_digest,
                purl=oci_purl(
                    repository, image.image_digest, arch=image.arch.oci_architecture
                ),
            )
        )
        relationships.append(_relationship(image_id, "VARIANT_OF", index_id))
        external_refs.append(
            {
                "externalDocumentId": f"DocumentRef-image-{image.arch.to_apk()}",
                "spdxDocument": f"{NAMESPACE_BASE}/{image.arch.to_apk()}/"
                f"{digest_hex(image.image_digest)}",
                "checksum": {
                    "algorithm": "SHA256",
                    "checksumValue": digest_hex(image.sbom_digest),
                },
            }
        )

    doc: dict[str, Any] = {
        "SPDXID": DOCUMENT_ID,
        "spdxVersion": SPDX_VERSION,
        "dataLicense": DATA_LICENSE,
        "name": f"sbom-{info.index_digest}",
        "documentNamespace": f"{NAMESPACE_BASE}/index/{digest_hex(info.index_digest)}",
        "creationInfo": _creation_info(info.source_date_epoch),
        "documentDescribes": [index_id],
        "externalDocumentRefs": external_refs,
        "packages": doc_packages,
        "relationships": relationships,
    }
    if info.vcs_url:
        doc_packages[0]["sourceInfo"] = f"built from {info.vcs_url}"
    return doc
