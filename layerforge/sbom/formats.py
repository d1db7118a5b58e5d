"""SBOM file naming and serialization shared by every format."""

from __future__ import annotations

import json
import re
from pathlib import Path
from typing import Any

from layerforge.models.arch import Architecture
from layerforge.models.config import SBOMFormat

EXTENSIONS: dict[SBOMFormat, str] = {
    SBOMFormat.SPDX: "spdx.json",
    SBOMFormat.CYCLONEDX: "cdx",
    SBOMFormat.IDB: "idb",
}

# Formats that can describe a multi-architecture index.
INDEX_FORMATS = frozenset({SBOMFormat.SPDX, SBOMFormat.CYCLONEDX})

TOOL_NAME = "layerforge"

_REGISTRY_RE = re.compile(r"^[A-Za-z0-9.-]+(?::\d+)?$")
_COMPONENT_RE = re.compile(r"^[a-z0-9]+(?:(?:[._]|__|-+)[a-z0-9]+)*$")
_VERSION_RE = re.compile(r"^[A-Za-z0-9_][A-Za-z0-9_.-]{0,127}$")


def extension(fmt: SBOMFormat) -> str:
    return EXTENSIONS[fmt]


def sbom_file_name(arch: Architecture | None, fmt: SBOMFormat) -> str:
    """``sbom-<arch>.<ext>`` for an image, ``sbom-index.<ext>`` for an index."""
    stem = "index" if arch is None else arch.to_apk()
    return f"sbom-{stem}.{extension(fmt)}"


def document_bytes(doc: dict[str, Any]) -> bytes:
    return (json.dumps(doc, indent=2, sort_keys=True, ensure_ascii=False) + "\n").encode(
        "utf-8"
    )


def write_document(path: Path, doc: dict[str, Any]) -> None:
    path.parent.mkdir(parents=True, exist_ok=True)
    path.write_bytes(document_bytes(doc))


def split_reference(tag: str) -> tuple[str, str]:
    """``reg.io/org/img:1.0`` -> ``("reg.io/org/img", "1.0")``.

    A reference without a tag gets ``latest``. Raises ``ValueError`` when
    *tag* is not a usable image reference.
    """
    name = tag.strip().partition("@")[0]
    slash = name.rfind("/")
    colon = name.rfind(":")
    if colon > slash:
        repo, version = name[:colon], name[colon + 1:]
    else:
        repo, version = name, "latest"

    components = repo.split("/")
    if len(components) > 1 and _REGISTRY_RE.match(components[0]) and (
        "." in components[0] or ":" in components[0] or components[0] == "localhost"
    ):
        components = components[1:]
    if not components or not all(_COMPONENT_RE.match(c) for c in components):
        raise ValueError(f"invalid image reference {tag!r}")
    if not _VERSION_RE.match(version):
        raise ValueError(f"invalid tag in image reference {tag!r}")
    return repo, version


def oci_purl(repository: str, digest: str, **qualifiers: str) -> str:
    """Package URL for an OCI artifact addressed by digest."""
    name = repository.rpartition("/")[2] or repository
    purl = f"pkg:oci/{name}@{digest.replace(':', '%3A')}"
    quals = {"repository_url": repository, **qualifiers}
    parts = [f"{k}={v}" for k, v in sorted(quals.items()) if v]
    return purl + ("?" + "&".join(parts) if parts else "")


def apk_purl(namespace: str, name: str, version: str, arch: str) -> str:
    purl = f"pkg:apk/{namespace or 'unknown'}/{name}@{version}"
    return f"{purl}?arch={arch}" if arch else purl
