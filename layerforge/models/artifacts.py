"""Build output records: immutable once created."""

from __future__ import annotations

from pathlib import Path

from pydantic import BaseModel, ConfigDict

from layerforge.models.arch import Architecture
from layerforge.models.config import SBOMFormat


class LayerArtifact(BaseModel):
    """A compressed layer tarball and its two digests.

    ``diff_id`` covers the uncompressed tar stream; ``digest`` covers the
    gzip bytes on disk and is the registry-addressable blob identity.
    """

    model_config = ConfigDict(frozen=True)

    path: Path
    diff_id: str  # "sha256:<hex>"
    digest: str  # "sha256:<hex>"
    size: int


class SBOMRecord(BaseModel):
    """One SBOM file produced for an image (``arch`` set) or an index."""

    model_config = ConfigDict(frozen=True)

    path: Path
    format: SBOMFormat
    arch: Architecture | None = None
    digest: str  # content digest of the SBOM file itself
    image_digest: str  # image or index digest the document describes


class ArchImageInfo(BaseModel):
    """Per-architecture entry of an index SBOM."""

    model_config = ConfigDict(frozen=True)

    arch: Architecture
    image_digest: str
    sbom_digest: str


class IndexArtifact(BaseModel):
    """Persisted index manifest plus the index-level SBOM records."""

    model_config = ConfigDict(frozen=True)

    path: Path
    size: int
    digest: str
    sboms: list[SBOMRecord] = []
