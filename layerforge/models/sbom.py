"""SBOM generator state model and image identity."""

from __future__ import annotations

from datetime import datetime
from enum import Enum

from pydantic import BaseModel, ConfigDict

from layerforge.models.arch import Architecture
from layerforge.models.artifacts import ArchImageInfo


class SBOMState(str, Enum):
    """Lifecycle of one per-architecture SBOM generator."""

    UNINITIALIZED = "uninitialized"
    LAYER_BOUND = "layer_bound"
    RELEASE_DATA_LOADED = "release_data_loaded"
    PACKAGE_DATA_LOADED = "package_data_loaded"
    IMAGE_INFO_BOUND = "image_info_bound"
    GENERATED = "generated"


# Strictly linear; GENERATED is terminal.
VALID_TRANSITIONS: dict[SBOMState, set[SBOMState]] = {
    SBOMState.UNINITIALIZED: {SBOMState.LAYER_BOUND},
    SBOMState.LAYER_BOUND: {SBOMState.RELEASE_DATA_LOADED},
    SBOMState.RELEASE_DATA_LOADED: {SBOMState.PACKAGE_DATA_LOADED},
    SBOMState.PACKAGE_DATA_LOADED: {SBOMState.IMAGE_INFO_BOUND},
    SBOMState.IMAGE_INFO_BOUND: {SBOMState.GENERATED},
    SBOMState.GENERATED: set(),
}


class ReleaseData(BaseModel):
    """Parsed ``/etc/os-release``."""

    model_config = ConfigDict(frozen=True)

    id: str
    name: str = ""
    pretty_name: str = ""
    version_id: str = ""
    home_url: str = ""
    bug_report_url: str = ""


class ImageInfo(BaseModel):
    """Identity of the image an SBOM describes.

    ``name`` is the full primary reference (``reg.io/org/img:1.0``), ``tag``
    only its tag part (``1.0``) and ``repository`` the part before it. All
    three are empty when no usable reference was given.
    """

    model_config = ConfigDict(frozen=True)

    tag: str = ""
    name: str = ""
    repository: str = ""
    image_digest: str
    layer_digest: str = ""
    arch: Architecture
    image_media_type: str
    source_date_epoch: datetime
    vcs_url: str = ""


class IndexInfo(BaseModel):
    """Identity of a multi-architecture index and its per-arch images.

    Reference fields as for :class:`ImageInfo`.
    """

    model_config = ConfigDict(frozen=True)

    tag: str = ""
    name: str = ""
    repository: str = ""
    index_digest: str
    index_media_type: str
    source_date_epoch: datetime
    vcs_url: str = ""
    images: list[ArchImageInfo] = []
