"""layerforge data models: all Pydantic v2, all frozen (immutable)."""

from layerforge.models.arch import Architecture, sorted_architectures
from layerforge.models.artifacts import (
    ArchImageInfo,
    IndexArtifact,
    LayerArtifact,
    SBOMRecord,
)
from layerforge.models.config import (
    Accounts,
    BuildConfiguration,
    Entrypoint,
    Group,
    ImageConfiguration,
    OSRelease,
    PathMutation,
    PathMutationType,
    SBOMFormat,
    User,
)
from layerforge.models.oci import BuiltImage, Descriptor, ImageManifest, IndexManifest
from layerforge.models.packages import (
    FileOwnership,
    InstalledPackage,
    PackageDirectory,
    PackageFile,
)
from layerforge.models.sbom import (
    VALID_TRANSITIONS,
    ImageInfo,
    IndexInfo,
    ReleaseData,
    SBOMState,
)

__all__ = [
    # arch
    "Architecture",
    "sorted_architectures",
    # config
    "BuildConfiguration",
    "ImageConfiguration",
    "SBOMFormat",
    "Accounts",
    "User",
    "Group",
    "PathMutation",
    "PathMutationType",
    "Entrypoint",
    "OSRelease",
    # artifacts
    "LayerArtifact",
    "SBOMRecord",
    "ArchImageInfo",
    "IndexArtifact",
    # oci
    "Descriptor",
    "ImageManifest",
    "IndexManifest",
    "BuiltImage",
    # packages
    "InstalledPackage",
    "PackageFile",
    "PackageDirectory",
    "FileOwnership",
    # sbom
    "SBOMState",
    "VALID_TRANSITIONS",
    "ReleaseData",
    "ImageInfo",
    "IndexInfo",
]
