"""layerforge: reproducible single-layer OCI images with SBOMs.

Takes populated per-architecture filesystem trees through a fixed mutation
pipeline (accounts, paths, os-release, service supervision, links, device
nodes), serializes each into a deterministic gzip'd tar layer, wraps it in
an OCI or Docker image, and emits SPDX / CycloneDX / installed-db SBOMs
for every image and for the multi-architecture index.
"""

__version__ = "0.1.0"

from layerforge.build.driver import BuildResult, MultiArchBuilder
from layerforge.build.context import BuildContext
from layerforge.models.config import BuildConfiguration, ImageConfiguration

__all__ = [
    "BuildConfiguration",
    "BuildContext",
    "BuildResult",
    "ImageConfiguration",
    "MultiArchBuilder",
    "__version__",
]
