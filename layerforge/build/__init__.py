"""Per-architecture build contexts and the multi-architecture driver."""

from layerforge.build.context import ArchBuildResult, ArchLoggerAdapter, BuildContext
from layerforge.build.driver import ArchBuildError, BuildResult, MultiArchBuilder

__all__ = [
    "ArchBuildError",
    "ArchBuildResult",
    "ArchLoggerAdapter",
    "BuildContext",
    "BuildResult",
    "MultiArchBuilder",
]
