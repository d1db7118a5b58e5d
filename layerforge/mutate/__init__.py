"""Filesystem mutation steps applied before a tree is packaged."""

from layerforge.mutate.pipeline import (
    STEP_ORDER,
    BuildCancelledError,
    MutationPipeline,
    MutationStepError,
    WorkingState,
)
from layerforge.mutate.release import OSReleaseWriter, ReleaseResult, ReleaseStatus
from layerforge.mutate.supervision import S6SupervisionWriter

__all__ = [
    "STEP_ORDER",
    "BuildCancelledError",
    "MutationPipeline",
    "MutationStepError",
    "WorkingState",
    "OSReleaseWriter",
    "ReleaseResult",
    "ReleaseStatus",
    "S6SupervisionWriter",
]
