"""SBOM generation for images and multi-architecture indices."""

from layerforge.sbom.assembler import SBOMAssembler
from layerforge.sbom.formats import EXTENSIONS, sbom_file_name
from layerforge.sbom.generator import (
    InvalidSBOMTransitionError,
    SBOMGenerationError,
    SBOMGenerator,
)
from layerforge.sbom.index import IndexAssembler, IndexAssemblyError

__all__ = [
    "EXTENSIONS",
    "IndexAssembler",
    "IndexAssemblyError",
    "InvalidSBOMTransitionError",
    "SBOMAssembler",
    "SBOMGenerationError",
    "SBOMGenerator",
    "sbom_file_name",
]
