"""Multi-architecture index assembly: index SBOM plus the persisted index."""

from __future__ import annotations

import logging
from collections.abc import Mapping, Sequence
from datetime import datetime
from pathlib import Path

from layerforge.core.hasher import sha256_for_file
from layerforge.models.arch import Architecture, sorted_architectures
from layerforge.models.artifacts import ArchImageInfo, IndexArtifact, SBOMRecord
from layerforge.models.config import BuildConfiguration, ImageConfiguration, SBOMFormat
from layerforge.models.oci import BuiltImage, IndexManifest
from layerforge.models.sbom import IndexInfo
from layerforge.sbom import cyclonedx, spdx
from layerforge.sbom.formats import (
    INDEX_FORMATS,
    sbom_file_name,
    split_reference,
    write_document,
)

INDEX_FILE_NAME = "index.json"


class IndexAssemblyError(RuntimeError):
    """Raised when the index SBOM or index manifest cannot be produced."""

    def __init__(self, message: str, arch: Architecture | None = None) -> None:
        self.arch = arch
        super().__init__(f"{arch}: {message}" if arch is not None else message)


class IndexAssembler:
    """Assemble the index-level SBOM and write ``index.json``.

    Must only run after every per-architecture build has finished: it reads
    each architecture's SBOM file back from disk.
    """

    def __init__(
        self,
        config: BuildConfiguration,
        image_config: ImageConfiguration,
        *,
        logger: logging.Logger | logging.LoggerAdapter | None = None,
    ) -> None:
        self._config = config
        self._image_config = image_config
        self._log = logger or logging.getLogger(__name__)

    def assemble(
        self,
        index: IndexManifest,
        images: Mapping[Architecture, BuiltImage],
        *,
        epoch: datetime,
        tags: Sequence[str] = (),
    ) -> IndexArtifact:
        """Generate the index SBOM (when enabled) and persist *index*."""
        sboms = self.generate_index_sbom(index, images, epoch=epoch, tags=tags)
        path = self.write_index(index)
        return IndexArtifact(
            path=path, size=len(index.raw), digest=index.digest, sboms=sboms
        )

    def generate_index_sbom(
        self,
        index: IndexManifest,
        images: Mapping[Architecture, BuiltImage],
        *,
        epoch: datetime,
        tags: Sequence[str] = (),
    ) -> list[SBOMRecord]:
        if not self._config.want_sbom:
            self._log.warning("skipping index SBOM generation")
            return []

        fmt = self._config.primary_sbom_format
        if fmt not in INDEX_FORMATS:
            self._log.info("%s SBOMs have no index form, not generating an index SBOM", fmt)
            return []

        self._log.info("generating index SBOM")
        out_dir = self._config.sbom_output_dir
        arch_infos: list[ArchImageInfo] = []
        for arch in sorted_architectures(images):
            image = images[arch]
            if len(image.manifest.layers) != 1:
                raise IndexAssemblyError(
                    f"image has {len(image.manifest.layers)} layers, expected exactly 1",
                    arch,
                )
            sbom_path = out_dir / sbom_file_name(arch, fmt)
            try:
                sbom_digest = sha256_for_file(sbom_path)
            except OSError as exc:
                raise IndexAssemblyError(f"checksumming SBOM: {exc}", arch) from exc
            arch_infos.append(
                ArchImageInfo(arch=arch, image_digest=image.digest, sbom_digest=sbom_digest)
            )

        name, repository, version = "", "", ""
        if tags:
            try:
                repository, version = split_reference(tags[0])
                name = tags[0]
            except ValueError as exc:
                self._log.error("parsing tag %s, ignoring: %s", tags[0], exc)

        info = IndexInfo(
            tag=version,
            name=name,
            repository=repository,
            index_digest=index.digest,
            index_media_type=index.media_type,
            source_date_epoch=epoch,
            vcs_url=self._image_config.vcs_url,
            images=arch_infos,
        )
        module = spdx if fmt is SBOMFormat.SPDX else cyclonedx
        path = out_dir / sbom_file_name(None, fmt)
        try:
            write_document(path, module.index_document(info))
            digest = sha256_for_file(path)
        except OSError as exc:
            raise IndexAssemblyError(f"generating index SBOM: {exc}") from exc
        self._log.info("wrote %s index SBOM to %s", fmt, path)
        return [
            SBOMRecord(path=path, format=fmt, arch=None, digest=digest, image_digest=index.digest)
        ]

    def write_index(self, index: IndexManifest) -> Path:
        """Write the raw index manifest bytes verbatim to ``<temp_dir>/index.json``."""
        path = self._config.temp_dir / INDEX_FILE_NAME
        try:
            path.parent.mkdir(parents=True, exist_ok=True)
            path.write_bytes(index.raw)
        except OSError as exc:
            raise IndexAssemblyError(f"writing index to {path}: {exc}") from exc
        self._log.info("wrote index manifest %s to %s", index.digest, path)
        return path
