"""Per-architecture SBOM generator.

The generator is a strict state machine; each loading call advances it one
step and calling out of order raises :class:`InvalidSBOMTransitionError`::

    uninitialized -> layer_bound -> release_data_loaded
        -> package_data_loaded -> image_info_bound -> generated
"""

from __future__ import annotations

import hashlib
import logging
import tarfile
from datetime import datetime
from pathlib import Path

from layerforge.apk.installed import (
    INSTALLED_DB_PATH,
    InstalledDatabaseError,
    parse_installed,
)
from layerforge.core.fs import WorkingTree
from layerforge.core.hasher import format_digest, sha256_for_file
from layerforge.models.arch import Architecture
from layerforge.models.artifacts import SBOMRecord
from layerforge.models.config import BuildConfiguration, SBOMFormat
from layerforge.models.packages import InstalledPackage
from layerforge.models.sbom import (
    VALID_TRANSITIONS,
    ImageInfo,
    ReleaseData,
    SBOMState,
)
from layerforge.mutate.release import (
    OS_RELEASE_PATH,
    ReleaseMetadataError,
    parse_os_release,
)
from layerforge.sbom import cyclonedx, spdx
from layerforge.sbom.formats import sbom_file_name, split_reference, write_document

_READ_CHUNK = 1 << 20


class SBOMGenerationError(RuntimeError):
    """Raised when an SBOM input cannot be loaded or a document written."""


class InvalidSBOMTransitionError(RuntimeError):
    """Raised when generator calls are made out of order."""


def layer_file_digests(layer_path: Path) -> dict[str, str]:
    """``path -> sha256:<hex>`` for every regular file in a gzip'd layer."""
    files: dict[str, str] = {}
    with tarfile.open(layer_path, mode="r:gz") as tar:
        for member in tar:
            if not member.isfile():
                continue
            fh = tar.extractfile(member)
            if fh is None:
                continue
            hasher = hashlib.sha256()
            with fh:
                for chunk in iter(lambda: fh.read(_READ_CHUNK), b""):
                    hasher.update(chunk)
            files[member.name.removeprefix("./").lstrip("/")] = format_digest(hasher)
    return files


class SBOMGenerator:
    """Collects SBOM inputs for one image and writes its documents.

    Parameters
    ----------
    tree:
        The image's working tree (source of os-release and package data).
    config:
        Build configuration; supplies the requested formats.
    logger:
        Logger (or adapter) for progress and warnings.
    """

    def __init__(
        self,
        tree: WorkingTree,
        config: BuildConfiguration,
        *,
        logger: logging.Logger | logging.LoggerAdapter | None = None,
    ) -> None:
        self._tree = tree
        self._config = config
        self._log = logger or logging.getLogger(__name__)
        self._state = SBOMState.UNINITIALIZED

        self._layer_digest = ""
        self._files: dict[str, str] = {}
        self._release: ReleaseData | None = None
        self._packages: list[InstalledPackage] = []
        self._installed_raw = b""
        self._image: ImageInfo | None = None

    @property
    def state(self) -> SBOMState:
        return self._state

    @property
    def packages(self) -> list[InstalledPackage]:
        return list(self._packages)

    @property
    def files(self) -> dict[str, str]:
        return dict(self._files)

    def _transition(self, target: SBOMState) -> None:
        allowed = VALID_TRANSITIONS.get(self._state, set())
        if target not in allowed:
            raise InvalidSBOMTransitionError(
                f"Cannot transition SBOM generator from {self._state.value} to "
                f"{target.value}. Allowed: {[s.value for s in allowed]}"
            )
        self._state = target

    # ------------------------------------------------------------------
    # Loading
    # ------------------------------------------------------------------

    def bind_layer(self, layer_path: Path, expected_digest: str) -> None:
        """Verify the layer file against *expected_digest* and index its files."""
        self._transition(SBOMState.LAYER_BOUND)
        try:
            actual = sha256_for_file(layer_path)
        except OSError as exc:
            raise SBOMGenerationError(f"hashing layer {layer_path}: {exc}") from exc
        if actual != expected_digest:
            raise SBOMGenerationError(
                f"layer {layer_path} digest {actual} does not match manifest "
                f"layer digest {expected_digest}"
            )
        try:
            self._files = layer_file_digests(layer_path)
        except (OSError, tarfile.TarError) as exc:
            raise SBOMGenerationError(f"reading layer {layer_path}: {exc}") from exc
        self._layer_digest = expected_digest

    def load_release_data(self) -> ReleaseData:
        self._transition(SBOMState.RELEASE_DATA_LOADED)
        if not self._tree.exists(OS_RELEASE_PATH):
            raise SBOMGenerationError(
                f"reading release data: /{OS_RELEASE_PATH} does not exist"
            )
        try:
            self._release = parse_os_release(self._tree.read_text(OS_RELEASE_PATH))
        except (OSError, ReleaseMetadataError) as exc:
            raise SBOMGenerationError(f"reading release data: {exc}") from exc
        return self._release

    def load_package_data(self) -> list[InstalledPackage]:
        self._transition(SBOMState.PACKAGE_DATA_LOADED)
        try:
            self._installed_raw = self._tree.read_bytes(INSTALLED_DB_PATH)
            self._packages = parse_installed(self._installed_raw.decode("utf-8"))
        except (OSError, UnicodeDecodeError, InstalledDatabaseError) as exc:
            raise SBOMGenerationError(f"getting installed packages from sbom: {exc}") from exc
        return list(self._packages)

    def bind_image_info(
        self,
        *,
        tag: str,
        image_digest: str,
        arch: Architecture,
        media_type: str,
        epoch: datetime,
        vcs_url: str = "",
    ) -> ImageInfo:
        """Record the image identity; an unparsable *tag* is logged and ignored."""
        self._transition(SBOMState.IMAGE_INFO_BOUND)
        name, repository, version = "", "", ""
        if tag:
            try:
                repository, version = split_reference(tag)
                name = tag
            except ValueError as exc:
                self._log.error("parsing tag %s, ignoring: %s", tag, exc)
        self._image = ImageInfo(
            tag=version,
            name=name,
            repository=repository,
            image_digest=image_digest,
            layer_digest=self._layer_digest,
            arch=arch,
            image_media_type=media_type,
            source_date_epoch=epoch,
            vcs_url=vcs_url,
        )
        return self._image

    # ------------------------------------------------------------------
    # Output
    # ------------------------------------------------------------------

    def generate(self, output_dir: Path) -> list[SBOMRecord]:
        """Write one document per configured format into *output_dir*."""
        self._transition(SBOMState.GENERATED)
        if self._image is None or self._release is None:
            raise SBOMGenerationError("image info and release data must be bound first")

        records: list[SBOMRecord] = []
        for fmt in self._config.sbom_formats:
            path = output_dir / sbom_file_name(self._image.arch, fmt)
            try:
                self._write(fmt, path, self._image, self._release)
                digest = sha256_for_file(path)
            except OSError as exc:
                raise SBOMGenerationError(f"generating sbom {path}: {exc}") from exc
            self._log.info("wrote %s SBOM to %s", fmt, path)
            records.append(
                SBOMRecord(
                    path=path,
                    format=fmt,
                    arch=self._image.arch,
                    digest=digest,
                    image_digest=self._image.image_digest,
                )
            )
        return records

    def _write(
        self, fmt: SBOMFormat, path: Path, image: ImageInfo, release: ReleaseData
    ) -> None:
        if fmt is SBOMFormat.IDB:
            path.parent.mkdir(parents=True, exist_ok=True)
            path.write_bytes(self._installed_raw)
            return
        module = spdx if fmt is SBOMFormat.SPDX else cyclonedx
        doc = module.image_document(image, release, self._packages, self._files)
        write_document(path, doc)
