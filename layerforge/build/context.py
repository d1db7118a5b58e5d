"""Per-architecture build context.

One :class:`BuildContext` exists per target architecture per build. It owns
that architecture's working tree and mutable state, and runs the sequence
mutate -> layer -> image -> SBOM strictly in order.
"""

from __future__ import annotations

import logging
import threading
from collections.abc import MutableMapping
from datetime import datetime
from typing import Any

from pydantic import BaseModel, ConfigDict

from layerforge.apk.installed import ownership_overrides
from layerforge.apk.manager import InstalledDatabasePackageManager, PackageManager
from layerforge.core.epoch import resolve_epoch
from layerforge.core.fs import WorkingTree
from layerforge.core.layer_builder import LayerBuilder
from layerforge.core.oci import build_image
from layerforge.models.arch import Architecture
from layerforge.models.artifacts import LayerArtifact, SBOMRecord
from layerforge.models.config import BuildConfiguration, ImageConfiguration
from layerforge.models.oci import BuiltImage
from layerforge.models.packages import InstalledPackage
from layerforge.mutate.pipeline import BuildCancelledError, MutationPipeline, WorkingState
from layerforge.mutate.release import OSReleaseWriter, ReleaseWriter
from layerforge.mutate.supervision import S6SupervisionWriter, SupervisionWriter
from layerforge.sbom.assembler import SBOMAssembler


class ArchLoggerAdapter(logging.LoggerAdapter):
    """Prefix every message with the architecture being built."""

    def process(
        self, msg: Any, kwargs: MutableMapping[str, Any]
    ) -> tuple[Any, MutableMapping[str, Any]]:
        return f"[{self.extra['arch']}] {msg}", kwargs


class ArchBuildResult(BaseModel):
    """Everything one architecture's build produced."""

    model_config = ConfigDict(frozen=True)

    arch: Architecture
    epoch: datetime
    tags: list[str]
    layer: LayerArtifact
    image: BuiltImage
    sboms: list[SBOMRecord] = []


class BuildContext:
    """Owns one architecture's tree, state and collaborators.

    Parameters
    ----------
    config, image_config:
        Shared immutable configuration.
    arch:
        Architecture this context builds.
    tree:
        The architecture's working tree; nothing else may write to it.
    package_manager, supervision, release_writer:
        Collaborators; default to implementations over *tree*.
    logger:
        Base logger, wrapped in an :class:`ArchLoggerAdapter`.
    cancel_event:
        Shared cancellation signal, checked between steps.
    """

    def __init__(
        self,
        config: BuildConfiguration,
        image_config: ImageConfiguration,
        arch: Architecture,
        tree: WorkingTree,
        *,
        package_manager: PackageManager | None = None,
        supervision: SupervisionWriter | None = None,
        release_writer: ReleaseWriter | None = None,
        logger: logging.Logger | None = None,
        cancel_event: threading.Event | None = None,
    ) -> None:
        self.config = config
        self.image_config = image_config
        self.arch = arch
        self.tree = tree
        self.package_manager = package_manager or InstalledDatabasePackageManager(tree)
        self.supervision = supervision or S6SupervisionWriter(tree)
        self.release_writer = release_writer or OSReleaseWriter()
        self.log = ArchLoggerAdapter(logger or logging.getLogger(__name__), {"arch": str(arch)})
        self.cancel_event = cancel_event or threading.Event()
        self.state = WorkingState(arch=arch, tree=tree, tags=list(config.tags))

    def __repr__(self) -> str:
        return f"<BuildContext arch={self.arch} tree={str(self.tree.root)!r}>"

    @property
    def epoch(self) -> datetime:
        """Resolved build epoch; valid before the pipeline runs as well."""
        if self.state.epoch is not None:
            return self.state.epoch
        return resolve_epoch(self.config.source_date_epoch, self.state.installed)

    @property
    def tags(self) -> list[str]:
        return list(self.state.tags)

    def _check_cancelled(self, what: str) -> None:
        if self.cancel_event.is_set():
            raise BuildCancelledError(f"build for {self.arch} cancelled before {what}")

    # ------------------------------------------------------------------
    # Operations
    # ------------------------------------------------------------------

    def build_package_list(self) -> tuple[list[InstalledPackage], list[str]]:
        """Packages the world resolves to, plus unresolvable names."""
        return self.package_manager.resolve_world()

    def build_image(self) -> None:
        """Run the mutation pipeline over the tree."""
        pipeline = MutationPipeline(
            self.config,
            self.image_config,
            package_manager=self.package_manager,
            supervision=self.supervision,
            release_writer=self.release_writer,
            logger=self.log,
            cancel_event=self.cancel_event,
        )
        pipeline.run(self.state)

    def build_tarball(self) -> LayerArtifact:
        """Archive the mutated tree to the configured tarball location."""
        self._check_cancelled("build_tarball")
        builder = LayerBuilder(
            compression_level=self.config.compression_level,
            buffer_size=self.config.write_buffer_size,
            logger=self.log,
        )
        destination = self.config.tarball_location(self.arch)
        destination.parent.mkdir(parents=True, exist_ok=True)
        return builder.build(
            self.tree,
            self.epoch,
            destination,
            overrides=ownership_overrides(self.state.installed),
        )

    def build_layer(self) -> LayerArtifact:
        """Mutate the tree, then archive it: the full path to a layer."""
        self.build_image()
        return self.build_tarball()

    def assemble_image(self, layer: LayerArtifact) -> BuiltImage:
        self._check_cancelled("assemble_image")
        image = build_image(
            layer,
            self.arch,
            self.epoch,
            self.image_config,
            use_docker=self.config.use_docker_media_types,
        )
        self.log.info("assembled image %s", image.digest)
        return image

    def generate_image_sbom(self, image: BuiltImage) -> list[SBOMRecord]:
        self._check_cancelled("generate_image_sbom")
        assembler = SBOMAssembler(self.config, self.image_config, logger=self.log)
        return assembler.generate_image_sbom(
            self.tree, image, epoch=self.epoch, tags=self.state.tags
        )

    def run(self) -> ArchBuildResult:
        """The whole per-architecture unit of work."""
        layer = self.build_layer()
        image = self.assemble_image(layer)
        sboms = self.generate_image_sbom(image)
        return ArchBuildResult(
            arch=self.arch,
            epoch=self.epoch,
            tags=self.tags,
            layer=layer,
            image=image,
            sboms=sboms,
        )
