"""Image-level SBOM generation for one architecture."""

from __future__ import annotations

import logging
from collections.abc import Sequence
from datetime import datetime

from layerforge.core.fs import WorkingTree
from layerforge.models.artifacts import SBOMRecord
from layerforge.models.config import BuildConfiguration, ImageConfiguration
from layerforge.models.oci import BuiltImage
from layerforge.sbom.generator import SBOMGenerationError, SBOMGenerator


class SBOMAssembler:
    """Drives an :class:`SBOMGenerator` through its states for one image.

    Parameters
    ----------
    config:
        Build configuration (formats, output location).
    image_config:
        Image configuration; supplies the VCS URL.
    logger:
        Logger (or adapter) passed on to the generator.
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

    def generate_image_sbom(
        self,
        tree: WorkingTree,
        image: BuiltImage,
        *,
        epoch: datetime,
        tags: Sequence[str] = (),
    ) -> list[SBOMRecord]:
        """Write the image's SBOM documents; empty when SBOMs are disabled."""
        if not self._config.want_sbom:
            self._log.warning("skipping SBOM generation")
            return []

        layers = image.manifest.layers
        if len(layers) != 1:
            raise SBOMGenerationError(
                f"image for {image.arch} has {len(layers)} layers, expected exactly 1"
            )
        layer = layers[0]

        self._log.info("generating image SBOM")
        generator = SBOMGenerator(tree, self._config, logger=self._log)
        try:
            layer_path = image.layer_path(layer.digest)
        except KeyError as exc:
            raise SBOMGenerationError(str(exc)) from exc
        generator.bind_layer(layer_path, layer.digest)
        generator.load_release_data()
        generator.load_package_data()
        generator.bind_image_info(
            tag=tags[0] if tags else "",
            image_digest=image.digest,
            arch=image.arch,
            media_type=image.manifest.media_type,
            epoch=epoch,
            vcs_url=self._image_config.vcs_url,
        )
        return generator.generate(self._config.sbom_output_dir)
