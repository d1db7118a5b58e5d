"""Package a mutated working tree into a compressed OCI layer."""

from __future__ import annotations

import logging
from collections.abc import Mapping
from datetime import datetime
from pathlib import Path

from layerforge.core.digest_writer import (
    DEFAULT_BUFFER_SIZE,
    DigestStreamError,
    StreamingDigestWriter,
)
from layerforge.core.fs import WorkingTree, WorkingTreeError
from layerforge.core.tarball import TarballError, TarballWriter
from layerforge.models.artifacts import LayerArtifact
from layerforge.models.packages import FileOwnership


class LayerBuildError(RuntimeError):
    """Raised when a layer cannot be serialized or persisted."""


class LayerBuilder:
    """Serialize a tree through a :class:`StreamingDigestWriter`.

    Parameters
    ----------
    compression_level:
        gzip level used for every layer this builder writes.
    buffer_size:
        Write buffer in front of the output file.
    logger:
        Logger (or adapter) used for progress messages.
    """

    def __init__(
        self,
        *,
        compression_level: int = 9,
        buffer_size: int = DEFAULT_BUFFER_SIZE,
        logger: logging.Logger | logging.LoggerAdapter | None = None,
    ) -> None:
        self._compression_level = compression_level
        self._buffer_size = buffer_size
        self._log = logger or logging.getLogger(__name__)

    def build(
        self,
        tree: WorkingTree,
        epoch: datetime,
        destination: Path,
        *,
        overrides: Mapping[str, FileOwnership] | None = None,
    ) -> LayerArtifact:
        """Archive *tree* to *destination* and return the layer artifact."""
        tw = TarballWriter(epoch, overrides=overrides)
        writer = StreamingDigestWriter(
            destination,
            compression_level=self._compression_level,
            buffer_size=self._buffer_size,
        )

        try:
            writer.open()
        except DigestStreamError as exc:
            raise LayerBuildError(str(exc)) from exc

        try:
            count = tw.write_tar(writer.stream, tree)
        except (TarballError, WorkingTreeError) as exc:
            writer.abort()
            raise LayerBuildError(f"failed to generate tarball for image: {exc}") from exc
        except OSError as exc:
            writer.abort()
            raise LayerBuildError(
                f"failed to write tarball stream for {destination}: {exc}"
            ) from exc
        except BaseException:
            writer.abort()
            raise

        try:
            result = writer.finish()
        except DigestStreamError as exc:
            raise LayerBuildError(f"finalizing {destination}: {exc}") from exc

        self._log.info(
            "built image layer tarball as %s (%d entries, %d bytes)",
            result.path,
            count,
            result.size,
        )
        return LayerArtifact(
            path=result.path,
            diff_id=result.diff_id,
            digest=result.digest,
            size=result.size,
        )
