"""Write-through stream that compresses and double-hashes a layer.

Bytes written to :attr:`StreamingDigestWriter.stream` flow through::

    diff_id sha256 -> gzip -> digest sha256 -> buffered file

so one pass yields both the uncompressed-content digest (the diffID) and the
compressed-blob digest. Output goes to ``<destination>.partial`` and is
renamed into place by :meth:`finish`; :meth:`abort` discards it.
"""

from __future__ import annotations

import gzip
import hashlib
import io
import logging
import os
from pathlib import Path
from typing import Any, BinaryIO

from pydantic import BaseModel, ConfigDict

from layerforge.core.hasher import format_digest

logger = logging.getLogger(__name__)

DEFAULT_BUFFER_SIZE = 1 << 22


class DigestStreamError(RuntimeError):
    """Base class for failures of the digest stream."""


class SinkOpenError(DigestStreamError):
    """The destination file could not be opened."""


class CompressorCloseError(DigestStreamError):
    """The gzip stream could not be finalized."""


class FlushError(DigestStreamError):
    """Buffered output could not be flushed or moved into place."""


class StatError(DigestStreamError):
    """The persisted output could not be stat'ed."""


class DigestResult(BaseModel):
    model_config = ConfigDict(frozen=True)

    path: Path
    diff_id: str
    digest: str
    size: int


class _HashingWriter(io.RawIOBase):
    """Forward writes to *sink* while feeding them to *hasher*."""

    def __init__(self, hasher: Any, sink: BinaryIO) -> None:
        super().__init__()
        self._hasher = hasher
        self._sink = sink

    def writable(self) -> bool:
        return True

    def write(self, data) -> int:  # type: ignore[override]
        view = memoryview(data)
        self._hasher.update(view)
        self._sink.write(view)
        return len(view)


class StreamingDigestWriter:
    """Owns one layer output file for the duration of a build.

    Parameters
    ----------
    destination:
        Final path of the compressed layer.
    compression_level:
        gzip level; fixed per build so output is reproducible.
    buffer_size:
        Size of the write buffer in front of the destination file.
    """

    def __init__(
        self,
        destination: Path,
        *,
        compression_level: int = 9,
        buffer_size: int = DEFAULT_BUFFER_SIZE,
    ) -> None:
        self._destination = Path(destination)
        self._partial = self._destination.with_name(self._destination.name + ".partial")
        self._compression_level = compression_level
        self._buffer_size = buffer_size

        self._diff_id = hashlib.sha256()
        self._digest = hashlib.sha256()
        self._file: BinaryIO | None = None
        self._gzip: gzip.GzipFile | None = None
        self._stream: _HashingWriter | None = None

    @property
    def destination(self) -> Path:
        return self._destination

    @property
    def stream(self) -> BinaryIO:
        """Writable stream for the uncompressed archive bytes."""
        if self._stream is None:
            raise DigestStreamError("digest writer is not open")
        return self._stream  # type: ignore[return-value]

    # ------------------------------------------------------------------
    # Lifecycle
    # ------------------------------------------------------------------

    def open(self) -> StreamingDigestWriter:
        try:
            self._partial.parent.mkdir(parents=True, exist_ok=True)
            self._file = open(self._partial, "wb", buffering=self._buffer_size)
        except OSError as exc:
            raise SinkOpenError(
                f"opening the layer tarball path {self._destination} failed: {exc}"
            ) from exc

        compressed = _HashingWriter(self._digest, self._file)
        # filename="" and mtime=0 keep the gzip header free of build-specific data.
        self._gzip = gzip.GzipFile(
            filename="",
            mode="wb",
            compresslevel=self._compression_level,
            fileobj=compressed,
            mtime=0,
        )
        self._stream = _HashingWriter(self._diff_id, self._gzip)
        return self

    def finish(self) -> DigestResult:
        """Close the compressor, flush, and move the file into place."""
        if self._gzip is None or self._file is None:
            raise DigestStreamError("digest writer is not open")

        try:
            self._gzip.close()
        except (OSError, ValueError) as exc:
            self.abort()
            raise CompressorCloseError(f"closing gzip writer: {exc}") from exc

        try:
            self._file.flush()
        except OSError as exc:
            self.abort()
            raise FlushError(f"flushing {self._destination}: {exc}") from exc

        try:
            size = os.fstat(self._file.fileno()).st_size
        except OSError as exc:
            self.abort()
            raise StatError(f"stat({str(self._destination)!r}): {exc}") from exc

        try:
            self._file.close()
            os.replace(self._partial, self._destination)
        except OSError as exc:
            self.abort()
            raise FlushError(
                f"moving {self._partial} to {self._destination}: {exc}"
            ) from exc
        finally:
            self._file = None
            self._gzip = None
            self._stream = None

        return DigestResult(
            path=self._destination,
            diff_id=format_digest(self._diff_id),
            digest=format_digest(self._digest),
            size=size,
        )

    def abort(self) -> None:
        """Drop all partial output. Safe to call more than once."""
        for closable in (self._gzip, self._file):
            if closable is None:
                continue
            try:
                closable.close()
            except (OSError, ValueError) as exc:
                logger.debug("ignoring close failure during abort: %s", exc)
        self._gzip = None
        self._file = None
        self._stream = None
        if self._partial.exists():
            self._partial.unlink()

    def __enter__(self) -> StreamingDigestWriter:
        return self.open()

    def __exit__(self, exc_type, exc, tb) -> None:
        if exc_type is not None:
            self.abort()
