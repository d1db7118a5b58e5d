"""Tests for StreamingDigestWriter: both digests in one pass, atomic output."""

from __future__ import annotations

import gzip
import hashlib
from pathlib import Path

import pytest

from layerforge.core.digest_writer import (
    DigestStreamError,
    SinkOpenError,
    StreamingDigestWriter,
)


def _write(dest: Path, data: bytes, **kwargs) -> object:
    writer = StreamingDigestWriter(dest, **kwargs).open()
    writer.stream.write(data)
    return writer.finish()


class TestStreamingDigestWriter:
    def test_digests_match_content(self, tmp_dir: Path):
        data = b"layer bytes " * 1000
        result = _write(tmp_dir / "layer.tar.gz", data)

        on_disk = (tmp_dir / "layer.tar.gz").read_bytes()
        assert result.diff_id == "sha256:" + hashlib.sha256(data).hexdigest()
        assert result.digest == "sha256:" + hashlib.sha256(on_disk).hexdigest()
        assert result.size == len(on_disk)
        assert gzip.decompress(on_disk) == data

    def test_output_is_reproducible(self, tmp_dir: Path):
        a = _write(tmp_dir / "a.tar.gz", b"same")
        b = _write(tmp_dir / "b.tar.gz", b"same")
        assert (a.diff_id, a.digest, a.size) == (b.diff_id, b.digest, b.size)

    def test_gzip_header_has_no_name_or_mtime(self, tmp_dir: Path):
        _write(tmp_dir / "layer.tar.gz", b"x")
        header = (tmp_dir / "layer.tar.gz").read_bytes()[:10]
        assert header[3] & 0x08 == 0  # FNAME flag unset
        assert header[4:8] == b"\x00\x00\x00\x00"

    def test_partial_until_finish(self, tmp_dir: Path):
        dest = tmp_dir / "layer.tar.gz"
        writer = StreamingDigestWriter(dest).open()
        writer.stream.write(b"data")
        assert not dest.exists()
        assert (tmp_dir / "layer.tar.gz.partial").exists()
        writer.finish()
        assert dest.exists()
        assert not (tmp_dir / "layer.tar.gz.partial").exists()

    def test_abort_discards_partial(self, tmp_dir: Path):
        dest = tmp_dir / "layer.tar.gz"
        writer = StreamingDigestWriter(dest).open()
        writer.stream.write(b"data")
        writer.abort()
        writer.abort()
        assert not dest.exists()
        assert not (tmp_dir / "layer.tar.gz.partial").exists()

    def test_context_manager_aborts_on_error(self, tmp_dir: Path):
        dest = tmp_dir / "layer.tar.gz"
        with pytest.raises(RuntimeError, match="boom"):
            with StreamingDigestWriter(dest) as writer:
                writer.stream.write(b"data")
                raise RuntimeError("boom")
        assert not dest.exists()
        assert not (tmp_dir / "layer.tar.gz.partial").exists()

    def test_open_failure_is_sink_error(self, tmp_dir: Path):
        blocker = tmp_dir / "file"
        blocker.write_text("not a directory")
        with pytest.raises(SinkOpenError):
            StreamingDigestWriter(blocker / "layer.tar.gz").open()

    def test_stream_before_open_fails(self, tmp_dir: Path):
        with pytest.raises(DigestStreamError):
            StreamingDigestWriter(tmp_dir / "x").stream

    def test_compression_level_changes_digest_not_diff_id(self, tmp_dir: Path):
        data = bytes(range(256)) * 512
        fast = _write(tmp_dir / "fast.tar.gz", data, compression_level=1)
        best = _write(tmp_dir / "best.tar.gz", data, compression_level=9)
        assert fast.diff_id == best.diff_id
