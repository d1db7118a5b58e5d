"""Canonical hashing helpers for content addressing.

Every digest produced by layerforge uses the ``sha256:<hex>`` form that OCI
descriptors use, so values can be compared directly against manifests.
"""

from __future__ import annotations

import hashlib
import json
import re
from pathlib import Path
from typing import Any

_DIGEST_RE = re.compile(r"^sha256:[0-9a-f]{64}$")

# Chunk size used when hashing files from disk.
_READ_CHUNK = 1 << 20


def canonical_json_bytes(obj: Any) -> bytes:
    """Produce canonical JSON bytes: deterministic, sorted, compact.

    - sorted keys
    - no whitespace separators (",", ":")
    - ensure_ascii=True
    - UTF-8 encoding
    """
    return json.dumps(
        obj, sort_keys=True, separators=(",", ":"), ensure_ascii=True
    ).encode("utf-8")


def sha256_hex(data: bytes) -> str:
    """Return the SHA-256 hex digest of raw bytes."""
    return hashlib.sha256(data).hexdigest()


def content_address(data: bytes) -> str:
    """Content-address raw bytes in ``sha256:<hex>`` form."""
    return f"sha256:{sha256_hex(data)}"


def format_digest(hasher: Any) -> str:
    """Render a running ``hashlib`` object as ``sha256:<hex>``."""
    return f"{hasher.name}:{hasher.hexdigest()}"


def sha256_for_file(path: Path | str) -> str:
    """Stream a file from disk and return its ``sha256:<hex>`` digest."""
    hasher = hashlib.sha256()
    with open(path, "rb") as fh:
        for chunk in iter(lambda: fh.read(_READ_CHUNK), b""):
            hasher.update(chunk)
    return format_digest(hasher)


def is_digest(value: str) -> bool:
    """Whether *value* is a well-formed ``sha256:<64 hex>`` digest."""
    return bool(_DIGEST_RE.match(value))


def digest_hex(value: str) -> str:
    """Strip the ``sha256:`` prefix from a digest, if present."""
    return value.removeprefix("sha256:")
