"""Process supervision tree for the image's configured services."""

from __future__ import annotations

from collections.abc import Mapping
from typing import Protocol, runtime_checkable

from layerforge.core.fs import WorkingTree


class SupervisionError(RuntimeError):
    """Raised when the supervision tree cannot be written."""


@runtime_checkable
class SupervisionWriter(Protocol):
    """Protocol for supervision-tree writers."""

    def write_tree(self, services: Mapping[str, str]) -> None:
        ...


class S6SupervisionWriter:
    """Write an s6 service directory per service under ``/sv``.

    Each service gets ``sv/<name>/run``, an execline script running the
    configured command. Services are written in sorted name order.
    """

    def __init__(self, tree: WorkingTree, base: str = "sv") -> None:
        self._tree = tree
        self._base = base

    def write_tree(self, services: Mapping[str, str]) -> None:
        if not services:
            return
        try:
            self._tree.mkdir(self._base, 0o755)
            for name in sorted(services):
                if not name or "/" in name:
                    raise SupervisionError(f"invalid service name {name!r}")
                svc_dir = f"{self._base}/{name}"
                self._tree.mkdir(svc_dir, 0o755)
                script = f"#!/bin/execlineb -P\n{services[name]}\n"
                self._tree.write_text(f"{svc_dir}/run", script, 0o755)
        except OSError as exc:
            raise SupervisionError(f"writing supervision tree: {exc}") from exc
