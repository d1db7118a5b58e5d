"""Shared test fixtures for layerforge."""

from __future__ import annotations

from collections.abc import Callable
from datetime import datetime, timezone
from pathlib import Path

import pytest

from layerforge.apk.installed import INSTALLED_DB_PATH, WORLD_PATH, render_installed
from layerforge.core.fs import WorkingTree
from layerforge.models.arch import Architecture
from layerforge.models.config import BuildConfiguration, ImageConfiguration, SBOMFormat
from layerforge.models.packages import InstalledPackage, PackageFile

EPOCH_ZERO = datetime(1970, 1, 1, tzinfo=timezone.utc)


@pytest.fixture
def tmp_dir(tmp_path: Path) -> Path:
    """Provide a temporary directory for test artifacts."""
    return tmp_path


@pytest.fixture
def epoch() -> datetime:
    """The Unix epoch, as a timezone-aware datetime."""
    return EPOCH_ZERO


@pytest.fixture
def hello_package() -> InstalledPackage:
    """A one-file package whose file lives at ``usr/bin/hello``."""
    return InstalledPackage(
        name="hello",
        version="2.12.1-r0",
        arch="x86_64",
        license="GPL-3.0-or-later",
        origin="hello",
        description="the friendly greeter",
        maintainer="Jane Packager <jane@example.org>",
        build_time=1700000000,
        files=[PackageFile(path="usr/bin/hello")],
    )


@pytest.fixture
def make_rootfs(tmp_dir: Path) -> Callable[..., WorkingTree]:
    """Factory fixture: a populated tree with an installed database.

    ``files`` maps tree paths to contents; every package is recorded in
    ``lib/apk/db/installed`` and named in ``etc/apk/world``.
    """
    counter = {"n": 0}

    def _factory(
        packages: list[InstalledPackage] | None = None,
        files: dict[str, bytes] | None = None,
        name: str | None = None,
    ) -> WorkingTree:
        counter["n"] += 1
        root = tmp_dir / (name or f"rootfs-{counter['n']}")
        root.mkdir(parents=True)
        tree = WorkingTree(root)
        packages = packages or []
        for path, data in (files or {}).items():
            tree.write_bytes(path, data, 0o755 if "/bin/" in f"/{path}" else 0o644)
        tree.write_text(INSTALLED_DB_PATH, render_installed(packages))
        tree.write_text(WORLD_PATH, "".join(f"{p.name}\n" for p in packages))
        return tree

    return _factory


@pytest.fixture
def hello_tree(
    make_rootfs: Callable[..., WorkingTree], hello_package: InstalledPackage
) -> WorkingTree:
    """A tree holding just the hello package and its binary."""
    return make_rootfs(
        packages=[hello_package],
        files={"usr/bin/hello": b"#!/bin/sh\necho hello\n"},
    )


@pytest.fixture
def build_config(tmp_dir: Path) -> BuildConfiguration:
    """Single-architecture config, epoch 0, SPDX SBOMs."""
    return BuildConfiguration(
        archs=[Architecture.X86_64],
        tags=["registry.example.org/hello:latest"],
        output_dir=tmp_dir / "out",
        sbom_formats=[SBOMFormat.SPDX],
        source_date_epoch=0,
    )


@pytest.fixture
def image_config() -> ImageConfiguration:
    """An empty image configuration."""
    return ImageConfiguration()
