"""Additional image tags derived from an installed package's version."""

from __future__ import annotations

import logging
import re
from collections.abc import Iterable

from layerforge.models.config import BuildConfiguration
from layerforge.models.packages import InstalledPackage

logger = logging.getLogger(__name__)

_REVISION_RE = re.compile(r"-r\d+$")
_TAG_RE = re.compile(r"^[A-Za-z0-9_][A-Za-z0-9_.-]{0,127}$")


class TagDerivationError(ValueError):
    """Raised when tag derivation is configured but cannot be satisfied."""


def _repository(tag: str) -> str:
    """``reg.io/org/img:1.0`` -> ``reg.io/org/img``; registry ports are kept."""
    name = tag.partition("@")[0]
    slash = name.rfind("/")
    colon = name.rfind(":")
    if colon > slash:
        return name[:colon]
    return name


def stemmed_versions(version: str) -> list[str]:
    """``1.2.3-r4`` -> ``["1.2.3-r4", "1.2.3", "1.2", "1"]`` (no duplicates)."""
    out = [version]
    base = _REVISION_RE.sub("", version)
    parts = base.split(".")
    for n in range(len(parts), 0, -1):
        stem = ".".join(parts[:n])
        if stem and stem not in out:
            out.append(stem)
    return out


def additional_tags(
    installed: Iterable[InstalledPackage],
    config: BuildConfiguration,
    tags: list[str],
    *,
    log: logging.Logger | logging.LoggerAdapter | None = None,
) -> list[str]:
    """Tags to append for ``config.package_version_tag``; may be empty."""
    log = log or logger
    if not config.package_version_tag:
        return []

    version = ""
    for pkg in installed:
        if pkg.name == config.package_version_tag:
            version = pkg.version
            break
    if not version:
        log.warning(
            "no version info found for package %s, skipping additional tagging",
            config.package_version_tag,
        )
        return []

    versions = stemmed_versions(version) if config.package_version_tag_stem else [version]
    new_tags: list[str] = []
    for tag in tags:
        repo = _repository(tag)
        for v in versions:
            suffix = f"{config.package_version_tag_prefix}{v}"
            if not _TAG_RE.match(suffix):
                raise TagDerivationError(f"derived tag {suffix!r} is not a valid image tag")
            candidate = f"{repo}:{suffix}"
            if candidate not in tags and candidate not in new_tags:
                new_tags.append(candidate)
    log.info("appending %d version-derived tags", len(new_tags))
    return new_tags
