"""``/etc/os-release`` generation and parsing.

Generation reports a tagged :class:`ReleaseResult` instead of raising for the
"file already present" case, so the pipeline can treat it as a warning by
matching on ``status`` alone.
"""

from __future__ import annotations

from enum import Enum
from typing import Protocol, runtime_checkable

from pydantic import BaseModel, ConfigDict

from layerforge.core.fs import WorkingTree
from layerforge.models.config import BuildConfiguration, ImageConfiguration
from layerforge.models.sbom import ReleaseData

OS_RELEASE_PATH = "etc/os-release"


class ReleaseStatus(str, Enum):
    OK = "ok"
    ALREADY_PRESENT = "already_present"
    ERROR = "error"


class ReleaseResult(BaseModel):
    model_config = ConfigDict(frozen=True)

    status: ReleaseStatus
    detail: str = ""

    @classmethod
    def ok(cls) -> ReleaseResult:
        return cls(status=ReleaseStatus.OK)

    @classmethod
    def already_present(cls, detail: str) -> ReleaseResult:
        return cls(status=ReleaseStatus.ALREADY_PRESENT, detail=detail)

    @classmethod
    def error(cls, detail: str) -> ReleaseResult:
        return cls(status=ReleaseStatus.ERROR, detail=detail)


class ReleaseMetadataError(ValueError):
    """Raised when os-release content cannot be parsed."""


@runtime_checkable
class ReleaseWriter(Protocol):
    """Protocol for release-metadata generators."""

    def generate(
        self,
        tree: WorkingTree,
        config: BuildConfiguration,
        image_config: ImageConfiguration,
    ) -> ReleaseResult:
        ...


def _quote(value: str) -> str:
    if value and all(c.isalnum() or c in "._-" for c in value):
        return value
    escaped = value.replace("\\", "\\\\").replace('"', '\\"')
    return f'"{escaped}"'


class OSReleaseWriter:
    """Write ``/etc/os-release`` from the image's os-release settings."""

    def generate(
        self,
        tree: WorkingTree,
        config: BuildConfiguration,
        image_config: ImageConfiguration,
    ) -> ReleaseResult:
        if tree.exists(OS_RELEASE_PATH):
            return ReleaseResult.already_present(
                f"/{OS_RELEASE_PATH} already exists"
            )

        rel = image_config.os_release
        fields = [
            ("ID", rel.id or "unknown"),
            ("NAME", rel.name or "layerforge-generated image"),
            ("PRETTY_NAME", rel.pretty_name or rel.name or "layerforge-generated image"),
            ("VERSION_ID", rel.version_id),
            ("HOME_URL", rel.home_url),
            ("BUG_REPORT_URL", rel.bug_report_url),
        ]
        content = "".join(f"{k}={_quote(v)}\n" for k, v in fields if v)
        try:
            tree.write_text(OS_RELEASE_PATH, content, 0o644)
        except OSError as exc:
            return ReleaseResult.error(f"writing /{OS_RELEASE_PATH}: {exc}")
        return ReleaseResult.ok()


def parse_os_release(text: str) -> ReleaseData:
    """Parse os-release ``KEY=value`` lines into :class:`ReleaseData`."""
    values: dict[str, str] = {}
    for lineno, raw in enumerate(text.splitlines(), start=1):
        line = raw.strip()
        if not line or line.startswith("#"):
            continue
        key, sep, value = line.partition("=")
        if not sep or not key.replace("_", "").isalnum():
            raise ReleaseMetadataError(f"line {lineno}: malformed entry {raw!r}")
        value = value.strip()
        if len(value) >= 2 and value[0] == value[-1] and value[0] in "\"'":
            value = value[1:-1].replace('\\"', '"').replace("\\\\", "\\")
        values[key] = value

    if not values.get("ID"):
        raise ReleaseMetadataError("os-release has no ID")
    return ReleaseData(
        id=values["ID"],
        name=values.get("NAME", ""),
        pretty_name=values.get("PRETTY_NAME", ""),
        version_id=values.get("VERSION_ID", ""),
        home_url=values.get("HOME_URL", ""),
        bug_report_url=values.get("BUG_REPORT_URL", ""),
    )
