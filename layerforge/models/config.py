"""Build and image configuration models.

``BuildConfiguration`` is immutable for the lifetime of a build; anything a
pipeline step derives (extra tags, the resolved epoch) lives on the
per-architecture ``WorkingState`` instead.
"""

from __future__ import annotations

import tempfile
from datetime import datetime, timezone
from enum import Enum
from pathlib import Path

from pydantic import BaseModel, ConfigDict, Field, field_validator, model_validator

from layerforge.models.arch import Architecture


class SBOMFormat(str, Enum):
    """SBOM output formats."""

    SPDX = "spdx"
    CYCLONEDX = "cyclonedx"
    IDB = "idb"

    def __str__(self) -> str:
        return self.value


def default_temp_dir() -> Path:
    return Path(tempfile.gettempdir()) / "layerforge"


class BuildConfiguration(BaseModel):
    """Options that drive one build invocation across all architectures."""

    model_config = ConfigDict(frozen=True)

    archs: list[Architecture] = Field(
        default_factory=lambda: [Architecture.X86_64]
    )
    tags: list[str] = []
    output_dir: Path = Field(default_factory=default_temp_dir)
    tarball_path: Path | None = None
    sbom_formats: list[SBOMFormat] = [SBOMFormat.SPDX]  # first entry is primary
    sbom_path: Path | None = None
    source_date_epoch: datetime | None = None
    use_docker_media_types: bool = False

    # Tag derivation from an installed package's version
    package_version_tag: str = ""
    package_version_tag_stem: bool = False
    package_version_tag_prefix: str = ""

    compression_level: int = Field(default=9, ge=0, le=9)
    write_buffer_size: int = Field(default=1 << 22, gt=0)

    @field_validator("source_date_epoch", mode="before")
    @classmethod
    def _epoch_from_seconds(cls, value: object) -> object:
        if isinstance(value, (int, float)) and not isinstance(value, bool):
            return datetime.fromtimestamp(int(value), tz=timezone.utc)
        if isinstance(value, str) and value.strip().isdigit():
            return datetime.fromtimestamp(int(value.strip()), tz=timezone.utc)
        return value

    @field_validator("source_date_epoch")
    @classmethod
    def _epoch_is_utc(cls, value: datetime | None) -> datetime | None:
        if value is not None and value.tzinfo is None:
            return value.replace(tzinfo=timezone.utc)
        return value

    @model_validator(mode="after")
    def _check_layout(self) -> BuildConfiguration:
        if len(set(self.archs)) != len(self.archs):
            raise ValueError("architectures must be unique")
        if not self.archs:
            raise ValueError("at least one architecture is required")
        if self.tarball_path is not None and len(self.archs) > 1:
            raise ValueError(
                "an explicit tarball path can only be used with a single architecture"
            )
        return self

    # ------------------------------------------------------------------
    # Derived values
    # ------------------------------------------------------------------

    @property
    def temp_dir(self) -> Path:
        return self.output_dir

    def tarball_file_name(self, arch: Architecture) -> str:
        return f"layerforge-{arch.to_apk()}.tar.gz"

    def tarball_location(self, arch: Architecture) -> Path:
        """Explicit tarball path, or the default name inside ``temp_dir``."""
        if self.tarball_path is not None:
            return self.tarball_path
        return self.temp_dir / self.tarball_file_name(arch)

    @property
    def sbom_output_dir(self) -> Path:
        return self.sbom_path if self.sbom_path is not None else self.temp_dir

    @property
    def want_sbom(self) -> bool:
        return len(self.sbom_formats) > 0

    @property
    def primary_sbom_format(self) -> SBOMFormat | None:
        return self.sbom_formats[0] if self.sbom_formats else None


# ---------------------------------------------------------------------------
# Image configuration
# ---------------------------------------------------------------------------


class User(BaseModel):
    model_config = ConfigDict(frozen=True)

    username: str
    uid: int
    gid: int | None = None  # defaults to uid
    home_dir: str = ""
    shell: str = "/bin/sh"


class Group(BaseModel):
    model_config = ConfigDict(frozen=True)

    groupname: str
    gid: int
    members: list[str] = []


class Accounts(BaseModel):
    model_config = ConfigDict(frozen=True)

    run_as: str = ""
    users: list[User] = []
    groups: list[Group] = []


class PathMutationType(str, Enum):
    DIRECTORY = "directory"
    EMPTY_FILE = "empty-file"
    HARDLINK = "hardlink"
    SYMLINK = "symlink"
    PERMISSIONS = "permissions"


class PathMutation(BaseModel):
    """One path directive applied after account mutation."""

    model_config = ConfigDict(frozen=True)

    path: str
    type: PathMutationType
    uid: int = 0
    gid: int = 0
    permissions: int = 0o755
    source: str = ""  # link target for symlink / hardlink
    recursive: bool = False


class Entrypoint(BaseModel):
    model_config = ConfigDict(frozen=True)

    type: str = ""
    command: str = ""
    services: dict[str, str] = {}


class OSRelease(BaseModel):
    model_config = ConfigDict(frozen=True)

    id: str = ""
    name: str = ""
    pretty_name: str = ""
    version_id: str = ""
    home_url: str = ""
    bug_report_url: str = ""


class ImageConfiguration(BaseModel):
    """Image-level settings consumed by the mutation pipeline and SBOMs."""

    model_config = ConfigDict(frozen=True)

    vcs_url: str = ""
    entrypoint: Entrypoint = Entrypoint()
    cmd: str = ""
    work_dir: str = ""
    environment: dict[str, str] = {}
    accounts: Accounts = Accounts()
    paths: list[PathMutation] = []
    os_release: OSRelease = OSRelease()
    annotations: dict[str, str] = {}
