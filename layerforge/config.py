"""Environment-driven defaults for the build.

Reads ``LAYERFORGE_*`` environment variables and a ``.env`` file. The
standard ``SOURCE_DATE_EPOCH`` variable is honoured as well, so builds
driven by reproducible-builds tooling need no extra configuration.
"""

from __future__ import annotations

from pathlib import Path

from pydantic import AliasChoices, Field
from pydantic_settings import BaseSettings, SettingsConfigDict

from layerforge.models.config import SBOMFormat, default_temp_dir


class Settings(BaseSettings):
    """Build defaults with environment variable overrides.

    Examples
    --------
    Override via environment::

        export LAYERFORGE_LOG_LEVEL=DEBUG
        export LAYERFORGE_SBOM_FORMATS='["spdx", "cyclonedx"]'
        export SOURCE_DATE_EPOCH=1700000000

    Or via .env file::

        LAYERFORGE_OUTPUT_DIR=/var/tmp/layerforge
        LAYERFORGE_USE_DOCKER_MEDIA_TYPES=true
    """

    model_config = SettingsConfigDict(
        env_file=".env",
        env_prefix="LAYERFORGE_",
        env_file_encoding="utf-8",
        populate_by_name=True,
        extra="ignore",
    )

    log_level: str = "INFO"

    # Output
    output_dir: Path = Field(default_factory=default_temp_dir)
    sbom_formats: list[SBOMFormat] = [SBOMFormat.SPDX]
    use_docker_media_types: bool = False

    # Reproducibility clock, seconds since the Unix epoch
    source_date_epoch: int | None = Field(
        default=None,
        validation_alias=AliasChoices(
            "source_date_epoch", "LAYERFORGE_SOURCE_DATE_EPOCH", "SOURCE_DATE_EPOCH"
        ),
    )

    # Layer compression
    compression_level: int = Field(default=9, ge=0, le=9)
    write_buffer_size: int = Field(default=1 << 22, gt=0)

    # Worker threads for multi-architecture builds (0 = one per architecture)
    max_workers: int = Field(default=0, ge=0)
