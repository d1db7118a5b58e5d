"""The build epoch: the single timestamp every output is stamped with."""

from __future__ import annotations

from collections.abc import Iterable
from datetime import datetime, timezone

from layerforge.apk.installed import newest_build_date
from layerforge.models.packages import InstalledPackage

UNIX_EPOCH = datetime(1970, 1, 1, tzinfo=timezone.utc)


def resolve_epoch(
    configured: datetime | None, installed: Iterable[InstalledPackage]
) -> datetime:
    """Configured source-date-epoch, else the newest package build, else 0."""
    if configured is not None:
        return configured
    return newest_build_date(installed) or UNIX_EPOCH


def timestamp(epoch: datetime) -> str:
    """RFC 3339 UTC timestamp with second precision."""
    return epoch.astimezone(timezone.utc).strftime("%Y-%m-%dT%H:%M:%SZ")
