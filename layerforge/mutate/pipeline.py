"""Ordered filesystem mutations between package install and packaging.

The order is load-bearing:

    fixate_world -> additional_tags -> accounts -> paths -> os_release
        -> supervision_tree -> busybox_links -> ldconfig_links -> char_devices

Tag derivation and link installation need the final package set; os-release
generation must see final account/path state; the supervision tree is part
of the archived tree. Every step is fatal on failure except ``os_release``
finding an existing file, which is logged as a warning.
"""

from __future__ import annotations

import logging
import threading
from collections.abc import Callable
from dataclasses import dataclass, field
from datetime import datetime

from layerforge.apk.manager import PackageManager
from layerforge.core.epoch import resolve_epoch
from layerforge.core.fs import WorkingTree
from layerforge.models.arch import Architecture
from layerforge.models.config import BuildConfiguration, ImageConfiguration
from layerforge.models.packages import InstalledPackage
from layerforge.mutate.accounts import mutate_accounts
from layerforge.mutate.links import (
    install_busybox_links,
    install_char_devices,
    install_ldconfig_links,
)
from layerforge.mutate.paths import mutate_paths
from layerforge.mutate.release import ReleaseStatus, ReleaseWriter
from layerforge.mutate.supervision import SupervisionWriter
from layerforge.mutate.tags import additional_tags

STEP_ORDER: tuple[str, ...] = (
    "fixate_world",
    "additional_tags",
    "accounts",
    "paths",
    "os_release",
    "supervision_tree",
    "busybox_links",
    "ldconfig_links",
    "char_devices",
)


class MutationStepError(RuntimeError):
    """Raised when a pipeline step fails; names the step and architecture."""

    def __init__(self, step: str, arch: Architecture, cause: BaseException | str) -> None:
        self.step = step
        self.arch = arch
        super().__init__(f"{step} failed for {arch}: {cause}")


class BuildCancelledError(RuntimeError):
    """Raised when a cancellation is observed between steps."""


@dataclass
class WorkingState:
    """Mutable state of one architecture's pipeline run."""

    arch: Architecture
    tree: WorkingTree
    tags: list[str] = field(default_factory=list)
    installed: list[InstalledPackage] = field(default_factory=list)
    epoch: datetime | None = None


class MutationPipeline:
    """Runs the mutation steps in :data:`STEP_ORDER` against a working state.

    Parameters
    ----------
    config, image_config:
        Immutable build and image configuration.
    package_manager, supervision, release_writer:
        External collaborators for the world, services and os-release.
    logger:
        Logger (or adapter) for progress and warnings.
    cancel_event:
        Checked before every step; when set the run stops.
    """

    def __init__(
        self,
        config: BuildConfiguration,
        image_config: ImageConfiguration,
        *,
        package_manager: PackageManager,
        supervision: SupervisionWriter,
        release_writer: ReleaseWriter,
        logger: logging.Logger | logging.LoggerAdapter | None = None,
        cancel_event: threading.Event | None = None,
    ) -> None:
        self._config = config
        self._image_config = image_config
        self._pm = package_manager
        self._supervision = supervision
        self._release = release_writer
        self._log = logger or logging.getLogger(__name__)
        self._cancel = cancel_event

        self._steps: dict[str, Callable[[WorkingState], None]] = {
            "fixate_world": self._fixate_world,
            "additional_tags": self._additional_tags,
            "accounts": self._accounts,
            "paths": self._paths,
            "os_release": self._os_release,
            "supervision_tree": self._supervision_tree,
            "busybox_links": self._busybox_links,
            "ldconfig_links": self._ldconfig_links,
            "char_devices": self._char_devices,
        }

    @property
    def step_names(self) -> tuple[str, ...]:
        return STEP_ORDER

    def run(self, state: WorkingState) -> None:
        for name in STEP_ORDER:
            if self._cancel is not None and self._cancel.is_set():
                raise BuildCancelledError(
                    f"build for {state.arch} cancelled before {name}"
                )
            self._log.debug("running mutation step %s", name)
            try:
                self._steps[name](state)
            except MutationStepError:
                raise
            except Exception as exc:
                raise MutationStepError(name, state.arch, exc) from exc

        self._log.info("finished building filesystem in %s", state.tree.root)

    # ------------------------------------------------------------------
    # Steps
    # ------------------------------------------------------------------

    def _fixate_world(self, state: WorkingState) -> None:
        self._pm.fixate_world(self._config.source_date_epoch)
        state.installed = self._pm.get_installed()
        state.epoch = resolve_epoch(self._config.source_date_epoch, state.installed)
        self._log.info(
            "installed %d packages, build epoch %s",
            len(state.installed),
            state.epoch.isoformat(),
        )

    def _additional_tags(self, state: WorkingState) -> None:
        state.tags.extend(
            additional_tags(state.installed, self._config, state.tags, log=self._log)
        )

    def _accounts(self, state: WorkingState) -> None:
        mutate_accounts(state.tree, self._image_config.accounts)

    def _paths(self, state: WorkingState) -> None:
        mutate_paths(state.tree, self._image_config.paths)

    def _os_release(self, state: WorkingState) -> None:
        result = self._release.generate(state.tree, self._config, self._image_config)
        if result.status is ReleaseStatus.ALREADY_PRESENT:
            self._log.warning("did not generate /etc/os-release: %s", result.detail)
        elif result.status is ReleaseStatus.ERROR:
            raise MutationStepError(
                "os_release",
                state.arch,
                f"failed to generate /etc/os-release: {result.detail}",
            )

    def _supervision_tree(self, state: WorkingState) -> None:
        self._supervision.write_tree(self._image_config.entrypoint.services)

    def _busybox_links(self, state: WorkingState) -> None:
        state.installed = self._pm.get_installed()
        install_busybox_links(state.tree, state.installed)

    def _ldconfig_links(self, state: WorkingState) -> None:
        install_ldconfig_links(state.tree)

    def _char_devices(self, state: WorkingState) -> None:
        install_char_devices(state.tree)
