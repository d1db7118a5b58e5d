"""Multi-architecture build driver.

Each architecture's unit of work runs in its own worker thread. All units
are joined before the index is assembled; the first failure cancels the
units that have not finished yet.
"""

from __future__ import annotations

import logging
import threading
from collections.abc import Mapping
from concurrent.futures import Future, ThreadPoolExecutor, as_completed

from pydantic import BaseModel, ConfigDict

from layerforge.apk.manager import PackageManager
from layerforge.build.context import ArchBuildResult, BuildContext
from layerforge.core.fs import WorkingTree
from layerforge.core.oci import build_index
from layerforge.models.arch import Architecture, sorted_architectures
from layerforge.models.artifacts import IndexArtifact
from layerforge.models.config import BuildConfiguration, ImageConfiguration
from layerforge.models.oci import IndexManifest
from layerforge.models.packages import InstalledPackage
from layerforge.mutate.pipeline import BuildCancelledError
from layerforge.sbom.index import IndexAssembler


class ArchBuildError(RuntimeError):
    """Raised when one architecture's build fails; the cause is chained."""

    def __init__(self, arch: Architecture, cause: BaseException) -> None:
        self.arch = arch
        super().__init__(f"building {arch}: {cause}")


class BuildResult(BaseModel):
    """Outcome of a whole multi-architecture build."""

    model_config = ConfigDict(frozen=True)

    images: list[ArchBuildResult]  # ordered by architecture
    index: IndexManifest
    index_artifact: IndexArtifact

    def for_arch(self, arch: Architecture) -> ArchBuildResult:
        for result in self.images:
            if result.arch == arch:
                return result
        raise KeyError(f"no build result for {arch}")


class MultiArchBuilder:
    """Build every configured architecture, then assemble the index.

    Parameters
    ----------
    config, image_config:
        Shared immutable configuration.
    trees:
        One populated working tree per architecture in ``config.archs``.
    package_managers:
        Optional per-architecture package managers; default to the
        installed-database manager over each tree.
    max_workers:
        Thread pool size; defaults to one worker per architecture.
    """

    def __init__(
        self,
        config: BuildConfiguration,
        image_config: ImageConfiguration,
        trees: Mapping[Architecture, WorkingTree],
        *,
        package_managers: Mapping[Architecture, PackageManager] | None = None,
        max_workers: int | None = None,
        logger: logging.Logger | None = None,
    ) -> None:
        missing = [str(a) for a in config.archs if a not in trees]
        if missing:
            raise ValueError(f"no working tree for architectures: {', '.join(missing)}")

        self._config = config
        self._image_config = image_config
        self._log = logger or logging.getLogger(__name__)
        self._max_workers = max_workers or len(config.archs)
        self._cancel = threading.Event()

        managers = package_managers or {}
        self.contexts: dict[Architecture, BuildContext] = {
            arch: BuildContext(
                config,
                image_config,
                arch,
                trees[arch],
                package_manager=managers.get(arch),
                logger=self._log,
                cancel_event=self._cancel,
            )
            for arch in sorted_architectures(config.archs)
        }

    def cancel(self) -> None:
        """Ask every running unit to stop at its next step boundary."""
        self._cancel.set()

    @property
    def cancelled(self) -> bool:
        return self._cancel.is_set()

    def build_package_list(
        self,
    ) -> dict[Architecture, tuple[list[InstalledPackage], list[str]]]:
        return {arch: ctx.build_package_list() for arch, ctx in self.contexts.items()}

    def build(self) -> BuildResult:
        results = self._build_all()
        images = {arch: results[arch].image for arch in results}
        index = build_index(
            images.values(),
            use_docker=self._config.use_docker_media_types,
            annotations=self._image_config.annotations,
        )

        # Every unit derives the same tags; the first architecture's are used.
        first = results[sorted_architectures(results)[0]]
        epoch = max(r.epoch for r in results.values())
        assembler = IndexAssembler(self._config, self._image_config, logger=self._log)
        artifact = assembler.assemble(index, images, epoch=epoch, tags=first.tags)
        return BuildResult(
            images=[results[a] for a in sorted_architectures(results)],
            index=index,
            index_artifact=artifact,
        )

    def _build_all(self) -> dict[Architecture, ArchBuildResult]:
        results: dict[Architecture, ArchBuildResult] = {}
        failed: tuple[Architecture, BaseException] | None = None

        with ThreadPoolExecutor(
            max_workers=self._max_workers, thread_name_prefix="layerforge"
        ) as pool:
            futures: dict[Future[ArchBuildResult], Architecture] = {
                pool.submit(ctx.run): arch for arch, ctx in self.contexts.items()
            }
            for future in as_completed(futures):
                arch = futures[future]
                if future.cancelled():
                    continue
                try:
                    results[arch] = future.result()
                except BuildCancelledError as exc:
                    self._log.debug("%s", exc)
                    if failed is None:
                        failed = (arch, exc)
                except Exception as exc:
                    self._log.error("build for %s failed, cancelling: %s", arch, exc)
                    if failed is None or isinstance(failed[1], BuildCancelledError):
                        failed = (arch, exc)
                    self._cancel.set()
                    for pending in futures:
                        pending.cancel()

        if failed is not None:
            arch, exc = failed
            raise ArchBuildError(arch, exc) from exc
        return results
