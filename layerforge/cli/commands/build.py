"""``layerforge build``: build every architecture and assemble the index.

Each ``--tree ARCH=PATH`` names a directory whose packages are already
unpacked and recorded in ``lib/apk/db/installed``. Trees are copied to a
scratch directory first, so the inputs are left untouched, unless
``--in-place`` is given.
"""

from __future__ import annotations

import json
import shutil
import tempfile
from contextlib import ExitStack
from pathlib import Path

import typer
from pydantic import ValidationError
from rich.console import Console
from rich.panel import Panel
from rich.table import Table

from layerforge.build.driver import ArchBuildError, MultiArchBuilder
from layerforge.config import Settings
from layerforge.core.fs import WorkingTree
from layerforge.models.arch import Architecture
from layerforge.models.config import BuildConfiguration, ImageConfiguration, SBOMFormat
from layerforge.sbom.index import IndexAssemblyError

console = Console()


def parse_tree_option(value: str) -> tuple[Architecture, Path]:
    """``aarch64=/srv/rootfs-arm64`` -> ``(Architecture.AARCH64, Path(...))``."""
    arch_name, sep, path = value.partition("=")
    if not sep or not path:
        raise typer.BadParameter(f"expected ARCH=PATH, got {value!r}")
    try:
        arch = Architecture.parse(arch_name)
    except ValueError as exc:
        raise typer.BadParameter(str(exc)) from exc
    root = Path(path)
    if not root.is_dir():
        raise typer.BadParameter(f"tree {root} is not a directory")
    return arch, root


def load_image_config(path: Path | None) -> ImageConfiguration:
    if path is None:
        return ImageConfiguration()
    try:
        return ImageConfiguration.model_validate(json.loads(path.read_text(encoding="utf-8")))
    except (OSError, json.JSONDecodeError, ValidationError) as exc:
        raise typer.BadParameter(f"reading image configuration {path}: {exc}") from exc


def build_cmd(
    trees: list[str] = typer.Option(
        ...,
        "--tree",
        "-t",
        help="ARCH=PATH of a populated tree; repeat for multiple architectures.",
    ),
    image_config_path: Path = typer.Option(
        None,
        "--image-config",
        "-c",
        help="JSON file with the image configuration.",
    ),
    tags: list[str] = typer.Option(
        [],
        "--tag",
        help="Image tag; the first one names the SBOMs. May be repeated.",
    ),
    output_dir: Path = typer.Option(
        None,
        "--output-dir",
        "-o",
        help="Directory for layers, SBOMs and index.json.",
    ),
    tarball: Path = typer.Option(
        None,
        "--tarball",
        help="Explicit layer path (single architecture only).",
    ),
    sbom_formats: list[SBOMFormat] = typer.Option(
        None,
        "--sbom-format",
        help="SBOM format; the first one is primary. May be repeated.",
    ),
    no_sbom: bool = typer.Option(False, "--no-sbom", help="Disable SBOM generation."),
    sbom_path: Path = typer.Option(None, "--sbom-path", help="Directory for SBOM files."),
    source_date_epoch: int = typer.Option(
        None,
        "--source-date-epoch",
        help="Reproducibility clock in seconds (default: SOURCE_DATE_EPOCH).",
    ),
    docker_media_types: bool = typer.Option(
        None,
        "--docker-media-types/--oci-media-types",
        help="Emit Docker instead of OCI media types.",
    ),
    package_version_tag: str = typer.Option(
        "",
        "--package-version-tag",
        help="Derive extra tags from this installed package's version.",
    ),
    stem: bool = typer.Option(
        False, "--package-version-tag-stem", help="Also tag stemmed versions."
    ),
    tag_prefix: str = typer.Option(
        "", "--package-version-tag-prefix", help="Prefix for version-derived tags."
    ),
    in_place: bool = typer.Option(
        False,
        "--in-place",
        help="Mutate the given trees directly instead of scratch copies.",
    ),
) -> None:
    """Build a reproducible single-layer image per architecture.

    Runs the mutation pipeline, writes the layer tarball, assembles the
    image and its SBOMs for every tree, then writes the index SBOM and
    ``index.json``.
    """
    settings = Settings()
    parsed = [parse_tree_option(t) for t in trees]
    archs = [arch for arch, _ in parsed]
    if len(set(archs)) != len(archs):
        raise typer.BadParameter("each architecture may only be given once", param_hint="--tree")
    image_config = load_image_config(image_config_path)

    if no_sbom:
        formats: list[SBOMFormat] = []
    else:
        formats = list(sbom_formats) if sbom_formats else list(settings.sbom_formats)

    epoch = source_date_epoch if source_date_epoch is not None else settings.source_date_epoch
    try:
        config = BuildConfiguration(
            archs=archs,
            tags=tags,
            output_dir=output_dir or settings.output_dir,
            tarball_path=tarball,
            sbom_formats=formats,
            sbom_path=sbom_path,
            source_date_epoch=epoch,
            use_docker_media_types=(
                docker_media_types
                if docker_media_types is not None
                else settings.use_docker_media_types
            ),
            package_version_tag=package_version_tag,
            package_version_tag_stem=stem,
            package_version_tag_prefix=tag_prefix,
            compression_level=settings.compression_level,
            write_buffer_size=settings.write_buffer_size,
        )
    except ValidationError as exc:
        console.print(f"[bold red]Invalid build configuration:[/bold red]\n{exc}")
        raise typer.Exit(code=2)

    with ExitStack() as stack:
        working: dict[Architecture, WorkingTree] = {}
        for arch, root in parsed:
            if in_place:
                working[arch] = WorkingTree(root)
                continue
            scratch = Path(
                stack.enter_context(tempfile.TemporaryDirectory(prefix=f"layerforge-{arch}-"))
            )
            copy = scratch / "rootfs"
            shutil.copytree(root, copy, symlinks=True)
            working[arch] = WorkingTree(copy)

        builder = MultiArchBuilder(
            config,
            image_config,
            working,
            max_workers=settings.max_workers or None,
        )
        try:
            result = builder.build()
        except (ArchBuildError, IndexAssemblyError) as exc:
            console.print(f"[bold red]Build failed:[/bold red] {exc}")
            raise typer.Exit(code=1)

    table = Table(title="Built Images")
    table.add_column("Arch", style="cyan")
    table.add_column("Layer digest", style="green")
    table.add_column("Size", justify="right")
    table.add_column("Image digest", style="green")
    table.add_column("SBOMs")
    for image in result.images:
        table.add_row(
            str(image.arch),
            image.layer.digest,
            str(image.layer.size),
            image.image.digest,
            "\n".join(s.path.name for s in image.sboms) or "[dim]none[/dim]",
        )
    console.print()
    console.print(table)

    lines = [
        f"[bold]Index:[/bold] {result.index.digest}",
        f"[bold]Written to:[/bold] {result.index_artifact.path}",
    ]
    for sbom in result.index_artifact.sboms:
        lines.append(f"[bold]Index SBOM:[/bold] {sbom.path}")
    extra = [t for t in result.images[0].tags if t not in config.tags]
    if extra:
        lines.append(f"[bold]Derived tags:[/bold] {', '.join(extra)}")
    console.print(Panel("\n".join(lines), title="layerforge build", border_style="green"))
