"""``layerforge inspect-layer PATH``: recompute a layer's digests.

Reads the gzip'd tarball once for the compressed digest and once
decompressed for the diffID, so a layer can be checked against a manifest
or a previous build without any other state.
"""

from __future__ import annotations

import gzip
import hashlib
import stat
import tarfile
from pathlib import Path

import typer
from rich.console import Console
from rich.table import Table

from layerforge.core.hasher import format_digest, sha256_for_file

console = Console()

_READ_CHUNK = 1 << 20


def layer_digests(path: Path) -> tuple[str, str, int]:
    """``(diff_id, digest, size)`` of a gzip'd layer tarball."""
    hasher = hashlib.sha256()
    with gzip.open(path, "rb") as fh:
        for chunk in iter(lambda: fh.read(_READ_CHUNK), b""):
            hasher.update(chunk)
    return format_digest(hasher), sha256_for_file(path), path.stat().st_size


def inspect_layer_cmd(
    path: Path = typer.Argument(..., help="Layer tarball (.tar.gz) to inspect."),
    list_entries: bool = typer.Option(
        False, "--list", "-l", help="Also list every archive entry."
    ),
) -> None:
    """Print the diffID, digest and size of a layer tarball."""
    if not path.is_file():
        console.print(f"[bold red]Layer not found:[/bold red] {path}")
        raise typer.Exit(code=1)

    try:
        diff_id, digest, size = layer_digests(path)
        with tarfile.open(path, mode="r:gz") as tar:
            members = tar.getmembers()
    except (OSError, EOFError, tarfile.TarError) as exc:
        console.print(f"[bold red]Cannot read layer:[/bold red] {exc}")
        raise typer.Exit(code=1)

    summary = Table(title=str(path), show_header=False)
    summary.add_column("Field", style="cyan")
    summary.add_column("Value", style="green")
    summary.add_row("diffID", diff_id)
    summary.add_row("digest", digest)
    summary.add_row("size", str(size))
    summary.add_row("entries", str(len(members)))
    console.print(summary)

    if not list_entries:
        return

    entries = Table(title="Entries")
    entries.add_column("Mode")
    entries.add_column("Owner", justify="right")
    entries.add_column("Size", justify="right")
    entries.add_column("Path", style="cyan")
    for member in members:
        name = member.name
        if member.issym():
            name = f"{name} -> {member.linkname}"
        elif member.islnk():
            name = f"{name} => {member.linkname}"
        entries.add_row(
            stat.filemode(member.mode | _type_bits(member)),
            f"{member.uid}:{member.gid}",
            str(member.size),
            name,
        )
    console.print(entries)


def _type_bits(member: tarfile.TarInfo) -> int:
    if member.isdir():
        return stat.S_IFDIR
    if member.issym():
        return stat.S_IFLNK
    if member.ischr():
        return stat.S_IFCHR
    if member.isfifo():
        return stat.S_IFIFO
    return stat.S_IFREG
