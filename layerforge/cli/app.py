"""Main Typer application: registers the CLI commands.

Entry point: ``layerforge`` (configured via pyproject.toml scripts).
"""

from __future__ import annotations

import logging

import typer
from rich.logging import RichHandler

from layerforge.cli.commands.build import build_cmd
from layerforge.cli.commands.inspect import inspect_layer_cmd
from layerforge.config import Settings

app = typer.Typer(
    name="layerforge",
    help="layerforge: reproducible single-layer OCI images with SBOMs.",
    no_args_is_help=True,
    rich_markup_mode="rich",
    add_completion=False,
)


@app.callback()
def main_callback(
    log_level: str = typer.Option(
        None,
        "--log-level",
        help="Logging level (default: LAYERFORGE_LOG_LEVEL or INFO).",
    ),
) -> None:
    """Configure logging before any command runs."""
    level = (log_level or Settings().log_level).upper()
    logging.basicConfig(
        level=level,
        format="%(message)s",
        datefmt="[%X]",
        handlers=[RichHandler(rich_tracebacks=True, show_path=False)],
        force=True,
    )


app.command(name="build", help="Build layers, images and SBOMs from populated trees.")(
    build_cmd
)
app.command(name="inspect-layer", help="Recompute the digests of a layer tarball.")(
    inspect_layer_cmd
)


def main() -> None:
    """CLI entry point."""
    app()


if __name__ == "__main__":
    main()
