"""
CLI interface for the SVG library.

Usage:
    svgshelf import logos.zip
    svgshelf search "rocket"
    svgshelf show Acme.svg > acme.svg
"""

import asyncio
import json
import os
from pathlib import Path
from typing import Awaitable, Callable, Optional, TypeVar

import typer
from typing_extensions import Annotated

from .config import LibraryConfig, get_default_home, load_or_create_config
from .errors import SvgShelfError, log_exception
from .keywords import parse_keywords
from .library import Library
from .logging_config import configure_ops_log, configure_quiet_mode, enable_debug_mode
from .remote import archive_name_from_url, fetch_archive
from .thesaurus import build_wordnet_thesaurus, write_thesaurus
from .types import FILTER_MODES, SORT_MODES, Asset

T = TypeVar("T")


# Quiet by default; SVGSHELF_VERBOSE=1 enables debug output via environment
if os.environ.get("SVGSHELF_VERBOSE") == "1":
    enable_debug_mode()
else:
    configure_quiet_mode(quiet=True)


def _verbose_callback(value: bool):
    if value:
        enable_debug_mode()


# Global state for CLI options
_json_output = False
_home_override: Optional[Path] = None
_ops_handler = None


def _json_callback(value: bool):
    global _json_output
    _json_output = value


def _home_callback(value: Optional[Path]):
    global _home_override
    _home_override = value


app = typer.Typer(
    name="svgshelf",
    help="Offline SVG library with instant search.",
    no_args_is_help=True,
    rich_markup_mode=None,
)


@app.callback()
def main_callback(
    verbose: Annotated[bool, typer.Option(
        "--verbose", "-v",
        help="Enable debug-level logging to stderr",
        callback=_verbose_callback,
        is_eager=True,
    )] = False,
    output_json: Annotated[bool, typer.Option(
        "--json", "-j",
        help="Output as JSON",
        callback=_json_callback,
        is_eager=True,
    )] = False,
    home: Annotated[Optional[Path], typer.Option(
        "--home",
        envvar="SVGSHELF_HOME",
        help="Library home directory (default: ~/.svgshelf/)",
        callback=_home_callback,
        is_eager=True,
    )] = None,
):
    """Offline SVG library with instant search."""


def _get_config() -> LibraryConfig:
    global _ops_handler
    home = (_home_override or get_default_home()).expanduser()
    try:
        config = load_or_create_config(home)
    except (ValueError, OSError) as e:
        typer.echo(f"Error: {e}", err=True)
        raise typer.Exit(1)
    if _ops_handler is None:
        _ops_handler = configure_ops_log(home)
    return config


def _run(action: Callable[[Library], Awaitable[T]], *, context: str, restore: bool = True) -> T:
    """Open the library, optionally restore the cached archive, run ``action``."""
    config = _get_config()

    async def runner() -> T:
        library = Library(config)
        try:
            if restore:
                await library.restore()
            return await action(library)
        finally:
            await library.close()

    try:
        return asyncio.run(runner())
    except SvgShelfError as e:
        log_path = log_exception(e, context, home=config.path)
        typer.echo(f"Error: {e}", err=True)
        typer.echo(f"Details logged to {log_path}", err=True)
        raise typer.Exit(1)


def _asset_dict(asset: Asset) -> dict:
    return {
        "id": asset.id,
        "name": asset.name,
        "keywords": asset.keywords,
        "score": asset.relevance_score,
        "favorite": asset.is_favorite,
        "last_used_at": asset.last_used_at,
    }


def _format_asset(asset: Asset, show_score: bool) -> str:
    marker = "*" if asset.is_favorite else " "
    line = f"{marker} {asset.name}"
    if show_score:
        line += f"  ({asset.relevance_score})"
    return line


# -----------------------------------------------------------------------------
# Commands
# -----------------------------------------------------------------------------

@app.command("import")
def import_archive(
    source: Annotated[str, typer.Argument(help="ZIP file path or https:// URL")],
):
    """Import an SVG archive, replacing the current one."""
    if source.startswith(("http://", "https://")):
        try:
            buffer = fetch_archive(source)
        except (SvgShelfError, ValueError) as e:
            typer.echo(f"Error: {e}", err=True)
            raise typer.Exit(1)
        name = archive_name_from_url(source)
    else:
        path = Path(source).expanduser()
        if not path.is_file():
            typer.echo(f"Error: no such file: {path}", err=True)
            raise typer.Exit(1)
        buffer = path.read_bytes()
        name = path.name

    async def action(library: Library):
        return await library.load_archive(buffer, name)

    result = _run(action, context="import", restore=False)
    stats = result.stats
    if _json_output:
        typer.echo(json.dumps({
            "archive": name,
            "total": stats.total,
            "duplicates": stats.duplicates,
            "ignored": stats.ignored,
        }))
    else:
        typer.echo(
            f"Imported {stats.total} images from {name} "
            f"({stats.duplicates} duplicates, {stats.ignored} ignored)"
        )


@app.command()
def search(
    query: Annotated[Optional[str], typer.Argument(help="Search text (empty: everything)")] = None,
    filter_mode: Annotated[Optional[str], typer.Option(
        "--filter", "-f",
        help=f"Keyword filter: {', '.join(FILTER_MODES)}",
    )] = None,
    sort_mode: Annotated[Optional[str], typer.Option(
        "--sort",
        help=f"Secondary order: {', '.join(SORT_MODES)}",
    )] = None,
    limit: Annotated[int, typer.Option(
        "--limit", "-n",
        help="Maximum results to show",
    )] = 50,
):
    """Search the library."""
    if filter_mode is not None and filter_mode not in FILTER_MODES:
        typer.echo(f"Error: unknown filter {filter_mode!r}", err=True)
        raise typer.Exit(1)
    if sort_mode is not None and sort_mode not in SORT_MODES:
        typer.echo(f"Error: unknown sort {sort_mode!r}", err=True)
        raise typer.Exit(1)

    async def action(library: Library):
        return library.search(query or "", filter_mode, sort_mode)

    results = _run(action, context="search")
    shown = results[:limit] if limit > 0 else results
    if _json_output:
        typer.echo(json.dumps([_asset_dict(a) for a in shown], ensure_ascii=False))
        return
    if not shown:
        typer.echo("No results.")
        return
    for asset in shown:
        typer.echo(_format_asset(asset, show_score=bool(query)))
    if len(results) > len(shown):
        typer.echo(f"... {len(results) - len(shown)} more")


@app.command()
def show(
    name: Annotated[str, typer.Argument(help="Asset file name, e.g. Acme.svg")],
):
    """Print the normalized SVG of one asset."""
    async def action(library: Library):
        return await library.get_svg(name)

    typer.echo(_run(action, context="show"))


@app.command()
def favorite(
    name: Annotated[str, typer.Argument(help="Asset file name")],
    off: Annotated[bool, typer.Option("--off", help="Remove from favorites")] = False,
):
    """Mark an asset as favorite (or unmark with --off)."""
    async def action(library: Library):
        return library.set_favorite(name, not off)

    asset = _run(action, context="favorite")
    state = "favorite" if asset.is_favorite else "not favorite"
    typer.echo(f"{asset.name}: {state}")


@app.command()
def info():
    """Show the cached archive and library settings."""
    async def action(library: Library):
        return library

    library = _run(action, context="info")
    meta = library.metadata
    data = {
        "home": str(library.config.path),
        "archive": meta.name if meta else None,
        "size": meta.size if meta else 0,
        "count": len(library.assets),
        "updated_at": meta.updated_at if meta else None,
        "favorites": sum(1 for a in library.assets if a.is_favorite),
        "with_keywords": sum(1 for a in library.assets if a.has_keywords),
        "synonyms": len(library.thesaurus),
    }
    if _json_output:
        typer.echo(json.dumps(data))
        return
    for key, value in data.items():
        typer.echo(f"{key}: {value if value is not None else '-'}")


@app.command("build-synonyms")
def build_synonyms(
    dict_dir: Annotated[Path, typer.Argument(help="WordNet dict/ directory")],
    output: Annotated[Path, typer.Argument(help="Output JSON path")],
):
    """Build the synonym artifact from WordNet data files."""
    try:
        items = build_wordnet_thesaurus(dict_dir.expanduser())
    except FileNotFoundError as e:
        typer.echo(f"Error: {e}", err=True)
        raise typer.Exit(1)
    write_thesaurus(items, output.expanduser())
    typer.echo(f"Wrote {len(items)} entries to {output}")


@app.command("parse-keywords")
def parse_keywords_cmd(
    text: Annotated[str, typer.Argument(help="Raw ';'-separated annotation")],
):
    """Clean up a raw keyword annotation."""
    typer.echo(json.dumps(parse_keywords(text), ensure_ascii=False))


def main():
    app()


if __name__ == "__main__":
    main()
