"""
CLI interface for glean.

Usage:
    glean add report.pdf --length short
    glean text "Paste some text to summarize"
    glean list
    glean data export glean-history.json
"""

import json
import os
import shutil
import sys
from pathlib import Path
from typing import Optional

import typer
from typing_extensions import Annotated

from .api import Glean
from .errors import GleanError, log_exception
from .logging_config import configure_quiet_mode, enable_debug_mode
from .transfer import EXPORT_FILENAME
from .types import (
    FOCUSES,
    FORMATS,
    LENGTHS,
    AnalysisItem,
    ImageItem,
    SummarizeConfig,
    TextItem,
    analysis_text,
    format_timestamp,
    item_to_dict,
    render_markdown,
)


# Configure quiet mode by default (suppress verbose library output)
# Set GLEAN_VERBOSE=1 to enable debug mode via environment
if os.environ.get("GLEAN_VERBOSE") == "1":
    enable_debug_mode()
else:
    configure_quiet_mode(quiet=True)


def _version_callback(value: bool):
    if value:
        from . import __version__
        print(f"glean {__version__}")
        raise typer.Exit()


def _verbose_callback(value: bool):
    if value:
        enable_debug_mode()


# Global state for CLI options
_json_output = False
_store_override: Optional[Path] = None


def _json_callback(value: bool):
    global _json_output
    _json_output = value


def _get_json_output() -> bool:
    return _json_output


def _store_callback(value: Optional[Path]):
    global _store_override
    _store_override = value


def _get_store_override() -> Optional[Path]:
    return _store_override


app = typer.Typer(
    name="glean",
    help="Summarize documents, text and images, and keep a local history.",
    no_args_is_help=False,
    invoke_without_command=True,
    rich_markup_mode=None,
)


# -----------------------------------------------------------------------------
# Output Formatting
# -----------------------------------------------------------------------------

def _output_width() -> int:
    """Terminal width for line truncation. Use generous default when not a TTY."""
    if not sys.stdout.isatty():
        return 200
    return shutil.get_terminal_size((120, 24)).columns


def _format_summary_line(item: AnalysisItem) -> str:
    """One line per item: id, date, kind, title."""
    date = format_timestamp(item.created_at)[:10]
    line = f"{item.id}  {date}  [{item.kind}] {item.title}"
    width = _output_width()
    if len(line) > width:
        line = line[:width - 3] + "..."
    return line


def _list_entry(item: AnalysisItem) -> dict:
    """Compact JSON form for listings; image payloads are left out."""
    return {
        "id": item.id,
        "kind": item.kind,
        "createdAt": format_timestamp(item.created_at),
        "title": item.title,
        "tags": list(item.tags),
    }


def _render_item(item: AnalysisItem) -> str:
    """Full display of one item."""
    if _get_json_output():
        return json.dumps(item_to_dict(item), indent=2, ensure_ascii=False)

    lines = [
        f"id: {item.id}",
        f"kind: {item.kind}",
        f"created: {format_timestamp(item.created_at)}",
        f"title: {item.title}",
        f"tags: {', '.join(item.tags)}",
    ]
    if item.source_filename:
        lines.append(f"file: {item.source_filename}")
    if isinstance(item, TextItem):
        cfg = item.config
        lines.append(f"options: {cfg.length}, {cfg.focus}, {cfg.format}")
    elif isinstance(item, ImageItem):
        lines.append(f"image: {item.mime_type}")
    lines.append("")
    lines.append(analysis_text(item))
    return "\n".join(lines)


def _render_list(items: list[AnalysisItem]) -> str:
    if _get_json_output():
        return json.dumps([_list_entry(i) for i in items], indent=2, ensure_ascii=False)
    if not items:
        return "No history yet."
    return "\n".join(_format_summary_line(i) for i in items)


@app.callback(invoke_without_command=True)
def main_callback(
    ctx: typer.Context,
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
    version: Annotated[Optional[bool], typer.Option(
        "--version",
        help="Show version and exit",
        callback=_version_callback,
        is_eager=True,
    )] = None,
    store: Annotated[Optional[Path], typer.Option(
        "--store", "-s",
        envvar="GLEAN_STORE_PATH",
        help="Path to the store directory",
        callback=_store_callback,
        is_eager=True,
    )] = None,
):
    """Summarize documents, text and images, and keep a local history."""
    # Without a subcommand, show the most recent items
    if ctx.invoked_subcommand is None:
        gl = _get_glean(None)
        typer.echo(_render_list(gl.history(limit=10)))


# -----------------------------------------------------------------------------
# Common Options
# -----------------------------------------------------------------------------

StoreOption = Annotated[
    Optional[Path],
    typer.Option(
        "--store", "-s",
        envvar="GLEAN_STORE_PATH",
        help="Path to the store directory (default: ~/.glean/)"
    )
]

LengthOption = Annotated[
    str,
    typer.Option("--length", "-l", help=f"Summary length: {', '.join(LENGTHS)}")
]

FocusOption = Annotated[
    str,
    typer.Option("--focus", "-f", help=f"Summary focus: {', '.join(FOCUSES)}")
]

FormatOption = Annotated[
    str,
    typer.Option("--format", help=f"Summary format: {', '.join(FORMATS)}")
]

TitleOption = Annotated[
    Optional[str],
    typer.Option("--title", "-t", help="Title for the history entry")
]


def _get_glean(store: Optional[Path]) -> Glean:
    """Open the store, handling errors gracefully."""
    import atexit

    # Check global override from --store on main command
    actual_store = store if store is not None else _get_store_override()
    try:
        gl = Glean(actual_store)
    except Exception as e:
        typer.echo(f"Error: {e}", err=True)
        raise typer.Exit(1)
    atexit.register(gl.close)
    return gl


def _summarize_config(length: str, focus: str, format: str) -> SummarizeConfig:
    try:
        return SummarizeConfig(length=length, focus=focus, format=format)
    except ValueError as e:
        typer.echo(f"Error: {e}", err=True)
        raise typer.Exit(1)


def _fail(e: Exception, command: str):
    """Report a failed operation and exit 1; the traceback goes to the error log."""
    log_exception(e, context=f"glean {command}")
    typer.echo(f"Error: {e}", err=True)
    raise typer.Exit(1)


# -----------------------------------------------------------------------------
# Ingestion
# -----------------------------------------------------------------------------

@app.command()
def add(
    file: Annotated[Path, typer.Argument(help="File to analyze (.txt, .pdf, .docx, .png, .jpg)")],
    length: LengthOption = "medium",
    focus: FocusOption = "informative",
    format: FormatOption = "paragraph",
    title: TitleOption = None,
    mime_type: Annotated[Optional[str], typer.Option(
        "--mime-type", help="Declared MIME type (default: guessed from the file name)"
    )] = None,
    store: StoreOption = None,
):
    """
    Analyze a file and add the result to the history.

    Text documents are summarized; images are described.

    \b
    Examples:
        glean add notes.txt
        glean add report.pdf --length short --focus critical
        glean add photo.jpg --title "Holiday"
    """
    config = _summarize_config(length, focus, format)
    if not file.exists():
        typer.echo(f"Error: file not found: {file}", err=True)
        raise typer.Exit(1)

    gl = _get_glean(store)
    try:
        item = gl.ingest_file(file, mime_type=mime_type, config=config, title=title)
    except GleanError as e:
        _fail(e, "add")
    typer.echo(_render_item(item))


@app.command()
def text(
    content: Annotated[str, typer.Argument(help="Text to summarize (use '-' for stdin)")],
    length: LengthOption = "medium",
    focus: FocusOption = "informative",
    format: FormatOption = "paragraph",
    title: TitleOption = None,
    store: StoreOption = None,
):
    """
    Summarize pasted text and add it to the history.

    \b
    Examples:
        glean text "A long paragraph worth summarizing..."
        cat article.txt | glean text - --format list
    """
    config = _summarize_config(length, focus, format)
    if content == "-":
        content = sys.stdin.read()

    gl = _get_glean(store)
    try:
        item = gl.analyze_text(content, config=config, title=title)
    except ValueError as e:
        typer.echo(f"Error: {e}", err=True)
        raise typer.Exit(1)
    except GleanError as e:
        _fail(e, "text")
    typer.echo(_render_item(item))


# -----------------------------------------------------------------------------
# Browsing
# -----------------------------------------------------------------------------

@app.command("list")
def list_cmd(
    filter: Annotated[Optional[str], typer.Argument(
        help="Show only items whose title or tags contain this text"
    )] = None,
    limit: Annotated[int, typer.Option(
        "--limit", "-n", help="Maximum items to show (0 for all)"
    )] = 0,
    store: StoreOption = None,
):
    """
    List the history, newest first.

    \b
    Examples:
        glean list
        glean list invoice        # Titles or tags containing "invoice"
        glean list -n 5
    """
    gl = _get_glean(store)
    items = gl.search(filter) if filter else gl.history()
    if limit > 0:
        items = items[:limit]
    typer.echo(_render_list(items))


@app.command()
def get(
    id: Annotated[str, typer.Argument(help="ID of the history item")],
    markdown: Annotated[bool, typer.Option(
        "--markdown", "-m", help="Render as a markdown document"
    )] = False,
    store: StoreOption = None,
):
    """Show one history item."""
    gl = _get_glean(store)
    item = gl.get(id)
    if item is None:
        typer.echo(f"Not found: {id}", err=True)
        raise typer.Exit(1)
    if markdown:
        typer.echo(render_markdown(item))
    else:
        typer.echo(_render_item(item))


# -----------------------------------------------------------------------------
# Editing
# -----------------------------------------------------------------------------

@app.command()
def refine(
    id: Annotated[str, typer.Argument(help="ID of the history item")],
    instructions: Annotated[str, typer.Argument(help="How to change the summary or description")],
    feedback: Annotated[Optional[str], typer.Option(
        "--feedback", help="What is wrong with the current version"
    )] = None,
    store: StoreOption = None,
):
    """
    Rewrite an item's summary or description.

    \b
    Examples:
        glean refine 3f2a... "Make it shorter and use bullet points"
    """
    gl = _get_glean(store)
    try:
        if feedback:
            item = gl.refine(id, instructions, feedback=feedback)
        else:
            item = gl.refine(id, instructions)
    except GleanError as e:
        _fail(e, "refine")
    typer.echo(_render_item(item))


@app.command()
def rename(
    id: Annotated[str, typer.Argument(help="ID of the history item")],
    title: Annotated[str, typer.Argument(help="New title")],
    store: StoreOption = None,
):
    """Change an item's title."""
    gl = _get_glean(store)
    try:
        item = gl.rename(id, title)
    except ValueError as e:
        typer.echo(f"Error: {e}", err=True)
        raise typer.Exit(1)
    except GleanError as e:
        _fail(e, "rename")
    typer.echo(_format_summary_line(item))


@app.command()
def tag(
    id: Annotated[str, typer.Argument(help="ID of the history item")],
    add: Annotated[Optional[list[str]], typer.Option(
        "--add", "-a", help="Tag to add (repeatable)"
    )] = None,
    remove: Annotated[Optional[list[str]], typer.Option(
        "--remove", "-r", help="Tag to remove (repeatable)"
    )] = None,
    store: StoreOption = None,
):
    """
    Add or remove tags. With no options, print the current tags.

    \b
    Examples:
        glean tag 3f2a... --add work --add q3
        glean tag 3f2a... --remove summary
    """
    gl = _get_glean(store)
    try:
        item = gl.get(id)
        if item is None:
            typer.echo(f"Not found: {id}", err=True)
            raise typer.Exit(1)
        if add:
            item = gl.add_tags(id, add)
        if remove:
            item = gl.remove_tags(id, remove)
    except ValueError as e:
        typer.echo(f"Error: {e}", err=True)
        raise typer.Exit(1)
    except GleanError as e:
        _fail(e, "tag")

    if _get_json_output():
        typer.echo(json.dumps({"id": item.id, "tags": item.tags}))
    else:
        typer.echo(", ".join(item.tags))


@app.command("delete")
def delete_cmd(
    id: Annotated[list[str], typer.Argument(help="ID(s) of history items to delete")],
    store: StoreOption = None,
):
    """Delete history items."""
    gl = _get_glean(store)
    had_errors = False
    for one_id in id:
        item = gl.get(one_id)
        if item is None or not gl.delete(one_id):
            typer.echo(f"Not found: {one_id}", err=True)
            had_errors = True
            continue
        typer.echo(f"Deleted {_format_summary_line(item)}")
    if had_errors:
        raise typer.Exit(1)


@app.command("del", hidden=True)
def del_cmd(
    id: Annotated[list[str], typer.Argument(help="ID(s) of history items to delete")],
    store: StoreOption = None,
):
    """Delete history items (alias for 'delete')."""
    delete_cmd(id=id, store=store)


@app.command()
def clear(
    yes: Annotated[bool, typer.Option(
        "--yes", "-y", help="Do not ask for confirmation"
    )] = False,
    store: StoreOption = None,
):
    """Delete the entire history. This cannot be undone."""
    gl = _get_glean(store)
    count = gl.count()
    if count == 0:
        typer.echo("History is already empty.")
        return
    if not yes and not typer.confirm(f"Delete all {count} history items?"):
        raise typer.Exit(0)
    try:
        deleted = gl.clear_history()
    except GleanError as e:
        _fail(e, "clear")
    typer.echo(f"Deleted {deleted} items.")


# -----------------------------------------------------------------------------
# Data Management
# -----------------------------------------------------------------------------

data_app = typer.Typer(
    name="data",
    help="Data management: export, import.",
    rich_markup_mode=None,
)
app.add_typer(data_app)


@data_app.command("export")
def data_export(
    output: Annotated[str, typer.Argument(
        help="Output file path (use '-' for stdout)"
    )] = EXPORT_FILENAME,
    store: StoreOption = None,
):
    """Export the whole history to JSON for backup or migration."""
    gl = _get_glean(store)
    if output == "-":
        sys.stdout.write(gl.export_document().decode("utf-8"))
        sys.stdout.write("\n")
        return
    try:
        count = gl.export_to(output)
    except OSError as e:
        typer.echo(f"Error: cannot write {output}: {e.strerror or e}", err=True)
        raise typer.Exit(1)
    typer.echo(f"Exported {count} items to {output}", err=True)


@data_app.command("import")
def data_import(
    file: Annotated[str, typer.Argument(help="JSON export file to import (use '-' for stdin)")],
    store: StoreOption = None,
):
    """
    Import a JSON export file.

    Items are matched by ID: existing items are replaced, new ones are
    added. If any record is invalid, nothing is imported.
    """
    if file == "-":
        raw = sys.stdin.read()
    else:
        path = Path(file)
        if not path.exists():
            typer.echo(f"Error: file not found: {file}", err=True)
            raise typer.Exit(1)
        raw = path.read_bytes()

    gl = _get_glean(store)
    try:
        stats = gl.import_document(raw)
    except GleanError as e:
        _fail(e, "data import")

    if _get_json_output():
        typer.echo(json.dumps(stats.to_dict()))
    else:
        typer.echo(
            f"Imported {stats.total} items ({stats.created} new, {stats.replaced} replaced).",
            err=True,
        )


# -----------------------------------------------------------------------------
# Configuration
# -----------------------------------------------------------------------------

@app.command()
def config(
    store: StoreOption = None,
):
    """Show the store configuration."""
    gl = _get_glean(store)
    cfg = gl.config
    # Keep secrets off the terminal
    params = {k: ("****" if "key" in k.lower() else v) for k, v in cfg.analysis.params.items()}
    info = {
        "store": str(cfg.path),
        "config_file": str(cfg.config_path),
        "database": str(cfg.database_path),
        "analysis": {"name": cfg.analysis.name, **params},
        "language": cfg.language,
        "max_file_size": cfg.max_file_size,
        "items": gl.count(),
    }
    if _get_json_output():
        typer.echo(json.dumps(info, indent=2))
        return
    typer.echo(f"store: {info['store']}")
    typer.echo(f"config: {info['config_file']}")
    typer.echo(f"database: {info['database']}")
    typer.echo(f"analysis: {cfg.analysis.name}")
    for key, value in params.items():
        typer.echo(f"  {key}: {value}")
    typer.echo(f"language: {info['language']}")
    typer.echo(f"max_file_size: {info['max_file_size']:,}")
    typer.echo(f"items: {info['items']}")


# -----------------------------------------------------------------------------
# Entry point
# -----------------------------------------------------------------------------

def main():
    try:
        app()
    except SystemExit:
        raise  # Let typer handle exit codes
    except KeyboardInterrupt:
        raise SystemExit(130)  # Standard exit code for Ctrl+C
    except Exception as e:
        # Log full traceback to file, show clean message to user
        log_path = log_exception(e, context="glean CLI")
        typer.echo(f"Error: {e}", err=True)
        typer.echo(f"Details logged to {log_path}", err=True)
        raise SystemExit(1)


if __name__ == "__main__":
    main()
