"""
Tunelib CLI - Entry point

Local command-line front end for the managed library: create it, import
folders into it and inspect what it holds.
"""

import argparse
import queue
import sys
import threading
from pathlib import Path
from typing import Optional

from rich.progress import BarColumn, MofNCompleteColumn, Progress, TextColumn
from rich.table import Table

from tunelib.core.config import (
    Config,
    create_default_config,
    ensure_directories,
    get_config_path,
    load_config,
)
from tunelib.core.console import get_console, get_error_console
from tunelib.core.database import LibraryDatabase
from tunelib.core.errors import LibraryError
from tunelib.core.output import setup_logging_from_config
from tunelib.domain.library.import_tracks import (
    import_folder,
    validate_import_prerequisites,
)
from tunelib.domain.library.library_manager import LibraryManager
from tunelib.domain.library.metadata import format_duration, format_size
from tunelib.domain.library.models import ImportProgress, ImportResult, ImportStatus


class ProgressReporter:
    """Renders import events on a Rich progress bar."""

    def __init__(self, progress: Progress):
        self.progress = progress
        self.task_id = progress.add_task("Scanning folder...", total=None)

    def show(self, event: ImportProgress) -> None:
        if event.status == ImportStatus.SCANNING:
            self.progress.update(self.task_id, description=event.message)
        elif event.status in (ImportStatus.IMPORTING, ImportStatus.PROCESSING):
            self.progress.update(
                self.task_id,
                description=event.message,
                total=event.total,
                completed=event.processed,
            )
        elif event.status == ImportStatus.ERROR:
            self.progress.console.print(
                f"[red]✗[/red] {event.file_path}: {event.error}"
            )
            self.progress.update(self.task_id, completed=event.processed)
        else:
            self.progress.update(
                self.task_id, description=event.message, completed=event.processed
            )


def follow_events(events: queue.Queue, reporter: ProgressReporter) -> None:
    """Show events until the worker's end-of-batch marker (None) arrives."""
    while True:
        event = events.get()
        if event is None:
            return
        reporter.show(event)


def open_library(config: Config) -> tuple[LibraryManager, LibraryDatabase]:
    manager = LibraryManager.from_config(config)
    manager.initialize()
    store = LibraryDatabase(manager.get_database_file_path())
    store.initialize()
    return manager, store


def print_import_summary(result: ImportResult) -> None:
    table = Table(title="Import summary")
    table.add_column("Outcome")
    table.add_column("Files", justify="right")
    table.add_row("Imported", str(result.imported), style="green")
    table.add_row("Duplicates", str(result.duplicates))
    table.add_row("Skipped", str(result.skipped), style="yellow")
    table.add_row("Errors", str(result.errors), style="red" if result.errors else None)
    table.add_row("Total", str(result.total), style="bold")
    get_console().print(table)

    if result.cancelled:
        get_console().print(
            f"[yellow]Cancelled after {result.processed} of {result.total} files[/yellow]"
        )


def run_init(config: Config, write_config: bool = True) -> int:
    if write_config:
        config_path = get_config_path()
        if not config_path.exists():
            config_path.parent.mkdir(parents=True, exist_ok=True)
            config_path.write_text(create_default_config() + "\n")
            get_console().print(f"Wrote default configuration to {config_path}")

    manager, store = open_library(config)
    with store:
        get_console().print(
            f"[green]✓[/green] Library ready at {manager.library_path} "
            f"(schema v{store.get_schema_version()})"
        )
    return 0


def run_import(config: Config, folder: str) -> int:
    manager, store = open_library(config)
    with store:
        check = validate_import_prerequisites(store, manager)
        if not check.valid:
            for reason in check.errors:
                get_error_console().print(f"[red]Error:[/red] {reason}")
            return 1

        folder_path = str(Path(folder).expanduser().absolute())
        events: queue.Queue = queue.Queue(maxsize=config.imports.event_queue_size)
        cancel_event = threading.Event()
        outcome: dict = {}

        def worker() -> None:
            try:
                outcome["result"] = import_folder(
                    folder_path,
                    store,
                    manager,
                    events=events,
                    cancel_event=cancel_event,
                    refresh_albums=config.imports.refresh_albums_after_import,
                )
            except Exception as e:
                outcome["error"] = e
            finally:
                events.put(None)

        # The store is only touched by the worker until it is joined
        thread = threading.Thread(target=worker, name="tunelib-import", daemon=True)
        with Progress(
            TextColumn("{task.description}"),
            BarColumn(),
            MofNCompleteColumn(),
            console=get_console(),
            transient=True,
        ) as progress:
            reporter = ProgressReporter(progress)
            thread.start()
            try:
                follow_events(events, reporter)
            except KeyboardInterrupt:
                cancel_event.set()
                progress.console.print(
                    "[yellow]Cancelling after the current file...[/yellow]"
                )
                follow_events(events, reporter)
        thread.join()

    if "error" in outcome:
        raise outcome["error"]

    result = outcome["result"]
    print_import_summary(result)
    return 0 if result.errors == 0 else 1


def run_stats(config: Config) -> int:
    manager = LibraryManager.from_config(config)
    file_stats = manager.get_stats()
    if not file_stats["exists"]:
        get_error_console().print(
            f"[yellow]No library at {manager.library_path}. Run 'tunelib init' first.[/yellow]"
        )
        return 1

    with LibraryDatabase(manager.get_database_file_path()) as store:
        if not store.is_initialized():
            store.initialize()
        db_stats = store.get_stats()

    table = Table(title=f"Library: {manager.library_path}", show_header=False)
    table.add_column("Metric")
    table.add_column("Value", justify="right")
    table.add_row("Tracks", str(db_stats["tracks"]))
    table.add_row("Albums", str(db_stats["albums"]))
    table.add_row("Playlists", str(db_stats["playlists"]))
    table.add_row("Genres", str(db_stats["genres"]))
    table.add_row("Music files", str(file_stats["music_files"]))
    table.add_row("Artwork files", str(file_stats["artwork_files"]))
    table.add_row("Total size", format_size(file_stats["total_size"]))
    get_console().print(table)
    return 0


def run_tracks(
    config: Config,
    artist: Optional[str],
    album: Optional[str],
    sort_by: str,
    descending: bool,
) -> int:
    manager, store = open_library(config)
    with store:
        tracks = store.get_tracks(
            artist=artist,
            album=album,
            sort_by=sort_by,
            sort_order="DESC" if descending else "ASC",
        )

    table = Table(title=f"Tracks ({len(tracks)})")
    table.add_column("#", justify="right")
    table.add_column("Title")
    table.add_column("Artist")
    table.add_column("Album")
    table.add_column("Time", justify="right")
    for track in tracks:
        table.add_row(
            str(track["track_number"] or ""),
            track["title"],
            track["artist"] or "",
            track["album"] or "",
            format_duration(track["duration_seconds"] or 0),
        )
    get_console().print(table)
    return 0


def run_albums(config: Config, refresh: bool) -> int:
    manager, store = open_library(config)
    with store:
        if refresh:
            store.refresh_albums()
        albums = store.get_all_albums()

    table = Table(title=f"Albums ({len(albums)})")
    table.add_column("Album")
    table.add_column("Album artist")
    table.add_column("Year", justify="right")
    table.add_column("Tracks", justify="right")
    for album in albums:
        table.add_row(
            album["album_title"],
            album["album_artist"] or "",
            str(album["release_year"] or ""),
            str(album["track_count"]),
        )
    get_console().print(table)
    return 0


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="tunelib",
        description="Tunelib - Personal music library manager",
        formatter_class=argparse.RawDescriptionHelpFormatter,
    )

    # Global options
    parser.add_argument("--config", help="Path to config.toml")
    parser.add_argument("--library", help="Library root (overrides config)")

    subparsers = parser.add_subparsers(dest="subcommand", help="Available commands")

    subparsers.add_parser("init", help="Create the library folders and database")

    import_parser = subparsers.add_parser(
        "import", help="Import every supported file in a folder"
    )
    import_parser.add_argument("folder", help="Folder to import from")

    subparsers.add_parser("stats", help="Show library statistics")

    tracks_parser = subparsers.add_parser("tracks", help="List tracks")
    tracks_parser.add_argument("--artist", help="Exact artist match")
    tracks_parser.add_argument("--album", help="Exact album match")
    tracks_parser.add_argument("--sort", default="title", help="Column to sort by")
    tracks_parser.add_argument(
        "--desc", action="store_true", help="Sort in descending order"
    )

    albums_parser = subparsers.add_parser("albums", help="List albums")
    albums_parser.add_argument(
        "--refresh", action="store_true", help="Rebuild album track counts first"
    )

    return parser


def main(argv: Optional[list[str]] = None) -> int:
    """Main entry point for the tunelib command."""
    parser = build_parser()
    args = parser.parse_args(argv)

    if not args.subcommand:
        parser.print_help()
        return 1

    config = load_config(Path(args.config).expanduser() if args.config else None)
    if args.library:
        config.library.root = str(Path(args.library).expanduser())
    ensure_directories()
    setup_logging_from_config(config.logging)

    try:
        if args.subcommand == "init":
            return run_init(config, write_config=args.config is None)
        elif args.subcommand == "import":
            return run_import(config, args.folder)
        elif args.subcommand == "stats":
            return run_stats(config)
        elif args.subcommand == "tracks":
            return run_tracks(config, args.artist, args.album, args.sort, args.desc)
        elif args.subcommand == "albums":
            return run_albums(config, args.refresh)
    except (LibraryError, OSError) as e:
        get_error_console().print(f"[red]Error:[/red] {e}")
        return 1

    parser.print_help()
    return 1


if __name__ == "__main__":
    sys.exit(main())
