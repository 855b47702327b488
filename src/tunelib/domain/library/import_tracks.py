"""
Local file import into the managed library.

One batch processes its files strictly in order: extract tags, derive the
library destination, copy, cache artwork, insert the track and its genres.
Per-file failures are counted and reported on the progress channel; they
never abort the batch. Progress events go to any object with a `put`
method (normally a `queue.Queue`), and a `threading.Event` cancels the
batch between files.
"""

import os
import shutil
import time
from pathlib import Path
from typing import Any, Callable, Iterable, Optional

from loguru import logger

from tunelib.core.database import LibraryDatabase
from tunelib.core.errors import SecurityError

from .library_manager import LibraryManager
from .metadata import UNKNOWN_ALBUM, UNKNOWN_ARTIST, extract_metadata, normalize_genres
from .models import (
    ExtractedMetadata,
    ImportedTrack,
    ImportProgress,
    ImportResult,
    ImportStatus,
    PrerequisiteCheck,
)
from .scanner import scan_folder

Extractor = Callable[[str], Optional[ExtractedMetadata]]

PART_SUFFIX = ".part"


def emit(
    events: Optional[Any],
    processed: int,
    total: int,
    message: str,
    status: ImportStatus,
    file_path: Optional[str] = None,
    error: Optional[str] = None,
) -> None:
    """Publish one progress event if a channel was given."""
    if events is None:
        return
    events.put(ImportProgress(processed, total, message, status, file_path, error))


def validate_import_prerequisites(
    store: Optional[LibraryDatabase], manager: Optional[LibraryManager]
) -> PrerequisiteCheck:
    """Pre-flight check run before starting a batch.

    Returns:
        PrerequisiteCheck(valid, errors) with one human-readable reason per
        failed check
    """
    errors = []

    if manager is None:
        errors.append("Library manager not initialized")
    elif not manager.verify_permissions():
        errors.append("Library folder permissions invalid")

    if store is None or not store.ping() or not store.is_initialized():
        errors.append("Database not initialized")

    return PrerequisiteCheck(valid=not errors, errors=errors)


def copy_file(source: str, destination: Path) -> None:
    """Copy bytes and timestamps to `destination` via a `.part` sibling.

    A crash mid-copy leaves only the `.part` file, never a truncated file at
    the destination that a later batch would count as a duplicate.
    """
    part_path = destination.with_name(destination.name + PART_SUFFIX)
    try:
        shutil.copy2(source, part_path)
        os.replace(part_path, destination)
    except BaseException:
        if part_path.exists():
            part_path.unlink()
        raise


def remove_quietly(path: Path) -> None:
    try:
        path.unlink()
    except FileNotFoundError:
        pass
    except OSError as e:
        logger.warning(f"Could not remove {path}: {e}")


def get_source_mtime(local_path: str) -> Optional[int]:
    try:
        return int(os.stat(local_path).st_mtime)
    except OSError:
        return None


def import_file(
    local_path: str,
    store: LibraryDatabase,
    manager: LibraryManager,
    extractor: Extractor = extract_metadata,
) -> tuple[ImportStatus, Optional[ImportedTrack]]:
    """Import one file.

    Returns:
        (SKIPPED, None) when the extractor gives up, (DUPLICATE, None) when
        the destination is already taken, (IMPORTED, track) otherwise

    Raises:
        SecurityError: If the path is rejected
        OSError: If copying fails
        LibraryError: If the store rejects the track
    """
    manager.require_valid_path(local_path)

    metadata = extractor(local_path)
    if metadata is None:
        return ImportStatus.SKIPPED, None

    title = metadata.title or Path(local_path).stem or "Unknown Track"
    artist = metadata.artist or UNKNOWN_ARTIST
    album = metadata.album or UNKNOWN_ALBUM
    album_artist = metadata.album_artist or artist

    destination = manager.generate_track_path(
        {
            "artist": artist,
            "album_artist": album_artist,
            "album": album,
            "track_number": metadata.track_number,
            "title": title,
            "file_path": local_path,
            "codec": metadata.codec,
        }
    )
    if destination.exists() or store.get_track_by_path(str(destination)) is not None:
        return ImportStatus.DUPLICATE, None

    manager.ensure_directory(destination.parent)
    copy_file(local_path, destination)

    artwork_path = None
    if metadata.artwork is not None:
        try:
            cached = manager.cache_artwork(metadata.artwork)
            artwork_path = str(cached) if cached else None
        except OSError as e:
            logger.warning(f"Could not cache artwork for {local_path}: {e}")

    try:
        with store.transaction():
            track_id = store.insert_track(
                {
                    "file_path": str(destination),
                    "title": title,
                    "artist": artist,
                    "album": album,
                    "album_artist": album_artist,
                    "track_number": metadata.track_number,
                    "disc_number": metadata.disc_number,
                    "release_year": metadata.year,
                    "duration_seconds": metadata.duration,
                    "bitrate": metadata.bitrate,
                    "sample_rate": metadata.sample_rate,
                    "codec": metadata.codec,
                    "file_size_bytes": metadata.file_size_bytes,
                    "date_added": int(time.time()),
                    "date_modified": get_source_mtime(local_path),
                    "is_compilation": bool(metadata.is_compilation),
                    "artwork_path": artwork_path,
                }
            )
            store.add_track_genres(track_id, normalize_genres(metadata.genres))
    except BaseException:
        # Keep the library consistent with the store so a retry is not a "duplicate"
        remove_quietly(destination)
        raise

    return ImportStatus.IMPORTED, ImportedTrack(track_id, title, artist, album)


def import_files(
    paths: Iterable[str],
    store: LibraryDatabase,
    manager: LibraryManager,
    events: Optional[Any] = None,
    cancel_event: Optional[Any] = None,
    extractor: Extractor = extract_metadata,
    refresh_albums: bool = False,
) -> ImportResult:
    """
    Import a list of files into the library, one at a time and in order.

    Args:
        paths: Absolute source file paths
        store: Initialized library database
        manager: Library manager owning the destination tree
        events: Optional progress channel (object with `put`)
        cancel_event: Optional `threading.Event`; checked before each file
        extractor: Metadata extractor; returns None to skip a file
        refresh_albums: Rebuild the albums aggregate after the batch

    Returns:
        ImportResult with per-outcome counts and the imported tracks
    """
    paths = [str(path) for path in paths]
    total = len(paths)
    result = ImportResult(total=total)
    logger.info(f"Importing {total} files into {manager.library_path}")

    for index, local_path in enumerate(paths):
        if cancel_event is not None and cancel_event.is_set():
            result.cancelled = True
            logger.info(f"Import cancelled after {index}/{total} files")
            emit(events, index, total, "Import cancelled", ImportStatus.CANCELLED)
            break

        name = os.path.basename(local_path)
        emit(
            events,
            index,
            total,
            f"Processing: {name}",
            ImportStatus.PROCESSING,
            file_path=local_path,
        )

        try:
            status, track = import_file(local_path, store, manager, extractor)
        except Exception as e:
            result.errors += 1
            result.processed = index + 1
            if isinstance(e, SecurityError):
                logger.warning(str(e))
            else:
                logger.error(f"Failed to import {local_path}: {e}")
            emit(
                events,
                index + 1,
                total,
                f"Error: {name}",
                ImportStatus.ERROR,
                file_path=local_path,
                error=str(e),
            )
            continue

        result.processed = index + 1
        if status == ImportStatus.IMPORTED:
            result.imported += 1
            result.imported_tracks.append(track)
            message = f"Imported: {track.title}"
        elif status == ImportStatus.DUPLICATE:
            result.duplicates += 1
            message = f"Duplicate: {name}"
        else:
            result.skipped += 1
            logger.debug(f"Skipped unreadable file {local_path}")
            message = f"Skipped: {name}"

        emit(events, index + 1, total, message, status, file_path=local_path)

    if refresh_albums and result.imported:
        try:
            store.refresh_albums()
        except Exception as e:
            # Imported tracks are already committed; the aggregate can be rebuilt later
            logger.error(f"Album refresh after import failed: {e}")

    logger.info(
        f"Import finished: {result.imported} imported, {result.duplicates} duplicates, "
        f"{result.skipped} skipped, {result.errors} errors"
    )
    if not result.cancelled:
        emit(
            events,
            result.processed,
            total,
            f"Import complete: {result.imported} imported",
            ImportStatus.COMPLETE,
        )
    return result


def import_folder(
    folder: Path | str,
    store: LibraryDatabase,
    manager: LibraryManager,
    events: Optional[Any] = None,
    cancel_event: Optional[Any] = None,
    extractor: Extractor = extract_metadata,
    refresh_albums: bool = False,
) -> ImportResult:
    """
    Scan a folder and import every supported file found in it.

    Reports a scanning phase (count only) and then the importing phase. An
    empty scan returns a zero result without starting an import.

    Raises:
        SecurityError: If the folder path is rejected
        NotADirectoryError: If the folder is not a directory
    """
    emit(events, 0, 0, "Scanning folder...", ImportStatus.SCANNING)

    try:
        folder_path = manager.require_valid_path(str(folder))
        if not folder_path.is_dir():
            raise NotADirectoryError(f"Not a directory: {folder_path}")
    except (SecurityError, NotADirectoryError) as e:
        logger.error(f"Cannot import from {folder}: {e}")
        emit(events, 0, 0, str(e), ImportStatus.FAILED, error=str(e))
        raise

    files = scan_folder(folder_path, manager.supported_formats, events)
    if not files:
        logger.info(f"No supported files found in {folder_path}")
        emit(events, 0, 0, "No supported files found", ImportStatus.COMPLETE)
        return ImportResult()

    emit(
        events,
        0,
        len(files),
        f"Found {len(files)} files. Starting import...",
        ImportStatus.IMPORTING,
    )
    return import_files(
        files,
        store,
        manager,
        events=events,
        cancel_event=cancel_event,
        extractor=extractor,
        refresh_albums=refresh_albums,
    )
