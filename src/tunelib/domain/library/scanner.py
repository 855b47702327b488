"""
Folder scanning for importable music files.

Walks a source folder recursively and collects files whose extension is in
the supported-format set. Unreadable directories are logged and skipped.
"""

import os
from pathlib import Path
from typing import Any, Iterable, Optional

from loguru import logger

from tunelib.core.config import DEFAULT_SUPPORTED_FORMATS

from .models import ImportProgress, ImportStatus


def is_supported_format(local_path: Path | str, supported_formats: Iterable[str]) -> bool:
    """Check if file format is supported."""
    suffix = os.path.splitext(str(local_path))[1].lower()
    return suffix in {ext.lower() for ext in supported_formats}


def scan_folder(
    folder: Path | str,
    supported_formats: Iterable[str] = DEFAULT_SUPPORTED_FORMATS,
    events: Optional[Any] = None,
) -> list[str]:
    """Recursively collect supported music files under a folder.

    Entries are visited in name order so repeated scans return the same list.
    Symlinked directories are not followed.

    Args:
        folder: Folder to scan
        supported_formats: Extensions (with dot) to collect
        events: Optional channel with a `put` method; receives a SCANNING
            event per file found

    Returns:
        Absolute paths of matching files
    """
    formats = {ext.lower() for ext in supported_formats}
    found: list[str] = []
    pending = [str(folder)]

    while pending:
        current = pending.pop()
        try:
            with os.scandir(current) as it:
                entries = sorted(it, key=lambda entry: entry.name)
        except OSError as e:
            logger.warning(f"Skipping unreadable directory {current}: {e}")
            continue

        subdirs = []
        for entry in entries:
            try:
                if entry.is_dir(follow_symlinks=False):
                    subdirs.append(entry.path)
                elif entry.is_file() and is_supported_format(entry.name, formats):
                    found.append(os.path.abspath(entry.path))
                    if events is not None:
                        events.put(
                            ImportProgress(
                                processed=0,
                                total=len(found),
                                message=f"Found: {entry.name}",
                                status=ImportStatus.SCANNING,
                                file_path=found[-1],
                            )
                        )
            except OSError as e:
                logger.warning(f"Skipping unreadable entry {entry.path}: {e}")

        # Reversed so the stack pops subdirectories in name order
        pending.extend(reversed(subdirs))

    logger.debug(f"Scanned {folder}: {len(found)} supported files")
    return found
