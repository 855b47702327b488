"""
Music library domain models.

Contains data structures for extracted tags and import progress.
"""

from dataclasses import dataclass, field
from enum import Enum
from typing import NamedTuple, Optional


class Artwork(NamedTuple):
    """An embedded picture pulled out of an audio file."""

    data: bytes
    mime_format: str = "image/jpeg"


class ExtractedMetadata(NamedTuple):
    """Tag and technical data for one audio file, as read by the extractor.

    title/artist/album are already filled with fallbacks by the extractor;
    the import pipeline applies the same fallbacks again for injected
    extractors that leave them empty.
    """

    title: str
    artist: Optional[str] = None
    album: Optional[str] = None
    album_artist: Optional[str] = None
    track_number: Optional[int] = None
    disc_number: Optional[int] = None
    genres: tuple[str, ...] = ()
    year: Optional[int] = None
    duration: int = 0  # whole seconds
    bitrate: Optional[int] = None  # bits per second
    sample_rate: Optional[int] = None
    codec: Optional[str] = None
    file_size_bytes: int = 0
    is_compilation: bool = False
    artwork: Optional[Artwork] = None


class ImportStatus(str, Enum):
    """Status carried by every progress event of an import batch."""

    SCANNING = "scanning"
    IMPORTING = "importing"
    PROCESSING = "processing"
    IMPORTED = "imported"
    DUPLICATE = "duplicate"
    SKIPPED = "skipped"
    ERROR = "error"
    CANCELLED = "cancelled"
    COMPLETE = "complete"
    FAILED = "failed"


@dataclass(frozen=True)
class ImportProgress:
    """One event on an import batch's progress channel."""

    processed: int
    total: int
    message: str
    status: ImportStatus
    file_path: Optional[str] = None
    error: Optional[str] = None


@dataclass(frozen=True)
class ImportedTrack:
    """Minimal display fields for a track created by an import batch."""

    track_id: int
    title: str
    artist: str
    album: str


@dataclass
class ImportResult:
    """Aggregate counts for one import batch."""

    total: int = 0
    processed: int = 0
    imported: int = 0
    skipped: int = 0
    duplicates: int = 0
    errors: int = 0
    cancelled: bool = False
    imported_tracks: list[ImportedTrack] = field(default_factory=list)


class PrerequisiteCheck(NamedTuple):
    valid: bool
    errors: list[str]
