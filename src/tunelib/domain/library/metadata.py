"""
Music metadata extraction and display utilities.

Reads tags, embedded artwork and technical info from audio files using
Mutagen. Tag lookups try the ID3 frame, the MP4 atom and the Vorbis comment
name for each field, so one code path serves MP3, M4A/MP4 and FLAC.
"""

import os
import re
from pathlib import Path
from typing import Any, Iterable, Optional

from loguru import logger
from mutagen import File as MutagenFile
from mutagen.flac import FLAC
from mutagen.mp3 import MP3
from mutagen.mp4 import MP4, MP4Cover

from .models import Artwork, ExtractedMetadata

UNKNOWN_ARTIST = "Unknown Artist"
UNKNOWN_ALBUM = "Unknown Album"

TITLE_TAGS = ["TIT2", "\xa9nam", "title", "TITLE"]
ARTIST_TAGS = ["TPE1", "\xa9ART", "artist", "ARTIST"]
ALBUM_TAGS = ["TALB", "\xa9alb", "album", "ALBUM"]
ALBUM_ARTIST_TAGS = ["TPE2", "aART", "albumartist", "ALBUMARTIST"]
GENRE_TAGS = ["TCON", "\xa9gen", "genre", "GENRE"]
TRACK_NUMBER_TAGS = ["TRCK", "trkn", "tracknumber", "TRACKNUMBER"]
DISC_NUMBER_TAGS = ["TPOS", "disk", "discnumber", "DISCNUMBER"]
YEAR_TAGS = ["TDRC", "TYER", "\xa9day", "date", "DATE", "year", "YEAR"]
COMPILATION_TAGS = ["TCMP", "cpil", "compilation", "COMPILATION"]


def get_tag_raw(audio_file: Any, tag_names: list[str]) -> Any:
    """Get the first value of the first tag present, trying each name in turn."""
    for tag_name in tag_names:
        try:
            value = audio_file.get(tag_name)
        except (KeyError, ValueError):
            # Vorbis comments raise ValueError for keys they cannot hold
            continue
        if hasattr(value, "text"):
            # ID3 frame
            value = value.text
        if isinstance(value, list):
            value = value[0] if value else None
        if value is not None and value != "":
            return value
    return None


def get_tag_value(audio_file: Any, tag_names: list[str]) -> Optional[str]:
    """Get a tag as a stripped string, or None if absent or blank."""
    value = get_tag_raw(audio_file, tag_names)
    if value is None:
        return None
    text = str(value).strip()
    return text or None


def parse_number(value: Any) -> Optional[int]:
    """Parse a track/disc number: `3`, `"3/12"` or MP4's `(3, 12)` all give 3."""
    if value is None or isinstance(value, bool):
        return None
    if isinstance(value, tuple):
        value = value[0] if value else None
    if isinstance(value, int):
        return value if value > 0 else None
    match = re.match(r"\s*(\d+)", str(value))
    if not match:
        return None
    number = int(match.group(1))
    return number if number > 0 else None


def parse_year(value: Any) -> Optional[int]:
    """Parse a year out of a date tag such as `2001` or `2001-05-03`."""
    if value is None:
        return None
    match = re.match(r"\s*(\d{4})", str(value))
    return int(match.group(1)) if match else None


def parse_flag(value: Any) -> bool:
    if isinstance(value, bool):
        return value
    if isinstance(value, int):
        return value != 0
    if value is None:
        return False
    return str(value).strip().lower() in ("1", "true", "yes")


def normalize_genres(value: Any) -> list[str]:
    """Normalize a genre tag (single string or sequence) to a list of names.

    Blank entries are dropped and duplicates removed, keeping first-seen order.
    """
    if value is None:
        return []
    if isinstance(value, str):
        values: Iterable[Any] = [value]
    else:
        values = value

    genres: list[str] = []
    for item in values:
        if item is None:
            continue
        name = str(item).strip()
        if name and name not in genres:
            genres.append(name)
    return genres


def get_genres(audio_file: Any) -> list[str]:
    """Read every genre value from whichever genre tag is present."""
    for tag_name in GENRE_TAGS:
        try:
            value = audio_file.get(tag_name)
        except (KeyError, ValueError):
            continue
        if value is None:
            continue
        if hasattr(value, "genres"):
            # ID3 TCON resolves numeric "(17)" references
            return normalize_genres(value.genres)
        if hasattr(value, "text"):
            return normalize_genres(value.text)
        return normalize_genres(value)
    return []


def extract_artwork(audio_file: Any) -> Optional[Artwork]:
    """Return the first embedded picture, if any."""
    if isinstance(audio_file, FLAC):
        if audio_file.pictures:
            picture = audio_file.pictures[0]
            return Artwork(bytes(picture.data), picture.mime or "image/jpeg")
        return None

    tags = getattr(audio_file, "tags", None)
    if tags is None:
        return None

    if isinstance(audio_file, MP4):
        covers = tags.get("covr") or []
        if covers:
            cover = covers[0]
            if getattr(cover, "imageformat", None) == MP4Cover.FORMAT_PNG:
                return Artwork(bytes(cover), "image/png")
            return Artwork(bytes(cover), "image/jpeg")
        return None

    if hasattr(tags, "getall"):
        frames = tags.getall("APIC")
        if frames:
            mime = frames[0].mime or "image/jpeg"
            if "/" not in mime:
                mime = f"image/{mime.lower()}"
            return Artwork(bytes(frames[0].data), mime)

    return None


def get_codec(audio_file: Any) -> Optional[str]:
    """Short codec name for an opened Mutagen file."""
    if isinstance(audio_file, MP3):
        return "mp3"
    if isinstance(audio_file, FLAC):
        return "flac"
    if isinstance(audio_file, MP4):
        codec = getattr(audio_file.info, "codec", "") or ""
        if codec.startswith("mp4a"):
            return "aac"
        return codec or "aac"
    return type(audio_file).__name__.lower()


def fallback_metadata(local_path: str, file_size: int) -> ExtractedMetadata:
    """Minimal metadata for a file whose tags could not be read."""
    return ExtractedMetadata(
        title=Path(local_path).stem or "Unknown Track",
        artist=UNKNOWN_ARTIST,
        album=UNKNOWN_ALBUM,
        album_artist=UNKNOWN_ARTIST,
        file_size_bytes=file_size,
    )


def extract_metadata(local_path: str) -> Optional[ExtractedMetadata]:
    """Extract metadata from an audio file using mutagen.

    Returns None when the file cannot be stat'ed at all (missing or
    unreadable); the import pipeline counts that as skipped. A file that
    exists but has no readable tags still yields fallback metadata.
    """
    try:
        file_size = os.stat(local_path).st_size
    except OSError as e:
        logger.warning(f"Cannot read {local_path}: {e}")
        return None

    try:
        audio_file = MutagenFile(local_path)
    except Exception as e:
        logger.warning(f"Could not read metadata from {local_path}: {e}")
        return fallback_metadata(local_path, file_size)

    if audio_file is None:
        logger.debug(f"Unrecognized audio format, using filename: {local_path}")
        return fallback_metadata(local_path, file_size)

    try:
        title = get_tag_value(audio_file, TITLE_TAGS) or Path(local_path).stem
        artist = get_tag_value(audio_file, ARTIST_TAGS) or UNKNOWN_ARTIST
        album = get_tag_value(audio_file, ALBUM_TAGS) or UNKNOWN_ALBUM
        album_artist = get_tag_value(audio_file, ALBUM_ARTIST_TAGS) or artist

        duration = 0
        bitrate = None
        sample_rate = None
        info = getattr(audio_file, "info", None)
        if info is not None:
            duration = round(getattr(info, "length", 0) or 0)
            bitrate = getattr(info, "bitrate", None) or None
            sample_rate = getattr(info, "sample_rate", None) or None

        return ExtractedMetadata(
            title=title,
            artist=artist,
            album=album,
            album_artist=album_artist,
            track_number=parse_number(get_tag_raw(audio_file, TRACK_NUMBER_TAGS)),
            disc_number=parse_number(get_tag_raw(audio_file, DISC_NUMBER_TAGS)),
            genres=tuple(get_genres(audio_file)),
            year=parse_year(get_tag_raw(audio_file, YEAR_TAGS)),
            duration=duration,
            bitrate=bitrate,
            sample_rate=sample_rate,
            codec=get_codec(audio_file),
            file_size_bytes=file_size,
            is_compilation=parse_flag(get_tag_raw(audio_file, COMPILATION_TAGS)),
            artwork=extract_artwork(audio_file),
        )
    except Exception as e:
        logger.warning(f"Malformed tags in {local_path}: {e}")
        return fallback_metadata(local_path, file_size)


def format_duration(seconds: float) -> str:
    """Format duration in seconds to human readable string."""
    if not seconds:
        return "0:00"

    hours = int(seconds // 3600)
    minutes = int((seconds % 3600) // 60)
    secs = int(seconds % 60)

    if hours > 0:
        return f"{hours}:{minutes:02d}:{secs:02d}"
    return f"{minutes}:{secs:02d}"


def format_size(bytes_size: float) -> str:
    """Format file size in bytes to human readable string."""
    for unit in ["B", "KB", "MB", "GB"]:
        if bytes_size < 1024:
            return f"{bytes_size:.2f} {unit}"
        bytes_size /= 1024
    return f"{bytes_size:.2f} TB"
