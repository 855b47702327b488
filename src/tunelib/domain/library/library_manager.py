"""
Managed library folder structure and content-addressed artwork storage.

Layout under the library root:

    Music/<Artist>/<Album>/<NN Title>.<ext>
    Artwork/albums/<sha256>.<ext>
    Artwork/playlists/<sha256>.<ext>
    Database/library.db
"""

import hashlib
import os
import re
import tempfile
from pathlib import Path
from typing import Any, Iterable, Mapping, Optional

from loguru import logger

from tunelib.core.config import (
    DEFAULT_BLOCKED_DIRS,
    DEFAULT_SUPPORTED_FORMATS,
    Config,
    get_default_library_root,
)
from tunelib.core.path_security import is_valid_path, require_valid_path

from .metadata import format_size
from .models import Artwork

# UTF-8 bytes; the "NN " prefix, extension and ".part" suffix must still fit in 255
MAX_FILENAME_BYTES = 200
MAX_EXTENSION_LENGTH = 10

UNKNOWN = "Unknown"
DEFAULT_EXTENSION = ".mp3"

ARTWORK_EXTENSIONS = [".jpg", ".jpeg", ".png", ".gif", ".bmp", ".webp"]

ARTWORK_MIME_EXTENSIONS = {
    "image/jpeg": ".jpg",
    "image/jpg": ".jpg",
    "image/png": ".png",
    "image/gif": ".gif",
    "image/bmp": ".bmp",
    "image/webp": ".webp",
}

CODEC_EXTENSIONS = {
    "mp3": ".mp3",
    "mpeg 1 layer 3": ".mp3",
    "flac": ".flac",
    "aac": ".m4a",
    "alac": ".m4a",
    "mp4a": ".m4a",
}

# Path separators, wildcards, quotes, and ASCII control characters
_HOSTILE_CHARS = re.compile(r'[/\\?%*:|"<>\x00-\x1f\x7f]')
_WHITESPACE = re.compile(r"\s+")


def sanitize_filename(name: Any) -> str:
    """Make `name` safe to use as a single path component.

    Total: never raises. None, blank input, and names that are nothing but
    dots map to "Unknown". Non-Latin scripts and emoji pass through.
    """
    if name is None:
        return UNKNOWN
    if not isinstance(name, str):
        name = str(name)

    # Tabs and newlines become spaces before control characters are dropped
    sanitized = _WHITESPACE.sub(" ", name)
    sanitized = _HOSTILE_CHARS.sub("", sanitized)
    sanitized = _WHITESPACE.sub(" ", sanitized).strip()

    encoded = sanitized.encode("utf-8")
    if len(encoded) > MAX_FILENAME_BYTES:
        # Cut on the byte budget, dropping any character split at the boundary
        sanitized = encoded[:MAX_FILENAME_BYTES].decode("utf-8", "ignore").strip()

    if not sanitized or set(sanitized) == {"."}:
        return UNKNOWN
    return sanitized


def get_extension(file_path: Optional[str], codec: Optional[str]) -> str:
    """Pick the destination extension: source suffix, then codec, then default.

    A source suffix is kept only if, once hostile characters are removed, it
    is a short ASCII alphanumeric tail.
    """
    if file_path:
        suffix = _HOSTILE_CHARS.sub("", Path(file_path).suffix.lstrip("."))
        if suffix.isascii() and suffix.isalnum() and len(suffix) <= MAX_EXTENSION_LENGTH:
            return f".{suffix}"
    if codec:
        key = codec.strip().lower()
        if key in CODEC_EXTENSIONS:
            return CODEC_EXTENSIONS[key]
        if key.isalnum():
            return f".{key}"
    return DEFAULT_EXTENSION


def format_track_number(track_number: Any) -> str:
    """Two digits minimum ("01", "12", "123"); "00" when unknown."""
    try:
        number = int(track_number)
    except (TypeError, ValueError):
        return "00"
    if number <= 0:
        return "00"
    return f"{number:02d}"


def hash_data(data: bytes) -> str:
    """SHA-256 hex digest used to address artwork files."""
    return hashlib.sha256(data).hexdigest()


class LibraryManager:
    """Owns the managed library directory tree and the artwork store."""

    def __init__(
        self,
        library_path: Path | str | None = None,
        allowed_root: Path | str | None = None,
        blocked_dirs: Iterable[str] = DEFAULT_BLOCKED_DIRS,
        supported_formats: Iterable[str] = DEFAULT_SUPPORTED_FORMATS,
    ):
        self.library_path = Path(library_path or get_default_library_root())
        self.allowed_root = Path(allowed_root) if allowed_root else Path.home()
        self.blocked_dirs = list(blocked_dirs)
        self.supported_formats = [ext.lower() for ext in supported_formats]

    @classmethod
    def from_config(cls, config: Config) -> "LibraryManager":
        return cls(
            library_path=config.library.root,
            allowed_root=config.security.allowed_root,
            blocked_dirs=config.security.blocked_dirs,
            supported_formats=config.library.supported_formats,
        )

    # ==================== LAYOUT ====================

    def get_music_path(self) -> Path:
        return self.library_path / "Music"

    def get_artwork_path(self) -> Path:
        return self.library_path / "Artwork"

    def get_albums_artwork_path(self) -> Path:
        return self.get_artwork_path() / "albums"

    def get_playlists_artwork_path(self) -> Path:
        return self.get_artwork_path() / "playlists"

    def get_database_path(self) -> Path:
        return self.library_path / "Database"

    def get_database_file_path(self) -> Path:
        return self.get_database_path() / "library.db"

    def initialize(self) -> None:
        """Create the library folder structure; safe to call repeatedly."""
        for folder in (
            self.library_path,
            self.get_music_path(),
            self.get_artwork_path(),
            self.get_albums_artwork_path(),
            self.get_playlists_artwork_path(),
            self.get_database_path(),
        ):
            folder.mkdir(parents=True, exist_ok=True)
        logger.debug(f"Library structure ready at {self.library_path}")

    def exists(self) -> bool:
        return self.library_path.exists()

    def verify_permissions(self) -> bool:
        """Check the library is readable and writable, creating it if missing."""
        try:
            if not self.exists():
                self.initialize()
            return os.access(self.library_path, os.R_OK | os.W_OK)
        except OSError as e:
            logger.warning(f"Library permission check failed for {self.library_path}: {e}")
            return False

    def ensure_directory(self, dir_path: Path | str) -> None:
        Path(dir_path).mkdir(parents=True, exist_ok=True)

    # ==================== PATHS ====================

    def sanitize_filename(self, name: Any) -> str:
        return sanitize_filename(name)

    def generate_track_path(self, metadata: Mapping[str, Any]) -> Path:
        """
        Derive the library destination for a track.

        Pure: depends only on `metadata` and the library root.

        Args:
            metadata: Mapping with any of artist, album_artist, album,
                track_number, title, file_path (source file) and codec

        Returns:
            <root>/Music/<Artist>/<Album>/<NN Title><ext>
        """
        artist = sanitize_filename(
            metadata.get("artist") or metadata.get("album_artist") or "Unknown Artist"
        )
        album = sanitize_filename(metadata.get("album") or "Unknown Album")
        track_number = format_track_number(metadata.get("track_number"))
        title = sanitize_filename(metadata.get("title") or "Unknown Track")
        extension = get_extension(metadata.get("file_path"), metadata.get("codec"))

        return self.get_music_path() / artist / album / f"{track_number} {title}{extension}"

    def hash_data(self, data: bytes) -> str:
        return hash_data(data)

    def generate_artwork_path(
        self, data: bytes, kind: str = "album", mime_format: Optional[str] = None
    ) -> Path:
        """Content-addressed path for artwork bytes.

        Args:
            data: Image bytes
            kind: 'album' or 'playlist'
            mime_format: Image MIME type; decides the extension (default .jpg)
        """
        extension = ARTWORK_MIME_EXTENSIONS.get((mime_format or "").lower(), ".jpg")
        filename = f"{hash_data(data)}{extension}"
        if kind == "playlist":
            return self.get_playlists_artwork_path() / filename
        return self.get_albums_artwork_path() / filename

    def save_artwork(
        self, data: bytes, kind: str = "album", mime_format: Optional[str] = None
    ) -> Path:
        """Write artwork unless an identical image is already stored.

        Returns:
            The artwork path, whether it was written now or before
        """
        artwork_path = self.generate_artwork_path(data, kind, mime_format)
        if artwork_path.exists():
            return artwork_path

        artwork_path.parent.mkdir(parents=True, exist_ok=True)
        fd, temp_path = tempfile.mkstemp(dir=artwork_path.parent, suffix=".tmp")
        try:
            with os.fdopen(fd, "wb") as f:
                f.write(data)
            os.replace(temp_path, artwork_path)
        except BaseException:
            if os.path.exists(temp_path):
                os.remove(temp_path)
            raise

        logger.debug(f"Saved artwork {artwork_path.name}")
        return artwork_path

    def cache_artwork(self, artwork: Optional[Artwork]) -> Optional[Path]:
        """Store a track's embedded artwork in the album namespace."""
        if artwork is None or not artwork.data:
            return None
        return self.save_artwork(artwork.data, "album", artwork.mime_format)

    # ==================== SECURITY ====================

    def is_valid_path(self, path_str: object) -> bool:
        return is_valid_path(path_str, self.allowed_root, self.blocked_dirs)

    def require_valid_path(self, path_str: object) -> Path:
        """Resolved path, or SecurityError if it is rejected."""
        return require_valid_path(path_str, self.allowed_root, self.blocked_dirs)

    # ==================== STATISTICS ====================

    def get_stats(self) -> dict[str, Any]:
        """Count music and artwork files and total bytes under the library root."""
        stats = {
            "exists": self.exists(),
            "music_files": 0,
            "artwork_files": 0,
            "total_size": 0,
        }
        if not stats["exists"]:
            return stats

        stats["music_files"] = count_files(self.get_music_path(), self.supported_formats)
        stats["artwork_files"] = count_files(self.get_artwork_path(), ARTWORK_EXTENSIONS)
        stats["total_size"] = directory_size(self.library_path)
        return stats

    def format_size(self, bytes_size: float) -> str:
        return format_size(bytes_size)


def count_files(dir_path: Path, extensions: Iterable[str]) -> int:
    """Recursively count files whose extension is in `extensions`.

    Unreadable directories are skipped.
    """
    extensions = {ext.lower() for ext in extensions}
    count = 0
    for _, _, filenames in os.walk(dir_path):
        for filename in filenames:
            if os.path.splitext(filename)[1].lower() in extensions:
                count += 1
    return count


def directory_size(dir_path: Path) -> int:
    """Total size in bytes of all regular files under `dir_path`."""
    total = 0
    for root, _, filenames in os.walk(dir_path):
        for filename in filenames:
            try:
                total += os.stat(os.path.join(root, filename)).st_size
            except OSError:
                continue
    return total
