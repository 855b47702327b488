"""Library domain - managed library, metadata and import.

This domain handles:
- Managed folder layout and artwork storage
- Metadata extraction from audio files
- Folder scanning
- The import pipeline and its progress events
"""

# Models
from .models import (
    Artwork,
    ExtractedMetadata,
    ImportedTrack,
    ImportProgress,
    ImportResult,
    ImportStatus,
    PrerequisiteCheck,
)

# Metadata extraction and display
from .metadata import (
    extract_metadata,
    normalize_genres,
    format_duration,
    format_size,
)

# Managed library
from .library_manager import LibraryManager, sanitize_filename

# Scanning and import
from .scanner import is_supported_format, scan_folder
from .import_tracks import (
    import_file,
    import_files,
    import_folder,
    validate_import_prerequisites,
)

__all__ = [
    # Models
    "Artwork",
    "ExtractedMetadata",
    "ImportedTrack",
    "ImportProgress",
    "ImportResult",
    "ImportStatus",
    "PrerequisiteCheck",
    # Metadata
    "extract_metadata",
    "normalize_genres",
    "format_duration",
    "format_size",
    # Library manager
    "LibraryManager",
    "sanitize_filename",
    # Scanner and import
    "is_supported_format",
    "scan_folder",
    "import_file",
    "import_files",
    "import_folder",
    "validate_import_prerequisites",
]
