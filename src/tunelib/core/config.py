"""
Configuration management for Tunelib
"""

import os
import tomllib
from dataclasses import dataclass, field
from pathlib import Path
from typing import List, Optional

from loguru import logger

DEFAULT_SUPPORTED_FORMATS = [".mp3", ".flac", ".m4a", ".mp4"]

DEFAULT_BLOCKED_DIRS = [
    ".ssh",
    ".gnupg",
    ".config",
    ".local",
    ".cache",
    "Library/Keychains",
    "Library/Application Support/Keychain",
    ".aws",
    ".azure",
    ".kube",
]


def get_default_library_root() -> Path:
    """Get the default managed library root."""
    return Path.home() / "Music" / "Tunelib"


@dataclass
class LibraryConfig:
    """Configuration for the managed library."""

    root: str = field(default_factory=lambda: str(get_default_library_root()))
    supported_formats: List[str] = field(
        default_factory=lambda: list(DEFAULT_SUPPORTED_FORMATS)
    )


@dataclass
class SecurityConfig:
    """Configuration for user-supplied path validation."""

    allowed_root: str = field(default_factory=lambda: str(Path.home()))
    blocked_dirs: List[str] = field(default_factory=lambda: list(DEFAULT_BLOCKED_DIRS))


@dataclass
class ImportConfig:
    """Configuration for the import pipeline."""

    refresh_albums_after_import: bool = True
    event_queue_size: int = 0  # 0 = unbounded

    def validate(self) -> None:
        """Validate import configuration values.

        Raises:
            ValueError: If configuration values are invalid
        """
        if self.event_queue_size < 0:
            raise ValueError(
                f"event_queue_size must be >= 0, got {self.event_queue_size}"
            )


@dataclass
class LoggingConfig:
    """Configuration for logging."""

    level: str = "INFO"  # DEBUG, INFO, WARNING, ERROR, CRITICAL
    log_file: Optional[str] = None  # default: ~/.local/share/tunelib/tunelib.log
    max_file_size_mb: int = 10
    backup_count: int = 5
    console_output: bool = False


@dataclass
class Config:
    """Main configuration object."""

    library: LibraryConfig = field(default_factory=LibraryConfig)
    security: SecurityConfig = field(default_factory=SecurityConfig)
    imports: ImportConfig = field(default_factory=ImportConfig)
    logging: LoggingConfig = field(default_factory=LoggingConfig)


def get_config_dir() -> Path:
    """Get the configuration directory path."""
    config_home = os.environ.get("XDG_CONFIG_HOME")
    if config_home:
        return Path(config_home) / "tunelib"
    return Path.home() / ".config" / "tunelib"


def get_data_dir() -> Path:
    """Get the data directory path."""
    data_home = os.environ.get("XDG_DATA_HOME")
    if data_home:
        return Path(data_home) / "tunelib"
    return Path.home() / ".local" / "share" / "tunelib"


def get_config_path() -> Path:
    """Get the main configuration file path.

    Checks for config.toml in the following order:
    1. Current working directory
    2. XDG_CONFIG_HOME/tunelib (or ~/.config/tunelib)
    """
    local_config = Path.cwd() / "config.toml"
    if local_config.exists():
        return local_config

    return get_config_dir() / "config.toml"


def create_default_config() -> str:
    """Create a default configuration TOML content."""
    return """
# Tunelib Configuration

[library]
# Root of the managed library (Music/, Artwork/ and Database/ live here)
root = "~/Music/Tunelib"

# Audio formats picked up when scanning folders
supported_formats = [".mp3", ".flac", ".m4a", ".mp4"]

[security]
# User-supplied paths must resolve inside this directory
allowed_root = "~"

# Subdirectories of allowed_root that are never read
blocked_dirs = [".ssh", ".gnupg", ".config", ".local", ".cache", "Library/Keychains", "Library/Application Support/Keychain", ".aws", ".azure", ".kube"]

[import]
# Rebuild album track counts after each import batch
refresh_albums_after_import = true

# Maximum buffered progress events (0 = unbounded)
event_queue_size = 0

[logging]
# Log level (DEBUG, INFO, WARNING, ERROR, CRITICAL)
level = "INFO"

# Custom log file path (default: ~/.local/share/tunelib/tunelib.log)
# log_file = "/path/to/custom/tunelib.log"

# Maximum log file size in MB before rotation
max_file_size_mb = 10

# Number of rotated log files to keep
backup_count = 5

# Also output logs to stderr
console_output = false
""".strip()


def _parse_config(toml_data: dict) -> Config:
    """Build a Config from parsed TOML, falling back to defaults per key."""
    config = Config()

    if "library" in toml_data:
        library_data = toml_data["library"]
        config.library = LibraryConfig(
            root=str(Path(library_data.get("root", config.library.root)).expanduser()),
            supported_formats=[
                ext.lower()
                for ext in library_data.get(
                    "supported_formats", config.library.supported_formats
                )
            ],
        )

    if "security" in toml_data:
        security_data = toml_data["security"]
        config.security = SecurityConfig(
            allowed_root=str(
                Path(
                    security_data.get("allowed_root", config.security.allowed_root)
                ).expanduser()
            ),
            blocked_dirs=security_data.get(
                "blocked_dirs", config.security.blocked_dirs
            ),
        )

    if "import" in toml_data:
        import_data = toml_data["import"]
        config.imports = ImportConfig(
            refresh_albums_after_import=import_data.get(
                "refresh_albums_after_import",
                config.imports.refresh_albums_after_import,
            ),
            event_queue_size=import_data.get(
                "event_queue_size", config.imports.event_queue_size
            ),
        )
        try:
            config.imports.validate()
        except ValueError as e:
            logger.warning(f"Invalid import configuration: {e}. Using defaults.")
            config.imports = ImportConfig()

    if "logging" in toml_data:
        logging_data = toml_data["logging"]
        log_file = logging_data.get("log_file")
        if log_file:
            log_file = str(Path(log_file).expanduser())
        config.logging = LoggingConfig(
            level=logging_data.get("level", config.logging.level).upper(),
            log_file=log_file,
            max_file_size_mb=logging_data.get(
                "max_file_size_mb", config.logging.max_file_size_mb
            ),
            backup_count=logging_data.get(
                "backup_count", config.logging.backup_count
            ),
            console_output=logging_data.get(
                "console_output", config.logging.console_output
            ),
        )

    return config


def load_config(config_path: Optional[Path] = None) -> Config:
    """Load configuration from file, or return defaults if there is none.

    Environment variables override TOML values:
    - TUNELIB_LIBRARY_ROOT
    - TUNELIB_LOG_LEVEL
    """
    from dotenv import load_dotenv

    env_path = get_config_dir() / ".env"
    if env_path.exists():
        load_dotenv(env_path)

    if config_path is None:
        config_path = get_config_path()

    config = Config()
    if config_path.exists():
        try:
            with open(config_path, "rb") as f:
                config = _parse_config(tomllib.load(f))
        except (tomllib.TOMLDecodeError, OSError) as e:
            logger.warning(f"Error loading configuration from {config_path}: {e}")
            logger.warning("Using default configuration.")
            config = Config()

    library_root = os.environ.get("TUNELIB_LIBRARY_ROOT")
    if library_root:
        config.library.root = str(Path(library_root).expanduser())

    log_level = os.environ.get("TUNELIB_LOG_LEVEL")
    if log_level:
        config.logging.level = log_level.upper()

    return config


def ensure_directories() -> None:
    """Ensure all necessary directories exist."""
    get_config_dir().mkdir(parents=True, exist_ok=True)
    get_data_dir().mkdir(parents=True, exist_ok=True)
