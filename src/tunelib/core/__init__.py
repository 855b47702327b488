"""Core infrastructure layer - no business logic dependencies.

This module provides foundation-level services:
- Configuration management (TOML)
- Database operations (SQLite)
- Path security validation
- Logging (Loguru) and console (Rich)

Clean architecture principle: The core layer has no dependencies on
domain or application layers.
"""

# Configuration
from .config import (
    Config,
    load_config,
    get_config_dir,
    get_config_path,
    get_data_dir,
    create_default_config,
    ensure_directories,
)

# Database
from .database import LibraryDatabase, SCHEMA_VERSION

# Errors
from .errors import LibraryError, ValidationError, ConstraintError, SecurityError

# Path security
from .path_security import is_valid_path, require_valid_path

# Console
from .console import get_console, get_error_console

__all__ = [
    # Config
    "Config",
    "load_config",
    "get_config_dir",
    "get_config_path",
    "get_data_dir",
    "create_default_config",
    "ensure_directories",
    # Database
    "LibraryDatabase",
    "SCHEMA_VERSION",
    # Errors
    "LibraryError",
    "ValidationError",
    "ConstraintError",
    "SecurityError",
    # Path security
    "is_valid_path",
    "require_valid_path",
    # Console
    "get_console",
    "get_error_console",
]
