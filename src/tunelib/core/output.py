"""
Unified output system using Loguru.
"""

import sys
from pathlib import Path

from loguru import logger

from .config import LoggingConfig, get_data_dir

LOG_FORMAT = "{time:YYYY-MM-DD HH:mm:ss} | {level: <8} | {name}:{line} | {message}"


def get_log_file_path() -> Path:
    """Get the path to the default log file."""
    return get_data_dir() / "tunelib.log"


def setup_loguru(
    log_file: Path,
    level: str = "INFO",
    max_file_size_mb: int = 10,
    backup_count: int = 5,
    console_output: bool = False,
) -> None:
    """
    Configure loguru with a rotating file sink and an optional stderr sink.

    Args:
        log_file: Path to log file
        level: Minimum level for logging (DEBUG, INFO, WARNING, ERROR)
        max_file_size_mb: Rotate the log file once it reaches this size
        backup_count: Number of rotated files to keep
        console_output: Whether to also log to stderr
    """
    logger.remove()

    log_file.parent.mkdir(parents=True, exist_ok=True)
    logger.add(
        log_file,
        rotation=f"{max_file_size_mb} MB",
        retention=backup_count,
        level=level,
        format=LOG_FORMAT,
        encoding="utf-8",
        enqueue=False,
    )

    if console_output:
        logger.add(sys.stderr, level=level, format="{level}: {message}")

    logger.info(f"Loguru initialized: {log_file} (level={level})")


def setup_logging_from_config(config: LoggingConfig) -> None:
    """Apply a [logging] config section."""
    log_file = Path(config.log_file) if config.log_file else get_log_file_path()
    setup_loguru(
        log_file,
        level=config.level,
        max_file_size_mb=config.max_file_size_mb,
        backup_count=config.backup_count,
        console_output=config.console_output,
    )
