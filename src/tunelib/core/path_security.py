"""
Path security validation utilities for Tunelib.

Provides pure functions that decide whether a user-supplied path may be
touched at all, preventing directory traversal attacks, symlink escapes and
reads from credential stores.
"""

import os
from pathlib import Path
from typing import Iterable

from .config import DEFAULT_BLOCKED_DIRS
from .errors import SecurityError


def is_path_within(path: Path, root: Path) -> bool:
    """Pure function - component-wise containment check on resolved paths.

    `/home/al` does not contain `/home/alice`; a plain string prefix test
    would say it does.
    """
    try:
        path.relative_to(root)
        return True
    except ValueError:
        return False


def is_valid_path(
    path_str: object,
    allowed_root: Path | str | None = None,
    blocked_dirs: Iterable[str] = DEFAULT_BLOCKED_DIRS,
) -> bool:
    """Pure function - validates a user-supplied path before any filesystem access.

    Rejects non-string input, embedded null bytes and relative paths. The
    path is then resolved (symlinks and `..` segments) and must land inside
    `allowed_root` (default: the home directory) but outside every
    `allowed_root/<blocked>` subtree. Anything that cannot be resolved is
    rejected.

    Args:
        path_str: Path to validate
        allowed_root: Directory every accepted path must live under
        blocked_dirs: Subdirectories of allowed_root that are never accepted

    Returns:
        True if the path is safe to access, False otherwise
    """
    if not isinstance(path_str, str) or not path_str:
        return False

    if "\0" in path_str:
        return False

    if not os.path.isabs(path_str):
        return False

    try:
        root = Path(allowed_root if allowed_root is not None else Path.home())
        resolved_root = root.expanduser().resolve()
        resolved = Path(path_str).resolve()
    except (OSError, RuntimeError, ValueError):
        # resolve() raises OSError for invalid paths, RuntimeError for symlink loops
        return False

    if not is_path_within(resolved, resolved_root):
        return False

    for blocked in blocked_dirs:
        try:
            blocked_path = (root.expanduser() / blocked).resolve()
        except (OSError, RuntimeError, ValueError):
            return False
        if is_path_within(resolved, blocked_path):
            return False
        # Also check the unresolved spelling in case allowed_root itself is a symlink
        if is_path_within(resolved, resolved_root / blocked):
            return False

    return True


def require_valid_path(
    path_str: object,
    allowed_root: Path | str | None = None,
    blocked_dirs: Iterable[str] = DEFAULT_BLOCKED_DIRS,
) -> Path:
    """Return the resolved path, or raise SecurityError if it is rejected."""
    if not is_valid_path(path_str, allowed_root, blocked_dirs):
        raise SecurityError(path_str)
    return Path(path_str).resolve()
