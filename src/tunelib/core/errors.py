"""Library exceptions for error handling.

Filesystem failures are not wrapped: they surface as the built-in OSError
family so callers can catch them the usual way.
"""


class LibraryError(Exception):
    """Base exception for library operations."""

    pass


class ValidationError(LibraryError):
    """Raised when a required field is missing or malformed, before any write."""

    pass


class ConstraintError(LibraryError):
    """Raised when the store rejects a write (uniqueness or foreign key)."""

    pass


class SecurityError(LibraryError):
    """Raised when a user-supplied path fails validation."""

    def __init__(self, path: object, message: str = None):
        self.path = path
        super().__init__(message or f"Path rejected by security check: {path!r}")
