"""Exception hierarchy for torrentd.

Provides the error taxonomy used by configuration reconciliation. Only
PathResolutionError and InsufficientSpaceError are fatal, and only while
booting; everything else is reported to the caller as a value.
"""

from __future__ import annotations

from typing import Any


class TorrentdError(Exception):
    """Base exception for all torrentd errors."""

    def __init__(self, message: str, details: dict[str, Any] | None = None):
        """Initialize torrentd error."""
        super().__init__(message)
        self.message = message
        self.details = details or {}

    def __str__(self) -> str:
        """Return string representation of the error."""
        if self.details:
            return f"{self.message} (Details: {self.details})"
        return self.message


class ValidationError(TorrentdError):
    """Data validation errors."""


class ConfigurationError(ValidationError):
    """Configuration validation errors."""


class RateParseError(ValidationError):
    """Throttle string could not be turned into a rate limiter."""


class DiskError(TorrentdError):
    """Disk related errors."""


class PathResolutionError(DiskError):
    """A configured path could not be resolved to an absolute form."""


class InsufficientSpaceError(DiskError):
    """Not enough free space on the download volume."""


class PersistenceWriteError(TorrentdError):
    """The durable configuration write failed.

    ``actions`` holds the action set the rejected change would have required,
    so the caller can report it and retry.
    """

    def __init__(
        self,
        message: str,
        details: dict[str, Any] | None = None,
        actions: Any = None,
    ):
        """Initialize persistence error."""
        super().__init__(message, details)
        self.actions = actions


class RuntimeChangeForbiddenError(TorrentdError):
    """A field that may not change while running was modified."""
