"""Directory canonicalization and disk space preflight."""

from __future__ import annotations

import logging
import os
from pathlib import Path
from typing import Protocol

import psutil

from torrentd.models import Config
from torrentd.utils.exceptions import InsufficientSpaceError, PathResolutionError

logger = logging.getLogger(__name__)

DIRECTORY_FIELDS = ("download_directory", "watch_directory")

# Below this the daemon refuses to boot
DEFAULT_MIN_FREE_BYTES = 10 * 1024 * 1024


class DiskStat(Protocol):
    """Reports free space on the volume holding a path."""

    def free_bytes(self, path: str) -> int:
        """Available bytes for an unprivileged writer at ``path``."""
        ...


class PsutilDiskStat:
    """DiskStat backed by psutil."""

    def free_bytes(self, path: str) -> int:
        """Available bytes on the volume holding ``path``."""
        return psutil.disk_usage(path).free


def normalize_path(path: str) -> tuple[str, bool]:
    """Resolve ``path`` to an absolute, cleaned form.

    Args:
        path: Configured path; empty means "not configured"

    Returns:
        Tuple of (canonical_path, changed) where ``changed`` is true iff the
        canonical form differs textually from the input.

    Raises:
        PathResolutionError: the path could not be resolved, for example
            because the working directory no longer exists.

    """
    if not path:
        return path, False
    try:
        resolved = os.path.abspath(path)
    except OSError as e:
        msg = f"Invalid path {path}: {e}"
        raise PathResolutionError(msg, {"path": path}) from e
    return resolved, resolved != path


def normalize_directories(config: Config) -> tuple[Config, bool]:
    """Canonicalize the download and watch directories of ``config``.

    Returns:
        Tuple of (snapshot, changed). The input snapshot is returned as is
        when nothing changed.

    """
    updates = {}
    for field in DIRECTORY_FIELDS:
        resolved, changed = normalize_path(getattr(config, field))
        if changed:
            logger.debug("Normalized %s: %s -> %s", field, getattr(config, field), resolved)
            updates[field] = resolved

    if not updates:
        return config, False
    return config.model_copy(update=updates), True


def _nearest_existing(path: str) -> str:
    candidate = Path(path)
    for parent in (candidate, *candidate.parents):
        if parent.exists():
            return str(parent)
    return str(candidate.anchor or ".")


def check_disk_space(
    path: str,
    min_free_bytes: int = DEFAULT_MIN_FREE_BYTES,
    disk_stat: DiskStat | None = None,
) -> int:
    """Verify the volume holding ``path`` has at least ``min_free_bytes`` free.

    The directory does not need to exist yet; its nearest existing ancestor
    is measured.

    Returns:
        Free bytes found.

    Raises:
        InsufficientSpaceError: free space is below the threshold or cannot
            be determined.

    """
    if disk_stat is None:
        disk_stat = PsutilDiskStat()

    probe = _nearest_existing(path or ".")
    try:
        free = disk_stat.free_bytes(probe)
    except OSError as e:
        msg = f"Cannot determine free space for {path}: {e}"
        raise InsufficientSpaceError(msg, {"path": path}) from e

    if free < min_free_bytes:
        msg = "not enough disk space"
        raise InsufficientSpaceError(
            msg,
            {"path": path, "free_bytes": free, "required_bytes": min_free_bytes},
        )

    logger.debug("Disk space for %s: %d bytes free", path, free)
    return free
