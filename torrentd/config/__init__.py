"""Configuration management.

This module handles configuration loading, change classification, path
normalization and persistence.
"""

from __future__ import annotations

from torrentd.config.config import (
    ConfigStore,
    ReconcileResult,
    find_config_file,
)
from torrentd.config.config_diff import Action, FieldChange, changed_fields, classify
from torrentd.config.directories import (
    check_disk_space,
    normalize_directories,
    normalize_path,
)
from torrentd.config.kv_store import DurableKV, FileKVStore
from torrentd.config.persistence import sync

__all__ = [
    "Action",
    "ConfigStore",
    "DurableKV",
    "FieldChange",
    "FileKVStore",
    "ReconcileResult",
    "changed_fields",
    "check_disk_space",
    "classify",
    "find_config_file",
    "normalize_directories",
    "normalize_path",
    "sync",
]
