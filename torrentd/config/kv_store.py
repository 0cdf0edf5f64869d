"""File-backed key-value store holding the durable configuration.

Keys are configuration field names. The file is TOML unless its suffix says
YAML or JSON, so operators can keep whichever format they already edit.
"""

from __future__ import annotations

import contextlib
import json
import logging
import os
from pathlib import Path
from typing import Any, Protocol

import toml
import yaml

logger = logging.getLogger(__name__)

YAML_SUFFIXES = frozenset({".yaml", ".yml"})


class DurableKV(Protocol):
    """Durable key-value configuration store."""

    def get(self, key: str, default: Any = None) -> Any:
        """Value staged or loaded for ``key``."""
        ...

    def set(self, key: str, value: Any) -> None:
        """Stage ``value`` for ``key``; not durable until ``write_as``."""
        ...

    def unset(self, key: str) -> None:
        """Drop a staged ``key``."""
        ...

    def write_as(self, path: str | Path) -> None:
        """Write every key to ``path``."""
        ...

    def config_file_used(self) -> Path:
        """File this store was loaded from and normally writes to."""
        ...


def _format_for(path: Path) -> str:
    suffix = path.suffix.lower()
    if suffix in YAML_SUFFIXES:
        return "yaml"
    if suffix == ".json":
        return "json"
    return "toml"


def dumps(data: dict[str, Any], fmt: str) -> str:
    """Serialize ``data`` in ``fmt`` ("toml", "yaml" or "json")."""
    if fmt == "yaml":
        return yaml.safe_dump(data, sort_keys=True)
    if fmt == "json":
        return json.dumps(data, indent=2, sort_keys=True) + "\n"
    if fmt == "toml":
        return toml.dumps(dict(sorted(data.items())))
    msg = f"Unsupported format: {fmt}"
    raise ValueError(msg)


def loads(text: str, fmt: str) -> dict[str, Any]:
    """Parse ``text`` in ``fmt`` into a flat mapping."""
    if fmt == "yaml":
        data = yaml.safe_load(text)
    elif fmt == "json":
        data = json.loads(text)
    else:
        data = toml.loads(text)
    if data is None:
        return {}
    if not isinstance(data, dict):
        msg = f"expected a mapping at the top level, got {type(data).__name__}"
        raise ValueError(msg)
    return data


class FileKVStore:
    """Durable store kept in memory and flushed to a single file."""

    def __init__(self, path: str | Path):
        """Initialize the store.

        Args:
            path: Backing file; it does not need to exist

        """
        self.path = Path(path)
        self._data: dict[str, Any] = {}

    def load(self) -> dict[str, Any]:
        """Read the backing file, replacing anything staged.

        A missing file leaves the store empty.

        Raises:
            OSError: the file exists but cannot be read
            ValueError: the file cannot be parsed

        """
        if not self.path.exists():
            logger.debug("Config file %s not found, starting empty", self.path)
            self._data = {}
            return {}

        text = self.path.read_text(encoding="utf-8")
        try:
            self._data = loads(text, _format_for(self.path))
        except (toml.TomlDecodeError, yaml.YAMLError, json.JSONDecodeError) as e:
            msg = f"cannot parse {self.path}: {e}"
            raise ValueError(msg) from e
        return dict(self._data)

    def exists(self) -> bool:
        """Whether the backing file exists on disk."""
        return self.path.exists()

    def get(self, key: str, default: Any = None) -> Any:
        """Value staged or loaded for ``key``."""
        return self._data.get(key, default)

    def set(self, key: str, value: Any) -> None:
        """Stage ``value`` for ``key``."""
        self._data[key] = value

    def unset(self, key: str) -> None:
        """Drop ``key`` from the staged data."""
        self._data.pop(key, None)

    def as_dict(self) -> dict[str, Any]:
        """Copy of every staged key."""
        return dict(self._data)

    def config_file_used(self) -> Path:
        """Backing file of this store."""
        return self.path

    def write_as(self, path: str | Path) -> None:
        """Atomically write every staged key to ``path``.

        The data is written to a sibling temporary file and renamed over the
        target, so readers see either the old or the new file.

        Raises:
            OSError: the directory or file cannot be written

        """
        target = Path(path)
        target.parent.mkdir(parents=True, exist_ok=True)
        content = dumps(self._data, _format_for(target))

        temp_file = target.with_name(target.name + ".tmp")
        try:
            with open(temp_file, "w", encoding="utf-8") as f:
                f.write(content)
                f.flush()
                os.fsync(f.fileno())
            os.replace(temp_file, target)
        except OSError:
            with contextlib.suppress(OSError):
                temp_file.unlink(missing_ok=True)
            raise

        logger.debug("Config written to %s", target)
