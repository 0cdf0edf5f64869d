"""Configuration store for torrentd.

Holds the active configuration snapshot and reconciles proposed snapshots
against it. Loading is hierarchical: defaults → config file → environment.

Reconciliation is write-ahead: a change is written to the durable store
before it becomes the active snapshot, and a failed write leaves the active
snapshot untouched.
"""

from __future__ import annotations

import logging
import os
import threading
from collections.abc import Mapping
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any

from pydantic import ValidationError

from torrentd.config.config_diff import (
    NO_ACTION,
    Action,
    FieldChange,
    classify,
)
from torrentd.config.directories import normalize_directories
from torrentd.config.kv_store import DurableKV, FileKVStore, dumps
from torrentd.config.persistence import sync
from torrentd.models import Config
from torrentd.throttle.rate_limiter import (
    RateLimiterSpec,
    download_limiter,
    sanitize_rates,
    upload_limiter,
)
from torrentd.utils.exceptions import ConfigurationError, PersistenceWriteError

logger = logging.getLogger(__name__)

CONFIG_FILE_NAME = "torrentd.toml"
ENV_PREFIX = "TORRENTD_"


def find_config_file(config_file: str | Path | None = None) -> Path:
    """Find the configuration file.

    An explicit path always wins. Otherwise the first existing file among the
    standard locations is used, falling back to ``./torrentd.toml`` so a new
    file is created in the working directory.
    """
    if config_file:
        return Path(config_file).expanduser()

    search_paths = [
        Path.cwd() / CONFIG_FILE_NAME,
        Path.home() / ".config" / "torrentd" / CONFIG_FILE_NAME,
        Path("/etc/torrentd") / CONFIG_FILE_NAME,
    ]
    for path in search_paths:
        if path.exists():
            return path

    return search_paths[0]


def get_env_config(env: Mapping[str, str] | None = None) -> dict[str, str]:
    """Configuration overrides from ``TORRENTD_<FIELD>`` environment variables.

    Values are left as strings; the model coerces them.
    """
    if env is None:
        env = os.environ
    overrides = {}
    for name in Config.model_fields:
        raw = env.get(f"{ENV_PREFIX}{name.upper()}")
        if raw is not None:
            overrides[name] = raw
    return overrides


def build_config(data: Mapping[str, Any]) -> Config:
    """Validate ``data`` into a snapshot.

    Raises:
        ConfigurationError: a value is invalid.

    """
    try:
        return Config.model_validate(dict(data))
    except ValidationError as e:
        msg = f"Invalid configuration: {e}"
        raise ConfigurationError(msg) from e


@dataclass(frozen=True)
class ReconcileResult:
    """Outcome of a reconciliation.

    ``applied`` is false when the change was refused; ``config`` is the
    active snapshot afterwards.
    """

    actions: Action
    config: Config
    changes: list[FieldChange] = field(default_factory=list)
    applied: bool = True


class ConfigStore:
    """Owns the active configuration and serializes reconciliations."""

    def __init__(
        self,
        store: DurableKV,
        config: Config | None = None,
        env_fields: frozenset[str] = frozenset(),
    ):
        """Initialize configuration store.

        Args:
            store: Durable store handle the active snapshot is persisted to
            config: Initial snapshot; defaults when omitted
            env_fields: Fields set from the environment; ``save`` leaves them
                out of the file

        """
        self._store = store
        self._config = config if config is not None else Config()
        self._env_fields = env_fields
        self._lock = threading.Lock()
        # Set when loading rewrote directories or rates the file still holds
        self.rewrite_pending = False

    @classmethod
    def load_or_default(
        cls,
        store: FileKVStore,
        env: Mapping[str, str] | None = None,
    ) -> ConfigStore:
        """Load the store file and build the initial snapshot.

        Missing keys take their defaults; environment overrides apply last.
        Directories are canonicalized and unparsable rates reset, so the
        snapshot compares cleanly against later candidates.

        Raises:
            ConfigurationError: the file cannot be read or holds invalid values.
            PathResolutionError: a configured directory cannot be resolved.

        """
        try:
            file_data = store.load()
        except (OSError, ValueError) as e:
            msg = f"Failed to load config file {store.config_file_used()}: {e}"
            raise ConfigurationError(msg) from e

        env_data = get_env_config(env)
        config = build_config({**file_data, **env_data})
        config, dirs_changed = normalize_directories(config)
        config, reset = sanitize_rates(config)

        loaded = cls(store, config, frozenset(env_data))
        loaded.rewrite_pending = dirs_changed or bool(reset)
        logger.info("Configuration loaded from %s", store.config_file_used())
        return loaded

    @property
    def active(self) -> Config:
        """The active snapshot."""
        with self._lock:
            return self._config

    @property
    def store(self) -> DurableKV:
        """The durable store handle."""
        return self._store

    def reconcile(self, candidate: Config) -> ReconcileResult:
        """Make ``candidate`` the active snapshot.

        Directories are canonicalized and unparsable rate strings are reset
        to empty before the candidate is classified. A forbidden change is
        refused without touching disk or the active snapshot.

        Raises:
            PathResolutionError: a directory of the candidate cannot be resolved.
            PersistenceWriteError: the durable write failed; ``actions`` on the
                error holds what the change would have required.

        """
        candidate, reset = self._prepare(candidate)
        with self._lock:
            return self._reconcile_locked(candidate, reset)

    @staticmethod
    def _prepare(candidate: Config) -> tuple[Config, list[str]]:
        candidate, _ = normalize_directories(candidate)
        return sanitize_rates(candidate)

    def _reconcile_locked(self, candidate: Config, reset: list[str]) -> ReconcileResult:
        """Classify, persist and swap; the caller holds ``self._lock``."""
        actions = classify(self._config, candidate)
        if Action.FORBID_RUNTIME_CHANGE in actions:
            logger.warning(
                "Refusing runtime change of done_cmd: %r -> %r",
                self._config.done_cmd,
                candidate.done_cmd,
            )
            return ReconcileResult(actions, self._config, applied=False)

        try:
            # Reset rates are written even when they match the active value
            changes = sync(self._config, candidate, self._store, force=reset)
        except PersistenceWriteError as e:
            e.actions = actions
            raise

        self._config = candidate
        if actions != NO_ACTION:
            logger.info("Configuration reconciled, actions: %s", actions)
        return ReconcileResult(actions, candidate, changes)

    def update(self, **fields: Any) -> ReconcileResult:
        """Reconcile the active snapshot with ``fields`` replaced.

        The candidate is built from the active snapshot under the lock, so a
        concurrent reconciliation is never reverted.

        Raises:
            ConfigurationError: a value is invalid.

        """
        unknown = set(fields) - set(Config.model_fields)
        if unknown:
            msg = f"Unknown configuration keys: {', '.join(sorted(unknown))}"
            raise ConfigurationError(msg)

        with self._lock:
            candidate = build_config({**self._config.model_dump(), **fields})
            candidate, reset = self._prepare(candidate)
            return self._reconcile_locked(candidate, reset)

    def save(self) -> None:
        """Write the active snapshot to the durable store.

        Fields set from the environment keep whatever the file holds for
        them, so overrides never become file values.

        Raises:
            PersistenceWriteError: the write failed.

        """
        with self._lock:
            for name, value in self._config.model_dump().items():
                if name not in self._env_fields:
                    self._store.set(name, value)
            self._flush()
            self.rewrite_pending = False

    def close(self) -> None:
        """Flush the durable store on shutdown."""
        with self._lock:
            self._flush()

    def _flush(self) -> None:
        path = self._store.config_file_used()
        try:
            self._store.write_as(path)
        except OSError as e:
            msg = f"Failed to write config file {path}: {e}"
            raise PersistenceWriteError(msg, {"path": str(path)}) from e

    def upload_limiter(self) -> RateLimiterSpec:
        """Upload limiter of the active snapshot."""
        return upload_limiter(self.active)

    def download_limiter(self) -> RateLimiterSpec:
        """Download limiter of the active snapshot."""
        return download_limiter(self.active)

    def export(self, fmt: str = "toml") -> str:
        """Active snapshot serialized as ``fmt`` ("toml", "yaml" or "json")."""
        return dumps(self.active.model_dump(mode="json"), fmt)

    def __enter__(self) -> ConfigStore:
        """Enter the context manager."""
        return self

    def __exit__(self, exc_type, exc_val, exc_tb) -> None:
        """Flush on exit."""
        self.close()
