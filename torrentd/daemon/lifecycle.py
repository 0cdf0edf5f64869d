"""Daemon lifecycle: boot from the durable configuration and apply changes.

The transfer engine, the torrent directory watcher and the tracker list
fetcher live outside this package; they are reached through the small
protocols below.
"""

from __future__ import annotations

import asyncio
import contextlib
from collections.abc import Mapping
from pathlib import Path
from typing import Protocol

from torrentd.config.config import ConfigStore, ReconcileResult, build_config, get_env_config
from torrentd.config.config_diff import Action
from torrentd.config.directories import (
    DEFAULT_MIN_FREE_BYTES,
    DiskStat,
    check_disk_space,
)
from torrentd.config.kv_store import FileKVStore
from torrentd.models import Config
from torrentd.throttle.rate_limiter import (
    RateLimiterSpec,
    download_limiter,
    upload_limiter,
)
from torrentd.utils.exceptions import RuntimeChangeForbiddenError
from torrentd.utils.logging_config import LoggingContext, get_logger, log_exception

logger = get_logger(__name__)


class Engine(Protocol):
    """Transfer engine accepting new settings while running."""

    def configure(
        self,
        config: Config,
        upload: RateLimiterSpec,
        download: RateLimiterSpec,
    ) -> None:
        """Push ``config`` and limiters into the engine."""
        ...


class Watcher(Protocol):
    """Watches a directory for new .torrent files."""

    def restart(self, directory: str) -> None:
        """(Re)start watching ``directory``; empty disables watching."""
        ...


class TrackerUpdater(Protocol):
    """Fetches the public tracker list."""

    def update(self, url: str) -> None:
        """Fetch trackers from ``url``; empty disables fetching."""
        ...


class DaemonLifecycle:
    """Boots the daemon from its configuration and applies later changes."""

    def __init__(
        self,
        store: FileKVStore,
        engine: Engine,
        watcher: Watcher,
        trackers: TrackerUpdater,
        env: Mapping[str, str] | None = None,
        min_free_bytes: int = DEFAULT_MIN_FREE_BYTES,
        disk_stat: DiskStat | None = None,
    ):
        """Initialize daemon lifecycle.

        Args:
            store: Durable store backing the configuration
            engine: Transfer engine
            watcher: Torrent directory watcher
            trackers: Tracker list fetcher
            env: Environment used for overrides, ``os.environ`` when omitted
            min_free_bytes: Free space required on the download volume
            disk_stat: Free space probe, psutil when omitted

        """
        self.kv = store
        self.engine = engine
        self.watcher = watcher
        self.trackers = trackers
        self.env = env
        self.min_free_bytes = min_free_bytes
        self.disk_stat = disk_stat
        self.config_store: ConfigStore | None = None

    def boot(self) -> ConfigStore:
        """Load, validate and apply the configuration at startup.

        Raises:
            ConfigurationError: the config file is unreadable or invalid.
            PathResolutionError: a configured directory cannot be resolved.
            InsufficientSpaceError: the download volume is too full.
            PersistenceWriteError: the normalized config cannot be written.

        """
        with LoggingContext("daemon_boot"):
            file_existed = self.kv.exists()
            loaded = ConfigStore.load_or_default(self.kv, self.env)

            config = loaded.active
            check_disk_space(
                config.download_directory,
                self.min_free_bytes,
                self.disk_stat,
            )

            self.engine.configure(config, upload_limiter(config), download_limiter(config))

            self.config_store = loaded
            if not file_existed or loaded.rewrite_pending:
                loaded.save()
                logger.info("Config file written: %s", self.kv.config_file_used())
            logger.info("Current config file path: %s", self.kv.config_file_used())

            self.watcher.restart(config.watch_directory)
            self.trackers.update(config.tracker_list_url)

        return self.config_store

    def _require_store(self) -> ConfigStore:
        if self.config_store is None:
            msg = "Daemon has not been booted"
            raise RuntimeError(msg)
        return self.config_store

    def apply(self, candidate: Config) -> ReconcileResult:
        """Reconcile ``candidate`` and drive the daemon to it.

        Raises:
            RuntimeChangeForbiddenError: the change touches a field that may
                not change while running; nothing was applied.
            PathResolutionError: a directory cannot be resolved; nothing was applied.
            PersistenceWriteError: the change could not be persisted; the
                previous configuration stays in effect.

        """
        result = self._require_store().reconcile(candidate)
        if not result.applied:
            msg = "done_cmd cannot be changed while the daemon is running"
            raise RuntimeChangeForbiddenError(msg, {"actions": str(result.actions)})

        self.dispatch(result)
        return result

    def dispatch(self, result: ReconcileResult) -> None:
        """Run the side effects ``result.actions`` asks for."""
        config = result.config
        if Action.NEED_RESTART_WATCH in result.actions:
            logger.info("Restarting watcher on %s", config.watch_directory)
            self.watcher.restart(config.watch_directory)
        if Action.NEED_ENGINE_RECONFIG in result.actions:
            logger.info("Reconfiguring engine")
            self.engine.configure(
                config,
                upload_limiter(config),
                download_limiter(config),
            )
        if Action.NEED_UPDATE_TRACKER in result.actions:
            logger.info("Updating trackers from %s", config.tracker_list_url)
            self.trackers.update(config.tracker_list_url)

    def shutdown(self) -> None:
        """Flush the configuration store."""
        if self.config_store is not None:
            self.config_store.close()
            logger.info("Configuration store closed")


class ConfigReloader:
    """Reload the configuration file when it changes on disk."""

    def __init__(self, lifecycle: DaemonLifecycle, interval: float = 1.0):
        """Initialize reloader.

        Args:
            lifecycle: Booted daemon lifecycle
            interval: Seconds between modification time checks

        """
        self.lifecycle = lifecycle
        self.interval = interval
        self._task: asyncio.Task | None = None
        self._last_mtime: float | None = None

    @property
    def path(self) -> Path:
        """Watched configuration file."""
        return self.lifecycle.kv.config_file_used()

    def _mtime(self) -> float | None:
        try:
            return self.path.stat().st_mtime
        except OSError:
            return None

    def read_candidate(self) -> Config:
        """Build a candidate snapshot from the file as it is on disk now."""
        data = FileKVStore(self.path).load()
        return build_config({**data, **get_env_config(self.lifecycle.env)})

    async def check_once(self) -> bool:
        """Reload if the file changed since the last check.

        Returns:
            Whether a reload was attempted.

        """
        mtime = self._mtime()
        previous, self._last_mtime = self._last_mtime, mtime
        if mtime is None or previous is None or mtime <= previous:
            return False

        logger.info("Configuration file changed, reloading...")
        try:
            candidate = self.read_candidate()
            result = await asyncio.to_thread(self.lifecycle.apply, candidate)
        except Exception as e:
            log_exception(logger, e, "Error reloading configuration")
        else:
            logger.info("Configuration reloaded, actions: %s", result.actions)
        return True

    async def run(self) -> None:
        """Poll until cancelled."""
        self._last_mtime = self._mtime()
        while True:
            await asyncio.sleep(self.interval)
            await self.check_once()

    def start(self) -> asyncio.Task:
        """Start polling in a background task."""
        self._task = asyncio.create_task(self.run())
        return self._task

    async def stop(self) -> None:
        """Stop polling."""
        if self._task is not None:
            self._task.cancel()
            with contextlib.suppress(asyncio.CancelledError):
                await self._task
            self._task = None
