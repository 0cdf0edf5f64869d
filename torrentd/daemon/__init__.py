"""Daemon lifecycle integration."""

from __future__ import annotations

from torrentd.daemon.lifecycle import (
    ConfigReloader,
    DaemonLifecycle,
    Engine,
    TrackerUpdater,
    Watcher,
)

__all__ = [
    "ConfigReloader",
    "DaemonLifecycle",
    "Engine",
    "TrackerUpdater",
    "Watcher",
]
