"""Pytest configuration and shared fixtures for torrentd tests."""

from __future__ import annotations

import logging
from pathlib import Path

import pytest

from torrentd.config.kv_store import FileKVStore
from torrentd.models import Config


def pytest_configure(config):
    """Register all project markers to avoid warnings when ini isn't loaded."""
    markers = [
        ("asyncio", "marks tests as async (deselect with '-m \"not asyncio\"')"),
        ("unit", "marks tests as unit tests"),
        ("integration", "marks tests as integration tests"),
        ("config", "marks tests as configuration tests"),
        ("throttle", "marks tests as rate limiting tests"),
        ("daemon", "marks tests as daemon lifecycle tests"),
        ("cli", "marks tests as CLI tests"),
    ]
    for name, desc in markers:
        config.addinivalue_line("markers", f"{name}: {desc}")


@pytest.fixture(autouse=True)
def _isolate_environment(monkeypatch):
    """Keep TORRENTD_* variables from the developer's shell out of tests."""
    import os

    for name in list(os.environ):
        if name.startswith("TORRENTD_"):
            monkeypatch.delenv(name)


@pytest.fixture(autouse=True)
def cleanup_logging():
    """Clean up logging handlers after each test to prevent closed file errors."""
    yield
    for logger_name in list(logging.Logger.manager.loggerDict.keys()):
        logger = logging.getLogger(logger_name)
        for handler in logger.handlers[:]:
            handler.close()
            logger.removeHandler(handler)

    root_logger = logging.getLogger()
    for handler in root_logger.handlers[:]:
        handler.close()
        root_logger.removeHandler(handler)

    # setup_logging() stops propagation, which would hide records from caplog
    package_logger = logging.getLogger("torrentd")
    package_logger.propagate = True
    package_logger.setLevel(logging.NOTSET)


@pytest.fixture
def base_config(tmp_path: Path) -> Config:
    """A configuration with absolute directories under ``tmp_path``."""
    return Config(
        download_directory=str(tmp_path / "downloads"),
        watch_directory=str(tmp_path / "torrents"),
    )


@pytest.fixture
def kv_store(tmp_path: Path) -> FileKVStore:
    """Durable store backed by a TOML file under ``tmp_path``."""
    return FileKVStore(tmp_path / "torrentd.toml")


class FailingKVStore(FileKVStore):
    """Store whose durable write always fails."""

    def write_as(self, path):
        raise PermissionError(13, "Permission denied", str(path))


@pytest.fixture
def failing_store(tmp_path: Path) -> FailingKVStore:
    """Durable store that cannot be written."""
    return FailingKVStore(tmp_path / "readonly" / "torrentd.toml")
