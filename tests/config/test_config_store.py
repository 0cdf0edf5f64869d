"""Tests for the ConfigStore orchestrator."""

from __future__ import annotations

import math
import os
import threading
import time

import pytest
import toml

from torrentd.config.config import (
    ConfigStore,
    build_config,
    find_config_file,
    get_env_config,
)
from torrentd.config.config_diff import NO_ACTION, Action
from torrentd.config.directories import normalize_directories
from torrentd.config.kv_store import FileKVStore
from torrentd.models import Config
from torrentd.utils.exceptions import ConfigurationError, PersistenceWriteError

pytestmark = [pytest.mark.unit, pytest.mark.config]


class SlowStore(FileKVStore):
    """Store with a slow flush that records overlapping writers."""

    def __init__(self, path):
        super().__init__(path)
        self.active_writers = 0
        self.max_writers = 0
        self._guard = threading.Lock()

    def write_as(self, path):
        with self._guard:
            self.active_writers += 1
            self.max_writers = max(self.max_writers, self.active_writers)
        time.sleep(0.01)
        super().write_as(path)
        with self._guard:
            self.active_writers -= 1


class TestLoading:
    """Test load_or_default and helpers."""

    def test_defaults_when_file_missing(self, kv_store, tmp_path, monkeypatch):
        monkeypatch.chdir(tmp_path)
        store = ConfigStore.load_or_default(kv_store, env={})
        assert store.active == normalize_directories(Config())[0]
        assert store.active.download_directory == os.path.join(os.getcwd(), "downloads")

    def test_loaded_snapshot_is_canonical(self, kv_store, tmp_path, monkeypatch):
        monkeypatch.chdir(tmp_path)
        kv_store.path.write_text(
            'download_directory = "./downloads"\nwatch_directory = "./torrents"\n'
            'upload_rate = "warp"\n',
            encoding="utf-8",
        )
        store = ConfigStore.load_or_default(kv_store, env={})
        assert store.active.watch_directory == os.path.join(os.getcwd(), "torrents")
        assert store.active.upload_rate == ""
        assert store.rewrite_pending is True

    def test_clean_file_needs_no_rewrite(self, kv_store, base_config):
        kv_store.path.write_text(toml.dumps(base_config.model_dump()), encoding="utf-8")
        store = ConfigStore.load_or_default(kv_store, env={})
        assert store.rewrite_pending is False

    def test_unrelated_change_after_relative_load(self, kv_store, tmp_path, monkeypatch):
        monkeypatch.chdir(tmp_path)
        kv_store.path.write_text(
            'download_directory = "./downloads"\nwatch_directory = "./torrents"\n',
            encoding="utf-8",
        )
        store = ConfigStore.load_or_default(kv_store, env={})

        result = store.update(seed_ratio="1.5")

        assert result.actions == NO_ACTION
        assert [c.name for c in result.changes] == ["seed_ratio"]
        data = toml.loads(kv_store.path.read_text())
        assert data["watch_directory"] == "./torrents"
        assert data["seed_ratio"] == 1.5

    def test_file_values_override_defaults(self, kv_store):
        kv_store.path.write_text(
            'incoming_port = 6881\nupload_rate = "medium"\nunknown_key = 1\n',
            encoding="utf-8",
        )
        store = ConfigStore.load_or_default(kv_store, env={})
        assert store.active.incoming_port == 6881
        assert store.active.upload_rate == "medium"
        assert store.active.auto_start is True

    def test_env_overrides_file(self, kv_store):
        kv_store.path.write_text("incoming_port = 6881\n", encoding="utf-8")
        env = {"TORRENTD_INCOMING_PORT": "7000", "TORRENTD_ENABLE_SEEDING": "yes"}
        store = ConfigStore.load_or_default(kv_store, env=env)
        assert store.active.incoming_port == 7000
        assert store.active.enable_seeding is True

    def test_env_rate_zero_stays_string(self):
        overrides = get_env_config({"TORRENTD_UPLOAD_RATE": "0", "OTHER": "x"})
        assert overrides == {"upload_rate": "0"}
        assert build_config(overrides).upload_rate == "0"

    def test_invalid_value(self, kv_store):
        kv_store.path.write_text("incoming_port = 70000\n", encoding="utf-8")
        with pytest.raises(ConfigurationError):
            ConfigStore.load_or_default(kv_store, env={})

    def test_unparsable_file(self, kv_store):
        kv_store.path.write_text("[[[", encoding="utf-8")
        with pytest.raises(ConfigurationError):
            ConfigStore.load_or_default(kv_store, env={})

    def test_find_config_file_explicit(self, tmp_path):
        assert find_config_file(tmp_path / "x.toml") == tmp_path / "x.toml"

    def test_find_config_file_defaults_to_cwd(self, tmp_path, monkeypatch):
        monkeypatch.chdir(tmp_path)
        monkeypatch.setenv("HOME", str(tmp_path / "home"))
        found = find_config_file()
        assert found.name == "torrentd.toml"
        assert found.parent == tmp_path or found.parent.name == "torrentd"


class TestReconcile:
    """Test reconcile and update."""

    def test_no_change(self, kv_store, base_config):
        store = ConfigStore(kv_store, base_config)
        result = store.reconcile(base_config)
        assert result.actions == NO_ACTION
        assert result.changes == []
        assert result.applied is True
        assert not kv_store.path.exists()

    def test_applies_and_persists(self, kv_store, base_config):
        store = ConfigStore(kv_store, base_config)
        candidate = base_config.model_copy(
            update={"watch_directory": "/srv/watch", "download_rate": "low"}
        )

        result = store.reconcile(candidate)

        assert result.actions == Action.NEED_RESTART_WATCH | Action.NEED_ENGINE_RECONFIG
        assert {c.name for c in result.changes} == {"watch_directory", "download_rate"}
        assert store.active == candidate
        assert toml.loads(kv_store.path.read_text()) == {
            "watch_directory": "/srv/watch",
            "download_rate": "low",
        }

    def test_forbidden_change_refused(self, kv_store, base_config):
        store = ConfigStore(kv_store, base_config)
        candidate = base_config.model_copy(
            update={"done_cmd": "rm -rf /", "incoming_port": 1}
        )

        result = store.reconcile(candidate)

        assert result.applied is False
        assert Action.FORBID_RUNTIME_CHANGE in result.actions
        assert Action.NEED_ENGINE_RECONFIG in result.actions
        assert store.active == base_config
        assert not kv_store.path.exists()

    def test_write_failure_keeps_active(self, failing_store, base_config):
        store = ConfigStore(failing_store, base_config)
        candidate = base_config.model_copy(update={"incoming_port": 6881})

        with pytest.raises(PersistenceWriteError) as exc_info:
            store.reconcile(candidate)

        assert exc_info.value.actions == Action.NEED_ENGINE_RECONFIG
        assert store.active == base_config
        assert failing_store.as_dict() == {}

    def test_bad_rate_reset_to_empty(self, kv_store, base_config):
        store = ConfigStore(kv_store, base_config.model_copy(update={"upload_rate": "low"}))
        candidate = store.active.model_copy(update={"upload_rate": "3000000000"})

        result = store.reconcile(candidate)

        assert store.active.upload_rate == ""
        assert result.actions == Action.NEED_ENGINE_RECONFIG
        assert toml.loads(kv_store.path.read_text())["upload_rate"] == ""
        assert math.isinf(store.upload_limiter().rate)

    def test_bad_rate_over_empty_rate_still_written(self, kv_store, base_config):
        kv_store.set("upload_rate", "3000000000")
        store = ConfigStore(kv_store, base_config)

        result = store.reconcile(base_config.model_copy(update={"upload_rate": "3000000000"}))

        assert result.actions == NO_ACTION
        assert result.changes == []
        assert toml.loads(kv_store.path.read_text())["upload_rate"] == ""

    def test_candidate_directories_normalized(self, kv_store, base_config, tmp_path, monkeypatch):
        monkeypatch.chdir(tmp_path)
        watch = os.path.join(os.getcwd(), "torrents")
        active = base_config.model_copy(update={"watch_directory": watch})
        store = ConfigStore(kv_store, active)

        result = store.reconcile(active.model_copy(update={"watch_directory": "torrents"}))

        assert result.actions == NO_ACTION
        assert store.active.watch_directory == watch

    def test_update_coerces_strings(self, kv_store, base_config):
        store = ConfigStore(kv_store, base_config)
        result = store.update(incoming_port="6881", enable_seeding="true")
        assert store.active.incoming_port == 6881
        assert store.active.enable_seeding is True
        assert result.actions == Action.NEED_ENGINE_RECONFIG

    def test_update_unknown_key(self, kv_store, base_config):
        store = ConfigStore(kv_store, base_config)
        with pytest.raises(ConfigurationError):
            store.update(listen_port=1)

    def test_update_invalid_value(self, kv_store, base_config):
        store = ConfigStore(kv_store, base_config)
        with pytest.raises(ConfigurationError):
            store.update(incoming_port="not-a-port")
        assert store.active == base_config

    def test_limiters(self, kv_store, base_config):
        store = ConfigStore(
            kv_store,
            base_config.model_copy(update={"upload_rate": "low", "download_rate": "bogus"}),
        )
        assert store.upload_limiter().rate == 50000
        assert math.isinf(store.download_limiter().rate)

    def test_concurrent_reconciliations_are_serialized(self, tmp_path, base_config):
        kv = SlowStore(tmp_path / "torrentd.toml")
        store = ConfigStore(kv, base_config)
        ports = list(range(6000, 6010))
        threads = [
            threading.Thread(target=store.update, kwargs={"incoming_port": port})
            for port in ports
        ]
        for thread in threads:
            thread.start()
        for thread in threads:
            thread.join()

        assert kv.max_writers == 1
        assert store.active.incoming_port in ports
        assert toml.loads(kv.path.read_text())["incoming_port"] == store.active.incoming_port

    def test_concurrent_updates_of_different_fields_all_survive(self, tmp_path, base_config):
        kv = SlowStore(tmp_path / "torrentd.toml")
        store = ConfigStore(kv, base_config)
        updates = {
            "incoming_port": "6881",
            "upload_rate": "low",
            "download_rate": "high",
            "proxy_url": "http://proxy:3128",
            "rss_url": "https://example.com/rss",
            "seed_ratio": "2.5",
            "enable_seeding": "true",
            "disable_ipv6": "true",
            "always_add_trackers": "true",
            "tracker_list_url": "",
        }
        threads = [
            threading.Thread(target=store.update, kwargs={name: value})
            for name, value in updates.items()
        ]
        for thread in threads:
            thread.start()
        for thread in threads:
            thread.join()

        expected = build_config({**base_config.model_dump(), **updates})
        assert store.active == expected
        data = toml.loads(kv.path.read_text())
        assert data["rss_url"] == "https://example.com/rss"
        assert data["seed_ratio"] == 2.5


class TestPersistenceHelpers:
    """Test save, close and export."""

    def test_save_writes_full_snapshot(self, kv_store, base_config):
        store = ConfigStore(kv_store, base_config)
        store.save()
        data = toml.loads(kv_store.path.read_text())
        assert data == base_config.model_dump()

    def test_save_leaves_environment_overrides_out(self, kv_store, base_config):
        kv_store.path.write_text(
            toml.dumps({**base_config.model_dump(), "incoming_port": 6881}),
            encoding="utf-8",
        )
        store = ConfigStore.load_or_default(
            kv_store,
            env={"TORRENTD_INCOMING_PORT": "7000", "TORRENTD_RSS_URL": "http://env"},
        )
        assert store.active.incoming_port == 7000

        store.save()

        data = toml.loads(kv_store.path.read_text())
        assert data["incoming_port"] == 6881
        assert data["rss_url"] == ""
        assert store.rewrite_pending is False

    def test_save_failure(self, failing_store, base_config):
        with pytest.raises(PersistenceWriteError):
            ConfigStore(failing_store, base_config).save()

    def test_context_manager_flushes(self, kv_store, base_config):
        kv_store.set("rss_url", "http://feed")
        with ConfigStore(kv_store, base_config):
            pass
        assert toml.loads(kv_store.path.read_text()) == {"rss_url": "http://feed"}

    @pytest.mark.parametrize("fmt", ["toml", "yaml", "json"])
    def test_export(self, kv_store, base_config, fmt):
        text = ConfigStore(kv_store, base_config).export(fmt)
        assert "incoming_port" in text
