"""Tests for configuration storage, files and precedence resolution."""

from __future__ import annotations

import json
import threading
from pathlib import Path

import pytest

from restfall.config import (
    ConfigurationStore,
    _atomic_write,
    get_cache_dir,
    load_configuration,
    resolve_configuration,
    save_configuration,
)
from restfall.context import InlineContext
from restfall.exceptions import ConfigurationError
from restfall.models import CacheManagement, ClientConfiguration, LogLevel, RequestSerializer


# ---------------------------------------------------------------------------
# ConfigurationStore
# ---------------------------------------------------------------------------


class TestConfigurationStore:
    def test_default_snapshot(self) -> None:
        store = ConfigurationStore()
        assert store.snapshot().host is None
        assert store.snapshot().cache_management is CacheManagement.DEFAULT

    def test_update_is_copy_on_write(self) -> None:
        store = ConfigurationStore(ClientConfiguration(host="https://a.example.com"))
        before = store.snapshot()
        after = store.update(host="https://b.example.com")
        assert before.host == "https://a.example.com"
        assert after.host == "https://b.example.com"
        assert store.snapshot() is after

    def test_invalid_update_keeps_snapshot(self) -> None:
        store = ConfigurationStore(ClientConfiguration(timeout=10))
        with pytest.raises(ConfigurationError):
            store.update(timeout=-1)
        assert store.snapshot().timeout == 10

    def test_configure_runs_on_draft(self) -> None:
        store = ConfigurationStore(ClientConfiguration(host="https://a.example.com"))
        before = store.snapshot()

        def setup(draft) -> None:
            draft.global_parameters = {"tenant": "acme"}
            draft.request_serializer = RequestSerializer.FORM_URLENCODED

        after = store.configure(setup)
        assert before.global_parameters == {}
        assert after.global_parameters == {"tenant": "acme"}
        assert after.request_serializer is RequestSerializer.FORM_URLENCODED
        assert after.host == "https://a.example.com"

    def test_configure_validation_error(self) -> None:
        store = ConfigurationStore()

        def setup(draft) -> None:
            draft.api_path = "v1"

        with pytest.raises(ConfigurationError):
            store.configure(setup)

    def test_concurrent_updates_are_not_lost(self) -> None:
        store = ConfigurationStore(ClientConfiguration())

        def add(i: int) -> None:
            def setup(draft) -> None:
                draft.global_parameters = {**draft.global_parameters, f"p{i}": i}

            store.configure(setup)

        threads = [threading.Thread(target=add, args=(i,)) for i in range(20)]
        for t in threads:
            t.start()
        for t in threads:
            t.join()
        assert len(store.snapshot().global_parameters) == 20


# ---------------------------------------------------------------------------
# Files
# ---------------------------------------------------------------------------


class TestFiles:
    def test_save_and_load(self, tmp_path: Path) -> None:
        path = tmp_path / "restfall.json"
        config = ClientConfiguration(
            host="https://api.example.com",
            api_path="/v1",
            cache_management=CacheManagement.OFFLINE,
            log_level=LogLevel.REQUESTS | LogLevel.RESPONSES,
            acceptable_content_types={"application/json"},
            languages=["en"],
            completion_context=InlineContext(),
        )
        save_configuration(config, path)

        data = json.loads(path.read_text())
        assert data["log_level"] == ["requests", "responses"]
        assert data["acceptable_content_types"] == ["application/json"]
        assert "completion_context" not in data

        loaded = load_configuration(path)
        assert loaded.host == "https://api.example.com"
        assert loaded.cache_management is CacheManagement.OFFLINE
        assert loaded.log_level == LogLevel.REQUESTS | LogLevel.RESPONSES
        assert loaded.acceptable_content_types == frozenset({"application/json"})
        assert loaded.completion_context is None

    def test_missing_file(self, tmp_path: Path) -> None:
        with pytest.raises(ConfigurationError, match="not found"):
            load_configuration(tmp_path / "nope.json")

    def test_invalid_json(self, tmp_path: Path) -> None:
        path = tmp_path / "bad.json"
        path.write_text("{not json")
        with pytest.raises(ConfigurationError, match="Invalid"):
            load_configuration(path)

    def test_non_object(self, tmp_path: Path) -> None:
        path = tmp_path / "list.json"
        path.write_text("[1, 2]")
        with pytest.raises(ConfigurationError, match="JSON object"):
            load_configuration(path)

    def test_invalid_values(self, tmp_path: Path) -> None:
        path = tmp_path / "bad.json"
        path.write_text(json.dumps({"timeout": 0}))
        with pytest.raises(ConfigurationError):
            load_configuration(path)

    def test_atomic_write_leaves_no_temp_files(self, tmp_path: Path) -> None:
        target = tmp_path / "nested" / "out.json"
        _atomic_write(target, "{}")
        assert target.read_text() == "{}"
        assert [p.name for p in target.parent.iterdir()] == ["out.json"]


# ---------------------------------------------------------------------------
# Precedence resolution
# ---------------------------------------------------------------------------


class TestResolveConfiguration:
    def test_defaults(self, isolated_env: Path) -> None:
        config = resolve_configuration()
        assert config.host is None
        assert config.timeout == 60

    def test_project_file(self, isolated_env: Path) -> None:
        (isolated_env / "restfall.json").write_text(json.dumps({"host": "https://file.example.com"}))
        assert resolve_configuration().host == "https://file.example.com"

    def test_environment_beats_file(self, isolated_env: Path, monkeypatch: pytest.MonkeyPatch) -> None:
        (isolated_env / "restfall.json").write_text(json.dumps({"host": "https://file.example.com", "timeout": 5}))
        monkeypatch.setenv("RESTFALL_HOST", "https://env.example.com")
        monkeypatch.setenv("RESTFALL_CACHE_MANAGEMENT", "offline")
        monkeypatch.setenv("RESTFALL_LOG_LEVEL", "requests,responses")
        config = resolve_configuration()
        assert config.host == "https://env.example.com"
        assert config.timeout == 5
        assert config.cache_management is CacheManagement.OFFLINE
        assert config.log_level == LogLevel.REQUESTS | LogLevel.RESPONSES

    def test_overrides_beat_environment(self, isolated_env: Path, monkeypatch: pytest.MonkeyPatch) -> None:
        monkeypatch.setenv("RESTFALL_HOST", "https://env.example.com")
        monkeypatch.setenv("RESTFALL_TIMEOUT", "12.5")
        config = resolve_configuration(host="https://kw.example.com", api_path=None)
        assert config.host == "https://kw.example.com"
        assert config.timeout == 12.5

    def test_explicit_path(self, isolated_env: Path) -> None:
        path = isolated_env / "custom.json"
        path.write_text(json.dumps({"api_path": "/v9"}))
        assert resolve_configuration(path).api_path == "/v9"

    def test_explicit_path_missing(self, isolated_env: Path) -> None:
        with pytest.raises(ConfigurationError):
            resolve_configuration(isolated_env / "missing.json")

    def test_invalid_environment_value(self, isolated_env: Path, monkeypatch: pytest.MonkeyPatch) -> None:
        monkeypatch.setenv("RESTFALL_LOG_LEVEL", "chatty")
        with pytest.raises(ConfigurationError):
            resolve_configuration()


# ---------------------------------------------------------------------------
# Directories
# ---------------------------------------------------------------------------


class TestCacheDir:
    def test_xdg(self, isolated_env: Path, monkeypatch: pytest.MonkeyPatch) -> None:
        monkeypatch.setattr("restfall.config._is_xdg_platform", lambda: True)
        path = get_cache_dir()
        assert path == isolated_env / "cache" / "restfall"
        assert path.is_dir()

    def test_non_xdg(self, tmp_path: Path, monkeypatch: pytest.MonkeyPatch) -> None:
        monkeypatch.setattr("restfall.config._is_xdg_platform", lambda: False)
        monkeypatch.setattr(Path, "home", classmethod(lambda cls: tmp_path))
        assert get_cache_dir() == tmp_path / ".restfall" / "cache"
