"""Tests for env config, YAML config and user preferences."""
from __future__ import annotations

import json

import pytest
import yaml

from chatsync.engine.config import EngineConfig
from chatsync.engine.yaml_config import load_yaml_config
from chatsync.shared.services.preferences import UserPreferences


def test_env_overrides(monkeypatch) -> None:
    monkeypatch.setenv("CHATSYNC_DEFAULT_MODEL", "qwen/qwen3-coder:free")
    monkeypatch.setenv("CHATSYNC_INFERENCE_TIMEOUT", "45")
    monkeypatch.setenv("CHATSYNC_WATERMARK_STALE", "12.5")
    monkeypatch.setenv("CHATSYNC_TITLE_MAX_CHARS", "20")

    config = EngineConfig.from_env()

    assert config.default_model == "qwen/qwen3-coder:free"
    assert config.inference_timeout_seconds == 45.0
    assert config.watermark_stale_seconds == 12.5
    assert config.title_max_chars == 20


def test_invalid_env_values_fall_back_to_defaults(monkeypatch) -> None:
    monkeypatch.setenv("CHATSYNC_INFERENCE_TIMEOUT", "soon")
    monkeypatch.setenv("CHATSYNC_EVENT_QUEUE_SIZE", "many")

    config = EngineConfig.from_env()

    assert config.inference_timeout_seconds == 120.0
    assert config.event_queue_size == 1000


def test_yaml_config_layers_over_base(tmp_path) -> None:
    path = tmp_path / "chatsync.yaml"
    path.write_text(yaml.safe_dump({
        "engine": {
            "default_model": "moonshotai/kimi-k2:free",
            "inference_timeout_seconds": 30,
            "no_such_setting": 1,
        },
        "providers": {
            "router": {"type": "openrouter", "api_key_env": "MY_KEY"},
            "weird": {"type": "carrier-pigeon"},
        },
        "routes": {"cygnis-a1": "router"},
        "default_provider": "router",
    }))

    config = load_yaml_config(path, base=EngineConfig())

    assert config.engine.default_model == "moonshotai/kimi-k2:free"
    assert config.engine.inference_timeout_seconds == 30.0
    assert list(config.providers) == ["router"]
    assert config.providers["router"].api_key_env == "MY_KEY"
    assert config.routes == {"cygnis-a1": "router"}
    assert config.default_provider == "router"


def test_yaml_config_rejects_non_mapping(tmp_path) -> None:
    path = tmp_path / "bad.yaml"
    path.write_text("- just\n- a list\n")
    with pytest.raises(ValueError):
        load_yaml_config(path, base=EngineConfig())


def test_missing_yaml_file_raises(tmp_path) -> None:
    with pytest.raises(FileNotFoundError):
        load_yaml_config(tmp_path / "absent.yaml", base=EngineConfig())


def test_preferences_round_trip(tmp_path) -> None:
    path = tmp_path / "prefs" / "preferences.json"
    UserPreferences(selected_model="openai/gpt-oss-20b:free", active_project_id="p1").save(path)

    loaded = UserPreferences.load(path)

    assert loaded.selected_model == "openai/gpt-oss-20b:free"
    assert loaded.active_project_id == "p1"
    assert loaded.show_archived is False


def test_preferences_tolerate_bad_files(tmp_path) -> None:
    path = tmp_path / "preferences.json"
    path.write_text("{broken")
    assert UserPreferences.load(path) == UserPreferences()

    path.write_text(json.dumps({"selected_model": '"cygnis-a1"', "show_archived": "yes", "extra": 1}))
    loaded = UserPreferences.load(path)
    assert loaded.selected_model == "cygnis-a1"
    assert loaded.show_archived is False
