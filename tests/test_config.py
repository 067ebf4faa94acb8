"""Tests for configuration loading."""

import json

from sessionhub.config.loader import (
    camel_to_snake,
    convert_keys,
    get_config_path,
    load_config,
    save_config,
    snake_to_camel,
)
from sessionhub.config.schema import Config


def test_defaults():
    config = Config()

    assert config.sessions.startup_timeout_s == 60.0
    assert config.webhook.max_attempts == 3
    assert config.webhook.timeout_s == 10.0
    assert config.database_url.startswith("sqlite+aiosqlite:///")
    assert config.database_url.endswith("sessionhub.db")


def test_load_camel_case_file(tmp_path):
    path = tmp_path / "config.json"
    path.write_text(json.dumps({
        "sessions": {"startupTimeoutS": 15},
        "bridge": {"url": "ws://bridge:3001", "token": "secret"},
        "storage": {"databaseUrl": "sqlite+aiosqlite:///tmp/x.db", "retentionDays": 7},
    }))

    config = load_config(path)

    assert config.sessions.startup_timeout_s == 15
    assert config.bridge.url == "ws://bridge:3001"
    assert config.storage.retention_days == 7
    assert config.database_url == "sqlite+aiosqlite:///tmp/x.db"


def test_broken_file_falls_back_to_defaults(tmp_path):
    path = tmp_path / "config.json"
    path.write_text("{not json")

    assert load_config(path).webhook.max_attempts == 3


def test_save_round_trip_uses_camel_case(tmp_path):
    path = tmp_path / "nested" / "config.json"
    config = Config()
    config.push.port = 19000

    save_config(config, path)

    raw = json.loads(path.read_text())
    assert raw["push"]["port"] == 19000
    assert "startupTimeoutS" in raw["sessions"]
    assert load_config(path).push.port == 19000


def test_env_override(monkeypatch):
    monkeypatch.setenv("SESSIONHUB_BRIDGE__URL", "ws://env-bridge:3001")

    assert Config().bridge.url == "ws://env-bridge:3001"


def test_key_conversion():
    assert camel_to_snake("maxAttempts") == "max_attempts"
    assert snake_to_camel("reconnect_delay_s") == "reconnectDelayS"
    assert convert_keys({"pushConfig": [{"hostName": "x"}]}) == {"push_config": [{"host_name": "x"}]}


def test_env_fills_fields_missing_from_file(tmp_path, monkeypatch):
    path = tmp_path / "config.json"
    path.write_text(json.dumps({"bridge": {"token": "from-file"}}))
    monkeypatch.setenv("SESSIONHUB_BRIDGE__URL", "ws://env-bridge:3001")

    config = load_config(path)

    assert config.bridge.token == "from-file"
    assert config.bridge.url == "ws://env-bridge:3001"


def test_home_override_moves_config_and_database(tmp_path, monkeypatch):
    monkeypatch.setenv("SESSIONHUB_HOME", str(tmp_path / "hub"))
    monkeypatch.delenv("SESSIONHUB_CONFIG", raising=False)

    assert get_config_path() == tmp_path / "hub" / "config.json"
    assert Config().database_url == f"sqlite+aiosqlite:///{tmp_path / 'hub' / 'sessionhub.db'}"


def test_config_env_var_wins(tmp_path, monkeypatch):
    monkeypatch.setenv("SESSIONHUB_CONFIG", str(tmp_path / "custom.json"))
    assert get_config_path() == tmp_path / "custom.json"
