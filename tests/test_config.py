import json
from pathlib import Path

import pytest

from groupguard.config.defaults import apply_missing_defaults
from groupguard.config.loader import convert_keys, convert_to_camel, load_config, save_config
from groupguard.config.schema import Config
from groupguard.utils.helpers import get_env_file_path, resolve_data_file


def test_defaults() -> None:
    cfg = Config()
    assert cfg.propagation.default_cap == 10
    assert cfg.propagation.confirm_threshold == 10
    assert cfg.propagation.selection_ttl_seconds == 300
    pacing = cfg.propagation.pacing
    assert (pacing.metadata_delay_ms, pacing.removal_delay_ms) == (3000, 2000)
    assert (pacing.extended_pause_every, pacing.extended_pause_ms) == (3, 20000)
    assert pacing.rate_limit_backoff_ms == 15000
    assert cfg.kick.max_attempts == 3
    assert cfg.kick.final_attempt_timeout_ms == 20000
    assert cfg.bridge.url == "ws://127.0.0.1:3001"


def test_save_and_load_use_camel_case_on_disk(tmp_path: Path) -> None:
    path = tmp_path / "config.json"
    cfg = Config()
    cfg.bridge.token = "secret"
    cfg.propagation.default_cap = 5
    save_config(cfg, path)

    raw = json.loads(path.read_text())
    assert raw["propagation"]["defaultCap"] == 5
    assert raw["propagation"]["pacing"]["metadataDelayMs"] == 3000
    assert path.stat().st_mode & 0o777 == 0o600

    loaded = load_config(path)
    assert loaded.bridge.token == "secret"
    assert loaded.propagation.default_cap == 5


def test_partial_file_gets_missing_defaults(tmp_path: Path) -> None:
    path = tmp_path / "config.json"
    path.write_text(json.dumps({"propagation": {"pacing": {"removalDelayMs": 4000}}}))

    cfg = load_config(path)

    assert cfg.propagation.pacing.removal_delay_ms == 4000
    assert cfg.propagation.pacing.metadata_delay_ms == 3000
    assert cfg.storage.checkpoint_db_path == "data/checkpoints.db"


def test_invalid_file_falls_back_to_defaults(tmp_path: Path) -> None:
    path = tmp_path / "config.json"
    path.write_text("{not json")
    assert load_config(path).propagation.default_cap == 10

    path.write_text(json.dumps({"propagation": {"defaultCap": 0}}))
    assert load_config(path).propagation.default_cap == 10


def test_environment_overrides(monkeypatch: pytest.MonkeyPatch) -> None:
    monkeypatch.setenv("GROUPGUARD_PROPAGATION__DEFAULT_CAP", "4")
    monkeypatch.setenv("GROUPGUARD_BRIDGE__PORT", "4000")
    cfg = Config()
    assert cfg.propagation.default_cap == 4
    assert cfg.bridge.port == 4000


def test_environment_overrides_values_from_file(tmp_path: Path, monkeypatch: pytest.MonkeyPatch) -> None:
    path = tmp_path / "config.json"
    path.write_text(
        json.dumps({"bridge": {"token": "x"}, "propagation": {"defaultCap": 7, "confirmThreshold": 5}}),
        encoding="utf-8",
    )
    monkeypatch.setenv("GROUPGUARD_PROPAGATION__DEFAULT_CAP", "4")

    cfg = load_config(path)
    assert cfg.propagation.default_cap == 4
    assert cfg.propagation.confirm_threshold == 5
    assert cfg.bridge.token == "x"


def test_env_file_lives_under_data_root(tmp_path: Path, monkeypatch: pytest.MonkeyPatch) -> None:
    monkeypatch.setenv("GROUPGUARD_HOME", str(tmp_path / "home"))
    assert get_env_file_path() == tmp_path / "home" / ".env"



def test_apply_missing_defaults_keeps_explicit_values() -> None:
    snake = apply_missing_defaults({"kick": {"max_attempts": 5}})
    assert snake["kick"]["max_attempts"] == 5
    assert snake["kick"]["retry_delay_ms"] == 2000
    assert snake["propagation"]["pacing"]["listing_delay_ms"] == 500


def test_key_conversion() -> None:
    assert convert_keys({"rateLimitBackoffMs": 1, "nested": [{"accountId": "x"}]}) == {
        "rate_limit_backoff_ms": 1,
        "nested": [{"account_id": "x"}],
    }
    assert convert_to_camel({"final_attempt_timeout_ms": 1}) == {"finalAttemptTimeoutMs": 1}


def test_storage_paths_live_under_data_root(tmp_path: Path, monkeypatch: pytest.MonkeyPatch) -> None:
    monkeypatch.setenv("GROUPGUARD_HOME", str(tmp_path))
    cfg = Config()
    assert cfg.storage.checkpoint_db_file == tmp_path / "data" / "checkpoints.db"
    assert resolve_data_file("/abs/audit.jsonl") == Path("/abs/audit.jsonl")
