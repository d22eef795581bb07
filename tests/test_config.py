import json
from pathlib import Path

import pytest

from prpatrol.config import (
    PrPatrolConfig,
    get_config_path,
    get_env_overrides,
    load_config,
    read_config_file,
    write_config_file,
)


def test_read_config_file_rejects_invalid_json(tmp_path: Path) -> None:
    config_path = tmp_path / "config.json"
    config_path.write_text("{not-json}")
    with pytest.raises(ValueError, match="invalid config json"):
        read_config_file(config_path)


def test_read_config_file_missing_or_blank_is_empty(tmp_path: Path) -> None:
    assert read_config_file(tmp_path / "missing.json") == {}
    blank = tmp_path / "blank.json"
    blank.write_text("   \n")
    assert read_config_file(blank) == {}


def test_write_config_file_creates_parent_dirs(tmp_path: Path) -> None:
    config_path = tmp_path / "nested" / "config.json"
    written = write_config_file({"page_size": 20}, config_path)
    assert written == config_path
    assert json.loads(config_path.read_text()) == {"page_size": 20}


def test_get_config_path_uses_env(tmp_path: Path) -> None:
    assert get_config_path() == tmp_path / "config.json"


def test_load_config_defaults(monkeypatch: pytest.MonkeyPatch, tmp_path: Path) -> None:
    monkeypatch.delenv("PRPATROL_DB")
    monkeypatch.delenv("PRPATROL_LOG")
    cfg = load_config(tmp_path / "missing.json")
    defaults = PrPatrolConfig()
    assert cfg == defaults
    assert cfg.api_url == "https://api.github.com"
    assert cfg.default_interval_min == 5
    assert cfg.tab_host == "memory"


def test_load_config_applies_file_then_env(monkeypatch: pytest.MonkeyPatch, tmp_path: Path) -> None:
    config_path = tmp_path / "config.json"
    config_path.write_text(
        json.dumps({"page_size": 25, "api_url": "https://ghe.example/api/v3", "bridge_port": 9000})
    )
    monkeypatch.setenv("PRPATROL_BRIDGE_PORT", "9100")
    monkeypatch.setenv("PRPATROL_HTTP_TIMEOUT_S", "2.5")

    cfg = load_config(config_path)

    assert cfg.page_size == 25
    assert cfg.api_url == "https://ghe.example/api/v3"
    assert cfg.bridge_port == 9100
    assert cfg.http_timeout_s == 2.5
    assert cfg.db_path == str(tmp_path / "state.sqlite")


def test_load_config_warns_on_bad_int(monkeypatch: pytest.MonkeyPatch, tmp_path: Path) -> None:
    monkeypatch.setenv("PRPATROL_PAGE_SIZE", "lots")
    with pytest.warns(RuntimeWarning, match="page_size"):
        cfg = load_config(tmp_path / "missing.json")
    assert cfg.page_size == 50


def test_load_config_ignores_unknown_keys(tmp_path: Path) -> None:
    config_path = tmp_path / "config.json"
    config_path.write_text(json.dumps({"nope": 1, "tab_host": "plugins.chrome:build"}))
    cfg = load_config(config_path)
    assert cfg.tab_host == "plugins.chrome:build"
    assert not hasattr(cfg, "nope")


def test_get_env_overrides_only_lists_set_vars(monkeypatch: pytest.MonkeyPatch) -> None:
    monkeypatch.setenv("PRPATROL_TAB_HOST", "memory")
    overrides = get_env_overrides()
    assert overrides["tab_host"] == "memory"
    assert "api_url" not in overrides
