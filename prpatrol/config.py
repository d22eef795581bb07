from __future__ import annotations

import json
import os
import warnings
from dataclasses import dataclass
from pathlib import Path
from typing import Any

DEFAULT_CONFIG_PATH = Path("~/.config/prpatrol/config.json").expanduser()
DEFAULT_DB_PATH = Path("~/.prpatrol/state.sqlite").expanduser()
DEFAULT_LOG_PATH = Path("~/.prpatrol/daemon.log").expanduser()

CONFIG_ENV_OVERRIDES = {
    "db_path": "PRPATROL_DB",
    "api_url": "PRPATROL_API_URL",
    "web_url": "PRPATROL_WEB_URL",
    "page_size": "PRPATROL_PAGE_SIZE",
    "http_timeout_s": "PRPATROL_HTTP_TIMEOUT_S",
    "default_interval_min": "PRPATROL_DEFAULT_INTERVAL",
    "bridge_host": "PRPATROL_BRIDGE_HOST",
    "bridge_port": "PRPATROL_BRIDGE_PORT",
    "tab_host": "PRPATROL_TAB_HOST",
    "log_path": "PRPATROL_LOG",
}

_INT_KEYS = {"page_size", "default_interval_min", "bridge_port"}
_FLOAT_KEYS = {"http_timeout_s"}


def get_config_path(path: Path | None = None) -> Path:
    candidate = path or Path(os.getenv("PRPATROL_CONFIG", DEFAULT_CONFIG_PATH))
    return candidate.expanduser()


def read_config_file(path: Path | None = None) -> dict[str, Any]:
    config_path = get_config_path(path)
    if not config_path.exists():
        return {}
    raw = config_path.read_text()
    if not raw.strip():
        return {}
    try:
        data = json.loads(raw)
    except json.JSONDecodeError as exc:
        raise ValueError("invalid config json") from exc
    if not isinstance(data, dict):
        raise ValueError("config must be an object")
    return data


def write_config_file(data: dict[str, Any], path: Path | None = None) -> Path:
    config_path = get_config_path(path)
    config_path.parent.mkdir(parents=True, exist_ok=True)
    config_path.write_text(json.dumps(data, ensure_ascii=False, indent=2) + "\n")
    return config_path


def get_env_overrides() -> dict[str, str]:
    overrides: dict[str, str] = {}
    for key, env_var in CONFIG_ENV_OVERRIDES.items():
        value = os.getenv(env_var)
        if value is not None:
            overrides[key] = value
    return overrides


@dataclass
class PrPatrolConfig:
    db_path: str = str(DEFAULT_DB_PATH)
    api_url: str = "https://api.github.com"
    web_url: str = "https://github.com"
    page_size: int = 50
    http_timeout_s: float = 10.0
    default_interval_min: int = 5
    bridge_host: str = "127.0.0.1"
    bridge_port: int = 38917
    # "memory" or "package.module:factory" returning a TabHost.
    tab_host: str = "memory"
    log_path: str = str(DEFAULT_LOG_PATH)


def _parse_int(value: object, default: int, *, key: str) -> int:
    if value is None:
        return default
    try:
        return int(value)  # type: ignore[arg-type]
    except (TypeError, ValueError):
        warnings.warn(f"Invalid int for {key}: {value!r}", RuntimeWarning, stacklevel=2)
        return default


def _parse_float(value: object, default: float, *, key: str) -> float:
    if value is None:
        return default
    try:
        return float(value)  # type: ignore[arg-type]
    except (TypeError, ValueError):
        warnings.warn(f"Invalid float for {key}: {value!r}", RuntimeWarning, stacklevel=2)
        return default


def load_config(path: Path | None = None) -> PrPatrolConfig:
    cfg = PrPatrolConfig()
    config_path = get_config_path(path)
    if config_path.exists():
        try:
            data = json.loads(config_path.read_text())
        except json.JSONDecodeError:
            data = {}
        if isinstance(data, dict):
            cfg = _apply_dict(cfg, data)
    cfg = _apply_dict(cfg, get_env_overrides())
    return cfg


def _apply_dict(cfg: PrPatrolConfig, data: dict[str, Any]) -> PrPatrolConfig:
    for key, value in data.items():
        if not hasattr(cfg, key):
            continue
        if key in _INT_KEYS:
            setattr(cfg, key, _parse_int(value, getattr(cfg, key), key=key))
            continue
        if key in _FLOAT_KEYS:
            setattr(cfg, key, _parse_float(value, getattr(cfg, key), key=key))
            continue
        if value is None:
            continue
        setattr(cfg, key, str(value))
    return cfg
