from __future__ import annotations

import json
import os
import tempfile
import warnings
from dataclasses import dataclass
from pathlib import Path
from typing import Any

DEFAULT_CONFIG_PATH = Path("~/.config/annoku/config.json").expanduser()
DEFAULT_HOST = "127.0.0.1"
DEFAULT_PORT = 9223
DEFAULT_PORT_ATTEMPTS = 4
DEFAULT_PERSIST_DEBOUNCE_MS = 300

CONFIG_ENV_OVERRIDES = {
    "host": "ANNOKU_HOST",
    "port": "ANNOTATION_PORT",
    "port_attempts": "ANNOKU_PORT_ATTEMPTS",
    "port_file": "ANNOKU_PORT_FILE",
    "persist": "ANNOKU_PERSIST",
    "persist_file": "ANNOKU_PERSIST_FILE",
    "persist_debounce_ms": "ANNOKU_PERSIST_DEBOUNCE_MS",
}

_INT_KEYS = {"port", "port_attempts", "persist_debounce_ms"}
_BOOL_KEYS = {"persist"}


def default_port_file() -> Path:
    return Path(tempfile.gettempdir()) / ".annoku.port"


def default_persist_file() -> Path:
    return Path(tempfile.gettempdir()) / ".annoku-annotations.json"


def get_config_path(path: Path | None = None) -> Path:
    candidate = path or Path(os.getenv("ANNOKU_CONFIG", DEFAULT_CONFIG_PATH))
    return candidate.expanduser()


def get_env_overrides() -> dict[str, str]:
    overrides: dict[str, str] = {}
    for key, env_var in CONFIG_ENV_OVERRIDES.items():
        value = os.getenv(env_var)
        if value is not None:
            overrides[key] = value
    return overrides


@dataclass
class AnnokuConfig:
    host: str = DEFAULT_HOST
    port: int = DEFAULT_PORT
    port_attempts: int = DEFAULT_PORT_ATTEMPTS
    port_file: str | None = None
    persist: bool = False
    persist_file: str | None = None
    persist_debounce_ms: int = DEFAULT_PERSIST_DEBOUNCE_MS

    def port_file_path(self) -> Path:
        if self.port_file:
            return Path(self.port_file).expanduser()
        return default_port_file()

    def persist_file_path(self) -> Path:
        if self.persist_file:
            return Path(self.persist_file).expanduser()
        return default_persist_file()

    def candidate_ports(self) -> list[int]:
        # Port 0 asks the OS for a free port; retrying it is pointless.
        if self.port == 0:
            return [0]
        attempts = max(1, self.port_attempts)
        return [self.port + offset for offset in range(attempts)]


def _parse_bool(value: str | None, default: bool) -> bool:
    if value is None:
        return default
    if value.lower() in {"1", "true", "yes", "on"}:
        return True
    if value.lower() in {"0", "false", "off", "no"}:
        return False
    return default


def _parse_int(value: object, default: int, *, key: str) -> int:
    if value is None:
        return default
    try:
        return int(value)  # type: ignore[arg-type]
    except (TypeError, ValueError):
        warnings.warn(f"Invalid int for {key}: {value!r}", RuntimeWarning, stacklevel=2)
        return default


def _coerce_bool(value: object, default: bool, *, key: str) -> bool:
    if value is None:
        return default
    if isinstance(value, bool):
        return value
    if isinstance(value, int):
        return value != 0
    if isinstance(value, str):
        return _parse_bool(value, default)
    warnings.warn(f"Invalid bool for {key}: {value!r}", RuntimeWarning, stacklevel=2)
    return default


def load_config(path: Path | None = None) -> AnnokuConfig:
    cfg = AnnokuConfig()
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


def _apply_dict(cfg: AnnokuConfig, data: dict[str, Any]) -> AnnokuConfig:
    for key, value in data.items():
        if not hasattr(cfg, key):
            continue
        if key in _INT_KEYS:
            setattr(cfg, key, _parse_int(value, getattr(cfg, key), key=key))
            continue
        if key in _BOOL_KEYS:
            setattr(cfg, key, _coerce_bool(value, getattr(cfg, key), key=key))
            continue
        if key == "host":
            if isinstance(value, str) and value.strip():
                cfg.host = value.strip()
            continue
        if value is None or isinstance(value, str):
            setattr(cfg, key, value or None)
            continue
        warnings.warn(f"Invalid string for {key}: {value!r}", RuntimeWarning, stacklevel=2)
    return cfg
