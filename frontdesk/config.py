from __future__ import annotations

import json
import os
import warnings
from dataclasses import dataclass, fields
from pathlib import Path
from typing import Any

DEFAULT_CONFIG_PATH = Path("~/.config/frontdesk/config.json").expanduser()

REMOTE_BACKENDS = {"none", "memory", "http", "firestore"}

CONFIG_ENV_OVERRIDES = {
    "db_path": "FRONTDESK_DB",
    "remote_backend": "FRONTDESK_REMOTE_BACKEND",
    "remote_url": "FRONTDESK_REMOTE_URL",
    "remote_token": "FRONTDESK_REMOTE_TOKEN",
    "remote_timeout_s": "FRONTDESK_REMOTE_TIMEOUT_S",
    "remote_poll_interval_ms": "FRONTDESK_REMOTE_POLL_INTERVAL_MS",
    "firestore_project": "FRONTDESK_FIRESTORE_PROJECT",
    "firestore_database": "FRONTDESK_FIRESTORE_DATABASE",
    "firestore_credentials": "FRONTDESK_FIRESTORE_CREDENTIALS",
    "offline_persistence": "FRONTDESK_OFFLINE_PERSISTENCE",
    "sync_flush_interval_ms": "FRONTDESK_SYNC_FLUSH_INTERVAL_MS",
    "blob_dir": "FRONTDESK_BLOB_DIR",
    "retention_days": "FRONTDESK_RETENTION_DAYS",
    "retention_warning_days": "FRONTDESK_RETENTION_WARNING_DAYS",
    "seed_admin_name": "FRONTDESK_SEED_ADMIN_NAME",
    "seed_admin_pin": "FRONTDESK_SEED_ADMIN_PIN",
    "log_level": "FRONTDESK_LOG_LEVEL",
    "log_file": "FRONTDESK_LOG_FILE",
    "server_host": "FRONTDESK_SERVER_HOST",
    "server_port": "FRONTDESK_SERVER_PORT",
    "server_db_path": "FRONTDESK_SERVER_DB",
}

INT_KEYS = {
    "remote_poll_interval_ms",
    "sync_flush_interval_ms",
    "retention_days",
    "retention_warning_days",
    "server_port",
}
FLOAT_KEYS = {"remote_timeout_s"}
BOOL_KEYS = {"offline_persistence"}
REQUIRED_STR_KEYS = {"db_path", "seed_admin_name", "log_level", "server_host", "server_db_path"}


def get_config_path(path: Path | None = None) -> Path:
    candidate = path or Path(os.getenv("FRONTDESK_CONFIG", DEFAULT_CONFIG_PATH))
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
class FrontdeskConfig:
    db_path: str = "~/.frontdesk/frontdesk.sqlite"
    remote_backend: str = "none"
    remote_url: str | None = None
    remote_token: str | None = None
    remote_timeout_s: float = 5.0
    remote_poll_interval_ms: int = 1000
    firestore_project: str | None = None
    firestore_database: str | None = None
    firestore_credentials: str | None = None
    # Keep the outbound queue in the SQLite file so writes made offline
    # survive a restart. When off, the queue lives in memory.
    offline_persistence: bool = True
    sync_flush_interval_ms: int = 500
    blob_dir: str | None = None
    retention_days: int = 90
    retention_warning_days: int = 80
    seed_admin_name: str = "admin"
    seed_admin_pin: str | None = None
    log_level: str = "WARNING"
    log_file: str | None = None
    server_host: str = "127.0.0.1"
    server_port: int = 7450
    server_db_path: str = "~/.frontdesk/documents.sqlite"


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


def _parse_float(value: object, default: float, *, key: str) -> float:
    if value is None:
        return default
    try:
        return float(value)  # type: ignore[arg-type]
    except (TypeError, ValueError):
        warnings.warn(f"Invalid float for {key}: {value!r}", RuntimeWarning, stacklevel=2)
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


def _coerce_backend(value: object, default: str) -> str:
    backend = str(value or "").strip().lower()
    if backend in {"", "off", "local"}:
        return "none"
    if backend not in REMOTE_BACKENDS:
        warnings.warn(f"Unknown remote_backend: {value!r}", RuntimeWarning, stacklevel=2)
        return default
    return backend


def load_config(path: Path | None = None) -> FrontdeskConfig:
    cfg = FrontdeskConfig()
    config_path = get_config_path(path)
    if config_path.exists():
        try:
            data = json.loads(config_path.read_text() or "{}")
        except json.JSONDecodeError:
            data = {}
        if isinstance(data, dict):
            cfg = _apply_dict(cfg, data)
    cfg = _apply_dict(cfg, get_env_overrides())
    return cfg


def _apply_dict(cfg: FrontdeskConfig, data: dict[str, Any]) -> FrontdeskConfig:
    known = {f.name for f in fields(cfg)}
    for key, value in data.items():
        if key not in known:
            continue
        if key in INT_KEYS:
            setattr(cfg, key, _parse_int(value, getattr(cfg, key), key=key))
            continue
        if key in FLOAT_KEYS:
            setattr(cfg, key, _parse_float(value, getattr(cfg, key), key=key))
            continue
        if key in BOOL_KEYS:
            setattr(cfg, key, _coerce_bool(value, getattr(cfg, key), key=key))
            continue
        if key == "remote_backend":
            cfg.remote_backend = _coerce_backend(value, cfg.remote_backend)
            continue
        if value is not None and not isinstance(value, str):
            value = str(value)
        if key in REQUIRED_STR_KEYS:
            if value:
                setattr(cfg, key, value)
            continue
        setattr(cfg, key, value or None)
    return cfg
