"""Centralized application configuration."""
from __future__ import annotations

from dataclasses import dataclass
from pathlib import Path
from typing import Mapping, Optional
import os
import sys


def get_default_data_dir(
    app_name: str,
    *,
    platform: Optional[str] = None,
    env: Optional[Mapping[str, str]] = None,
    home: Optional[Path] = None,
) -> Path:
    """Return an OS-specific user data directory for ``app_name``."""

    platform_id = (platform or sys.platform).lower()
    environ = dict(env or os.environ)
    home_dir = Path(home or Path.home())
    sanitized = app_name.strip() or "app"
    sanitized = sanitized.replace("/", "-").replace("\\", "-")

    if platform_id.startswith("win"):
        base = Path(environ.get("APPDATA") or home_dir / "AppData" / "Roaming")
    elif platform_id == "darwin":
        base = Path(environ.get("APPDATA") or home_dir / "Library" / "Application Support")
    else:
        base = Path(environ.get("XDG_DATA_HOME") or home_dir / ".local" / "share")

    return (base.expanduser() / sanitized)


APP_NAME = "VibeWellSync"


DATA_DIR = get_default_data_dir(APP_NAME)
STORAGE_DIR = DATA_DIR / "storage"
SECRETS_DIR = DATA_DIR / "secrets"
LOG_DIR = DATA_DIR / "logs"

for _dir in (DATA_DIR, STORAGE_DIR, SECRETS_DIR, LOG_DIR):
    _dir.mkdir(parents=True, exist_ok=True)


DB_PATH = DATA_DIR / "offline.db"
CONFIG_PATH = DATA_DIR / "config.json"
TOKEN_PATH = SECRETS_DIR / "token.json"
KV_FILE_PATH = STORAGE_DIR / "kv.json"
LOG_PATH = LOG_DIR / "sync.log"


@dataclass(frozen=True)
class StorageKeys:
    sync_queue: str = "@vibewell/sync_queue"
    cache_prefix: str = "@vibewell/cache/"
    connection_status: str = "@vibewell/connection_status"
    last_sync: str = "@vibewell/last_sync"
    auth_token: str = "@vibewell/auth_token"


STORAGE_KEYS = StorageKeys()


@dataclass(frozen=True)
class SyncSettings:
    server_base_url: str = "https://api.vibewell.com"
    max_retry_attempts: int = 5
    request_timeout_sec: float = 30.0
    drain_on_reconnect: bool = True


SYNC = SyncSettings()


@dataclass(frozen=True)
class ConnectivitySettings:
    check_interval_sec: float = 30.0
    probe_timeout_sec: float = 5.0


CONNECTIVITY = ConnectivitySettings()


DAY_MS = 24 * 60 * 60 * 1000


@dataclass(frozen=True)
class CacheSettings:
    default_ttl_ms: int = DAY_MS
    config_ttl_ms: int = 7 * DAY_MS
    high_priority_multiplier: int = 2
    preload_endpoints: tuple[str, ...] = (
        "/api/users/{user_id}/profile",
        "/api/users/{user_id}/appointments",
        "/api/users/{user_id}/recent-services",
        "/api/services/featured",
        "/api/salons/nearby",
    )
    config_endpoint: str = "/api/config"


CACHE = CacheSettings()


@dataclass(frozen=True)
class LoggingSettings:
    path: Path = LOG_PATH
    max_bytes: int = 1_000_000
    backup_count: int = 3
    level: str = "INFO"
    format: str = "%(asctime)s [%(levelname)s] %(message)s"


LOGGING = LoggingSettings()


__all__ = [
    "APP_NAME",
    "DATA_DIR",
    "STORAGE_DIR",
    "SECRETS_DIR",
    "LOG_DIR",
    "DB_PATH",
    "CONFIG_PATH",
    "TOKEN_PATH",
    "KV_FILE_PATH",
    "LOG_PATH",
    "STORAGE_KEYS",
    "SYNC",
    "CONNECTIVITY",
    "CACHE",
    "LOGGING",
    "DAY_MS",
    "get_default_data_dir",
    "StorageKeys",
    "SyncSettings",
    "ConnectivitySettings",
    "CacheSettings",
    "LoggingSettings",
]
