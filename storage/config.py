"""Simple JSON-backed configuration store."""
from __future__ import annotations

import json
from dataclasses import asdict, dataclass, fields, replace
from pathlib import Path
from typing import Any, Dict, Optional

from core.settings import CONFIG_PATH, SYNC, SyncSettings


@dataclass
class AppConfig:
    """User overrides persisted to ``config.json``."""

    server_base_url: Optional[str] = None
    request_timeout_sec: Optional[float] = None
    max_retry_attempts: Optional[int] = None


def _ensure_parent(path: Path) -> None:
    path.parent.mkdir(parents=True, exist_ok=True)


def _load_raw(path: Path) -> Dict[str, Any]:
    if not path.exists():
        return {}
    try:
        data = json.loads(path.read_text(encoding="utf-8"))
    except (OSError, json.JSONDecodeError):
        return {}
    return data if isinstance(data, dict) else {}


def load_config(path: Optional[Path] = None) -> AppConfig:
    target = path or CONFIG_PATH
    data = _load_raw(target)
    return AppConfig(**{item.name: data.get(item.name) for item in fields(AppConfig)})


def save_config(config: AppConfig, path: Optional[Path] = None) -> None:
    target = path or CONFIG_PATH
    _ensure_parent(target)
    payload = json.dumps(asdict(config), ensure_ascii=False, indent=2, sort_keys=True)
    tmp = target.with_suffix(".tmp")
    try:
        tmp.write_text(payload, encoding="utf-8")
        tmp.replace(target)
    finally:
        if tmp.exists():
            try:
                tmp.unlink()
            except OSError:
                pass


def update_config(path: Optional[Path] = None, **changes: Any) -> AppConfig:
    target = path or CONFIG_PATH
    cfg = load_config(target)
    for key, value in changes.items():
        if hasattr(cfg, key):
            setattr(cfg, key, value)
    save_config(cfg, target)
    return cfg


def resolve_sync_settings(config: Optional[AppConfig] = None, base: SyncSettings = SYNC) -> SyncSettings:
    """Apply the non-empty overrides from ``config`` on top of ``base``."""

    cfg = config or load_config()
    overrides: Dict[str, Any] = {}
    if cfg.server_base_url:
        overrides["server_base_url"] = cfg.server_base_url.rstrip("/")
    if cfg.request_timeout_sec:
        overrides["request_timeout_sec"] = float(cfg.request_timeout_sec)
    if cfg.max_retry_attempts is not None:
        overrides["max_retry_attempts"] = int(cfg.max_retry_attempts)
    return replace(base, **overrides)


__all__ = ["AppConfig", "load_config", "save_config", "update_config", "resolve_sync_settings"]
