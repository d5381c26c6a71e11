from __future__ import annotations

import os
from dataclasses import dataclass
from pathlib import Path
from typing import Optional


def _int_env(name: str, default: int) -> int:
    raw = str(os.getenv(name, str(default))).strip()
    try:
        return int(raw)
    except Exception:
        return default


def _float_env(name: str, default: float) -> float:
    raw = str(os.getenv(name, str(default))).strip()
    try:
        return float(raw)
    except Exception:
        return default


def _optional_float_env(name: str) -> Optional[float]:
    raw = str(os.getenv(name, "") or "").strip()
    if not raw:
        return None
    try:
        value = float(raw)
    except Exception:
        return None
    return value if value > 0 else None


def _str_env(name: str, default: str) -> str:
    value = str(os.getenv(name, "") or "").strip()
    return value or default


def _default_rclone_config() -> str:
    return str(Path(os.getenv("HOME", "~")).expanduser() / ".config" / "rclone" / "rclone.conf")


@dataclass(frozen=True)
class Settings:
    """Runtime configuration handed to every component constructor."""

    database_url: str = "sqlite:///./data/pooled-storage.db"
    rclone_binary: str = "rclone"
    rclone_config_path: str = "rclone.conf"
    mount_root: str = "/mnt/pooled-storage"

    mount_timeout_seconds: float = 30.0
    mount_poll_interval_seconds: float = 0.5
    large_file_cache_size: str = "50G"
    cache_size: Optional[str] = None  # rclone default (unbounded) when unset
    default_chunk_size: str = "100M"

    # None keeps external invocations unbounded
    command_timeout_seconds: Optional[float] = None

    quota_refresh_interval_seconds: int = 300
    quota_refresh_workers: int = 4

    bind_host: str = "0.0.0.0"
    api_port: int = 8080
    log_level: str = "INFO"
    log_file: Optional[str] = None

    @classmethod
    def from_env(cls) -> "Settings":
        return cls(
            database_url=_str_env("POOLMGR_DATABASE_URL", cls.database_url),
            rclone_binary=_str_env("RCLONE_BINARY", cls.rclone_binary),
            rclone_config_path=_str_env("RCLONE_CONFIG_PATH", _default_rclone_config()),
            mount_root=_str_env("MOUNT_PATH", cls.mount_root),
            mount_timeout_seconds=_float_env("POOLMGR_MOUNT_TIMEOUT", cls.mount_timeout_seconds),
            mount_poll_interval_seconds=_float_env(
                "POOLMGR_MOUNT_POLL_INTERVAL", cls.mount_poll_interval_seconds
            ),
            large_file_cache_size=_str_env("POOLMGR_LARGE_FILE_CACHE_SIZE", cls.large_file_cache_size),
            cache_size=(os.getenv("POOLMGR_CACHE_SIZE") or "").strip() or None,
            default_chunk_size=_str_env("POOLMGR_DEFAULT_CHUNK_SIZE", cls.default_chunk_size),
            command_timeout_seconds=_optional_float_env("POOLMGR_COMMAND_TIMEOUT"),
            quota_refresh_interval_seconds=_int_env(
                "POOLMGR_QUOTA_REFRESH_INTERVAL", cls.quota_refresh_interval_seconds
            ),
            quota_refresh_workers=max(1, _int_env("POOLMGR_QUOTA_REFRESH_WORKERS", cls.quota_refresh_workers)),
            bind_host=_str_env("POOLMGR_BIND_HOST", cls.bind_host),
            api_port=_int_env("POOLMGR_API_PORT", cls.api_port),
            log_level=_str_env("POOLMGR_LOG_LEVEL", cls.log_level).upper(),
            log_file=(os.getenv("POOLMGR_LOG_FILE") or "").strip() or None,
        )
