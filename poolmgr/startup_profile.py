from __future__ import annotations

from dataclasses import dataclass
from pathlib import Path

from poolmgr.config import Settings


@dataclass
class StartupProfile:
    host: str
    port: int
    mount_root: str
    rclone_config_path: str

    @classmethod
    def from_settings(cls, settings: Settings) -> "StartupProfile":
        return cls(
            host=settings.bind_host,
            port=settings.api_port,
            mount_root=settings.mount_root,
            rclone_config_path=settings.rclone_config_path,
        )


def _require_valid_port(port: int, field_name: str = "port") -> None:
    if int(port) < 1 or int(port) > 65535:
        raise ValueError(f"{field_name} must be in range 1..65535")


def _require_non_empty_host(host: str) -> None:
    if not str(host or "").strip():
        raise ValueError("host is required")


def _require_absolute_dir(path: str, field_name: str) -> None:
    raw = str(path or "").strip()
    if not raw:
        raise ValueError(f"{field_name} is required")
    if not Path(raw).is_absolute():
        raise ValueError(f"{field_name} must be an absolute path, got '{raw}'")
    if Path(raw).exists() and not Path(raw).is_dir():
        raise ValueError(f"{field_name} '{raw}' exists and is not a directory")


def validate_service_profile(profile: StartupProfile) -> None:
    _require_non_empty_host(profile.host)
    _require_valid_port(profile.port)
    _require_absolute_dir(profile.mount_root, "mount_root")
    if not str(profile.rclone_config_path or "").strip():
        raise ValueError("rclone_config_path is required")
    if Path(profile.rclone_config_path).is_dir():
        raise ValueError(f"rclone_config_path '{profile.rclone_config_path}' is a directory")
