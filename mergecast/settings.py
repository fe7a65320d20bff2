"""Process configuration.

Settings are read once at startup from the environment and, optionally, a JSON
file named by ``MERGE_SETTINGS_FILE`` holding the processing tunables.  The
resulting :class:`Settings` is frozen and handed to the pipeline explicitly.
"""

from __future__ import annotations

import json
import os
import re
from dataclasses import dataclass, replace
from pathlib import Path
from typing import Any, Dict, Mapping, Optional

from .errors import ConfigError
from .models.specs import SUPPORTED_FORMATS

PROJECT_ROOT = Path(__file__).resolve().parent.parent
DEFAULT_WORK_DIR = Path("/tmp/mergecast")

# keys accepted in the JSON settings file
TUNABLES = {
    "silence_ms": int,
    "fade_ms": int,
    "compression_preset": str,
    "apply_compression": bool,
    "channels": int,
    "processing_enabled": bool,
    "default_format": str,
    "default_bitrate": str,
    "transform_workers": int,
}

BITRATE_RE = re.compile(r"^\d{2,3}k$")


def _flag(value: Optional[str], default: bool) -> bool:
    if value is None or value == "":
        return default
    return value.strip().lower() in ("1", "true", "yes", "on")


def _int(env: Mapping[str, str], key: str, default: int) -> int:
    raw = env.get(key)
    if raw is None or raw == "":
        return default
    try:
        return int(raw)
    except ValueError:
        raise ConfigError(f"{key} must be an integer, got {raw!r}")


def _float(env: Mapping[str, str], key: str, default: float) -> float:
    raw = env.get(key)
    if raw is None or raw == "":
        return default
    try:
        value = float(raw)
    except ValueError:
        raise ConfigError(f"{key} must be a number, got {raw!r}")
    if not value > 0:
        raise ConfigError(f"{key} must be positive, got {raw!r}")
    return value


def resolve_work_dir(raw: Optional[str]) -> Path:
    if not raw:
        return DEFAULT_WORK_DIR
    p = Path(raw)
    if not p.is_absolute():
        p = PROJECT_ROOT / p
    return p


@dataclass(frozen=True)
class Settings:
    port: int = 3000
    work_dir: Path = DEFAULT_WORK_DIR
    log_level: str = "INFO"

    # storage
    r2_account_id: str = ""
    r2_access_key_id: str = ""
    r2_secret_access_key: str = ""
    r2_bucket: str = ""
    r2_public_base_url: str = ""
    publish_folder: str = "merged"
    purge_enabled: bool = False
    purge_prefix: str = "merged/tmp/"

    # limits
    fetch_timeout: float = 60.0
    ffmpeg_timeout: float = 600.0
    max_download_mb: int = 200

    # processing tunables
    silence_ms: int = 0
    fade_ms: int = 0
    compression_preset: str = "default"
    apply_compression: bool = False
    channels: int = 2
    processing_enabled: bool = False
    default_format: str = "mp3"
    default_bitrate: str = "192k"
    transform_workers: int = 1

    @property
    def storage_configured(self) -> bool:
        return all([self.r2_account_id, self.r2_access_key_id, self.r2_secret_access_key, self.r2_bucket])

    @classmethod
    def from_env(cls, environ: Optional[Mapping[str, str]] = None) -> "Settings":
        env = os.environ if environ is None else environ
        settings = cls(
            port=_int(env, "PORT", 3000),
            work_dir=resolve_work_dir(env.get("WORK_DIR")),
            log_level=env.get("LOG_LEVEL", "INFO").upper(),
            r2_account_id=env.get("R2_ACCOUNT_ID", ""),
            r2_access_key_id=env.get("R2_ACCESS_KEY_ID", ""),
            r2_secret_access_key=env.get("R2_SECRET_ACCESS_KEY", ""),
            r2_bucket=env.get("R2_BUCKET", ""),
            r2_public_base_url=env.get("R2_PUBLIC_BASE_URL", "").rstrip("/"),
            publish_folder=env.get("PUBLISH_FOLDER", "merged").strip("/"),
            purge_enabled=_flag(env.get("PURGE_ENABLED"), False),
            purge_prefix=env.get("PURGE_PREFIX", "merged/tmp/"),
            fetch_timeout=_float(env, "FETCH_TIMEOUT", 60.0),
            ffmpeg_timeout=_float(env, "FFMPEG_TIMEOUT", 600.0),
            max_download_mb=_int(env, "MAX_DOWNLOAD_MB", 200),
            silence_ms=_int(env, "SILENCE_MS", 0),
            fade_ms=_int(env, "FADE_MS", 0),
            compression_preset=env.get("COMPRESSION_PRESET", "default"),
            apply_compression=_flag(env.get("APPLY_COMPRESSION"), False),
            channels=_int(env, "OUTPUT_CHANNELS", 2),
            processing_enabled=_flag(env.get("PROCESSING_ENABLED"), False),
            default_format=env.get("DEFAULT_FORMAT", "mp3").lower(),
            default_bitrate=env.get("DEFAULT_BITRATE", "192k"),
            transform_workers=_int(env, "TRANSFORM_WORKERS", 1),
        )
        settings_file = env.get("MERGE_SETTINGS_FILE")
        if settings_file:
            settings = settings.with_overrides(load_settings_file(Path(settings_file)))
        settings.validate()
        return settings

    def with_overrides(self, overrides: Dict[str, Any]) -> "Settings":
        return replace(self, **overrides)

    def validate(self) -> None:
        if self.channels not in (1, 2):
            raise ConfigError("channels must be 1 or 2")
        if self.silence_ms < 0 or self.fade_ms < 0:
            raise ConfigError("silence_ms and fade_ms must be non-negative")
        if self.default_format not in SUPPORTED_FORMATS:
            raise ConfigError(f"default_format must be one of {sorted(SUPPORTED_FORMATS)}")
        if not BITRATE_RE.match(self.default_bitrate):
            raise ConfigError(f"default_bitrate {self.default_bitrate!r} is not like '192k'")
        if self.transform_workers < 1:
            raise ConfigError("transform_workers must be at least 1")
        if self.purge_enabled:
            prefix = self.purge_prefix.strip()
            if not prefix.strip("/"):
                raise ConfigError("purge_prefix must name a folder when purging is enabled")
            # keys are matched by plain string prefix, so "merged" or "mer" both cover "merged/"
            if self.publish_folder and f"{self.publish_folder}/".startswith(prefix):
                raise ConfigError(f"purge_prefix {self.purge_prefix!r} covers publish folder {self.publish_folder!r}")


def load_settings_file(path: Path) -> Dict[str, Any]:
    """Read processing tunables from a JSON settings file."""
    try:
        with open(path, "r", encoding="utf-8") as fh:
            data = json.load(fh)
    except (OSError, json.JSONDecodeError) as e:
        raise ConfigError(f"Cannot read settings file {path}: {e}")
    if not isinstance(data, dict):
        raise ConfigError(f"Settings file {path} must hold a JSON object")

    overrides: Dict[str, Any] = {}
    for key, value in data.items():
        kind = TUNABLES.get(key)
        if kind is None:
            raise ConfigError(f"Unknown setting {key!r} in {path}")
        if kind is bool:
            if not isinstance(value, bool):
                raise ConfigError(f"{key} must be true or false")
        elif kind is int:
            if isinstance(value, bool) or not isinstance(value, int):
                raise ConfigError(f"{key} must be an integer")
        elif not isinstance(value, str):
            raise ConfigError(f"{key} must be a string")
        overrides[key] = value.lower() if key == "default_format" else value
    return overrides


__all__ = ["Settings", "load_settings_file", "resolve_work_dir", "PROJECT_ROOT", "DEFAULT_WORK_DIR"]
