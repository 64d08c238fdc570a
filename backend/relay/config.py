"""PeerLink relay configuration.

Loads settings from ``peerlink.settings.yaml``. The file is looked up, in
order, at:
  * the path in the ``PEERLINK_SETTINGS`` environment variable
  * ./peerlink.settings.yaml
  * ./config/peerlink.settings.yaml

A missing file is not an error; every setting has a default. The ``PORT``
environment variable overrides ``server.port``.
"""
from __future__ import annotations

import logging
import os
from pathlib import Path
from typing import Any, Dict, List, Optional

import yaml
from pydantic import BaseModel, Field, field_validator, model_validator

logger = logging.getLogger(__name__)

# ---------------------------------------------------------------------------
# Helpers
# ---------------------------------------------------------------------------

SETTINGS_FILENAME = "peerlink.settings.yaml"
SETTINGS_ENV_VAR  = "PEERLINK_SETTINGS"


def _load_yaml(path: Path) -> Dict[str, Any]:
    if not path.exists():
        logger.warning("Config file not found: %s", path)
        return {}
    with path.open(encoding="utf-8") as fh:
        return yaml.safe_load(fh) or {}


def _find_settings_file() -> Path:
    env_path = os.environ.get(SETTINGS_ENV_VAR)
    if env_path:
        return Path(env_path)
    for candidate in (Path(SETTINGS_FILENAME), Path("config") / SETTINGS_FILENAME):
        if candidate.exists():
            return candidate
    return Path(SETTINGS_FILENAME)


# ---------------------------------------------------------------------------
# Settings models
# ---------------------------------------------------------------------------


class ServerSettings(BaseModel):
    host:            str       = "0.0.0.0"
    port:            int       = 8080
    allowed_origins: List[str] = Field(default_factory=lambda: ["*"])


class StorageSettings(BaseModel):
    """Where uploads are kept and how large they may be."""
    upload_dir:        str           = "/tmp/peerlink-uploads"
    max_request_bytes: int           = 500 * 1024 * 1024
    max_file_bytes:    Optional[int] = None
    chunk_size:        int           = 64 * 1024

    @field_validator("max_request_bytes", "chunk_size")
    @classmethod
    def _positive(cls, v: int) -> int:
        if v <= 0:
            raise ValueError("must be positive")
        return v

    @field_validator("max_file_bytes")
    @classmethod
    def _positive_or_none(cls, v: Optional[int]) -> Optional[int]:
        if v is not None and v <= 0:
            raise ValueError("must be positive or null")
        return v


class SessionSettings(BaseModel):
    """Access code range and expiry."""
    ttl_seconds:            int = 300
    sweep_interval_seconds: int = 300
    code_min:               int = 1
    code_max:               int = 65535
    max_random_attempts:    int = 64

    @field_validator("ttl_seconds", "sweep_interval_seconds", "code_min")
    @classmethod
    def _positive(cls, v: int) -> int:
        if v <= 0:
            raise ValueError("must be positive")
        return v

    @model_validator(mode="after")
    def _check_code_range(self) -> "SessionSettings":
        if self.code_max < self.code_min:
            raise ValueError("code_max must not be lower than code_min")
        return self


class LoggingSettings(BaseModel):
    level: str = "info"


class AppConfig(BaseModel):
    server:   ServerSettings  = Field(default_factory=ServerSettings)
    storage:  StorageSettings = Field(default_factory=StorageSettings)
    sessions: SessionSettings = Field(default_factory=SessionSettings)
    logging:  LoggingSettings = Field(default_factory=LoggingSettings)


# ---------------------------------------------------------------------------
# Public loader
# ---------------------------------------------------------------------------


def load_config(settings_path: Optional[Path] = None) -> AppConfig:
    """Load settings into an *AppConfig*.

    A relative ``storage.upload_dir`` is resolved against the directory of
    the settings file.
    """
    path = Path(settings_path) if settings_path else _find_settings_file()
    data = _load_yaml(path)

    config = AppConfig(**data)

    upload_dir = Path(config.storage.upload_dir).expanduser()
    if not upload_dir.is_absolute():
        config.storage.upload_dir = str(path.resolve().parent / upload_dir)

    port = os.environ.get("PORT")
    if port:
        try:
            config.server.port = int(port)
        except ValueError:
            logger.warning("Ignoring non-numeric PORT=%r", port)

    logger.info(
        "Settings loaded (server=%s:%s, upload_dir=%s, ttl=%ss)",
        config.server.host,
        config.server.port,
        config.storage.upload_dir,
        config.sessions.ttl_seconds,
    )
    return config


_config: Optional[AppConfig] = None


def get_config() -> AppConfig:
    """Return the process-wide config, loading it on first use."""
    global _config
    if _config is None:
        _config = load_config()
    return _config


def reset_config() -> None:
    """Forget the cached config (for testing)."""
    global _config
    _config = None
