"""Pulse chat service configuration.

Loads settings from two YAML files:
  * pulse.settings.yaml: non-secret configuration
  * pulse.secrets.yaml: secrets (never committed)

Both paths can be overridden with the PULSE_SETTINGS / PULSE_SECRETS
environment variables. Missing files fall back to defaults.
"""
from __future__ import annotations

import logging
import os
from pathlib import Path
from typing import Any, Dict, List, Literal, Optional

import yaml
from pydantic import BaseModel, Field, field_validator

logger = logging.getLogger(__name__)

# ---------------------------------------------------------------------------
# Helpers
# ---------------------------------------------------------------------------

SETTINGS_FILE = Path("pulse.settings.yaml")
SECRETS_FILE  = Path("pulse.secrets.yaml")


def _load_yaml(path: Path) -> Dict[str, Any]:
    if not path.exists():
        logger.warning("Config file not found: %s", path)
        return {}
    with path.open(encoding="utf-8") as fh:
        return yaml.safe_load(fh) or {}


# ---------------------------------------------------------------------------
# Secrets models
# ---------------------------------------------------------------------------


class JWTSecrets(BaseModel):
    secret_key: str = "change-me-in-production"
    algorithm:  str = "HS256"
    access_token_expire_minutes: int = 60 * 24


class RedisSecrets(BaseModel):
    url: Optional[str] = None


class Secrets(BaseModel):
    jwt:   JWTSecrets   = Field(default_factory=JWTSecrets)
    redis: RedisSecrets = Field(default_factory=RedisSecrets)


# ---------------------------------------------------------------------------
# Settings models
# ---------------------------------------------------------------------------


class ServerSettings(BaseModel):
    host:            str       = "0.0.0.0"
    port:            int       = 5002
    api_prefix:      str       = "/api/v1"
    allowed_origins: List[str] = Field(default_factory=lambda: ["*"])


class LoggingSettings(BaseModel):
    level: str = "info"


class StorageSettings(BaseModel):
    db_path: str = "pulse_chat.duckdb"


class CacheSettings(BaseModel):
    backend:           Literal["memory", "redis"] = "memory"
    redis_url:         Optional[str]              = None
    chats_ttl_seconds: int                        = 300


class ProfileServiceSettings(BaseModel):
    """Where the user-profile service lives (privacy flags, public profiles)."""
    base_url:        str   = "http://localhost:5000/api/v1"
    timeout_seconds: float = 5.0

    @field_validator("base_url")
    @classmethod
    def _strip_trailing_slash(cls, value: str) -> str:
        return value.rstrip("/")


class LinkPreviewSettings(BaseModel):
    enabled:         bool  = True
    timeout_seconds: float = 5.0
    user_agent:      str   = "Mozilla/5.0 (compatible; Googlebot/2.1; +http://www.google.com/bot.html)"
    max_bytes:       int   = 512 * 1024


class UploadSettings(BaseModel):
    dir:             str = "uploads"
    public_base_url: str = "/uploads"
    max_bytes:       int = 10 * 1024 * 1024


class MessageSettings(BaseModel):
    edit_window_minutes: int = 15
    default_page_size:   int = 50
    max_page_size:       int = 100


class AppSettings(BaseModel):
    server:          ServerSettings         = Field(default_factory=ServerSettings)
    logging:         LoggingSettings        = Field(default_factory=LoggingSettings)
    storage:         StorageSettings        = Field(default_factory=StorageSettings)
    cache:           CacheSettings          = Field(default_factory=CacheSettings)
    profile_service: ProfileServiceSettings = Field(default_factory=ProfileServiceSettings)
    link_preview:    LinkPreviewSettings    = Field(default_factory=LinkPreviewSettings)
    uploads:         UploadSettings         = Field(default_factory=UploadSettings)
    messages:        MessageSettings        = Field(default_factory=MessageSettings)
    secrets:         Secrets                = Field(default_factory=Secrets)

    @property
    def redis_url(self) -> Optional[str]:
        """Secrets win over the plain settings value."""
        return self.secrets.redis.url or self.cache.redis_url


# ---------------------------------------------------------------------------
# Public loader
# ---------------------------------------------------------------------------


def load_config(
    settings_path: Optional[Path] = None,
    secrets_path: Optional[Path] = None,
) -> AppSettings:
    """Load and merge settings + secrets into a single *AppSettings* object."""
    settings_path = Path(settings_path or os.environ.get("PULSE_SETTINGS", SETTINGS_FILE))
    secrets_path = Path(secrets_path or os.environ.get("PULSE_SECRETS", SECRETS_FILE))

    settings_data = _load_yaml(settings_path)
    secrets_data  = _load_yaml(secrets_path)

    # Merge: secrets live under the "secrets" key in AppSettings
    settings_data["secrets"] = secrets_data

    app_settings = AppSettings(**settings_data)
    logger.info(
        "Settings loaded (server=%s:%s, storage=%s, cache=%s)",
        app_settings.server.host,
        app_settings.server.port,
        app_settings.storage.db_path,
        app_settings.cache.backend,
    )
    return app_settings


_config: Optional[AppSettings] = None


def get_config() -> AppSettings:
    """Return the process-wide settings, loading them on first use."""
    global _config
    if _config is None:
        _config = load_config()
    return _config


def set_config(config: AppSettings) -> None:
    global _config
    _config = config


def reset_config() -> None:
    """Forget the cached settings (tests)."""
    global _config
    _config = None
