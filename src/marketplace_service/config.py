"""
Configuration management for the marketplace service.

Loads configuration from YAML with ZERO defaults for required sections.
Every required value must be explicitly specified or startup fails.
"""

from __future__ import annotations

import os
from functools import lru_cache
from pathlib import Path
from typing import Any

import yaml
from pydantic import BaseModel, ConfigDict

REDACTION_MARKER = "***REDACTED***"

_SENSITIVE_KEYS = frozenset({"secret_key", "webhook_secret", "api_key"})


class ServiceConfig(BaseModel):
    """Service identity configuration."""

    model_config = ConfigDict(extra="forbid")
    name: str
    version: str


class ServerConfig(BaseModel):
    """HTTP server configuration."""

    model_config = ConfigDict(extra="forbid")
    host: str
    port: int
    log_level: str


class LoggingConfig(BaseModel):
    """Logging configuration."""

    model_config = ConfigDict(extra="forbid")
    level: str
    directory: str


class DatabaseConfig(BaseModel):
    """Database configuration."""

    model_config = ConfigDict(extra="forbid")
    path: str


class IdentityConfig(BaseModel):
    """Session verification service connection configuration."""

    model_config = ConfigDict(extra="forbid")
    base_url: str
    verify_path: str
    timeout_seconds: int


class PaymentsConfig(BaseModel):
    """Payment gateway configuration."""

    model_config = ConfigDict(extra="forbid")
    api_base_url: str
    secret_key: str | None
    webhook_secret: str | None
    currency: str
    timeout_seconds: int
    signature_tolerance_seconds: int
    event_retention_days: int


class NotificationsConfig(BaseModel):
    """Real-time notification channel configuration."""

    model_config = ConfigDict(extra="forbid")
    queue_size: int
    keepalive_seconds: int


class RequestConfig(BaseModel):
    """Request handling configuration."""

    model_config = ConfigDict(extra="forbid")
    max_body_size: int


class AIConfig(BaseModel):
    """OpenAI-compatible proposal writer endpoint configuration."""

    model_config = ConfigDict(extra="forbid")
    base_url: str
    api_key: str
    model_id: str
    temperature: float
    max_tokens: int


class Settings(BaseModel):
    """
    Root configuration container.

    All sections except ``ai`` are REQUIRED. Without an ``ai`` section the
    proposal writer answers with its configuration fallback text.
    """

    model_config = ConfigDict(extra="forbid")
    service: ServiceConfig
    server: ServerConfig
    logging: LoggingConfig
    database: DatabaseConfig
    identity: IdentityConfig
    payments: PaymentsConfig
    notifications: NotificationsConfig
    request: RequestConfig
    ai: AIConfig | None = None


def get_config_path() -> Path:
    """Determine configuration file path (CONFIG_PATH env var, then ./config.yaml)."""
    override = os.environ.get("CONFIG_PATH")
    if override:
        return Path(override)
    return Path.cwd() / "config.yaml"


@lru_cache(maxsize=1)
def get_settings() -> Settings:
    """Load and cache settings from the YAML config file."""
    config_path = get_config_path()
    raw = yaml.safe_load(config_path.read_text())
    if not isinstance(raw, dict):
        msg = f"Invalid config file: {config_path}"
        raise ValueError(msg)
    return Settings(**raw)


def clear_settings_cache() -> None:
    """Drop the cached settings so the next call re-reads the file."""
    get_settings.cache_clear()


def _redact(value: Any) -> Any:
    if isinstance(value, dict):
        return {
            key: REDACTION_MARKER
            if key in _SENSITIVE_KEYS and item is not None
            else _redact(item)
            for key, item in value.items()
        }
    return value


def get_safe_config() -> dict[str, Any]:
    """Get configuration with sensitive values redacted."""
    redacted: dict[str, Any] = _redact(get_settings().model_dump())
    return redacted
