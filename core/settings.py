"""Centralised application configuration and environment validation."""

from __future__ import annotations

import logging
from typing import Any, Mapping, MutableMapping, Optional

from pydantic import Field, ValidationError, field_validator, model_validator
from pydantic_settings import BaseSettings, SettingsConfigDict

logger = logging.getLogger("settings")


SECRET_FIELDS = frozenset({
    "MUSIC_API_KEY",
    "REDIS_URL",
})

_CRITICAL_ENDPOINT_FIELDS = {
    "MUSIC_API_BASE",
    "MUSIC_CALLBACK_URL",
}

_ALLOWED_MODELS = ("V3_5", "V4", "V4_5", "V4_5PLUS")


def _mask(value: Optional[str]) -> str:
    if not value:
        return ""
    text = str(value).strip()
    if len(text) <= 4:
        return text
    return f"***{text[-4:]}"


class Settings(BaseSettings):
    """Application settings loaded from environment variables."""

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        case_sensitive=True,
        extra="ignore",
    )

    APP_ENV: str = Field(default="prod")
    LOG_LEVEL: str = Field(default="INFO")
    LOG_JSON: bool = Field(default=True)
    MAX_IN_LOG_BODY: int = Field(default=2048, ge=256, le=65536)

    MUSIC_API_KEY: Optional[str] = Field(default=None)
    MUSIC_API_BASE: str = Field(default="https://api.api.box/api/v1")
    MUSIC_DEFAULT_MODEL: str = Field(default="V4")
    MUSIC_CALLBACK_URL: str = Field(default="https://example.com/callback")

    HTTP_TIMEOUT_CONNECT: float = Field(default=10.0, ge=0.1, le=300.0)
    HTTP_TIMEOUT_READ: float = Field(default=60.0, ge=1.0, le=600.0)
    HTTP_TIMEOUT_WRITE: float = Field(default=30.0, ge=1.0, le=600.0)
    HTTP_TIMEOUT_POOL: float = Field(default=10.0, ge=1.0, le=180.0)

    LYRICS_POLL_ATTEMPTS: int = Field(default=30, ge=1, le=600)
    LYRICS_POLL_INTERVAL_MS: int = Field(default=3000, ge=0, le=60000)
    SONG_POLL_INTERVAL_MS: int = Field(default=2000, ge=0, le=60000)
    SONG_POLL_MAX_ATTEMPTS: int = Field(default=150, ge=1, le=10000)
    AUTO_PROCEED_MS: int = Field(default=20000, ge=0, le=600000)

    PROMPT_MAX_CHARS: int = Field(default=200, ge=40, le=200)
    LYRICS_MAX_LINES: int = Field(default=24, ge=1, le=200)
    LYRICS_MAX_CHARS: int = Field(default=1200, ge=50, le=5000)

    KIOSK_API_BASE: str = Field(default="http://127.0.0.1:8000")
    PUBLIC_BASE_URL: Optional[str] = Field(default=None)
    SURVEY_POLL_INTERVAL_MS: int = Field(default=6000, ge=100, le=60000)
    SURVEY_POLL_BUDGET_MS: int = Field(default=600000, ge=1000, le=3600000)

    REDIS_URL: Optional[str] = Field(default=None)
    REDIS_PREFIX: str = Field(default="goat:prod")

    # Runtime/computed attributes populated in ``_post_init``
    MUSIC_READY: bool = Field(default=False, exclude=True)

    @field_validator(
        "MUSIC_API_BASE",
        "MUSIC_CALLBACK_URL",
        "KIOSK_API_BASE",
        mode="before",
    )
    def _strip_required(cls, value: Any) -> str:
        text = str(value or "").strip()
        if not text:
            return ""
        return text

    @field_validator(
        "MUSIC_API_KEY",
        "REDIS_URL",
        "PUBLIC_BASE_URL",
        mode="before",
    )
    def _strip_optional(cls, value: Any) -> Optional[str]:
        if value is None:
            return None
        text = str(value).strip()
        return text or None

    @field_validator(
        "LOG_LEVEL",
        mode="before",
    )
    def _normalize_level(cls, value: Any) -> str:
        if value is None:
            return "INFO"
        text = str(value).strip().upper()
        if text not in logging._nameToLevel:  # type: ignore[attr-defined]
            return "INFO"
        return text

    @field_validator(
        "MUSIC_DEFAULT_MODEL",
        mode="before",
    )
    def _normalize_model(cls, value: Any) -> str:
        text = str(value or "V4").strip().upper().replace(".", "_")
        if text not in _ALLOWED_MODELS:
            logger.warning("unknown default model, using V4", extra={"meta": {"model": value}})
            return "V4"
        return text

    @model_validator(mode="after")
    def _post_init(self) -> "Settings":
        self.MUSIC_API_BASE = self.MUSIC_API_BASE.rstrip("/")
        self.KIOSK_API_BASE = self.KIOSK_API_BASE.rstrip("/")
        self.APP_ENV = (self.APP_ENV or "").strip() or "prod"

        for field in _CRITICAL_ENDPOINT_FIELDS:
            value = getattr(self, field)
            if not value:
                msg = f"Critical endpoint '{field}' is not configured"
                logger.error(msg)
                raise RuntimeError(msg)

        self.MUSIC_READY = bool(self.MUSIC_API_KEY)
        return self

    def configuration_summary(self) -> Mapping[str, Any]:
        keys: MutableMapping[str, Any] = {
            "APP_ENV": self.APP_ENV,
            "MUSIC_API_BASE": self.MUSIC_API_BASE,
            "MUSIC_DEFAULT_MODEL": self.MUSIC_DEFAULT_MODEL,
            "MUSIC_READY": self.MUSIC_READY,
            "REDIS_PREFIX": self.REDIS_PREFIX,
        }
        for secret in sorted(SECRET_FIELDS):
            value = getattr(self, secret, None)
            keys[secret] = _mask(value)
        return keys

    def critical_variables(self) -> Mapping[str, str]:
        data: MutableMapping[str, str] = {}
        for field in sorted(_CRITICAL_ENDPOINT_FIELDS | {"MUSIC_API_KEY"}):
            value = getattr(self, field, "") or ""
            data[field] = _mask(value) if field in SECRET_FIELDS else str(value)
        return data

    def token_tail(self, token: Optional[str]) -> str:
        if not token:
            return ""
        text = token.strip()
        if len(text) <= 4:
            return text
        return text[-4:]


def _load_settings() -> Settings:
    try:
        return Settings()
    except ValidationError as exc:  # pragma: no cover - fail fast
        errors = []
        for entry in exc.errors():
            loc = "::".join(str(part) for part in entry.get("loc", ()))
            msg = entry.get("msg", "invalid value")
            errors.append(f"{loc}: {msg}")
        message = "Invalid configuration: " + ", ".join(errors)
        logger.error(message)
        raise RuntimeError(message) from exc


settings = _load_settings()


def reload_settings() -> Settings:
    """Reload settings from the environment and update module globals."""

    global settings
    settings = _load_settings()
    return settings


__all__ = [
    "SECRET_FIELDS",
    "Settings",
    "settings",
    "reload_settings",
]
