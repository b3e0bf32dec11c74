"""
memo_sdk.tier0_core.config
───────────────────────────
Typed memoizer configuration with env layering. Reads from .env → environment
variables → explicit keyword arguments. All durations are milliseconds.

Minimal stack: pydantic-settings + python-dotenv
"""
from __future__ import annotations

from functools import lru_cache
from typing import Literal

from pydantic import Field, field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict


class MemoizerConfig(BaseSettings):
    """
    Options recognised by the memoizer. Fields may be passed by name
    (``MemoizerConfig(lookup_timeout=20)``) or set through the env aliases.
    """

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        case_sensitive=False,
        extra="ignore",
        populate_by_name=True,
    )

    # ── Lookup / TTL ──────────────────────────────────────────────────────────
    lookup_timeout: int = Field(default=1000, ge=0, alias="MEMO_LOOKUP_TIMEOUT")
    default_ttl: int = Field(default=120000, ge=0, alias="MEMO_DEFAULT_TTL")

    # ── Keys ──────────────────────────────────────────────────────────────────
    memoize_key_namespace: str | None = Field(default=None, alias="MEMO_KEY_NAMESPACE")

    # ── Payloads ──────────────────────────────────────────────────────────────
    compress_threshold: int = Field(default=500, ge=0, alias="MEMO_COMPRESS_THRESHOLD")

    # ── Instrumentation ───────────────────────────────────────────────────────
    time_label_prefix: str = Field(default="", alias="MEMO_TIME_LABEL_PREFIX")

    # ── Redis ─────────────────────────────────────────────────────────────────
    redis_url: str = Field(default="redis://localhost:6379/0", alias="REDIS_URL")
    reconnect_backoff: int = Field(default=1000, ge=0, alias="MEMO_RECONNECT_BACKOFF")

    # ── Application ───────────────────────────────────────────────────────────
    environment: Literal["development", "staging", "production", "test"] = Field(
        default="development", alias="APP_ENV"
    )

    @field_validator("memoize_key_namespace", mode="before")
    @classmethod
    def coerce_namespace(cls, v: object) -> str | None:
        # Namespaces are often numbers (deploy timestamps, build ids).
        if v is None or v == "":
            return None
        return str(v)

    @field_validator("environment", mode="before")
    @classmethod
    def normalise_env(cls, v: object) -> object:
        return v.lower() if isinstance(v, str) else v

    @property
    def is_production(self) -> bool:
        return self.environment == "production"

    def with_overrides(self, **overrides: object) -> "MemoizerConfig":
        """Return a validated copy with the given fields replaced."""
        if not overrides:
            return self
        return MemoizerConfig(**{**self.model_dump(), **overrides})


@lru_cache(maxsize=1)
def get_config() -> MemoizerConfig:
    """
    Return the singleton memoizer config. Cached after first call.
    Call _reset_config() in tests to pick up new env vars.
    """
    return MemoizerConfig()


def _reset_config() -> None:
    """For tests: clear the config cache."""
    get_config.cache_clear()


__all__ = ["MemoizerConfig", "get_config"]
