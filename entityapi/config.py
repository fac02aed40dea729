from __future__ import annotations

import os
from typing import Any

from dotenv import dotenv_values
from pydantic import BaseModel, ConfigDict, Field, field_validator

from entityapi.logging import get_logger

logger = get_logger(__name__)


def env_field(default: Any, env: str, **kwargs):
    extra = kwargs.pop("json_schema_extra", {}) or {}
    extra = {**extra, "env": env}
    return Field(default, json_schema_extra=extra, **kwargs)


class Settings(BaseModel):
    """Runtime settings for the data entity service."""

    database_url: str = env_field(
        "postgresql://localhost:5432/entityapi", "DATABASE_URL"
    )
    redis_url: str | None = env_field("redis://localhost:6379/0", "REDIS_URL")
    use_memory_store: bool = env_field(False, "USE_MEMORY_STORE")
    allow_redis_fallback_dev: bool = env_field(False, "ALLOW_REDIS_FALLBACK_DEV")
    test_mode: bool = env_field(
        False,
        "TEST_MODE",
        description="Toggle deterministic testing behaviors (local caches, in-process topics).",
    )
    override_workspace: str | None = env_field(
        None,
        "OVERRIDE_WORKSPACE",
        description="Serve every request from this workspace instead of the request host",
    )
    entity_cache_ttl_seconds: int = env_field(
        300,
        "ENTITY_CACHE_TTL_SECONDS",
        description="Safety-net expiry for resolved entity configuration",
    )
    response_cache_ttl_seconds: int = env_field(
        60 * 60,
        "RESPONSE_CACHE_TTL_SECONDS",
        description="TTL for cached objects and query embeddings",
    )
    list_cache_ttl_seconds: int = env_field(300, "LIST_CACHE_TTL_SECONDS")
    webhooks_topic: str | None = env_field(
        "entity-webhooks",
        "WEBHOOKS_TOPIC",
        description="Pub/sub topic for webhook messages; empty disables publishing",
    )
    embedding_model_id: str = env_field("text-embedding", "EMBEDDING_MODEL_ID")
    embedding_dim: int = env_field(64, "EMBEDDING_DIM")
    embedding_api_url: str | None = env_field(None, "EMBEDDING_API_URL")
    embedding_api_key: str | None = env_field(None, "EMBEDDING_API_KEY")
    action_timeout_ms: int = env_field(
        500, "ACTION_TIMEOUT_MS", description="Default timeout for action calls"
    )
    cors_allow_origins: list[str] = env_field([], "CORS_ALLOW_ORIGINS")

    model_config = ConfigDict(extra="ignore")

    @classmethod
    def from_env(cls) -> "Settings":
        env_file_values = dotenv_values(".env")
        merged: dict[str, str] = {}
        for name, field in cls.model_fields.items():
            extra = field.json_schema_extra or {}
            env_key = extra.get("env") if isinstance(extra, dict) else None
            env_name = env_key or name.upper()
            if env_name in os.environ:
                merged[name] = os.environ[env_name]
            elif env_name in env_file_values:
                merged[name] = env_file_values[env_name]
        return cls(**merged)

    @field_validator("cors_allow_origins", mode="before")
    @classmethod
    def _split_origins(cls, value: Any) -> list[str]:
        if value is None:
            return []
        if isinstance(value, str):
            return [origin.strip() for origin in value.split(",") if origin.strip()]
        return list(value)

    @field_validator("redis_url", "override_workspace", "webhooks_topic", "embedding_api_url")
    @classmethod
    def _blank_to_none(cls, value: str | None) -> str | None:
        if value is None or not str(value).strip():
            return None
        return value

    @field_validator("entity_cache_ttl_seconds", "list_cache_ttl_seconds", "response_cache_ttl_seconds")
    @classmethod
    def _positive_ttl(cls, value: int) -> int:
        if value <= 0:
            logger.warning("cache_ttl_invalid", value=value, message="falling back to 300 seconds")
            return 300
        return value


def get_settings() -> Settings:
    global _settings_cache
    if _settings_cache is None:
        _settings_cache = Settings.from_env()
    return _settings_cache


_settings_cache: Settings | None = None


def reset_settings_cache() -> None:
    """Clear cached settings so future calls re-read the environment."""

    global _settings_cache
    _settings_cache = None
