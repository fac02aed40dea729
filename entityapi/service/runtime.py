from __future__ import annotations

import asyncio
import threading
from typing import Any, Optional
from urllib.parse import urlparse, urlunparse

from entityapi.config import get_settings, reset_settings_cache
from entityapi.logging import get_logger
from entityapi.service.config_ops import ConfigOpsService
from entityapi.service.data_entities import DataEntityService
from entityapi.service.dispatch import ActionRunner, LocalTopicPublisher, WebhookDispatcher
from entityapi.service.embeddings import (
    EmbeddingsService,
    RemoteEmbeddingEncoder,
    SearchEmbeddings,
)
from entityapi.service.entity_cache import EntityCache
from entityapi.service.expressions import ExpressionEvaluator
from entityapi.service.identity import IdentityService
from entityapi.service.listing import ListPipeline
from entityapi.service.objects import ObjectGateway
from entityapi.service.response_cache import LocalCache, ResponseCache
from entityapi.service.schema_registry import SchemaRegistry
from entityapi.storage.memory import MemoryStore
from entityapi.storage.postgres import PostgresStore
from entityapi.storage.redis_cache import RedisCache, SyncRedisCache

logger = get_logger(__name__)


def _mask_url_password(url: Optional[str]) -> Optional[str]:
    """Mask the password in a URL for safe logging.

    Example: redis://:mypassword@localhost:6379 -> redis://:***@localhost:6379
    """
    if not url:
        return url
    try:
        parsed = urlparse(url)
        if parsed.password:
            netloc = parsed.hostname or ""
            if parsed.port:
                netloc = f"{netloc}:{parsed.port}"
            if parsed.username:
                netloc = f"{parsed.username}:***@{netloc}"
            else:
                netloc = f":***@{netloc}"
            return urlunparse((
                parsed.scheme,
                netloc,
                parsed.path,
                parsed.params,
                parsed.query,
                parsed.fragment,
            ))
        return url
    except ValueError:
        return "***url_parse_error***"


class Runtime:
    """Holds singleton service instances for the FastAPI app."""

    def __init__(self):
        self.settings = get_settings()
        logger.info(
            "runtime_init_started",
            use_memory_store=self.settings.use_memory_store,
            test_mode=self.settings.test_mode,
        )

        try:
            self.store = (
                MemoryStore()
                if self.settings.use_memory_store
                else PostgresStore(self.settings.database_url)
            )
            logger.info(
                "runtime_store_initialized",
                store_type="memory" if self.settings.use_memory_store else "postgres",
            )
        except Exception as exc:
            logger.error(
                "runtime_store_init_failed",
                store_type="memory" if self.settings.use_memory_store else "postgres",
                error_type=type(exc).__name__,
                error=str(exc),
            )
            raise

        self.cache: Any = None
        redis_error: Exception | None = None
        if self.settings.redis_url:
            try:
                # Use sync Redis client in test mode to avoid event loop issues
                if self.settings.test_mode:
                    cache = SyncRedisCache(self.settings.redis_url)
                else:
                    cache = RedisCache(self.settings.redis_url)
                cache.verify_connection()
                self.cache = cache
            except Exception as exc:
                redis_error = exc
                self.cache = None

        if not self.cache:
            if (
                not self.settings.test_mode
                and not self.settings.allow_redis_fallback_dev
            ):
                raise RuntimeError(
                    "Redis is required for response caching and webhook delivery; "
                    "start Redis or set TEST_MODE=true/ALLOW_REDIS_FALLBACK_DEV=true for local fallback."
                ) from redis_error

            fallback_mode = (
                "TEST_MODE" if self.settings.test_mode else "ALLOW_REDIS_FALLBACK_DEV"
            )
            logger.warning(
                "redis_disabled_fallback",
                redis_url=_mask_url_password(self.settings.redis_url),
                error=str(redis_error) if redis_error else "redis_url_missing",
                message=(
                    f"Running without Redis under {fallback_mode}; cached responses and "
                    "webhook messages stay in this process."
                ),
                mode=fallback_mode,
            )

        self.response_cache = ResponseCache(
            self.cache or LocalCache(),
            default_ttl_seconds=self.settings.response_cache_ttl_seconds,
        )
        self.publisher = self.cache if self.cache is not None else LocalTopicPublisher()

        self.registry = SchemaRegistry()
        self.entity_cache = EntityCache(
            self.store, ttl_seconds=self.settings.entity_cache_ttl_seconds
        )

        self.encoder = None
        if self.settings.embedding_api_url:
            self.encoder = RemoteEmbeddingEncoder(
                self.settings.embedding_api_url,
                self.settings.embedding_model_id,
                api_key=self.settings.embedding_api_key,
                dim=self.settings.embedding_dim,
            )
        self.embeddings = EmbeddingsService(
            self.settings.embedding_model_id,
            encoder=self.encoder,
            dim=self.settings.embedding_dim,
        )
        self.search = SearchEmbeddings(self.embeddings, self.store, self.response_cache)

        self.gateway = ObjectGateway(self.store, self.response_cache, self.search)
        self.listing = ListPipeline(
            self.store,
            self.response_cache,
            self.search,
            ttl_seconds=self.settings.list_cache_ttl_seconds,
        )
        self.data_entities = DataEntityService(
            self.registry, self.entity_cache, self.gateway, self.listing
        )
        self.expressions = ExpressionEvaluator()
        self.actions = ActionRunner(default_timeout_ms=self.settings.action_timeout_ms)
        self.webhooks = WebhookDispatcher(self.publisher, self.settings.webhooks_topic)
        self.config_ops = ConfigOpsService(
            self.store, self.registry, self.entity_cache, self.response_cache
        )
        self.identity = IdentityService(self.store)

        logger.info(
            "runtime_initialized",
            redis_enabled=self.cache is not None,
            webhooks_topic=self.settings.webhooks_topic,
            remote_embeddings=self.encoder is not None,
        )

    async def close(self) -> None:
        if self.cache is not None:
            await self.cache.close()
        if self.encoder is not None:
            self.encoder.close()
        if hasattr(self.store, "close"):
            self.store.close()


runtime: Runtime | None = None
_runtime_lock = threading.Lock()


def get_runtime() -> Runtime:
    """Get or create the Runtime singleton in a thread-safe manner.

    Uses double-checked locking:
    - First check without lock (fast path for existing runtime)
    - Second check with lock to prevent race condition during creation
    """
    global runtime
    if runtime is not None:
        return runtime
    with _runtime_lock:
        if runtime is None:
            runtime = Runtime()
        return runtime


def reset_runtime_for_tests() -> Runtime:
    """Reinitialize the runtime singleton for isolated test runs."""
    global runtime

    with _runtime_lock:
        # Close existing Redis connections to avoid event loop issues
        if runtime is not None and runtime.cache is not None:
            try:
                if isinstance(runtime.cache, SyncRedisCache):
                    runtime.cache.client.close()
                else:
                    try:
                        loop = asyncio.get_running_loop()
                        loop.create_task(runtime.cache.close())
                    except RuntimeError:
                        asyncio.run(runtime.cache.close())
            except Exception as exc:
                logger.warning("runtime_reset_cache_close_failed", error=str(exc))

        reset_settings_cache()
        settings = get_settings()
        if not settings.test_mode:
            raise RuntimeError("runtime reset is only allowed in TEST_MODE")
        runtime = Runtime()
        return runtime
