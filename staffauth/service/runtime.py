from __future__ import annotations

import asyncio
import threading
from typing import Optional
from urllib.parse import urlparse, urlunparse

from staffauth.config import EventsBackend, get_settings, reset_settings_cache
from staffauth.logging import get_logger
from staffauth.service.auth import SessionManager
from staffauth.service.notifier import LogTransport, Notifier, RedisStreamTransport
from staffauth.service.passwords import PasswordService
from staffauth.service.registration import RegistrationService
from staffauth.service.tokens import TokenIssuer
from staffauth.storage.memory import MemoryRevocationStore, MemoryStore
from staffauth.storage.postgres import PostgresStore
from staffauth.storage.redis_cache import RedisCache, SyncRedisCache

logger = get_logger(__name__)


def _mask_url_password(url: Optional[str]) -> Optional[str]:
    """Mask the password component of a URL for safe logging.

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
                else PostgresStore(
                    self.settings.database_url,
                    timeout=self.settings.store_timeout_seconds,
                )
            )
        except Exception as exc:
            logger.error(
                "runtime_store_init_failed",
                store_type="memory" if self.settings.use_memory_store else "postgres",
                database_url=_mask_url_password(self.settings.database_url),
                error_type=type(exc).__name__,
                error=str(exc),
            )
            raise

        self.cache = None
        redis_error: Exception | None = None
        if self.settings.redis_url:
            try:
                # Sync client in test mode avoids event loop binding issues
                cache_cls = SyncRedisCache if self.settings.test_mode else RedisCache
                cache = cache_cls(
                    self.settings.redis_url,
                    socket_timeout=self.settings.store_timeout_seconds,
                )
                cache.verify_connection()
                self.cache = cache
            except Exception as exc:
                redis_error = exc
                self.cache = None

        if self.cache is None:
            if (
                not self.settings.test_mode
                and not self.settings.allow_redis_fallback_dev
            ):
                raise RuntimeError(
                    "Redis is required for token revocation and event delivery; "
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
                    f"Running without Redis under {fallback_mode}; revocations are "
                    "process-local and events are only logged."
                ),
                mode=fallback_mode,
            )
            self.revocations = MemoryRevocationStore()
        else:
            self.revocations = self.cache

        if self.cache is not None and self.settings.events_backend == EventsBackend.REDIS:
            transport = RedisStreamTransport(self.cache)
        else:
            transport = LogTransport()
        self.notifier = Notifier(
            transport,
            user_stream=self.settings.user_events_stream,
            email_stream=self.settings.email_events_stream,
            timeout_seconds=self.settings.notification_timeout_seconds,
        )

        self.passwords = PasswordService()
        self.tokens = TokenIssuer(self.settings)
        self.registration = RegistrationService(
            self.store, self.passwords, self.notifier, self.settings
        )
        self.auth = SessionManager(
            self.store,
            self.revocations,
            self.tokens,
            self.passwords,
            self.notifier,
            self.settings,
        )

        logger.info(
            "runtime_initialized",
            store_type="memory" if self.settings.use_memory_store else "postgres",
            redis_enabled=self.cache is not None,
            events_transport=type(transport).__name__,
            allowed_domain=self.settings.allowed_email_domain,
        )

    async def close(self) -> None:
        if self.cache is not None:
            await self.cache.close()
        if isinstance(self.store, PostgresStore):
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
                # Connection may already be closed
                logger.debug("runtime_reset_close_failed", error=str(exc))

        reset_settings_cache()
        settings = get_settings()
        if not settings.test_mode:
            raise RuntimeError("runtime reset is only allowed in TEST_MODE")
        runtime = Runtime()
        return runtime
