"""Tests for runtime wiring and the Redis fallback policy."""

import pytest

from staffauth.config import reset_settings_cache
from staffauth.service.notifier import LogTransport
from staffauth.service.runtime import Runtime, _mask_url_password, get_runtime
from staffauth.storage.memory import MemoryRevocationStore, MemoryStore

UNREACHABLE_REDIS = "redis://127.0.0.1:1/0"


@pytest.fixture
def production_env(monkeypatch):
    monkeypatch.setenv("TEST_MODE", "false")
    monkeypatch.setenv("REDIS_URL", UNREACHABLE_REDIS)
    monkeypatch.setenv("STORE_TIMEOUT_SECONDS", "0.2")
    reset_settings_cache()
    yield monkeypatch
    reset_settings_cache()


class TestMaskUrlPassword:
    @pytest.mark.parametrize(
        "url,expected",
        [
            ("redis://:hunter2@localhost:6379/0", "redis://:***@localhost:6379/0"),
            ("postgresql://app:hunter2@db:5432/staff", "postgresql://app:***@db:5432/staff"),
            ("redis://localhost:6379/0", "redis://localhost:6379/0"),
            ("", ""),
            (None, None),
        ],
    )
    def test_masks_password(self, url, expected):
        assert _mask_url_password(url) == expected


class TestRuntime:
    def test_singleton(self):
        assert get_runtime() is get_runtime()

    def test_test_mode_wiring(self):
        runtime = get_runtime()

        assert isinstance(runtime.store, MemoryStore)
        assert isinstance(runtime.revocations, MemoryRevocationStore)
        assert runtime.cache is None
        assert isinstance(runtime.notifier.transport, LogTransport)
        assert runtime.auth.revocations is runtime.revocations
        assert runtime.registration.store is runtime.store

    def test_unreachable_redis_is_fatal_without_fallback(self, production_env):
        production_env.setenv("ALLOW_REDIS_FALLBACK_DEV", "false")
        reset_settings_cache()

        with pytest.raises(RuntimeError, match="Redis is required"):
            Runtime()

    def test_unreachable_redis_falls_back_when_allowed(self, production_env):
        production_env.setenv("ALLOW_REDIS_FALLBACK_DEV", "true")
        reset_settings_cache()

        runtime = Runtime()

        assert runtime.cache is None
        assert isinstance(runtime.revocations, MemoryRevocationStore)
        assert isinstance(runtime.notifier.transport, LogTransport)
