"""Tests for settings loading and validation."""

import pytest
from pydantic import ValidationError

from staffauth.config import (
    MIN_JWT_SECRET_LENGTH,
    EventsBackend,
    Settings,
    get_settings,
    reset_settings_cache,
)

SECRET = "x" * MIN_JWT_SECRET_LENGTH


class TestDefaults:
    def test_token_lifetimes(self):
        settings = Settings(jwt_secret=SECRET)

        assert settings.access_token_ttl_minutes == 24 * 60
        assert settings.refresh_token_ttl_minutes == 7 * 24 * 60
        assert settings.allowed_email_domain == "@empresa.com"
        assert settings.events_backend == EventsBackend.REDIS
        assert settings.notify_failed_login is True

    def test_missing_secret_is_generated(self):
        first = Settings()
        second = Settings()

        assert len(first.jwt_secret) >= MIN_JWT_SECRET_LENGTH
        assert first.jwt_secret != second.jwt_secret


class TestValidation:
    def test_short_secret_rejected(self):
        with pytest.raises(ValidationError):
            Settings(jwt_secret="too-short")

    @pytest.mark.parametrize("value,expected", [("empresa.com", "@empresa.com"), (" @acme.io ", "@acme.io")])
    def test_domain_gets_leading_at(self, value, expected):
        assert Settings(jwt_secret=SECRET, allowed_email_domain=value).allowed_email_domain == expected

    @pytest.mark.parametrize("value", ["", "@", "   "])
    def test_empty_domain_rejected(self, value):
        with pytest.raises(ValidationError):
            Settings(jwt_secret=SECRET, allowed_email_domain=value)

    @pytest.mark.parametrize("field", ["access_token_ttl_minutes", "refresh_token_ttl_minutes"])
    def test_non_positive_lifetime_rejected(self, field):
        with pytest.raises(ValidationError):
            Settings(jwt_secret=SECRET, **{field: 0})

    def test_refresh_shorter_than_access_rejected(self):
        with pytest.raises(ValidationError):
            Settings(jwt_secret=SECRET, access_token_ttl_minutes=60, refresh_token_ttl_minutes=30)

    def test_unknown_events_backend_rejected(self):
        with pytest.raises(ValidationError):
            Settings(jwt_secret=SECRET, events_backend="kafka")

    def test_settings_are_frozen(self):
        settings = Settings(jwt_secret=SECRET)
        with pytest.raises(ValidationError):
            settings.jwt_issuer = "other"


class TestFromEnv:
    def test_reads_environment(self, monkeypatch):
        monkeypatch.setenv("JWT_SECRET", SECRET)
        monkeypatch.setenv("ACCESS_TOKEN_TTL_MINUTES", "30")
        monkeypatch.setenv("ALLOWED_EMAIL_DOMAIN", "acme.io")
        monkeypatch.setenv("NOTIFY_FAILED_LOGIN", "false")
        monkeypatch.setenv("EVENTS_BACKEND", "log")

        settings = Settings.from_env()

        assert settings.jwt_secret == SECRET
        assert settings.access_token_ttl_minutes == 30
        assert settings.allowed_email_domain == "@acme.io"
        assert settings.notify_failed_login is False
        assert settings.events_backend == EventsBackend.LOG

    def test_reads_dotenv_file(self, monkeypatch, tmp_path):
        (tmp_path / ".env").write_text("JWT_ISSUER=from-dotenv\n")
        monkeypatch.chdir(tmp_path)
        monkeypatch.delenv("JWT_ISSUER", raising=False)

        assert Settings.from_env().jwt_issuer == "from-dotenv"

    def test_environment_wins_over_dotenv(self, monkeypatch, tmp_path):
        (tmp_path / ".env").write_text("JWT_ISSUER=from-dotenv\n")
        monkeypatch.chdir(tmp_path)
        monkeypatch.setenv("JWT_ISSUER", "from-env")

        assert Settings.from_env().jwt_issuer == "from-env"

    def test_get_settings_is_cached_until_reset(self, monkeypatch):
        reset_settings_cache()
        first = get_settings()
        assert get_settings() is first

        monkeypatch.setenv("JWT_ISSUER", "changed")
        reset_settings_cache()
        assert get_settings().jwt_issuer == "changed"
        reset_settings_cache()
