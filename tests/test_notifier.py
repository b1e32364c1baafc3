"""Tests for best-effort event publishing."""

import asyncio
import json
from datetime import datetime, timezone

from staffauth.service.notifier import (
    AccountCreated,
    EmailToSend,
    LogTransport,
    Notifier,
    RedisStreamTransport,
)
from staffauth.storage.models import Account, AccountClass, AccountStatus


class SlowTransport:
    async def send(self, channel, event_type, payload):
        await asyncio.sleep(5)


class BrokenTransport:
    async def send(self, channel, event_type, payload):
        raise ConnectionError("broker down")


class FakeStreamCache:
    def __init__(self):
        self.appended = []

    async def append_to_stream(self, stream, fields):
        self.appended.append((stream, fields))
        return "1-0"


def _account():
    return Account(
        id="acc-1",
        email="ana@empresa.com",
        password_hash="hash",
        user_class=AccountClass.EMPLOYEE,
        status=AccountStatus.ACTIVE,
        name="Ana",
        department="Finance",
        job_title="Analyst",
        created_at=datetime(2024, 1, 2, 3, 4, 5, tzinfo=timezone.utc),
    )


class TestEvents:
    def test_account_created_payload(self):
        payload = AccountCreated.from_account(_account(), "123456").to_payload()

        assert payload == {
            "accountId": "acc-1",
            "email": "ana@empresa.com",
            "name": "Ana",
            "department": "Finance",
            "role": "Analyst",
            "class": "EMPLOYEE",
            "status": "ACTIVE",
            "createdAt": "2024-01-02T03:04:05+00:00",
            "temporaryPassword": "123456",
        }

    def test_temporary_password_hidden_from_repr(self):
        created = AccountCreated.from_account(_account(), "123456")
        email = EmailToSend.registration("ana@empresa.com", "Ana", "123456", "http://x/login")

        assert "123456" not in repr(created)
        assert "123456" not in repr(email)

    def test_registration_email(self):
        email = EmailToSend.registration("ana@empresa.com", None, "042917", "http://x/login")
        payload = email.to_payload()

        assert payload["userName"] == "ana@empresa.com"
        assert payload["temporaryPassword"] == "042917"
        assert "042917" in payload["body"]
        assert "http://x/login" in payload["body"]

    def test_login_emails_never_carry_a_password(self):
        ok = EmailToSend.login_notification("ana@empresa.com", "Ana", success=True, ip=None)
        bad = EmailToSend.login_notification("ana@empresa.com", "Ana", success=False, ip="1.2.3.4")

        assert "temporaryPassword" not in ok.to_payload()
        assert ok.email_type == "LOGIN_SUCCESS"
        assert "unknown" in ok.body
        assert bad.email_type == "LOGIN_FAILURE"
        assert bad.template_id == "login-failure"
        assert "1.2.3.4" in bad.body


class TestNotifier:
    async def test_publish_registration_routes_by_stream(self, notifier, transport, settings):
        created = AccountCreated.from_account(_account(), "123456")
        email = EmailToSend.registration("ana@empresa.com", "Ana", "123456", settings.login_url)

        assert await notifier.publish_registration(created, email) is True
        assert [(c, t) for c, t, _ in transport.sent] == [
            (settings.user_events_stream, "account.created"),
            (settings.email_events_stream, "email.send"),
        ]

    async def test_timeout_is_swallowed(self):
        notifier = Notifier(SlowTransport(), user_stream="u", email_stream="e", timeout_seconds=0.05)
        email = EmailToSend.login_notification("ana@empresa.com", "Ana", success=True, ip=None)

        assert await notifier.publish_login_notification(email) is False

    async def test_transport_error_is_swallowed(self):
        notifier = Notifier(BrokenTransport(), user_stream="u", email_stream="e")
        created = AccountCreated.from_account(_account(), "123456")
        email = EmailToSend.registration("ana@empresa.com", "Ana", "123456", "http://x")

        assert await notifier.publish_registration(created, email) is False


class TestTransports:
    async def test_redis_stream_transport_serializes_payload(self):
        cache = FakeStreamCache()
        await RedisStreamTransport(cache).send("staffauth.email.send", "email.send", {"recipient": "a@b"})

        [(stream, fields)] = cache.appended
        assert stream == "staffauth.email.send"
        assert fields["type"] == "email.send"
        assert json.loads(fields["payload"]) == {"recipient": "a@b"}

    async def test_log_transport_does_not_raise(self):
        await LogTransport().send("u", "account.created", {"email": "ana@empresa.com"})
