from __future__ import annotations

import asyncio
import json
from dataclasses import dataclass, field
from datetime import datetime
from typing import Any, Dict, Optional, Protocol

from staffauth.logging import get_logger, redact_email
from staffauth.storage.models import Account, utcnow

logger = get_logger(__name__)

EMAIL_REGISTRATION = "REGISTRATION"
EMAIL_LOGIN_SUCCESS = "LOGIN_SUCCESS"
EMAIL_LOGIN_FAILURE = "LOGIN_FAILURE"

TEMPLATE_REGISTRATION = "employee-registration"
TEMPLATE_LOGIN_SUCCESS = "login-success"
TEMPLATE_LOGIN_FAILURE = "login-failure"

_REGISTRATION_BODY = """Hello {name},

Welcome! Your account has been created. These are your access credentials:

Email: {email}
Temporary password: {password}

IMPORTANT: please sign in and change your password at the first opportunity.

Sign in at: {login_url}

If you did not request this account, contact us immediately.
"""

_LOGIN_SUCCESS_BODY = """Hello {name},

We detected a successful sign-in to your account:

Date/time: {when}
Origin IP: {ip}

If this was you, no action is needed. If not, contact us immediately.
"""

_LOGIN_FAILURE_BODY = """Hello {name},

SECURITY ALERT

We detected an unsuccessful sign-in attempt on your account:

Date/time: {when}
Origin IP: {ip}

If this was not you, change your password and contact the security team.
"""


@dataclass
class AccountCreated:
    account_id: str
    email: str
    name: Optional[str]
    department: Optional[str]
    role: Optional[str]
    user_class: str
    status: str
    created_at: datetime
    temporary_password: str = field(repr=False)

    event_type = "account.created"

    @classmethod
    def from_account(cls, account: Account, temporary_password: str) -> "AccountCreated":
        return cls(
            account_id=account.id,
            email=account.email,
            name=account.name,
            department=account.department,
            role=account.job_title,
            user_class=account.user_class.value,
            status=account.status.value,
            created_at=account.created_at,
            temporary_password=temporary_password,
        )

    @property
    def recipient(self) -> str:
        return self.email

    def to_payload(self) -> Dict[str, Any]:
        return {
            "accountId": self.account_id,
            "email": self.email,
            "name": self.name,
            "department": self.department,
            "role": self.role,
            "class": self.user_class,
            "status": self.status,
            "createdAt": self.created_at.isoformat(),
            "temporaryPassword": self.temporary_password,
        }


@dataclass
class EmailToSend:
    recipient: str
    subject: str
    body: str = field(repr=False)
    email_type: str
    template_id: str
    sent_at: datetime = field(default_factory=utcnow)
    user_name: Optional[str] = None
    temporary_password: Optional[str] = field(default=None, repr=False)

    event_type = "email.send"

    @classmethod
    def registration(
        cls,
        recipient: str,
        name: Optional[str],
        temporary_password: str,
        login_url: str,
    ) -> "EmailToSend":
        display = name or recipient
        return cls(
            recipient=recipient,
            subject="Welcome - your access credentials",
            body=_REGISTRATION_BODY.format(
                name=display,
                email=recipient,
                password=temporary_password,
                login_url=login_url,
            ),
            email_type=EMAIL_REGISTRATION,
            template_id=TEMPLATE_REGISTRATION,
            user_name=display,
            temporary_password=temporary_password,
        )

    @classmethod
    def login_notification(
        cls,
        recipient: str,
        name: Optional[str],
        *,
        success: bool,
        ip: Optional[str],
    ) -> "EmailToSend":
        display = name or recipient
        now = utcnow()
        template = _LOGIN_SUCCESS_BODY if success else _LOGIN_FAILURE_BODY
        return cls(
            recipient=recipient,
            subject=(
                "Successful sign-in to your account"
                if success
                else "Unauthorized sign-in attempt"
            ),
            body=template.format(name=display, when=now.isoformat(), ip=ip or "unknown"),
            email_type=EMAIL_LOGIN_SUCCESS if success else EMAIL_LOGIN_FAILURE,
            template_id=TEMPLATE_LOGIN_SUCCESS if success else TEMPLATE_LOGIN_FAILURE,
            sent_at=now,
            user_name=display,
        )

    def to_payload(self) -> Dict[str, Any]:
        payload: Dict[str, Any] = {
            "recipient": self.recipient,
            "subject": self.subject,
            "body": self.body,
            "emailType": self.email_type,
            "templateId": self.template_id,
            "sentAt": self.sent_at.isoformat(),
            "userName": self.user_name,
        }
        if self.template_id == TEMPLATE_REGISTRATION:
            payload["temporaryPassword"] = self.temporary_password
        return payload


class EventTransport(Protocol):
    async def send(self, channel: str, event_type: str, payload: Dict[str, Any]) -> None: ...


class RedisStreamTransport:
    """Appends events to Redis streams, one stream per event family."""

    def __init__(self, cache) -> None:
        self.cache = cache

    async def send(self, channel: str, event_type: str, payload: Dict[str, Any]) -> None:
        await self.cache.append_to_stream(
            channel,
            {"type": event_type, "payload": json.dumps(payload, separators=(",", ":"))},
        )


class LogTransport:
    """Dev fallback: logs that an event would have been published."""

    async def send(self, channel: str, event_type: str, payload: Dict[str, Any]) -> None:
        # Only routing metadata is logged; payloads may hold one-time passwords
        logger.info(
            "event_dev_mode",
            channel=channel,
            event_type=event_type,
            to=redact_email(payload.get("recipient") or payload.get("email")),
        )


class Notifier:
    """Best-effort event dispatch.

    Every send is bounded by ``timeout_seconds``. Failures are logged and
    reported through the boolean return value; they are never raised.
    """

    def __init__(
        self,
        transport: EventTransport,
        *,
        user_stream: str,
        email_stream: str,
        timeout_seconds: float = 2.0,
    ) -> None:
        self.transport = transport
        self.user_stream = user_stream
        self.email_stream = email_stream
        self.timeout_seconds = timeout_seconds

    async def _send(self, channel: str, event) -> bool:
        try:
            await asyncio.wait_for(
                self.transport.send(channel, event.event_type, event.to_payload()),
                self.timeout_seconds,
            )
            return True
        except asyncio.TimeoutError:
            logger.warning(
                "event_publish_timeout",
                channel=channel,
                event_type=event.event_type,
                timeout=self.timeout_seconds,
            )
        except Exception as exc:
            logger.warning(
                "event_publish_failed",
                channel=channel,
                event_type=event.event_type,
                error_type=type(exc).__name__,
                error=str(exc),
            )
        return False

    async def publish_registration(self, created: AccountCreated, email: EmailToSend) -> bool:
        created_ok = await self._send(self.user_stream, created)
        email_ok = await self._send(self.email_stream, email)
        return created_ok and email_ok

    async def publish_login_notification(self, email: EmailToSend) -> bool:
        return await self._send(self.email_stream, email)
