from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime, timezone
from enum import Enum
from typing import Optional


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


class AccountClass(str, Enum):
    EMPLOYEE = "EMPLOYEE"
    ADMIN = "ADMIN"


class AccountStatus(str, Enum):
    ACTIVE = "ACTIVE"
    INACTIVE = "INACTIVE"
    BLOCKED = "BLOCKED"


class AccessAction(str, Enum):
    LOGIN = "login"
    LOGOUT = "logout"
    VALIDATE = "validate"


@dataclass
class Account:
    email: str
    password_hash: str
    user_class: AccountClass = AccountClass.EMPLOYEE
    status: AccountStatus = AccountStatus.ACTIVE
    id: Optional[str] = None
    name: Optional[str] = None
    department: Optional[str] = None
    job_title: Optional[str] = None
    created_at: datetime = field(default_factory=utcnow)
    updated_at: datetime = field(default_factory=utcnow)

    @property
    def is_active(self) -> bool:
        return self.status == AccountStatus.ACTIVE

    def __repr__(self) -> str:
        # password_hash is left out so accounts can be logged safely
        return (
            f"Account(id={self.id!r}, email={self.email!r}, "
            f"user_class={self.user_class.value}, status={self.status.value})"
        )


@dataclass
class AccessLogEntry:
    """One login, logout or validate attempt. Never updated after insert."""

    action: AccessAction
    success: bool
    reason: str
    account_id: Optional[str] = None
    ip: Optional[str] = None
    user_agent: Optional[str] = None
    timestamp: datetime = field(default_factory=utcnow)
    id: Optional[int] = None
