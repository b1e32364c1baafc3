from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime
from enum import Enum
from typing import Optional

from staffauth.storage.models import AccountClass


class AuthReason(str, Enum):
    """Stable outcome categories shared by audit entries and API responses."""

    SUCCESS = "success"
    # login
    NOT_FOUND = "not_found"
    INACTIVE = "inactive"
    BAD_CREDENTIALS = "bad_credentials"
    ERROR = "error"
    # validate
    REVOKED = "revoked"
    EXPIRED = "expired"
    MALFORMED = "malformed"
    ACCOUNT_NOT_FOUND = "account_not_found"
    SUBJECT_MISMATCH = "subject_mismatch"
    ACCOUNT_NOT_ACTIVE = "account_not_active"
    # logout
    INVALID_INPUT = "invalid_input"
    INVALID_TOKEN = "invalid_token"
    ALREADY_INVALIDATED = "already_invalidated"
    # registration
    DOMAIN_NOT_ALLOWED = "domain_not_allowed"
    ALREADY_EXISTS = "already_exists"


@dataclass(frozen=True)
class RegistrationResult:
    success: bool
    reason: AuthReason
    message: str
    account_id: Optional[str] = None


@dataclass(frozen=True)
class LoginResult:
    success: bool
    reason: AuthReason
    message: str
    access_token: Optional[str] = None
    refresh_token: Optional[str] = None
    user_class: Optional[AccountClass] = None
    expires_in: Optional[int] = None

    @property
    def token_type(self) -> str:
        return "Bearer"


@dataclass(frozen=True)
class TokenValidation:
    valid: bool
    reason: AuthReason
    message: str
    account_id: Optional[str] = None
    email: Optional[str] = None
    name: Optional[str] = None
    user_class: Optional[AccountClass] = None
    expires_at: Optional[datetime] = None


@dataclass(frozen=True)
class LogoutResult:
    success: bool
    reason: AuthReason
    message: str


@dataclass(frozen=True)
class AuthContext:
    """Authenticated principal derived once from a valid access token."""

    account_id: str
    email: str
    user_class: AccountClass
    expires_at: datetime

    @classmethod
    def from_validation(cls, validation: TokenValidation) -> "AuthContext":
        if not validation.valid:
            raise ValueError("cannot build a principal from an invalid token")
        return cls(
            account_id=validation.account_id,
            email=validation.email,
            user_class=validation.user_class,
            expires_at=validation.expires_at,
        )

    @property
    def is_admin(self) -> bool:
        return self.user_class == AccountClass.ADMIN
