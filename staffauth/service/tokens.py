from __future__ import annotations

import base64
import hashlib
import hmac
import json
import math
import uuid
from dataclasses import dataclass
from datetime import datetime, timedelta, timezone
from typing import Any, Optional

from staffauth.config import Settings
from staffauth.logging import get_logger
from staffauth.storage.models import Account, AccountClass

logger = get_logger(__name__)

_HEADER = {"alg": "HS256", "typ": "JWT"}


class TokenError(Exception):
    """Token could not be parsed or its signature did not verify."""


@dataclass(frozen=True)
class TokenClaims:
    """Verified token contents.

    Access tokens carry ``user_id`` and ``user_class``; refresh tokens carry
    only the subject, so both fields are ``None``.
    """

    subject: str
    issued_at: datetime
    expires_at: datetime
    token_id: str
    user_id: Optional[str] = None
    user_class: Optional[AccountClass] = None

    @property
    def is_access(self) -> bool:
        return self.user_id is not None and self.user_class is not None

    def remaining_seconds(self, now: Optional[datetime] = None) -> int:
        now = now or datetime.now(timezone.utc)
        # Rounded up so a revocation entry never lapses before the token does
        return max(0, math.ceil((self.expires_at - now).total_seconds()))


def _encode_segment(data: bytes) -> str:
    return base64.urlsafe_b64encode(data).decode("utf-8").rstrip("=")


def _decode_segment(segment: str) -> bytes:
    padding = "=" * ((4 - len(segment) % 4) % 4)
    return base64.urlsafe_b64decode(segment + padding)


def _numeric_date(payload: dict[str, Any], name: str) -> datetime:
    value = payload.get(name)
    # bool is an int subclass; reject it explicitly
    if not isinstance(value, int) or isinstance(value, bool):
        raise TokenError(f"claim '{name}' must be an integer timestamp")
    try:
        return datetime.fromtimestamp(value, tz=timezone.utc)
    except (OverflowError, OSError, ValueError) as exc:
        raise TokenError(f"claim '{name}' out of range") from exc


class TokenIssuer:
    """Issues and verifies HS256 access and refresh tokens.

    A single shared secret signs both token kinds. ``decode`` checks the
    signature and claim structure but deliberately leaves expiry to
    ``is_expired`` so callers can report "expired" separately from
    "malformed".
    """

    def __init__(self, settings: Settings, *, clock=None) -> None:
        self._secret = settings.jwt_secret.encode()
        self._issuer = settings.jwt_issuer
        self._access_ttl = timedelta(minutes=settings.access_token_ttl_minutes)
        self._refresh_ttl = timedelta(minutes=settings.refresh_token_ttl_minutes)
        self._clock = clock or (lambda: datetime.now(timezone.utc))

    @property
    def access_token_ttl_seconds(self) -> int:
        return int(self._access_ttl.total_seconds())

    def now(self) -> datetime:
        return self._clock()

    def _sign(self, signing_input: str) -> str:
        return _encode_segment(
            hmac.new(self._secret, signing_input.encode(), hashlib.sha256).digest()
        )

    def _encode(self, payload: dict[str, Any]) -> str:
        header_enc = _encode_segment(json.dumps(_HEADER, separators=(",", ":")).encode())
        payload_enc = _encode_segment(json.dumps(payload, separators=(",", ":")).encode())
        signing_input = f"{header_enc}.{payload_enc}"
        return f"{signing_input}.{self._sign(signing_input)}"

    def _base_payload(self, account: Account, ttl: timedelta) -> dict[str, Any]:
        issued_at = int(self.now().timestamp())
        return {
            "iss": self._issuer,
            "sub": account.email,
            "jti": str(uuid.uuid4()),
            "iat": issued_at,
            "exp": issued_at + int(ttl.total_seconds()),
        }

    def issue_access_token(self, account: Account) -> str:
        payload = self._base_payload(account, self._access_ttl)
        payload["userId"] = account.id
        payload["userClass"] = AccountClass(account.user_class).value
        return self._encode(payload)

    def issue_refresh_token(self, account: Account) -> str:
        return self._encode(self._base_payload(account, self._refresh_ttl))

    def decode(self, token: str) -> TokenClaims:
        """Verify ``token`` and return its claims.

        Raises:
            TokenError: on structural damage, a foreign algorithm, a bad
                signature, a wrong issuer or a claim of the wrong type.
        """
        if not token or not isinstance(token, str):
            raise TokenError("empty token")
        parts = token.split(".")
        if len(parts) != 3:
            raise TokenError("token must have three segments")
        header_b64, payload_b64, sig_b64 = parts

        # Guard against algorithm confusion before touching the signature
        try:
            header = json.loads(_decode_segment(header_b64))
        except (ValueError, UnicodeDecodeError) as exc:
            raise TokenError("unreadable header") from exc
        if not isinstance(header, dict) or header.get("alg") != "HS256":
            alg = header.get("alg") if isinstance(header, dict) else None
            logger.warning("jwt_invalid_algorithm", alg=alg)
            raise TokenError("unsupported algorithm")

        expected_sig = self._sign(f"{header_b64}.{payload_b64}")
        # Bytes comparison; str compare_digest rejects non-ASCII input with TypeError
        if not hmac.compare_digest(
            expected_sig.encode(), sig_b64.encode("utf-8", "surrogatepass")
        ):
            raise TokenError("signature mismatch")

        try:
            payload = json.loads(_decode_segment(payload_b64))
        except (ValueError, UnicodeDecodeError) as exc:
            raise TokenError("unreadable payload") from exc
        if not isinstance(payload, dict):
            raise TokenError("payload must be an object")
        if payload.get("iss") != self._issuer:
            raise TokenError("unexpected issuer")

        subject = payload.get("sub")
        token_id = payload.get("jti")
        if not isinstance(subject, str) or not isinstance(token_id, str):
            raise TokenError("missing subject or token id")

        user_id = payload.get("userId")
        raw_class = payload.get("userClass")
        if (user_id is None) != (raw_class is None):
            raise TokenError("userId and userClass must appear together")
        user_class: Optional[AccountClass] = None
        if user_id is not None:
            if not isinstance(user_id, str) or not isinstance(raw_class, str):
                raise TokenError("userId and userClass must be strings")
            try:
                user_class = AccountClass(raw_class)
            except ValueError as exc:
                raise TokenError("unknown user class") from exc

        return TokenClaims(
            subject=subject,
            issued_at=_numeric_date(payload, "iat"),
            expires_at=_numeric_date(payload, "exp"),
            token_id=token_id,
            user_id=user_id,
            user_class=user_class,
        )

    def is_expired(self, claims: TokenClaims, now: Optional[datetime] = None) -> bool:
        return (now or self.now()) >= claims.expires_at
