from __future__ import annotations

from typing import List, Optional, Protocol

from staffauth.config import Settings
from staffauth.logging import get_logger
from staffauth.service.errors import DependencyError
from staffauth.service.notifier import EmailToSend, Notifier
from staffauth.service.passwords import PasswordService
from staffauth.service.results import (
    AuthContext,
    AuthReason,
    LoginResult,
    LogoutResult,
    TokenValidation,
)
from staffauth.service.tokens import TokenClaims, TokenError, TokenIssuer
from staffauth.storage.errors import StorageUnavailable
from staffauth.storage.models import AccessAction, AccessLogEntry, Account

logger = get_logger(__name__)

INVALID_CREDENTIALS_MESSAGE = "invalid credentials"
INACTIVE_ACCOUNT_MESSAGE = "account inactive, contact the administrator"

_VALIDATION_MESSAGES = {
    AuthReason.REVOKED: "token has been revoked",
    AuthReason.EXPIRED: "token has expired",
    AuthReason.MALFORMED: "token is malformed",
    AuthReason.ACCOUNT_NOT_FOUND: "account not found",
    AuthReason.SUBJECT_MISMATCH: "token does not match account",
    AuthReason.ACCOUNT_NOT_ACTIVE: "account is not active",
    AuthReason.INVALID_INPUT: "token not provided",
}


class CredentialStore(Protocol):
    def find_by_email(self, email: str) -> Optional[Account]: ...

    def exists_by_email(self, email: str) -> bool: ...

    def save(self, account: Account) -> Account: ...

    def append_access_log(self, entry: AccessLogEntry) -> AccessLogEntry: ...

    def list_access_logs(
        self, account_id: Optional[str] = None, limit: int = 100
    ) -> List[AccessLogEntry]: ...


class RevocationStore(Protocol):
    async def mark_revoked(self, token: str, ttl_seconds: int) -> None: ...

    async def is_revoked(self, token: str) -> bool: ...


def strip_bearer(value: Optional[str]) -> str:
    """Remove an optional ``Bearer`` scheme prefix and surrounding space."""
    if not value:
        return ""
    scheme, _, rest = value.strip().partition(" ")
    if scheme.lower() == "bearer":
        return rest.strip()
    return value.strip()


def extract_bearer(header: Optional[str]) -> Optional[str]:
    """Return the credential from an ``Authorization: Bearer`` header, if any."""
    if not header:
        return None
    if not header.lower().startswith("bearer "):
        return None
    token = header.split(" ", 1)[1].strip()
    return token or None


class SessionManager:
    """Login, validation and logout for employee accounts.

    Expected outcomes come back as result objects carrying an ``AuthReason``.
    Only an unreachable credential store (or a failed revocation write) is
    raised, as ``DependencyError``.
    """

    def __init__(
        self,
        store: CredentialStore,
        revocations: RevocationStore,
        tokens: TokenIssuer,
        passwords: PasswordService,
        notifier: Notifier,
        settings: Settings,
    ) -> None:
        self.store = store
        self.revocations = revocations
        self.tokens = tokens
        self.passwords = passwords
        self.notifier = notifier
        self.settings = settings

    def _audit(
        self,
        action: AccessAction,
        reason: AuthReason,
        *,
        account_id: Optional[str] = None,
        ip: Optional[str] = None,
        user_agent: Optional[str] = None,
    ) -> None:
        entry = AccessLogEntry(
            action=action,
            success=reason == AuthReason.SUCCESS,
            reason=reason.value,
            account_id=account_id,
            ip=ip,
            user_agent=user_agent,
        )
        try:
            self.store.append_access_log(entry)
        except Exception as exc:
            # The audit trail never changes the caller-visible outcome
            logger.warning(
                "access_log_write_failed",
                action=action.value,
                reason=reason.value,
                error_type=type(exc).__name__,
                error=str(exc),
            )

    def _dependency_failure(
        self,
        action: AccessAction,
        exc: StorageUnavailable,
        *,
        account_id: Optional[str] = None,
        ip: Optional[str] = None,
        user_agent: Optional[str] = None,
    ) -> DependencyError:
        logger.error(
            f"{action.value}_store_unavailable",
            backend=exc.backend,
            error=str(exc),
        )
        self._audit(
            action, AuthReason.ERROR, account_id=account_id, ip=ip, user_agent=user_agent
        )
        return DependencyError(dependency=exc.backend, cause=exc)

    def _find_account(
        self,
        email: str,
        action: AccessAction,
        *,
        account_id: Optional[str] = None,
        ip: Optional[str] = None,
        user_agent: Optional[str] = None,
    ) -> Optional[Account]:
        try:
            return self.store.find_by_email(email)
        except StorageUnavailable as exc:
            raise self._dependency_failure(
                action, exc, account_id=account_id, ip=ip, user_agent=user_agent
            ) from exc

    # login
    async def login(
        self,
        email: str,
        password: str,
        *,
        ip: Optional[str] = None,
        user_agent: Optional[str] = None,
    ) -> LoginResult:
        account = self._find_account(email, AccessAction.LOGIN, ip=ip, user_agent=user_agent)
        if account is None:
            self._audit(AccessAction.LOGIN, AuthReason.NOT_FOUND, ip=ip, user_agent=user_agent)
            logger.info("login_rejected", reason=AuthReason.NOT_FOUND.value)
            return self._invalid_credentials(AuthReason.NOT_FOUND)

        if not account.is_active:
            self._audit(
                AccessAction.LOGIN,
                AuthReason.INACTIVE,
                account_id=account.id,
                ip=ip,
                user_agent=user_agent,
            )
            logger.info(
                "login_rejected",
                reason=AuthReason.INACTIVE.value,
                account_id=account.id,
                status=account.status.value,
            )
            return LoginResult(
                success=False, reason=AuthReason.INACTIVE, message=INACTIVE_ACCOUNT_MESSAGE
            )

        if not self.passwords.verify(account.password_hash, password):
            self._audit(
                AccessAction.LOGIN,
                AuthReason.BAD_CREDENTIALS,
                account_id=account.id,
                ip=ip,
                user_agent=user_agent,
            )
            logger.info(
                "login_rejected",
                reason=AuthReason.BAD_CREDENTIALS.value,
                account_id=account.id,
            )
            if self.settings.notify_failed_login:
                # Addressed to the account of record, never to the typed address
                await self.notifier.publish_login_notification(
                    EmailToSend.login_notification(
                        account.email, account.name, success=False, ip=ip
                    )
                )
            return self._invalid_credentials(AuthReason.BAD_CREDENTIALS)

        access_token = self.tokens.issue_access_token(account)
        refresh_token = self.tokens.issue_refresh_token(account)
        self._audit(
            AccessAction.LOGIN,
            AuthReason.SUCCESS,
            account_id=account.id,
            ip=ip,
            user_agent=user_agent,
        )
        logger.info("login_succeeded", account_id=account.id)
        await self.notifier.publish_login_notification(
            EmailToSend.login_notification(account.email, account.name, success=True, ip=ip)
        )
        return LoginResult(
            success=True,
            reason=AuthReason.SUCCESS,
            message="login successful",
            access_token=access_token,
            refresh_token=refresh_token,
            user_class=account.user_class,
            expires_in=self.tokens.access_token_ttl_seconds,
        )

    @staticmethod
    def _invalid_credentials(reason: AuthReason) -> LoginResult:
        # Same message for unknown email and wrong password
        return LoginResult(success=False, reason=reason, message=INVALID_CREDENTIALS_MESSAGE)

    # validation
    async def _check_revoked(self, token: str) -> bool:
        try:
            return await self.revocations.is_revoked(token)
        except Exception as exc:
            # Fail-open: an unreachable denylist must not reject all traffic
            logger.warning(
                "revocation_check_failed",
                error_type=type(exc).__name__,
                error=str(exc),
            )
            return False

    def _invalid(
        self,
        reason: AuthReason,
        *,
        account_id: Optional[str] = None,
        ip: Optional[str] = None,
        user_agent: Optional[str] = None,
    ) -> TokenValidation:
        self._audit(
            AccessAction.VALIDATE, reason, account_id=account_id, ip=ip, user_agent=user_agent
        )
        logger.info("token_rejected", reason=reason.value, account_id=account_id)
        return TokenValidation(valid=False, reason=reason, message=_VALIDATION_MESSAGES[reason])

    async def validate(
        self,
        token: Optional[str],
        *,
        ip: Optional[str] = None,
        user_agent: Optional[str] = None,
    ) -> TokenValidation:
        """Check an access token; the first failing check decides the reason.

        Order: revoked, unverifiable, expired, missing subject or access
        claims, unknown account, subject or id mismatch, inactive account.
        """
        if not token:
            return TokenValidation(
                valid=False,
                reason=AuthReason.INVALID_INPUT,
                message=_VALIDATION_MESSAGES[AuthReason.INVALID_INPUT],
            )
        meta = {"ip": ip, "user_agent": user_agent}

        if await self._check_revoked(token):
            return self._invalid(AuthReason.REVOKED, **meta)

        try:
            claims = self.tokens.decode(token)
        except TokenError as exc:
            logger.debug("token_decode_failed", error=str(exc))
            return self._invalid(AuthReason.MALFORMED, **meta)

        if self.tokens.is_expired(claims):
            return self._invalid(AuthReason.EXPIRED, account_id=claims.user_id, **meta)

        if not claims.subject.strip() or not claims.is_access:
            return self._invalid(AuthReason.MALFORMED, account_id=claims.user_id, **meta)

        account = self._find_account(
            claims.subject, AccessAction.VALIDATE, account_id=claims.user_id, **meta
        )
        if account is None:
            return self._invalid(AuthReason.ACCOUNT_NOT_FOUND, account_id=claims.user_id, **meta)

        if account.email != claims.subject or account.id != claims.user_id:
            return self._invalid(AuthReason.SUBJECT_MISMATCH, account_id=account.id, **meta)

        if not account.is_active:
            return self._invalid(AuthReason.ACCOUNT_NOT_ACTIVE, account_id=account.id, **meta)

        self._audit(AccessAction.VALIDATE, AuthReason.SUCCESS, account_id=account.id, **meta)
        return TokenValidation(
            valid=True,
            reason=AuthReason.SUCCESS,
            message="token is valid",
            account_id=account.id,
            email=account.email,
            name=account.name,
            user_class=account.user_class,
            expires_at=claims.expires_at,
        )

    async def authenticate(
        self,
        authorization: Optional[str],
        *,
        ip: Optional[str] = None,
        user_agent: Optional[str] = None,
    ) -> Optional[AuthContext]:
        token = extract_bearer(authorization)
        if not token:
            return None
        validation = await self.validate(token, ip=ip, user_agent=user_agent)
        if not validation.valid:
            return None
        return AuthContext.from_validation(validation)

    # logout
    def _logout_actor(self, claims: TokenClaims) -> Optional[str]:
        if claims.user_id:
            return claims.user_id
        # Refresh tokens carry only the subject; the actor is audit-only
        try:
            account = self.store.find_by_email(claims.subject) if claims.subject else None
        except StorageUnavailable as exc:
            logger.warning("logout_actor_lookup_failed", error=str(exc))
            return None
        return account.id if account else None

    async def logout(
        self,
        token: Optional[str],
        *,
        ip: Optional[str] = None,
        user_agent: Optional[str] = None,
    ) -> LogoutResult:
        token = strip_bearer(token)
        if not token:
            return LogoutResult(
                success=False,
                reason=AuthReason.INVALID_INPUT,
                message="token not provided",
            )

        try:
            already_revoked = await self.revocations.is_revoked(token)
        except StorageUnavailable as exc:
            raise self._dependency_failure(
                AccessAction.LOGOUT, exc, ip=ip, user_agent=user_agent
            ) from exc
        if already_revoked:
            self._audit(
                AccessAction.LOGOUT, AuthReason.ALREADY_INVALIDATED, ip=ip, user_agent=user_agent
            )
            return LogoutResult(
                success=False,
                reason=AuthReason.ALREADY_INVALIDATED,
                message="token already invalidated",
            )

        try:
            claims = self.tokens.decode(token)
        except TokenError as exc:
            self._audit(
                AccessAction.LOGOUT, AuthReason.INVALID_TOKEN, ip=ip, user_agent=user_agent
            )
            logger.info("logout_rejected", reason=AuthReason.INVALID_TOKEN.value, error=str(exc))
            return LogoutResult(
                success=False, reason=AuthReason.INVALID_TOKEN, message="invalid token"
            )

        actor = self._logout_actor(claims)
        ttl_seconds = claims.remaining_seconds(self.tokens.now())
        if ttl_seconds > 0:
            try:
                await self.revocations.mark_revoked(token, ttl_seconds)
            except StorageUnavailable as exc:
                # Fail closed: never report a logout that was not recorded
                raise self._dependency_failure(
                    AccessAction.LOGOUT, exc, account_id=actor, ip=ip, user_agent=user_agent
                ) from exc

        self._audit(
            AccessAction.LOGOUT, AuthReason.SUCCESS, account_id=actor, ip=ip, user_agent=user_agent
        )
        logger.info("logout_succeeded", account_id=actor, revocation_ttl=ttl_seconds)
        return LogoutResult(success=True, reason=AuthReason.SUCCESS, message="logout successful")
