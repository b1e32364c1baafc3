from __future__ import annotations

from typing import Optional

from staffauth.config import Settings
from staffauth.logging import get_logger, redact_email
from staffauth.service.errors import DependencyError
from staffauth.service.notifier import AccountCreated, EmailToSend, Notifier
from staffauth.service.passwords import PasswordService
from staffauth.service.results import AuthReason, RegistrationResult
from staffauth.storage.errors import ConstraintViolation, StorageUnavailable
from staffauth.storage.models import Account, AccountClass, AccountStatus

logger = get_logger(__name__)


def email_domain(email: str) -> Optional[str]:
    """Return ``@domain`` for ``email`` or ``None`` when there is no ``@``."""
    if "@" not in email:
        return None
    return "@" + email.split("@", 1)[1]


class RegistrationService:
    """Creates employee accounts with a one-time password."""

    def __init__(
        self,
        store,
        passwords: PasswordService,
        notifier: Notifier,
        settings: Settings,
    ) -> None:
        self.store = store
        self.passwords = passwords
        self.notifier = notifier
        self.settings = settings

    def is_allowed_domain(self, email: str) -> bool:
        # Exact match only; subdomains are not accepted
        return email_domain(email) == self.settings.allowed_email_domain

    async def register(
        self,
        email: str,
        *,
        name: Optional[str] = None,
        department: Optional[str] = None,
        job_title: Optional[str] = None,
    ) -> RegistrationResult:
        if not self.is_allowed_domain(email):
            logger.info(
                "registration_rejected",
                reason=AuthReason.DOMAIN_NOT_ALLOWED.value,
                to=redact_email(email),
            )
            return RegistrationResult(
                success=False,
                reason=AuthReason.DOMAIN_NOT_ALLOWED,
                message=f"only {self.settings.allowed_email_domain} addresses may register",
            )
        try:
            if self.store.exists_by_email(email):
                logger.info(
                    "registration_rejected",
                    reason=AuthReason.ALREADY_EXISTS.value,
                    to=redact_email(email),
                )
                return self._already_exists()

            temporary_password = self.passwords.generate_temporary_password()
            account = Account(
                email=email,
                password_hash=self.passwords.hash(temporary_password),
                user_class=AccountClass.EMPLOYEE,
                status=AccountStatus.ACTIVE,
                name=name,
                department=department,
                job_title=job_title,
            )
            try:
                account = self.store.save(account)
            except ConstraintViolation:
                # Lost a race with a concurrent registration for the same email
                logger.info("registration_race_lost", to=redact_email(email))
                return self._already_exists()
        except StorageUnavailable as exc:
            logger.error(
                "registration_store_unavailable",
                backend=exc.backend,
                error=str(exc),
            )
            raise DependencyError(dependency=exc.backend, cause=exc) from exc

        logger.info("account_registered", account_id=account.id)
        await self.notifier.publish_registration(
            AccountCreated.from_account(account, temporary_password),
            EmailToSend.registration(
                account.email, account.name, temporary_password, self.settings.login_url
            ),
        )
        return RegistrationResult(
            success=True,
            reason=AuthReason.SUCCESS,
            message="account created",
            account_id=account.id,
        )

    @staticmethod
    def _already_exists() -> RegistrationResult:
        return RegistrationResult(
            success=False,
            reason=AuthReason.ALREADY_EXISTS,
            message="an account already exists for this email",
        )
