from __future__ import annotations

import secrets

from argon2 import PasswordHasher, Type
from argon2.exceptions import InvalidHash, VerificationError, VerifyMismatchError

from staffauth.logging import get_logger

logger = get_logger(__name__)

# Fixed work factor; changing these only affects newly written hashes
TIME_COST = 3
MEMORY_COST_KIB = 64 * 1024
PARALLELISM = 4

TEMPORARY_PASSWORD_DIGITS = 6


def generate_temporary_password() -> str:
    """Return a uniformly random, zero-padded 6-digit one-time password."""
    return f"{secrets.randbelow(10 ** TEMPORARY_PASSWORD_DIGITS):0{TEMPORARY_PASSWORD_DIGITS}d}"


class PasswordService:
    """Argon2id hashing with a fixed cost."""

    algorithm = "argon2id"

    def __init__(
        self,
        *,
        time_cost: int = TIME_COST,
        memory_cost: int = MEMORY_COST_KIB,
        parallelism: int = PARALLELISM,
    ) -> None:
        self._hasher = PasswordHasher(
            time_cost=time_cost,
            memory_cost=memory_cost,
            parallelism=parallelism,
            type=Type.ID,
        )

    def hash(self, password: str) -> str:
        return self._hasher.hash(password)

    def verify(self, password_hash: str, password: str) -> bool:
        """Check ``password`` against ``password_hash``; never raises on mismatch."""
        try:
            return self._hasher.verify(password_hash, password)
        except VerifyMismatchError:
            return False
        except (InvalidHash, VerificationError):
            logger.warning("password_hash_unverifiable")
            return False

    generate_temporary_password = staticmethod(generate_temporary_password)
