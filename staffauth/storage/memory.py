from __future__ import annotations

import hashlib
import threading
import time
import uuid
from dataclasses import replace
from typing import Dict, List, Optional

from staffauth.logging import get_logger
from staffauth.storage.errors import ConstraintViolation
from staffauth.storage.models import (
    AccessLogEntry,
    Account,
    AccountStatus,
    utcnow,
)


class MemoryStore:
    """In-process account and access-log store for tests and local runs."""

    def __init__(self) -> None:
        self.logger = get_logger(__name__)
        self.accounts: Dict[str, Account] = {}
        self._ids_by_email: Dict[str, str] = {}
        self.access_logs: List[AccessLogEntry] = []
        # Uniqueness check and insert share one critical section
        self._data_lock = threading.RLock()

    # accounts
    def find_by_email(self, email: str) -> Optional[Account]:
        with self._data_lock:
            account_id = self._ids_by_email.get(email)
            if account_id is None:
                return None
            return replace(self.accounts[account_id])

    def exists_by_email(self, email: str) -> bool:
        with self._data_lock:
            return email in self._ids_by_email

    def get_account(self, account_id: str) -> Optional[Account]:
        with self._data_lock:
            account = self.accounts.get(account_id)
            return replace(account) if account else None

    def save(self, account: Account) -> Account:
        with self._data_lock:
            owner = self._ids_by_email.get(account.email)
            if owner is not None and owner != account.id:
                raise ConstraintViolation("email already exists", {"field": "email"})
            now = utcnow()
            if account.id is None:
                stored = replace(account, id=str(uuid.uuid4()), updated_at=now)
            else:
                previous = self.accounts.get(account.id)
                if previous is not None and previous.email != account.email:
                    self._ids_by_email.pop(previous.email, None)
                stored = replace(account, updated_at=now)
            self.accounts[stored.id] = stored
            self._ids_by_email[stored.email] = stored.id
            return replace(stored)

    def set_account_status(
        self, account_id: str, status: AccountStatus
    ) -> Optional[Account]:
        with self._data_lock:
            account = self.accounts.get(account_id)
            if not account:
                return None
            updated = replace(account, status=AccountStatus(status), updated_at=utcnow())
            self.accounts[account_id] = updated
            return replace(updated)

    def list_accounts(self, limit: int = 100) -> List[Account]:
        with self._data_lock:
            ordered = sorted(self.accounts.values(), key=lambda a: a.created_at)
            return [replace(a) for a in ordered[:limit]]

    # audit
    def append_access_log(self, entry: AccessLogEntry) -> AccessLogEntry:
        with self._data_lock:
            stored = replace(entry, id=len(self.access_logs) + 1)
            self.access_logs.append(stored)
            return stored

    def list_access_logs(
        self, account_id: Optional[str] = None, limit: int = 100
    ) -> List[AccessLogEntry]:
        with self._data_lock:
            entries = [
                e
                for e in self.access_logs
                if account_id is None or e.account_id == account_id
            ]
            return list(reversed(entries))[:limit]

    def verify_connection(self) -> None:
        return None


class MemoryRevocationStore:
    """Lock-protected revocation map used when Redis is unavailable.

    Exposes the same awaitable surface as ``RedisCache``; expiry is tracked
    against the monotonic clock so wall-clock jumps cannot resurrect tokens.
    """

    def __init__(self, *, clock=time.monotonic) -> None:
        self._clock = clock
        self._entries: Dict[str, float] = {}
        self._lock = threading.Lock()

    @staticmethod
    def _key(token: str) -> str:
        return hashlib.sha256(token.encode()).hexdigest()

    def _purge_expired(self) -> None:
        now = self._clock()
        for key in [k for k, expiry in self._entries.items() if expiry <= now]:
            del self._entries[key]

    def verify_connection(self) -> None:
        return None

    async def mark_revoked(self, token: str, ttl_seconds: int) -> None:
        if ttl_seconds <= 0:
            return
        with self._lock:
            self._entries[self._key(token)] = self._clock() + ttl_seconds

    async def is_revoked(self, token: str) -> bool:
        with self._lock:
            self._purge_expired()
            return self._key(token) in self._entries

    async def clear_revoked(self) -> int:
        with self._lock:
            count = len(self._entries)
            self._entries.clear()
            return count

    async def count_revoked(self) -> int:
        with self._lock:
            self._purge_expired()
            return len(self._entries)

    async def close(self) -> None:
        return None
