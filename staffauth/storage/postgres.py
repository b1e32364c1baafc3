from __future__ import annotations

import contextlib
import uuid
from typing import Any, Iterator, List, Optional

from psycopg import errors
from psycopg.rows import dict_row
from psycopg_pool import ConnectionPool, PoolTimeout

from staffauth.logging import get_logger
from staffauth.storage.errors import ConstraintViolation, StorageUnavailable
from staffauth.storage.models import (
    AccessAction,
    AccessLogEntry,
    Account,
    AccountClass,
    AccountStatus,
    utcnow,
)

_SCHEMA_STATEMENTS = (
    """
    CREATE TABLE IF NOT EXISTS staff_account (
        id UUID PRIMARY KEY,
        email TEXT NOT NULL UNIQUE,
        password_hash TEXT NOT NULL,
        user_class TEXT NOT NULL,
        status TEXT NOT NULL,
        name TEXT,
        department TEXT,
        job_title TEXT,
        created_at TIMESTAMPTZ NOT NULL DEFAULT now(),
        updated_at TIMESTAMPTZ NOT NULL DEFAULT now()
    )
    """,
    """
    CREATE TABLE IF NOT EXISTS access_log (
        id BIGSERIAL PRIMARY KEY,
        account_id UUID,
        action TEXT NOT NULL,
        success BOOLEAN NOT NULL,
        reason TEXT NOT NULL,
        ip TEXT,
        user_agent TEXT,
        created_at TIMESTAMPTZ NOT NULL DEFAULT now()
    )
    """,
    "CREATE INDEX IF NOT EXISTS access_log_account_idx ON access_log (account_id, created_at DESC)",
)


class PostgresStore:
    """Postgres-backed account and access-log store."""

    def __init__(self, dsn: str, *, timeout: float = 5.0) -> None:
        self.dsn = dsn
        self.timeout = timeout
        self.logger = get_logger(__name__)
        self.pool = ConnectionPool(
            self.dsn,
            min_size=1,
            max_size=10,
            timeout=timeout,
            kwargs={
                "row_factory": dict_row,
                "autocommit": False,
                "connect_timeout": max(1, int(timeout)),
            },
        )
        self._ensure_schema()

    @contextlib.contextmanager
    def _connect(self) -> Iterator[Any]:
        try:
            with self.pool.connection() as conn:
                yield conn
        except PoolTimeout as exc:
            raise StorageUnavailable(
                "connection pool exhausted", backend="postgres", cause=exc
            ) from exc
        except errors.OperationalError as exc:
            raise StorageUnavailable(str(exc), backend="postgres", cause=exc) from exc

    def _ensure_schema(self) -> None:
        """Create the account and access-log tables if they are missing."""

        with self._connect() as conn:
            for statement in _SCHEMA_STATEMENTS:
                conn.execute(statement)

    def verify_connection(self) -> None:
        with self._connect() as conn:
            conn.execute("SELECT 1").fetchone()

    def close(self) -> None:
        self.pool.close()

    @staticmethod
    def _row_to_account(row: dict) -> Account:
        return Account(
            id=str(row["id"]),
            email=row["email"],
            password_hash=row["password_hash"],
            user_class=AccountClass(row["user_class"]),
            status=AccountStatus(row["status"]),
            name=row.get("name"),
            department=row.get("department"),
            job_title=row.get("job_title"),
            created_at=row["created_at"],
            updated_at=row["updated_at"],
        )

    @staticmethod
    def _row_to_access_log(row: dict) -> AccessLogEntry:
        account_id = row.get("account_id")
        return AccessLogEntry(
            id=row["id"],
            account_id=str(account_id) if account_id else None,
            action=AccessAction(row["action"]),
            success=bool(row["success"]),
            reason=row["reason"],
            ip=row.get("ip"),
            user_agent=row.get("user_agent"),
            timestamp=row["created_at"],
        )

    # accounts
    def find_by_email(self, email: str) -> Optional[Account]:
        with self._connect() as conn:
            row = conn.execute(
                "SELECT * FROM staff_account WHERE email = %s", (email,)
            ).fetchone()
        return self._row_to_account(row) if row else None

    def exists_by_email(self, email: str) -> bool:
        with self._connect() as conn:
            row = conn.execute(
                "SELECT 1 FROM staff_account WHERE email = %s", (email,)
            ).fetchone()
        return row is not None

    def get_account(self, account_id: str) -> Optional[Account]:
        with self._connect() as conn:
            row = conn.execute(
                "SELECT * FROM staff_account WHERE id = %s", (account_id,)
            ).fetchone()
        return self._row_to_account(row) if row else None

    def save(self, account: Account) -> Account:
        """Insert a new account or update an existing one.

        The unique index on ``email`` decides concurrent registrations; the
        loser sees ``ConstraintViolation``.
        """
        now = utcnow()
        account_id = account.id or str(uuid.uuid4())
        try:
            with self._connect() as conn:
                row = conn.execute(
                    """
                    INSERT INTO staff_account (
                        id, email, password_hash, user_class, status,
                        name, department, job_title, created_at, updated_at
                    )
                    VALUES (%s, %s, %s, %s, %s, %s, %s, %s, %s, %s)
                    ON CONFLICT (id) DO UPDATE SET
                        email = EXCLUDED.email,
                        password_hash = EXCLUDED.password_hash,
                        user_class = EXCLUDED.user_class,
                        status = EXCLUDED.status,
                        name = EXCLUDED.name,
                        department = EXCLUDED.department,
                        job_title = EXCLUDED.job_title,
                        updated_at = EXCLUDED.updated_at
                    RETURNING *
                    """,
                    (
                        account_id,
                        account.email,
                        account.password_hash,
                        account.user_class.value,
                        account.status.value,
                        account.name,
                        account.department,
                        account.job_title,
                        account.created_at,
                        now,
                    ),
                ).fetchone()
        except errors.UniqueViolation:
            raise ConstraintViolation("email already exists", {"field": "email"})
        return self._row_to_account(row)

    def set_account_status(
        self, account_id: str, status: AccountStatus
    ) -> Optional[Account]:
        with self._connect() as conn:
            row = conn.execute(
                "UPDATE staff_account SET status = %s, updated_at = now() WHERE id = %s RETURNING *",
                (AccountStatus(status).value, account_id),
            ).fetchone()
        return self._row_to_account(row) if row else None

    def list_accounts(self, limit: int = 100) -> List[Account]:
        with self._connect() as conn:
            rows = conn.execute(
                "SELECT * FROM staff_account ORDER BY created_at LIMIT %s", (limit,)
            ).fetchall()
        return [self._row_to_account(r) for r in rows]

    # audit
    def append_access_log(self, entry: AccessLogEntry) -> AccessLogEntry:
        with self._connect() as conn:
            row = conn.execute(
                """
                INSERT INTO access_log (account_id, action, success, reason, ip, user_agent, created_at)
                VALUES (%s, %s, %s, %s, %s, %s, %s)
                RETURNING *
                """,
                (
                    entry.account_id,
                    entry.action.value,
                    entry.success,
                    entry.reason,
                    entry.ip,
                    entry.user_agent,
                    entry.timestamp,
                ),
            ).fetchone()
        return self._row_to_access_log(row)

    def list_access_logs(
        self, account_id: Optional[str] = None, limit: int = 100
    ) -> List[AccessLogEntry]:
        with self._connect() as conn:
            if account_id:
                rows = conn.execute(
                    "SELECT * FROM access_log WHERE account_id = %s ORDER BY created_at DESC, id DESC LIMIT %s",
                    (account_id, limit),
                ).fetchall()
            else:
                rows = conn.execute(
                    "SELECT * FROM access_log ORDER BY created_at DESC, id DESC LIMIT %s",
                    (limit,),
                ).fetchall()
        return [self._row_to_access_log(r) for r in rows]
