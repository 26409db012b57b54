"""Database repository for directory accounts, sessions and audit events."""

from __future__ import annotations

from datetime import datetime, timezone
from typing import Any, Mapping

from psycopg import errors as pg_errors
from psycopg.rows import tuple_row
from psycopg.types.json import Json
from psycopg_pool import ConnectionPool

from .domain.account import Account, Role, Session
from .domain.contracts import NewAccount
from .domain.errors import AccountDeactivatedError, DuplicateEmailError

_ACCOUNT_COLUMNS = (
    "id, first_name, last_name, email, role, created_at, updated_at, deleted_at, password_hash"
)
_SESSION_COLUMNS = "token_hash, account_id, issued_at, expires_at, revoked_at"

_UPDATABLE_COLUMNS = {
    "first_name": "first_name",
    "last_name": "last_name",
    "email": "email",
    "role": "role",
    "credential_hash": "password_hash",
}


def _escape_like(term: str) -> str:
    return term.replace("\\", "\\\\").replace("%", "\\%").replace("_", "\\_")


class AccountRepository:
    """Postgres-backed account store.

    Email uniqueness among live rows is enforced by the partial unique index
    ``accounts_email_live_key``; violations surface as ``DuplicateEmailError``.
    """

    def __init__(self, pool: ConnectionPool) -> None:
        """Store the connection pool used for all database interactions."""
        self._pool = pool

    def insert_account(self, record: NewAccount) -> Account:
        """Persist a new account row and return it."""
        now = datetime.now(timezone.utc)
        with self._pool.connection() as conn:
            with conn.cursor(row_factory=tuple_row) as cur:
                try:
                    cur.execute(
                        f"""
                        INSERT INTO accounts (first_name, last_name, email, role, password_hash, created_at, updated_at)
                        VALUES (%s, %s, %s, %s, %s, %s, %s)
                        RETURNING {_ACCOUNT_COLUMNS}
                        """,
                        (
                            record.first_name,
                            record.last_name,
                            record.email,
                            record.role.value,
                            record.credential_hash,
                            now,
                            now,
                        ),
                    )
                except pg_errors.UniqueViolation as exc:
                    conn.rollback()
                    raise DuplicateEmailError() from exc
                row = cur.fetchone()
                conn.commit()
        return self._map_account(row)

    def get_account(self, account_id: int) -> Account | None:
        """Fetch an account by id, soft-deleted rows included, or return ``None``."""
        with self._pool.connection() as conn:
            with conn.cursor(row_factory=tuple_row) as cur:
                cur.execute(
                    f"SELECT {_ACCOUNT_COLUMNS} FROM accounts WHERE id = %s",
                    (account_id,),
                )
                row = cur.fetchone()
        return self._map_account(row) if row else None

    def find_active_by_email(self, email: str, exclude_id: int | None = None) -> Account | None:
        """Return the live account holding ``email``, optionally ignoring one id."""
        query = f"SELECT {_ACCOUNT_COLUMNS} FROM accounts WHERE email = %s AND deleted_at IS NULL"
        params: list[Any] = [email.lower()]
        if exclude_id is not None:
            query += " AND id <> %s"
            params.append(exclude_id)
        with self._pool.connection() as conn:
            with conn.cursor(row_factory=tuple_row) as cur:
                cur.execute(query, params)
                row = cur.fetchone()
        return self._map_account(row) if row else None

    def find_login_candidate(self, email: str) -> Account | None:
        """Return the live account for ``email``, else its most recently deleted one."""
        with self._pool.connection() as conn:
            with conn.cursor(row_factory=tuple_row) as cur:
                cur.execute(
                    f"""
                    SELECT {_ACCOUNT_COLUMNS}
                    FROM accounts
                    WHERE email = %s
                    ORDER BY (deleted_at IS NULL) DESC, deleted_at DESC
                    LIMIT 1
                    """,
                    (email.lower(),),
                )
                row = cur.fetchone()
        return self._map_account(row) if row else None

    def update_account(self, account_id: int, changes: Mapping[str, Any]) -> Account | None:
        """Apply ``changes`` to a live account under a row lock; ``None`` if it is gone."""
        assignments: list[str] = []
        params: list[Any] = []
        for key, value in changes.items():
            column = _UPDATABLE_COLUMNS[key]
            assignments.append(f"{column} = %s")
            params.append(value.value if isinstance(value, Role) else value)
        assignments.append("updated_at = %s")
        params.append(datetime.now(timezone.utc))

        with self._pool.connection() as conn:
            with conn.cursor(row_factory=tuple_row) as cur:
                cur.execute(
                    "SELECT id FROM accounts WHERE id = %s AND deleted_at IS NULL FOR UPDATE",
                    (account_id,),
                )
                if cur.fetchone() is None:
                    conn.rollback()
                    return None
                try:
                    cur.execute(
                        f"""
                        UPDATE accounts SET {", ".join(assignments)}
                        WHERE id = %s
                        RETURNING {_ACCOUNT_COLUMNS}
                        """,
                        (*params, account_id),
                    )
                except pg_errors.UniqueViolation as exc:
                    conn.rollback()
                    raise DuplicateEmailError() from exc
                row = cur.fetchone()
                conn.commit()
        return self._map_account(row)

    def soft_delete_account(self, account_id: int) -> Account | None:
        """Mark a live account deleted and revoke all of its sessions in one transaction."""
        now = datetime.now(timezone.utc)
        with self._pool.connection() as conn:
            with conn.cursor(row_factory=tuple_row) as cur:
                cur.execute(
                    f"""
                    UPDATE accounts
                    SET deleted_at = %s, updated_at = %s
                    WHERE id = %s AND deleted_at IS NULL
                    RETURNING {_ACCOUNT_COLUMNS}
                    """,
                    (now, now, account_id),
                )
                row = cur.fetchone()
                if row is None:
                    conn.rollback()
                    return None
                cur.execute(
                    """
                    UPDATE sessions
                    SET revoked_at = %s
                    WHERE account_id = %s AND revoked_at IS NULL
                    """,
                    (now, account_id),
                )
                conn.commit()
        return self._map_account(row)

    def list_accounts(
        self,
        *,
        offset: int,
        limit: int,
        search: str | None = None,
        role: Role | None = None,
    ) -> tuple[list[Account], int]:
        """Return one page of live accounts (newest first) and the total match count."""
        clauses = ["deleted_at IS NULL"]
        params: list[Any] = []
        if search:
            pattern = f"%{_escape_like(search)}%"
            clauses.append(
                "((first_name || ' ' || last_name) ILIKE %s ESCAPE '\\' OR email ILIKE %s ESCAPE '\\')"
            )
            params.extend([pattern, pattern])
        if role is not None:
            clauses.append("role = %s")
            params.append(role.value)
        where_sql = " AND ".join(clauses)

        with self._pool.connection() as conn:
            with conn.cursor(row_factory=tuple_row) as cur:
                cur.execute(f"SELECT COUNT(*) FROM accounts WHERE {where_sql}", params)
                total = cur.fetchone()[0]
                cur.execute(
                    f"""
                    SELECT {_ACCOUNT_COLUMNS}
                    FROM accounts
                    WHERE {where_sql}
                    ORDER BY created_at DESC, id DESC
                    LIMIT %s OFFSET %s
                    """,
                    (*params, limit, offset),
                )
                rows = cur.fetchall()
        return [self._map_account(row) for row in rows], total

    def replace_sessions(
        self, *, account_id: int, token_hash: str, expires_at: datetime | None
    ) -> Session:
        """Revoke every open session of the account and store the new one atomically.

        The account row stays locked until commit, so a concurrent delete or
        login for the same account waits for this one.
        """
        now = datetime.now(timezone.utc)
        with self._pool.connection() as conn:
            with conn.cursor(row_factory=tuple_row) as cur:
                cur.execute(
                    "SELECT id FROM accounts WHERE id = %s AND deleted_at IS NULL FOR UPDATE",
                    (account_id,),
                )
                if cur.fetchone() is None:
                    conn.rollback()
                    raise AccountDeactivatedError("This account has been deactivated.")
                cur.execute(
                    """
                    UPDATE sessions
                    SET revoked_at = %s
                    WHERE account_id = %s AND revoked_at IS NULL
                    """,
                    (now, account_id),
                )
                cur.execute(
                    f"""
                    INSERT INTO sessions (token_hash, account_id, issued_at, expires_at)
                    VALUES (%s, %s, %s, %s)
                    RETURNING {_SESSION_COLUMNS}
                    """,
                    (token_hash, account_id, now, expires_at),
                )
                row = cur.fetchone()
                conn.commit()
        return Session(*row)

    def find_session(self, token_hash: str) -> Session | None:
        """Return the unrevoked session stored under ``token_hash``."""
        with self._pool.connection() as conn:
            with conn.cursor(row_factory=tuple_row) as cur:
                cur.execute(
                    f"""
                    SELECT {_SESSION_COLUMNS}
                    FROM sessions
                    WHERE token_hash = %s AND revoked_at IS NULL
                    """,
                    (token_hash,),
                )
                row = cur.fetchone()
        return Session(*row) if row else None

    def revoke_session(self, token_hash: str) -> None:
        """Mark the given session as revoked."""
        with self._pool.connection() as conn:
            with conn.cursor() as cur:
                cur.execute(
                    """
                    UPDATE sessions
                    SET revoked_at = NOW()
                    WHERE token_hash = %s AND revoked_at IS NULL
                    """,
                    (token_hash,),
                )
                conn.commit()

    def write_audit_event(
        self,
        *,
        account_id: int | None,
        event_type: str,
        actor: int | None,
        metadata: dict[str, Any] | None = None,
    ) -> None:
        """Record an audit trail entry capturing directory activity."""
        with self._pool.connection() as conn:
            with conn.cursor() as cur:
                cur.execute(
                    """
                    INSERT INTO directory_audit_log (account_id, event_type, actor, metadata)
                    VALUES (%s, %s, %s, %s)
                    """,
                    (account_id, event_type, actor, Json(metadata or {})),
                )
                conn.commit()

    def _map_account(self, row: tuple) -> Account:
        """Convert a raw database tuple into the domain ``Account`` dataclass."""
        return Account(
            id=row[0],
            first_name=row[1],
            last_name=row[2],
            email=row[3],
            role=Role(row[4]),
            created_at=row[5],
            updated_at=row[6],
            deleted_at=row[7],
            credential_hash=row[8],
        )
