from __future__ import annotations

import threading
from dataclasses import dataclass, replace
from datetime import datetime, timedelta, timezone
from typing import Any, Mapping

import pytest

from user_directory.domain.account import Account, Role, Session
from user_directory.domain.authorization import RoleAuthorizer
from user_directory.domain.contracts import NewAccount, RequestContext
from user_directory.domain.errors import AccountDeactivatedError, DuplicateEmailError
from user_directory.domain.service import UserLifecycleService
from user_directory.domain.sessions import SessionIssuer
from user_directory.domain.validation import InputValidator
from user_directory.security.denylist import StaticDenylist
from user_directory.security.passwords import BcryptHasher

STRONG_PASSWORD = "Aa1!aaaa"
LEAKED_PASSWORD = "Password1!"


@dataclass
class FakeAuditLogRecord:
    audit_id: int
    account_id: int | None
    event_type: str
    actor: int | None
    metadata: dict
    created_at: datetime


class FakeRepository:
    """In-memory account store mimicking the Postgres-backed behaviours.

    A single lock stands in for the partial unique index and row locks so
    concurrent inserts of the same email behave like the database.
    """

    def __init__(self) -> None:
        self._lock = threading.RLock()
        self._accounts: dict[int, Account] = {}
        self._sessions: dict[str, Session] = {}
        self._seq = 0
        self._clock = datetime(2024, 1, 1, tzinfo=timezone.utc)
        self.audit_log: list[FakeAuditLogRecord] = []
        self.fail_audit_events: set[str] = set()

    def _tick(self) -> datetime:
        self._clock += timedelta(seconds=1)
        return self._clock

    def insert_account(self, record: NewAccount) -> Account:
        with self._lock:
            if any(a.email == record.email and not a.is_deleted for a in self._accounts.values()):
                raise DuplicateEmailError()
            self._seq += 1
            now = self._tick()
            account = Account(
                id=self._seq,
                first_name=record.first_name,
                last_name=record.last_name,
                email=record.email,
                role=record.role,
                created_at=now,
                updated_at=now,
                credential_hash=record.credential_hash,
            )
            self._accounts[account.id] = account
            return replace(account)

    def get_account(self, account_id: int) -> Account | None:
        with self._lock:
            account = self._accounts.get(account_id)
            return replace(account) if account else None

    def find_active_by_email(self, email: str, exclude_id: int | None = None) -> Account | None:
        with self._lock:
            for account in self._accounts.values():
                if account.email == email.lower() and not account.is_deleted and account.id != exclude_id:
                    return replace(account)
        return None

    def find_login_candidate(self, email: str) -> Account | None:
        with self._lock:
            matches = [a for a in self._accounts.values() if a.email == email.lower()]
            live = [a for a in matches if not a.is_deleted]
            if live:
                return replace(live[0])
            if matches:
                return replace(max(matches, key=lambda a: a.deleted_at))
        return None

    def update_account(self, account_id: int, changes: Mapping[str, Any]) -> Account | None:
        with self._lock:
            account = self._accounts.get(account_id)
            if account is None or account.is_deleted:
                return None
            email = changes.get("email")
            if email is not None and self.find_active_by_email(email, exclude_id=account_id):
                raise DuplicateEmailError()
            for key, value in changes.items():
                setattr(account, key, value)
            account.updated_at = self._tick()
            return replace(account)

    def soft_delete_account(self, account_id: int) -> Account | None:
        with self._lock:
            account = self._accounts.get(account_id)
            if account is None or account.is_deleted:
                return None
            now = self._tick()
            account.deleted_at = now
            account.updated_at = now
            for session in self._sessions.values():
                if session.account_id == account_id and session.revoked_at is None:
                    session.revoked_at = now
            return replace(account)

    def list_accounts(
        self,
        *,
        offset: int,
        limit: int,
        search: str | None = None,
        role: Role | None = None,
    ) -> tuple[list[Account], int]:
        with self._lock:
            results = [a for a in self._accounts.values() if not a.is_deleted]
        if search:
            term = search.lower()
            results = [a for a in results if term in a.full_name.lower() or term in a.email.lower()]
        if role is not None:
            results = [a for a in results if a.role is role]
        results.sort(key=lambda a: (a.created_at, a.id), reverse=True)
        return [replace(a) for a in results[offset : offset + limit]], len(results)

    def replace_sessions(
        self, *, account_id: int, token_hash: str, expires_at: datetime | None
    ) -> Session:
        with self._lock:
            account = self._accounts.get(account_id)
            if account is None or account.is_deleted:
                raise AccountDeactivatedError("This account has been deactivated.")
            now = datetime.now(timezone.utc)
            for session in self._sessions.values():
                if session.account_id == account_id and session.revoked_at is None:
                    session.revoked_at = now
            session = Session(token_hash, account_id, now, expires_at)
            self._sessions[token_hash] = session
            return replace(session)

    def find_session(self, token_hash: str) -> Session | None:
        with self._lock:
            session = self._sessions.get(token_hash)
            if session and session.revoked_at is None:
                return replace(session)
        return None

    def revoke_session(self, token_hash: str) -> None:
        with self._lock:
            session = self._sessions.get(token_hash)
            if session and session.revoked_at is None:
                session.revoked_at = datetime.now(timezone.utc)

    def write_audit_event(
        self,
        *,
        account_id: int | None,
        event_type: str,
        actor: int | None,
        metadata: dict | None = None,
    ) -> None:
        if event_type in self.fail_audit_events:
            raise RuntimeError(f"audit sink unavailable for {event_type}")
        with self._lock:
            self.audit_log.append(
                FakeAuditLogRecord(
                    audit_id=len(self.audit_log) + 1,
                    account_id=account_id,
                    event_type=event_type,
                    actor=actor,
                    metadata=metadata or {},
                    created_at=datetime.now(timezone.utc),
                )
            )

    def events(self, event_type: str) -> list[FakeAuditLogRecord]:
        return [record for record in self.audit_log if record.event_type == event_type]

    def seed(
        self,
        *,
        email: str,
        role: Role,
        password_hash: str = "",
        first: str = "Seed",
        last: str = "Account",
    ) -> Account:
        return self.insert_account(
            NewAccount(
                first_name=first,
                last_name=last,
                email=email,
                credential_hash=password_hash,
                role=role,
            )
        )


class RecordingNotifier:
    """Notifier double capturing sends; can be told to fail."""

    def __init__(self) -> None:
        self.sent: list[tuple[Account, str]] = []
        self.error: Exception | None = None

    def send_credentials(self, account: Account, plaintext_password: str) -> None:
        if self.error is not None:
            raise self.error
        self.sent.append((account, plaintext_password))


@pytest.fixture()
def repository() -> FakeRepository:
    return FakeRepository()


@pytest.fixture()
def hasher() -> BcryptHasher:
    return BcryptHasher(rounds=4)


@pytest.fixture()
def validator(repository) -> InputValidator:
    return InputValidator(repository, StaticDenylist([LEAKED_PASSWORD]))


@pytest.fixture()
def notifier() -> RecordingNotifier:
    return RecordingNotifier()


@pytest.fixture()
def service(repository, validator, hasher, notifier) -> UserLifecycleService:
    return UserLifecycleService(
        repository,
        authorizer=RoleAuthorizer(repository),
        validator=validator,
        hasher=hasher,
        notifier=notifier,
        notification_timeout=2.0,
    )


@pytest.fixture()
def sessions(repository, validator, hasher) -> SessionIssuer:
    return SessionIssuer(repository, hasher=hasher, validator=validator, ttl_seconds=3600)


@pytest.fixture()
def admin(repository, hasher) -> Account:
    return repository.seed(
        email="admin@acme.io",
        role=Role.ADMINISTRATOR,
        password_hash=hasher.hash(STRONG_PASSWORD),
        first="Ada",
        last="Admin",
    )


@pytest.fixture()
def reviewer(repository, hasher) -> Account:
    return repository.seed(
        email="reviewer@acme.io",
        role=Role.REVIEWER,
        password_hash=hasher.hash(STRONG_PASSWORD),
        first="Rita",
        last="Reviewer",
    )


@pytest.fixture()
def admin_context(admin) -> RequestContext:
    return RequestContext(ip="10.0.0.1", principal=admin)


@pytest.fixture()
def reviewer_context(reviewer) -> RequestContext:
    return RequestContext(ip="10.0.0.2", principal=reviewer)


@pytest.fixture()
def user_payload():
    """Factory for a valid create payload with optional overrides."""

    def build(**overrides: Any) -> dict[str, Any]:
        payload: dict[str, Any] = {
            "first_name": "Jane",
            "last_name": "Doe",
            "email": "jane@acme.io",
            "password": STRONG_PASSWORD,
            "password_confirmation": STRONG_PASSWORD,
            "role": "reviewer",
        }
        payload.update(overrides)
        return payload

    return build
