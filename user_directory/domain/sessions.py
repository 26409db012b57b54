"""Credential checks and opaque bearer-session issuance."""

from __future__ import annotations

import logging
from dataclasses import dataclass
from datetime import datetime, timedelta, timezone
from typing import Any, Mapping

from ..metrics import LOGIN_FAILURES
from ..security.passwords import BcryptHasher
from ..security.tokens import generate_session_token, hash_session_token
from .account import Account, Session
from .contracts import AccountStore, RequestContext
from .errors import AccountDeactivatedError, InvalidCredentialsError, UnauthenticatedError
from .validation import InputValidator

logger = logging.getLogger(__name__)


@dataclass(slots=True)
class IssuedSession:
    """Login result: the raw token is only ever available here."""

    account: Account
    token: str
    session: Session


@dataclass(frozen=True, slots=True)
class Principal:
    account: Account
    session: Session


class SessionIssuer:
    """Validate credentials and mint, resolve and revoke bearer sessions.

    Each account holds at most one live session: a successful login revokes
    every earlier token of that account before the new one is stored.
    """

    def __init__(
        self,
        repository: AccountStore,
        *,
        hasher: BcryptHasher,
        validator: InputValidator,
        ttl_seconds: int = 0,
    ) -> None:
        self._repository = repository
        self._hasher = hasher
        self._validator = validator
        self._ttl_seconds = ttl_seconds

    def login(self, context: RequestContext, payload: Mapping[str, Any] | None) -> IssuedSession:
        """Exchange an email/password pair for a new session."""
        data = self._validator.validate(payload, self._validator.login_rules).raise_for_errors()
        email, password = data["email"], data["password"]

        account = self._repository.find_login_candidate(email)
        credential_hash = account.credential_hash if account else None
        if not self._hasher.verify(password, credential_hash) or account is None:
            self._record_failure(context, account, "invalid_credentials")
            raise InvalidCredentialsError()

        if account.is_deleted:
            self._record_failure(context, account, "deactivated")
            raise AccountDeactivatedError("This account has been deactivated.")

        token, token_hash = generate_session_token()
        expires_at = None
        if self._ttl_seconds > 0:
            expires_at = datetime.now(timezone.utc) + timedelta(seconds=self._ttl_seconds)
        try:
            session = self._repository.replace_sessions(
                account_id=account.id, token_hash=token_hash, expires_at=expires_at
            )
        except AccountDeactivatedError:
            self._record_failure(context, account, "deactivated")
            raise
        self._repository.write_audit_event(
            account_id=account.id,
            event_type="session.issued",
            actor=account.id,
            metadata={"ip": context.ip},
        )
        logger.info("user login successful", extra={"account_id": account.id, "ip": context.ip})
        return IssuedSession(account=account, token=token, session=session)

    def authenticate(self, token: str | None) -> Principal:
        """Resolve a bearer token; missing, revoked and expired tokens look the same."""
        if not token:
            raise UnauthenticatedError()
        session = self._repository.find_session(hash_session_token(token))
        if session is None or not session.is_live():
            raise UnauthenticatedError()
        account = self._repository.get_account(session.account_id)
        if account is None or account.is_deleted:
            raise UnauthenticatedError()
        return Principal(account=account, session=session)

    def logout(self, context: RequestContext) -> None:
        """Revoke the session the request was made with, and only that one."""
        if context.session is None:
            raise UnauthenticatedError()
        self._repository.revoke_session(context.session.token_hash)
        self._repository.write_audit_event(
            account_id=context.session.account_id,
            event_type="session.revoked",
            actor=context.principal_id,
            metadata={"ip": context.ip},
        )
        logger.info(
            "user logout successful",
            extra={"account_id": context.session.account_id, "ip": context.ip},
        )

    def _record_failure(self, context: RequestContext, account: Account | None, reason: str) -> None:
        LOGIN_FAILURES.labels(reason=reason).inc()
        logger.warning("login attempt failed", extra={"ip": context.ip, "reason": reason})
        self._repository.write_audit_event(
            account_id=account.id if account else None,
            event_type="session.login_failed",
            actor=None,
            metadata={"ip": context.ip, "reason": reason},
        )
