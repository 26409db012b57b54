from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime, timezone
from enum import Enum
from typing import Iterable


class Role(str, Enum):
    """The two roles an account can hold."""

    ADMINISTRATOR = "administrator"
    REVIEWER = "reviewer"

    @property
    def label(self) -> str:
        return self.value.capitalize()

    @classmethod
    def values(cls) -> list[str]:
        return [role.value for role in cls]


_ROLE_ALIASES = {
    "admin": Role.ADMINISTRATOR,
    "review": Role.REVIEWER,
}


def parse_role(raw: object) -> Role | None:
    """Map an external role spelling onto ``Role``; ``None`` when it is not recognised."""
    if isinstance(raw, Role):
        return raw
    if not isinstance(raw, str):
        return None
    normalised = raw.strip().lower()
    try:
        return Role(normalised)
    except ValueError:
        return _ROLE_ALIASES.get(normalised)


def parse_roles(raw: Iterable[object]) -> frozenset[Role]:
    """Normalise a role list, discarding tokens that do not name a role."""
    parsed = (parse_role(token) for token in raw)
    return frozenset(role for role in parsed if role is not None)


@dataclass(slots=True)
class Account:
    """Identity record for one member of the directory."""

    id: int
    first_name: str
    last_name: str
    email: str
    role: Role
    created_at: datetime
    updated_at: datetime
    deleted_at: datetime | None = None
    credential_hash: str = field(default="", repr=False)

    @property
    def full_name(self) -> str:
        return f"{self.first_name} {self.last_name}"

    @property
    def is_deleted(self) -> bool:
        return self.deleted_at is not None

    @property
    def is_administrator(self) -> bool:
        return self.role is Role.ADMINISTRATOR


class LookupState(str, Enum):
    ACTIVE = "active"
    DELETED = "deleted"
    ABSENT = "absent"


@dataclass(frozen=True, slots=True)
class AccountLookup:
    """Three-way result of an id lookup that includes soft-deleted rows.

    Callers collapse the state into their own external error; the state
    itself is kept for logs and audit metadata.
    """

    state: LookupState
    account: Account | None = None

    @classmethod
    def of(cls, account: Account | None) -> "AccountLookup":
        if account is None:
            return cls(LookupState.ABSENT)
        if account.is_deleted:
            return cls(LookupState.DELETED, account)
        return cls(LookupState.ACTIVE, account)

    @property
    def is_active(self) -> bool:
        return self.state is LookupState.ACTIVE


@dataclass(slots=True)
class Session:
    """One active login, identified externally by an opaque bearer token."""

    token_hash: str
    account_id: int
    issued_at: datetime
    expires_at: datetime | None = None
    revoked_at: datetime | None = None

    def is_live(self, now: datetime | None = None) -> bool:
        if self.revoked_at is not None:
            return False
        if self.expires_at is None:
            return True
        return self.expires_at > (now or datetime.now(timezone.utc))
