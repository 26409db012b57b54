"""Domain-level request contracts shared by multiple layers."""

from __future__ import annotations

from dataclasses import dataclass, field, fields
from datetime import datetime
from typing import Any, Generic, Mapping, Protocol, TypeVar
import uuid

from .account import Account, Role, Session

T = TypeVar("T")


@dataclass(frozen=True, slots=True)
class RequestContext:
    """Per-request values handed explicitly to every check."""

    ip: str
    principal: Account | None = None
    session: Session | None = None
    request_id: str = field(default_factory=lambda: uuid.uuid4().hex)

    @property
    def principal_id(self) -> int | None:
        return self.principal.id if self.principal else None


@dataclass(slots=True)
class CreateAccountInput:
    """Validated inputs required to create an account."""

    first_name: str
    last_name: str
    email: str
    password: str
    role: Role

    @classmethod
    def from_payload(cls, data: Mapping[str, Any]) -> "CreateAccountInput":
        return cls(
            first_name=data["first_name"],
            last_name=data["last_name"],
            email=data["email"],
            password=data["password"],
            role=data["role"],
        )


@dataclass(slots=True)
class UpdateAccountInput:
    """Validated partial update; ``None`` means the field was not provided."""

    first_name: str | None = None
    last_name: str | None = None
    email: str | None = None
    password: str | None = None
    role: Role | None = None

    @classmethod
    def from_payload(cls, data: Mapping[str, Any]) -> "UpdateAccountInput":
        names = {f.name for f in fields(cls)}
        return cls(**{key: value for key, value in data.items() if key in names})

    def provided(self) -> list[str]:
        return [f.name for f in fields(self) if getattr(self, f.name) is not None]


@dataclass(slots=True)
class NewAccount:
    """Row values handed to the store on insert."""

    first_name: str
    last_name: str
    email: str
    credential_hash: str
    role: Role


@dataclass
class Page(Generic[T]):
    items: list[T]
    total: int
    page: int
    per_page: int

    @property
    def last_page(self) -> int:
        return max(1, -(-self.total // self.per_page))


class AccountStore(Protocol):
    """Transactional store operations consumed by the core."""

    def insert_account(self, record: NewAccount) -> Account: ...

    def get_account(self, account_id: int) -> Account | None: ...

    def find_active_by_email(self, email: str, exclude_id: int | None = None) -> Account | None: ...

    def find_login_candidate(self, email: str) -> Account | None: ...

    def update_account(self, account_id: int, changes: Mapping[str, Any]) -> Account | None: ...

    def soft_delete_account(self, account_id: int) -> Account | None: ...

    def list_accounts(
        self,
        *,
        offset: int,
        limit: int,
        search: str | None = None,
        role: Role | None = None,
    ) -> tuple[list[Account], int]: ...

    def replace_sessions(
        self, *, account_id: int, token_hash: str, expires_at: datetime | None
    ) -> Session: ...

    def find_session(self, token_hash: str) -> Session | None: ...

    def revoke_session(self, token_hash: str) -> None: ...

    def write_audit_event(
        self,
        *,
        account_id: int | None,
        event_type: str,
        actor: int | None,
        metadata: dict[str, Any] | None = None,
    ) -> None: ...
