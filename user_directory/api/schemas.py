"""Response models for the HTTP boundary."""

from __future__ import annotations

from datetime import datetime
from typing import Any

from pydantic import BaseModel, EmailStr

from ..domain.account import Account
from ..domain.contracts import Page


class AccountResponse(BaseModel):
    """Serialised representation of an `Account`; the credential hash is never included."""

    id: int
    first_name: str
    last_name: str
    full_name: str
    email: EmailStr
    role: str
    role_label: str
    created_at: datetime
    updated_at: datetime

    @classmethod
    def from_domain(cls, account: Account) -> "AccountResponse":
        """Build a response model from the domain aggregate."""
        return cls(
            id=account.id,
            first_name=account.first_name,
            last_name=account.last_name,
            full_name=account.full_name,
            email=account.email,
            role=account.role.value,
            role_label=account.role.label,
            created_at=account.created_at,
            updated_at=account.updated_at,
        )


class AccountPageResponse(BaseModel):
    """Envelope for paginated account listings."""

    items: list[AccountResponse]
    total: int
    page: int
    per_page: int
    last_page: int

    @classmethod
    def from_page(cls, page: Page[Account]) -> "AccountPageResponse":
        return cls(
            items=[AccountResponse.from_domain(account) for account in page.items],
            total=page.total,
            page=page.page,
            per_page=page.per_page,
            last_page=page.last_page,
        )


class ErrorBody(BaseModel):
    kind: str
    code: str
    message: str
    fields: dict[str, list[str]] | None = None
    retry_after: int | None = None
    details: dict[str, Any] | None = None


class CreateAccountResponse(BaseModel):
    """Created account plus an optional warning when the credentials email failed."""

    account: AccountResponse
    warning: ErrorBody | None = None


class LoginResponse(BaseModel):
    account: AccountResponse
    token: str
    token_type: str = "bearer"
    expires_at: datetime | None = None


class CurrentAccountResponse(BaseModel):
    account: AccountResponse | None


class DeletedAccountResponse(BaseModel):
    id: int
    email: str
    deleted_at: datetime


class MessageResponse(BaseModel):
    message: str
