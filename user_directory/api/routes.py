"""HTTP route definitions for the user directory."""

from __future__ import annotations

from datetime import datetime
from typing import Any, cast

from fastapi import APIRouter, Body, Depends, Query, Response, status

from ..domain.contracts import RequestContext
from ..domain.errors import ResponseMapper
from ..domain.service import UserLifecycleService
from ..domain.sessions import SessionIssuer
from ..domain.validation import PER_PAGE_DEFAULT, PER_PAGE_MAX, PER_PAGE_MIN
from ..security import rate_gate as buckets
from ..security.rate_gate import RateGate
from .dependencies import (
    anonymous_context,
    authenticated_context,
    get_rate_gate,
    get_service,
    get_sessions,
    sensitive_context,
)
from .schemas import (
    AccountPageResponse,
    AccountResponse,
    CreateAccountResponse,
    CurrentAccountResponse,
    DeletedAccountResponse,
    ErrorBody,
    LoginResponse,
    MessageResponse,
)

auth_router = APIRouter(prefix="/auth", tags=["auth"])
users_router = APIRouter(prefix="/users", tags=["users"])


@auth_router.post("/login", response_model=LoginResponse)
def login(
    payload: Any = Body(default=None),
    context: RequestContext = Depends(anonymous_context),
    sessions: SessionIssuer = Depends(get_sessions),
    gate: RateGate = Depends(get_rate_gate),
) -> LoginResponse:
    """Exchange credentials for a bearer token; earlier tokens of the account stop working."""
    gate.check(buckets.LOGIN, context.ip)
    issued = sessions.login(context, payload)
    return LoginResponse(
        account=AccountResponse.from_domain(issued.account),
        token=issued.token,
        expires_at=issued.session.expires_at,
    )


@auth_router.post("/logout", response_model=MessageResponse)
def logout(
    context: RequestContext = Depends(authenticated_context),
    sessions: SessionIssuer = Depends(get_sessions),
) -> MessageResponse:
    """Revoke the token used for this request."""
    sessions.logout(context)
    return MessageResponse(message="Logout successful")


@auth_router.get("/me", response_model=CurrentAccountResponse)
def me(context: RequestContext = Depends(authenticated_context)) -> CurrentAccountResponse:
    """Return the account behind the current session."""
    account = context.principal
    return CurrentAccountResponse(account=AccountResponse.from_domain(account) if account else None)


@users_router.get("", response_model=AccountPageResponse)
def list_users(
    page: int = Query(default=1, ge=1),
    per_page: int = Query(default=PER_PAGE_DEFAULT, ge=PER_PAGE_MIN, le=PER_PAGE_MAX),
    search: str | None = Query(default=None),
    role: str | None = Query(default=None),
    context: RequestContext = Depends(authenticated_context),
    service: UserLifecycleService = Depends(get_service),
) -> AccountPageResponse:
    """List live accounts, newest first, with optional search and role filter."""
    query = {key: value for key, value in {"search": search, "role": role}.items() if value is not None}
    return AccountPageResponse.from_page(
        service.list_accounts(context, query, page=page, per_page=per_page)
    )


@users_router.post(
    "",
    response_model=CreateAccountResponse,
    status_code=status.HTTP_201_CREATED,
    responses={207: {"model": CreateAccountResponse}},
)
def create_user(
    response: Response,
    payload: Any = Body(default=None),
    context: RequestContext = Depends(sensitive_context),
    service: UserLifecycleService = Depends(get_service),
) -> CreateAccountResponse:
    """Create an account and email its credentials; 207 when only the email failed."""
    result = service.create_account(context, payload)
    warning = None
    if result.email_failure is not None:
        response.status_code = result.email_failure.status
        warning = ErrorBody(**ResponseMapper.to_payload(result.email_failure))
    return CreateAccountResponse(account=AccountResponse.from_domain(result.account), warning=warning)


@users_router.put("/{account_id}", response_model=AccountResponse)
def update_user(
    account_id: int,
    payload: Any = Body(default=None),
    context: RequestContext = Depends(sensitive_context),
    service: UserLifecycleService = Depends(get_service),
) -> AccountResponse:
    """Rewrite the provided fields of an account."""
    return AccountResponse.from_domain(service.update_account(context, account_id, payload))


@users_router.delete("/{account_id}", response_model=DeletedAccountResponse)
def delete_user(
    account_id: int,
    context: RequestContext = Depends(sensitive_context),
    service: UserLifecycleService = Depends(get_service),
) -> DeletedAccountResponse:
    """Soft-delete an account and revoke its sessions."""
    account = service.delete_account(context, account_id)
    return DeletedAccountResponse(
        id=account.id, email=account.email, deleted_at=cast(datetime, account.deleted_at)
    )
