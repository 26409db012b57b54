"""FastAPI dependencies that build the per-request context."""

from __future__ import annotations

from fastapi import Depends, Request
from fastapi.security import HTTPAuthorizationCredentials, HTTPBearer

from ..domain.contracts import RequestContext
from ..domain.errors import UnauthenticatedError
from ..domain.service import UserLifecycleService
from ..domain.sessions import SessionIssuer
from ..security import rate_gate as buckets
from ..security.rate_gate import RateGate

bearer_scheme = HTTPBearer(auto_error=False)


def get_service(request: Request) -> UserLifecycleService:
    """Resolve the `UserLifecycleService` stored on the FastAPI application state."""
    service: UserLifecycleService = request.app.state.user_service
    return service


def get_sessions(request: Request) -> SessionIssuer:
    sessions: SessionIssuer = request.app.state.session_issuer
    return sessions


def get_rate_gate(request: Request) -> RateGate:
    gate: RateGate = request.app.state.rate_gate
    return gate


def client_ip(request: Request) -> str:
    """Peer address of the request.

    Forwarded headers are resolved by uvicorn for the proxies listed in
    ``FORWARDED_ALLOW_IPS``; the raw header is never read here.
    """
    return request.client.host if request.client else "unknown"


def anonymous_context(request: Request) -> RequestContext:
    request_id = request.headers.get("X-Request-ID")
    ip = client_ip(request)
    return RequestContext(ip=ip, request_id=request_id) if request_id else RequestContext(ip=ip)


def authenticated_context(
    request: Request,
    credentials: HTTPAuthorizationCredentials | None = Depends(bearer_scheme),
    sessions: SessionIssuer = Depends(get_sessions),
    gate: RateGate = Depends(get_rate_gate),
) -> RequestContext:
    """Resolve the bearer session and apply the general API rate limit.

    Anonymous and invalid-token requests count against the per-IP anonymous
    bucket before being rejected; authenticated ones count per principal.
    """
    base = anonymous_context(request)
    token = credentials.credentials if credentials else None
    try:
        principal = sessions.authenticate(token)
    except UnauthenticatedError:
        gate.check(buckets.API_ANONYMOUS, base.ip)
        raise
    gate.check(buckets.API, f"user:{principal.account.id}")
    return RequestContext(
        ip=base.ip,
        principal=principal.account,
        session=principal.session,
        request_id=base.request_id,
    )


def sensitive_context(
    context: RequestContext = Depends(authenticated_context),
    gate: RateGate = Depends(get_rate_gate),
) -> RequestContext:
    """Authenticated context that also counts against the mutation bucket."""
    gate.check(buckets.SENSITIVE, f"user:{context.principal_id}")
    return context
