"""Role-based authorization for the two directory roles."""

from __future__ import annotations

import logging
from dataclasses import dataclass
from enum import Enum
from typing import Any, Iterable, Protocol

from ..metrics import AUTHORIZATION_DENIALS
from .account import Role, parse_roles
from .contracts import RequestContext
from .errors import (
    AccountDeactivatedError,
    PolicyConfigurationError,
    UnauthenticatedError,
    UnauthorizedError,
)

logger = logging.getLogger(__name__)

ADMIN_ONLY: frozenset[Role] = frozenset({Role.ADMINISTRATOR})
ANY_ROLE: frozenset[Role] = frozenset(Role)


class AuditSink(Protocol):
    def write_audit_event(
        self,
        *,
        account_id: int | None,
        event_type: str,
        actor: int | None,
        metadata: dict[str, Any] | None = None,
    ) -> None: ...


class DenialReason(str, Enum):
    MISSING_POLICY = "missing_policy"
    UNAUTHENTICATED = "unauthenticated"
    DEACTIVATED = "deactivated"
    NO_VALID_ROLES = "no_valid_roles"
    ROLE_NOT_PERMITTED = "role_not_permitted"


@dataclass(frozen=True, slots=True)
class AuthorizationDecision:
    allowed: bool
    reason: DenialReason | None = None

    @classmethod
    def allow(cls) -> "AuthorizationDecision":
        return cls(True)

    @classmethod
    def deny(cls, reason: DenialReason) -> "AuthorizationDecision":
        return cls(False, reason)


class RoleAuthorizer:
    """Decide whether the request principal may invoke an operation."""

    def __init__(self, audit: AuditSink) -> None:
        self._audit = audit

    def authorize(
        self,
        context: RequestContext,
        required_roles: Iterable[object],
        *,
        resource: str,
    ) -> AuthorizationDecision:
        """Evaluate the principal against ``required_roles`` without raising.

        ``required_roles`` may hold ``Role`` members or external spellings;
        unrecognised tokens are dropped rather than widening access. Every
        denial is written to the audit sink.
        """
        raw_roles = list(required_roles)
        decision = self._evaluate(context, raw_roles)
        if not decision.allowed:
            self._record_denial(context, resource, raw_roles, decision.reason)
        return decision

    def enforce(
        self,
        context: RequestContext,
        required_roles: Iterable[object],
        *,
        resource: str,
    ) -> None:
        """Raise the matching business exception unless :meth:`authorize` allows."""
        decision = self.authorize(context, required_roles, resource=resource)
        if decision.allowed:
            return
        if decision.reason is DenialReason.MISSING_POLICY:
            raise PolicyConfigurationError(f"no roles configured for {resource}")
        if decision.reason is DenialReason.UNAUTHENTICATED:
            raise UnauthenticatedError()
        if decision.reason is DenialReason.DEACTIVATED:
            raise AccountDeactivatedError()
        raise UnauthorizedError()

    def _evaluate(self, context: RequestContext, raw_roles: list[object]) -> AuthorizationDecision:
        if not raw_roles:
            return AuthorizationDecision.deny(DenialReason.MISSING_POLICY)
        principal = context.principal
        if principal is None:
            return AuthorizationDecision.deny(DenialReason.UNAUTHENTICATED)
        if principal.is_deleted:
            return AuthorizationDecision.deny(DenialReason.DEACTIVATED)
        allowed = parse_roles(raw_roles)
        if not allowed:
            return AuthorizationDecision.deny(DenialReason.NO_VALID_ROLES)
        if principal.role not in allowed:
            return AuthorizationDecision.deny(DenialReason.ROLE_NOT_PERMITTED)
        return AuthorizationDecision.allow()

    def _record_denial(
        self,
        context: RequestContext,
        resource: str,
        raw_roles: list[object],
        reason: DenialReason | None,
    ) -> None:
        reason_value = reason.value if reason else "unknown"
        required = sorted(str(getattr(role, "value", role)) for role in raw_roles)
        AUTHORIZATION_DENIALS.labels(reason=reason_value).inc()
        log = logger.error if reason is DenialReason.MISSING_POLICY else logger.info
        log(
            "authorization denied",
            extra={
                "principal_id": context.principal_id,
                "resource": resource,
                "required_roles": required,
                "reason": reason_value,
                "ip": context.ip,
            },
        )
        self._audit.write_audit_event(
            account_id=context.principal_id,
            event_type="authorization.denied",
            actor=context.principal_id,
            metadata={
                "resource": resource,
                "required_roles": required,
                "reason": reason_value,
                "ip": context.ip,
                "request_id": context.request_id,
            },
        )
