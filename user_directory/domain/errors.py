"""Closed error taxonomy and its mapping onto boundary responses.

Every failure leaving the core is described by exactly one :class:`ErrorKind`.
Business exceptions pin their kind; anything else is reported as
``INTERNAL_ERROR`` without leaking the underlying message.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Mapping

logger = logging.getLogger(__name__)


class ErrorKind(Enum):
    """Error kinds with their HTTP status, machine code and default message."""

    VALIDATION_FAILED = (422, "VALIDATION_ERROR", "Validation failed")
    NO_UPDATE_DATA = (400, "NO_UPDATE_DATA", "No valid data provided for update")
    UNAUTHENTICATED = (401, "UNAUTHENTICATED", "Authentication required")
    UNAUTHORIZED = (403, "UNAUTHORIZED", "You are not authorized to perform this action")
    ACCOUNT_DEACTIVATED = (403, "ACCOUNT_DEACTIVATED", "Account has been deactivated")
    RESOURCE_NOT_FOUND = (404, "RESOURCE_NOT_FOUND", "The requested resource was not found")
    CONFLICT = (409, "EMAIL_ALREADY_EXISTS", "A user with this email address already exists")
    SELF_DELETION_NOT_ALLOWED = (
        422,
        "SELF_DELETION_NOT_ALLOWED",
        "You cannot delete your own account",
    )
    RATE_LIMITED = (429, "RATE_LIMITED", "Too many requests. Please try again later.")
    EMAIL_DELIVERY_FAILED = (
        207,
        "EMAIL_DELIVERY_FAILED",
        "The user was created but the credentials email could not be delivered.",
    )
    INTERNAL_ERROR = (500, "INTERNAL_SERVER_ERROR", "An unexpected error occurred")

    def __init__(self, status: int, code: str, default_message: str) -> None:
        self.status = status
        self.code = code
        self.default_message = default_message


class DirectoryError(Exception):
    """Base class for business exceptions carrying a fixed :class:`ErrorKind`."""

    kind: ErrorKind = ErrorKind.INTERNAL_ERROR

    def __init__(self, message: str | None = None, *, details: Mapping[str, Any] | None = None) -> None:
        self.message = message or self.kind.default_message
        self.details = dict(details or {})
        super().__init__(self.message)


class ValidationFailedError(DirectoryError):
    kind = ErrorKind.VALIDATION_FAILED

    def __init__(self, field_errors: Mapping[str, list[str]], message: str | None = None) -> None:
        super().__init__(message)
        self.field_errors = {name: list(messages) for name, messages in field_errors.items()}


class NoUpdateDataError(DirectoryError):
    kind = ErrorKind.NO_UPDATE_DATA


class UnauthenticatedError(DirectoryError):
    kind = ErrorKind.UNAUTHENTICATED


class InvalidCredentialsError(UnauthenticatedError):
    """Unknown email and wrong password share this one shape."""

    def __init__(self) -> None:
        super().__init__("The provided credentials are incorrect.")


class UnauthorizedError(DirectoryError):
    kind = ErrorKind.UNAUTHORIZED


class AccountDeactivatedError(DirectoryError):
    kind = ErrorKind.ACCOUNT_DEACTIVATED


class ResourceNotFoundError(DirectoryError):
    kind = ErrorKind.RESOURCE_NOT_FOUND

    def __init__(self, message: str | None = None, *, reason: str = "absent") -> None:
        super().__init__(message)
        # logs and audit only, never rendered
        self.reason = reason


class DuplicateEmailError(DirectoryError):
    kind = ErrorKind.CONFLICT


class SelfDeletionNotAllowedError(DirectoryError):
    kind = ErrorKind.SELF_DELETION_NOT_ALLOWED


class RateLimitedError(DirectoryError):
    kind = ErrorKind.RATE_LIMITED

    def __init__(self, retry_after: int, message: str | None = None) -> None:
        super().__init__(message)
        self.retry_after = max(1, int(retry_after))


class InternalError(DirectoryError):
    kind = ErrorKind.INTERNAL_ERROR


class PolicyConfigurationError(InternalError):
    """Raised when an operation is guarded by an empty role set."""


@dataclass(frozen=True, slots=True)
class ErrorDescriptor:
    """Stable (kind, status, code, message) tuple handed to the boundary."""

    kind: ErrorKind
    message: str
    field_errors: dict[str, list[str]] | None = None
    retry_after: int | None = None
    details: dict[str, Any] = field(default_factory=dict)

    @property
    def status(self) -> int:
        return self.kind.status

    @property
    def code(self) -> str:
        return self.kind.code


class ResponseMapper:
    """Classify exceptions into :class:`ErrorDescriptor` values and render them."""

    def describe(self, exc: BaseException) -> ErrorDescriptor:
        if isinstance(exc, InternalError):
            logger.error("internal error: %s", exc, exc_info=exc)
            return ErrorDescriptor(ErrorKind.INTERNAL_ERROR, ErrorKind.INTERNAL_ERROR.default_message)
        if isinstance(exc, ValidationFailedError):
            return ErrorDescriptor(exc.kind, exc.message, field_errors=exc.field_errors)
        if isinstance(exc, RateLimitedError):
            return ErrorDescriptor(exc.kind, exc.message, retry_after=exc.retry_after)
        if isinstance(exc, DirectoryError):
            return ErrorDescriptor(exc.kind, exc.message, details=exc.details)

        logger.error("unclassified error: %s", exc.__class__.__name__, exc_info=exc)
        return ErrorDescriptor(ErrorKind.INTERNAL_ERROR, ErrorKind.INTERNAL_ERROR.default_message)

    def email_delivery_failed(self, *, recipient: str) -> ErrorDescriptor:
        return ErrorDescriptor(
            ErrorKind.EMAIL_DELIVERY_FAILED,
            ErrorKind.EMAIL_DELIVERY_FAILED.default_message,
            details={"email_type": "user_credentials", "recipient": recipient},
        )

    @staticmethod
    def to_payload(descriptor: ErrorDescriptor) -> dict[str, Any]:
        error: dict[str, Any] = {
            "kind": descriptor.kind.name,
            "code": descriptor.code,
            "message": descriptor.message,
        }
        if descriptor.field_errors is not None:
            error["fields"] = descriptor.field_errors
        if descriptor.retry_after is not None:
            error["retry_after"] = descriptor.retry_after
        if descriptor.details:
            error["details"] = descriptor.details
        return error

    def render(self, exc: BaseException) -> tuple[int, dict[str, Any], ErrorDescriptor]:
        descriptor = self.describe(exc)
        return descriptor.status, {"success": False, "error": self.to_payload(descriptor)}, descriptor
