"""Tests for the error taxonomy and its response rendering."""

from __future__ import annotations

import pytest

from user_directory.domain.errors import (
    AccountDeactivatedError,
    DuplicateEmailError,
    ErrorKind,
    InternalError,
    InvalidCredentialsError,
    NoUpdateDataError,
    PolicyConfigurationError,
    RateLimitedError,
    ResourceNotFoundError,
    ResponseMapper,
    SelfDeletionNotAllowedError,
    UnauthorizedError,
    ValidationFailedError,
)


@pytest.fixture()
def mapper() -> ResponseMapper:
    return ResponseMapper()


@pytest.mark.parametrize(
    "exc, status, code",
    [
        (ValidationFailedError({"email": ["bad"]}), 422, "VALIDATION_ERROR"),
        (NoUpdateDataError(), 400, "NO_UPDATE_DATA"),
        (InvalidCredentialsError(), 401, "UNAUTHENTICATED"),
        (UnauthorizedError(), 403, "UNAUTHORIZED"),
        (AccountDeactivatedError(), 403, "ACCOUNT_DEACTIVATED"),
        (ResourceNotFoundError(), 404, "RESOURCE_NOT_FOUND"),
        (DuplicateEmailError(), 409, "EMAIL_ALREADY_EXISTS"),
        (SelfDeletionNotAllowedError(), 422, "SELF_DELETION_NOT_ALLOWED"),
        (RateLimitedError(30), 429, "RATE_LIMITED"),
        (InternalError("boom"), 500, "INTERNAL_SERVER_ERROR"),
    ],
)
def test_each_business_error_maps_to_one_status_and_code(mapper, exc, status, code):
    rendered_status, payload, descriptor = mapper.render(exc)

    assert rendered_status == status
    assert payload["success"] is False
    assert payload["error"]["code"] == code
    assert descriptor.kind is exc.kind


def test_validation_payload_carries_field_errors(mapper):
    _, payload, _ = mapper.render(
        ValidationFailedError(
            {"email": ["Please provide a valid email address."]}, "The given data was invalid."
        )
    )

    assert payload["error"] == {
        "kind": "VALIDATION_FAILED",
        "code": "VALIDATION_ERROR",
        "message": "The given data was invalid.",
        "fields": {"email": ["Please provide a valid email address."]},
    }


def test_rate_limited_payload_carries_retry_after(mapper):
    _, payload, descriptor = mapper.render(RateLimitedError(0))

    assert descriptor.retry_after == 1
    assert payload["error"]["retry_after"] == 1


def test_not_found_reason_is_never_rendered(mapper):
    exc = ResourceNotFoundError("User not found or has been deleted", reason="deleted")

    _, payload, _ = mapper.render(exc)

    assert "deleted" not in str(payload["error"].get("details", {}))
    assert payload["error"]["message"] == "User not found or has been deleted"


@pytest.mark.parametrize(
    "exc",
    [
        InternalError("database password is hunter2"),
        PolicyConfigurationError("no roles configured for users.list"),
        KeyError("secret"),
    ],
)
def test_internal_details_are_not_leaked(mapper, exc):
    status, payload, _ = mapper.render(exc)

    assert status == 500
    assert payload["error"]["message"] == "An unexpected error occurred"
    assert "hunter2" not in str(payload)
    assert "secret" not in str(payload)


def test_email_delivery_failure_descriptor(mapper):
    descriptor = mapper.email_delivery_failed(recipient="jane@acme.io")

    assert descriptor.status == 207
    assert ResponseMapper.to_payload(descriptor) == {
        "kind": "EMAIL_DELIVERY_FAILED",
        "code": "EMAIL_DELIVERY_FAILED",
        "message": ErrorKind.EMAIL_DELIVERY_FAILED.default_message,
        "details": {"email_type": "user_credentials", "recipient": "jane@acme.io"},
    }


def test_duplicate_conflict_keeps_field_details(mapper):
    exc = DuplicateEmailError(details={"fields": {"email": ["This email address is already registered."]}})

    _, payload, _ = mapper.render(exc)

    assert payload["error"]["message"] == "A user with this email address already exists"
    assert payload["error"]["details"]["fields"]["email"] == ["This email address is already registered."]
