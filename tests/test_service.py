"""Tests for the user lifecycle workflows."""

from __future__ import annotations

import threading
import time

import pytest

from user_directory.domain.account import LookupState, Role
from user_directory.domain.contracts import RequestContext
from user_directory.domain.errors import (
    DuplicateEmailError,
    ErrorKind,
    InternalError,
    NoUpdateDataError,
    ResourceNotFoundError,
    SelfDeletionNotAllowedError,
    UnauthenticatedError,
    UnauthorizedError,
    ValidationFailedError,
)


def test_create_account_persists_hashes_and_notifies(
    service, admin_context, repository, notifier, hasher, user_payload
):
    result = service.create_account(admin_context, user_payload())

    account = result.account
    assert not result.partial
    assert account.email == "jane@acme.io"
    assert account.role is Role.REVIEWER
    assert account.credential_hash != "Aa1!aaaa"
    assert hasher.verify("Aa1!aaaa", account.credential_hash)
    assert [(sent.id, password) for sent, password in notifier.sent] == [(account.id, "Aa1!aaaa")]
    [event] = repository.events("account.created")
    assert event.actor == admin_context.principal_id
    assert event.metadata == {"email": "jane@acme.io", "role": "reviewer"}


def test_create_duplicate_live_email_conflicts_without_side_effects(
    service, admin_context, repository, notifier, user_payload
):
    service.create_account(admin_context, user_payload(email="x@y.com"))
    notifier.sent.clear()

    with pytest.raises(DuplicateEmailError):
        service.create_account(admin_context, user_payload(email="x@y.com", first_name="Other"))

    accounts, total = repository.list_accounts(offset=0, limit=50, search="x@y.com")
    assert total == 1
    assert notifier.sent == []


def test_email_is_reusable_after_soft_delete(service, admin_context, user_payload):
    first = service.create_account(admin_context, user_payload(email="x@y.com")).account
    service.delete_account(admin_context, first.id)

    second = service.create_account(admin_context, user_payload(email="x@y.com")).account

    assert second.id != first.id
    assert second.email == "x@y.com"


def test_create_validation_failure_raises_before_insert(service, admin_context, repository):
    with pytest.raises(ValidationFailedError) as excinfo:
        service.create_account(admin_context, {"email": "bad"})

    assert "first_name" in excinfo.value.field_errors
    assert repository.events("account.created") == []


def test_reviewer_cannot_create(service, reviewer_context, repository, notifier, user_payload):
    with pytest.raises(UnauthorizedError):
        service.create_account(reviewer_context, user_payload())

    assert repository.events("account.created") == []
    assert notifier.sent == []
    assert len(repository.events("authorization.denied")) == 1


def test_anonymous_cannot_list(service):
    with pytest.raises(UnauthenticatedError):
        service.list_accounts(RequestContext(ip="10.0.0.3"))


def test_email_failure_returns_partial_result_with_committed_account(
    service, admin_context, repository, notifier, user_payload
):
    notifier.error = ConnectionRefusedError("smtp down")

    result = service.create_account(admin_context, user_payload())

    assert result.partial
    assert result.email_failure.kind is ErrorKind.EMAIL_DELIVERY_FAILED
    assert result.email_failure.status == 207
    assert result.email_failure.details == {"email_type": "user_credentials", "recipient": "jane@acme.io"}
    assert service.find_including_deleted(result.account.id).state is LookupState.ACTIVE
    assert len(repository.events("account.credentials_email_failed")) == 1


def test_email_timeout_is_reported_like_a_failure(service, admin_context, notifier, user_payload):
    release = threading.Event()

    def slow_send(account, password):
        release.wait(5)

    notifier.send_credentials = slow_send  # type: ignore[method-assign]
    service._notification_timeout = 0.05  # type: ignore[attr-defined]
    try:
        started = time.monotonic()
        result = service.create_account(admin_context, user_payload())
        assert time.monotonic() - started < 2
    finally:
        release.set()

    assert result.partial


def test_failing_email_failure_audit_does_not_undo_creation(
    service, admin_context, repository, notifier, user_payload
):
    notifier.error = RuntimeError("smtp down")
    repository.fail_audit_events.add("account.credentials_email_failed")

    result = service.create_account(admin_context, user_payload())

    assert result.partial
    assert repository.get_account(result.account.id) is not None


def test_concurrent_creates_with_same_email_yield_one_account(
    service, admin_context, repository, user_payload
):
    outcomes: list[str] = []
    lock = threading.Lock()
    barrier = threading.Barrier(6)

    def create() -> None:
        barrier.wait()
        try:
            service.create_account(admin_context, user_payload(email="race@acme.io"))
            outcome = "created"
        except DuplicateEmailError:
            outcome = "conflict"
        with lock:
            outcomes.append(outcome)

    threads = [threading.Thread(target=create) for _ in range(6)]
    for thread in threads:
        thread.start()
    for thread in threads:
        thread.join()

    assert outcomes.count("created") == 1
    assert outcomes.count("conflict") == 5
    assert repository.find_active_by_email("race@acme.io") is not None


def test_update_rewrites_only_provided_fields(service, admin_context, reviewer, repository):
    updated = service.update_account(admin_context, reviewer.id, {"first_name": "  rachel "})

    assert updated.first_name == "Rachel"
    assert updated.last_name == reviewer.last_name
    assert updated.email == reviewer.email
    assert updated.updated_at > reviewer.updated_at
    [event] = repository.events("account.updated")
    assert event.metadata == {"fields": ["first_name"]}


def test_update_same_email_is_a_no_op_success(service, admin_context, reviewer):
    updated = service.update_account(admin_context, reviewer.id, {"email": "REVIEWER@acme.io"})

    assert updated.email == "reviewer@acme.io"


def test_update_to_another_live_email_conflicts(service, admin_context, reviewer, admin):
    with pytest.raises(DuplicateEmailError):
        service.update_account(admin_context, reviewer.id, {"email": admin.email})


def test_update_with_malformed_email_is_a_validation_failure(service, admin_context, reviewer, repository):
    with pytest.raises(ValidationFailedError) as excinfo:
        service.update_account(admin_context, reviewer.id, {"email": "not-an-email"})

    assert excinfo.value.field_errors == {"email": ["Please provide a valid email address."]}
    assert excinfo.value.kind.status == 422
    assert repository.get_account(reviewer.id).email == reviewer.email


def test_update_with_nothing_usable_is_no_update_data(service, admin_context, reviewer):
    with pytest.raises(NoUpdateDataError) as excinfo:
        service.update_account(admin_context, reviewer.id, {"unknown": "value"})

    assert excinfo.value.kind.status == 400


def test_update_password_stores_new_hash(service, admin_context, reviewer, hasher):
    updated = service.update_account(
        admin_context,
        reviewer.id,
        {"password": "Bb2@bbbb", "password_confirmation": "Bb2@bbbb"},
    )

    assert hasher.verify("Bb2@bbbb", updated.credential_hash)


def test_update_role_and_soft_deleted_target(service, admin_context, reviewer):
    promoted = service.update_account(admin_context, reviewer.id, {"role": "Administrator"})
    assert promoted.role is Role.ADMINISTRATOR

    service.delete_account(admin_context, reviewer.id)
    with pytest.raises(ResourceNotFoundError) as excinfo:
        service.update_account(admin_context, reviewer.id, {"first_name": "Late"})

    assert excinfo.value.message == "User not found or has been deleted"
    assert excinfo.value.reason == "deleted"


def test_update_unknown_target_matches_deleted_message(service, admin_context, repository):
    with pytest.raises(ResourceNotFoundError) as excinfo:
        service.update_account(admin_context, 999, {"first_name": "Ghost"})

    assert excinfo.value.message == "User not found or has been deleted"
    assert excinfo.value.reason == "absent"
    [event] = repository.events("account.update_target_missing")
    assert event.metadata == {"state": "absent"}


def test_delete_marks_deleted_and_revokes_sessions(service, sessions, admin_context, reviewer, repository):
    issued = sessions.login(RequestContext(ip="10.0.0.2"), {"email": reviewer.email, "password": "Aa1!aaaa"})

    deleted = service.delete_account(admin_context, reviewer.id)

    assert deleted.deleted_at is not None
    assert service.find_including_deleted(reviewer.id).state is LookupState.DELETED
    assert repository.find_session(issued.session.token_hash) is None
    with pytest.raises(UnauthenticatedError):
        sessions.authenticate(issued.token)


def test_second_delete_is_not_found(service, admin_context, reviewer):
    service.delete_account(admin_context, reviewer.id)

    with pytest.raises(ResourceNotFoundError) as excinfo:
        service.delete_account(admin_context, reviewer.id)

    assert excinfo.value.message == "User not found or has already been deleted"


def test_self_deletion_is_rejected_and_audited(service, admin_context, admin, repository):
    with pytest.raises(SelfDeletionNotAllowedError):
        service.delete_account(admin_context, admin.id)

    assert service.find_including_deleted(admin.id).state is LookupState.ACTIVE
    assert len(repository.events("account.self_deletion_rejected")) == 1


def test_self_deletion_is_checked_before_role(service, reviewer_context, reviewer):
    with pytest.raises(SelfDeletionNotAllowedError):
        service.delete_account(reviewer_context, reviewer.id)


def test_reviewer_cannot_delete_others(service, reviewer_context, admin):
    with pytest.raises(UnauthorizedError):
        service.delete_account(reviewer_context, admin.id)


def test_list_pages_newest_first_with_filters(service, reviewer_context, admin_context, user_payload):
    for index, name in enumerate(["Alice", "Bruno", "Carla"]):
        service.create_account(
            admin_context,
            user_payload(first_name=name, email=f"{name.lower()}@acme.io", role="reviewer" if index else "admin"),
        )

    page = service.list_accounts(reviewer_context, per_page=2)
    assert page.total == 5
    assert page.per_page == 2
    assert page.last_page == 3
    assert [a.first_name for a in page.items] == ["Carla", "Bruno"]

    searched = service.list_accounts(reviewer_context, {"search": "ALI"})
    assert [a.email for a in searched.items] == ["alice@acme.io"]

    admins = service.list_accounts(reviewer_context, {"role": "administrator"})
    assert {a.email for a in admins.items} == {"admin@acme.io", "alice@acme.io"}


def test_list_excludes_soft_deleted(service, admin_context, reviewer):
    service.delete_account(admin_context, reviewer.id)

    page = service.list_accounts(admin_context)

    assert reviewer.id not in {a.id for a in page.items}


def test_list_rejects_invalid_query(service, admin_context):
    with pytest.raises(ValidationFailedError) as excinfo:
        service.list_accounts(admin_context, page=0, per_page=500)

    assert excinfo.value.field_errors == {
        "page": ["Page must be at least 1."],
        "per_page": ["Per page must be between 1 and 100."],
    }


def test_store_failure_is_reported_as_internal_error(service, admin_context, repository, monkeypatch):
    def broken(**kwargs):
        raise OSError("connection reset")

    monkeypatch.setattr(repository, "list_accounts", broken)

    with pytest.raises(InternalError) as excinfo:
        service.list_accounts(admin_context)

    assert "connection reset" not in excinfo.value.message
