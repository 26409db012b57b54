"""User lifecycle service orchestrating validation, persistence, notification and auditing."""

from __future__ import annotations

import logging
from contextlib import contextmanager
from dataclasses import dataclass
from typing import Any, Iterator, Mapping

from ..metrics import EMAIL_DELIVERY_FAILURES
from ..notifications import Notifier, deliver_with_timeout
from ..security.passwords import BcryptHasher
from .account import Account, AccountLookup
from .authorization import ADMIN_ONLY, ANY_ROLE, RoleAuthorizer
from .contracts import (
    AccountStore,
    CreateAccountInput,
    NewAccount,
    Page,
    RequestContext,
    UpdateAccountInput,
)
from .errors import (
    DirectoryError,
    ErrorDescriptor,
    InternalError,
    NoUpdateDataError,
    ResourceNotFoundError,
    ResponseMapper,
    SelfDeletionNotAllowedError,
    ValidationFailedError,
)
from .validation import PER_PAGE_DEFAULT, PER_PAGE_MAX, PER_PAGE_MIN, InputValidator

logger = logging.getLogger(__name__)


@dataclass(slots=True)
class CreateResult:
    """Created account plus an optional secondary failure from the credentials email."""

    account: Account
    email_failure: ErrorDescriptor | None = None

    @property
    def partial(self) -> bool:
        return self.email_failure is not None


class UserLifecycleService:
    """Account workflows; the only writer of the account store."""

    def __init__(
        self,
        repository: AccountStore,
        *,
        authorizer: RoleAuthorizer,
        validator: InputValidator,
        hasher: BcryptHasher,
        notifier: Notifier,
        notification_timeout: float = 10.0,
        mapper: ResponseMapper | None = None,
    ) -> None:
        """Store dependencies used to orchestrate persistence and notification."""
        self._repository = repository
        self._authorizer = authorizer
        self._validator = validator
        self._hasher = hasher
        self._notifier = notifier
        self._notification_timeout = notification_timeout
        self._mapper = mapper or ResponseMapper()

    @contextmanager
    def _guard(self, operation: str, context: RequestContext, **details: Any) -> Iterator[None]:
        """Let business errors through; log and re-map everything else to ``InternalError``."""
        try:
            yield
        except DirectoryError:
            raise
        except Exception as exc:
            logger.exception(
                "unexpected error during %s",
                operation,
                extra={"principal_id": context.principal_id, "request_id": context.request_id, **details},
            )
            raise InternalError(f"{operation} failed") from exc

    def list_accounts(
        self,
        context: RequestContext,
        query: Mapping[str, Any] | None = None,
        *,
        page: int = 1,
        per_page: int = PER_PAGE_DEFAULT,
    ) -> Page[Account]:
        """Return a page of live accounts, newest first.

        ``query`` accepts ``search`` (case-insensitive substring over full name
        and email) and ``role`` (exact role match); blank filters are ignored.
        """
        self._authorizer.enforce(context, ANY_ROLE, resource="users.list")
        bounds: dict[str, list[str]] = {}
        if page < 1:
            bounds["page"] = ["Page must be at least 1."]
        if not PER_PAGE_MIN <= per_page <= PER_PAGE_MAX:
            bounds["per_page"] = [f"Per page must be between {PER_PAGE_MIN} and {PER_PAGE_MAX}."]
        if bounds:
            raise ValidationFailedError(bounds, "The given data was invalid.")
        params = self._validator.validate(query, self._validator.list_rules).raise_for_errors()

        with self._guard("list_accounts", context, page=page, per_page=per_page):
            items, total = self._repository.list_accounts(
                offset=(page - 1) * per_page,
                limit=per_page,
                search=params.get("search"),
                role=params.get("role"),
            )
        return Page(items=items, total=total, page=page, per_page=per_page)

    def create_account(self, context: RequestContext, payload: Mapping[str, Any] | None) -> CreateResult:
        """Validate, persist and announce a new account.

        Email delivery is best effort: a failure is returned as
        ``CreateResult.email_failure`` next to the committed account.
        """
        self._authorizer.enforce(context, ADMIN_ONLY, resource="users.create")

        with self._guard("create_account", context):
            data = CreateAccountInput.from_payload(
                self._validator.validate(payload, self._validator.create_rules).raise_for_errors()
            )
            account = self._repository.insert_account(
                NewAccount(
                    first_name=data.first_name,
                    last_name=data.last_name,
                    email=data.email,
                    credential_hash=self._hasher.hash(data.password),
                    role=data.role,
                )
            )
            self._repository.write_audit_event(
                account_id=account.id,
                event_type="account.created",
                actor=context.principal_id,
                metadata={"email": account.email, "role": account.role.value},
            )

        outcome = deliver_with_timeout(
            self._notifier, account, data.password, timeout=self._notification_timeout
        )
        if outcome.delivered:
            logger.info(
                "user created and credentials email sent",
                extra={"created_by": context.principal_id, "account_id": account.id},
            )
            return CreateResult(account)

        EMAIL_DELIVERY_FAILURES.inc()
        logger.warning(
            "user created but credentials email failed",
            extra={"created_by": context.principal_id, "account_id": account.id, "error": outcome.error},
        )
        try:
            self._repository.write_audit_event(
                account_id=account.id,
                event_type="account.credentials_email_failed",
                actor=context.principal_id,
                metadata={"error": outcome.error},
            )
        except Exception:
            # account is already committed
            logger.exception("failed to audit credentials email failure", extra={"account_id": account.id})
        return CreateResult(
            account,
            self._mapper.email_delivery_failed(recipient=account.email),
        )

    def update_account(
        self, context: RequestContext, account_id: int, payload: Mapping[str, Any] | None
    ) -> Account:
        """Rewrite only the provided fields of a live account."""
        self._authorizer.enforce(context, ADMIN_ONLY, resource="users.update")

        with self._guard("update_account", context, account_id=account_id):
            lookup = self.find_including_deleted(account_id)
            self._require_active(context, lookup, account_id, "update")

            data = UpdateAccountInput.from_payload(
                self._validator.validate(
                    payload, self._validator.update_rules, record_id=account_id
                ).raise_for_errors()
            )
            provided = data.provided()
            if not provided:
                raise NoUpdateDataError()

            changes: dict[str, Any] = {
                name: getattr(data, name) for name in provided if name != "password"
            }
            if data.password is not None:
                changes["credential_hash"] = self._hasher.hash(data.password)

            updated = self._repository.update_account(account_id, changes)
            if updated is None:
                raise ResourceNotFoundError("User not found or has been deleted", reason="deleted")
            self._repository.write_audit_event(
                account_id=account_id,
                event_type="account.updated",
                actor=context.principal_id,
                metadata={"fields": sorted(provided)},
            )

        logger.info(
            "user updated",
            extra={"updated_by": context.principal_id, "account_id": account_id, "fields": sorted(provided)},
        )
        return updated

    def delete_account(self, context: RequestContext, account_id: int) -> Account:
        """Soft-delete a live account and revoke its sessions; never the caller's own."""
        if context.principal_id is not None and context.principal_id == account_id:
            self._repository.write_audit_event(
                account_id=account_id,
                event_type="account.self_deletion_rejected",
                actor=context.principal_id,
                metadata={"request_id": context.request_id},
            )
            raise SelfDeletionNotAllowedError()
        self._authorizer.enforce(context, ADMIN_ONLY, resource="users.delete")

        with self._guard("delete_account", context, account_id=account_id):
            lookup = self.find_including_deleted(account_id)
            self._require_active(context, lookup, account_id, "delete")

            deleted = self._repository.soft_delete_account(account_id)
            if deleted is None:
                raise ResourceNotFoundError(
                    "User not found or has already been deleted", reason="deleted"
                )
            self._repository.write_audit_event(
                account_id=account_id,
                event_type="account.deleted",
                actor=context.principal_id,
                metadata={"email": deleted.email},
            )

        logger.info(
            "user deleted",
            extra={"deleted_by": context.principal_id, "account_id": account_id},
        )
        return deleted

    def find_including_deleted(self, account_id: int) -> AccountLookup:
        """Look an account up by id, soft-deleted rows included."""
        return AccountLookup.of(self._repository.get_account(account_id))

    def _require_active(
        self,
        context: RequestContext,
        lookup: AccountLookup,
        account_id: int,
        operation: str,
    ) -> Account:
        if lookup.is_active and lookup.account is not None:
            return lookup.account

        reason = lookup.state.value
        self._repository.write_audit_event(
            account_id=account_id,
            event_type=f"account.{operation}_target_missing",
            actor=context.principal_id,
            metadata={"state": reason},
        )
        logger.info(
            "%s target not available",
            operation,
            extra={"principal_id": context.principal_id, "account_id": account_id, "state": reason},
        )
        # absent and deleted share one external message per operation
        suffix = "has already been deleted" if operation == "delete" else "has been deleted"
        raise ResourceNotFoundError(f"User not found or {suffix}", reason=reason)
