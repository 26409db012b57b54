"""Declarative field validation for account payloads.

A :class:`Ruleset` is a tuple of :class:`FieldSpec` declarations. Each field is
sanitised first and every rule then runs against the sanitised value, so the
value that passes validation is exactly the value that gets stored. Errors for
all fields are collected before anything is reported.

Rules come in three tiers per field:

``rules``
    Always evaluated once the field is present and of the right type.
``deferred``
    Evaluated only when ``rules`` produced no message (e.g. the remote
    compromised-password lookup).
``unique``
    Store lookups whose failures are conflicts rather than format problems.
"""

from __future__ import annotations

import re
from dataclasses import dataclass, field
from typing import Any, Callable, Mapping, Optional

from email_validator import EmailNotValidError, validate_email

from ..security.denylist import PasswordDenylist
from .account import parse_role
from .contracts import AccountStore
from .errors import DuplicateEmailError, ValidationFailedError

_CONTROL_CHARS = re.compile(r"[\x00-\x1F\x7F]")
_WHITESPACE_RUN = re.compile(r"\s+")
_NAME_CHARS = re.compile(r"^(?:[^\W\d_]|[\s'\-])+$")
_NAME_REPEATS = re.compile(r"\s{2,}|[-']{2,}")
_EMAIL_SHAPE = re.compile(r"^[a-zA-Z0-9._%+-]+@[a-zA-Z0-9.-]+\.[a-zA-Z]{2,}$")

NAME_MIN, NAME_MAX = 2, 255
EMAIL_MAX = 255
PASSWORD_MIN, PASSWORD_MAX = 8, 255
SEARCH_MAX = 255
PER_PAGE_MIN, PER_PAGE_MAX, PER_PAGE_DEFAULT = 1, 100, 15


@dataclass(frozen=True, slots=True)
class RuleContext:
    data: Mapping[str, Any]
    record_id: int | None = None


Rule = Callable[[Any, RuleContext], Optional[str]]


@dataclass(frozen=True)
class FieldSpec:
    """Declaration of one input field."""

    name: str
    label: str
    required: bool = False
    required_with: str | None = None
    aliases: tuple[str, ...] = ()
    sanitize: Callable[[str], str] | None = None
    rules: tuple[Rule, ...] = ()
    deferred: tuple[Rule, ...] = ()
    unique: tuple[Rule, ...] = ()
    transform: Callable[[Any], Any] | None = None
    exclude: bool = False
    blank_is_absent: bool = False

    def read(self, payload: Mapping[str, Any]) -> tuple[bool, Any]:
        for key in (self.name, *self.aliases):
            if key in payload:
                return True, payload[key]
        return False, None


@dataclass(frozen=True)
class Ruleset:
    name: str
    fields: tuple[FieldSpec, ...]
    checks: tuple[Callable[[Mapping[str, Any]], Optional[tuple[str, str]]], ...] = ()


@dataclass(slots=True)
class ValidationResult:
    data: dict[str, Any] = field(default_factory=dict)
    errors: dict[str, list[str]] = field(default_factory=dict)
    conflicts: dict[str, list[str]] = field(default_factory=dict)

    @property
    def valid(self) -> bool:
        return not self.errors and not self.conflicts

    def add(self, name: str, message: str) -> None:
        self.errors.setdefault(name, []).append(message)

    def raise_for_errors(self) -> dict[str, Any]:
        """Return the sanitised payload or raise the matching business error.

        Conflicts alone surface as ``DuplicateEmailError``; mixed with other
        problems they join the field error map so every problem is reported.
        """
        if self.errors:
            merged = {name: list(messages) for name, messages in self.errors.items()}
            for name, messages in self.conflicts.items():
                merged.setdefault(name, []).extend(messages)
            raise ValidationFailedError(merged, "The given data was invalid.")
        if self.conflicts:
            raise DuplicateEmailError(details={"fields": dict(self.conflicts)})
        return self.data


# sanitisers ---------------------------------------------------------------


def _capitalize(part: str) -> str:
    return part[:1].upper() + part[1:]


def sanitize_name(value: str) -> str:
    """Collapse whitespace and upper-case the first letter of each word.

    Hyphenated parts count as words; the remaining letters keep their case.
    """
    value = _CONTROL_CHARS.sub("", value)
    value = _WHITESPACE_RUN.sub(" ", value.strip())
    return " ".join(
        "-".join(_capitalize(part) for part in word.split("-")) for word in value.split(" ")
    )


def sanitize_email(value: str) -> str:
    return _CONTROL_CHARS.sub("", value).strip().lower()


def sanitize_text(value: str) -> str:
    return _CONTROL_CHARS.sub("", value).strip()


# rule factories -----------------------------------------------------------


def min_length(limit: int, message: str) -> Rule:
    return lambda value, _: message if len(value) < limit else None


def max_length(limit: int, message: str) -> Rule:
    return lambda value, _: message if len(value) > limit else None


def matches(pattern: re.Pattern[str], message: str) -> Rule:
    return lambda value, _: None if pattern.search(value) else message


def not_matches(pattern: re.Pattern[str], message: str) -> Rule:
    return lambda value, _: message if pattern.search(value) else None


def email_format(message: str) -> Rule:
    def rule(value: str, _: RuleContext) -> str | None:
        if not _EMAIL_SHAPE.match(value):
            return message
        try:
            validate_email(value, check_deliverability=False)
        except EmailNotValidError:
            return message
        return None

    return rule


def character_classes(value: str, _: RuleContext) -> str | None:
    if not (any(ch.islower() for ch in value) and any(ch.isupper() for ch in value)):
        return "Password must contain at least one uppercase and one lowercase letter."
    return None


def contains_digit(value: str, _: RuleContext) -> str | None:
    return None if any(ch.isdigit() for ch in value) else "Password must contain at least one number."


def contains_symbol(value: str, _: RuleContext) -> str | None:
    return None if any(not ch.isalnum() for ch in value) else "Password must contain at least one symbol."


def not_compromised(denylist: PasswordDenylist) -> Rule:
    def rule(value: str, _: RuleContext) -> str | None:
        if denylist.is_compromised(value):
            return "The given password has appeared in a data leak. Please choose a different password."
        return None

    return rule


def known_role(value: str, _: RuleContext) -> str | None:
    if parse_role(value) is None:
        return "Please select a valid user role (Administrator or Reviewer)."
    return None


def unique_email(store: AccountStore, *, exclude_self: bool) -> Rule:
    """Uniqueness among live rows; updates also skip the record being edited."""

    def rule(value: str, context: RuleContext) -> str | None:
        exclude_id = context.record_id if exclude_self else None
        if store.find_active_by_email(value, exclude_id=exclude_id) is not None:
            return "This email address is already registered."
        return None

    return rule


def confirmed(name: str, confirmation: str) -> Callable[[Mapping[str, Any]], Optional[tuple[str, str]]]:
    """Cross-field check: ``confirmation`` must equal ``name`` exactly when ``name`` is set."""

    def check(data: Mapping[str, Any]) -> Optional[tuple[str, str]]:
        if name not in data or confirmation not in data:
            return None
        if data[name] != data[confirmation]:
            return name, "Password confirmation does not match."
        return None

    return check


# field builders -----------------------------------------------------------


def name_field(name: str, label: str, *, required: bool, aliases: tuple[str, ...] = ()) -> FieldSpec:
    return FieldSpec(
        name=name,
        label=label,
        required=required,
        aliases=aliases,
        sanitize=sanitize_name,
        rules=(
            min_length(NAME_MIN, f"{label} must be at least {NAME_MIN} characters long."),
            max_length(NAME_MAX, f"{label} must not exceed {NAME_MAX} characters."),
            matches(_NAME_CHARS, f"{label} can only contain letters, spaces, hyphens and apostrophes."),
            not_matches(_NAME_REPEATS, f"{label} must not contain repeated spaces, hyphens or apostrophes."),
        ),
    )


def email_field(*, required: bool, unique: tuple[Rule, ...] = ()) -> FieldSpec:
    return FieldSpec(
        name="email",
        label="Email address",
        required=required,
        sanitize=sanitize_email,
        rules=(
            max_length(EMAIL_MAX, f"Email address must not exceed {EMAIL_MAX} characters."),
            email_format("Please provide a valid email address."),
        ),
        unique=unique,
    )


def password_field(denylist: PasswordDenylist, *, required: bool) -> FieldSpec:
    return FieldSpec(
        name="password",
        label="Password",
        required=required,
        rules=(
            min_length(PASSWORD_MIN, f"Password must be at least {PASSWORD_MIN} characters long."),
            max_length(PASSWORD_MAX, f"Password must not exceed {PASSWORD_MAX} characters."),
            character_classes,
            contains_digit,
            contains_symbol,
        ),
        deferred=(not_compromised(denylist),),
    )


def confirmation_field(*, required: bool) -> FieldSpec:
    return FieldSpec(
        name="password_confirmation",
        label="Password confirmation",
        required=required,
        required_with=None if required else "password",
        aliases=("passwordConfirmation",),
        exclude=True,
    )


def role_field(*, required: bool) -> FieldSpec:
    return FieldSpec(
        name="role",
        label="User role",
        required=required,
        sanitize=sanitize_text,
        rules=(known_role,),
        transform=parse_role,
    )


def create_account_rules(store: AccountStore, denylist: PasswordDenylist) -> Ruleset:
    return Ruleset(
        name="create_account",
        fields=(
            name_field("first_name", "First name", required=True, aliases=("firstName",)),
            name_field("last_name", "Last name", required=True, aliases=("lastName",)),
            email_field(required=True, unique=(unique_email(store, exclude_self=False),)),
            password_field(denylist, required=True),
            confirmation_field(required=True),
            role_field(required=True),
        ),
        checks=(confirmed("password", "password_confirmation"),),
    )


def update_account_rules(store: AccountStore, denylist: PasswordDenylist) -> Ruleset:
    return Ruleset(
        name="update_account",
        fields=(
            name_field("first_name", "First name", required=False, aliases=("firstName",)),
            name_field("last_name", "Last name", required=False, aliases=("lastName",)),
            email_field(required=False, unique=(unique_email(store, exclude_self=True),)),
            password_field(denylist, required=False),
            confirmation_field(required=False),
            role_field(required=False),
        ),
        checks=(confirmed("password", "password_confirmation"),),
    )


LOGIN_RULES = Ruleset(
    name="login",
    fields=(
        FieldSpec(
            name="email",
            label="Email address",
            required=True,
            sanitize=sanitize_email,
            rules=(email_format("Please provide a valid email address."),),
        ),
        FieldSpec(name="password", label="Password", required=True),
    ),
)


LIST_RULES = Ruleset(
    name="list_accounts",
    fields=(
        FieldSpec(
            name="search",
            label="Search",
            blank_is_absent=True,
            sanitize=sanitize_text,
            rules=(max_length(SEARCH_MAX, f"Search must not exceed {SEARCH_MAX} characters."),),
        ),
        FieldSpec(
            name="role",
            label="Role",
            blank_is_absent=True,
            sanitize=sanitize_text,
            rules=(known_role,),
            transform=parse_role,
        ),
    ),
)


class InputValidator:
    """Run rulesets against raw payloads and collect every field error."""

    def __init__(self, store: AccountStore, denylist: PasswordDenylist) -> None:
        self.create_rules = create_account_rules(store, denylist)
        self.update_rules = update_account_rules(store, denylist)
        self.login_rules = LOGIN_RULES
        self.list_rules = LIST_RULES

    def validate(
        self,
        payload: Mapping[str, Any] | None,
        ruleset: Ruleset,
        *,
        record_id: int | None = None,
    ) -> ValidationResult:
        result = ValidationResult()
        if payload is not None and not isinstance(payload, Mapping):
            result.add("payload", "The request body must be a JSON object.")
            return result
        payload = payload or {}

        sanitized: dict[str, Any] = {}
        present: set[str] = set()
        for spec in ruleset.fields:
            found, value = spec.read(payload)
            if not found or value is None or value == "":
                continue
            if not isinstance(value, str):
                result.add(spec.name, f"{spec.label} must be a valid text.")
                present.add(spec.name)
                continue
            if spec.sanitize is not None:
                value = spec.sanitize(value)
            present.add(spec.name)
            if value != "":
                sanitized[spec.name] = value

        context = RuleContext(sanitized, record_id)
        for spec in ruleset.fields:
            self._validate_field(spec, payload, sanitized, present, context, result)

        for check in ruleset.checks:
            failure = check(sanitized)
            if failure:
                result.add(*failure)

        for spec in ruleset.fields:
            if spec.exclude or spec.name not in sanitized or spec.name in result.errors:
                continue
            value = sanitized[spec.name]
            result.data[spec.name] = spec.transform(value) if spec.transform else value
        return result

    def _validate_field(
        self,
        spec: FieldSpec,
        payload: Mapping[str, Any],
        sanitized: dict[str, Any],
        present: set[str],
        context: RuleContext,
        result: ValidationResult,
    ) -> None:
        if spec.name in result.errors:
            return
        if spec.name not in sanitized:
            found, _ = spec.read(payload)
            if spec.required or (found and not spec.blank_is_absent):
                result.add(spec.name, f"{spec.label} is required.")
            elif spec.required_with and spec.required_with in present:
                result.add(
                    spec.name,
                    f"{spec.label} is required when setting a {spec.required_with.replace('_', ' ')}.",
                )
            return

        value = sanitized[spec.name]
        messages = [message for rule in spec.rules if (message := rule(value, context))]
        if not messages:
            messages = [message for rule in spec.deferred if (message := rule(value, context))]
        for message in messages:
            result.add(spec.name, message)
        if messages:
            return
        for rule in spec.unique:
            message = rule(value, context)
            if message:
                result.conflicts.setdefault(spec.name, []).append(message)
