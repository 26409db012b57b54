"""Prometheus counters for the directory core."""

from __future__ import annotations

from prometheus_client import Counter

AUTHORIZATION_DENIALS = Counter(
    "directory_authorization_denials_total",
    "Requests denied by the role authorizer.",
    ["reason"],
)
LOGIN_FAILURES = Counter(
    "directory_login_failures_total",
    "Login attempts rejected for invalid credentials or deactivated accounts.",
    ["reason"],
)
EMAIL_DELIVERY_FAILURES = Counter(
    "directory_email_delivery_failures_total",
    "Credential emails that failed or timed out after the account was created.",
)
RATE_LIMITED = Counter(
    "directory_rate_limited_total",
    "Requests rejected by the rate gate.",
    ["bucket"],
)
