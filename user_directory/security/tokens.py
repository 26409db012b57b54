"""Utilities for minting opaque session tokens."""

from __future__ import annotations

import hashlib
import secrets


def generate_session_token() -> tuple[str, str]:
    """Generate a bearer token string and the SHA-256 hash stored in its place.

    Returns
    -------
    tuple[str, str]
        The raw token handed to the client once, and its hex digest.
    """
    token = secrets.token_urlsafe(48)
    return token, hash_session_token(token)


def hash_session_token(token: str) -> str:
    """Return the SHA-256 hex digest for a session token string."""
    return hashlib.sha256(token.encode("utf-8")).hexdigest()
