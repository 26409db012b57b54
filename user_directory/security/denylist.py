"""Compromised-password checks used by the password rules."""

from __future__ import annotations

import hashlib
import logging
from typing import Iterable, Protocol

import httpx

logger = logging.getLogger(__name__)


class PasswordDenylist(Protocol):
    def is_compromised(self, password: str) -> bool: ...


class StaticDenylist:
    """In-process denylist of known-bad passwords."""

    def __init__(self, passwords: Iterable[str] = ()) -> None:
        self._digests = {self._digest(password) for password in passwords}

    @staticmethod
    def _digest(password: str) -> str:
        return hashlib.sha1(password.encode("utf-8")).hexdigest().upper()

    def is_compromised(self, password: str) -> bool:
        return self._digest(password) in self._digests


class PwnedPasswordsDenylist:
    """k-anonymity range lookup against a Pwned Passwords compatible API.

    Only the first five hex characters of the SHA-1 digest leave the process.
    Lookup failures are logged and treated as "not compromised" so an outage
    of the remote service does not block account administration.
    """

    def __init__(
        self,
        base_url: str = "https://api.pwnedpasswords.com/range/",
        *,
        timeout: float = 3.0,
        client: httpx.Client | None = None,
    ) -> None:
        self._base_url = base_url if base_url.endswith("/") else f"{base_url}/"
        self._client = client or httpx.Client(timeout=timeout, headers={"Add-Padding": "true"})

    def is_compromised(self, password: str) -> bool:
        digest = hashlib.sha1(password.encode("utf-8")).hexdigest().upper()
        prefix, suffix = digest[:5], digest[5:]
        try:
            response = self._client.get(f"{self._base_url}{prefix}")
            response.raise_for_status()
        except httpx.HTTPError as exc:
            logger.warning("pwned passwords lookup failed: %s", exc)
            return False

        for line in response.text.splitlines():
            candidate, _, count = line.strip().partition(":")
            if candidate.upper() == suffix and count.strip() not in ("", "0"):
                return True
        return False

    def close(self) -> None:
        self._client.close()
