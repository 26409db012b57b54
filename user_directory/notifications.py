"""Credential email delivery.

The lifecycle service never lets a delivery problem undo an account: sends
run on a worker thread bounded by a timeout and report a :class:`DeliveryOutcome`
instead of raising.
"""

from __future__ import annotations

import logging
import smtplib
from concurrent.futures import ThreadPoolExecutor, TimeoutError as FutureTimeoutError
from dataclasses import dataclass
from email.message import EmailMessage
from typing import Protocol

from .config import Settings
from .domain.account import Account

logger = logging.getLogger(__name__)

_executor = ThreadPoolExecutor(max_workers=4, thread_name_prefix="notifier")


class Notifier(Protocol):
    def send_credentials(self, account: Account, plaintext_password: str) -> None: ...


@dataclass(frozen=True, slots=True)
class DeliveryOutcome:
    delivered: bool
    error: str | None = None


def render_credentials_email(account: Account, plaintext_password: str, *, login_url: str) -> tuple[str, str]:
    """Return ``(subject, body)`` for the welcome email carrying initial credentials."""
    subject = "Your account credentials"
    body = (
        f"Hello {account.full_name},\n\n"
        "An account has been created for you in the user directory.\n\n"
        f"Email: {account.email}\n"
        f"Password: {plaintext_password}\n"
        f"Role: {account.role.label}\n\n"
        f"Sign in at {login_url} and change your password after your first login.\n"
    )
    return subject, body


class SmtpNotifier:
    """Send credential emails through an SMTP relay."""

    def __init__(
        self,
        *,
        host: str,
        port: int,
        sender: str,
        login_url: str,
        username: str = "",
        password: str = "",
        starttls: bool = True,
        timeout: float = 10.0,
    ) -> None:
        self._host = host
        self._port = port
        self._sender = sender
        self._login_url = login_url
        self._username = username
        self._password = password
        self._starttls = starttls
        self._timeout = timeout

    @classmethod
    def from_settings(cls, settings: Settings) -> "SmtpNotifier":
        return cls(
            host=settings.smtp_host,
            port=settings.smtp_port,
            sender=settings.mail_from,
            login_url=settings.login_url,
            username=settings.smtp_username,
            password=settings.smtp_password,
            starttls=settings.smtp_starttls,
            timeout=settings.notification_timeout_seconds,
        )

    def send_credentials(self, account: Account, plaintext_password: str) -> None:
        subject, body = render_credentials_email(account, plaintext_password, login_url=self._login_url)
        message = EmailMessage()
        message["From"] = self._sender
        message["To"] = account.email
        message["Subject"] = subject
        message.set_content(body)

        with smtplib.SMTP(self._host, self._port, timeout=self._timeout) as server:
            if self._starttls:
                server.starttls()
            if self._username:
                server.login(self._username, self._password)
            server.send_message(message)
        logger.info("credentials email sent", extra={"account_id": account.id})


def deliver_with_timeout(
    notifier: Notifier,
    account: Account,
    plaintext_password: str,
    *,
    timeout: float,
) -> DeliveryOutcome:
    """Run ``notifier.send_credentials`` bounded by ``timeout`` seconds.

    A timeout is reported exactly like a delivery exception. The worker may
    keep running in the background; its result is ignored.
    """
    future = _executor.submit(notifier.send_credentials, account, plaintext_password)
    try:
        future.result(timeout=timeout)
    except FutureTimeoutError:
        future.cancel()
        logger.error(
            "credentials email timed out",
            extra={"account_id": account.id, "timeout": timeout},
        )
        return DeliveryOutcome(False, f"delivery timed out after {timeout:g}s")
    except Exception as exc:
        logger.error(
            "failed to send credentials email",
            extra={"account_id": account.id, "error": str(exc)},
        )
        return DeliveryOutcome(False, str(exc))
    return DeliveryOutcome(True)
