"""
auth/notifier.py -- Outbound email for verification and password reset links.

The service only knows the two-method Notifier protocol. SmtpNotifier is the
production implementation: it opens a fresh SMTP connection per message, so
it holds no live client between calls and is safe to share across threads.

Delivery is best-effort by contract. AuthService wraps every call, logs a
failure and carries on -- a mail outage must never block registration or leak
whether an email address exists. This module therefore just raises
NotificationError and leaves the policy to the caller.
"""

from __future__ import annotations

import logging
import smtplib
from email.message import EmailMessage
from typing import Protocol
from urllib.parse import parse_qsl, urlencode, urlsplit, urlunsplit

logger = logging.getLogger("authkeep.auth.notifier")


class NotificationError(Exception):
    """Raised when an email could not be delivered."""


class Notifier(Protocol):
    def send_verification_link(self, email: str, token: str) -> None: ...

    def send_password_reset_link(self, email: str, token: str) -> None: ...


def build_link(base_url: str, path: str, token: str) -> str:
    """Return base_url + path with ?token=... merged into any existing query."""
    split = urlsplit(base_url.rstrip("/") + path)
    query = dict(parse_qsl(split.query, keep_blank_values=True))
    query["token"] = token
    return urlunsplit((split.scheme, split.netloc, split.path, urlencode(query), split.fragment))


def build_verification_email(sender: str, recipient: str, link: str) -> EmailMessage:
    message = EmailMessage()
    message["Subject"] = "Verify your email address"
    message["From"] = sender
    message["To"] = recipient
    message.set_content(
        "Thanks for registering!\n\n"
        "Please verify your email address by opening the link below:\n"
        f"{link}\n\n"
        "This link expires in 24 hours. If you did not create an account, ignore this email."
    )
    message.add_alternative(
        "<p>Thanks for registering!</p>"
        "<p>Please verify your email address by clicking the button below.</p>"
        f'<p><a href="{link}">Verify email</a></p>'
        "<p>This link expires in 24 hours. If you did not create an account, ignore this email.</p>",
        subtype="html",
    )
    return message


def build_password_reset_email(sender: str, recipient: str, link: str) -> EmailMessage:
    message = EmailMessage()
    message["Subject"] = "Reset your password"
    message["From"] = sender
    message["To"] = recipient
    message.set_content(
        "You asked to reset your password.\n\n"
        "Open the link below to choose a new one:\n"
        f"{link}\n\n"
        "This link expires in 1 hour. If you did not request this, ignore this email."
    )
    message.add_alternative(
        "<p>You asked to reset your password.</p>"
        f'<p><a href="{link}">Reset password</a></p>'
        "<p>This link expires in 1 hour. If you did not request this, ignore this email.</p>",
        subtype="html",
    )
    return message


class SmtpNotifier:
    """Sends link emails through an SMTP relay configured in Settings."""

    def __init__(
        self,
        client_url: str,
        sender: str,
        host: str,
        port: int,
        username: str = "",
        password: str = "",
        use_tls: bool = True,
    ) -> None:
        self.client_url = client_url
        self.sender = sender
        self.host = host
        self.port = port
        self.username = username
        self.password = password
        self.use_tls = use_tls

    def send_verification_link(self, email: str, token: str) -> None:
        link = build_link(self.client_url, "/verify-email", token)
        self._send(build_verification_email(self.sender, email, link))

    def send_password_reset_link(self, email: str, token: str) -> None:
        link = build_link(self.client_url, "/reset-password", token)
        self._send(build_password_reset_email(self.sender, email, link))

    def _send(self, message: EmailMessage) -> None:
        try:
            with smtplib.SMTP(host=self.host, port=self.port, timeout=10) as smtp:
                if self.use_tls:
                    smtp.starttls()
                if self.username and self.password:
                    smtp.login(self.username, self.password)
                smtp.send_message(message)
        except (smtplib.SMTPException, OSError) as exc:
            raise NotificationError(f"Failed to send '{message['Subject']}'") from exc
        logger.info("Sent '%s' email", message["Subject"])
