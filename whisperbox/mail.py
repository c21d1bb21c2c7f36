"""Verification email delivery."""

from __future__ import annotations

import html
import logging
from collections import deque

import httpx

from .domain.contracts import EmailSender, SendResult

logger = logging.getLogger(__name__)

RESEND_API_URL = "https://api.resend.com/emails"
SUBJECT = "Verification Code"


def render_verification_email(username: str, code: str) -> tuple[str, str]:
    """Return the (text, html) bodies for a verification email."""
    text = (
        f"Hello {username},\n\n"
        "Thank you for registering. Please use the following verification code "
        f"to complete your registration:\n\n{code}\n\n"
        "The code expires in one hour. If you did not request this code, "
        "please ignore this email.\n"
    )
    safe_name = html.escape(username)
    body = (
        f"<p>Hello {safe_name},</p>"
        "<p>Thank you for registering. Please use the following verification code "
        "to complete your registration:</p>"
        f"<p><strong>{html.escape(code)}</strong></p>"
        "<p>The code expires in one hour. If you did not request this code, "
        "please ignore this email.</p>"
    )
    return text, body


class ResendEmailSender:
    """Send verification codes through the Resend HTTP API."""

    def __init__(
        self,
        api_key: str,
        sender: str,
        *,
        client: httpx.Client | None = None,
        timeout: float = 10.0,
    ) -> None:
        self._api_key = api_key
        self._sender = sender
        self._client = client or httpx.Client(timeout=timeout)

    def send(self, email: str, username: str, code: str) -> SendResult:
        text, body = render_verification_email(username, code)
        try:
            response = self._client.post(
                RESEND_API_URL,
                headers={"Authorization": f"Bearer {self._api_key}"},
                json={
                    "from": self._sender,
                    "to": [email],
                    "subject": SUBJECT,
                    "text": text,
                    "html": body,
                },
            )
            response.raise_for_status()
        except httpx.HTTPError as exc:
            logger.error("error sending verification email: %s", exc)
            return SendResult(success=False, message="Failed to send verification email")
        return SendResult(success=True, message="Verification email sent successfully")

    def close(self) -> None:
        self._client.close()


class LoggingEmailSender:
    """Development sender that keeps the most recent deliveries instead of sending them."""

    def __init__(self, keep: int = 100) -> None:
        self.outbox: deque[tuple[str, str, str]] = deque(maxlen=keep)

    def send(self, email: str, username: str, code: str) -> SendResult:
        self.outbox.append((email, username, code))
        logger.info("verification email for %s queued to local outbox", username)
        return SendResult(success=True, message="Verification email sent successfully")


def build_email_sender(api_key: str, sender: str) -> EmailSender:
    if api_key:
        return ResendEmailSender(api_key, sender)
    logger.warning("RESEND_API_KEY not set; verification emails will not leave this process")
    return LoggingEmailSender()
