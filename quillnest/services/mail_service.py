"""
Quillnest Backend — Mail Port (Abstract Interface + SendGrid + Console)
=========================================================================

What:  Sends transactional email (verification links, password reset links).
How:   SendGridMailService pushes the blocking SDK call through an
       UpstreamCaller. ConsoleMailService writes the message to the log and
       is used whenever no SENDGRID_API_KEY is configured.
Who:   AuthService (signup, verify re-send, forgot-password).

Failure Semantics:
    SendGrid 4xx (bad key, rejected sender)  → UpstreamServiceError (permanent)
    SendGrid 429 / 5xx / transport errors    → UpstreamUnavailableError (retried)
    Callers decide whether a failed send aborts their flow.
"""

import html
import logging
from abc import ABC, abstractmethod
from typing import Optional, Tuple

from python_http_client.exceptions import HTTPError
from sendgrid import SendGridAPIClient
from sendgrid.helpers.mail import Mail

from quillnest.exceptions import UpstreamServiceError, UpstreamUnavailableError
from quillnest.services.resilience import CircuitBreaker, UpstreamCaller

logger = logging.getLogger(__name__)


class MailService(ABC):
    """Abstract base class for outgoing mail."""

    name = "mail"
    circuit_breaker: Optional[CircuitBreaker] = None

    @abstractmethod
    async def send(self, to: str, subject: str, html_body: str) -> None:
        """Deliver one HTML message or raise an UpstreamServiceError."""
        ...

    @property
    def circuit_state(self) -> str:
        if self.circuit_breaker is None:
            return CircuitBreaker.CLOSED
        return self.circuit_breaker.state


def map_sendgrid_error(exc: Exception) -> UpstreamServiceError:
    status = getattr(exc, "status_code", None) if isinstance(exc, HTTPError) else None
    if isinstance(exc, OSError) or (status is not None and (status == 429 or status >= 500)):
        return UpstreamUnavailableError(
            message="The mail service is temporarily unavailable.",
            service="mail",
            context={"error_type": type(exc).__name__, "status": status},
        )
    return UpstreamServiceError(
        message="The mail service rejected the message.",
        service="mail",
        context={"error_type": type(exc).__name__, "status": status},
    )


class SendGridMailService(MailService):
    def __init__(self, api_key: str, sender: str, caller: UpstreamCaller):
        self.client = SendGridAPIClient(api_key)
        self.sender = sender
        self.caller = caller
        self.circuit_breaker = caller.breaker

    @classmethod
    def from_settings(cls, settings) -> "SendGridMailService":
        return cls(
            api_key=settings.sendgrid_api_key,
            sender=settings.mail_from,
            caller=UpstreamCaller.from_settings("mail", map_sendgrid_error, settings),
        )

    async def send(self, to: str, subject: str, html_body: str) -> None:
        message = Mail(
            from_email=self.sender,
            to_emails=to,
            subject=subject,
            html_content=html_body,
        )
        response = await self.caller.call("send", self.client.send, message)
        logger.info("Mail '%s' accepted by SendGrid (status=%s)", subject, response.status_code)


class ConsoleMailService(MailService):
    """
    Development mailer: logs the message instead of sending it.

    Bodies carry live verification and reset links, so they are only logged
    at DEBUG.
    """

    async def send(self, to: str, subject: str, html_body: str) -> None:
        logger.info("Mail (not sent, no provider configured) to=%s subject=%s", to, subject)
        logger.debug("Body of unsent mail to %s:\n%s", to, html_body)


# ══════════════════════════════════════════════════════════════════════════
# Message Builders
# ══════════════════════════════════════════════════════════════════════════

def build_verification_email(
    username: str,
    link: str,
    valid_minutes: int = 30,
    resent: bool = False,
) -> Tuple[str, str]:
    subject = "Verify your Quillnest account"
    intro = (
        "Your previous verification link expired. Here is a new one."
        if resent
        else "Thanks for signing up. Please confirm your email address."
    )
    body = (
        f"<p>Hi {html.escape(username)},</p>"
        f"<p>{intro}</p>"
        f'<p><a href="{html.escape(link, quote=True)}">Verify my email</a></p>'
        f"<p>The link is valid for {valid_minutes} minutes.</p>"
    )
    return subject, body


def build_reset_email(username: str, link: str, valid_minutes: int = 15) -> Tuple[str, str]:
    subject = "Reset your Quillnest password"
    body = (
        f"<p>Hi {html.escape(username)},</p>"
        "<p>We received a request to reset your password.</p>"
        f'<p><a href="{html.escape(link, quote=True)}">Choose a new password</a></p>'
        f"<p>The link is valid for {valid_minutes} minutes. "
        "If you did not ask for this, ignore this email.</p>"
    )
    return subject, body
