"""
Outbound email delivery.

Invitations hand a message to an ``EmailSender`` and never block on the
result. With no Resend API key configured, messages are only logged.
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import Optional, Protocol

import httpx
import structlog

from echo_server.core.config import get_settings

log = structlog.get_logger()


@dataclass(frozen=True)
class EmailMessage:
    to: str
    subject: str
    html: str
    text: Optional[str] = None


@dataclass(frozen=True)
class EmailResult:
    success: bool
    error: Optional[str] = None
    message_id: Optional[str] = None


class EmailSender(Protocol):
    async def send(self, message: EmailMessage) -> EmailResult: ...


class LogEmailSender:
    """Development sender: records the request and reports success."""

    async def send(self, message: EmailMessage) -> EmailResult:
        log.warning("email.not_configured", to=message.to, subject=message.subject)
        return EmailResult(success=True)


class ResendEmailSender:
    """Deliver through the Resend HTTP API."""

    def __init__(
        self,
        api_key: str,
        from_address: str,
        *,
        api_url: str = "https://api.resend.com/emails",
        timeout: float = 10.0,
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ):
        self._api_key = api_key
        self._from = from_address
        self._api_url = api_url
        self._timeout = timeout
        self._transport = transport

    async def send(self, message: EmailMessage) -> EmailResult:
        payload = {
            "from": self._from,
            "to": [message.to],
            "subject": message.subject,
            "html": message.html,
        }
        if message.text:
            payload["text"] = message.text

        log.info("email.send_requested", to=message.to, subject=message.subject)
        try:
            async with httpx.AsyncClient(timeout=self._timeout, transport=self._transport) as client:
                resp = await client.post(
                    self._api_url,
                    json=payload,
                    headers={"Authorization": f"Bearer {self._api_key}"},
                )
                resp.raise_for_status()
        except httpx.HTTPStatusError as exc:
            log.error(
                "email.rejected",
                to=message.to,
                status=exc.response.status_code,
                body=exc.response.text[:200],
            )
            return EmailResult(success=False, error=f"Resend API error: {exc.response.status_code}")
        except httpx.HTTPError as exc:
            log.error("email.send_failed", to=message.to, error=str(exc))
            return EmailResult(success=False, error=str(exc))

        try:
            body = resp.json()
        except ValueError:
            log.warning("email.unreadable_response", to=message.to, status=resp.status_code)
            body = None
        message_id = body.get("id") if isinstance(body, dict) else None
        log.info("email.accepted", to=message.to, message_id=message_id)
        return EmailResult(success=True, message_id=message_id)


def get_email_sender() -> EmailSender:
    """FastAPI dependency: the configured sender."""
    settings = get_settings()
    if not settings.resend_api_key:
        return LogEmailSender()
    return ResendEmailSender(
        settings.resend_api_key,
        settings.email_from,
        api_url=settings.resend_api_url,
    )
