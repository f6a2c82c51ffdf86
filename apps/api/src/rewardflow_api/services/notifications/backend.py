"""Email and SMS backend implementations for notifications."""

from __future__ import annotations

import asyncio
import smtplib
from dataclasses import dataclass
from email.message import EmailMessage
from email.utils import make_msgid
from typing import List, Optional, Protocol
from uuid import uuid4

import httpx


class NotificationBackendError(Exception):
    """Provider refused or failed to accept a message."""


class SMSDeliveryError(NotificationBackendError):
    def __init__(self, message: str, *, status_code: int | None = None) -> None:
        super().__init__(message)
        self.status_code = status_code


class EmailDeliveryError(NotificationBackendError):
    pass


class EmailBackend(Protocol):
    """Minimal protocol for sending notification emails."""

    async def send_email(
        self,
        recipient: str,
        subject: str,
        body_text: str,
        *,
        body_html: str | None = None,
        reply_to: str | None = None,
    ) -> str | None:
        ...


class SMSBackend(Protocol):
    """Protocol for SMS dispatchers. Returns the provider message id."""

    async def send_sms(self, recipient: str, body_text: str) -> str:
        ...


class SMTPEmailBackend:
    """SMTP-powered backend that sends emails via standard library."""

    def __init__(
        self,
        *,
        host: str,
        port: int,
        username: Optional[str],
        password: Optional[str],
        use_tls: bool,
        sender_email: str,
        timeout_seconds: float = 10.0,
    ) -> None:
        self._host = host
        self._port = port
        self._username = username
        self._password = password
        self._use_tls = use_tls
        self._sender_email = sender_email
        self._timeout_seconds = timeout_seconds

    async def send_email(
        self,
        recipient: str,
        subject: str,
        body_text: str,
        *,
        body_html: str | None = None,
        reply_to: str | None = None,
    ) -> str | None:
        """Send email asynchronously by offloading blocking call."""

        message = _build_message(recipient, subject, body_text, body_html=body_html, reply_to=reply_to)
        message["From"] = self._sender_email
        try:
            await asyncio.to_thread(self._send, message)
        except (smtplib.SMTPException, OSError) as exc:
            raise EmailDeliveryError(str(exc) or exc.__class__.__name__) from exc
        return message["Message-ID"]

    def _send(self, message: EmailMessage) -> None:
        smtp = smtplib.SMTP(self._host, self._port, timeout=self._timeout_seconds)
        try:
            if self._use_tls:
                smtp.starttls()
            if self._username and self._password:
                smtp.login(self._username, self._password)
            smtp.send_message(message)
        finally:
            smtp.quit()


class TwilioSMSBackend:
    """Twilio Programmable Messaging over its REST API."""

    def __init__(
        self,
        *,
        account_sid: str,
        auth_token: str,
        from_number: str,
        api_base_url: str = "https://api.twilio.com/2010-04-01",
        timeout_seconds: float = 10.0,
        http_client: httpx.AsyncClient | None = None,
    ) -> None:
        self._account_sid = account_sid
        self._auth_token = auth_token
        self._from_number = from_number
        self._endpoint = f"{api_base_url.rstrip('/')}/Accounts/{account_sid}/Messages.json"
        self._timeout_seconds = timeout_seconds
        self._http_client = http_client

    async def send_sms(self, recipient: str, body_text: str) -> str:
        close_client = False
        client = self._http_client
        if client is None:
            client = httpx.AsyncClient(timeout=self._timeout_seconds)
            close_client = True

        try:
            response = await client.post(
                self._endpoint,
                data={"To": recipient, "From": self._from_number, "Body": body_text},
                auth=(self._account_sid, self._auth_token),
            )
        except httpx.TimeoutException as exc:
            raise SMSDeliveryError("SMS gateway timed out") from exc
        except httpx.RequestError as exc:
            raise SMSDeliveryError(f"SMS gateway unreachable: {exc}") from exc
        finally:
            if close_client:
                await client.aclose()

        payload = _safe_json(response)
        if response.status_code >= 400:
            detail = payload.get("message") if isinstance(payload, dict) else None
            raise SMSDeliveryError(
                detail or f"SMS gateway returned HTTP {response.status_code}",
                status_code=response.status_code,
            )
        message_id = payload.get("sid") if isinstance(payload, dict) else None
        if not message_id:
            raise SMSDeliveryError("SMS gateway response did not include a message id")
        return str(message_id)


@dataclass
class InMemoryEmailBackend:
    """Test backend storing outbound messages in memory."""

    sent_messages: List[EmailMessage]

    def __init__(self) -> None:
        self.sent_messages = []

    async def send_email(
        self,
        recipient: str,
        subject: str,
        body_text: str,
        *,
        body_html: str | None = None,
        reply_to: str | None = None,
    ) -> str | None:
        message = _build_message(recipient, subject, body_text, body_html=body_html, reply_to=reply_to)
        self.sent_messages.append(message)
        return message["Message-ID"]


@dataclass
class InMemorySMSBackend:
    """Stores SMS payloads for inspection in tests."""

    sent_messages: List[tuple[str, str]]

    def __init__(self) -> None:
        self.sent_messages = []

    async def send_sms(self, recipient: str, body_text: str) -> str:
        self.sent_messages.append((recipient, body_text))
        return f"SM{uuid4().hex}"


def _build_message(
    recipient: str,
    subject: str,
    body_text: str,
    *,
    body_html: str | None,
    reply_to: str | None,
) -> EmailMessage:
    message = EmailMessage()
    message["To"] = recipient
    message["Subject"] = subject
    message["Message-ID"] = make_msgid(domain="rewardflow.local")
    if reply_to:
        message["Reply-To"] = reply_to
    message.set_content(body_text)
    if body_html:
        message.add_alternative(body_html, subtype="html")
    return message


def _safe_json(response: httpx.Response) -> object:
    try:
        return response.json()
    except ValueError:
        return None
