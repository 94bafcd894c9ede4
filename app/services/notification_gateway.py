"""Outbound message delivery over email, SMS and WhatsApp.

``NotificationGateway.send`` never raises for delivery problems: transport
errors, provider rejections and timeouts all come back as a failed
``DeliveryResult`` so callers can record them per channel.
"""
from __future__ import annotations

import asyncio
import logging
import re
import smtplib
import uuid
from dataclasses import dataclass
from email.message import EmailMessage

import httpx

from app.config import settings
from app.models.policy import Channel

logger = logging.getLogger(__name__)

TWILIO_API_URL = "https://api.twilio.com/2010-04-01/Accounts/{sid}/Messages.json"
WHATSAPP_API_URL = "https://graph.facebook.com/{version}/{phone_id}/messages"


class NotificationError(Exception):
    """Raised by a channel sender when delivery fails."""


@dataclass
class DeliveryResult:
    success: bool
    message_id: str | None = None
    error: str | None = None


def _send_email_sync(to: str, subject: str, text: str, html: str | None) -> str:
    sender = settings.SMTP_FROM or settings.SMTP_USER
    msg = EmailMessage()
    msg["From"] = sender
    msg["To"] = to
    msg["Subject"] = subject
    msg.set_content(text)
    if html:
        msg.add_alternative(html, subtype="html")
    message_id = f"<{uuid.uuid4().hex}@renewals>"
    msg["Message-ID"] = message_id

    with smtplib.SMTP(settings.SMTP_HOST, settings.SMTP_PORT, timeout=settings.NOTIFY_TIMEOUT) as server:
        server.starttls()
        if settings.SMTP_USER:
            server.login(settings.SMTP_USER, settings.SMTP_PASS)
        server.send_message(msg)
    return message_id


async def send_email(to: str, subject: str, text: str, html: str | None = None) -> str:
    try:
        return await asyncio.to_thread(_send_email_sync, to, subject, text, html)
    except (smtplib.SMTPException, OSError) as e:
        raise NotificationError(f"Email sending failed: {e}") from e


def _json_body(resp: httpx.Response) -> dict:
    """Provider reply as a dict; an accepted request with a non-JSON body yields {}."""
    try:
        data = resp.json()
    except ValueError:
        logger.warning("Non-JSON %s reply from %s", resp.status_code, resp.request.url)
        return {}
    return data if isinstance(data, dict) else {}


async def send_sms(to: str, body: str) -> str:
    sid = settings.TWILIO_ACCOUNT_SID
    token = settings.TWILIO_AUTH_TOKEN
    if not sid or not token:
        raise NotificationError("Twilio credentials not configured")

    try:
        async with httpx.AsyncClient(timeout=settings.NOTIFY_TIMEOUT) as client:
            resp = await client.post(
                TWILIO_API_URL.format(sid=sid),
                data={"To": to, "From": settings.TWILIO_PHONE_NUMBER, "Body": body},
                auth=(sid, token),
            )
            resp.raise_for_status()
            return _json_body(resp).get("sid", "")
    except httpx.HTTPStatusError as e:
        raise NotificationError(
            f"SMS sending failed: HTTP {e.response.status_code}: {e.response.text}"
        ) from e
    except httpx.RequestError as e:
        raise NotificationError(f"SMS sending failed: {e}") from e


async def send_whatsapp(to: str, body: str) -> str:
    phone_id = settings.WHATSAPP_PHONE_NUMBER_ID
    token = settings.WHATSAPP_TOKEN
    if not phone_id or not token:
        raise NotificationError("WhatsApp Business API credentials not configured")

    payload = {
        "messaging_product": "whatsapp",
        "to": re.sub(r"[\s\-+]", "", to),
        "type": "text",
        "text": {"body": body},
    }
    url = WHATSAPP_API_URL.format(version=settings.WHATSAPP_API_VERSION, phone_id=phone_id)
    try:
        async with httpx.AsyncClient(timeout=settings.NOTIFY_TIMEOUT) as client:
            resp = await client.post(
                url, json=payload, headers={"Authorization": f"Bearer {token}"}
            )
            resp.raise_for_status()
            messages = _json_body(resp).get("messages") or [{}]
            return messages[0].get("id", "")
    except httpx.HTTPStatusError as e:
        raise NotificationError(
            f"WhatsApp sending failed: HTTP {e.response.status_code}: {e.response.text}"
        ) from e
    except httpx.RequestError as e:
        raise NotificationError(f"WhatsApp sending failed: {e}") from e


class NotificationGateway:
    def __init__(self, *, timeout: float | None = None, dry_run: bool | None = None) -> None:
        self.timeout = timeout if timeout is not None else settings.NOTIFY_TIMEOUT
        self.dry_run = settings.NOTIFY_DRY_RUN if dry_run is None else dry_run

    async def send(
        self,
        channel: Channel,
        recipient: str,
        subject: str,
        body: str,
        html: str | None = None,
    ) -> DeliveryResult:
        channel = Channel(channel)
        if self.dry_run:
            logger.info("[dry-run] %s to %s: %s", channel.value, recipient, subject)
            return DeliveryResult(success=True, message_id=f"dry-run-{uuid.uuid4().hex[:12]}")

        try:
            message_id = await asyncio.wait_for(
                self._dispatch(channel, recipient, subject, body, html),
                timeout=self.timeout,
            )
        except asyncio.TimeoutError:
            logger.warning("%s delivery to %s timed out after %.0fs", channel.value, recipient, self.timeout)
            return DeliveryResult(success=False, error=f"Timed out after {self.timeout:.0f}s")
        except NotificationError as e:
            logger.warning("%s delivery to %s failed: %s", channel.value, recipient, e)
            return DeliveryResult(success=False, error=str(e))
        except Exception as e:
            logger.exception("%s delivery to %s raised: %s", channel.value, recipient, e)
            return DeliveryResult(success=False, error=str(e) or type(e).__name__)
        return DeliveryResult(success=True, message_id=message_id)

    async def _dispatch(
        self,
        channel: Channel,
        recipient: str,
        subject: str,
        body: str,
        html: str | None,
    ) -> str:
        if channel == Channel.EMAIL:
            return await send_email(recipient, subject, body, html)
        if channel == Channel.SMS:
            return await send_sms(recipient, body)
        return await send_whatsapp(recipient, body)


_gateway: NotificationGateway | None = None


def get_notification_gateway() -> NotificationGateway:
    global _gateway
    if _gateway is None:
        _gateway = NotificationGateway()
    return _gateway
