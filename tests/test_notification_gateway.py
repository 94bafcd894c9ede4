"""Tests for NotificationGateway error and timeout handling."""
import asyncio
from unittest.mock import AsyncMock, patch

import httpx
import pytest

from app.models.policy import Channel
from app.services import notification_gateway
from app.services.notification_gateway import NotificationError, NotificationGateway


@pytest.mark.asyncio
async def test_dry_run_skips_transport():
    gateway = NotificationGateway(dry_run=True)
    with patch.object(notification_gateway, "send_email", new=AsyncMock()) as send_email:
        result = await gateway.send(Channel.EMAIL, "a@example.com", "S", "B")
    assert result.success is True
    assert result.message_id.startswith("dry-run-")
    send_email.assert_not_awaited()


@pytest.mark.asyncio
async def test_email_dispatch_passes_html():
    gateway = NotificationGateway(dry_run=False)
    with patch.object(
        notification_gateway, "send_email", new=AsyncMock(return_value="<id@renewals>")
    ) as send_email:
        result = await gateway.send("email", "a@example.com", "S", "B", "<p>B</p>")
    assert result.success is True
    assert result.message_id == "<id@renewals>"
    send_email.assert_awaited_once_with("a@example.com", "S", "B", "<p>B</p>")


@pytest.mark.asyncio
async def test_transport_error_becomes_failed_result():
    gateway = NotificationGateway(dry_run=False)
    with patch.object(
        notification_gateway,
        "send_sms",
        new=AsyncMock(side_effect=NotificationError("Twilio credentials not configured")),
    ):
        result = await gateway.send(Channel.SMS, "9876543210", "S", "B")
    assert result.success is False
    assert result.error == "Twilio credentials not configured"


@pytest.mark.asyncio
async def test_timeout_becomes_failed_result():
    async def hang(*args, **kwargs):
        await asyncio.sleep(10)

    gateway = NotificationGateway(timeout=0.01, dry_run=False)
    with patch.object(notification_gateway, "send_whatsapp", new=hang):
        result = await gateway.send(Channel.WHATSAPP, "9876543210", "S", "B")
    assert result.success is False
    assert "Timed out" in result.error


@pytest.mark.asyncio
async def test_missing_whatsapp_credentials(monkeypatch):
    monkeypatch.setattr(notification_gateway.settings, "WHATSAPP_TOKEN", "")
    with pytest.raises(NotificationError):
        await notification_gateway.send_whatsapp("9876543210", "hello")


@pytest.mark.asyncio
async def test_unexpected_exception_becomes_failed_result():
    gateway = NotificationGateway(dry_run=False)
    with patch.object(
        notification_gateway,
        "send_email",
        new=AsyncMock(side_effect=ValueError("Header values may not contain linefeed")),
    ):
        result = await gateway.send(Channel.EMAIL, "a@example.com", "S\nBcc: x", "B")
    assert result.success is False
    assert result.error == "Header values may not contain linefeed"


@pytest.mark.asyncio
async def test_accepted_sms_with_non_json_reply(monkeypatch):
    monkeypatch.setattr(notification_gateway.settings, "TWILIO_ACCOUNT_SID", "AC123")
    monkeypatch.setattr(notification_gateway.settings, "TWILIO_AUTH_TOKEN", "secret")
    transport = httpx.MockTransport(lambda request: httpx.Response(200, text="OK"))
    real_client = httpx.AsyncClient

    def client_factory(**kwargs):
        return real_client(transport=transport, **kwargs)

    gateway = NotificationGateway(dry_run=False)
    with patch.object(notification_gateway.httpx, "AsyncClient", new=client_factory):
        result = await gateway.send(Channel.SMS, "9876543210", "S", "B")
    assert result.success is True
    assert result.message_id == ""
