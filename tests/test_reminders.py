"""Tests for manual, bulk and automated reminder delivery."""
import asyncio
import json
from datetime import datetime, time, timedelta, timezone
from unittest.mock import AsyncMock, patch
from zoneinfo import ZoneInfo

import pytest
from conftest import FakeGateway, make_policy

from app.config import settings
from app.models.policy import Channel, ReminderType, RenewalStatus, RenewalTracking
from app.services.renewal import reminders
from app.services.renewal.errors import PolicyNotFoundError, RenewalValidationError


# ---------------------------------------------------------------------------
# collect_outcomes
# ---------------------------------------------------------------------------


@pytest.mark.asyncio
async def test_collect_outcomes_isolates_failures():
    async def work(n):
        if n == 2:
            raise RuntimeError("boom")
        return n * 10

    outcomes = await reminders.collect_outcomes([1, 2, 3], work)

    assert [o.ok for o in outcomes] == [True, False, True]
    assert [o.value for o in outcomes] == [10, None, 30]
    assert outcomes[1].error == "boom"


@pytest.mark.asyncio
async def test_collect_outcomes_sleeps_between_items():
    async def work(n):
        return n

    with patch("app.services.renewal.reminders.asyncio.sleep", new=AsyncMock()) as sleep:
        await reminders.collect_outcomes([1, 2, 3], work, delay=0.5)

    assert sleep.await_count == 2
    sleep.assert_awaited_with(0.5)


def test_parse_channels():
    assert reminders.parse_channels(None) == [Channel.EMAIL]
    assert reminders.parse_channels(["sms", "email", "sms"]) == [Channel.SMS, Channel.EMAIL]
    with pytest.raises(RenewalValidationError):
        reminders.parse_channels(["fax"])


# ---------------------------------------------------------------------------
# Manual reminders
# ---------------------------------------------------------------------------


@pytest.mark.asyncio
async def test_send_reminder_email_records_contact(store_factory, gateway, today, no_admin):
    store = store_factory(make_policy("p1", expiry=today + timedelta(days=10)))

    result = await reminders.send_reminder(
        store, gateway, "p1", "Renew soon", "Please renew", today=today
    )

    assert result["success"] is True
    assert result["results"] == [
        {
            "channel": "email",
            "recipient": "client",
            "success": True,
            "messageId": "msg-1",
            "error": None,
        }
    ]
    assert len(gateway.sent) == 1
    assert gateway.sent[0]["recipient"] == "client@example.com"
    assert "Please renew" in gateway.sent[0]["html"]

    stored = await store.find_by_id("p1")
    assert stored.renewal_status is RenewalStatus.CONTACTED
    assert len(stored.contact_history) == 1
    event = stored.contact_history[0]
    assert event.automated is False
    assert event.reminder_type is None
    assert stored.renewal_tracking.last_contacted == event.date
    assert result["policy"]["renewalStatus"] == "contacted"


@pytest.mark.asyncio
async def test_send_reminder_channel_order_and_addresses(store_factory, gateway, today, no_admin):
    store = store_factory(make_policy("p1", expiry=today, phone="9000000001"))

    result = await reminders.send_reminder(
        store, gateway, "p1", "S", "M", ["whatsapp", "email", "sms"], today=today
    )

    assert [r["channel"] for r in result["results"]] == ["email", "sms", "whatsapp"]
    assert [s["recipient"] for s in gateway.sent] == [
        "client@example.com",
        "9000000001",
        "9000000001",
    ]
    assert gateway.sent[1]["html"] is None


@pytest.mark.asyncio
async def test_send_reminder_skips_channels_without_address(store_factory, gateway, today, no_admin):
    store = store_factory(make_policy("p1", expiry=today, phone=None))

    result = await reminders.send_reminder(
        store, gateway, "p1", "S", "M", ["email", "sms"], today=today
    )

    assert [r["channel"] for r in result["results"]] == ["email"]
    stored = await store.find_by_id("p1")
    assert stored.contact_history[0].channels == (Channel.EMAIL, Channel.SMS)


@pytest.mark.asyncio
async def test_send_reminder_notifies_admin(store_factory, gateway, today, monkeypatch):
    monkeypatch.setattr(settings, "ADMIN_EMAIL", "admin@example.com")
    store = store_factory(make_policy("p1", expiry=today))

    result = await reminders.send_reminder(store, gateway, "p1", "S", "Original text", today=today)

    admin_sends = gateway.to("admin@example.com")
    assert len(admin_sends) == 1
    assert admin_sends[0]["subject"] == "[RENEWAL REMINDER SENT] POL-p1"
    assert "Original text" in admin_sends[0]["body"]
    assert result["results"][-1]["recipient"] == "admin"


@pytest.mark.asyncio
async def test_send_reminder_admin_falls_back_to_smtp_user(store_factory, gateway, today, monkeypatch):
    monkeypatch.setattr(settings, "ADMIN_EMAIL", "")
    monkeypatch.setattr(settings, "SMTP_USER", "ops@example.com")
    store = store_factory(make_policy("p1", expiry=today))

    await reminders.send_reminder(store, gateway, "p1", "S", "M", today=today)
    assert len(gateway.to("ops@example.com")) == 1

    gateway.sent.clear()
    await reminders.send_reminder(store, gateway, "p1", "S", "M", notify_admin=False, today=today)
    assert gateway.to("ops@example.com") == []


@pytest.mark.asyncio
async def test_send_reminder_logs_contact_even_when_delivery_fails(store_factory, today, no_admin):
    gateway = FakeGateway(fail_for={"client@example.com"})
    store = store_factory(make_policy("p1", expiry=today))

    result = await reminders.send_reminder(store, gateway, "p1", "S", "M", today=today)

    assert result["success"] is True
    assert result["results"][0]["success"] is False
    assert result["results"][0]["error"] == "SMTP down"
    stored = await store.find_by_id("p1")
    assert len(stored.contact_history) == 1
    assert stored.contact_history[0].results[0].success is False


@pytest.mark.asyncio
async def test_send_reminder_unknown_channel_sends_nothing(store_factory, gateway, today):
    store = store_factory(make_policy("p1", expiry=today))
    with pytest.raises(RenewalValidationError):
        await reminders.send_reminder(store, gateway, "p1", "S", "M", ["pigeon"], today=today)
    assert gateway.sent == []


@pytest.mark.asyncio
async def test_send_reminder_not_found(store_factory, gateway):
    with pytest.raises(PolicyNotFoundError):
        await reminders.send_reminder(store_factory(), gateway, "missing", "S", "M")


class RaisingGateway(FakeGateway):
    """Raises instead of returning a result for the given channels."""

    def __init__(self, raise_on: set[Channel], exc: Exception) -> None:
        super().__init__()
        self.raise_on = raise_on
        self.exc = exc

    async def send(self, channel, recipient, subject, body, html=None):
        if channel in self.raise_on:
            raise self.exc
        return await super().send(channel, recipient, subject, body, html)


class YieldingGateway(FakeGateway):
    """Gives up the event loop on every send so concurrent callers interleave."""

    async def send(self, channel, recipient, subject, body, html=None):
        await asyncio.sleep(0)
        return await super().send(channel, recipient, subject, body, html)


@pytest.mark.asyncio
async def test_send_reminder_channel_exception_keeps_other_results(store_factory, today, no_admin):
    gateway = RaisingGateway({Channel.SMS}, json.JSONDecodeError("Expecting value", "OK", 0))
    store = store_factory(make_policy("p1", expiry=today))

    result = await reminders.send_reminder(
        store, gateway, "p1", "S", "M", ["email", "sms", "whatsapp"], today=today
    )

    assert [(r["channel"], r["success"]) for r in result["results"]] == [
        ("email", True),
        ("sms", False),
        ("whatsapp", True),
    ]
    assert "Expecting value" in result["results"][1]["error"]
    stored = await store.find_by_id("p1")
    assert len(stored.contact_history) == 1
    assert [r.success for r in stored.contact_history[0].results] == [True, False, True]
    assert stored.renewal_status is RenewalStatus.CONTACTED


@pytest.mark.asyncio
async def test_send_reminder_admin_exception_still_records_contact(
    store_factory, today, monkeypatch
):
    monkeypatch.setattr(settings, "ADMIN_EMAIL", "admin@example.com")

    class AdminDown(FakeGateway):
        async def send(self, channel, recipient, subject, body, html=None):
            if recipient == "admin@example.com":
                raise ValueError("bad address header")
            return await super().send(channel, recipient, subject, body, html)

    store = store_factory(make_policy("p1", expiry=today))

    result = await reminders.send_reminder(store, AdminDown(), "p1", "S", "M", today=today)

    assert result["results"][0]["success"] is True
    assert result["results"][1] == {
        "channel": "email",
        "recipient": "admin",
        "success": False,
        "messageId": None,
        "error": "bad address header",
    }
    stored = await store.find_by_id("p1")
    assert len(stored.contact_history) == 1


@pytest.mark.asyncio
async def test_concurrent_sends_on_one_policy_both_recorded(store_factory, today, no_admin):
    gateway = YieldingGateway()
    store = store_factory(make_policy("p1", expiry=today + timedelta(days=7)))

    first, second = await asyncio.gather(
        reminders.send_reminder(store, gateway, "p1", "S", "M", ["email", "sms"], today=today),
        reminders.send_reminder(store, gateway, "p1", "S2", "M2", today=today),
    )

    assert first["success"] is True
    assert second["success"] is True
    stored = await store.find_by_id("p1")
    assert len(stored.contact_history) == 2
    assert stored.version == 2
    assert {e.subject for e in stored.contact_history} == {"S", "S2"}


@pytest.mark.asyncio
async def test_concurrent_manual_and_automated_sends(store_factory, today, no_admin):
    gateway = YieldingGateway()
    store = store_factory(make_policy("p1", expiry=today + timedelta(days=7)))

    manual, automated = await asyncio.gather(
        reminders.send_reminder(store, gateway, "p1", "S", "M", today=today),
        reminders.send_automated_reminder(
            store, gateway, "p1", 7, ReminderType.SEVEN_DAY, today=today
        ),
    )

    assert manual["success"] is True
    assert automated["outcome"] == "sent"
    stored = await store.find_by_id("p1")
    assert len(stored.contact_history) == 2
    assert stored.version == 2


# ---------------------------------------------------------------------------
# Bulk reminders
# ---------------------------------------------------------------------------


@pytest.mark.asyncio
async def test_bulk_reminders_window_and_recontact(store_factory, gateway, today, no_admin):
    def contacted(days_ago):
        return datetime.combine(today - timedelta(days=days_ago), time(12), tzinfo=timezone.utc)

    store = store_factory(
        make_policy("exact", expiry=today + timedelta(days=30), email="a@example.com"),
        make_policy("minus-1", expiry=today + timedelta(days=29), email="b@example.com"),
        make_policy("plus-1", expiry=today + timedelta(days=31), email="c@example.com"),
        make_policy("plus-2", expiry=today + timedelta(days=32), email="d@example.com"),
        make_policy(
            "recent",
            expiry=today + timedelta(days=30),
            email="e@example.com",
            renewal_tracking=RenewalTracking(last_contacted=contacted(2)),
        ),
        make_policy(
            "stale",
            expiry=today + timedelta(days=30),
            email="f@example.com",
            renewal_tracking=RenewalTracking(last_contacted=contacted(10)),
        ),
    )

    result = await reminders.send_bulk_reminders(store, gateway, 30, today=today)

    assert result["totalPolicies"] == 4
    assert sorted(r["policyId"] for r in result["results"]) == ["exact", "minus-1", "plus-1", "stale"]
    assert result["summary"] == {"sent": 4, "failed": 0}
    assert gateway.to("e@example.com") == []
    assert gateway.to("d@example.com") == []
    assert gateway.sent[0]["subject"].startswith("Renewal Reminder - Your Comprehensive Policy")


@pytest.mark.asyncio
async def test_bulk_recontact_window_counts_from_given_day(store_factory, gateway, today, no_admin):
    # Window bounds derive from the given day, not the wall clock
    local = ZoneInfo(settings.TIMEZONE)
    window_start = datetime.combine(
        today - timedelta(days=settings.BULK_RECONTACT_DAYS), time.min, tzinfo=local
    )
    store = store_factory(
        make_policy(
            "inside",
            expiry=today + timedelta(days=30),
            email="in@example.com",
            renewal_tracking=RenewalTracking(last_contacted=window_start),
        ),
        make_policy(
            "outside",
            expiry=today + timedelta(days=30),
            email="out@example.com",
            renewal_tracking=RenewalTracking(last_contacted=window_start - timedelta(seconds=1)),
        ),
    )

    result = await reminders.send_bulk_reminders(store, gateway, 30, today=today)

    assert [r["policyId"] for r in result["results"]] == ["outside"]
    assert gateway.to("in@example.com") == []


@pytest.mark.asyncio
async def test_bulk_reminders_isolates_policy_failures(store_factory, gateway, today, no_admin):
    store = store_factory(
        make_policy("good", expiry=today + timedelta(days=7), email="good@example.com"),
        make_policy("bad", expiry=today + timedelta(days=7), email="bad@example.com"),
    )
    real_save = store.save

    async def flaky_save(policy):
        if policy.id == "bad":
            raise RuntimeError("disk full")
        return await real_save(policy)

    with patch.object(store, "save", side_effect=flaky_save):
        result = await reminders.send_bulk_reminders(store, gateway, 7, today=today)

    assert result["summary"] == {"sent": 1, "failed": 1}
    failed = next(r for r in result["results"] if r["policyId"] == "bad")
    assert failed["success"] is False
    assert failed["error"] == "disk full"


# ---------------------------------------------------------------------------
# Automated reminders
# ---------------------------------------------------------------------------


@pytest.mark.asyncio
async def test_automated_reminder_sent(store_factory, gateway, today):
    store = store_factory(make_policy("p1", expiry=today + timedelta(days=2)))

    result = await reminders.send_automated_reminder(
        store, gateway, "p1", 2, ReminderType.DAILY, today=today
    )

    assert result == {"success": True, "outcome": "sent", "messageId": "msg-1"}
    assert gateway.sent[0]["subject"].startswith("URGENT: ")
    assert "URGENT: Expires Very Soon!" in gateway.sent[0]["html"]
    stored = await store.find_by_id("p1")
    event = stored.contact_history[0]
    assert event.automated is True
    assert event.reminder_type is ReminderType.DAILY
    assert stored.renewal_status is RenewalStatus.CONTACTED


@pytest.mark.asyncio
async def test_automated_reminder_failure_leaves_policy_untouched(store_factory, today):
    gateway = FakeGateway(fail_for={"client@example.com"})
    store = store_factory(make_policy("p1", expiry=today + timedelta(days=30)))

    result = await reminders.send_automated_reminder(
        store, gateway, "p1", 30, ReminderType.THIRTY_DAY, today=today
    )

    assert result == {"success": False, "outcome": "failed", "error": "SMTP down"}
    stored = await store.find_by_id("p1")
    assert stored.renewal_tracking is None
    assert stored.version == 0


@pytest.mark.asyncio
async def test_automated_reminder_transport_exception_is_a_failure(store_factory, today):
    gateway = RaisingGateway({Channel.EMAIL}, ValueError("Header values may not contain linefeed"))
    store = store_factory(make_policy("p1", expiry=today + timedelta(days=30)))

    result = await reminders.send_automated_reminder(
        store, gateway, "p1", 30, ReminderType.THIRTY_DAY, today=today
    )

    assert result == {
        "success": False,
        "outcome": "failed",
        "error": "Header values may not contain linefeed",
    }
    assert (await store.find_by_id("p1")).version == 0


@pytest.mark.asyncio
async def test_automated_reminder_without_email_is_skipped(store_factory, gateway, today):
    store = store_factory(make_policy("p1", expiry=today + timedelta(days=7), email=None))

    result = await reminders.send_automated_reminder(
        store, gateway, "p1", 7, ReminderType.SEVEN_DAY, today=today
    )

    assert result["outcome"] == "skipped"
    assert result["reason"] == reminders.NO_CLIENT_EMAIL
    assert gateway.sent == []


@pytest.mark.asyncio
async def test_automated_reminder_rechecks_history(store_factory, gateway, today):
    store = store_factory(make_policy("p1", expiry=today + timedelta(days=7)))

    first = await reminders.send_automated_reminder(
        store, gateway, "p1", 7, ReminderType.SEVEN_DAY, today=today
    )
    second = await reminders.send_automated_reminder(
        store, gateway, "p1", 7, ReminderType.SEVEN_DAY, today=today
    )

    assert first["outcome"] == "sent"
    assert second == {"success": False, "outcome": "skipped", "reason": "Already reminded"}
    assert len(gateway.sent) == 1
