"""Reminder delivery: manual sends, bulk sends and automated sweep sends.

Delivery problems never escape as exceptions. Each channel, policy or sweep
item produces a result record describing what happened.
"""
from __future__ import annotations

import asyncio
import logging
from collections.abc import Awaitable, Callable, Iterable, Sequence
from dataclasses import dataclass
from datetime import date, datetime, time, timedelta
from typing import Any, Generic, TypeVar

from app.config import settings
from app.models.policy import (
    Channel,
    ChannelResult,
    ContactEvent,
    Policy,
    ReminderType,
)
from app.services.notification_gateway import NotificationGateway
from app.services.policy_store import PolicyRecordStore
from app.services.renewal.errors import RenewalValidationError
from app.services.renewal.rules import local_tz, should_remind, today_local
from app.services.renewal.service import (
    DUE_STATUSES,
    channel_result_view,
    format_renewal,
    load_policy,
    policy_lock,
    query_by_expiry,
)
from app.services.renewal.templates import (
    admin_notification,
    automated_html,
    automated_subject,
    automated_text,
    default_reminder_message,
    default_reminder_subject,
    reminder_email_html,
)

logger = logging.getLogger(__name__)

T = TypeVar("T")

NO_CLIENT_EMAIL = "No client email"


# ---------------------------------------------------------------------------
# Per-item result collection
# ---------------------------------------------------------------------------


@dataclass
class ItemOutcome(Generic[T]):
    """Result of running one item through a batch operation."""

    item: T
    value: Any = None
    error: str | None = None

    @property
    def ok(self) -> bool:
        return self.error is None


async def collect_outcomes(
    items: Iterable[T],
    func: Callable[[T], Awaitable[Any]],
    *,
    delay: float = 0.0,
    label: str = "item",
) -> list[ItemOutcome[T]]:
    """Run ``func`` over items sequentially, isolating each item's failure.

    ``delay`` seconds are awaited between consecutive items.
    """
    outcomes: list[ItemOutcome[T]] = []
    for index, item in enumerate(items):
        if index and delay > 0:
            await asyncio.sleep(delay)
        try:
            value = await func(item)
        except Exception as e:
            logger.exception("%s failed: %s", label, e)
            outcomes.append(ItemOutcome(item=item, error=str(e)))
        else:
            outcomes.append(ItemOutcome(item=item, value=value))
    return outcomes


# ---------------------------------------------------------------------------
# Manual reminders
# ---------------------------------------------------------------------------


def parse_channels(channels: Iterable[Channel | str] | None) -> list[Channel]:
    if channels is None:
        return [Channel.EMAIL]
    parsed: list[Channel] = []
    for raw in channels:
        try:
            channel = Channel(raw)
        except ValueError:
            raise RenewalValidationError(f"Unknown channel: {raw!r}") from None
        if channel not in parsed:
            parsed.append(channel)
    return parsed


def _client_address(policy: Policy, channel: Channel) -> str | None:
    client = policy.client
    if client is None:
        return None
    if channel == Channel.EMAIL:
        return client.email or None
    return client.contact_number or None


async def _deliver(
    gateway: NotificationGateway,
    channel: Channel,
    recipient: str,
    address: str,
    subject: str,
    body: str,
    html: str | None = None,
) -> ChannelResult:
    """One channel send; an exception becomes a failed result so siblings still run."""
    try:
        delivery = await gateway.send(channel, address, subject, body, html)
    except Exception as e:
        logger.exception("%s reminder to %s raised: %s", channel.value, recipient, e)
        return ChannelResult(
            channel=channel, recipient=recipient, success=False, error=str(e) or type(e).__name__
        )
    return ChannelResult(
        channel=channel,
        recipient=recipient,
        success=delivery.success,
        message_id=delivery.message_id,
        error=delivery.error,
    )


async def send_reminder(
    store: PolicyRecordStore,
    gateway: NotificationGateway,
    policy_id: str,
    subject: str,
    message: str,
    channels: Sequence[Channel | str] | None = None,
    notify_admin: bool = True,
    *,
    today: date | None = None,
) -> dict[str, Any]:
    """Send a user-composed reminder and record the attempt on the policy.

    The contact event is appended even when every channel failed.
    """
    requested = parse_channels(channels)

    async with policy_lock(policy_id):
        policy = await load_policy(store, policy_id)
        html = reminder_email_html(policy, message)
        results: list[ChannelResult] = []

        for channel in Channel:
            if channel not in requested:
                continue
            address = _client_address(policy, channel)
            if not address:
                continue
            results.append(
                await _deliver(
                    gateway,
                    channel,
                    "client",
                    address,
                    subject,
                    message,
                    html if channel == Channel.EMAIL else None,
                )
            )

        admin_email = settings.ADMIN_EMAIL or settings.SMTP_USER
        if notify_admin and admin_email:
            admin_subject, admin_body = admin_notification(policy, message)
            results.append(
                await _deliver(
                    gateway, Channel.EMAIL, "admin", admin_email, admin_subject, admin_body
                )
            )

        event = ContactEvent(
            channels=tuple(requested),
            subject=subject,
            message=message,
            results=tuple(results),
        )
        policy.ensure_tracking().record_contact(event)
        await store.save(policy)

    delivered = sum(1 for r in results if r.success)
    logger.info(
        "Reminder for policy %s: %d/%d deliveries succeeded", policy_id, delivered, len(results)
    )
    return {
        "success": True,
        "results": [channel_result_view(r) for r in results],
        "policy": format_renewal(policy, today),
    }


async def send_bulk_reminders(
    store: PolicyRecordStore,
    gateway: NotificationGateway,
    days_before_expiry: int = 30,
    channels: Sequence[Channel | str] | None = None,
    *,
    today: date | None = None,
) -> dict[str, Any]:
    """Remind every due policy expiring around ``today + days_before_expiry``.

    Policies contacted within the recontact window are left alone.
    """
    today = today or today_local()
    requested = parse_channels(channels)
    target = today + timedelta(days=days_before_expiry)
    tolerance = timedelta(days=settings.BULK_TOLERANCE_DAYS)
    # Local midnight BULK_RECONTACT_DAYS before today
    cutoff = datetime.combine(
        today - timedelta(days=settings.BULK_RECONTACT_DAYS), time.min, tzinfo=local_tz()
    )

    candidates = await query_by_expiry(store, target - tolerance, target + tolerance, DUE_STATUSES)
    eligible = [
        p
        for p in candidates
        if p.renewal_tracking is None
        or p.renewal_tracking.last_contacted is None
        or p.renewal_tracking.last_contacted < cutoff
    ]
    logger.info(
        "Bulk reminder for expiry around %s: %d candidates, %d eligible",
        target.isoformat(), len(candidates), len(eligible),
    )

    async def _send(policy: Policy) -> dict[str, Any]:
        return await send_reminder(
            store,
            gateway,
            policy.id,
            default_reminder_subject(policy),
            default_reminder_message(policy),
            requested,
            True,
            today=today,
        )

    outcomes = await collect_outcomes(eligible, _send, label="Bulk renewal reminder")

    results: list[dict[str, Any]] = []
    for outcome in outcomes:
        policy = outcome.item
        entry: dict[str, Any] = {
            "policyId": policy.id,
            "policyNumber": policy.policy_details.policy_number,
            "client": policy.client.name if policy.client else None,
            "success": outcome.ok,
        }
        if outcome.ok:
            entry["results"] = outcome.value["results"]
            entry["policy"] = outcome.value["policy"]
        else:
            entry["error"] = outcome.error
        results.append(entry)

    sent = sum(1 for r in results if r["success"])
    return {
        "success": True,
        "totalPolicies": len(eligible),
        "results": results,
        "summary": {"sent": sent, "failed": len(results) - sent},
    }


# ---------------------------------------------------------------------------
# Automated reminders
# ---------------------------------------------------------------------------


async def send_automated_reminder(
    store: PolicyRecordStore,
    gateway: NotificationGateway,
    policy_id: str,
    days_until_expiry: int,
    reminder_type: ReminderType,
    *,
    today: date,
) -> dict[str, Any]:
    """Email one ladder reminder and record it on success.

    The policy is re-read under its lock and the ladder re-checked, so a
    reminder recorded since the sweep's query is never sent twice.
    Returns a detail dict whose ``outcome`` is sent, failed or skipped.
    """
    async with policy_lock(policy_id):
        policy = await load_policy(store, policy_id)

        if not should_remind(policy, days_until_expiry, today):
            return {"success": False, "outcome": "skipped", "reason": "Already reminded"}

        email = _client_address(policy, Channel.EMAIL)
        if not email:
            logger.info("Skipping policy %s: %s", policy_id, NO_CLIENT_EMAIL)
            return {"success": False, "outcome": "skipped", "reason": NO_CLIENT_EMAIL}

        subject = automated_subject(policy, days_until_expiry)
        text = automated_text(policy, days_until_expiry)
        html = automated_html(policy, days_until_expiry)

        delivery = await _deliver(gateway, Channel.EMAIL, "client", email, subject, text, html)
        if not delivery.success:
            logger.error("Failed to send reminder for policy %s: %s", policy_id, delivery.error)
            return {"success": False, "outcome": "failed", "error": delivery.error}

        event = ContactEvent(
            channels=(Channel.EMAIL,),
            subject=subject,
            message=text,
            reminder_type=reminder_type,
            automated=True,
            results=(delivery,),
        )
        policy.ensure_tracking().record_contact(event)
        await store.save(policy)

    logger.info(
        "Sent %s reminder to %s for policy %s",
        reminder_type.value, email, policy.policy_details.policy_number or policy_id,
    )
    return {"success": True, "outcome": "sent", "messageId": delivery.message_id}
