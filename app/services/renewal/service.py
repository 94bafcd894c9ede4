"""Renewal queries, status updates, renewal processing and statistics.

All functions take the policy store as their first argument, the same way
the API layer hands a session to the other services.
"""
from __future__ import annotations

import asyncio
import logging
import math
import weakref
from collections.abc import Collection
from datetime import date, datetime, timedelta, timezone
from typing import Any

from app.config import settings
from app.models.policy import (
    ChannelResult,
    ContactEvent,
    Policy,
    PolicyStatus,
    RenewalStatus,
)
from app.services.policy_store import PolicyRecordStore
from app.services.renewal.errors import PolicyNotFoundError, RenewalValidationError
from app.services.renewal.rules import (
    EXPIRY_FIELDS,
    RenewalBucket,
    classify,
    local_date,
    resolve_expiry,
    today_local,
)
from app.services.renewal.templates import format_inr

logger = logging.getLogger(__name__)

DUE_STATUSES = (PolicyStatus.ACTIVE, PolicyStatus.PAYMENT_APPROVED)
OVERDUE_STATUSES = (PolicyStatus.ACTIVE, PolicyStatus.PAYMENT_APPROVED, PolicyStatus.EXPIRED)

# Keyed by (event loop, policy id) so locks never cross loops. An entry lives
# only while a holder or waiter references its lock.
_policy_locks: weakref.WeakValueDictionary[tuple[int, str], asyncio.Lock] = (
    weakref.WeakValueDictionary()
)


def policy_lock(policy_id: str) -> asyncio.Lock:
    """Per-policy lock serializing read-modify-write cycles in this process."""
    key = (id(asyncio.get_running_loop()), policy_id)
    lock = _policy_locks.get(key)
    if lock is None:
        lock = asyncio.Lock()
        _policy_locks[key] = lock
    return lock


# ---------------------------------------------------------------------------
# Input parsing
# ---------------------------------------------------------------------------


def parse_days_ahead(value: int | str | None) -> int:
    """Positive integer day count, falling back to the configured default."""
    try:
        days = int(value) if value is not None else 0
    except (TypeError, ValueError):
        days = 0
    return days if days > 0 else settings.DUE_DEFAULT_DAYS


def parse_date(value: date | datetime | str | None, field_name: str) -> date | None:
    if value is None or value == "":
        return None
    if isinstance(value, datetime):
        return value.date()
    if isinstance(value, date):
        return value
    text = str(value).strip()
    try:
        return date.fromisoformat(text)
    except ValueError:
        pass
    try:
        return datetime.fromisoformat(text.replace("Z", "+00:00")).date()
    except ValueError:
        raise RenewalValidationError(f"Invalid {field_name}: {value!r}") from None


def parse_renewal_status(value: RenewalStatus | str) -> RenewalStatus:
    try:
        return RenewalStatus(value)
    except ValueError:
        allowed = ", ".join(s.value for s in RenewalStatus)
        raise RenewalValidationError(
            f"Unknown renewal status {value!r} (expected one of: {allowed})"
        ) from None


def add_years(value: date, years: int) -> date:
    try:
        return value.replace(year=value.year + years)
    except ValueError:
        # 29 Feb rolls over to 1 Mar in a non-leap year
        return date(value.year + years, 3, 1)


# ---------------------------------------------------------------------------
# Views
# ---------------------------------------------------------------------------


def channel_result_view(result: ChannelResult) -> dict[str, Any]:
    return {
        "channel": result.channel.value,
        "recipient": result.recipient,
        "success": result.success,
        "messageId": result.message_id,
        "error": result.error,
    }


def _contact_event_view(event: ContactEvent) -> dict[str, Any]:
    return {
        "date": event.date,
        "channels": [c.value for c in event.channels],
        "subject": event.subject,
        "message": event.message,
        "reminderType": event.reminder_type.value if event.reminder_type else None,
        "automated": event.automated,
        "results": [channel_result_view(r) for r in event.results],
    }


def format_renewal(policy: Policy, today: date | None = None) -> dict[str, Any]:
    """Flatten a policy into the renewal view consumed by the dashboard."""
    today = today or today_local()
    expiry = resolve_expiry(policy)
    classification = classify(expiry, today)
    client = policy.client
    tracking = policy.renewal_tracking
    final_premium = policy.premium.final_premium

    return {
        "policyId": policy.id,
        "policyNumber": policy.policy_details.policy_number or "N/A",
        "client": (client.name if client else None) or "N/A",
        "clientEmail": (client.email if client else None) or "",
        "clientPhone": (client.contact_number if client else None) or "",
        "vehicleDetails": {
            "manufacturer": policy.vehicle.manufacturer,
            "model": policy.vehicle.model,
        },
        "policyType": policy.policy_type or "N/A",
        "insurer": policy.insurer or "N/A",
        "currentPremium": format_inr(final_premium) if final_premium else "N/A",
        # Flat uplift estimate, not an insurer quote
        "newPremium": (
            format_inr(round(final_premium * settings.PREMIUM_ESTIMATE_FACTOR))
            if final_premium
            else "N/A"
        ),
        "expiryDate": expiry,
        "daysUntilExpiry": classification.days_until_expiry,
        "status": classification.bucket.value,
        "renewalStatus": policy.renewal_status.value,
        "notes": tracking.notes if tracking else "",
        "lastContacted": tracking.last_contacted if tracking else None,
        "contactHistory": [_contact_event_view(e) for e in policy.contact_history],
    }


# ---------------------------------------------------------------------------
# Queries
# ---------------------------------------------------------------------------


async def load_policy(store: PolicyRecordStore, policy_id: str) -> Policy:
    policy = await store.find_by_id(policy_id)
    if policy is None:
        raise PolicyNotFoundError(policy_id)
    return policy


async def query_by_expiry(
    store: PolicyRecordStore,
    start: date,
    end: date,
    statuses: Collection[PolicyStatus] | None,
    *,
    end_inclusive: bool = True,
) -> list[Policy]:
    """Policies whose resolved expiry date falls in the range, soonest first."""
    candidates = await store.find_by_date_range(
        EXPIRY_FIELDS, start, end, statuses, end_inclusive=end_inclusive
    )
    matched: list[tuple[date, Policy]] = []
    for policy in candidates:
        expiry = resolve_expiry(policy)
        if expiry is None or expiry < start:
            continue
        if expiry > end or (not end_inclusive and expiry == end):
            continue
        matched.append((expiry, policy))
    matched.sort(key=lambda m: m[0])
    return [policy for _, policy in matched]


async def get_due_for_renewal(
    store: PolicyRecordStore,
    days_ahead: int | str | None = None,
    *,
    today: date | None = None,
) -> list[dict[str, Any]]:
    today = today or today_local()
    days = parse_days_ahead(days_ahead)
    policies = await query_by_expiry(store, today, today + timedelta(days=days), DUE_STATUSES)
    return [format_renewal(p, today) for p in policies]


async def get_overdue(
    store: PolicyRecordStore,
    *,
    today: date | None = None,
) -> list[dict[str, Any]]:
    """Policies expired within the trailing lookback window (default 30 days).

    Anything older drops out of this view even when still unrenewed.
    """
    today = today or today_local()
    start = today - timedelta(days=settings.OVERDUE_LOOKBACK_DAYS)
    policies = await query_by_expiry(store, start, today, OVERDUE_STATUSES, end_inclusive=False)
    return [format_renewal(p, today) for p in policies]


async def get_all_categorized(
    store: PolicyRecordStore,
    *,
    today: date | None = None,
) -> dict[str, Any]:
    today = today or today_local()
    start = today - timedelta(days=settings.CATEGORIZED_LOOKBACK_DAYS)
    end = today + timedelta(days=settings.CATEGORIZED_LOOKAHEAD_DAYS)
    policies = await query_by_expiry(store, start, end, OVERDUE_STATUSES)
    renewals = [format_renewal(p, today) for p in policies]

    buckets: dict[str, list[dict[str, Any]]] = {b.value: [] for b in RenewalBucket}
    for renewal in renewals:
        buckets[renewal["status"]].append(renewal)

    overdue = buckets[RenewalBucket.OVERDUE.value]
    urgent = buckets[RenewalBucket.URGENT.value]
    pending = buckets[RenewalBucket.PENDING_RENEWAL.value]
    upcoming = buckets[RenewalBucket.UPCOMING.value]
    return {
        "all": renewals,
        "overdue": overdue,
        "urgent": urgent,
        "pendingRenewal": pending,
        "upcoming": upcoming,
        "stats": {
            "total": len(renewals),
            "overdueCount": len(overdue),
            "urgentCount": len(urgent),
            "pendingCount": len(pending),
            "upcomingCount": len(upcoming),
        },
    }


async def get_renewal(
    store: PolicyRecordStore,
    policy_id: str,
    *,
    today: date | None = None,
) -> dict[str, Any]:
    policy = await load_policy(store, policy_id)
    return format_renewal(policy, today)


# ---------------------------------------------------------------------------
# Mutations
# ---------------------------------------------------------------------------


async def update_renewal_status(
    store: PolicyRecordStore,
    policy_id: str,
    *,
    status: RenewalStatus | str | None = None,
    notes: str | None = None,
) -> dict[str, Any]:
    new_status = parse_renewal_status(status) if status else None

    async with policy_lock(policy_id):
        policy = await load_policy(store, policy_id)
        tracking = policy.ensure_tracking()
        if new_status is not None:
            tracking.status = new_status
        if notes is not None:
            tracking.notes = notes
        tracking.last_updated = datetime.now(timezone.utc)
        await store.save(policy)

    logger.info(
        "Updated renewal tracking for %s (status=%s)", policy_id, policy.renewal_status.value
    )
    return format_renewal(policy)


async def process_renewal(
    store: PolicyRecordStore,
    policy_id: str,
    *,
    insurance_start_date: date | str | None = None,
    insurance_end_date: date | str | None = None,
    today: date | None = None,
) -> dict[str, Any]:
    """Roll the coverage period forward one term and mark the policy renewed.

    Without explicit dates the new term starts the day after the current end
    date (or today when there is none) and lasts one year.
    """
    today = today or today_local()
    start = parse_date(insurance_start_date, "insuranceStartDate")
    end = parse_date(insurance_end_date, "insuranceEndDate")

    async with policy_lock(policy_id):
        policy = await load_policy(store, policy_id)

        current_end = resolve_expiry(policy) or today
        if start is None:
            start = current_end + timedelta(days=1)
        if end is None:
            end = add_years(start, 1) - timedelta(days=1)
        if end < start:
            raise RenewalValidationError(
                f"insuranceEndDate {end.isoformat()} is before insuranceStartDate {start.isoformat()}"
            )

        policy.policy_details.insurance_start_date = start
        policy.policy_details.insurance_end_date = end
        policy.status = PolicyStatus.ACTIVE
        tracking = policy.ensure_tracking()
        tracking.status = RenewalStatus.RENEWED
        tracking.last_updated = datetime.now(timezone.utc)
        await store.save(policy)

    logger.info(
        "Renewed policy %s: %s -> %s", policy_id, start.isoformat(), end.isoformat()
    )
    return format_renewal(policy, today)


# ---------------------------------------------------------------------------
# Statistics
# ---------------------------------------------------------------------------


def _month_bounds(year: int, month: int) -> tuple[date, date]:
    first = date(year, month, 1)
    next_first = date(year + 1, 1, 1) if month == 12 else date(year, month + 1, 1)
    return first, next_first - timedelta(days=1)


def _renewed_in(policy: Policy, start: date, end: date) -> bool:
    tracking = policy.renewal_tracking
    if (
        tracking is not None
        and tracking.status == RenewalStatus.RENEWED
        and tracking.last_updated is not None
        and start <= local_date(tracking.last_updated) <= end
    ):
        return True
    # A new policy issued this month that continues an earlier one
    return bool(policy.policy_details.previous_policy_number) and (
        start <= local_date(policy.created_at) <= end
    )


async def get_renewal_stats(
    store: PolicyRecordStore,
    *,
    today: date | None = None,
) -> dict[str, int]:
    today = today or today_local()
    month_start, month_end = _month_bounds(today.year, today.month)
    prev = month_start - timedelta(days=1)
    prev_start, prev_end = _month_bounds(prev.year, prev.month)

    due_this_month = await query_by_expiry(store, month_start, month_end, DUE_STATUSES)
    overdue = await query_by_expiry(
        store,
        today - timedelta(days=settings.OVERDUE_LOOKBACK_DAYS),
        today,
        OVERDUE_STATUSES,
        end_inclusive=False,
    )
    due_last_month = await query_by_expiry(store, prev_start, prev_end, None)
    renewed = sum(1 for p in await store.list_all() if _renewed_in(p, month_start, month_end))

    renewal_rate = (
        math.floor(renewed / len(due_last_month) * 100 + 0.5) if due_last_month else 0
    )
    return {
        "dueThisMonth": len(due_this_month),
        "overdue": len(overdue),
        "renewed": renewed,
        "renewalRate": renewal_rate,
    }
