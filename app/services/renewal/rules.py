"""Pure renewal rules: expiry resolution, urgency buckets and the reminder ladder.

Nothing in this module performs I/O or mutates a policy. Every function that
depends on "today" takes it as an argument so results are stable within a
calendar day and trivially testable.
"""
from __future__ import annotations

import math
from dataclasses import dataclass
from datetime import date, datetime, time, timedelta
from enum import Enum
from zoneinfo import ZoneInfo

from app.config import settings
from app.models.policy import Policy, ReminderType, RenewalStatus

# Candidate fields for the expiry date, in priority order
EXPIRY_FIELDS: tuple[str, ...] = ("insurance_end_date", "period_to")


class RenewalBucket(str, Enum):
    OVERDUE = "Overdue"
    URGENT = "Urgent"
    PENDING_RENEWAL = "Pending Renewal"
    UPCOMING = "Upcoming"


@dataclass(frozen=True)
class Classification:
    days_until_expiry: int | None
    bucket: RenewalBucket


def local_tz() -> ZoneInfo:
    return ZoneInfo(settings.TIMEZONE)


def today_local() -> date:
    return datetime.now(local_tz()).date()


def local_date(value: datetime) -> date:
    """Calendar date of a timestamp in the configured timezone."""
    if value.tzinfo is None:
        return value.date()
    return value.astimezone(local_tz()).date()


def resolve_expiry(policy: Policy) -> date | None:
    details = policy.policy_details
    for field_name in EXPIRY_FIELDS:
        value = getattr(details, field_name)
        if value is not None:
            return value
    return None


def days_until(expiry: date | datetime | None, today: date) -> int | None:
    if expiry is None:
        return None
    if isinstance(expiry, datetime):
        midnight = datetime.combine(today, time.min, tzinfo=expiry.tzinfo)
        return math.ceil((expiry - midnight) / timedelta(days=1))
    return (expiry - today).days


def bucket_for(days_until_expiry: int | None) -> RenewalBucket:
    if days_until_expiry is None:
        return RenewalBucket.UPCOMING
    if days_until_expiry < 0:
        return RenewalBucket.OVERDUE
    if days_until_expiry <= 7:
        return RenewalBucket.URGENT
    if days_until_expiry <= 30:
        return RenewalBucket.PENDING_RENEWAL
    return RenewalBucket.UPCOMING


def classify(expiry: date | datetime | None, today: date) -> Classification:
    days = days_until(expiry, today)
    return Classification(days_until_expiry=days, bucket=bucket_for(days))


def classify_policy(policy: Policy, today: date) -> Classification:
    return classify(resolve_expiry(policy), today)


# ---------------------------------------------------------------------------
# Reminder ladder
# ---------------------------------------------------------------------------


def milestone_days() -> dict[int, ReminderType]:
    return {
        int(days): ReminderType(kind)
        for days, kind in settings.REMINDER_MILESTONE_DAYS.items()
    }


def ladder_days() -> list[int]:
    """Day offsets the sweep scans, milestones first, then the daily run-up."""
    days = sorted(milestone_days(), reverse=True)
    for day in range(settings.REMINDER_DAILY_MAX_DAYS, 0, -1):
        if day not in days:
            days.append(day)
    return days


def reminder_type_for(days_until_expiry: int | None) -> ReminderType | None:
    if days_until_expiry is None:
        return None
    milestone = milestone_days().get(days_until_expiry)
    if milestone is not None:
        return milestone
    if 1 <= days_until_expiry <= settings.REMINDER_DAILY_MAX_DAYS:
        return ReminderType.DAILY
    return None


def should_remind(policy: Policy, days_until_expiry: int | None, today: date) -> bool:
    """Decide whether an automated reminder is due today.

    Milestone reminders (30-day, 7-day) fire at most once per policy, keyed
    by reminder type alone. Daily reminders fire at most once per calendar
    day, blocked by any contact recorded today.
    """
    if policy.renewal_status == RenewalStatus.RENEWED:
        return False

    reminder_type = reminder_type_for(days_until_expiry)
    if reminder_type is None:
        return False

    history = policy.contact_history
    if reminder_type == ReminderType.DAILY:
        return not any(local_date(event.date) == today for event in history)
    return not any(event.reminder_type == reminder_type for event in history)
