"""Daily renewal sweep: find policies on the reminder ladder and email them.

One sweep scans each ladder offset independently (30, 7, 6..1 days out),
keeps the policies the reminder rules say are due today, and sends them one
at a time with a short pause between sends. Delivery problems are counted,
not raised; only the sweep's own control flow can end it early.
"""
from __future__ import annotations

import logging
from dataclasses import dataclass, field
from datetime import date, datetime, timedelta, timezone
from typing import Any

from app.config import settings
from app.models.policy import Policy, ReminderType, RenewalStatus
from app.services.notification_gateway import NotificationGateway
from app.services.policy_store import PolicyRecordStore
from app.services.renewal.reminders import collect_outcomes, send_automated_reminder
from app.services.renewal.rules import (
    ladder_days,
    reminder_type_for,
    should_remind,
    today_local,
)
from app.services.renewal.service import DUE_STATUSES, query_by_expiry

logger = logging.getLogger(__name__)


@dataclass
class ReminderCandidate:
    policy: Policy
    days_until_expiry: int
    reminder_type: ReminderType


@dataclass
class SweepResult:
    """Statistics for one sweep execution."""

    started_at: datetime = field(default_factory=lambda: datetime.now(timezone.utc))
    finished_at: datetime | None = None
    total_policies: int = 0
    sent: int = 0
    failed: int = 0
    skipped: int = 0
    details: list[dict[str, Any]] = field(default_factory=list)
    error: str | None = None

    @property
    def duration_seconds(self) -> float:
        if self.finished_at:
            return (self.finished_at - self.started_at).total_seconds()
        return 0.0

    def to_dict(self) -> dict[str, Any]:
        data: dict[str, Any] = {
            "startTime": self.started_at.isoformat(),
            "endTime": self.finished_at.isoformat() if self.finished_at else None,
            "totalPolicies": self.total_policies,
            "sent": self.sent,
            "failed": self.failed,
            "skipped": self.skipped,
            "details": self.details,
        }
        if self.error is not None:
            data["error"] = self.error
        return data


async def find_policies_to_remind(
    store: PolicyRecordStore, today: date
) -> list[ReminderCandidate]:
    candidates: list[ReminderCandidate] = []
    for days in ladder_days():
        target = today + timedelta(days=days)
        policies = await query_by_expiry(store, target, target, DUE_STATUSES)
        for policy in policies:
            if policy.renewal_status == RenewalStatus.RENEWED:
                continue
            if should_remind(policy, days, today):
                candidates.append(
                    ReminderCandidate(policy, days, reminder_type_for(days))
                )
    return candidates


async def run_renewal_sweep(
    store: PolicyRecordStore,
    gateway: NotificationGateway,
    *,
    today: date | None = None,
    send_delay: float | None = None,
) -> SweepResult:
    """Execute one sweep. Never raises; failures land in ``SweepResult.error``."""
    result = SweepResult()
    delay = settings.SWEEP_SEND_DELAY if send_delay is None else send_delay

    logger.info("=" * 60)
    logger.info("  RENEWAL SWEEP STARTING")
    logger.info("=" * 60)

    try:
        today = today or today_local()
        candidates = await find_policies_to_remind(store, today)
        result.total_policies = len(candidates)
        logger.info("Found %d policies needing reminders", len(candidates))

        async def _send(candidate: ReminderCandidate) -> dict[str, Any]:
            return await send_automated_reminder(
                store,
                gateway,
                candidate.policy.id,
                candidate.days_until_expiry,
                candidate.reminder_type,
                today=today,
            )

        outcomes = await collect_outcomes(
            candidates, _send, delay=delay, label="Automated renewal reminder"
        )

        for outcome in outcomes:
            candidate = outcome.item
            policy = candidate.policy
            detail: dict[str, Any] = {
                "policyId": policy.id,
                "policyNumber": policy.policy_details.policy_number,
                "client": policy.client.name if policy.client else None,
                "daysUntilExpiry": candidate.days_until_expiry,
                "reminderType": candidate.reminder_type.value,
            }
            if outcome.ok:
                detail.update(outcome.value)
            else:
                detail.update({"success": False, "outcome": "failed", "error": outcome.error})
            result.details.append(detail)

            if detail["outcome"] == "sent":
                result.sent += 1
            elif detail["outcome"] == "skipped":
                result.skipped += 1
            else:
                result.failed += 1
    except Exception as e:
        logger.exception("Renewal sweep aborted: %s", e)
        result.error = str(e)
    finally:
        result.finished_at = datetime.now(timezone.utc)

    logger.info("=" * 60)
    logger.info(
        "  RENEWAL SWEEP COMPLETE (%.1fs): total=%d sent=%d failed=%d skipped=%d%s",
        result.duration_seconds,
        result.total_policies,
        result.sent,
        result.failed,
        result.skipped,
        f" ERROR: {result.error}" if result.error else "",
    )
    logger.info("=" * 60)
    return result
