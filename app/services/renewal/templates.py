"""Message text, subjects and HTML bodies for renewal reminders."""
from __future__ import annotations

from datetime import date

from jinja2 import Environment, FileSystemLoader, select_autoescape

from app.config import BASE_DIR, settings
from app.models.policy import Policy
from app.services.renewal.rules import resolve_expiry

TEMPLATES_DIR = BASE_DIR / "app" / "templates"

_env = Environment(
    loader=FileSystemLoader(TEMPLATES_DIR),
    autoescape=select_autoescape(["html"]),
    trim_blocks=True,
    lstrip_blocks=True,
)

BRAND_NAME = "Risk Marshal"


def format_date(value: date | None) -> str:
    """Render like "1 Jul 2024"; "N/A" when missing."""
    if value is None:
        return "N/A"
    return f"{value.day} {value.strftime('%b %Y')}"


def _group_indian(digits: str) -> str:
    if len(digits) <= 3:
        return digits
    head, tail = digits[:-3], digits[-3:]
    groups = []
    while len(head) > 2:
        groups.insert(0, head[-2:])
        head = head[:-2]
    if head:
        groups.insert(0, head)
    return ",".join(groups) + "," + tail


def format_amount(amount: float | None) -> str:
    """Indian digit grouping (12,34,567), two decimals only when needed."""
    if amount is None:
        return "N/A"
    negative = amount < 0
    rounded = round(abs(amount), 2)
    whole = int(rounded)
    text = _group_indian(str(whole))
    fraction = round(rounded - whole, 2)
    if fraction:
        text += f"{fraction:.2f}"[1:]
    return f"-{text}" if negative else text


def format_inr(amount: float | None) -> str:
    if amount is None:
        return "N/A"
    return f"₹{format_amount(amount)}"


def _plural_days(days: int) -> str:
    return f"{days} day{'s' if days > 1 else ''}"


def _context(policy: Policy) -> dict:
    client = policy.client
    return {
        "client_name": (client.name if client else None) or "Customer",
        "policy_number": policy.policy_details.policy_number or "N/A",
        "policy_type": policy.policy_type or "N/A",
        "insurer": policy.insurer or "N/A",
        "expiry_date": format_date(resolve_expiry(policy)),
        "premium": format_inr(policy.premium.final_premium),
        "renew_url": f"{settings.FRONTEND_URL.rstrip('/')}/dashboard/renewals",
        "brand": BRAND_NAME,
    }


# ---------------------------------------------------------------------------
# Manual / bulk reminders
# ---------------------------------------------------------------------------


def default_reminder_subject(policy: Policy) -> str:
    return (
        f"Renewal Reminder - Your {policy.policy_type or 'Insurance'} Policy "
        f"Expires on {format_date(resolve_expiry(policy))}"
    )


def default_reminder_message(policy: Policy) -> str:
    ctx = _context(policy)
    return (
        f"Dear {ctx['client_name']},\n\n"
        f"This is a reminder that your {policy.policy_type or 'insurance'} policy is due for renewal.\n\n"
        "Policy Details:\n"
        f"- Policy Number: {ctx['policy_number']}\n"
        f"- Insurer: {ctx['insurer']}\n"
        f"- Expiry Date: {ctx['expiry_date']}\n"
        f"- Current Premium: {ctx['premium']}\n\n"
        "Please contact us at your earliest convenience to process the renewal "
        "and ensure uninterrupted coverage.\n\n"
        "Best regards,\n"
        f"{BRAND_NAME} Team"
    )


def reminder_email_html(policy: Policy, message: str) -> str:
    return _env.get_template("renewal_reminder.html").render(**_context(policy), message=message)


def admin_notification(policy: Policy, message: str) -> tuple[str, str]:
    ctx = _context(policy)
    subject = f"[RENEWAL REMINDER SENT] {policy.policy_details.policy_number or policy.id}"
    body = (
        "Renewal reminder sent to client.\n\n"
        f"Client: {(policy.client.name if policy.client else None) or 'N/A'}\n"
        f"Policy Number: {ctx['policy_number']}\n"
        f"Policy Type: {ctx['policy_type']}\n"
        f"Expiry Date: {ctx['expiry_date']}\n"
        f"Premium: {ctx['premium']}\n\n"
        "Original Message:\n"
        f"{message}"
    )
    return subject, body


# ---------------------------------------------------------------------------
# Automated sweep reminders
# ---------------------------------------------------------------------------


def urgency(days_until_expiry: int) -> tuple[str, str]:
    """(header colour, header text) graded by how close expiry is."""
    if days_until_expiry <= 3:
        return "#e74c3c", "URGENT: Expires Very Soon!"
    if days_until_expiry <= 7:
        return "#f39c12", "Important: Expiring This Week"
    return "#3498db", "Renewal Reminder"


def automated_subject(policy: Policy, days_until_expiry: int) -> str:
    prefix = "URGENT: " if days_until_expiry <= 3 else ""
    return (
        f"{prefix}Renewal Reminder - Your {policy.policy_type or 'Insurance'} Policy "
        f"Expires in {days_until_expiry} Day{'s' if days_until_expiry > 1 else ''}"
    )


def automated_text(policy: Policy, days_until_expiry: int) -> str:
    ctx = _context(policy)
    return (
        f"Dear {ctx['client_name']},\n\n"
        f"Your {policy.policy_type or 'insurance'} policy is expiring in {_plural_days(days_until_expiry)}.\n\n"
        f"Policy Number: {ctx['policy_number']}\n"
        f"Expiry Date: {ctx['expiry_date']}\n"
        f"Premium: {ctx['premium']}\n\n"
        "Please contact us to renew your policy and ensure uninterrupted coverage.\n\n"
        "Best regards,\n"
        f"{BRAND_NAME} Team"
    )


def automated_html(policy: Policy, days_until_expiry: int) -> str:
    color, headline = urgency(days_until_expiry)
    return _env.get_template("automated_reminder.html").render(
        **_context(policy),
        urgency_color=color,
        urgency_text=headline,
        expires_in=_plural_days(days_until_expiry),
    )
