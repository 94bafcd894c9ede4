import sys
from datetime import date, timedelta
from pathlib import Path

import pytest

sys.path.insert(0, str(Path(__file__).resolve().parent.parent))

from app.models.policy import (  # noqa: E402
    Channel,
    ClientContact,
    Policy,
    PolicyDetails,
    PolicyStatus,
    PremiumDetails,
    VehicleDetails,
)
from app.services.notification_gateway import DeliveryResult  # noqa: E402
from app.services.policy_store import InMemoryPolicyStore  # noqa: E402


class FakeGateway:
    """Records every send. Recipients in ``fail_for`` get a failed delivery."""

    def __init__(self, fail_for: set[str] | None = None, error: str = "SMTP down") -> None:
        self.sent: list[dict] = []
        self.fail_for = fail_for or set()
        self.error = error

    async def send(
        self,
        channel: Channel,
        recipient: str,
        subject: str,
        body: str,
        html: str | None = None,
    ) -> DeliveryResult:
        self.sent.append(
            {
                "channel": Channel(channel),
                "recipient": recipient,
                "subject": subject,
                "body": body,
                "html": html,
            }
        )
        if recipient in self.fail_for:
            return DeliveryResult(success=False, error=self.error)
        return DeliveryResult(success=True, message_id=f"msg-{len(self.sent)}")

    def to(self, recipient: str) -> list[dict]:
        return [s for s in self.sent if s["recipient"] == recipient]


def make_policy(
    policy_id: str = "pol-1",
    *,
    expiry: date | None = None,
    period_to: date | None = None,
    status: PolicyStatus = PolicyStatus.ACTIVE,
    email: str | None = "client@example.com",
    phone: str | None = "9876543210",
    premium: float | None = 11800,
    policy_number: str | None = None,
    previous_policy_number: str | None = None,
    **kwargs,
) -> Policy:
    start = expiry - timedelta(days=364) if expiry else None
    return Policy(
        id=policy_id,
        status=status,
        client=ClientContact(name=f"Client {policy_id}", email=email, contact_number=phone),
        insurer="Test Insurer Ltd",
        policy_type="Comprehensive",
        policy_details=PolicyDetails(
            policy_number=policy_number or f"POL-{policy_id}",
            insurance_start_date=start,
            insurance_end_date=expiry,
            period_to=period_to,
            previous_policy_number=previous_policy_number,
        ),
        premium=PremiumDetails(final_premium=premium),
        vehicle=VehicleDetails(manufacturer="Toyota", model="Innova"),
        **kwargs,
    )


@pytest.fixture
def today() -> date:
    return date(2024, 6, 1)


@pytest.fixture
def gateway() -> FakeGateway:
    return FakeGateway()


@pytest.fixture
def no_admin(monkeypatch):
    """Disable admin copies so only client sends are recorded."""
    from app.config import settings

    monkeypatch.setattr(settings, "ADMIN_EMAIL", "")
    monkeypatch.setattr(settings, "SMTP_USER", "")


@pytest.fixture
def store_factory():
    def _make(*policies: Policy) -> InMemoryPolicyStore:
        return InMemoryPolicyStore(policies)

    return _make
