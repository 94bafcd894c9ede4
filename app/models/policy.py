"""Policy documents and the renewal-tracking state embedded in them."""
from __future__ import annotations

from datetime import date, datetime, timezone
from enum import Enum

from pydantic import BaseModel, ConfigDict, Field


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


class PolicyStatus(str, Enum):
    DRAFT = "draft"
    QUOTATION_SENT = "quotation_sent"
    PAYMENT_PENDING = "payment_pending"
    PAYMENT_APPROVED = "payment_approved"
    ACTIVE = "active"
    EXPIRED = "expired"
    CANCELLED = "cancelled"


class RenewalStatus(str, Enum):
    NOT_CONTACTED = "not_contacted"
    CONTACTED = "contacted"
    PENDING = "pending"
    OVERDUE = "overdue"
    RENEWED = "renewed"


class ReminderType(str, Enum):
    THIRTY_DAY = "30-day"
    SEVEN_DAY = "7-day"
    DAILY = "daily"


class Channel(str, Enum):
    EMAIL = "email"
    SMS = "sms"
    WHATSAPP = "whatsapp"


class ClientContact(BaseModel):
    name: str | None = None
    email: str | None = None
    contact_number: str | None = None


class PolicyDetails(BaseModel):
    policy_number: str | None = None
    period_from: date | None = None
    period_to: date | None = None  # legacy end date
    insurance_start_date: date | None = None
    insurance_end_date: date | None = None
    previous_policy_number: str | None = None


class PremiumDetails(BaseModel):
    final_premium: float | None = None


class VehicleDetails(BaseModel):
    manufacturer: str = ""
    model: str = ""


class ChannelResult(BaseModel):
    model_config = ConfigDict(frozen=True)

    channel: Channel
    recipient: str = "client"  # client | admin
    success: bool
    message_id: str | None = None
    error: str | None = None


class ContactEvent(BaseModel):
    """One reminder attempt. Never mutated after it is appended."""

    model_config = ConfigDict(frozen=True)

    date: datetime = Field(default_factory=_utcnow)
    channels: tuple[Channel, ...] = ()
    subject: str = ""
    message: str = ""
    reminder_type: ReminderType | None = None
    automated: bool = False
    results: tuple[ChannelResult, ...] = ()


class RenewalTracking(BaseModel):
    status: RenewalStatus = RenewalStatus.NOT_CONTACTED
    notes: str = ""
    last_contacted: datetime | None = None
    last_updated: datetime | None = None
    contact_history: list[ContactEvent] = Field(default_factory=list)

    def record_contact(self, event: ContactEvent) -> None:
        self.contact_history.append(event)
        self.status = RenewalStatus.CONTACTED
        self.last_contacted = event.date


class Policy(BaseModel):
    id: str
    status: PolicyStatus = PolicyStatus.DRAFT
    client: ClientContact | None = None
    insurer: str | None = None
    policy_type: str | None = None
    policy_details: PolicyDetails = Field(default_factory=PolicyDetails)
    premium: PremiumDetails = Field(default_factory=PremiumDetails)
    vehicle: VehicleDetails = Field(default_factory=VehicleDetails)
    renewal_tracking: RenewalTracking | None = None
    created_at: datetime = Field(default_factory=_utcnow)
    version: int = 0

    @property
    def renewal_status(self) -> RenewalStatus:
        if self.renewal_tracking is None:
            return RenewalStatus.NOT_CONTACTED
        return self.renewal_tracking.status

    @property
    def contact_history(self) -> list[ContactEvent]:
        if self.renewal_tracking is None:
            return []
        return self.renewal_tracking.contact_history

    def ensure_tracking(self) -> RenewalTracking:
        if self.renewal_tracking is None:
            self.renewal_tracking = RenewalTracking()
        return self.renewal_tracking
