from pydantic import BaseModel, ConfigDict, Field

from app.models.policy import Channel, RenewalStatus


class CamelModel(BaseModel):
    """Request bodies accept camelCase keys as sent by the dashboard."""

    model_config = ConfigDict(populate_by_name=True)


class RenewalUpdate(CamelModel):
    """Renewal tracking update body."""

    renewal_status: str | None = Field(
        default=None,
        alias="renewalStatus",
        description="New tracking status: " + " / ".join(s.value for s in RenewalStatus),
        examples=["contacted"],
    )
    notes: str | None = Field(default=None, description="Free-form notes")


class SendReminderRequest(CamelModel):
    """Manual reminder body."""

    subject: str | None = Field(default=None, description="Email subject (required)")
    message: str | None = Field(default=None, description="Plain-text message body (required)")
    channels: list[str] = Field(
        default_factory=lambda: [Channel.EMAIL.value],
        description="Delivery channels: email / sms / whatsapp",
        examples=[["email", "sms"]],
    )
    notify_admin: bool = Field(
        default=True, alias="notifyAdmin", description="Also email the admin a summary"
    )


class BulkReminderRequest(CamelModel):
    days_before_expiry: int = Field(
        default=30, ge=0, alias="daysBeforeExpiry", description="Target days until expiry"
    )
    channels: list[str] = Field(default_factory=lambda: [Channel.EMAIL.value])


class ProcessRenewalRequest(CamelModel):
    """Optional explicit dates for the new coverage term."""

    insurance_start_date: str | None = Field(
        default=None, alias="insuranceStartDate", examples=["2025-07-01"]
    )
    insurance_end_date: str | None = Field(default=None, alias="insuranceEndDate")


class SchedulerConfigureRequest(CamelModel):
    enabled: bool | None = None
    run_hour: int | None = Field(default=None, alias="runHour", examples=[9])
    run_minute: int | None = Field(default=None, alias="runMinute", examples=[0])
