from app.models.policy import (
    Channel,
    ChannelResult,
    ClientContact,
    ContactEvent,
    Policy,
    PolicyDetails,
    PolicyStatus,
    PremiumDetails,
    ReminderType,
    RenewalStatus,
    RenewalTracking,
    VehicleDetails,
)

__all__ = [
    "Channel",
    "ChannelResult",
    "ClientContact",
    "ContactEvent",
    "Policy",
    "PolicyDetails",
    "PolicyStatus",
    "PremiumDetails",
    "ReminderType",
    "RenewalStatus",
    "RenewalTracking",
    "VehicleDetails",
]
