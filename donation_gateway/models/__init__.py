from donation_gateway.models.enums import (
    Channel,
    CreatedBy,
    DonationStatus,
    DonationType,
    EventKind,
    GatewayName,
    PaymentMethod,
)
from donation_gateway.models.donation import AuditLog, Base, Donation, SiteSetting

__all__ = [
    "Base",
    "Donation",
    "SiteSetting",
    "AuditLog",
    "Channel",
    "CreatedBy",
    "DonationStatus",
    "DonationType",
    "EventKind",
    "GatewayName",
    "PaymentMethod",
]
