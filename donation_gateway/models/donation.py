"""SQLAlchemy models for the donation gateway."""

import json
from datetime import datetime, timezone
from typing import Optional

from sqlalchemy import (
    Boolean,
    Column,
    DateTime,
    ForeignKey,
    Integer,
    Numeric,
    String,
    Text,
)
from sqlalchemy.orm import DeclarativeBase, relationship

from donation_gateway.models.enums import (
    CreatedBy,
    DonationStatus,
    PaymentMethod,
)


class Base(DeclarativeBase):
    pass


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


class Donation(Base):
    """
    A single donation and its payment lifecycle.

    Status only moves forward: pending → awaiting_payment → paid, or
    pending/awaiting_payment → cancelled. Rows are never deleted. The
    gateway_name column is pinned at checkout so later callbacks are
    verified by the same gateway that initiated the transaction.
    """

    __tablename__ = "donations"

    id = Column(Integer, primary_key=True, autoincrement=True)
    donation_type = Column(String(30), nullable=False, index=True)
    amount = Column(Numeric(10, 2), nullable=False)
    donor_name = Column(String(200), nullable=False)
    phone = Column(String(30), nullable=True)
    email = Column(String(200), nullable=True)
    prayer = Column(Text, nullable=True)
    needs_receipt = Column(Boolean, nullable=False, default=False)
    notes = Column(Text, nullable=True)
    created_by = Column(String(20), nullable=False, default=CreatedBy.FRONTEND.value)

    status = Column(String(20), nullable=False, default=DonationStatus.PENDING.value, index=True)
    payment_method = Column(String(20), nullable=True)
    paid_at = Column(DateTime(timezone=True), nullable=True)

    # Gateway correlation
    gateway_name = Column(String(20), nullable=True, index=True)
    merchant_trade_no = Column(String(30), nullable=True, unique=True)
    gateway_trade_no = Column(String(50), nullable=True, index=True)

    # Raw processor diagnostics (audit only)
    gateway_rtn_code = Column(String(20), nullable=True)
    gateway_rtn_msg = Column(String(200), nullable=True)
    gateway_payment_type = Column(String(30), nullable=True)
    gateway_payment_date = Column(DateTime(timezone=True), nullable=True)
    gateway_trade_amt = Column(Integer, nullable=True)
    gateway_simulate_paid = Column(Boolean, nullable=False, default=False)

    # Delayed-settlement details
    atm_bank_code = Column(String(10), nullable=True)
    atm_v_account = Column(String(30), nullable=True)
    cvs_payment_no = Column(String(30), nullable=True)
    cvs_barcode_1 = Column(String(30), nullable=True)
    cvs_barcode_2 = Column(String(30), nullable=True)
    cvs_barcode_3 = Column(String(30), nullable=True)
    payment_expire_date = Column(DateTime(timezone=True), nullable=True)

    created_at = Column(DateTime(timezone=True), default=_utcnow)
    updated_at = Column(DateTime(timezone=True), default=_utcnow, onupdate=_utcnow)

    audit_logs = relationship("AuditLog", back_populates="donation", lazy="raise")

    @property
    def status_enum(self) -> DonationStatus:
        return DonationStatus(self.status)

    @property
    def payment_method_enum(self) -> Optional[PaymentMethod]:
        return PaymentMethod(self.payment_method) if self.payment_method else None

    def payment_info_summary(self) -> Optional[str]:
        """Human-readable delayed-payment instructions for the chosen method."""
        method = self.payment_method_enum
        if method is PaymentMethod.VIRTUAL_ACCOUNT:
            return f"銀行代碼: {self.atm_bank_code}, 帳號: {self.atm_v_account}"
        if method is PaymentMethod.CVS_CODE:
            return f"繳費代碼: {self.cvs_payment_no}"
        if method is PaymentMethod.CVS_BARCODE:
            return f"條碼: {self.cvs_barcode_1} / {self.cvs_barcode_2} / {self.cvs_barcode_3}"
        if method is PaymentMethod.CREDIT_CARD or method is None:
            return None
        raise ValueError(f"Unhandled payment method: {method}")


class SiteSetting(Base):
    """Key/value site configuration, editable at runtime by administrators."""

    __tablename__ = "site_settings"

    VALID_KEYS = ("payment_gateway",)

    id = Column(Integer, primary_key=True, autoincrement=True)
    key = Column(String(50), nullable=False, unique=True)
    value = Column(Text, nullable=True)
    value_type = Column(String(20), nullable=False, default="string")
    created_at = Column(DateTime(timezone=True), default=_utcnow)
    updated_at = Column(DateTime(timezone=True), default=_utcnow, onupdate=_utcnow)

    def typed_value(self):
        if self.value is None:
            return None
        if self.value_type == "boolean":
            return self.value == "true"
        if self.value_type == "integer":
            return int(self.value)
        if self.value_type == "json":
            return json.loads(self.value)
        return self.value


class AuditLog(Base):
    """
    Immutable audit trail entry.

    Every callback, verification result, classification and state change
    gets an audit log entry. These are append-only and never modified.
    """

    __tablename__ = "audit_logs"

    id = Column(Integer, primary_key=True, autoincrement=True)
    donation_id = Column(Integer, ForeignKey("donations.id"), nullable=True, index=True)
    action = Column(String(50), nullable=False)
    details = Column(Text, nullable=True)
    timestamp = Column(DateTime(timezone=True), default=_utcnow)

    donation = relationship("Donation", back_populates="audit_logs")
