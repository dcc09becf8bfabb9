"""
Canonical payment result.

Both adapters map their vendor payloads into this shape; it is the only
thing the state machine ever sees. Vendor field names stop at the adapter.
"""

from dataclasses import dataclass, field
from datetime import datetime
from typing import Any, Optional

from donation_gateway.models.enums import GatewayName


@dataclass(frozen=True)
class Result:
    """Gateway-agnostic representation of an inbound payment event."""

    success: bool
    gateway: GatewayName
    gateway_trade_no: Optional[str] = None
    merchant_trade_no: Optional[str] = None
    rtn_code: Optional[str] = None
    rtn_msg: Optional[str] = None
    payment_type: Optional[str] = None
    payment_date: Optional[datetime] = None
    trade_amt: Optional[int] = None
    simulate_paid: bool = False
    bank_code: Optional[str] = None
    v_account: Optional[str] = None
    payment_no: Optional[str] = None
    barcode_1: Optional[str] = None
    barcode_2: Optional[str] = None
    barcode_3: Optional[str] = None
    expire_date: Optional[datetime] = None
    raw_params: dict[str, Any] = field(default_factory=dict, compare=False, repr=False)

    @property
    def has_barcodes(self) -> bool:
        return any((self.barcode_1, self.barcode_2, self.barcode_3))

    def to_payment_attrs(self) -> dict[str, Any]:
        """Donation column updates for a completed payment (None values dropped)."""
        attrs = {
            "gateway_trade_no": self.gateway_trade_no,
            "gateway_rtn_code": self.rtn_code,
            "gateway_rtn_msg": self.rtn_msg,
            "gateway_payment_type": self.payment_type,
            "gateway_payment_date": self.payment_date,
            "gateway_trade_amt": self.trade_amt,
            "gateway_simulate_paid": self.simulate_paid,
        }
        return {k: v for k, v in attrs.items() if v is not None}

    def to_payment_info_attrs(self) -> dict[str, Any]:
        """Donation column updates for an issued delayed-payment code."""
        attrs = {
            "gateway_trade_no": self.gateway_trade_no,
            "gateway_rtn_code": self.rtn_code,
            "gateway_rtn_msg": self.rtn_msg,
            "gateway_trade_amt": self.trade_amt,
            "atm_bank_code": self.bank_code,
            "atm_v_account": self.v_account,
            "cvs_payment_no": self.payment_no,
            "cvs_barcode_1": self.barcode_1,
            "cvs_barcode_2": self.barcode_2,
            "cvs_barcode_3": self.barcode_3,
            "payment_expire_date": self.expire_date,
        }
        return {k: v for k, v in attrs.items() if v is not None}

    def audit_details(self) -> dict[str, Any]:
        return {
            "gateway": self.gateway.value,
            "success": self.success,
            "merchant_trade_no": self.merchant_trade_no,
            "gateway_trade_no": self.gateway_trade_no,
            "rtn_code": self.rtn_code,
            "rtn_msg": self.rtn_msg,
            "payment_type": self.payment_type,
            "trade_amt": self.trade_amt,
            "simulate_paid": self.simulate_paid,
        }
