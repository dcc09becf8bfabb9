"""
ECPay (綠界) gateway adapter.

Plain form fields signed with CheckMacValue. Payment notifications go to
ReturnURL, delayed-payment code issuance to PaymentInfoURL, and the donor
is redirected to OrderResultURL. Success is RtnCode == "1"; issued ATM
and CVS/barcode codes report RtnCode "2" and "10100073" respectively.

Docs: https://developers.ecpay.com.tw/?p=2862
"""

import logging
from collections.abc import Mapping
from datetime import datetime
from typing import Any, Optional

from pydantic import BaseModel, ConfigDict, Field, ValidationError, field_validator

from donation_gateway.gateways.base import (
    GATEWAY_TIMEZONE,
    CheckoutForm,
    Correlation,
    GatewayAdapter,
    parse_gateway_datetime,
)
from donation_gateway.gateways.result import Result
from donation_gateway.gateways.signature import CHECK_MAC_FIELD, CheckMacCodec
from donation_gateway.models.donation import Donation
from donation_gateway.models.enums import Channel, GatewayName, PaymentMethod

logger = logging.getLogger("donation_gateway.gateways.ecpay")

PAYMENT_TYPE_MAP: dict[PaymentMethod, str] = {
    PaymentMethod.CREDIT_CARD: "Credit",
    PaymentMethod.VIRTUAL_ACCOUNT: "ATM",
    PaymentMethod.CVS_CODE: "CVS",
    PaymentMethod.CVS_BARCODE: "BARCODE",
}
ALL_PAYMENT_TYPES = "ALL"

SUCCESS_CODE = "1"
ATM_ISSUED_CODE = "2"
CVS_ISSUED_CODE = "10100073"
PROVISIONING_CODES = frozenset({ATM_ISSUED_CODE, CVS_ISSUED_CODE})

# Fits a signed 64-bit INTEGER column.
MAX_DONATION_ID_DIGITS = 18


def _to_int(value: Optional[str]) -> Optional[int]:
    if value is None:
        return None
    try:
        return int(value)
    except ValueError:
        return None


class EcpayCallback(BaseModel):
    """Typed view of an ECPay callback payload."""

    model_config = ConfigDict(populate_by_name=True, extra="ignore", coerce_numbers_to_str=True)

    merchant_id: Optional[str] = Field(None, alias="MerchantID")
    merchant_trade_no: Optional[str] = Field(None, alias="MerchantTradeNo")
    trade_no: Optional[str] = Field(None, alias="TradeNo")
    rtn_code: Optional[str] = Field(None, alias="RtnCode")
    rtn_msg: Optional[str] = Field(None, alias="RtnMsg")
    trade_amt: Optional[str] = Field(None, alias="TradeAmt")
    payment_type: Optional[str] = Field(None, alias="PaymentType")
    payment_date: Optional[str] = Field(None, alias="PaymentDate")
    simulate_paid: Optional[str] = Field(None, alias="SimulatePaid")
    custom_field_1: Optional[str] = Field(None, alias="CustomField1")
    bank_code: Optional[str] = Field(None, alias="BankCode")
    v_account: Optional[str] = Field(None, alias="vAccount")
    payment_no: Optional[str] = Field(None, alias="PaymentNo")
    barcode_1: Optional[str] = Field(None, alias="Barcode1")
    barcode_2: Optional[str] = Field(None, alias="Barcode2")
    barcode_3: Optional[str] = Field(None, alias="Barcode3")
    expire_date: Optional[str] = Field(None, alias="ExpireDate")

    @field_validator("*", mode="before")
    @classmethod
    def _blank_to_none(cls, value: Any) -> Any:
        if isinstance(value, str) and not value.strip():
            return None
        return value


class EcpayAdapter(GatewayAdapter):
    """ECPay all-in-one checkout (AioCheckOut V5)."""

    trade_no_prefix = "D"
    trade_no_max_length = 20

    def __init__(self, credentials, trade_description: str = ""):
        super().__init__(credentials, trade_description)
        self.codec = CheckMacCodec(credentials.hash_key, credentials.hash_iv)

    @property
    def name(self) -> GatewayName:
        return GatewayName.ECPAY

    @property
    def ack_body(self) -> str:
        return "1|OK"

    def nack_body(self, message: str) -> str:
        return f"0|{message}"

    def build_payment_params(
        self,
        donation: Donation,
        return_url: str,
        notify_url: str,
        client_back_url: Optional[str] = None,
        payment_info_url: Optional[str] = None,
        now: Optional[datetime] = None,
    ) -> dict[str, str]:
        """Unsigned checkout fields; values are not pre-encoded."""
        now = now or datetime.now(GATEWAY_TIMEZONE)
        trade_no = donation.merchant_trade_no or self.generate_trade_no(donation, now)
        method = donation.payment_method_enum

        params = {
            "MerchantID": self.credentials.merchant_id,
            "MerchantTradeNo": trade_no,
            "MerchantTradeDate": now.strftime("%Y/%m/%d %H:%M:%S"),
            "PaymentType": "aio",
            "TotalAmount": str(int(donation.amount)),
            "TradeDesc": self.trade_description,
            "ItemName": self.item_name_for(donation),
            "ReturnURL": notify_url,
            "ChoosePayment": PAYMENT_TYPE_MAP.get(method, ALL_PAYMENT_TYPES),
            "EncryptType": "1",
            "CustomField1": str(donation.id),
        }
        if client_back_url:
            params["ClientBackURL"] = client_back_url
        if return_url:
            params["OrderResultURL"] = return_url
        if payment_info_url:
            params["PaymentInfoURL"] = payment_info_url
        params["NeedExtraPaidInfo"] = "Y"
        return params

    def build_checkout_form(
        self,
        donation: Donation,
        return_url: str,
        notify_url: str,
        client_back_url: Optional[str] = None,
        payment_info_url: Optional[str] = None,
    ) -> CheckoutForm:
        params = self.build_payment_params(
            donation,
            return_url=return_url,
            notify_url=notify_url,
            client_back_url=client_back_url,
            payment_info_url=payment_info_url,
        )
        params[CHECK_MAC_FIELD] = self.codec.sign_params(params)
        return CheckoutForm(action=self.api_url, form_id="ecpay-form", fields=params)

    def verify_callback(self, params: Mapping[str, Any]) -> bool:
        return self.codec.verify(params)

    def _read(self, params: Mapping[str, Any]) -> EcpayCallback:
        return EcpayCallback.model_validate(dict(params))

    def parse_callback(self, params: Mapping[str, Any]) -> Result:
        try:
            data = self._read(params)
        except ValidationError as e:
            logger.error("Failed to parse callback: %s", e)
            return Result(success=False, gateway=self.name, rtn_code="ERROR", rtn_msg=str(e), raw_params=dict(params))

        return Result(
            success=data.rtn_code == SUCCESS_CODE,
            gateway=self.name,
            gateway_trade_no=data.trade_no,
            merchant_trade_no=data.merchant_trade_no,
            rtn_code=data.rtn_code,
            rtn_msg=data.rtn_msg,
            payment_type=data.payment_type,
            payment_date=parse_gateway_datetime(data.payment_date),
            trade_amt=_to_int(data.trade_amt),
            simulate_paid=data.simulate_paid == "1",
            payment_no=data.payment_no,
            barcode_1=data.barcode_1,
            barcode_2=data.barcode_2,
            barcode_3=data.barcode_3,
            raw_params=dict(params),
        )

    def parse_payment_info_callback(self, params: Mapping[str, Any]) -> Result:
        try:
            data = self._read(params)
        except ValidationError as e:
            logger.error("Failed to parse payment info callback: %s", e)
            return Result(success=False, gateway=self.name, rtn_code="ERROR", rtn_msg=str(e), raw_params=dict(params))

        # Issuance is not a payment; it only confirms the code exists.
        return Result(
            success=True,
            gateway=self.name,
            gateway_trade_no=data.trade_no,
            merchant_trade_no=data.merchant_trade_no,
            rtn_code=data.rtn_code,
            rtn_msg=data.rtn_msg,
            payment_type=data.payment_type,
            trade_amt=_to_int(data.trade_amt),
            bank_code=data.bank_code,
            v_account=data.v_account,
            payment_no=data.payment_no,
            barcode_1=data.barcode_1,
            barcode_2=data.barcode_2,
            barcode_3=data.barcode_3,
            expire_date=parse_gateway_datetime(data.expire_date),
            raw_params=dict(params),
        )

    def is_provisioning_notice(self, result: Result, channel: Channel) -> bool:
        if channel is Channel.PAYMENT_INFO:
            return True
        if channel is Channel.NOTIFY or channel is Channel.RESULT:
            return result.rtn_code in PROVISIONING_CODES
        raise ValueError(f"Unhandled channel: {channel}")

    def correlation(self, params: Mapping[str, Any]) -> Correlation:
        raw_id = str(params.get("CustomField1") or "").strip()
        trade_no = str(params.get("MerchantTradeNo") or "").strip()
        # ASCII digits only: str.isdigit also accepts superscripts and other scripts.
        is_id = raw_id.isascii() and raw_id.isdigit() and len(raw_id) <= MAX_DONATION_ID_DIGITS
        return Correlation(
            donation_id=int(raw_id) if is_id else None,
            merchant_trade_no=trade_no or None,
        )
