"""
Newebpay (藍新金流) gateway adapter.

The checkout request and every callback carry an AES-encrypted TradeInfo
blob signed by TradeSha; nothing useful is readable in plain text. The
decrypted JSON holds a top-level Status ("SUCCESS" on success), Message,
and a Result object with the trade fields.

Payment notifications and code-issuance notifications share this format
and the same Status, so the channel and the payment-type tag (VACC, CVS,
BARCODE) are the only way to tell them apart.

Docs: https://www.newebpay.com/website/Page/content/download_api
"""

import json
import logging
from collections.abc import Mapping
from datetime import datetime
from typing import Any, Optional
from urllib.parse import urlencode

from pydantic import BaseModel, ConfigDict, Field, ValidationError, field_validator

from donation_gateway.gateways.base import (
    GATEWAY_TIMEZONE,
    CheckoutForm,
    Correlation,
    GatewayAdapter,
    parse_gateway_datetime,
)
from donation_gateway.gateways.result import Result
from donation_gateway.gateways.signature import TradeInfoCipher
from donation_gateway.models.donation import Donation
from donation_gateway.models.enums import Channel, GatewayName, PaymentMethod

logger = logging.getLogger("donation_gateway.gateways.newebpay")

API_VERSION = "2.0"

PAYMENT_TYPE_MAP: dict[PaymentMethod, str] = {
    PaymentMethod.CREDIT_CARD: "CREDIT",
    PaymentMethod.VIRTUAL_ACCOUNT: "VACC",
    PaymentMethod.CVS_CODE: "CVS",
    PaymentMethod.CVS_BARCODE: "BARCODE",
}
DELAYED_PAYMENT_TYPES = frozenset({"VACC", "CVS", "BARCODE"})

SUCCESS_STATUS = "SUCCESS"


def _to_int(value: Optional[str]) -> Optional[int]:
    if value is None:
        return None
    try:
        return int(value)
    except ValueError:
        return None


class _BlankToNone(BaseModel):
    model_config = ConfigDict(populate_by_name=True, extra="ignore", coerce_numbers_to_str=True)

    @field_validator("*", mode="before")
    @classmethod
    def _blank_to_none(cls, value: Any) -> Any:
        if isinstance(value, str) and not value.strip():
            return None
        return value


class NewebpayTradeResult(_BlankToNone):
    """Typed view of the decrypted TradeInfo "Result" object."""

    merchant_id: Optional[str] = Field(None, alias="MerchantID")
    merchant_order_no: Optional[str] = Field(None, alias="MerchantOrderNo")
    trade_no: Optional[str] = Field(None, alias="TradeNo")
    amt: Optional[str] = Field(None, alias="Amt")
    payment_type: Optional[str] = Field(None, alias="PaymentType")
    pay_time: Optional[str] = Field(None, alias="PayTime")
    bank_code: Optional[str] = Field(None, alias="BankCode")
    pay_bank_code: Optional[str] = Field(None, alias="PayBankCode")
    payer_account_5_code: Optional[str] = Field(None, alias="PayerAccount5Code")
    code_no: Optional[str] = Field(None, alias="CodeNo")
    barcode_1: Optional[str] = Field(None, alias="Barcode_1")
    barcode_2: Optional[str] = Field(None, alias="Barcode_2")
    barcode_3: Optional[str] = Field(None, alias="Barcode_3")
    expire_date: Optional[str] = Field(None, alias="ExpireDate")
    expire_time: Optional[str] = Field(None, alias="ExpireTime")


class NewebpayTradeInfo(_BlankToNone):
    """Typed view of a decrypted TradeInfo payload."""

    status: Optional[str] = Field(None, alias="Status")
    message: Optional[str] = Field(None, alias="Message")
    result: Optional[NewebpayTradeResult] = Field(None, alias="Result")

    @field_validator("result", mode="before")
    @classmethod
    def _empty_result(cls, value: Any) -> Any:
        # Failed trades sometimes send "Result": [] or "".
        return value if isinstance(value, dict) else None


class NewebpayAdapter(GatewayAdapter):
    """Newebpay MPG (multi payment gateway) checkout."""

    trade_no_prefix = "N"
    trade_no_max_length = 30

    def __init__(self, credentials, trade_description: str = ""):
        super().__init__(credentials, trade_description)
        self.cipher = TradeInfoCipher(credentials.hash_key, credentials.hash_iv)

    @property
    def name(self) -> GatewayName:
        return GatewayName.NEWEBPAY

    @property
    def ack_body(self) -> str:
        return "SUCCESS"

    def nack_body(self, message: str) -> str:
        return f"FAIL|{message}"

    def build_trade_info(
        self,
        donation: Donation,
        return_url: str,
        notify_url: str,
        client_back_url: Optional[str] = None,
        customer_url: Optional[str] = None,
        now: Optional[datetime] = None,
    ) -> dict[str, Any]:
        """Plain TradeInfo fields before encryption."""
        now = now or datetime.now(GATEWAY_TIMEZONE)
        trade_no = donation.merchant_trade_no or self.generate_trade_no(donation, now)

        params: dict[str, Any] = {
            "MerchantID": self.credentials.merchant_id,
            "RespondType": "JSON",
            "TimeStamp": str(int(now.timestamp())),
            "Version": API_VERSION,
            "MerchantOrderNo": trade_no,
            "Amt": int(donation.amount),
            "ItemDesc": self.item_name_for(donation),
            "ReturnURL": return_url,
            "NotifyURL": notify_url,
            "ClientBackURL": client_back_url or "",
            "Email": donation.email or "",
            "LoginType": 0,
            "OrderComment": f"Donation#{donation.id}",
        }

        method = donation.payment_method_enum
        payment_type = PAYMENT_TYPE_MAP.get(method)
        if payment_type is None:
            # No preference: let the donor pick any enabled method.
            for enabled in PAYMENT_TYPE_MAP.values():
                params[enabled] = 1
        else:
            params[payment_type] = 1

        if customer_url and (payment_type is None or payment_type in DELAYED_PAYMENT_TYPES):
            params["CustomerURL"] = customer_url
        return params

    def build_checkout_form(
        self,
        donation: Donation,
        return_url: str,
        notify_url: str,
        client_back_url: Optional[str] = None,
        payment_info_url: Optional[str] = None,
    ) -> CheckoutForm:
        trade_info = self.build_trade_info(
            donation,
            return_url=return_url,
            notify_url=notify_url,
            client_back_url=client_back_url,
            customer_url=payment_info_url,
        )
        encrypted = self.cipher.encrypt(urlencode(trade_info))
        return CheckoutForm(
            action=self.api_url,
            form_id="newebpay-form",
            fields={
                "MerchantID": self.credentials.merchant_id,
                "TradeInfo": encrypted,
                "TradeSha": self.cipher.sign(encrypted),
                "Version": API_VERSION,
            },
        )

    def verify_callback(self, params: Mapping[str, Any]) -> bool:
        return self.cipher.verify(params.get("TradeInfo"), params.get("TradeSha"))

    def decrypt_trade_info(self, params: Mapping[str, Any]) -> NewebpayTradeInfo:
        """
        Raises:
            ValueError: Missing, undecryptable or non-JSON TradeInfo (ValidationError included).
        """
        encrypted = params.get("TradeInfo")
        if not encrypted:
            raise ValueError("TradeInfo missing from callback")
        decrypted = self.cipher.decrypt(str(encrypted))
        return NewebpayTradeInfo.model_validate(json.loads(decrypted))

    def parse_callback(self, params: Mapping[str, Any]) -> Result:
        try:
            trade_info = self.decrypt_trade_info(params)
        except ValueError as e:
            logger.error("Failed to parse callback: %s", e)
            return Result(
                success=False,
                gateway=self.name,
                rtn_code="ERROR",
                rtn_msg=str(e),
                raw_params=dict(params),
            )

        logger.info(
            "Decrypted TradeInfo: status=%s message=%s",
            trade_info.status,
            trade_info.message,
        )
        data = trade_info.result or NewebpayTradeResult()

        # A virtual account issuance reports the account in CodeNo; a paid
        # transfer reports the payer's bank and last five digits instead.
        if data.payment_type == "VACC":
            v_account = data.code_no or data.payer_account_5_code
            payment_no = None
        else:
            v_account = data.payer_account_5_code
            payment_no = data.code_no

        expire = data.expire_date
        if expire and data.expire_time:
            expire = f"{expire} {data.expire_time}"

        return Result(
            success=trade_info.status == SUCCESS_STATUS,
            gateway=self.name,
            gateway_trade_no=data.trade_no,
            merchant_trade_no=data.merchant_order_no,
            rtn_code=trade_info.status,
            rtn_msg=trade_info.message,
            payment_type=data.payment_type,
            payment_date=parse_gateway_datetime(data.pay_time),
            trade_amt=_to_int(data.amt),
            simulate_paid=False,
            bank_code=data.bank_code or data.pay_bank_code,
            v_account=v_account,
            payment_no=payment_no,
            barcode_1=data.barcode_1,
            barcode_2=data.barcode_2,
            barcode_3=data.barcode_3,
            expire_date=parse_gateway_datetime(expire),
            raw_params=trade_info.model_dump(by_alias=True),
        )

    def parse_payment_info_callback(self, params: Mapping[str, Any]) -> Result:
        # Issuance and payment notices share one format.
        return self.parse_callback(params)

    def is_provisioning_notice(self, result: Result, channel: Channel) -> bool:
        if channel is Channel.NOTIFY:
            return False
        if channel is Channel.PAYMENT_INFO:
            return result.success
        if channel is Channel.RESULT:
            return result.success and result.payment_type in DELAYED_PAYMENT_TYPES
        raise ValueError(f"Unhandled channel: {channel}")

    def correlation(self, params: Mapping[str, Any]) -> Correlation:
        trade_no = str(params.get("MerchantOrderNo") or "").strip()
        return Correlation(merchant_trade_no=trade_no or None)

    def decrypted_correlation(self, params: Mapping[str, Any]) -> Correlation:
        trade_info = self.decrypt_trade_info(params)
        trade_no = trade_info.result.merchant_order_no if trade_info.result else None
        return Correlation(merchant_trade_no=trade_no)
