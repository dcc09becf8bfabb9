"""
Abstract payment gateway interface.

Every gateway (ECPay, Newebpay) implements this contract so checkout and
callback handling never branch on vendor. Adapters hold only their
merchant credentials; everything about a transaction arrives through the
call arguments, so one adapter instance can serve any number of
concurrent callbacks.
"""

import html
import secrets
import string
from abc import ABC, abstractmethod
from collections.abc import Mapping
from dataclasses import dataclass, field
from datetime import datetime
from typing import Any, Optional
from zoneinfo import ZoneInfo

from donation_gateway.engine.errors import GatewayError
from donation_gateway.gateways.result import Result
from donation_gateway.models.donation import Donation
from donation_gateway.models.enums import (
    DONATION_TYPE_LABELS,
    Channel,
    DonationType,
    GatewayName,
)

# Both processors report local Taiwan time without an offset.
GATEWAY_TIMEZONE = ZoneInfo("Asia/Taipei")

GATEWAY_DATETIME_FORMATS = (
    "%Y/%m/%d %H:%M:%S",
    "%Y-%m-%d %H:%M:%S",
    "%Y/%m/%d %H:%M",
    "%Y-%m-%d %H:%M",
    "%Y/%m/%d",
    "%Y-%m-%d",
)

TRADE_NO_SUFFIX_ALPHABET = string.ascii_uppercase + string.digits
TRADE_NO_MAX_SUFFIX = 4


def parse_gateway_datetime(value: Optional[str]) -> Optional[datetime]:
    """Parse a processor timestamp as Taiwan local time; None if blank or unparseable."""
    if not value:
        return None
    text = str(value).strip()
    for fmt in GATEWAY_DATETIME_FORMATS:
        try:
            return datetime.strptime(text, fmt).replace(tzinfo=GATEWAY_TIMEZONE)
        except ValueError:
            continue
    return None


@dataclass(frozen=True)
class GatewayCredentials:
    merchant_id: str
    hash_key: str
    hash_iv: str
    api_url: str


@dataclass(frozen=True)
class Correlation:
    """Plaintext correlation keys found at the top level of a callback."""

    donation_id: Optional[int] = None
    merchant_trade_no: Optional[str] = None


@dataclass
class CheckoutForm:
    """An outbound form the donor's browser POSTs to the gateway."""

    action: str
    form_id: str
    fields: dict[str, str] = field(default_factory=dict)
    method: str = "post"

    def render_html(self) -> str:
        inputs = "".join(
            f'<input type="hidden" name="{html.escape(name)}" value="{html.escape(str(value))}">'
            for name, value in self.fields.items()
        )
        return (
            f'<form id="{html.escape(self.form_id)}" method="{self.method}" '
            f'action="{html.escape(self.action)}">{inputs}</form>'
        )


class GatewayAdapter(ABC):
    """Abstract base class for payment gateway adapters."""

    trade_no_prefix: str = ""
    trade_no_max_length: int = 20

    def __init__(self, credentials: GatewayCredentials, trade_description: str = ""):
        self.credentials = credentials
        self.trade_description = trade_description

    @property
    @abstractmethod
    def name(self) -> GatewayName:
        """Gateway identifier stored on pinned donations."""
        ...

    @property
    @abstractmethod
    def ack_body(self) -> str:
        """Literal body the processor expects as acknowledgment."""
        ...

    @abstractmethod
    def nack_body(self, message: str) -> str:
        """Any body other than ack_body; the processor will re-deliver."""
        ...

    @property
    def api_url(self) -> str:
        return self.credentials.api_url

    def generate_trade_no(self, donation: Donation, now: Optional[datetime] = None) -> str:
        """
        Merchant trade number: <prefix><id>T<MMDDhhmmss><suffix>.

        The random alphanumeric suffix fills whatever room the length limit
        leaves (up to 4 characters) so rapid retries within the same second
        still get distinct numbers.

        Raises:
            GatewayError: If the donation id leaves no room for a suffix.
        """
        now = now or datetime.now(GATEWAY_TIMEZONE)
        body = f"{self.trade_no_prefix}{donation.id}T{now.strftime('%m%d%H%M%S')}"
        room = self.trade_no_max_length - len(body)
        if room < 1:
            raise GatewayError(
                f"Trade number for donation {donation.id} exceeds {self.trade_no_max_length} characters"
            )
        suffix = "".join(
            secrets.choice(TRADE_NO_SUFFIX_ALPHABET) for _ in range(min(TRADE_NO_MAX_SUFFIX, room))
        )
        return body + suffix

    def item_name_for(self, donation: Donation) -> str:
        try:
            type_name = DONATION_TYPE_LABELS[DonationType(donation.donation_type)]
        except ValueError:
            type_name = donation.donation_type
        return f"{type_name} - {donation.donor_name}"

    @abstractmethod
    def build_checkout_form(
        self,
        donation: Donation,
        return_url: str,
        notify_url: str,
        client_back_url: Optional[str] = None,
        payment_info_url: Optional[str] = None,
    ) -> CheckoutForm:
        """Signed/encrypted form for the donation's merchant_trade_no."""
        ...

    @abstractmethod
    def verify_callback(self, params: Mapping[str, Any]) -> bool:
        """True if the callback carries a valid signature."""
        ...

    @abstractmethod
    def parse_callback(self, params: Mapping[str, Any]) -> Result:
        """
        Map a payment callback into a Result.

        Never raises on malformed input: absent fields become None and
        undecodable payloads become Result(success=False).
        """
        ...

    @abstractmethod
    def parse_payment_info_callback(self, params: Mapping[str, Any]) -> Result:
        """Map a delayed-payment issuance callback into a Result."""
        ...

    @abstractmethod
    def is_provisioning_notice(self, result: Result, channel: Channel) -> bool:
        """True if this delivery reports an issued code rather than a payment."""
        ...

    @abstractmethod
    def correlation(self, params: Mapping[str, Any]) -> Correlation:
        """Correlation keys readable without decryption."""
        ...

    def decrypted_correlation(self, params: Mapping[str, Any]) -> Correlation:
        """
        Correlation keys that are only readable after decrypting the payload.

        Gateways that send plain fields have nothing more to offer.

        Raises:
            ValueError: If the payload cannot be decrypted or decoded.
        """
        return Correlation()
