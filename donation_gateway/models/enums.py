"""Enumerations for the donation domain model."""

from enum import Enum


class DonationStatus(str, Enum):
    """Lifecycle states for a donation."""

    PENDING = "pending"
    AWAITING_PAYMENT = "awaiting_payment"  # delayed-payment code issued
    PAID = "paid"
    CANCELLED = "cancelled"


class DonationType(str, Enum):
    """Categories a donor can give to."""

    LIGHT_PEACE = "light_peace"
    LIGHT_BRIGHT = "light_bright"
    LIGHT_TAI = "light_tai"
    INCENSE = "incense"
    MERIT = "merit"
    CONSTRUCTION = "construction"


DONATION_TYPE_LABELS: dict[DonationType, str] = {
    DonationType.LIGHT_PEACE: "平安燈",
    DonationType.LIGHT_BRIGHT: "光明燈",
    DonationType.LIGHT_TAI: "太歲燈",
    DonationType.INCENSE: "香油錢",
    DonationType.MERIT: "功德金",
    DonationType.CONSTRUCTION: "建設基金",
}


class PaymentMethod(str, Enum):
    """Payment methods a donor can request at checkout."""

    CREDIT_CARD = "credit_card"
    VIRTUAL_ACCOUNT = "virtual_account"
    CVS_CODE = "cvs_code"
    CVS_BARCODE = "cvs_barcode"



class CreatedBy(str, Enum):
    FRONTEND = "frontend"
    ADMIN = "admin"


class GatewayName(str, Enum):
    """Supported payment gateways."""

    ECPAY = "ecpay"
    NEWEBPAY = "newebpay"


class Channel(str, Enum):
    """Inbound HTTP channels a gateway posts back on."""

    NOTIFY = "notify"  # server-to-server payment notification
    PAYMENT_INFO = "payment_info"  # delayed-payment code issued
    RESULT = "result"  # user redirect after checkout


class EventKind(str, Enum):
    """What a single inbound delivery represents."""

    PAYMENT = "payment"
    PROVISIONING = "provisioning"
    FAILURE = "failure"
