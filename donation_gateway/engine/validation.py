"""
Donation field validation with per-field error reporting.

A donation is valid when:
  1. Donation type is one of the known categories
  2. Amount is present, positive and a whole number of NT dollars
  3. Donor name is present
  4. E-mail is present when a receipt was requested
  5. E-mail, if given, looks like an address
  6. Payment method, if given, is a known method

All checks run (no early exit) so the caller gets the complete list of
problems in one response instead of fixing them one at a time.
"""

import re
from decimal import Decimal, InvalidOperation
from typing import Any, Optional

from donation_gateway.engine.errors import DonationValidationError, FieldError
from donation_gateway.models.donation import Donation
from donation_gateway.models.enums import DonationType, PaymentMethod

EMAIL_PATTERN = re.compile(r"^[A-Za-z0-9.!#$%&'*+/=?^_`{|}~-]+@[A-Za-z0-9](?:[A-Za-z0-9-]*[A-Za-z0-9])?(?:\.[A-Za-z0-9](?:[A-Za-z0-9-]*[A-Za-z0-9])?)*$")

_DONATION_TYPES = {t.value for t in DonationType}
_PAYMENT_METHODS = {m.value for m in PaymentMethod}


def _to_decimal(value: Any) -> Optional[Decimal]:
    if value is None or value == "":
        return None
    try:
        return Decimal(str(value))
    except (InvalidOperation, ValueError):
        return None


def check_donation_fields(
    donation_type: Optional[str],
    amount: Any,
    donor_name: Optional[str],
    email: Optional[str] = None,
    needs_receipt: bool = False,
    payment_method: Optional[str] = None,
) -> list[FieldError]:
    """
    Validate raw donation fields.

    Returns:
        A list of FieldError, empty when the donation is valid.
    """
    errors: list[FieldError] = []

    if not donation_type:
        errors.append(FieldError("donation_type", "can't be blank"))
    elif donation_type not in _DONATION_TYPES:
        errors.append(FieldError("donation_type", f"is not a valid donation type: {donation_type}"))

    parsed_amount = _to_decimal(amount)
    if amount is None or amount == "":
        errors.append(FieldError("amount", "can't be blank"))
    elif parsed_amount is None or not parsed_amount.is_finite():
        errors.append(FieldError("amount", "is not a number"))
    elif parsed_amount <= 0:
        errors.append(FieldError("amount", "must be greater than 0"))
    elif parsed_amount != parsed_amount.to_integral_value():
        errors.append(FieldError("amount", "must be a whole number"))

    if not donor_name or not donor_name.strip():
        errors.append(FieldError("donor_name", "can't be blank"))

    if needs_receipt and not email:
        errors.append(FieldError("email", "can't be blank when a receipt is requested"))
    elif email and not EMAIL_PATTERN.match(email):
        errors.append(FieldError("email", "is invalid"))

    if payment_method and payment_method not in _PAYMENT_METHODS:
        errors.append(FieldError("payment_method", f"is not a valid payment method: {payment_method}"))

    return errors


def validate_donation(donation: Donation) -> None:
    """
    Raise DonationValidationError if a persisted donation breaks its invariants.

    Run before checkout and before any transition the record can still take,
    so a corrupted record surfaces as an error instead of being advanced.
    """
    errors = check_donation_fields(
        donation_type=donation.donation_type,
        amount=donation.amount,
        donor_name=donation.donor_name,
        email=donation.email,
        needs_receipt=bool(donation.needs_receipt),
        payment_method=donation.payment_method,
    )
    if errors:
        raise DonationValidationError(errors)
