"""
Error taxonomy for the payment core.

Gateway configuration errors fail fast and are never retried. Validation
errors carry a per-field list so the API can return it verbatim; during a
callback-driven transition they are treated as persistence failures and
answered with a non-ACK body so the processor re-delivers.
"""

from dataclasses import dataclass


class GatewayError(Exception):
    """Base exception for payment gateway errors."""


class UnknownGateway(GatewayError):
    """Gateway identifier not present in the registry."""

    def __init__(self, name: object):
        super().__init__(f"Unknown payment gateway: {name}")
        self.name = name


class InvalidTransition(Exception):
    """Requested donation state change is not an allowed edge."""

    def __init__(self, donation_id: int, current: str, target: str):
        super().__init__(f"Donation {donation_id} cannot move from {current} to {target}")
        self.donation_id = donation_id
        self.current = current
        self.target = target


class DonationAlreadyPaid(InvalidTransition):
    """Checkout requested for a donation that has already been paid."""

    def __init__(self, donation_id: int):
        super().__init__(donation_id, "paid", "checkout")


@dataclass(frozen=True)
class FieldError:
    field: str
    message: str


class DonationValidationError(Exception):
    """Donation fields fail their invariants."""

    def __init__(self, errors: list[FieldError]):
        super().__init__("; ".join(f"{e.field}: {e.message}" for e in errors))
        self.errors = errors

    def as_dicts(self) -> list[dict[str, str]]:
        return [{"field": e.field, "message": e.message} for e in self.errors]
