"""
Receipt hand-off.

Rendering and mailing receipts belong to the mailer; the payment core only
decides when one is due. A receipt is due exactly when a transition moved
the donation into paid, and the donor asked for a receipt with an e-mail on
file. Duplicate notices produce changed=False transitions and so never
queue a second receipt.
"""

import logging
from typing import Protocol

from donation_gateway.engine.state_machine import Transition
from donation_gateway.models.donation import Donation
from donation_gateway.models.enums import DonationStatus

logger = logging.getLogger("donation_gateway.receipts")


class ReceiptSender(Protocol):
    async def send(self, donation_id: int) -> None:
        """Deliver the receipt for a paid donation."""
        ...


class LoggingReceiptSender:
    """Default sender: records the hand-off for the mailer to pick up."""

    async def send(self, donation_id: int) -> None:
        logger.info("Receipt requested for donation %s", donation_id)


def receipt_due(donation: Donation, transition: Transition) -> bool:
    return (
        transition.changed
        and transition.current is DonationStatus.PAID
        and bool(donation.needs_receipt)
        and bool(donation.email)
    )
