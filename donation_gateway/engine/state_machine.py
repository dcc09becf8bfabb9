"""
Donation lifecycle state machine.

    pending ──► awaiting_payment ──► paid
       │              │
       └──────────────┴──► cancelled

paid and cancelled are terminal; nothing ever returns to pending.

Every transition is a single conditional UPDATE:

    UPDATE donations SET ... WHERE id = :id AND status IN (:allowed_sources)

The affected row count is the only thing that decides whether the
transition happened. Two deliveries of the same "paid" notification racing
each other can both read "pending", but only one of them updates a row,
so only one of them sees changed=True and triggers the receipt.

Callers own the transaction: these functions flush but never commit.
"""

import logging
from dataclasses import dataclass
from datetime import datetime, timezone
from typing import Any, Optional

from sqlalchemy import func, update
from sqlalchemy.ext.asyncio import AsyncSession

from donation_gateway.audit.logger import append_note, log_event
from donation_gateway.engine.errors import InvalidTransition
from donation_gateway.engine.validation import validate_donation
from donation_gateway.gateways.result import Result
from donation_gateway.models.donation import Donation
from donation_gateway.models.enums import DonationStatus

logger = logging.getLogger("donation_gateway.state_machine")

ALLOWED_TRANSITIONS: dict[DonationStatus, frozenset[DonationStatus]] = {
    DonationStatus.PENDING: frozenset({
        DonationStatus.AWAITING_PAYMENT,
        DonationStatus.PAID,
        DonationStatus.CANCELLED,
    }),
    # Issuance notices are re-delivered; re-saving the same code is allowed.
    DonationStatus.AWAITING_PAYMENT: frozenset({
        DonationStatus.AWAITING_PAYMENT,
        DonationStatus.PAID,
        DonationStatus.CANCELLED,
    }),
    DonationStatus.PAID: frozenset(),
    DonationStatus.CANCELLED: frozenset(),
}


def can_transition(source: DonationStatus, target: DonationStatus) -> bool:
    return target in ALLOWED_TRANSITIONS[source]


def sources_for(target: DonationStatus) -> list[DonationStatus]:
    return [s for s, targets in ALLOWED_TRANSITIONS.items() if target in targets]


@dataclass(frozen=True)
class Transition:
    """Outcome of a transition attempt, read back from the store."""

    donation_id: int
    target: DonationStatus
    previous: DonationStatus
    current: DonationStatus
    changed: bool


async def _apply(
    session: AsyncSession,
    donation: Donation,
    target: DonationStatus,
    values: dict[str, Any],
) -> Transition:
    observed = DonationStatus(donation.status)
    # Rows that can no longer take this edge are left untouched, valid or not.
    if can_transition(observed, target):
        validate_donation(donation)

    stmt = (
        update(Donation)
        .where(
            Donation.id == donation.id,
            Donation.status.in_([s.value for s in sources_for(target)]),
        )
        .values(status=target.value, **values)
        .execution_options(synchronize_session=False)
    )
    result = await session.execute(stmt)
    changed = result.rowcount == 1

    await session.refresh(donation)
    current = DonationStatus(donation.status)
    return Transition(
        donation_id=donation.id,
        target=target,
        previous=observed if changed else current,
        current=current,
        changed=changed,
    )


def _pin(result: Result) -> dict[str, Any]:
    # Keep an existing pin; only an unpinned donation adopts the result's gateway.
    return {"gateway_name": func.coalesce(Donation.gateway_name, result.gateway.value)}


async def mark_paid(session: AsyncSession, donation: Donation, result: Result) -> Transition:
    """
    Record a completed payment.

    Idempotent: an already-paid donation is left untouched and the returned
    Transition has changed=False.

    Raises:
        DonationValidationError: If the donation record breaks its invariants.
    """
    values: dict[str, Any] = {
        "paid_at": datetime.now(timezone.utc),
        **result.to_payment_attrs(),
        **_pin(result),
    }
    # Card payments carry none of these; delayed methods may echo their codes.
    if result.payment_no:
        values["cvs_payment_no"] = result.payment_no
    if result.has_barcodes:
        values["cvs_barcode_1"] = result.barcode_1
        values["cvs_barcode_2"] = result.barcode_2
        values["cvs_barcode_3"] = result.barcode_3

    transition = await _apply(session, donation, DonationStatus.PAID, values)
    if transition.changed:
        await log_event(session, "marked_paid", donation_id=donation.id, details=result.audit_details())
        logger.info("Donation %s marked as paid via %s", donation.id, result.gateway.value)
    elif transition.current is DonationStatus.PAID:
        await log_event(session, "duplicate_payment_notice", donation_id=donation.id, details=result.audit_details())
        logger.info("Donation %s already paid; duplicate notice ignored", donation.id)
    else:
        await log_event(session, "payment_on_inactive_donation", donation_id=donation.id, details={
            **result.audit_details(),
            "status": transition.current.value,
        })
        logger.error(
            "Payment received for donation %s in status %s; needs manual review",
            donation.id,
            transition.current.value,
        )
    return transition


async def save_payment_info(session: AsyncSession, donation: Donation, result: Result) -> Transition:
    """
    Record an issued delayed-payment code and move to awaiting_payment.

    Does not touch paid_at. An issuance notice arriving after the payment
    notice (or after cancellation) changes nothing.

    Raises:
        DonationValidationError: If the donation record breaks its invariants.
    """
    values = {**result.to_payment_info_attrs(), **_pin(result)}
    transition = await _apply(session, donation, DonationStatus.AWAITING_PAYMENT, values)

    if transition.changed:
        await log_event(session, "payment_info_saved", donation_id=donation.id, details={
            **result.audit_details(),
            "bank_code": result.bank_code,
            "expire_date": result.expire_date,
        })
        logger.info("Donation %s payment info saved", donation.id)
    else:
        await log_event(session, "payment_info_ignored", donation_id=donation.id, details={
            **result.audit_details(),
            "status": transition.current.value,
        })
        logger.warning(
            "Payment info for donation %s ignored; status is already %s",
            donation.id,
            transition.current.value,
        )
    return transition


async def manual_mark_paid(session: AsyncSession, donation: Donation, actor: Optional[str] = None) -> Transition:
    """
    Administrative override: mark paid without a gateway result.

    Raises:
        InvalidTransition: If the donation was cancelled.
        DonationValidationError: If the donation record breaks its invariants.
    """
    values = {
        "paid_at": datetime.now(timezone.utc),
        "notes": append_note(donation.notes, f"Manually marked as paid{f' by {actor}' if actor else ''}"),
    }
    transition = await _apply(session, donation, DonationStatus.PAID, values)

    if transition.current is DonationStatus.CANCELLED:
        raise InvalidTransition(donation.id, transition.current.value, DonationStatus.PAID.value)
    if transition.changed:
        await log_event(session, "manually_marked_paid", donation_id=donation.id, details={"actor": actor})
    return transition


async def cancel(session: AsyncSession, donation: Donation, actor: Optional[str] = None) -> Transition:
    """
    Administrative cancellation.

    Raises:
        InvalidTransition: If the donation is already paid or cancelled.
        DonationValidationError: If the donation record breaks its invariants.
    """
    values = {"notes": append_note(donation.notes, f"Cancelled{f' by {actor}' if actor else ''}")}
    transition = await _apply(session, donation, DonationStatus.CANCELLED, values)

    if not transition.changed:
        raise InvalidTransition(donation.id, transition.current.value, DonationStatus.CANCELLED.value)
    await log_event(session, "cancelled", donation_id=donation.id, details={"actor": actor})
    return transition
