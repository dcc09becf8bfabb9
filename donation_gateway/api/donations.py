"""
Donation endpoints.

POST /donations                 — Create a pending donation.
GET  /donations/{id}            — Donation detail.
GET  /donations/{id}/trace      — Donation plus full audit trail.
POST /donations/{id}/cancel     — Administrative cancellation.
POST /donations/{id}/mark_paid  — Administrative manual payment.
"""

import json
from datetime import datetime
from decimal import Decimal
from typing import Any, Optional

from fastapi import APIRouter, Depends, HTTPException
from fastapi.responses import JSONResponse
from pydantic import BaseModel
from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from donation_gateway.api.deps import require_admin
from donation_gateway.audit.logger import log_event
from donation_gateway.database import get_session
from donation_gateway.engine.errors import InvalidTransition
from donation_gateway.engine.state_machine import cancel, manual_mark_paid
from donation_gateway.engine.validation import check_donation_fields
from donation_gateway.models.donation import AuditLog, Donation
from donation_gateway.models.enums import CreatedBy, DonationStatus

router = APIRouter(prefix="/donations", tags=["donations"])


class DonationCreate(BaseModel):
    donation_type: Optional[str] = None
    amount: Any = None
    donor_name: Optional[str] = None
    phone: Optional[str] = None
    email: Optional[str] = None
    prayer: Optional[str] = None
    needs_receipt: bool = False
    payment_method: Optional[str] = None
    notes: Optional[str] = None


class DonationDetail(BaseModel):
    id: int
    donation_type: str
    amount: Decimal
    donor_name: str
    phone: Optional[str]
    email: Optional[str]
    prayer: Optional[str]
    needs_receipt: bool
    notes: Optional[str]
    created_by: str
    status: str
    payment_method: Optional[str]
    paid_at: Optional[datetime]
    gateway_name: Optional[str]
    merchant_trade_no: Optional[str]
    gateway_trade_no: Optional[str]
    gateway_payment_type: Optional[str]
    gateway_simulate_paid: bool
    atm_bank_code: Optional[str]
    atm_v_account: Optional[str]
    cvs_payment_no: Optional[str]
    cvs_barcode_1: Optional[str]
    cvs_barcode_2: Optional[str]
    cvs_barcode_3: Optional[str]
    payment_expire_date: Optional[datetime]
    created_at: Optional[datetime]
    updated_at: Optional[datetime]

    model_config = {"from_attributes": True}


class AuditEntry(BaseModel):
    id: int
    action: str
    details: Optional[dict] = None
    timestamp: Optional[str]


class DonationTrace(BaseModel):
    donation: DonationDetail
    audit_trail: list[AuditEntry]


async def _get_or_404(session: AsyncSession, donation_id: int) -> Donation:
    donation = await session.get(Donation, donation_id)
    if not donation:
        raise HTTPException(status_code=404, detail=f"Donation not found: {donation_id}")
    return donation


@router.post("", response_model=DonationDetail, status_code=201)
async def create_donation(body: DonationCreate, session: AsyncSession = Depends(get_session)):
    """
    Create a pending donation.

    Every field problem is reported at once as a list of
    {"field", "message"} objects with HTTP 422.
    """
    errors = check_donation_fields(
        donation_type=body.donation_type,
        amount=body.amount,
        donor_name=body.donor_name,
        email=body.email,
        needs_receipt=body.needs_receipt,
        payment_method=body.payment_method,
    )
    if errors:
        return JSONResponse(
            status_code=422,
            content={"errors": [{"field": e.field, "message": e.message} for e in errors]},
        )

    donation = Donation(
        donation_type=body.donation_type,
        amount=Decimal(str(body.amount)),
        donor_name=body.donor_name.strip(),
        phone=body.phone,
        email=body.email or None,
        prayer=body.prayer,
        needs_receipt=body.needs_receipt,
        payment_method=body.payment_method or None,
        notes=body.notes,
        created_by=CreatedBy.FRONTEND.value,
        status=DonationStatus.PENDING.value,
    )
    session.add(donation)
    await session.flush()
    await log_event(session, "donation_created", donation_id=donation.id, details={
        "donation_type": donation.donation_type,
        "amount": str(donation.amount),
        "payment_method": donation.payment_method,
    })
    await session.commit()
    await session.refresh(donation)
    return donation


@router.get("/{donation_id}", response_model=DonationDetail)
async def get_donation(donation_id: int, session: AsyncSession = Depends(get_session)):
    return await _get_or_404(session, donation_id)


@router.get("/{donation_id}/trace", response_model=DonationTrace)
async def get_donation_trace(donation_id: int, session: AsyncSession = Depends(get_session)):
    """
    Full audit trail for a donation.

    Every callback, verification failure, classification and transition,
    in chronological order.
    """
    donation = await _get_or_404(session, donation_id)

    result = await session.execute(
        select(AuditLog)
        .where(AuditLog.donation_id == donation_id)
        .order_by(AuditLog.timestamp.asc(), AuditLog.id.asc())
    )
    logs = result.scalars().all()

    audit_trail = []
    for log in logs:
        details = None
        if log.details:
            try:
                details = json.loads(log.details)
            except (json.JSONDecodeError, TypeError):
                details = {"raw": log.details}

        audit_trail.append(AuditEntry(
            id=log.id,
            action=log.action,
            details=details,
            timestamp=log.timestamp.isoformat() if log.timestamp else None,
        ))

    return DonationTrace(
        donation=DonationDetail.model_validate(donation),
        audit_trail=audit_trail,
    )


@router.post("/{donation_id}/cancel", response_model=DonationDetail)
async def cancel_donation(
    donation_id: int,
    session: AsyncSession = Depends(get_session),
    actor: Optional[str] = Depends(require_admin),
):
    """Cancel a pending or awaiting-payment donation. 409 once it is paid or cancelled."""
    donation = await _get_or_404(session, donation_id)
    try:
        await cancel(session, donation, actor=actor)
    except InvalidTransition as e:
        await session.rollback()
        raise HTTPException(status_code=409, detail=str(e))
    await session.commit()
    return donation


@router.post("/{donation_id}/mark_paid", response_model=DonationDetail)
async def mark_donation_paid(
    donation_id: int,
    session: AsyncSession = Depends(get_session),
    actor: Optional[str] = Depends(require_admin),
):
    """Administrative override for payments settled outside the gateways. Idempotent."""
    donation = await _get_or_404(session, donation_id)
    try:
        await manual_mark_paid(session, donation, actor=actor)
    except InvalidTransition as e:
        await session.rollback()
        raise HTTPException(status_code=409, detail=str(e))
    await session.commit()
    return donation
