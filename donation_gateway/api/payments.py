"""
Payment gateway endpoints.

GET  /payments/{id}/checkout  — Auto-submitting form posting to the gateway.
POST /payments/notify         — Server-to-server payment notification.
POST /payments/payment_info   — Delayed-payment code issuance.
POST /payments/result         — Donor redirect; renders the outcome page.

Gateways post application/x-www-form-urlencoded bodies and expect the
literal acknowledgment string in the response to notify/payment_info;
anything else is treated as a failure and re-delivered.
"""

import logging
from typing import Optional

from fastapi import APIRouter, BackgroundTasks, Depends, HTTPException, Query, Request
from fastapi.responses import HTMLResponse, JSONResponse, PlainTextResponse, RedirectResponse
from sqlalchemy.ext.asyncio import AsyncSession

from donation_gateway.api.deps import get_dispatcher, get_receipt_sender, get_registry
from donation_gateway.api.pages import render_checkout, render_result
from donation_gateway.config import settings
from donation_gateway.database import get_session
from donation_gateway.engine.checkout import CheckoutUrls, begin_checkout
from donation_gateway.engine.dispatcher import CallbackDispatcher, DispatchOutcome
from donation_gateway.engine.errors import (
    DonationAlreadyPaid,
    DonationValidationError,
    GatewayError,
    InvalidTransition,
    UnknownGateway,
)
from donation_gateway.engine.receipts import ReceiptSender
from donation_gateway.gateways.registry import GatewayRegistry
from donation_gateway.models.donation import Donation

logger = logging.getLogger("donation_gateway.api.payments")

router = APIRouter(prefix="/payments", tags=["payments"])


async def _form_params(request: Request) -> dict[str, str]:
    form = await request.form()
    return {key: str(value) for key, value in form.items()}


def _acknowledge(
    outcome: DispatchOutcome,
    background_tasks: BackgroundTasks,
    receipts: ReceiptSender,
) -> PlainTextResponse:
    if outcome.receipt_due and outcome.donation_id is not None:
        background_tasks.add_task(receipts.send, outcome.donation_id)
    return PlainTextResponse(outcome.body, status_code=outcome.status_code)


@router.get("/{donation_id}/checkout", response_class=HTMLResponse)
async def checkout(
    donation_id: int,
    request: Request,
    gateway: Optional[str] = Query(None, description="Gateway for a not-yet-pinned donation"),
    session: AsyncSession = Depends(get_session),
    registry: GatewayRegistry = Depends(get_registry),
):
    """
    Start (or restart) payment for a donation.

    Already paid: redirect back to the site. Cancelled: 409. A record that
    cannot be charged as stored: 422 with the field errors.
    """
    donation = await session.get(Donation, donation_id)
    if not donation:
        raise HTTPException(status_code=404, detail=f"Donation not found: {donation_id}")

    urls = CheckoutUrls(
        return_url=str(request.url_for("payment_result")),
        notify_url=str(request.url_for("payment_notify")),
        client_back_url=settings.site_url,
        payment_info_url=str(request.url_for("payment_info")),
    )
    try:
        form = await begin_checkout(session, donation, registry, urls, gateway=gateway)
    except DonationAlreadyPaid:
        logger.info("Donation %s already paid; redirecting to site", donation_id)
        return RedirectResponse(settings.site_url, status_code=303)
    except InvalidTransition as e:
        raise HTTPException(status_code=409, detail=str(e))
    except UnknownGateway as e:
        raise HTTPException(status_code=400, detail=str(e))
    except DonationValidationError as e:
        await session.rollback()
        return JSONResponse(status_code=422, content={"errors": e.as_dicts()})
    except GatewayError as e:
        await session.rollback()
        logger.error("Checkout for donation %s failed: %s", donation_id, e)
        raise HTTPException(status_code=500, detail="Unable to start payment for this donation")

    return HTMLResponse(render_checkout(form))


@router.post("/notify", name="payment_notify", response_class=PlainTextResponse)
async def notify(
    request: Request,
    background_tasks: BackgroundTasks,
    session: AsyncSession = Depends(get_session),
    dispatcher: CallbackDispatcher = Depends(get_dispatcher),
    receipts: ReceiptSender = Depends(get_receipt_sender),
):
    params = await _form_params(request)
    outcome = await dispatcher.handle_notify(session, params)
    return _acknowledge(outcome, background_tasks, receipts)


@router.post("/payment_info", name="payment_info", response_class=PlainTextResponse)
async def payment_info(
    request: Request,
    background_tasks: BackgroundTasks,
    session: AsyncSession = Depends(get_session),
    dispatcher: CallbackDispatcher = Depends(get_dispatcher),
    receipts: ReceiptSender = Depends(get_receipt_sender),
):
    params = await _form_params(request)
    outcome = await dispatcher.handle_payment_info(session, params)
    return _acknowledge(outcome, background_tasks, receipts)


@router.post("/result", name="payment_result", response_class=HTMLResponse)
async def result(
    request: Request,
    background_tasks: BackgroundTasks,
    session: AsyncSession = Depends(get_session),
    dispatcher: CallbackDispatcher = Depends(get_dispatcher),
    receipts: ReceiptSender = Depends(get_receipt_sender),
):
    params = await _form_params(request)
    page = await dispatcher.handle_result(session, params)
    if page.receipt_due and page.donation is not None:
        background_tasks.add_task(receipts.send, page.donation.id)
    return HTMLResponse(render_result(page, settings.site_url), status_code=page.status_code)
