"""
Checkout: pin a gateway and build the outbound payment form.

The gateway is pinned on the first checkout and never changes afterwards;
later attempts for the same donation reuse it even if the site default has
been switched. Each attempt gets a fresh merchant trade number because the
processors reject a number they have already seen.
"""

import logging
from dataclasses import dataclass
from typing import Optional, Union

from sqlalchemy.ext.asyncio import AsyncSession

from donation_gateway.audit.logger import log_event
from donation_gateway.engine.errors import DonationAlreadyPaid, InvalidTransition
from donation_gateway.engine.validation import validate_donation
from donation_gateway.gateways.base import CheckoutForm, GatewayAdapter
from donation_gateway.gateways.registry import GatewayRegistry, parse_gateway_name
from donation_gateway.models.donation import Donation
from donation_gateway.models.enums import DonationStatus, GatewayName

logger = logging.getLogger("donation_gateway.checkout")


@dataclass(frozen=True)
class CheckoutUrls:
    return_url: str  # donor redirect (result page)
    notify_url: str  # server-to-server payment notification
    client_back_url: Optional[str] = None  # "back to site" link on the gateway page
    payment_info_url: Optional[str] = None  # delayed-payment code issuance


async def resolve_checkout_adapter(
    session: AsyncSession,
    donation: Donation,
    registry: GatewayRegistry,
    gateway: Union[str, GatewayName, None] = None,
) -> GatewayAdapter:
    """Pinned gateway first, then the explicit choice, then the cached default."""
    if donation.gateway_name:
        if gateway is not None and parse_gateway_name(gateway).value != donation.gateway_name:
            logger.warning(
                "Donation %s is pinned to %s; ignoring requested gateway %s",
                donation.id,
                donation.gateway_name,
                gateway,
            )
        return registry.build(donation.gateway_name)
    if gateway is not None:
        return registry.build(gateway)
    return await registry.current(session)


async def begin_checkout(
    session: AsyncSession,
    donation: Donation,
    registry: GatewayRegistry,
    urls: CheckoutUrls,
    gateway: Union[str, GatewayName, None] = None,
) -> CheckoutForm:
    """
    Pin the gateway, assign a new merchant trade number, build the form.

    Raises:
        DonationAlreadyPaid: The donation is already paid.
        InvalidTransition: The donation was cancelled.
        DonationValidationError: The donation cannot be charged as recorded
            (e.g. a fractional amount; both gateways take whole NT dollars).
        UnknownGateway: The requested or configured gateway is not registered.
        GatewayError: No valid merchant trade number fits the gateway limit.
    """
    status = donation.status_enum
    if status is DonationStatus.PAID:
        raise DonationAlreadyPaid(donation.id)
    if status is DonationStatus.CANCELLED:
        raise InvalidTransition(donation.id, status.value, "checkout")
    validate_donation(donation)

    adapter = await resolve_checkout_adapter(session, donation, registry, gateway)

    if not donation.gateway_name:
        donation.gateway_name = adapter.name.value
    donation.merchant_trade_no = adapter.generate_trade_no(donation)

    form = adapter.build_checkout_form(
        donation,
        return_url=urls.return_url,
        notify_url=urls.notify_url,
        client_back_url=urls.client_back_url,
        payment_info_url=urls.payment_info_url,
    )

    await log_event(session, "checkout_started", donation_id=donation.id, details={
        "gateway": adapter.name.value,
        "merchant_trade_no": donation.merchant_trade_no,
        "payment_method": donation.payment_method,
        "amount": str(donation.amount),
    })
    await session.commit()

    logger.info(
        "Checkout for donation %s via %s (trade no %s)",
        donation.id,
        adapter.name.value,
        donation.merchant_trade_no,
    )
    return form
