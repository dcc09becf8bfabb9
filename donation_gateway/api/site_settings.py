"""
Site settings endpoints.

GET /settings/payment_gateway — Current default gateway and the supported set.
PUT /settings/payment_gateway — Change the default for new checkouts.
"""

from typing import Optional

from fastapi import APIRouter, Depends, HTTPException
from pydantic import BaseModel
from sqlalchemy.ext.asyncio import AsyncSession

from donation_gateway.api.deps import require_admin
from donation_gateway.audit.logger import log_event
from donation_gateway.config import settings
from donation_gateway.database import get_session
from donation_gateway.engine.errors import UnknownGateway
from donation_gateway.engine.site_settings import get_payment_gateway, set_payment_gateway
from donation_gateway.gateways.registry import GatewayRegistry

router = APIRouter(prefix="/settings", tags=["settings"])


class PaymentGatewaySetting(BaseModel):
    payment_gateway: str
    available: list[str]


class PaymentGatewayUpdate(BaseModel):
    payment_gateway: str


@router.get("/payment_gateway", response_model=PaymentGatewaySetting)
async def read_payment_gateway(session: AsyncSession = Depends(get_session)):
    return PaymentGatewaySetting(
        payment_gateway=await get_payment_gateway(session, settings),
        available=GatewayRegistry.available_gateways(),
    )


@router.put("/payment_gateway", response_model=PaymentGatewaySetting)
async def update_payment_gateway(
    body: PaymentGatewayUpdate,
    session: AsyncSession = Depends(get_session),
    actor: Optional[str] = Depends(require_admin),
):
    """Only new checkouts follow the change; pinned donations keep their gateway."""
    try:
        value = await set_payment_gateway(session, body.payment_gateway)
    except UnknownGateway as e:
        raise HTTPException(status_code=400, detail=str(e))

    await log_event(session, "payment_gateway_changed", details={"payment_gateway": value, "actor": actor})
    await session.commit()
    return PaymentGatewaySetting(payment_gateway=value, available=GatewayRegistry.available_gateways())
