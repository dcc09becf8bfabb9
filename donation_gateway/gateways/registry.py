"""
Gateway registry.

Resolves a gateway identifier to an adapter. New checkouts use the
site-wide default (cached, admin-editable); a donation that was pinned at
checkout always resolves to its pinned gateway, so toggling the default
mid-transaction never changes how in-flight callbacks are verified.
"""

import logging
from typing import Optional, Union

from sqlalchemy.ext.asyncio import AsyncSession

from donation_gateway.config import Settings, settings as default_settings
from donation_gateway.engine.errors import UnknownGateway
from donation_gateway.engine.site_settings import get_payment_gateway
from donation_gateway.gateways.base import GatewayAdapter, GatewayCredentials
from donation_gateway.gateways.ecpay import EcpayAdapter
from donation_gateway.gateways.newebpay import NewebpayAdapter
from donation_gateway.models.donation import Donation
from donation_gateway.models.enums import GatewayName

logger = logging.getLogger("donation_gateway.registry")

GATEWAYS: dict[GatewayName, type[GatewayAdapter]] = {
    GatewayName.ECPAY: EcpayAdapter,
    GatewayName.NEWEBPAY: NewebpayAdapter,
}


def parse_gateway_name(name: Union[str, GatewayName, None]) -> GatewayName:
    """
    Raises:
        UnknownGateway: If name is not a registered gateway.
    """
    try:
        gateway = GatewayName(name)
    except ValueError:
        raise UnknownGateway(name) from None
    if gateway not in GATEWAYS:
        raise UnknownGateway(name)
    return gateway


class GatewayRegistry:
    """Builds adapters with merchant credentials taken from settings."""

    def __init__(self, settings: Optional[Settings] = None):
        self.settings = settings or default_settings

    def credentials_for(self, gateway: GatewayName) -> GatewayCredentials:
        s = self.settings
        if gateway is GatewayName.ECPAY:
            return GatewayCredentials(s.ecpay_merchant_id, s.ecpay_hash_key, s.ecpay_hash_iv, s.ecpay_api_url)
        if gateway is GatewayName.NEWEBPAY:
            return GatewayCredentials(
                s.newebpay_merchant_id, s.newebpay_hash_key, s.newebpay_hash_iv, s.newebpay_api_url
            )
        raise UnknownGateway(gateway)

    def build(self, name: Union[str, GatewayName, None]) -> GatewayAdapter:
        """
        Raises:
            UnknownGateway: For unrecognized identifiers. Nothing is mutated.
        """
        gateway = parse_gateway_name(name)
        adapter_cls = GATEWAYS[gateway]
        return adapter_cls(self.credentials_for(gateway), trade_description=self.settings.trade_description)

    @staticmethod
    def available_gateways() -> list[str]:
        return [g.value for g in GATEWAYS]

    async def current(self, session: AsyncSession) -> GatewayAdapter:
        """Adapter for the site-wide default gateway."""
        return self.build(await get_payment_gateway(session, self.settings))

    async def for_donation(self, session: AsyncSession, donation: Donation) -> GatewayAdapter:
        """Pinned adapter if the donation has one, otherwise the current default."""
        if donation.gateway_name:
            return self.build(donation.gateway_name)
        adapter = await self.current(session)
        logger.debug("Donation %s not pinned; using default gateway %s", donation.id, adapter.name.value)
        return adapter
