"""
Site-wide settings store with a process-local read cache.

Only the default payment gateway lives here. Reads are cached for
settings.site_setting_cache_ttl seconds; writes invalidate the cache in
this process immediately. The value is consulted for new checkouts only,
never for a donation that is already pinned to a gateway.
"""

import logging
import time
from typing import Any, Optional

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from donation_gateway.config import Settings, settings as default_settings
from donation_gateway.engine.errors import UnknownGateway
from donation_gateway.models.donation import SiteSetting
from donation_gateway.models.enums import GatewayName

logger = logging.getLogger("donation_gateway.site_settings")

PAYMENT_GATEWAY_KEY = "payment_gateway"

# key -> (expires_at monotonic seconds, value)
_cache: dict[str, tuple[float, Any]] = {}


def invalidate_cache(key: Optional[str] = None) -> None:
    if key is None:
        _cache.clear()
    else:
        _cache.pop(key, None)


async def _get(session: AsyncSession, key: str, ttl: int) -> Any:
    cached = _cache.get(key)
    now = time.monotonic()
    if cached and cached[0] > now:
        return cached[1]

    row = (await session.execute(select(SiteSetting).where(SiteSetting.key == key))).scalar_one_or_none()
    value = row.typed_value() if row else None
    _cache[key] = (now + ttl, value)
    return value


async def _set(session: AsyncSession, key: str, value: Any) -> SiteSetting:
    if key not in SiteSetting.VALID_KEYS:
        raise ValueError(f"Unknown site setting: {key}")

    row = (await session.execute(select(SiteSetting).where(SiteSetting.key == key))).scalar_one_or_none()
    if row is None:
        row = SiteSetting(key=key)
        session.add(row)
    row.value = str(value)
    await session.commit()
    invalidate_cache(key)
    return row


async def get_payment_gateway(session: AsyncSession, settings: Optional[Settings] = None) -> str:
    """Current default gateway identifier, falling back to the configured default."""
    settings = settings or default_settings
    value = await _get(session, PAYMENT_GATEWAY_KEY, settings.site_setting_cache_ttl)
    return value or settings.default_payment_gateway


async def set_payment_gateway(session: AsyncSession, value: str) -> str:
    """
    Change the default gateway for new checkouts.

    Raises:
        UnknownGateway: If value is not a supported gateway.
    """
    try:
        gateway = GatewayName(value)
    except ValueError:
        raise UnknownGateway(value) from None

    await _set(session, PAYMENT_GATEWAY_KEY, gateway.value)
    logger.info("Default payment gateway set to %s", gateway.value)
    return gateway.value
