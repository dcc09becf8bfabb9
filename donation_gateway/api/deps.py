"""Shared FastAPI dependencies."""

from typing import Optional

from fastapi import Header, HTTPException

from donation_gateway.config import settings
from donation_gateway.engine.dispatcher import CallbackDispatcher
from donation_gateway.engine.receipts import LoggingReceiptSender, ReceiptSender
from donation_gateway.gateways.registry import GatewayRegistry


def get_registry() -> GatewayRegistry:
    return GatewayRegistry(settings)


def get_dispatcher() -> CallbackDispatcher:
    return CallbackDispatcher(GatewayRegistry(settings), settings)


def get_receipt_sender() -> ReceiptSender:
    return LoggingReceiptSender()


async def require_admin(x_admin_token: Optional[str] = Header(None)) -> Optional[str]:
    """Check X-Admin-Token when an admin token is configured; returns the actor label."""
    if settings.admin_api_token is None:
        return None
    if x_admin_token != settings.admin_api_token:
        raise HTTPException(status_code=401, detail="Invalid or missing admin token")
    return "admin"
