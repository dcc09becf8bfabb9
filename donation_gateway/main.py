"""
Donation Gateway: payment integration and reconciliation for a temple donation site.

Donors are sent to ECPay or Newebpay to pay; the gateways report back on
three channels (payment notification, delayed-payment code issuance, donor
redirect). Every report is verified, correlated to its donation, and
applied through a forward-only state machine with an append-only audit
trail.

Start the server:
    uvicorn donation_gateway.main:app --reload
"""

import logging
from contextlib import asynccontextmanager

from fastapi import FastAPI

from donation_gateway.api.donations import router as donations_router
from donation_gateway.api.health import router as health_router
from donation_gateway.api.payments import router as payments_router
from donation_gateway.api.site_settings import router as site_settings_router
from donation_gateway.config import settings
from donation_gateway.database import init_db

logging.basicConfig(
    level=getattr(logging, settings.log_level.upper(), logging.INFO),
    format="%(asctime)s - %(name)s - %(levelname)s - %(message)s",
)


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Initialize database on startup."""
    await init_db()
    yield


app = FastAPI(
    title="Donation Gateway",
    description=(
        "Payment gateway integration for donations: ECPay and Newebpay checkout, "
        "signed callback verification, idempotent state transitions, "
        "and immutable audit trails."
    ),
    version="0.1.0",
    lifespan=lifespan,
)

app.include_router(health_router)
app.include_router(donations_router)
app.include_router(payments_router)
app.include_router(site_settings_router)
