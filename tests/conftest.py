"""Shared test fixtures."""

import json
from decimal import Decimal

import pytest
import pytest_asyncio
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker, create_async_engine
from sqlalchemy.pool import StaticPool

from donation_gateway.config import Settings
from donation_gateway.engine import site_settings
from donation_gateway.engine.dispatcher import CallbackDispatcher
from donation_gateway.gateways.registry import GatewayRegistry
from donation_gateway.models.donation import Base, Donation
from donation_gateway.models.enums import DonationStatus, GatewayName


@pytest.fixture(autouse=True)
def clear_site_setting_cache():
    site_settings.invalidate_cache()
    yield
    site_settings.invalidate_cache()


@pytest_asyncio.fixture
async def db_engine():
    """Fresh in-memory database shared by every session of one test."""
    engine = create_async_engine("sqlite+aiosqlite:///:memory:", echo=False, poolclass=StaticPool)
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)
    yield engine
    await engine.dispose()


@pytest.fixture
def session_factory(db_engine):
    return async_sessionmaker(db_engine, class_=AsyncSession, expire_on_commit=False)


@pytest_asyncio.fixture
async def db_session(session_factory):
    async with session_factory() as session:
        yield session


@pytest.fixture
def test_settings():
    return Settings(
        _env_file=None,
        database_url="sqlite+aiosqlite:///:memory:",
        site_url="https://temple.example/",
        admin_api_token=None,
        default_payment_gateway="ecpay",
        reject_unverified_callbacks=True,
    )


@pytest.fixture
def registry(test_settings):
    return GatewayRegistry(test_settings)


@pytest.fixture
def dispatcher(registry, test_settings):
    return CallbackDispatcher(registry, test_settings)


@pytest.fixture
def ecpay(registry):
    return registry.build(GatewayName.ECPAY)


@pytest.fixture
def newebpay(registry):
    return registry.build(GatewayName.NEWEBPAY)


@pytest.fixture
def make_donation(db_session):
    """Factory for persisted donations."""

    async def _make(**overrides) -> Donation:
        fields = {
            "donation_type": "incense",
            "amount": Decimal("1000"),
            "donor_name": "王小明",
            "email": "donor@example.com",
            "needs_receipt": True,
            "payment_method": "credit_card",
            "status": DonationStatus.PENDING.value,
        }
        fields.update(overrides)
        donation = Donation(**fields)
        db_session.add(donation)
        await db_session.commit()
        await db_session.refresh(donation)
        return donation

    return _make


@pytest.fixture
def ecpay_callback(ecpay):
    """Build a correctly signed ECPay callback from plain fields."""

    def _build(**fields) -> dict[str, str]:
        params = {
            "MerchantID": ecpay.credentials.merchant_id,
            "RtnCode": "1",
            "RtnMsg": "交易成功",
            "PaymentType": "Credit_CreditCard",
            "PaymentDate": "2024/03/15 14:30:00",
            "TradeDate": "2024/03/15 14:28:00",
            "SimulatePaid": "0",
        }
        params.update({k: str(v) for k, v in fields.items()})
        signed = {k: v for k, v in params.items() if v.strip()}
        params["CheckMacValue"] = ecpay.codec.sign_params(signed)
        return params

    return _build


@pytest.fixture
def newebpay_callback(newebpay):
    """Build an encrypted, signed Newebpay callback from a decoded payload."""

    def _build(status: str = "SUCCESS", message: str = "付款成功", **result_fields) -> dict[str, str]:
        payload = {
            "Status": status,
            "Message": message,
            "Result": {"MerchantID": newebpay.credentials.merchant_id, **result_fields},
        }
        trade_info = newebpay.cipher.encrypt(json.dumps(payload, ensure_ascii=False))
        return {
            "Status": status,
            "MerchantID": newebpay.credentials.merchant_id,
            "TradeInfo": trade_info,
            "TradeSha": newebpay.cipher.sign(trade_info),
            "Version": "2.0",
        }

    return _build
