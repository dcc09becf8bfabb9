"""
Callback dispatcher: routes inbound gateway deliveries to the state machine.

Three channels share this router:

  notify        server-to-server payment notification; answered with the
                gateway's literal ACK body, anything else means "retry"
  payment_info  delayed-payment code issuance; same ACK contract
  result        donor redirect; renders an outcome page

For each delivery:

  1. Correlate to a donation (internal id → merchant trade no → decrypted
     merchant trade no)
  2. Resolve the adapter (the donation's pinned gateway, else sniff the
     payload shape)
  3. Verify the signature (rejected or logged, per settings)
  4. Parse into a canonical Result and classify it as payment,
     provisioning or failure
  5. Apply the matching state transition and commit

Deliveries are independent units of work; ordering and duplicates are
handled by the state machine's conditional updates, not here.
"""

import logging
from collections.abc import Mapping
from dataclasses import dataclass
from enum import Enum
from typing import Any, Optional

from sqlalchemy import select
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession

from donation_gateway.audit.logger import log_event
from donation_gateway.config import Settings, settings as default_settings
from donation_gateway.engine.errors import DonationValidationError
from donation_gateway.engine.receipts import receipt_due
from donation_gateway.engine.state_machine import Transition, mark_paid, save_payment_info
from donation_gateway.gateways.base import GatewayAdapter
from donation_gateway.gateways.registry import GatewayRegistry
from donation_gateway.gateways.result import Result
from donation_gateway.models.donation import Donation
from donation_gateway.models.enums import Channel, DonationStatus, EventKind, GatewayName

logger = logging.getLogger("donation_gateway.dispatcher")

# Largest value a SQL INTEGER primary key can hold.
MAX_DONATION_ID = 2**63 - 1


class PageOutcome(str, Enum):
    PAID = "paid"
    AWAITING_PAYMENT = "awaiting_payment"
    FAILED = "failed"
    NOT_FOUND = "not_found"


PAGE_MESSAGES: dict[PageOutcome, str] = {
    PageOutcome.PAID: "感謝您的捐獻！付款已完成。",
    PageOutcome.AWAITING_PAYMENT: "取號成功！請於期限內完成繳費。",
    PageOutcome.FAILED: "付款未完成，請稍後再試或改用其他付款方式。",
    PageOutcome.NOT_FOUND: "找不到捐獻記錄",
}

REASON_CANCELLED = "此捐獻已取消。"
REASON_UNVERIFIED = "付款資料驗證失敗，請聯繫協會確認。"
REASON_PROCESSING_ERROR = "系統暫時無法確認付款結果，請稍後再查詢或聯繫協會。"


@dataclass
class DispatchOutcome:
    """Response for a server-to-server delivery."""

    channel: Channel
    gateway: GatewayName
    body: str
    status_code: int = 200
    acknowledged: bool = False
    donation_id: Optional[int] = None
    kind: Optional[EventKind] = None
    transition: Optional[Transition] = None
    receipt_due: bool = False


@dataclass
class ResultPage:
    """Outcome shown to the donor after the gateway redirect."""

    outcome: PageOutcome
    message: str
    status_code: int = 200
    donation: Optional[Donation] = None
    trade_no: Optional[str] = None
    payment_info: Optional[str] = None
    receipt_due: bool = False


def classify(adapter: GatewayAdapter, result: Result, channel: Channel) -> EventKind:
    """Decide whether a parsed delivery is a payment, an issuance, or a failure."""
    if adapter.is_provisioning_notice(result, channel):
        return EventKind.PROVISIONING
    if result.success:
        return EventKind.PAYMENT
    return EventKind.FAILURE


def sniff_gateway(params: Mapping[str, Any]) -> GatewayName:
    """Guess the gateway from payload shape; only used for unpinned donations."""
    if "TradeInfo" in params or "TradeSha" in params:
        return GatewayName.NEWEBPAY
    return GatewayName.ECPAY


class CallbackDispatcher:
    def __init__(self, registry: Optional[GatewayRegistry] = None, settings: Optional[Settings] = None):
        self.settings = settings or default_settings
        self.registry = registry or GatewayRegistry(self.settings)

    # -- correlation -----------------------------------------------------

    async def _by_trade_no(self, session: AsyncSession, trade_no: str) -> Optional[Donation]:
        stmt = select(Donation).where(Donation.merchant_trade_no == trade_no)
        return (await session.execute(stmt)).scalar_one_or_none()

    async def find_donation(self, session: AsyncSession, params: Mapping[str, Any]) -> Optional[Donation]:
        """
        Correlate a callback with a donation; first match wins.

          1. Internal donation id echoed in a correlation field
          2. Plaintext merchant trade number
          3. Merchant trade number read from the decrypted payload
        """
        adapters = [self.registry.build(name) for name in self.registry.available_gateways()]
        correlations = [a.correlation(params) for a in adapters]

        for c in correlations:
            if c.donation_id is not None and 0 < c.donation_id <= MAX_DONATION_ID:
                donation = await session.get(Donation, c.donation_id)
                if donation is not None:
                    return donation

        for c in correlations:
            if c.merchant_trade_no:
                donation = await self._by_trade_no(session, c.merchant_trade_no)
                if donation is not None:
                    return donation

        adapter = self.registry.build(sniff_gateway(params))
        try:
            decrypted = adapter.decrypted_correlation(params)
        except ValueError as e:
            logger.warning("[%s] Could not decrypt callback for correlation: %s", adapter.name.value, e)
            return None
        if decrypted.merchant_trade_no:
            return await self._by_trade_no(session, decrypted.merchant_trade_no)
        return None

    def resolve_adapter(self, donation: Optional[Donation], params: Mapping[str, Any]) -> GatewayAdapter:
        if donation is not None and donation.gateway_name:
            return self.registry.build(donation.gateway_name)
        gateway = sniff_gateway(params)
        if donation is not None:
            logger.warning("Donation %s has no pinned gateway; payload looks like %s", donation.id, gateway.value)
        return self.registry.build(gateway)

    # -- verification ----------------------------------------------------

    async def _verify(
        self,
        session: AsyncSession,
        adapter: GatewayAdapter,
        params: Mapping[str, Any],
        channel: Channel,
        donation: Optional[Donation],
    ) -> bool:
        """True if processing may continue."""
        if adapter.verify_callback(params):
            return True

        tag = f"[{adapter.name.value} {channel.value}]"
        await log_event(session, "callback_unverified", donation_id=donation.id if donation else None, details={
            "gateway": adapter.name.value,
            "channel": channel.value,
            "rejected": self.settings.reject_unverified_callbacks,
        })
        if self.settings.reject_unverified_callbacks:
            logger.error("%s Signature verification failed; delivery rejected", tag)
            return False
        logger.error("%s Signature verification failed; continuing because rejection is disabled", tag)
        return True

    # -- transitions -----------------------------------------------------

    async def _apply(
        self,
        session: AsyncSession,
        donation: Donation,
        adapter: GatewayAdapter,
        params: Mapping[str, Any],
        result: Result,
        kind: EventKind,
        channel: Channel,
    ) -> Optional[Transition]:
        if donation.merchant_trade_no and result.merchant_trade_no and result.merchant_trade_no != donation.merchant_trade_no:
            logger.warning(
                "Donation %s: callback trade no %s differs from latest checkout %s",
                donation.id,
                result.merchant_trade_no,
                donation.merchant_trade_no,
            )
        if result.trade_amt is not None and result.trade_amt != int(donation.amount):
            logger.warning(
                "Donation %s: gateway amount %s differs from donation amount %s",
                donation.id,
                result.trade_amt,
                donation.amount,
            )

        if kind is EventKind.PAYMENT:
            return await mark_paid(session, donation, result)
        if kind is EventKind.PROVISIONING:
            if channel is not Channel.PAYMENT_INFO:
                result = adapter.parse_payment_info_callback(params)
            return await save_payment_info(session, donation, result)
        if kind is EventKind.FAILURE:
            logger.warning("Donation %s: payment not successful (%s %s)", donation.id, result.rtn_code, result.rtn_msg)
            await log_event(session, "payment_not_successful", donation_id=donation.id, details=result.audit_details())
            return None
        raise ValueError(f"Unhandled event kind: {kind}")

    # -- server-to-server channels --------------------------------------

    async def handle_notify(self, session: AsyncSession, params: Mapping[str, Any]) -> DispatchOutcome:
        return await self._handle_server_callback(session, params, Channel.NOTIFY)

    async def handle_payment_info(self, session: AsyncSession, params: Mapping[str, Any]) -> DispatchOutcome:
        return await self._handle_server_callback(session, params, Channel.PAYMENT_INFO)

    async def _handle_server_callback(
        self,
        session: AsyncSession,
        params: Mapping[str, Any],
        channel: Channel,
    ) -> DispatchOutcome:
        donation = await self.find_donation(session, params)
        adapter = self.resolve_adapter(donation, params)
        tag = f"[{adapter.name.value} {channel.value}]"
        logger.info("%s Received fields: %s", tag, ", ".join(sorted(params)))

        if not await self._verify(session, adapter, params, channel, donation):
            await session.commit()
            return DispatchOutcome(
                channel=channel,
                gateway=adapter.name,
                body=adapter.nack_body("Signature Verification Failed"),
                status_code=400,
                donation_id=donation.id if donation else None,
            )

        if donation is None:
            logger.error("%s Donation not found", tag)
            await log_event(session, "callback_unmatched", details={
                "gateway": adapter.name.value,
                "channel": channel.value,
                "fields": sorted(params),
            })
            await session.commit()
            return DispatchOutcome(channel=channel, gateway=adapter.name, body=adapter.nack_body("Donation Not Found"))

        donation_id = donation.id
        if channel is Channel.PAYMENT_INFO:
            result = adapter.parse_payment_info_callback(params)
        else:
            result = adapter.parse_callback(params)
        kind = classify(adapter, result, channel)
        await log_event(session, "callback_received", donation_id=donation_id, details={
            "channel": channel.value,
            "kind": kind.value,
            **result.audit_details(),
        })

        try:
            transition = await self._apply(session, donation, adapter, params, result, kind, channel)
            due = transition is not None and receipt_due(donation, transition)
            await session.commit()
        except (DonationValidationError, SQLAlchemyError):
            await session.rollback()
            logger.exception("%s Failed to apply %s to donation %s", tag, kind.value, donation_id)
            return DispatchOutcome(
                channel=channel,
                gateway=adapter.name,
                body=adapter.nack_body("Processing Error"),
                status_code=500,
                donation_id=donation_id,
                kind=kind,
            )

        logger.info("%s Donation %s processed as %s", tag, donation_id, kind.value)
        return DispatchOutcome(
            channel=channel,
            gateway=adapter.name,
            body=adapter.ack_body,
            acknowledged=True,
            donation_id=donation_id,
            kind=kind,
            transition=transition,
            receipt_due=due,
        )

    # -- donor redirect --------------------------------------------------

    def _page_for(self, donation: Donation, trade_no: Optional[str]) -> Optional[ResultPage]:
        status = donation.status_enum
        if status is DonationStatus.PAID:
            return ResultPage(PageOutcome.PAID, PAGE_MESSAGES[PageOutcome.PAID], donation=donation, trade_no=trade_no)
        if status is DonationStatus.AWAITING_PAYMENT:
            return ResultPage(
                PageOutcome.AWAITING_PAYMENT,
                PAGE_MESSAGES[PageOutcome.AWAITING_PAYMENT],
                donation=donation,
                trade_no=trade_no,
                payment_info=donation.payment_info_summary(),
            )
        if status is DonationStatus.CANCELLED:
            return ResultPage(PageOutcome.FAILED, REASON_CANCELLED, donation=donation, trade_no=trade_no)
        if status is DonationStatus.PENDING:
            return None
        raise ValueError(f"Unhandled donation status: {status}")

    def _failed(self, donation: Donation, reason: str, trade_no: Optional[str]) -> ResultPage:
        return ResultPage(PageOutcome.FAILED, reason, donation=donation, trade_no=trade_no)

    async def handle_result(self, session: AsyncSession, params: Mapping[str, Any]) -> ResultPage:
        """
        Outcome page for the donor redirect.

        The persisted status wins: if the notify channel already recorded
        the payment (or the issued code), the page reflects that. Only a
        still-pending donation is advanced from the redirect's own data,
        which covers the redirect arriving before the notification.
        """
        donation = await self.find_donation(session, params)
        if donation is None:
            logger.error("[result] Donation not found")
            return ResultPage(PageOutcome.NOT_FOUND, PAGE_MESSAGES[PageOutcome.NOT_FOUND], status_code=404)

        adapter = self.resolve_adapter(donation, params)
        await session.refresh(donation)
        trade_no = adapter.correlation(params).merchant_trade_no or donation.merchant_trade_no

        page = self._page_for(donation, trade_no)
        if page is not None:
            return page

        if not await self._verify(session, adapter, params, Channel.RESULT, donation):
            await session.commit()
            return self._failed(donation, REASON_UNVERIFIED, trade_no)

        result = adapter.parse_callback(params)
        kind = classify(adapter, result, Channel.RESULT)
        trade_no = result.merchant_trade_no or trade_no
        await log_event(session, "callback_received", donation_id=donation.id, details={
            "channel": Channel.RESULT.value,
            "kind": kind.value,
            **result.audit_details(),
        })

        donation_id = donation.id
        try:
            transition = await self._apply(session, donation, adapter, params, result, kind, Channel.RESULT)
            due = transition is not None and receipt_due(donation, transition)
            await session.commit()
        except (DonationValidationError, SQLAlchemyError):
            await session.rollback()
            logger.exception("[result] Failed to apply %s to donation %s", kind.value, donation_id)
            return ResultPage(PageOutcome.FAILED, REASON_PROCESSING_ERROR, trade_no=trade_no)

        page = self._page_for(donation, trade_no)
        if page is None:
            return self._failed(donation, PAGE_MESSAGES[PageOutcome.FAILED], trade_no)
        page.receipt_due = due
        return page
