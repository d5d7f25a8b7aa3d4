"""Payment-link enforcement: paused bids, grace periods and linking."""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from datetime import datetime

from bidme.config import Config
from bidme.errors import PaymentAPIError, PaymentError, PeriodNotOpen, log_error
from bidme.logic.validator import check_increment
from bidme.models import (
    BID_APPROVED,
    BID_EXPIRED,
    BID_PENDING,
    BID_REJECTED,
    BID_UNLINKED_PENDING,
    PERIOD_OPEN,
    BidderRecord,
    BidRecord,
    PeriodData,
)
from bidme.payments.base import PaymentGateway, SetupSession
from bidme.registry import BidderRegistry
from bidme.utils.dates import utcnow

logger = logging.getLogger(__name__)

NOTICE_PAUSED = "payment_paused"
NOTICE_UNLINKED = "payment_unlinked"


def apply_bid_enforcement(
    bidder: str,
    status: str,
    config: Config,
    registry: BidderRegistry,
    now: datetime | None = None,
) -> tuple[str, str | None]:
    """Return the status a new bid should get and the notice owed to the bidder."""
    registry.register_bidder(bidder)
    if registry.is_payment_linked(bidder):
        return status, None
    if config.enforcement.require_payment_before_bid and not config.payment.allow_unlinked_bids:
        registry.warn(bidder, now)
        logger.info("Bid by @%s paused until payment is linked", bidder)
        return BID_UNLINKED_PENDING, NOTICE_PAUSED
    return status, NOTICE_UNLINKED


@dataclass(slots=True)
class GraceReport:
    restored: list[BidRecord] = field(default_factory=list)
    expired: list[BidRecord] = field(default_factory=list)
    waiting: list[BidRecord] = field(default_factory=list)
    rejected: list[BidRecord] = field(default_factory=list)
    auto_linked: list[str] = field(default_factory=list)

    @property
    def checked(self) -> int:
        return len(self.restored) + len(self.expired) + len(self.waiting) + len(self.rejected)

    @property
    def message(self) -> str:
        if not self.checked:
            return "No unlinked_pending bids to check"
        return (
            f"Grace check complete: {len(self.restored)} restored, "
            f"{len(self.expired)} expired, {len(self.waiting)} still pending"
        )


async def check_grace(
    period: PeriodData,
    config: Config,
    registry: BidderRegistry,
    *,
    gateway: PaymentGateway | None = None,
    now: datetime | None = None,
) -> GraceReport:
    """Restore, expire or keep waiting every ``unlinked_pending`` bid."""
    if period.status != PERIOD_OPEN:
        raise PeriodNotOpen("Bidding period is not open", context={"period_id": period.period_id})
    now = now or utcnow()
    grace_hours = config.payment.unlinked_grace_hours
    report = GraceReport()

    paused = [bid for bid in period.bids if bid.status == BID_UNLINKED_PENDING]
    if not paused:
        return report

    if gateway is not None and gateway.is_configured:
        for username in dict.fromkeys(bid.bidder for bid in paused):
            if registry.is_payment_linked(username):
                continue
            if await _auto_link(username, gateway, registry, now):
                report.auto_linked.append(username)

    for bid in paused:
        if registry.is_payment_linked(bid.bidder):
            _restore(bid, period, config, report)
            continue
        if registry.get_grace_deadline(bid.bidder, grace_hours) is None:
            registry.warn(bid.bidder, now)
        if registry.grace_expired(bid.bidder, grace_hours, now):
            bid.status = BID_EXPIRED
            report.expired.append(bid)
            logger.info("@%s: grace period expired; bid expired", bid.bidder)
            continue
        report.waiting.append(bid)
        deadline = registry.get_grace_deadline(bid.bidder, grace_hours)
        logger.info("@%s: still within grace period (deadline %s)", bid.bidder, deadline)

    logger.info(report.message)
    return report


def _restore(bid: BidRecord, period: PeriodData, config: Config, report: GraceReport) -> None:
    if config.approval.mode != "auto":
        bid.status = BID_PENDING
        report.restored.append(bid)
        logger.info("@%s: payment linked; bid awaiting approval", bid.bidder)
        return
    if check_increment(bid.amount, period, config) is not None:
        bid.status = BID_REJECTED
        report.rejected.append(bid)
        logger.info("@%s: payment linked but bid was outbid; rejected", bid.bidder)
        return
    bid.status = BID_APPROVED
    report.restored.append(bid)
    logger.info("@%s: payment linked; bid approved", bid.bidder)


async def _auto_link(
    username: str, gateway: PaymentGateway, registry: BidderRegistry, now: datetime
) -> bool:
    try:
        customer = await gateway.find_customer(username)
        if customer is None:
            return False
        methods = await gateway.list_payment_methods(customer.id)
    except PaymentError as exc:
        logger.warning("Payment lookup failed for @%s", username)
        log_error(exc, "check-grace:auto-link")
        return False
    if not methods:
        return False
    registry.mark_payment_linked(username, customer.id, methods[0].id, now=now)
    logger.info("Auto-linked @%s (customer %s)", username, customer.id)
    return True


async def start_payment_setup(
    username: str,
    gateway: PaymentGateway,
    registry: BidderRegistry,
    *,
    email: str | None = None,
    success_url: str | None = None,
    cancel_url: str | None = None,
) -> SetupSession | None:
    """Create (or reuse) the bidder's customer and a session to save a payment method.

    Returns ``None`` when the bidder is already linked.
    """
    if registry.is_payment_linked(username):
        return None
    customer = await gateway.find_customer(username)
    if customer is None:
        customer = await gateway.create_customer(
            email or f"{username}@github.bidme", {"github_username": username}
        )
        logger.info("Created %s customer %s for @%s", gateway.provider, customer.id, username)
    session = await gateway.create_setup_session(customer.id, success_url=success_url, cancel_url=cancel_url)
    record = registry.register_bidder(username)
    record.stripe_customer_id = customer.id
    return session


async def confirm_payment_link(
    username: str,
    payment_method_id: str,
    gateway: PaymentGateway,
    registry: BidderRegistry,
    *,
    customer_id: str | None = None,
    now: datetime | None = None,
) -> BidderRecord:
    method = await gateway.get_payment_method(payment_method_id)
    record = registry.register_bidder(username)
    expected = customer_id or record.stripe_customer_id
    if expected and method.customer and method.customer != expected:
        raise PaymentAPIError(
            "Payment method belongs to a different customer",
            context={"bidder": username, "payment_method": payment_method_id},
        )
    return registry.mark_payment_linked(username, expected or method.customer, method.id, now=now)
