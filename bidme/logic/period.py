"""Bidding period lifecycle: open, accept bids, close and charge the winner.

State machine::

    inactive -> open -> closing -> closed -> (archived, new period)

Every transition works on a :class:`PeriodData` loaded by the caller and
mutates it in place; the caller writes the document back whatever the
outcome, including when a payment error escapes :func:`close_period`.
"""

from __future__ import annotations

import logging
from collections.abc import Collection
from dataclasses import dataclass, field
from datetime import datetime, timedelta

from bidme.config import Config
from bidme.errors import AlreadyOpen, ErrorKind, PaymentDeclined, PaymentError, PeriodNotOpen
from bidme.logic.enforcement import apply_bid_enforcement
from bidme.logic.validator import BidSubmission, ValidationResult, validate_bid
from bidme.models import (
    BID_APPROVED,
    BID_PENDING,
    PERIOD_CLOSED,
    PERIOD_CLOSING,
    PERIOD_OPEN,
    BidRecord,
    PaymentRecord,
    PeriodData,
)
from bidme.payments.base import ChargeResult, PaymentGateway
from bidme.registry import BidderRegistry
from bidme.utils.dates import as_utc, format_date, parse_timestamp, to_iso, utcnow

logger = logging.getLogger(__name__)

PAYMENT_UNPAID = "unpaid"
PAYMENT_AWAITING_LINK = "awaiting_link"
PAYMENT_PENDING = "pending"
PAYMENT_PAID = "paid"
PAYMENT_FAILED = "failed"


def make_period_id(start: datetime) -> str:
    return f"period-{format_date(as_utc(start).date())}"


def open_period(
    current: PeriodData | None,
    config: Config,
    *,
    now: datetime | None = None,
    archived_ids: Collection[str] = (),
) -> PeriodData:
    if current is not None and current.is_active:
        raise AlreadyOpen(
            f"Period {current.period_id} is still {current.status}",
            context={"period_id": current.period_id, "status": current.status},
        )
    start = as_utc(now or utcnow())
    period_id = make_period_id(start)
    if period_id in archived_ids:
        raise AlreadyOpen(
            f"Period {period_id} has already run",
            context={"period_id": period_id},
        )
    end = start + timedelta(days=config.bidding.duration_days)
    logger.info("Opening %s (%s days)", period_id, config.bidding.duration_days)
    return PeriodData(
        period_id=period_id,
        status=PERIOD_OPEN,
        start_date=to_iso(start),
        end_date=to_iso(end),
        bids=[],
        created_at=to_iso(start),
    )


@dataclass(slots=True)
class BidOutcome:
    period: PeriodData
    bid: BidRecord | None
    error: ErrorKind | None = None
    validation: ValidationResult | None = None
    notice: str | None = None
    message: str = ""

    @property
    def ok(self) -> bool:
        return self.error is None


def submit_bid(
    period: PeriodData,
    submission: BidSubmission,
    config: Config,
    *,
    registry: BidderRegistry | None = None,
    now: datetime | None = None,
) -> BidOutcome:
    existing = period.find_bid(submission.comment_id)
    if existing is not None:
        return BidOutcome(
            period,
            existing,
            error=ErrorKind.ALREADY_PROCESSED,
            message=f"Comment {submission.comment_id} was already recorded as a bid",
        )

    result = validate_bid(submission, period, config)
    if not result.valid:
        logger.info("Bid from @%s rejected: %s", submission.bidder, result.message)
        return BidOutcome(
            period, None, error=ErrorKind.VALIDATION_FAILED, validation=result, message=result.message
        )

    now = now or utcnow()
    status = BID_APPROVED if config.approval.mode == "auto" else BID_PENDING
    notice = None
    if registry is not None:
        status, notice = apply_bid_enforcement(submission.bidder, status, config, registry, now)

    bid = BidRecord(
        bidder=submission.bidder,
        amount=int(submission.amount),
        banner_url=submission.banner_url,
        destination_url=submission.destination_url,
        contact=submission.contact,
        status=status,
        comment_id=submission.comment_id,
        timestamp=to_iso(now),
    )
    period.bids.append(bid)
    logger.info("Bid recorded: @%s $%s (%s)", bid.bidder, bid.amount, status)
    return BidOutcome(
        period,
        bid,
        validation=result,
        notice=notice,
        message=f"Bid of ${bid.amount} by @{bid.bidder} accepted ({status})",
    )


def select_winner(bids: list[BidRecord], *, exclude: Collection[int] = ()) -> BidRecord | None:
    """Highest approved amount wins; the earliest bid breaks ties."""
    candidates = [b for b in bids if b.status == BID_APPROVED and b.comment_id not in exclude]
    if not candidates:
        return None
    return min(candidates, key=lambda b: (-b.amount, parse_timestamp(b.timestamp), b.comment_id))


@dataclass(slots=True)
class CloseResult:
    period: PeriodData
    winner: BidRecord | None = None
    charge: ChargeResult | None = None
    disqualified: list[BidRecord] = field(default_factory=list)
    awaiting_link: bool = False
    grace_deadline: datetime | None = None
    already_closed: bool = False
    message: str = ""

    @property
    def closed(self) -> bool:
        return self.period.status == PERIOD_CLOSED


def charge_idempotency_key(period: PeriodData, bid: BidRecord) -> str:
    """Scoped to the period and the winning comment so a promoted winner gets a fresh charge."""
    return f"bidme-{period.period_id}-{bid.comment_id}"


async def close_period(
    period: PeriodData,
    config: Config,
    gateway: PaymentGateway,
    registry: BidderRegistry,
    *,
    now: datetime | None = None,
) -> CloseResult:
    """Close the period and charge the winner at most once.

    Unlinked winners are disqualified (or, when unlinked bids are allowed,
    warned and given the grace period) and the next approved bid is promoted.
    A declined charge disqualifies the winner; any payment error leaves the
    period ``closing`` and propagates so the run can be retried.
    """
    now = as_utc(now or utcnow())

    if period.status == PERIOD_CLOSED:
        winner = _recorded_winner(period)
        logger.info("%s is already closed; nothing to charge", period.period_id)
        return CloseResult(period, winner, already_closed=True, message="Bidding period is already closed")
    if not period.is_active:
        raise PeriodNotOpen(
            "No open bidding period to close",
            context={"period_id": period.period_id, "status": period.status},
        )

    if period.status == PERIOD_OPEN:
        period.status = PERIOD_CLOSING
        logger.info("%s is closing (%s bids)", period.period_id, len(period.bids))

    ledger = period.payment or PaymentRecord(payment_status=PAYMENT_UNPAID)
    if ledger.payment_status in (PAYMENT_PAID, PAYMENT_PENDING):
        # charged by an earlier run that stopped before closing
        period.status = PERIOD_CLOSED
        winner = _recorded_winner(period)
        return CloseResult(period, winner, message=_closed_message(winner))
    period.payment = ledger

    disqualified: list[BidRecord] = []
    grace_hours = config.payment.unlinked_grace_hours
    while True:
        winner = select_winner(period.bids, exclude=ledger.disqualified)
        if winner is None:
            break
        ledger.winner = winner.bidder
        ledger.winner_comment_id = winner.comment_id
        ledger.amount = winner.amount
        ledger.provider = gateway.provider

        if registry.is_payment_linked(winner.bidder):
            charge = await _charge_winner(period, winner, ledger, gateway, registry)
            period.status = PERIOD_CLOSED
            return CloseResult(period, winner, charge=charge, disqualified=disqualified, message=_closed_message(winner))

        if not config.payment.allow_unlinked_bids:
            _disqualify(ledger, winner, "payment not linked")
            disqualified.append(winner)
            continue

        registry.warn(winner.bidder, now)
        if registry.grace_expired(winner.bidder, grace_hours, now):
            _disqualify(ledger, winner, "grace period expired without payment linked")
            disqualified.append(winner)
            continue

        ledger.payment_status = PAYMENT_AWAITING_LINK
        deadline = registry.get_grace_deadline(winner.bidder, grace_hours)
        logger.info("Winner @%s has no payment linked; waiting until %s", winner.bidder, deadline)
        return CloseResult(
            period,
            winner,
            disqualified=disqualified,
            awaiting_link=True,
            grace_deadline=deadline,
            message=f"Winner @{winner.bidder} must link a payment method before the period can close",
        )

    ledger.winner = None
    ledger.winner_comment_id = None
    ledger.amount = None
    if not ledger.disqualified and not ledger.attempts:
        period.payment = None
    period.status = PERIOD_CLOSED
    logger.info("%s closed with no winner", period.period_id)
    return CloseResult(period, None, disqualified=disqualified, message=_closed_message(None))


async def _charge_winner(
    period: PeriodData,
    winner: BidRecord,
    ledger: PaymentRecord,
    gateway: PaymentGateway,
    registry: BidderRegistry,
) -> ChargeResult:
    record = registry.get_bidder(winner.bidder)
    ledger.attempts += 1
    ledger.payment_status = PAYMENT_UNPAID
    metadata = {
        "period_id": period.period_id,
        "bidder": winner.bidder,
        "comment_id": str(winner.comment_id),
    }
    email = winner.contact if "@" in winner.contact and not winner.contact.startswith("@") else None
    try:
        charge = await gateway.charge(
            record.stripe_customer_id if record else None,
            record.stripe_payment_method_id if record else None,
            winner.amount,
            metadata,
            idempotency_key=charge_idempotency_key(period, winner),
            email=email,
        )
    except PaymentError as exc:
        ledger.payment_status = PAYMENT_FAILED
        ledger.last_error = exc.message
        exc.context.setdefault("period_id", period.period_id)
        exc.context.setdefault("bidder", winner.bidder)
        if isinstance(exc, PaymentDeclined):
            _disqualify(ledger, winner, "payment declined")
        logger.warning("Charge for @%s failed (%s); %s stays closing", winner.bidder, exc.kind.value, period.period_id)
        raise

    ledger.payment_status = PAYMENT_PAID if charge.succeeded else PAYMENT_PENDING
    ledger.charge_id = charge.id
    ledger.checkout_url = charge.checkout_url
    ledger.last_error = None
    ledger.stripe_customer_id = charge.stripe_customer_id
    ledger.stripe_payment_intent_id = charge.stripe_payment_intent_id
    logger.info("Charged @%s $%s (%s)", winner.bidder, winner.amount, charge.status)
    return charge


def _disqualify(ledger: PaymentRecord, bid: BidRecord, reason: str) -> None:
    if bid.comment_id not in ledger.disqualified:
        ledger.disqualified.append(bid.comment_id)
    logger.info("Disqualified @%s ($%s): %s", bid.bidder, bid.amount, reason)


def _recorded_winner(period: PeriodData) -> BidRecord | None:
    if period.payment is None or period.payment.winner_comment_id is None:
        return None
    return period.find_bid(period.payment.winner_comment_id)


def _closed_message(winner: BidRecord | None) -> str:
    if winner is None:
        return "Period closed: no winner"
    return f"Period closed, winner: @{winner.bidder} (${winner.amount})"
