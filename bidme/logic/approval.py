"""Owner reactions on bid comments."""

from __future__ import annotations

import logging
from dataclasses import dataclass

from bidme.config import Config
from bidme.errors import ErrorKind
from bidme.logic.validator import check_increment
from bidme.models import BID_APPROVED, BID_PENDING, BID_REJECTED, PERIOD_OPEN, BidRecord, PeriodData

logger = logging.getLogger(__name__)

# GitHub reports reactions by name rather than glyph.
REACTION_GLYPHS = {
    "+1": "👍",
    "-1": "👎",
    "laugh": "😄",
    "confused": "😕",
    "heart": "❤️",
    "hooray": "🎉",
    "rocket": "🚀",
    "eyes": "👀",
}

DECISION_APPROVE = "approve"
DECISION_REJECT = "reject"


def normalize_reaction(reaction: str | None) -> str | None:
    if reaction is None:
        return None
    value = reaction.strip()
    return REACTION_GLYPHS.get(value, value)


def reaction_decision(reaction: str | None, config: Config) -> str | None:
    """Map a reaction to approve/reject; ``None`` means the reaction is ignored.

    A removed reaction (``None``) rejects.
    """
    glyph = normalize_reaction(reaction)
    if glyph is None:
        return DECISION_REJECT
    allowed = {normalize_reaction(r) for r in config.approval.allowed_reactions}
    if glyph in allowed:
        return DECISION_APPROVE
    rejecting = {normalize_reaction(r) for r in config.approval.reject_reactions}
    if glyph in rejecting:
        return DECISION_REJECT
    return None


@dataclass(slots=True)
class ApprovalOutcome:
    period: PeriodData
    bid: BidRecord | None
    status: str | None = None
    error: ErrorKind | None = None
    message: str = ""

    @property
    def ok(self) -> bool:
        return self.error is None


def process_approval(
    period: PeriodData,
    comment_id: int,
    reaction: str | None,
    config: Config,
) -> ApprovalOutcome:
    if period.status != PERIOD_OPEN:
        return ApprovalOutcome(period, None, error=ErrorKind.PERIOD_NOT_OPEN, message="Bidding period is not open")

    bid = period.find_bid(comment_id)
    if bid is None:
        return ApprovalOutcome(
            period, None, error=ErrorKind.NOT_FOUND, message=f"No bid found for comment {comment_id}"
        )

    if bid.status != BID_PENDING:
        return ApprovalOutcome(
            period,
            bid,
            status=bid.status,
            error=ErrorKind.ALREADY_PROCESSED,
            message=f"Bid by @{bid.bidder} is already {bid.status}",
        )

    decision = reaction_decision(reaction, config)
    if decision is None:
        logger.info("Ignoring reaction %r on comment %s", reaction, comment_id)
        return ApprovalOutcome(period, bid, status=bid.status, message=f"Reaction {reaction!r} is not an approval reaction")

    if decision == DECISION_REJECT:
        bid.status = BID_REJECTED
        logger.info("Rejected bid by @%s ($%s)", bid.bidder, bid.amount)
        return ApprovalOutcome(
            period, bid, status=BID_REJECTED, message=f"Bid by @{bid.bidder} for ${bid.amount} has been rejected"
        )

    # the approved set may have grown since this bid was submitted
    violation = check_increment(bid.amount, period, config)
    if violation is not None or bid.amount < config.bidding.minimum_bid:
        message = violation.message if violation else f"Bid must be at least ${config.bidding.minimum_bid}"
        logger.info("Refusing approval of @%s: %s", bid.bidder, message)
        return ApprovalOutcome(period, bid, status=bid.status, error=ErrorKind.INVALID_APPROVAL, message=message)

    bid.status = BID_APPROVED
    logger.info("Approved bid by @%s ($%s)", bid.bidder, bid.amount)
    return ApprovalOutcome(
        period, bid, status=BID_APPROVED, message=f"Bid by @{bid.bidder} for ${bid.amount} has been approved"
    )
