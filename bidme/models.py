"""Period, bid and bidder documents.

Field names match the persisted JSON (``current-period.json``,
``bidders.json`` and the archive) exactly.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any, Mapping

PERIOD_OPEN = "open"
PERIOD_CLOSING = "closing"
PERIOD_CLOSED = "closed"
PERIOD_INACTIVE = "inactive"
ACTIVE_PERIOD_STATUSES = (PERIOD_OPEN, PERIOD_CLOSING)

BID_PENDING = "pending"
BID_APPROVED = "approved"
BID_REJECTED = "rejected"
BID_UNLINKED_PENDING = "unlinked_pending"
BID_EXPIRED = "expired"


@dataclass(slots=True)
class BidRecord:
    bidder: str
    amount: int
    banner_url: str
    destination_url: str
    contact: str
    status: str
    comment_id: int
    timestamp: str

    def to_dict(self) -> dict[str, Any]:
        return {
            "bidder": self.bidder,
            "amount": self.amount,
            "banner_url": self.banner_url,
            "destination_url": self.destination_url,
            "contact": self.contact,
            "status": self.status,
            "comment_id": self.comment_id,
            "timestamp": self.timestamp,
        }

    @classmethod
    def from_dict(cls, data: Mapping[str, Any]) -> BidRecord:
        return cls(
            bidder=data["bidder"],
            amount=data["amount"],
            banner_url=data.get("banner_url", ""),
            destination_url=data.get("destination_url", ""),
            contact=data.get("contact", ""),
            status=data.get("status", BID_PENDING),
            comment_id=int(data["comment_id"]),
            timestamp=data.get("timestamp", ""),
        )


@dataclass(slots=True)
class PaymentRecord:
    payment_status: str
    provider: str | None = None
    winner: str | None = None
    winner_comment_id: int | None = None
    amount: int | None = None
    charge_id: str | None = None
    checkout_url: str | None = None
    stripe_customer_id: str | None = None
    stripe_payment_intent_id: str | None = None
    attempts: int = 0
    disqualified: list[int] = field(default_factory=list)
    last_error: str | None = None

    def to_dict(self) -> dict[str, Any]:
        data: dict[str, Any] = {"payment_status": self.payment_status}
        for key in (
            "provider",
            "winner",
            "winner_comment_id",
            "amount",
            "charge_id",
            "checkout_url",
            "stripe_customer_id",
            "stripe_payment_intent_id",
            "last_error",
        ):
            value = getattr(self, key)
            if value is not None:
                data[key] = value
        data["attempts"] = self.attempts
        data["disqualified"] = list(self.disqualified)
        return data

    @classmethod
    def from_dict(cls, data: Mapping[str, Any]) -> PaymentRecord:
        return cls(
            payment_status=data.get("payment_status", "pending"),
            provider=data.get("provider"),
            winner=data.get("winner"),
            winner_comment_id=data.get("winner_comment_id"),
            amount=data.get("amount"),
            charge_id=data.get("charge_id"),
            checkout_url=data.get("checkout_url"),
            stripe_customer_id=data.get("stripe_customer_id"),
            stripe_payment_intent_id=data.get("stripe_payment_intent_id"),
            attempts=int(data.get("attempts", 0)),
            disqualified=[int(c) for c in data.get("disqualified", [])],
            last_error=data.get("last_error"),
        )


@dataclass(slots=True)
class PeriodData:
    period_id: str
    status: str
    start_date: str
    end_date: str
    issue_number: int = 0
    issue_url: str = ""
    bids: list[BidRecord] = field(default_factory=list)
    created_at: str = ""
    issue_node_id: str | None = None
    payment: PaymentRecord | None = None

    @property
    def is_active(self) -> bool:
        return self.status in ACTIVE_PERIOD_STATUSES

    def find_bid(self, comment_id: int) -> BidRecord | None:
        for bid in self.bids:
            if bid.comment_id == comment_id:
                return bid
        return None

    def approved_bids(self) -> list[BidRecord]:
        return [b for b in self.bids if b.status == BID_APPROVED]

    def highest_approved(self) -> int | None:
        amounts = [b.amount for b in self.approved_bids()]
        return max(amounts) if amounts else None

    def to_dict(self) -> dict[str, Any]:
        data: dict[str, Any] = {
            "period_id": self.period_id,
            "status": self.status,
            "start_date": self.start_date,
            "end_date": self.end_date,
            "issue_number": self.issue_number,
            "issue_url": self.issue_url,
            "bids": [bid.to_dict() for bid in self.bids],
            "created_at": self.created_at,
        }
        if self.issue_node_id is not None:
            data["issue_node_id"] = self.issue_node_id
        if self.payment is not None:
            data["payment"] = self.payment.to_dict()
        return data

    @classmethod
    def from_dict(cls, data: Mapping[str, Any]) -> PeriodData:
        payment = data.get("payment")
        return cls(
            period_id=data.get("period_id", ""),
            status=data.get("status", PERIOD_INACTIVE),
            start_date=data.get("start_date", ""),
            end_date=data.get("end_date", ""),
            issue_number=int(data.get("issue_number") or 0),
            issue_url=data.get("issue_url", ""),
            bids=[BidRecord.from_dict(item) for item in data.get("bids", [])],
            created_at=data.get("created_at", ""),
            issue_node_id=data.get("issue_node_id"),
            payment=PaymentRecord.from_dict(payment) if payment else None,
        )


@dataclass(slots=True)
class BidderRecord:
    github_username: str
    payment_linked: bool = False
    linked_at: str | None = None
    warned_at: str | None = None
    stripe_customer_id: str | None = None
    stripe_payment_method_id: str | None = None

    def to_dict(self) -> dict[str, Any]:
        data: dict[str, Any] = {
            "github_username": self.github_username,
            "payment_linked": self.payment_linked,
            "linked_at": self.linked_at,
            "warned_at": self.warned_at,
        }
        if self.stripe_customer_id is not None:
            data["stripe_customer_id"] = self.stripe_customer_id
        if self.stripe_payment_method_id is not None:
            data["stripe_payment_method_id"] = self.stripe_payment_method_id
        return data

    @classmethod
    def from_dict(cls, data: Mapping[str, Any]) -> BidderRecord:
        return cls(
            github_username=data["github_username"],
            payment_linked=bool(data.get("payment_linked", False)),
            linked_at=data.get("linked_at"),
            warned_at=data.get("warned_at"),
            stripe_customer_id=data.get("stripe_customer_id"),
            stripe_payment_method_id=data.get("stripe_payment_method_id"),
        )
