"""Cross-period bidder registry backed by ``bidders.json``."""

from __future__ import annotations

import json
import logging
import pathlib
from datetime import datetime, timedelta

from bidme.models import BidderRecord
from bidme.utils.dates import as_utc, parse_timestamp, to_iso, utcnow

logger = logging.getLogger(__name__)

BIDDERS_PATH = pathlib.Path(".bidme") / "data" / "bidders.json"


class BidderRegistry:
    """Payment-linking state per GitHub user.

    One instance is loaded per run and passed into the transitions that need
    it; nothing is cached at module level.
    """

    def __init__(self, bidders: dict[str, BidderRecord] | None = None) -> None:
        self.bidders: dict[str, BidderRecord] = dict(bidders or {})

    @classmethod
    def load(cls, target: pathlib.Path | str | None = None) -> BidderRegistry:
        path = pathlib.Path(target or ".") / BIDDERS_PATH
        if not path.exists():
            return cls()
        text = path.read_text(encoding="utf-8")
        if not text.strip():
            return cls()
        data = json.loads(text)
        records = {
            username: BidderRecord.from_dict(record)
            for username, record in (data.get("bidders") or {}).items()
        }
        return cls(records)

    def save(self, target: pathlib.Path | str | None = None) -> pathlib.Path:
        path = pathlib.Path(target or ".") / BIDDERS_PATH
        path.parent.mkdir(parents=True, exist_ok=True)
        payload = {"bidders": {name: record.to_dict() for name, record in self.bidders.items()}}
        path.write_text(json.dumps(payload, indent=2, ensure_ascii=False), encoding="utf-8")
        return path

    def get_bidder(self, username: str) -> BidderRecord | None:
        return self.bidders.get(username)

    def register_bidder(self, username: str) -> BidderRecord:
        existing = self.bidders.get(username)
        if existing is not None:
            return existing
        record = BidderRecord(github_username=username)
        self.bidders[username] = record
        logger.info("Registered bidder @%s", username)
        return record

    def mark_payment_linked(
        self,
        username: str,
        customer_id: str | None,
        payment_method_id: str | None,
        *,
        now: datetime | None = None,
    ) -> BidderRecord:
        record = self.register_bidder(username)
        record.payment_linked = True
        record.stripe_customer_id = customer_id
        record.stripe_payment_method_id = payment_method_id
        record.linked_at = to_iso(now or utcnow())
        logger.info("Payment linked for @%s", username)
        return record

    def is_payment_linked(self, username: str) -> bool:
        record = self.bidders.get(username)
        return bool(record and record.payment_linked)

    def set_warned_at(self, username: str, timestamp: datetime | str | None = None) -> BidderRecord:
        record = self.register_bidder(username)
        if isinstance(timestamp, str):
            record.warned_at = timestamp
        else:
            record.warned_at = to_iso(timestamp or utcnow())
        return record

    def warn(self, username: str, now: datetime | None = None) -> bool:
        """Start the grace clock for ``username`` unless it is already running."""
        record = self.register_bidder(username)
        if record.warned_at:
            return False
        self.set_warned_at(username, now or utcnow())
        logger.info("Warned @%s about unlinked payment", username)
        return True

    def get_grace_deadline(self, username: str, grace_hours: float) -> datetime | None:
        record = self.bidders.get(username)
        if record is None or not record.warned_at:
            return None
        return parse_timestamp(record.warned_at) + timedelta(hours=grace_hours)

    def grace_expired(self, username: str, grace_hours: float, now: datetime | None = None) -> bool:
        deadline = self.get_grace_deadline(username, grace_hours)
        if deadline is None:
            return False
        return as_utc(now or utcnow()) >= deadline
