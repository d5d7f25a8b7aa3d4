"""Markdown rendering for issue bodies, comments and the README banner."""

from __future__ import annotations

import logging
import math
import re
from datetime import datetime
from pathlib import Path
from typing import Any
from urllib.parse import urlsplit, urlunsplit

from jinja2 import Environment, FileSystemLoader, StrictUndefined, select_autoescape

from bidme.config import Config
from bidme.models import BID_APPROVED, BidRecord, PeriodData
from bidme.utils.dates import as_utc, format_short_range, parse_timestamp, utcnow

logger = logging.getLogger(__name__)

TEMPLATE_DIR = Path(__file__).parent / "templates"
ENV = Environment(
    loader=FileSystemLoader(str(TEMPLATE_DIR)),
    autoescape=select_autoescape(enabled_extensions=("html",)),
    undefined=StrictUndefined,
    trim_blocks=True,
    lstrip_blocks=True,
    keep_trailing_newline=False,
)

BANNER_START = "<!-- BIDME:BANNER:START -->"
BANNER_END = "<!-- BIDME:BANNER:END -->"
BANNER_RE = re.compile(re.escape(BANNER_START) + r".*?" + re.escape(BANNER_END), re.DOTALL)

STATUS_EMOJI = {
    "pending": "⏳",
    "approved": "✅",
    "rejected": "❌",
    "unlinked_pending": "⚠️",
    "expired": "🕐",
}


def _day(value: str) -> str:
    return value.split("T")[0] if value else ""


ENV.filters["day"] = _day
ENV.filters["status_emoji"] = lambda status: STATUS_EMOJI.get(status, "⏳")
ENV.filters["hours"] = lambda value: f"{value:g}"


def render(name: str, **context: Any) -> str:
    template = ENV.get_template(f"{name}.md")
    return template.render(**context).strip() + "\n"


def issue_title(period: PeriodData) -> str:
    span = format_short_range(parse_timestamp(period.start_date), parse_timestamp(period.end_date))
    return f"🎯 BidMe: Banner Bidding [{span}]"


def issue_body(config: Config, period: PeriodData, *, now: datetime | None = None) -> str:
    bids = sorted(period.bids, key=lambda b: b.amount, reverse=True)
    approved = [b for b in bids if b.status == BID_APPROVED]
    end = parse_timestamp(period.end_date)
    remaining = (end - as_utc(now or utcnow())).total_seconds()
    days_left = max(0, math.ceil(remaining / 86400))
    return render(
        "issue_body",
        config=config,
        period=period,
        bids=bids,
        top_bid=approved[0] if approved else None,
        deadline=end.format("dddd, MMMM D, YYYY"),
        days_left=days_left,
    )


def with_tracking(destination_url: str, config: Config, owner: str, repo: str) -> str:
    if not config.tracking.append_utm:
        return destination_url
    params = config.tracking.utm_params.format(owner=owner, repo=repo)
    parts = urlsplit(destination_url)
    query = f"{parts.query}&{params}" if parts.query else params
    return urlunsplit((parts.scheme, parts.netloc, parts.path, query, parts.fragment))


def replace_banner(readme: str, bid: BidRecord, tracking_url: str, config: Config) -> str | None:
    """Swap the marked banner block; ``None`` when the README has no markers."""
    if not BANNER_RE.search(readme):
        return None
    section = render("banner", bid=bid, tracking_url=tracking_url, config=config).strip()
    block = f"{BANNER_START}\n{section}\n{BANNER_END}"
    return BANNER_RE.sub(lambda _: block, readme, count=1)


def strikethrough(body: str) -> str:
    if body.startswith("~~") and body.endswith("~~"):
        return body
    return f"~~{body}~~"


def clear_strikethrough(body: str) -> str:
    if body.startswith("~~") and body.endswith("~~") and len(body) >= 4:
        return body[2:-2]
    return body
