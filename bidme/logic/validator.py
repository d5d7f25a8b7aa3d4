"""Bid parsing and validation."""

from __future__ import annotations

import re
from dataclasses import dataclass
from enum import Enum
from typing import Any
from urllib.parse import urlparse

import yaml

from bidme.config import Config
from bidme.models import PERIOD_OPEN, PeriodData

BID_FENCE_RE = re.compile(r"```ya?ml\s*\n(.*?)```", re.DOTALL)
FIELD_LINE_RE = re.compile(r"^\s*(\w+)\s*:\s*(.+?)\s*$")
REQUIRED_FIELDS = ("amount", "banner_url", "destination_url", "contact")
FORMAT_ALIASES = {"jpeg": "jpg"}


class ValidationCode(str, Enum):
    PERIOD_NOT_OPEN = "period_not_open"
    INVALID_AMOUNT = "invalid_amount"
    BELOW_MINIMUM = "below_minimum"
    BELOW_INCREMENT = "below_increment"
    INVALID_URL = "invalid_url"
    FORMAT_NOT_ALLOWED = "format_not_allowed"
    FILE_TOO_LARGE = "file_too_large"
    PROHIBITED_CONTENT = "prohibited_content"
    MISSING_REQUIRED_CONTENT = "missing_required_content"


@dataclass(slots=True)
class ValidationResult:
    valid: bool
    code: ValidationCode | None = None
    message: str = ""
    field: str | None = None

    @classmethod
    def ok(cls) -> ValidationResult:
        return cls(valid=True)

    @classmethod
    def fail(cls, code: ValidationCode, message: str, field: str | None = None) -> ValidationResult:
        return cls(valid=False, code=code, message=message, field=field)


@dataclass(slots=True)
class ParsedBid:
    amount: Any
    banner_url: str
    destination_url: str
    contact: str
    description: str = ""


@dataclass(slots=True)
class BidSubmission:
    """A proposed bid as received from a comment.

    ``banner_format`` and ``banner_size_kb`` come from out-of-band inspection
    of the banner; ``None`` means it was not inspected.
    """

    bidder: str
    amount: Any
    banner_url: str
    destination_url: str
    contact: str
    comment_id: int
    description: str = ""
    banner_format: str | None = None
    banner_size_kb: int | None = None

    @classmethod
    def from_parsed(
        cls,
        parsed: ParsedBid,
        *,
        bidder: str,
        comment_id: int,
        banner_format: str | None = None,
        banner_size_kb: int | None = None,
    ) -> BidSubmission:
        return cls(
            bidder=bidder,
            amount=parsed.amount,
            banner_url=parsed.banner_url,
            destination_url=parsed.destination_url,
            contact=parsed.contact,
            comment_id=comment_id,
            description=parsed.description,
            banner_format=banner_format,
            banner_size_kb=banner_size_kb,
        )


def parse_bid_comment(body: str) -> ParsedBid | None:
    match = BID_FENCE_RE.search(body or "")
    if not match:
        return None
    fields = _load_fields(match.group(1))
    if any(not fields.get(name) for name in REQUIRED_FIELDS):
        return None
    amount = fields["amount"]
    if isinstance(amount, str):
        amount = _coerce_number(amount)
        if amount is None:
            return None
    return ParsedBid(
        amount=amount,
        banner_url=str(fields["banner_url"]).strip(),
        destination_url=str(fields["destination_url"]).strip(),
        contact=str(fields["contact"]).strip(),
        description=str(fields.get("description") or fields.get("alt_text") or "").strip(),
    )


def _load_fields(block: str) -> dict[str, Any]:
    try:
        data = yaml.safe_load(block)
    except yaml.YAMLError:
        data = None
    if isinstance(data, dict):
        return {str(k): v for k, v in data.items()}
    # values such as "@octocat" are not plain YAML scalars
    fields: dict[str, Any] = {}
    for line in block.splitlines():
        line_match = FIELD_LINE_RE.match(line)
        if line_match:
            fields[line_match.group(1)] = line_match.group(2)
    return fields


def _coerce_number(value: str) -> int | float | None:
    text = value.strip().lstrip("$").replace(",", "")
    try:
        return int(text)
    except ValueError:
        pass
    try:
        return float(text)
    except ValueError:
        return None


def validate_bid(submission: BidSubmission, period: PeriodData, config: Config) -> ValidationResult:
    """Check a bid against the period and the auction rules.

    Checks run in a fixed order and stop at the first failure: period status,
    amount, increment over the highest approved bid, URLs, banner format and
    size, content guidelines.
    """
    if period.status != PERIOD_OPEN:
        return ValidationResult.fail(
            ValidationCode.PERIOD_NOT_OPEN, "Bidding period is not open", "period"
        )

    amount = submission.amount
    if isinstance(amount, float) and amount.is_integer():
        amount = int(amount)
    if isinstance(amount, bool) or not isinstance(amount, int) or amount <= 0:
        return ValidationResult.fail(
            ValidationCode.INVALID_AMOUNT, "Bid amount must be a positive whole number", "amount"
        )

    minimum = config.bidding.minimum_bid
    if amount < minimum:
        return ValidationResult.fail(
            ValidationCode.BELOW_MINIMUM, f"Bid must be at least ${minimum}", "amount"
        )

    increment_error = check_increment(amount, period, config)
    if increment_error is not None:
        return increment_error

    for field_name, label in (("banner_url", "Banner URL"), ("destination_url", "Destination URL")):
        if not is_http_url(getattr(submission, field_name)):
            return ValidationResult.fail(
                ValidationCode.INVALID_URL, f"{label} must be a valid http(s) URL", field_name
            )

    banner_format = normalize_format(submission.banner_format or url_extension(submission.banner_url))
    allowed = {normalize_format(f) for f in config.banner.formats}
    if banner_format and allowed and banner_format not in allowed:
        return ValidationResult.fail(
            ValidationCode.FORMAT_NOT_ALLOWED,
            f"Format .{banner_format} is not in allowed formats: {', '.join(config.banner.formats)}",
            "banner_url",
        )
    if submission.banner_size_kb is not None and submission.banner_size_kb > config.banner.max_size:
        return ValidationResult.fail(
            ValidationCode.FILE_TOO_LARGE,
            f"Image is {submission.banner_size_kb}KB, max allowed is {config.banner.max_size}KB",
            "banner_url",
        )

    return check_content(submission, config)


def check_increment(amount: int, period: PeriodData, config: Config) -> ValidationResult | None:
    highest = period.highest_approved()
    if highest is None:
        return None
    required = highest + config.bidding.increment
    if amount < required:
        return ValidationResult.fail(
            ValidationCode.BELOW_INCREMENT,
            f"Bid of ${amount} must be at least ${required} "
            f"(current highest ${highest} + increment ${config.bidding.increment})",
            "amount",
        )
    return None


def check_content(submission: BidSubmission, config: Config) -> ValidationResult:
    text = " ".join(
        [submission.banner_url, submission.destination_url, submission.contact, submission.description]
    ).lower()
    for term in config.content_guidelines.prohibited:
        if term.lower() in text:
            return ValidationResult.fail(
                ValidationCode.PROHIBITED_CONTENT,
                f'Content contains prohibited keyword: "{term}"',
                "content",
            )
    required = config.content_guidelines.required
    if required and not any(term.lower() in text for term in required):
        return ValidationResult.fail(
            ValidationCode.MISSING_REQUIRED_CONTENT,
            f"Content must mention at least one of: {', '.join(required)}",
            "content",
        )
    return ValidationResult.ok()


def is_http_url(value: str) -> bool:
    try:
        parsed = urlparse(value)
    except ValueError:
        return False
    return parsed.scheme in ("http", "https") and bool(parsed.netloc)


def url_extension(url: str) -> str | None:
    try:
        path = urlparse(url).path
    except ValueError:
        return None
    last = path.rsplit("/", 1)[-1]
    if "." not in last:
        return None
    return last.rsplit(".", 1)[-1].lower()


def normalize_format(value: str | None) -> str | None:
    if not value:
        return None
    cleaned = value.lower().lstrip(".")
    return FORMAT_ALIASES.get(cleaned, cleaned)
