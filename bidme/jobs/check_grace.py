"""Restore or expire bids paused for an unlinked payment method."""

from __future__ import annotations

import asyncio
import logging
import pathlib
from datetime import datetime

from dotenv import load_dotenv

from bidme.config import load_config
from bidme.errors import BidMeError, PeriodNotOpen, log_error
from bidme.github import GitHubClient
from bidme.jobs import JobResult, best_effort, configure_logging
from bidme.logic.enforcement import check_grace
from bidme.models import BidRecord
from bidme.payments import PaymentGateway, create_gateway
from bidme.registry import BidderRegistry
from bidme.render import clear_strikethrough, issue_body, render
from bidme.store import load_period, save_period

logger = logging.getLogger(__name__)


async def run_check_grace(
    target: pathlib.Path | str | None = None,
    *,
    now: datetime | None = None,
    github: GitHubClient | None = None,
    gateway: PaymentGateway | None = None,
) -> JobResult:
    load_dotenv()
    config = load_config(target)
    logger.info("Grace period: %s hours", config.payment.unlinked_grace_hours)

    try:
        period = load_period(target)
    except BidMeError as exc:
        log_error(exc, "check-grace:load-period")
        return JobResult(False, exc.message)
    if period is None:
        return JobResult(True, "No active bidding period found")

    registry = BidderRegistry.load(target)
    owns_gateway = gateway is None
    gateway = gateway or create_gateway(config)
    try:
        report = await check_grace(period, config, registry, gateway=gateway, now=now)
    except PeriodNotOpen as exc:
        return JobResult(True, exc.message)
    finally:
        if owns_gateway:
            await gateway.close()

    if not report.checked:
        return JobResult(True, report.message)

    save_period(period, target)
    registry.save(target)

    owns_github = github is None
    github = github or GitHubClient.from_env()
    if github is None:
        logger.warning("GitHub environment not configured; skipping comments")
        return JobResult(True, report.message)

    try:
        for bid in report.restored + report.rejected:
            if config.enforcement.strikethrough_unlinked:
                await best_effort(f"check-grace:unstrike-{bid.comment_id}", _unstrike(github, bid))
            await best_effort(
                "check-grace:restore-comment",
                github.add_comment(period.issue_number, render("payment_linked", bid=bid)),
            )
        for bid in report.expired:
            await best_effort(
                "check-grace:expire-comment",
                github.add_comment(period.issue_number, render("grace_expired", bid=bid)),
            )
        if report.restored or report.expired or report.rejected:
            await best_effort(
                "check-grace:update-issue",
                github.update_issue_body(period.issue_number, issue_body(config, period, now=now)),
            )
    finally:
        if owns_github:
            await github.close()

    return JobResult(True, report.message)


async def _unstrike(github: GitHubClient, bid: BidRecord) -> None:
    comment = await github.get_comment(bid.comment_id)
    body = clear_strikethrough(comment.body)
    if body != comment.body:
        await github.update_comment(bid.comment_id, body)


if __name__ == "__main__":
    configure_logging()
    result = asyncio.run(run_check_grace())
    raise SystemExit(0 if result.success else 1)
