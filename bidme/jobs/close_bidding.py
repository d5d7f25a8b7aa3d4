"""Close the bidding period, charge the winner and publish the banner."""

from __future__ import annotations

import asyncio
import logging
import pathlib
from datetime import datetime

from dotenv import load_dotenv

from bidme.config import Config, load_config
from bidme.errors import BidMeError, PaymentDeclined, PaymentError, log_error
from bidme.github import GitHubClient
from bidme.jobs import JobResult, best_effort, configure_logging, repo_identity
from bidme.logic.period import PAYMENT_PAID, CloseResult, close_period
from bidme.models import PERIOD_CLOSED, BidRecord, PeriodData
from bidme.payments import PaymentGateway, create_gateway
from bidme.registry import BidderRegistry
from bidme.render import render, replace_banner, with_tracking
from bidme.store import archive_period, inactive_period, load_period, save_period
from bidme.utils.dates import format_deadline
from bidme.utils.retry import with_retry

logger = logging.getLogger(__name__)

README = "README.md"


async def run_close_bidding(
    target: pathlib.Path | str | None = None,
    *,
    now: datetime | None = None,
    github: GitHubClient | None = None,
    gateway: PaymentGateway | None = None,
) -> JobResult:
    load_dotenv()
    config = load_config(target)

    try:
        period = load_period(target)
    except BidMeError as exc:
        log_error(exc, "close-bidding:load-period")
        return JobResult(False, "Period data file is corrupted; cannot close")
    if period is None or not (period.is_active or period.status == PERIOD_CLOSED):
        return JobResult(True, "No active bidding period found; nothing to close")

    logger.info("Closing %s (%s bids)", period.period_id, len(period.bids))
    registry = BidderRegistry.load(target)
    owns_gateway = gateway is None
    gateway = gateway or create_gateway(config)
    owns_github = github is None
    github = github or GitHubClient.from_env()
    if github is None:
        logger.warning("GitHub environment not configured; running in local mode")

    try:
        try:
            result = await close_period(period, config, gateway, registry, now=now)
        except PaymentError as exc:
            log_error(exc, "close-bidding:charge")
            if github is not None and isinstance(exc, PaymentDeclined):
                declined = period.find_bid(period.payment.winner_comment_id) if period.payment else None
                if declined is not None:
                    await _comment(github, period, "disqualified", bid=declined, reason="payment declined")
            return JobResult(False, f"Payment failed: {exc.message}")
        finally:
            save_period(period, target)
            registry.save(target)

        if github is not None:
            for bid in result.disqualified:
                await _comment(github, period, "disqualified", bid=bid, reason="payment not linked")

        if result.awaiting_link:
            if github is not None:
                deadline = format_deadline(result.grace_deadline) if result.grace_deadline else None
                await _comment(github, period, "awaiting_link", bid=result.winner, deadline=deadline)
            return JobResult(True, result.message)

        await _publish(result, config, target, github)
        archive_period(period, target)
        save_period(inactive_period(now), target)
        logger.info("Current period cleared")
    finally:
        if owns_github and github is not None:
            await github.close()
        if owns_gateway:
            await gateway.close()

    return JobResult(True, result.message)


async def _publish(
    result: CloseResult,
    config: Config,
    target: pathlib.Path | str | None,
    github: GitHubClient | None,
) -> None:
    period = result.period
    winner = result.winner

    if winner is not None:
        await _update_readme(winner, config, target, github)
    if github is None:
        return
    if result.already_closed and not await _issue_still_open(github, period):
        logger.info("%s was published by an earlier run; finishing archive", period.period_id)
        return

    if winner is not None:
        payment = period.payment
        await _comment(
            github,
            period,
            "winner",
            bid=winner,
            paid=bool(payment and payment.payment_status == PAYMENT_PAID),
            checkout_url=payment.checkout_url if payment else None,
        )
    else:
        await _comment(github, period, "no_bids")

    if period.issue_node_id:
        await best_effort("close-bidding:unpin-issue", github.unpin_issue(period.issue_node_id))
    if period.issue_number:
        await best_effort("close-bidding:close-issue", github.close_issue(period.issue_number))


async def _issue_still_open(github: GitHubClient, period: PeriodData) -> bool:
    if not period.issue_number:
        return False
    issue = await best_effort("close-bidding:get-issue", github.get_issue(period.issue_number))
    return issue is not None and issue.state == "open"


async def _update_readme(
    winner: BidRecord,
    config: Config,
    target: pathlib.Path | str | None,
    github: GitHubClient | None,
) -> None:
    owner, repo = repo_identity()
    tracking_url = with_tracking(winner.destination_url, config, owner, repo)
    logger.info("Tracking URL: %s", tracking_url)
    message = f"BidMe: Update banner (winner @{winner.bidder}, ${winner.amount})"

    if github is None:
        path = pathlib.Path(target or ".") / README
        if not path.exists():
            logger.warning("No %s found; skipping banner update", path)
            return
        content = path.read_text(encoding="utf-8")
        updated = replace_banner(content, winner, tracking_url, config)
        if updated is None:
            logger.warning("%s has no BidMe banner markers; skipping banner update", path)
            return
        if updated == content:
            logger.info("README already shows the winning banner")
            return
        path.write_text(updated, encoding="utf-8")
        logger.info("README updated with winning banner")
        return

    async def push() -> None:
        content, sha = await github.get_readme()
        updated = replace_banner(content, winner, tracking_url, config)
        if updated is None:
            logger.warning("README has no BidMe banner markers; skipping banner update")
            return
        if updated == content:
            logger.info("README already shows the winning banner")
            return
        await github.update_readme(updated, message, sha=sha)

    def on_retry(attempt: int, error: BaseException) -> None:
        logger.warning("README update failed (attempt %s), retrying", attempt)
        log_error(error, "close-bidding:update-readme")

    await best_effort("close-bidding:update-readme", with_retry(push, 2, on_retry=on_retry))


async def _comment(github: GitHubClient, period: PeriodData, template: str, **context) -> None:
    if not period.issue_number:
        return
    await best_effort(
        f"close-bidding:{template}-comment",
        github.add_comment(period.issue_number, render(template, period=period, **context)),
    )


if __name__ == "__main__":
    configure_logging()
    result = asyncio.run(run_close_bidding())
    raise SystemExit(0 if result.success else 1)
