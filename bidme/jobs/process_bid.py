"""Record a bid posted as a comment on the bidding issue."""

from __future__ import annotations

import asyncio
import logging
import os
import pathlib
from datetime import datetime

from dotenv import load_dotenv

from bidme.banner import BannerInfo, inspect_banner
from bidme.config import Config, load_config
from bidme.errors import BidMeError, ErrorKind, GitHubAPIError, log_error
from bidme.github import GitHubClient
from bidme.jobs import JobResult, best_effort, configure_logging, env_int
from bidme.logic.enforcement import NOTICE_PAUSED, NOTICE_UNLINKED
from bidme.logic.period import BidOutcome, submit_bid
from bidme.logic.validator import BidSubmission, parse_bid_comment
from bidme.models import PERIOD_INACTIVE, PERIOD_OPEN
from bidme.registry import BidderRegistry
from bidme.render import issue_body, render, strikethrough
from bidme.store import load_period, save_period
from bidme.utils.dates import format_deadline

logger = logging.getLogger(__name__)

LOCAL_BIDDER = "local-user"


async def run_process_bid(
    issue_number: int,
    comment_id: int,
    target: pathlib.Path | str | None = None,
    *,
    comment_body: str | None = None,
    author: str | None = None,
    banner: BannerInfo | None = None,
    now: datetime | None = None,
    github: GitHubClient | None = None,
) -> JobResult:
    load_dotenv()
    config = load_config(target)
    logger.info("Processing bid comment %s on issue #%s (%s approval)", comment_id, issue_number, config.approval.mode)

    try:
        period = load_period(target)
    except BidMeError as exc:
        log_error(exc, "process-bid:load-period")
        return JobResult(False, exc.message)
    if period is None or period.status == PERIOD_INACTIVE:
        return JobResult(False, "No active bidding period found")
    if period.status != PERIOD_OPEN:
        return JobResult(False, "Bidding period is not open")

    owned = github is None
    github = github or GitHubClient.from_env()
    try:
        if comment_body is None:
            if github is None:
                logger.warning("GitHub environment not configured; running in local mode")
                comment_body = ""
            else:
                try:
                    comment = await github.get_comment(comment_id)
                except GitHubAPIError as exc:
                    if exc.status != 404:
                        raise
                    log_error(exc, "process-bid:get-comment")
                    return JobResult(False, "Comment not found; it may have been deleted")
                comment_body = comment.body
                author = author or comment.author
        bidder = author or LOCAL_BIDDER

        parsed = parse_bid_comment(comment_body)
        if parsed is None:
            logger.info("Could not parse bid comment %s", comment_id)
            if github is not None:
                await best_effort(
                    "process-bid:invalid-format",
                    github.add_comment(issue_number, render("bid_invalid_format")),
                )
            return JobResult(False, "Could not parse bid; use the YAML bid format")

        if banner is None and github is not None:
            banner = await inspect_banner(parsed.banner_url)
        banner = banner or BannerInfo()

        submission = BidSubmission.from_parsed(
            parsed,
            bidder=bidder,
            comment_id=comment_id,
            banner_format=banner.format,
            banner_size_kb=banner.size_kb,
        )
        registry = BidderRegistry.load(target)
        outcome = submit_bid(period, submission, config, registry=registry, now=now)

        if outcome.error == ErrorKind.ALREADY_PROCESSED:
            logger.info(outcome.message)
            return JobResult(True, outcome.message)
        if not outcome.ok:
            if github is not None:
                text = render("bid_rejected", title="Bid rejected", errors=[outcome.message])
                await best_effort("process-bid:rejected-comment", github.add_comment(issue_number, text))
            return JobResult(False, f"Bid validation failed: {outcome.message}")

        save_period(period, target)
        registry.save(target)

        if github is not None:
            await _publish(github, issue_number, comment_body, outcome, config, registry, now)
    finally:
        if owned and github is not None:
            await github.close()

    return JobResult(True, outcome.message)


async def _publish(
    github: GitHubClient,
    issue_number: int,
    comment_body: str,
    outcome: BidOutcome,
    config: Config,
    registry: BidderRegistry,
    now: datetime | None,
) -> None:
    bid = outcome.bid
    await best_effort(
        "process-bid:update-issue",
        github.update_issue_body(issue_number, issue_body(config, outcome.period, now=now)),
    )

    if outcome.notice == NOTICE_PAUSED:
        if config.enforcement.strikethrough_unlinked:
            await best_effort(
                "process-bid:strikethrough",
                github.update_comment(bid.comment_id, strikethrough(comment_body)),
            )
        deadline = registry.get_grace_deadline(bid.bidder, config.payment.unlinked_grace_hours)
        text = render("bid_paused", bid=bid, deadline=format_deadline(deadline) if deadline else None)
    else:
        text = render(
            "bid_accepted",
            bid=bid,
            config=config,
            unlinked=outcome.notice == NOTICE_UNLINKED,
            grace_hours=config.payment.unlinked_grace_hours,
        )
    await best_effort("process-bid:confirmation", github.add_comment(issue_number, text))


if __name__ == "__main__":
    configure_logging()
    result = asyncio.run(
        run_process_bid(
            env_int("ISSUE_NUMBER"),
            env_int("COMMENT_ID"),
            comment_body=os.environ.get("COMMENT_BODY") or None,
            author=os.environ.get("COMMENT_AUTHOR") or None,
        )
    )
    raise SystemExit(0 if result.success else 1)
