"""Open a new bidding period and its tracking issue."""

from __future__ import annotations

import asyncio
import logging
import pathlib
from datetime import datetime

from dotenv import load_dotenv

from bidme.config import load_config
from bidme.errors import AlreadyOpen, log_error
from bidme.github import GitHubClient
from bidme.jobs import JobResult, best_effort, configure_logging
from bidme.logic.period import open_period
from bidme.render import issue_body, issue_title
from bidme.store import archived_period_ids, load_period, save_period
from bidme.utils.retry import with_retry

logger = logging.getLogger(__name__)


async def run_open_bidding(
    target: pathlib.Path | str | None = None,
    *,
    now: datetime | None = None,
    github: GitHubClient | None = None,
) -> JobResult:
    load_dotenv()
    config = load_config(target)
    logger.info(
        "Schedule %s, %s days, minimum $%s",
        config.bidding.schedule,
        config.bidding.duration_days,
        config.bidding.minimum_bid,
    )

    try:
        period = open_period(load_period(target), config, now=now, archived_ids=archived_period_ids(target))
    except AlreadyOpen as exc:
        log_error(exc, "open-bidding")
        return JobResult(False, exc.message)

    owned = github is None
    github = github or GitHubClient.from_env()
    if github is None:
        logger.warning("GitHub environment not configured; running in local mode")
        path = save_period(period, target)
        return JobResult(True, f"Opened {period.period_id} (local mode, saved to {path})")

    try:
        def on_retry(attempt: int, error: BaseException) -> None:
            logger.warning("Issue creation failed (attempt %s), retrying", attempt)
            log_error(error, "open-bidding:create-issue")

        issue = await with_retry(
            lambda: github.create_issue(issue_title(period), issue_body(config, period, now=now), ["bidme"]),
            2,
            on_retry=on_retry,
        )
        period.issue_number = issue.number
        period.issue_url = issue.html_url
        period.issue_node_id = issue.node_id
        save_period(period, target)
        logger.info("Issue #%s created: %s", issue.number, issue.html_url)

        if issue.node_id:
            await best_effort("open-bidding:pin-issue", github.pin_issue(issue.node_id))
    finally:
        if owned:
            await github.close()

    return JobResult(True, f"Opened {period.period_id} with issue #{period.issue_number}")


if __name__ == "__main__":
    configure_logging()
    result = asyncio.run(run_open_bidding())
    raise SystemExit(0 if result.success else 1)
