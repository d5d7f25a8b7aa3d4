"""Apply the repository owner's reaction to a pending bid."""

from __future__ import annotations

import asyncio
import logging
import os
import pathlib

from dotenv import load_dotenv

from bidme.config import Config, load_config
from bidme.errors import BidMeError, ErrorKind, GitHubAPIError, log_error
from bidme.github import GitHubClient
from bidme.jobs import JobResult, best_effort, configure_logging, env_int
from bidme.logic.approval import DECISION_APPROVE, DECISION_REJECT, process_approval, reaction_decision
from bidme.models import BID_PENDING
from bidme.render import issue_body, render
from bidme.store import load_period, save_period

logger = logging.getLogger(__name__)


def pick_reaction(mine: list[str], config: Config) -> str | None:
    """Pick the deciding reaction: approvals first, then rejections."""
    for wanted in (DECISION_APPROVE, DECISION_REJECT):
        for content in mine:
            if reaction_decision(content, config) == wanted:
                return content
    return mine[0] if mine else None


async def run_process_approval(
    issue_number: int,
    comment_id: int,
    target: pathlib.Path | str | None = None,
    *,
    reactions: list[str] | None = None,
    github: GitHubClient | None = None,
) -> JobResult:
    """``reactions`` are the owner's reactions when already known; otherwise they are fetched."""
    load_dotenv()
    config = load_config(target)
    if config.approval.mode == "auto":
        return JobResult(True, "Approval mode is 'auto'; bids are approved automatically")

    try:
        period = load_period(target)
    except BidMeError as exc:
        log_error(exc, "process-approval:load-period")
        return JobResult(False, exc.message)
    if period is None:
        return JobResult(False, "No active bidding period found")

    owned = github is None
    github = github or GitHubClient.from_env()
    try:
        if reactions is None:
            if github is None:
                logger.warning("GitHub environment not configured; cannot read reactions")
                return JobResult(False, "GitHub environment not configured")
            existing = period.find_bid(comment_id)
            if existing is not None and existing.status != BID_PENDING:
                return JobResult(True, f"Bid by @{existing.bidder} is already {existing.status}")
            try:
                fetched = await github.get_reactions(comment_id)
            except GitHubAPIError as exc:
                if exc.status != 404:
                    raise
                log_error(exc, "process-approval:get-reactions")
                return JobResult(False, "Comment not found; it may have been deleted")
            reaction = pick_reaction([r.content for r in fetched if r.user == github.owner], config)
        else:
            reaction = pick_reaction(reactions, config)

        outcome = process_approval(period, comment_id, reaction, config)
        if outcome.error == ErrorKind.ALREADY_PROCESSED:
            return JobResult(True, outcome.message)
        if not outcome.ok:
            log_error(BidMeError(outcome.message, outcome.error, context={"comment_id": comment_id}), "process-approval")
            return JobResult(False, outcome.message)
        if outcome.status == BID_PENDING:
            return JobResult(True, outcome.message)

        save_period(period, target)

        if github is not None:
            await best_effort(
                "process-approval:update-issue",
                github.update_issue_body(issue_number, issue_body(config, period)),
            )
            await best_effort(
                "process-approval:confirmation",
                github.add_comment(issue_number, render("approval", bid=outcome.bid)),
            )
    finally:
        if owned and github is not None:
            await github.close()

    return JobResult(True, outcome.message)


if __name__ == "__main__":
    configure_logging()
    given = os.environ.get("REACTION")
    result = asyncio.run(
        run_process_approval(
            env_int("ISSUE_NUMBER"),
            env_int("COMMENT_ID"),
            reactions=[given] if given else None,
        )
    )
    raise SystemExit(0 if result.success else 1)
