"""Start or confirm payment-method linking for a bidder."""

from __future__ import annotations

import asyncio
import logging
import os
import pathlib
from datetime import datetime

from dotenv import load_dotenv

from bidme.config import load_config
from bidme.errors import PaymentError, log_error
from bidme.github import GitHubClient
from bidme.jobs import JobResult, best_effort, configure_logging, env_int
from bidme.logic.enforcement import confirm_payment_link, start_payment_setup
from bidme.payments import PaymentGateway, create_gateway
from bidme.registry import BidderRegistry
from bidme.render import render

logger = logging.getLogger(__name__)


async def run_setup_payment(
    username: str,
    issue_number: int = 0,
    target: pathlib.Path | str | None = None,
    *,
    email: str | None = None,
    github: GitHubClient | None = None,
    gateway: PaymentGateway | None = None,
) -> JobResult:
    load_dotenv()
    config = load_config(target)
    owns_gateway = gateway is None
    gateway = gateway or create_gateway(config)
    if not gateway.is_configured:
        return JobResult(False, f"{gateway.provider} not configured; cannot set up payment")

    registry = BidderRegistry.load(target)
    try:
        session = await start_payment_setup(
            username,
            gateway,
            registry,
            email=email,
            success_url=config.payment.payment_link,
            cancel_url=config.payment.payment_link,
        )
    except PaymentError as exc:
        log_error(exc, "setup-payment")
        return JobResult(False, f"Failed to create payment setup: {exc.message}")
    finally:
        if owns_gateway:
            await gateway.close()

    if session is None:
        return JobResult(True, f"Payment already linked for @{username}")
    registry.save(target)
    url = session.url or ""
    logger.info("Setup session %s created for @%s", session.id, username)

    if issue_number > 0:
        owns_github = github is None
        github = github or GitHubClient.from_env()
        if github is not None:
            try:
                await best_effort(
                    "setup-payment:comment",
                    github.add_comment(issue_number, render("payment_setup", username=username, url=url)),
                )
            finally:
                if owns_github:
                    await github.close()

    return JobResult(True, f"Payment setup link generated for @{username}: {url}")


async def run_confirm_payment(
    username: str,
    payment_method_id: str,
    target: pathlib.Path | str | None = None,
    *,
    customer_id: str | None = None,
    now: datetime | None = None,
    gateway: PaymentGateway | None = None,
) -> JobResult:
    load_dotenv()
    config = load_config(target)
    owns_gateway = gateway is None
    gateway = gateway or create_gateway(config)
    registry = BidderRegistry.load(target)
    try:
        record = await confirm_payment_link(
            username, payment_method_id, gateway, registry, customer_id=customer_id, now=now
        )
    except PaymentError as exc:
        log_error(exc, "confirm-payment")
        return JobResult(False, f"Could not link payment for @{username}: {exc.message}")
    finally:
        if owns_gateway:
            await gateway.close()
    registry.save(target)
    return JobResult(True, f"Payment linked for @{record.github_username}")


if __name__ == "__main__":
    configure_logging()
    user = os.environ.get("BIDDER", "")
    method = os.environ.get("PAYMENT_METHOD_ID")
    if method:
        result = asyncio.run(run_confirm_payment(user, method, customer_id=os.environ.get("CUSTOMER_ID")))
    else:
        result = asyncio.run(run_setup_payment(user, env_int("ISSUE_NUMBER")))
    raise SystemExit(0 if result.success else 1)
