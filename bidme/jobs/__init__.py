"""Run entry points triggered by repository events and schedules."""

from __future__ import annotations

import logging
import os
from collections.abc import Awaitable
from dataclasses import dataclass
from typing import TypeVar

import httpx

from bidme.errors import BidMeError, log_error

logger = logging.getLogger(__name__)

T = TypeVar("T")


@dataclass(slots=True)
class JobResult:
    success: bool
    message: str


def repo_identity() -> tuple[str, str]:
    repository = os.environ.get("GITHUB_REPOSITORY", "")
    owner = os.environ.get("GITHUB_REPOSITORY_OWNER") or repository.partition("/")[0]
    repo = repository.partition("/")[2] or repository
    return owner or "unknown", repo or "unknown"


def env_int(name: str, default: int = 0) -> int:
    value = os.environ.get(name, "")
    return int(value) if value.strip().isdigit() else default


def configure_logging() -> None:
    logging.basicConfig(
        level=os.environ.get("LOG_LEVEL", "INFO").upper(),
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
    )


async def best_effort(label: str, call: Awaitable[T]) -> T | None:
    """Await a GitHub side effect; failures are logged and never undo the transition."""
    try:
        return await call
    except (BidMeError, httpx.HTTPError) as exc:
        logger.warning("%s failed; continuing", label)
        log_error(exc, label)
        return None
