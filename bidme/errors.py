"""Error kinds and exception types shared across BidMe."""

from __future__ import annotations

import logging
from enum import Enum
from typing import Any

logger = logging.getLogger(__name__)


class ErrorKind(str, Enum):
    VALIDATION_FAILED = "validation_failed"
    ALREADY_OPEN = "already_open"
    ALREADY_PROCESSED = "already_processed"
    INVALID_APPROVAL = "invalid_approval"
    NOT_FOUND = "not_found"
    PERIOD_NOT_OPEN = "period_not_open"
    RATE_LIMITED = "rate_limited"
    PAYMENT_DECLINED = "payment_declined"
    PAYMENT_API_ERROR = "payment_api_error"
    NOT_CONFIGURED = "not_configured"
    CONFIG_INVALID = "config_invalid"
    GITHUB_API_ERROR = "github_api_error"
    PERIOD_DATA_INVALID = "period_data_invalid"


class BidMeError(Exception):
    """Base error carrying a fixed kind plus structured context.

    The underlying error, when there is one, is chained with ``raise ... from``
    and exposed through :attr:`cause`.
    """

    kind: ErrorKind = ErrorKind.VALIDATION_FAILED
    retryable: bool = False

    def __init__(
        self,
        message: str,
        kind: ErrorKind | None = None,
        *,
        context: dict[str, Any] | None = None,
        retryable: bool | None = None,
    ) -> None:
        super().__init__(message)
        self.message = message
        if kind is not None:
            self.kind = kind
        if retryable is not None:
            self.retryable = retryable
        self.context = dict(context or {})

    @property
    def cause(self) -> BaseException | None:
        return self.__cause__

    def __str__(self) -> str:
        return self.message


class AlreadyOpen(BidMeError):
    kind = ErrorKind.ALREADY_OPEN


class PeriodNotOpen(BidMeError):
    kind = ErrorKind.PERIOD_NOT_OPEN


class ConfigError(BidMeError):
    kind = ErrorKind.CONFIG_INVALID


class GitHubAPIError(BidMeError):
    kind = ErrorKind.GITHUB_API_ERROR

    def __init__(self, message: str, status: int, **kwargs: Any) -> None:
        kwargs.setdefault("retryable", status >= 500 or status in (403, 429))
        super().__init__(message, **kwargs)
        self.status = status


class PaymentError(BidMeError):
    kind = ErrorKind.PAYMENT_API_ERROR


class PaymentDeclined(PaymentError):
    kind = ErrorKind.PAYMENT_DECLINED

    def __init__(
        self,
        message: str,
        code: str = "card_declined",
        decline_code: str | None = None,
        **kwargs: Any,
    ) -> None:
        super().__init__(message, **kwargs)
        self.code = code
        self.decline_code = decline_code


class PaymentAPIError(PaymentError):
    kind = ErrorKind.PAYMENT_API_ERROR

    def __init__(self, message: str, status: int | None = None, **kwargs: Any) -> None:
        if status is not None:
            kwargs.setdefault("retryable", status >= 500)
        super().__init__(message, **kwargs)
        self.status = status


class RateLimited(PaymentAPIError):
    kind = ErrorKind.RATE_LIMITED
    retryable = True

    def __init__(self, message: str, status: int = 429, **kwargs: Any) -> None:
        kwargs.setdefault("retryable", True)
        super().__init__(message, status, **kwargs)


class NotConfigured(PaymentError):
    kind = ErrorKind.NOT_CONFIGURED


def log_error(error: BaseException, context: str) -> None:
    if isinstance(error, BidMeError):
        logger.error("[%s] %s: %s", context, error.kind.value, error.message)
        if error.context:
            logger.error("  Context: %s", error.context)
    else:
        logger.error("[%s] %s", context, error)
    cause = error.__cause__
    if cause is not None:
        logger.error("  Cause: %r", cause)
