"""Payment gateway interface shared by the Stripe and Polar clients."""

from __future__ import annotations

import logging
from abc import ABC, abstractmethod
from collections.abc import Awaitable, Callable
from dataclasses import dataclass, field
from typing import Any, TypeVar

import httpx

from bidme.errors import NotConfigured, PaymentAPIError, log_error
from bidme.utils.retry import is_rate_limited, with_retry

logger = logging.getLogger(__name__)

T = TypeVar("T")

CHARGE_SUCCEEDED = "succeeded"
CHARGE_PENDING = "pending"


@dataclass(slots=True)
class Customer:
    id: str
    email: str | None = None
    metadata: dict[str, str] = field(default_factory=dict)


@dataclass(slots=True)
class SetupSession:
    id: str
    client_secret: str | None = None
    url: str | None = None


@dataclass(slots=True)
class PaymentMethod:
    id: str
    type: str
    customer: str | None = None
    brand: str | None = None
    last4: str | None = None


@dataclass(slots=True)
class ChargeResult:
    id: str
    amount: int
    currency: str
    status: str
    customer: str | None = None
    checkout_url: str | None = None
    stripe_customer_id: str | None = None
    stripe_payment_intent_id: str | None = None

    @property
    def succeeded(self) -> bool:
        return self.status == CHARGE_SUCCEEDED


class PaymentGateway(ABC):
    """Customer, setup and charge operations over one payment provider.

    Amounts are whole currency units; implementations convert to the
    provider's minor units.
    """

    provider: str = ""
    retry_attempts: int = 2
    retry_delay: float = 2.0

    def __init__(self, token: str | None, *, session: httpx.AsyncClient | None = None) -> None:
        self.token = token
        self._session = session
        if not token:
            logger.warning("%s credentials not set; payment features will be skipped", self.provider)

    @property
    def is_configured(self) -> bool:
        return bool(self.token)

    @property
    def session(self) -> httpx.AsyncClient:
        if self._session is None:
            self._session = httpx.AsyncClient(timeout=30.0)
        return self._session

    async def close(self) -> None:
        if self._session is not None:
            await self._session.aclose()

    def _require_configured(self) -> None:
        if not self.is_configured:
            raise NotConfigured(
                f"{self.provider} is not configured; missing credentials",
                context={"provider": self.provider},
            )

    async def _call(self, label: str, operation: Callable[[], Awaitable[T]]) -> T:
        self._require_configured()

        def on_retry(attempt: int, error: BaseException) -> None:
            if is_rate_limited(error):
                logger.warning("%s %s rate limited (attempt %s), retrying", self.provider, label, attempt)
            else:
                logger.warning("%s %s failed (attempt %s), retrying", self.provider, label, attempt)
            log_error(error, f"{self.provider}:{label}")

        return await with_retry(
            operation,
            self.retry_attempts,
            delay=self.retry_delay,
            on_retry=on_retry,
            should_retry=_is_retryable,
        )

    @abstractmethod
    async def create_customer(self, email: str, metadata: dict[str, str]) -> Customer: ...

    @abstractmethod
    async def create_setup_session(
        self,
        customer_id: str,
        *,
        success_url: str | None = None,
        cancel_url: str | None = None,
    ) -> SetupSession: ...

    @abstractmethod
    async def charge(
        self,
        customer_id: str | None,
        payment_method_id: str | None,
        amount: int,
        metadata: dict[str, str],
        *,
        idempotency_key: str | None = None,
        email: str | None = None,
    ) -> ChargeResult: ...

    @abstractmethod
    async def get_payment_method(self, payment_method_id: str) -> PaymentMethod: ...

    @abstractmethod
    async def find_customer(self, github_username: str) -> Customer | None: ...

    @abstractmethod
    async def list_payment_methods(self, customer_id: str) -> list[PaymentMethod]: ...


def _is_retryable(error: BaseException) -> bool:
    if isinstance(error, httpx.TransportError):
        return True
    return bool(getattr(error, "retryable", False))


def transport_error(provider: str, exc: httpx.HTTPError) -> PaymentAPIError:
    error = PaymentAPIError(f"{provider} request failed: {exc}", context={"provider": provider})
    error.retryable = True
    return error


def to_minor_units(amount: int) -> int:
    return int(amount) * 100


def from_minor_units(amount: Any) -> int:
    try:
        return int(amount) // 100
    except (TypeError, ValueError):
        return 0
