"""Payment gateway selection."""

from __future__ import annotations

import os

import httpx

from bidme.config import Config
from bidme.payments.base import ChargeResult, Customer, PaymentGateway, PaymentMethod, SetupSession
from bidme.payments.polar import PolarGateway
from bidme.payments.stripe import StripeGateway

__all__ = [
    "ChargeResult",
    "Customer",
    "PaymentGateway",
    "PaymentMethod",
    "PolarGateway",
    "SetupSession",
    "StripeGateway",
    "create_gateway",
]


def create_gateway(config: Config, *, session: httpx.AsyncClient | None = None) -> PaymentGateway:
    provider = config.payment.provider
    currency = config.payment.currency
    if provider == "stripe":
        return StripeGateway(os.environ.get("STRIPE_SECRET_KEY"), currency=currency, session=session)
    return PolarGateway(
        os.environ.get("POLAR_ACCESS_TOKEN"), mode=provider, currency=currency, session=session
    )
