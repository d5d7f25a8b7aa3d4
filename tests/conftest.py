from datetime import datetime, timezone

import pytest

from bidme.config import build_config
from bidme.errors import NotConfigured
from bidme.models import PERIOD_OPEN, BidRecord, PeriodData
from bidme.payments.base import ChargeResult, Customer, PaymentGateway, PaymentMethod, SetupSession
from bidme.registry import BidderRegistry

NOW = datetime(2026, 2, 1, 12, 0, tzinfo=timezone.utc)


class FakeGateway(PaymentGateway):
    """In-memory gateway recording every call; ``failures`` are raised in order by ``charge``."""

    provider = "stripe"

    def __init__(self, token="sk_test", *, failures=None, status="succeeded", stripe_ids=True):
        super().__init__(token)
        self.stripe_ids = stripe_ids
        self.failures = list(failures or [])
        self.status = status
        self.charges = []
        self.customers = {}
        self.methods = {}

    async def create_customer(self, email, metadata):
        self._require_configured()
        customer = Customer(id=f"cus_{len(self.customers) + 1}", email=email, metadata=dict(metadata))
        self.customers[metadata.get("github_username", email)] = customer
        return customer

    async def create_setup_session(self, customer_id, *, success_url=None, cancel_url=None):
        self._require_configured()
        return SetupSession(id="cs_1", url=f"https://checkout.test/{customer_id}")

    async def charge(self, customer_id, payment_method_id, amount, metadata, *, idempotency_key=None, email=None):
        if not self.is_configured:
            raise NotConfigured("stripe is not configured")
        self.charges.append(
            {
                "customer": customer_id,
                "payment_method": payment_method_id,
                "amount": amount,
                "metadata": metadata,
                "idempotency_key": idempotency_key,
            }
        )
        if self.failures:
            raise self.failures.pop(0)
        charge_id = f"pi_{len(self.charges)}"
        return ChargeResult(
            id=charge_id,
            amount=amount,
            currency="usd",
            status=self.status,
            customer=customer_id,
            stripe_customer_id=customer_id if self.stripe_ids else None,
            stripe_payment_intent_id=charge_id if self.stripe_ids else None,
        )

    async def get_payment_method(self, payment_method_id):
        return PaymentMethod(id=payment_method_id, type="card", customer=self.methods.get(payment_method_id))

    async def find_customer(self, github_username):
        self._require_configured()
        return self.customers.get(github_username)

    async def list_payment_methods(self, customer_id):
        return [PaymentMethod(id=pm, type="card", customer=cus) for pm, cus in self.methods.items() if cus == customer_id]


def make_bid(bidder, amount, comment_id, *, status="approved", timestamp="2026-02-01T10:00:00.000Z", **extra):
    return BidRecord(
        bidder=bidder,
        amount=amount,
        banner_url=extra.get("banner_url", "https://example.com/banner.png"),
        destination_url=extra.get("destination_url", "https://example.com"),
        contact=extra.get("contact", f"{bidder}@example.com"),
        status=status,
        comment_id=comment_id,
        timestamp=timestamp,
    )


@pytest.fixture()
def config():
    return build_config()


@pytest.fixture()
def auto_config():
    return build_config({"approval": {"mode": "auto"}})


@pytest.fixture()
def period():
    return PeriodData(
        period_id="period-2026-02-01",
        status=PERIOD_OPEN,
        start_date="2026-02-01T00:00:00.000Z",
        end_date="2026-02-08T00:00:00.000Z",
        issue_number=42,
        issue_url="https://github.com/octo/site/issues/42",
        bids=[],
        created_at="2026-02-01T00:00:00.000Z",
    )


@pytest.fixture()
def registry():
    return BidderRegistry()


@pytest.fixture()
def linked_registry():
    registry = BidderRegistry()
    for name in ("alice", "bob", "carol"):
        registry.mark_payment_linked(name, f"cus_{name}", f"pm_{name}", now=NOW)
    return registry


@pytest.fixture()
def gateway():
    return FakeGateway()
