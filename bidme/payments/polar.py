"""Polar.sh client: winners pay through a one-time product checkout."""

from __future__ import annotations

import logging
from typing import Any

import httpx

from bidme.errors import PaymentAPIError, PaymentDeclined, RateLimited
from bidme.payments.base import (
    CHARGE_PENDING,
    CHARGE_SUCCEEDED,
    ChargeResult,
    Customer,
    PaymentGateway,
    PaymentMethod,
    SetupSession,
    from_minor_units,
    to_minor_units,
    transport_error,
)

logger = logging.getLogger(__name__)

POLAR_API = "https://api.polar.sh/v1"
PAYMENT_MODES = ("polar-own", "bidme-managed")


class PolarGateway(PaymentGateway):
    provider = "polar"

    def __init__(
        self,
        access_token: str | None,
        *,
        mode: str = "polar-own",
        currency: str = "usd",
        session: httpx.AsyncClient | None = None,
    ) -> None:
        super().__init__(access_token, session=session)
        if mode not in PAYMENT_MODES:
            raise ValueError(f"Unknown Polar payment mode: {mode}")
        if mode == "bidme-managed" and access_token:
            # TODO: route bidme-managed payments through Stripe Connect once the marketplace account exists
            logger.warning("BidMe managed payments coming soon; using direct Polar for now")
        self.mode = mode
        self.currency = currency

    async def create_customer(self, email: str, metadata: dict[str, str]) -> Customer:
        data = await self._call(
            "create_customer",
            lambda: self._request("POST", "/customers/", {"email": email, "metadata": metadata}),
        )
        return Customer(id=data["id"], email=data.get("email"), metadata=dict(data.get("metadata") or {}))

    async def create_setup_session(
        self,
        customer_id: str,
        *,
        success_url: str | None = None,
        cancel_url: str | None = None,
    ) -> SetupSession:
        payload: dict[str, Any] = {"customer_id": customer_id, "metadata": {"purpose": "payment_setup"}}
        if success_url:
            payload["success_url"] = success_url
        data = await self._call("create_checkout", lambda: self._request("POST", "/checkouts/", payload))
        return SetupSession(id=data["id"], client_secret=data.get("client_secret"), url=data.get("url"))

    async def charge(
        self,
        customer_id: str | None,
        payment_method_id: str | None,
        amount: int,
        metadata: dict[str, str],
        *,
        idempotency_key: str | None = None,
        email: str | None = None,
    ) -> ChargeResult:
        period_id = metadata.get("period_id", "")
        product = await self._call(
            "create_product",
            lambda: self._request(
                "POST",
                "/products/",
                {
                    "name": f"Banner Space: {period_id} - ${amount}",
                    "description": f"BidMe banner slot for period {period_id}",
                    "prices": [
                        {"type": "one_time", "amount": to_minor_units(amount), "currency": self.currency}
                    ],
                },
            ),
        )
        logger.info("Polar product created: %s", product.get("id"))
        payload: dict[str, Any] = {
            "product_id": product["id"],
            "amount": to_minor_units(amount),
            "currency": self.currency,
            "metadata": {**metadata, **({"idempotency_key": idempotency_key} if idempotency_key else {})},
        }
        if customer_id:
            payload["customer_id"] = customer_id
        if email:
            payload["customer_email"] = email
        checkout = await self._call("create_checkout", lambda: self._request("POST", "/checkouts/", payload))
        logger.info("Polar checkout session created: %s", checkout.get("url"))
        status = CHARGE_SUCCEEDED if checkout.get("status") == "succeeded" else CHARGE_PENDING
        return ChargeResult(
            id=checkout["id"],
            amount=from_minor_units(checkout.get("amount", to_minor_units(amount))),
            currency=checkout.get("currency", self.currency),
            status=status,
            customer=customer_id,
            checkout_url=checkout.get("url"),
        )

    async def get_payment_method(self, payment_method_id: str) -> PaymentMethod:
        # Polar keeps no reusable payment methods; a completed checkout stands in for one.
        data = await self._call(
            "get_checkout", lambda: self._request("GET", f"/checkouts/{payment_method_id}")
        )
        if data.get("status") != "succeeded":
            raise PaymentDeclined(
                "Polar checkout has not been completed",
                code=data.get("status") or "open",
                context={"checkout_id": payment_method_id},
            )
        return PaymentMethod(id=data["id"], type="polar_checkout", customer=data.get("customer_id"))

    async def find_customer(self, github_username: str) -> Customer | None:
        data = await self._call(
            "list_customers", lambda: self._request("GET", "/customers/", params={"query": github_username})
        )
        for item in data.get("items") or []:
            metadata = item.get("metadata") or {}
            if metadata.get("github_username") == github_username:
                return Customer(id=item["id"], email=item.get("email"), metadata=dict(metadata))
        return None

    async def list_payment_methods(self, customer_id: str) -> list[PaymentMethod]:
        return []

    async def _request(
        self,
        method: str,
        path: str,
        body: dict[str, Any] | None = None,
        *,
        params: dict[str, Any] | None = None,
    ) -> dict[str, Any]:
        headers = {
            "Authorization": f"Bearer {self.token}",
            "Accept": "application/json",
        }
        try:
            response = await self.session.request(
                method, f"{POLAR_API}{path}", json=body, params=params, headers=headers
            )
        except httpx.TransportError as exc:
            raise transport_error(self.provider, exc) from exc
        if response.is_success:
            return response.json()
        try:
            detail = response.json().get("detail")
        except ValueError:
            detail = None
        if not isinstance(detail, str):
            detail = response.reason_phrase or "Polar API error"
        context = {"status": response.status_code, "path": path}
        if response.status_code == 429:
            raise RateLimited(detail, response.status_code, context=context)
        raise PaymentAPIError(detail, response.status_code, context=context)
