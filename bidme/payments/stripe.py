"""Stripe REST client for off-session bidder charges."""

from __future__ import annotations

import logging
from typing import Any
from urllib.parse import quote

import httpx

from bidme.errors import PaymentAPIError, PaymentDeclined, RateLimited
from bidme.payments.base import (
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

STRIPE_API = "https://api.stripe.com/v1"


class StripeGateway(PaymentGateway):
    provider = "stripe"

    def __init__(
        self,
        secret_key: str | None,
        *,
        currency: str = "usd",
        session: httpx.AsyncClient | None = None,
    ) -> None:
        super().__init__(secret_key, session=session)
        self.currency = currency

    async def create_customer(self, email: str, metadata: dict[str, str]) -> Customer:
        data = await self._call(
            "create_customer",
            lambda: self._request("POST", "/customers", {"email": email, "metadata": metadata}),
        )
        return _customer(data)

    async def create_setup_session(
        self,
        customer_id: str,
        *,
        success_url: str | None = None,
        cancel_url: str | None = None,
    ) -> SetupSession:
        if success_url:
            payload = {
                "customer": customer_id,
                "mode": "setup",
                "success_url": success_url,
                "cancel_url": cancel_url or success_url,
                "payment_method_types": ["card"],
            }
            data = await self._call(
                "create_checkout_session", lambda: self._request("POST", "/checkout/sessions", payload)
            )
            return SetupSession(id=data["id"], url=data.get("url"))
        data = await self._call(
            "create_setup_intent",
            lambda: self._request("POST", "/setup_intents", {"customer": customer_id, "usage": "off_session"}),
        )
        return SetupSession(id=data["id"], client_secret=data.get("client_secret"))

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
        if not customer_id or not payment_method_id:
            raise PaymentAPIError(
                "Stripe charge requires a customer and a saved payment method",
                context={"customer": customer_id, "payment_method": payment_method_id},
            )
        payload = {
            "customer": customer_id,
            "payment_method": payment_method_id,
            "amount": to_minor_units(amount),
            "currency": self.currency,
            "off_session": True,
            "confirm": True,
            "metadata": metadata,
        }
        data = await self._call(
            "charge",
            lambda: self._request("POST", "/payment_intents", payload, idempotency_key=idempotency_key),
        )
        logger.info("Stripe payment intent %s: %s", data.get("id"), data.get("status"))
        return ChargeResult(
            id=data["id"],
            amount=from_minor_units(data.get("amount")),
            currency=data.get("currency", self.currency),
            status=data.get("status", ""),
            customer=data.get("customer"),
            stripe_customer_id=data.get("customer"),
            stripe_payment_intent_id=data["id"],
        )

    async def get_payment_method(self, payment_method_id: str) -> PaymentMethod:
        data = await self._call(
            "get_payment_method", lambda: self._request("GET", f"/payment_methods/{payment_method_id}")
        )
        return _payment_method(data)

    async def find_customer(self, github_username: str) -> Customer | None:
        query = f'metadata["github_username"]:"{github_username}"'
        data = await self._call(
            "search_customers",
            lambda: self._request("GET", f"/customers/search?query={quote(query)}"),
        )
        items = data.get("data") or []
        return _customer(items[0]) if items else None

    async def list_payment_methods(self, customer_id: str) -> list[PaymentMethod]:
        data = await self._call(
            "list_payment_methods",
            lambda: self._request("GET", f"/payment_methods?customer={quote(customer_id)}&type=card"),
        )
        return [_payment_method(item) for item in data.get("data") or []]

    async def _request(
        self,
        method: str,
        path: str,
        body: dict[str, Any] | None = None,
        *,
        idempotency_key: str | None = None,
    ) -> dict[str, Any]:
        headers = {"Content-Type": "application/x-www-form-urlencoded"}
        if idempotency_key:
            headers["Idempotency-Key"] = idempotency_key
        try:
            response = await self.session.request(
                method,
                f"{STRIPE_API}{path}",
                content=encode_form(body) if body else None,
                headers=headers,
                auth=(self.token or "", ""),
            )
        except httpx.TransportError as exc:
            raise transport_error(self.provider, exc) from exc
        if response.is_success:
            return response.json()
        raise _error_from_response(response)


def encode_form(data: dict[str, Any], prefix: str = "") -> str:
    """Encode nested dicts and lists with Stripe's bracket notation."""
    params: list[str] = []
    for key, value in data.items():
        if value is None:
            continue
        full_key = f"{prefix}[{key}]" if prefix else key
        if isinstance(value, dict):
            params.append(encode_form(value, full_key))
        elif isinstance(value, (list, tuple)):
            for index, item in enumerate(value):
                item_key = f"{full_key}[{index}]"
                if isinstance(item, dict):
                    params.append(encode_form(item, item_key))
                else:
                    params.append(f"{quote(item_key, safe='')}={quote(_scalar(item), safe='')}")
        else:
            params.append(f"{quote(full_key, safe='')}={quote(_scalar(value), safe='')}")
    return "&".join(p for p in params if p)


def _scalar(value: Any) -> str:
    if isinstance(value, bool):
        return "true" if value else "false"
    return str(value)


def _error_from_response(response: httpx.Response) -> Exception:
    try:
        error = response.json().get("error") or {}
    except ValueError:
        error = {}
    message = error.get("message") or response.reason_phrase or "Stripe API error"
    context = {"status": response.status_code, "type": error.get("type"), "code": error.get("code")}
    if error.get("type") == "card_error":
        return PaymentDeclined(
            message,
            code=error.get("code") or "card_error",
            decline_code=error.get("decline_code"),
            context=context,
        )
    if response.status_code == 429:
        return RateLimited(message, response.status_code, context=context)
    return PaymentAPIError(message, response.status_code, context=context)


def _customer(data: dict[str, Any]) -> Customer:
    return Customer(id=data["id"], email=data.get("email"), metadata=dict(data.get("metadata") or {}))


def _payment_method(data: dict[str, Any]) -> PaymentMethod:
    card = data.get("card") or {}
    return PaymentMethod(
        id=data["id"],
        type=data.get("type", "card"),
        customer=data.get("customer"),
        brand=card.get("brand"),
        last4=card.get("last4"),
    )
