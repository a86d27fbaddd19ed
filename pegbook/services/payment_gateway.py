"""
External payment provider access.

StripeGateway talks to the Stripe REST API directly with httpx (form-encoded,
metadata[...] keys). Tests swap in a fake through the PaymentGateway protocol.
"""
from __future__ import annotations

from dataclasses import dataclass, field
from typing import Protocol

import httpx

from pegbook.config import Settings
from pegbook.errors import PaymentGatewayUnavailable
from pegbook.logger import setup_logger
from pegbook.models import PaymentStatus

logger = setup_logger("pegbook.payments")


@dataclass
class PaymentIntent:
    """What the provider reports about one intent. status is a PaymentStatus value."""
    id: str
    amount: int
    currency: str
    status: str
    client_secret: str | None = None
    metadata: dict[str, str] = field(default_factory=dict)


class PaymentGateway(Protocol):
    def create_intent(self, amount: int, currency: str, metadata: dict[str, str]) -> PaymentIntent:
        ...

    def retrieve_intent(self, intent_ref: str) -> PaymentIntent:
        ...


def _map_status(stripe_status: str) -> str:
    if stripe_status == "succeeded":
        return PaymentStatus.SUCCEEDED.value
    if stripe_status == "canceled":
        return PaymentStatus.FAILED.value
    # requires_payment_method, requires_confirmation, requires_action, processing, ...
    return PaymentStatus.PENDING.value


class StripeGateway:
    def __init__(
        self,
        secret_key: str,
        api_base: str = "https://api.stripe.com/v1",
        timeout: float = 30.0,
        transport: httpx.BaseTransport | None = None,
    ) -> None:
        if not secret_key:
            raise PaymentGatewayUnavailable("Payment processing is not configured")
        self._client = httpx.Client(
            base_url=api_base.rstrip("/"),
            auth=(secret_key, ""),
            timeout=timeout,
            transport=transport,
        )

    def create_intent(self, amount: int, currency: str, metadata: dict[str, str]) -> PaymentIntent:
        data = {"amount": str(amount), "currency": currency}
        for key, value in metadata.items():
            data[f"metadata[{key}]"] = value
        response = self._client.post("/payment_intents", data=data)
        response.raise_for_status()
        intent = self._to_intent(response.json())
        logger.info("Created payment intent %s for %s %s", intent.id, amount, currency)
        return intent

    def retrieve_intent(self, intent_ref: str) -> PaymentIntent:
        response = self._client.get(f"/payment_intents/{intent_ref}")
        response.raise_for_status()
        return self._to_intent(response.json())

    def close(self) -> None:
        self._client.close()

    @staticmethod
    def _to_intent(body: dict) -> PaymentIntent:
        return PaymentIntent(
            id=body["id"],
            amount=int(body.get("amount", 0)),
            currency=body.get("currency", ""),
            status=_map_status(body.get("status", "")),
            client_secret=body.get("client_secret"),
            metadata=dict(body.get("metadata") or {}),
        )


def get_gateway() -> StripeGateway:
    """Gateway built from settings. Raises PaymentGatewayUnavailable when no key is set."""
    settings = Settings()
    return StripeGateway(settings.stripe_secret_key, settings.stripe_api_base)
