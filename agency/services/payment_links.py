"""
Agency back-office — Stripe payment links over plain REST (aiohttp).

A link is built in three calls: product → price → payment link. Amounts go
out in cents; metadata is mirrored onto the payment intent so the
``checkout.session.completed`` webhook can find the budget again.
"""

import hashlib
import hmac
import json
import logging
import time
from decimal import Decimal

import aiohttp

from agency.config import Settings

logger = logging.getLogger(__name__)

TIMEOUT = aiohttp.ClientTimeout(total=20)


class PaymentLinkError(Exception):
    """Payment provider refused the request or is not configured."""


class WebhookSignatureError(Exception):
    pass


def to_cents(amount) -> int:
    return int((Decimal(amount) * 100).quantize(Decimal("1")))


def _form_metadata(prefix: str, metadata: dict) -> dict:
    return {f"{prefix}[{key}]": str(value) for key, value in metadata.items() if value is not None}


class PaymentLinkClient:
    """Generates hosted payment links: ``create_link(amount, description, metadata) -> {id, url}``."""

    def __init__(self, secret_key: str, api_url: str = "https://api.stripe.com/v1", currency: str = "brl"):
        self.secret_key = secret_key
        self.api_url = api_url.rstrip("/")
        self.currency = currency

    @classmethod
    def from_settings(cls, settings: Settings) -> "PaymentLinkClient":
        return cls(settings.stripe_secret_key, settings.stripe_api_url, settings.currency)

    @property
    def configured(self) -> bool:
        return bool(self.secret_key)

    async def _post(self, session: aiohttp.ClientSession, path: str, data: dict) -> dict:
        headers = {"Authorization": f"Bearer {self.secret_key}"}
        async with session.post(f"{self.api_url}/{path}", data=data, headers=headers) as resp:
            body = await resp.text()
            if resp.status != 200:
                raise PaymentLinkError(f"Stripe HTTP {resp.status} on {path}: {body[:300]}")
            return json.loads(body)

    async def create_link(self, amount: Decimal, description: str, metadata: dict | None = None) -> dict:
        if not self.configured:
            raise PaymentLinkError("Payment provider not configured. Set STRIPE_SECRET_KEY.")
        metadata = metadata or {}

        try:
            async with aiohttp.ClientSession(timeout=TIMEOUT) as session:
                product = await self._post(session, "products", {
                    "name": description[:250],
                    **_form_metadata("metadata", metadata),
                })
                price = await self._post(session, "prices", {
                    "product": product["id"],
                    "unit_amount": str(to_cents(amount)),
                    "currency": self.currency,
                })
                link = await self._post(session, "payment_links", {
                    "line_items[0][price]": price["id"],
                    "line_items[0][quantity]": "1",
                    **_form_metadata("metadata", metadata),
                    **_form_metadata("payment_intent_data[metadata]", metadata),
                })
        except aiohttp.ClientError as e:
            raise PaymentLinkError(f"Stripe unreachable: {e}") from e

        logger.info(f"💳 Payment link {link['id']} created for {amount} {self.currency.upper()}")
        return {"id": link["id"], "url": link["url"]}


# ═══════════════════════════════════════════════════════
#  Webhook signature
# ═══════════════════════════════════════════════════════

def sign_payload(payload: bytes, secret: str, timestamp: int) -> str:
    signed = f"{timestamp}.".encode() + payload
    return hmac.new(secret.encode(), signed, hashlib.sha256).hexdigest()


def verify_webhook_signature(
    payload: bytes,
    header: str | None,
    secret: str,
    tolerance: int = 300,
    now: float | None = None,
) -> None:
    """Check a ``Stripe-Signature`` header (``t=<ts>,v1=<hex>[,v1=...]``)."""
    if not header:
        raise WebhookSignatureError("Missing signature header")

    timestamp = None
    signatures = []
    for part in header.split(","):
        key, _, value = part.strip().partition("=")
        if key == "t":
            timestamp = value
        elif key == "v1":
            signatures.append(value)

    if not timestamp or not timestamp.isdigit() or not signatures:
        raise WebhookSignatureError("Malformed signature header")

    expected = sign_payload(payload, secret, int(timestamp))
    if not any(hmac.compare_digest(expected, sig) for sig in signatures):
        raise WebhookSignatureError("Signature mismatch")

    current = now if now is not None else time.time()
    if abs(current - int(timestamp)) > tolerance:
        raise WebhookSignatureError("Signature timestamp outside tolerance")
