"""
Payment gateway adapter.

Minimal Stripe REST client (payment intents and charges) plus webhook
signature verification. Without a secret key the gateway is disabled and
every call raises PaymentGatewayError.
"""

import hashlib
import hmac
import logging
import time
from dataclasses import dataclass
from decimal import Decimal
from typing import Any, Dict, Optional

import httpx

from healthpal.app.core.config import Settings
from healthpal.app.core.exceptions import PaymentGatewayError
from healthpal.app.core.reliability import CircuitBreaker, CircuitOpenError

logger = logging.getLogger(__name__)

CENTS = Decimal("100")


@dataclass
class PaymentIntent:
    id: str
    client_secret: Optional[str]
    amount: Decimal
    status: str


@dataclass
class PaymentConfirmation:
    payment_intent_id: str
    succeeded: bool
    status: str
    amount: Decimal
    charge_id: Optional[str] = None
    receipt_url: Optional[str] = None


class DisabledPaymentGateway:
    """Used when no Stripe key is configured."""

    configured = False

    async def create_payment_intent(self, amount: Decimal, currency: str, metadata: Dict[str, Any]) -> PaymentIntent:
        raise PaymentGatewayError(
            "Payment processing is not configured. Please set STRIPE_SECRET_KEY environment variable."
        )

    async def confirm_payment(self, payment_intent_id: str) -> PaymentConfirmation:
        raise PaymentGatewayError("Payment processing is not configured.")


class StripePaymentGateway:
    configured = True

    def __init__(
        self,
        secret_key: str,
        base_url: str = "https://api.stripe.com/v1",
        timeout: float = 5.0,
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ):
        self._secret_key = secret_key
        self._base = base_url.rstrip("/")
        self._timeout = timeout
        self._transport = transport
        self._breaker = CircuitBreaker(failure_threshold=3, reset_timeout=30, name="stripe")

    async def _request(self, method: str, path: str, data: Optional[Dict[str, Any]] = None) -> Dict[str, Any]:
        async def send():
            async with httpx.AsyncClient(timeout=self._timeout, transport=self._transport) as client:
                r = await client.request(
                    method,
                    f"{self._base}{path}",
                    auth=(self._secret_key, ""),
                    data=data,
                )
                r.raise_for_status()
                return r.json()

        try:
            return await self._breaker.call(send)
        except CircuitOpenError:
            raise PaymentGatewayError("Payment gateway temporarily unavailable")
        except httpx.HTTPError as e:
            logger.error("Stripe %s %s failed: %s", method, path, e)
            raise PaymentGatewayError(f"Payment gateway error: {e}")

    async def create_payment_intent(self, amount: Decimal, currency: str, metadata: Dict[str, Any]) -> PaymentIntent:
        data = {
            "amount": int(amount * CENTS),
            "currency": currency,
            "description": "HealthPal Medical Sponsorship Donation",
        }
        for key, value in metadata.items():
            data[f"metadata[{key}]"] = str(value)

        body = await self._request("POST", "/payment_intents", data)
        return PaymentIntent(
            id=body["id"],
            client_secret=body.get("client_secret"),
            amount=Decimal(body["amount"]) / CENTS,
            status=body.get("status", "requires_payment_method"),
        )

    async def confirm_payment(self, payment_intent_id: str) -> PaymentConfirmation:
        """Look up the intent and, when it succeeded, its charge receipt."""
        intent = await self._request("GET", f"/payment_intents/{payment_intent_id}")
        status = intent.get("status", "unknown")
        confirmation = PaymentConfirmation(
            payment_intent_id=payment_intent_id,
            succeeded=status == "succeeded",
            status=status,
            amount=Decimal(intent.get("amount_received") or intent.get("amount") or 0) / CENTS,
        )
        if not confirmation.succeeded:
            return confirmation

        charge_id = intent.get("latest_charge")
        if charge_id:
            charge = await self._request("GET", f"/charges/{charge_id}")
            confirmation.charge_id = charge.get("id")
            confirmation.receipt_url = charge.get("receipt_url")
        return confirmation


def build_payment_gateway(settings: Settings):
    if not settings.stripe_secret_key:
        logger.warning("Stripe not configured. Staged payment flow is disabled.")
        return DisabledPaymentGateway()
    return StripePaymentGateway(
        settings.stripe_secret_key,
        base_url=settings.stripe_api_base,
        timeout=settings.adapter_timeout_seconds,
    )


def compute_webhook_signature(payload: bytes, timestamp: str, secret: str) -> str:
    signed = timestamp.encode("utf-8") + b"." + payload
    return hmac.new(secret.encode("utf-8"), signed, hashlib.sha256).hexdigest()


def verify_webhook_signature(
    payload: bytes,
    signature_header: Optional[str],
    secret: str,
    tolerance_seconds: int = 300,
    now: Optional[float] = None,
) -> bool:
    """
    Stripe-Signature: t=<unix ts>,v1=<hex hmac>[,v1=...]

    The HMAC-SHA256 of "<t>.<raw body>" must match one of the v1 entries
    (constant-time compare) and t must be within the tolerance window.
    """
    if not signature_header:
        return False

    timestamp = None
    candidates = []
    for part in signature_header.split(","):
        key, _, value = part.strip().partition("=")
        if key == "t":
            timestamp = value
        elif key == "v1":
            candidates.append(value)

    if not timestamp or not candidates:
        return False

    try:
        issued_at = int(timestamp)
    except ValueError:
        return False

    current = time.time() if now is None else now
    if abs(current - issued_at) > tolerance_seconds:
        return False

    expected = compute_webhook_signature(payload, timestamp, secret)
    return any(hmac.compare_digest(expected, candidate) for candidate in candidates)
