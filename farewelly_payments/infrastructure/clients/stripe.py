"""Stripe payment rail client (card, SEPA, iDEAL via Payment Intents API)"""

import json
import time
from datetime import datetime, timezone
from typing import Any, Dict, Mapping, Optional

from farewelly_payments.config import settings
from farewelly_payments.domain.exceptions import WebhookSignatureInvalid
from farewelly_payments.domain.models import (
    PaymentIntent,
    PaymentPurpose,
    PaymentSplit,
    PaymentStatus,
    Rail,
    RefundRequest,
    RefundStatus,
    WebhookEvent,
    WebhookEventKind,
)
from farewelly_payments.domain.money import Money
from farewelly_payments.infrastructure.clients.base import (
    RailHttpClient,
    constant_time_equals,
    hmac_sha256_hex,
    map_payment_status,
    map_refund_status,
    snapshot_intent,
)

STRIPE_PAYMENT_STATUSES = {
    "requires_payment_method": PaymentStatus.PENDING,
    "requires_confirmation": PaymentStatus.PENDING,
    "requires_action": PaymentStatus.PENDING,
    "requires_capture": PaymentStatus.PROCESSING,
    "processing": PaymentStatus.PROCESSING,
    "succeeded": PaymentStatus.COMPLETED,
    "canceled": PaymentStatus.CANCELLED,
}

STRIPE_REFUND_STATUSES = {
    "pending": RefundStatus.PROCESSING,
    "requires_action": RefundStatus.PROCESSING,
    "succeeded": RefundStatus.COMPLETED,
    "failed": RefundStatus.FAILED,
    "canceled": RefundStatus.FAILED,
}

# A failed intent returns to requires_payment_method, so the event type decides
STRIPE_PAYMENT_EVENTS = {
    "payment_intent.created": PaymentStatus.PENDING,
    "payment_intent.processing": PaymentStatus.PROCESSING,
    "payment_intent.succeeded": PaymentStatus.COMPLETED,
    "payment_intent.payment_failed": PaymentStatus.FAILED,
    "payment_intent.canceled": PaymentStatus.CANCELLED,
}

STRIPE_REFUND_EVENTS = {"refund.created", "refund.updated", "refund.failed", "charge.refund.updated"}

# Stripe only accepts these refund reasons
STRIPE_REFUND_REASONS = {
    "duplicate_charge": "duplicate",
    "fraudulent_charge": "fraudulent",
}


class StripeClient(RailHttpClient):
    """Payment rail gateway backed by the Stripe REST API"""

    rail = Rail.STRIPE

    def __init__(self, **kwargs: Any):
        kwargs.setdefault("base_url", settings.stripe_api_base)
        kwargs.setdefault("api_key", settings.stripe_secret_key)
        kwargs.setdefault("webhook_secret", settings.stripe_webhook_secret)
        super().__init__(**kwargs)
        self.webhook_tolerance = settings.stripe_webhook_tolerance_seconds

    async def create_charge(
        self,
        amount: Money,
        description: str,
        metadata: Mapping[str, Any],
        *,
        idempotency_key: str,
        purpose: PaymentPurpose = PaymentPurpose.REGULAR_SERVICE,
        split: Optional[PaymentSplit] = None,
        timeout: Optional[float] = None,
    ) -> PaymentIntent:
        """
        Create a Payment Intent.

        With a split, the platform and commission fees become the Connect
        application fee and the provider account receives the transfer.
        """
        data: Dict[str, Any] = {
            "amount": amount.amount,
            "currency": amount.currency.lower(),
            "description": description,
            "automatic_payment_methods[enabled]": "true",
            "metadata[purpose]": purpose.value,
        }
        for key, value in metadata.items():
            data[f"metadata[{key}]"] = str(value)
        if split is not None:
            data["application_fee_amount"] = (split.platform_fee + split.commission_fee).amount
            data["transfer_data[destination]"] = split.provider_id

        body = await self._request(
            "POST",
            "/v1/payment_intents",
            operation="create_charge",
            idempotency_key=idempotency_key,
            timeout=timeout,
            data=data,
        )
        return self._to_intent(body, "create_charge", split)

    async def confirm_charge(
        self, payment_id: str, method_token: str, *, timeout: Optional[float] = None
    ) -> PaymentIntent:
        body = await self._request(
            "POST",
            f"/v1/payment_intents/{payment_id}/confirm",
            operation="confirm_charge",
            idempotency_key=f"confirm_{payment_id}_{method_token}",
            timeout=timeout,
            data={"payment_method": method_token},
        )
        return self._to_intent(body, "confirm_charge")

    async def create_refund(
        self,
        payment_id: str,
        amount: Optional[Money],
        reason: str,
        *,
        idempotency_key: str,
        timeout: Optional[float] = None,
    ) -> RefundRequest:
        data: Dict[str, Any] = {
            "payment_intent": payment_id,
            "reason": STRIPE_REFUND_REASONS.get(reason, "requested_by_customer"),
            "metadata[reason]": reason,
        }
        if amount is not None:
            data["amount"] = amount.amount

        body = await self._request(
            "POST",
            "/v1/refunds",
            operation="create_refund",
            idempotency_key=idempotency_key,
            timeout=timeout,
            data=data,
        )
        try:
            return RefundRequest(
                id=body["id"],
                payment_intent_id=payment_id,
                amount=Money(body["amount"], body["currency"].upper()),
                reason=reason,
                status=map_refund_status(STRIPE_REFUND_STATUSES, body["status"], self.rail),
                created_at=datetime.fromtimestamp(body["created"], tz=timezone.utc),
                rail_refund_id=body["id"],
            )
        except (KeyError, ValueError, TypeError) as e:
            raise self._invalid_response("create_refund", e) from e

    async def get_status(self, payment_id: str, *, timeout: Optional[float] = None) -> PaymentIntent:
        body = await self._request(
            "GET",
            f"/v1/payment_intents/{payment_id}",
            operation="get_status",
            timeout=timeout,
        )
        return self._to_intent(body, "get_status")

    def verify_and_parse_webhook(self, payload: bytes, signature: str) -> WebhookEvent:
        """
        Verify a ``Stripe-Signature`` header and parse the event.

        Header format: ``t=<unix>,v1=<hex>[,v1=<hex>]``; the signed message
        is ``"<t>." + payload``.

        Raises:
            WebhookSignatureInvalid: missing secret, bad header, stale timestamp,
                no matching signature, or unparseable body
        """
        if not self.webhook_secret:
            raise WebhookSignatureInvalid("Stripe webhook secret is not configured")

        timestamp = None
        candidates = []
        for part in (signature or "").split(","):
            key, _, value = part.strip().partition("=")
            if key == "t":
                timestamp = value
            elif key == "v1":
                candidates.append(value)
        if not timestamp or not candidates:
            raise WebhookSignatureInvalid("Malformed Stripe-Signature header")

        try:
            signed_at = int(timestamp)
        except ValueError:
            raise WebhookSignatureInvalid("Malformed Stripe-Signature timestamp") from None
        if abs(time.time() - signed_at) > self.webhook_tolerance:
            raise WebhookSignatureInvalid("Stripe webhook timestamp outside tolerance")

        expected = hmac_sha256_hex(self.webhook_secret, timestamp.encode() + b"." + payload)
        if not any(constant_time_equals(expected, candidate) for candidate in candidates):
            raise WebhookSignatureInvalid("Stripe webhook signature mismatch")

        try:
            body = json.loads(payload)
            return self._to_event(body)
        except (KeyError, ValueError, TypeError) as e:
            raise WebhookSignatureInvalid(f"Unparseable Stripe webhook body: {e!r}") from e

    def _to_intent(self, body: Dict[str, Any], operation: str, split: Optional[PaymentSplit] = None) -> PaymentIntent:
        try:
            metadata = dict(body.get("metadata") or {})
            return snapshot_intent(
                map_payment_status(STRIPE_PAYMENT_STATUSES, body["status"], self.rail),
                id=body["id"],
                rail=self.rail,
                amount=Money(body["amount"], body["currency"].upper()),
                purpose=PaymentPurpose(metadata.get("purpose", PaymentPurpose.REGULAR_SERVICE.value)),
                customer_id=metadata.get("customer_id", ""),
                service_id=metadata.get("service_id", ""),
                provider_id=metadata.get("provider_id") or None,
                description=body.get("description") or "",
                metadata=metadata,
                client_secret=body.get("client_secret"),
                split=split,
                created_at=datetime.fromtimestamp(body["created"], tz=timezone.utc),
            )
        except (KeyError, ValueError, TypeError) as e:
            raise self._invalid_response(operation, e) from e

    def _to_event(self, body: Dict[str, Any]) -> WebhookEvent:
        event_type = body["type"]
        obj = body["data"]["object"]
        common = {"rail": self.rail, "provider_event_id": body["id"], "type": event_type, "data": obj}

        if event_type in STRIPE_PAYMENT_EVENTS:
            return WebhookEvent(
                kind=WebhookEventKind.PAYMENT_STATUS,
                payment_id=obj["id"],
                payment_status=STRIPE_PAYMENT_EVENTS[event_type],
                **common,
            )
        if event_type == "charge.dispute.created":
            return WebhookEvent(
                kind=WebhookEventKind.CHARGEBACK,
                payment_id=obj.get("payment_intent"),
                amount=Money(obj["amount"], obj["currency"].upper()),
                reason=obj.get("reason"),
                **common,
            )
        if event_type in STRIPE_REFUND_EVENTS:
            return WebhookEvent(
                kind=WebhookEventKind.REFUND_STATUS,
                payment_id=obj.get("payment_intent"),
                refund_id=obj["id"],
                refund_status=map_refund_status(STRIPE_REFUND_STATUSES, obj["status"], self.rail),
                **common,
            )
        return WebhookEvent(kind=WebhookEventKind.UNKNOWN, **common)


def sign_stripe_payload(secret: str, payload: bytes, timestamp: int | None = None) -> str:
    """Build a Stripe-Signature header value; used in tests"""
    timestamp = timestamp if timestamp is not None else int(time.time())
    return f"t={timestamp},v1={hmac_sha256_hex(secret, str(timestamp).encode() + b'.' + payload)}"
