"""Mollie payment rail client for Dutch payment methods (iDEAL, Bancontact, SEPA)"""

import json
from datetime import datetime
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
from farewelly_payments.utils.date_utils import ensure_utc

MOLLIE_PAYMENT_STATUSES = {
    "open": PaymentStatus.PENDING,
    "pending": PaymentStatus.PENDING,
    "authorized": PaymentStatus.PROCESSING,
    "paid": PaymentStatus.COMPLETED,
    "canceled": PaymentStatus.CANCELLED,
    "expired": PaymentStatus.FAILED,
    "failed": PaymentStatus.FAILED,
}

MOLLIE_REFUND_STATUSES = {
    "queued": RefundStatus.PROCESSING,
    "pending": RefundStatus.PROCESSING,
    "processing": RefundStatus.PROCESSING,
    "refunded": RefundStatus.COMPLETED,
    "failed": RefundStatus.FAILED,
    "canceled": RefundStatus.FAILED,
}

MOLLIE_PAYMENT_METHODS = ["ideal", "bancontact", "creditcard", "banktransfer", "kbc", "belfius", "eps"]


def _amount(money: Money) -> Dict[str, str]:
    return {"currency": money.currency, "value": money.to_decimal_string()}


def _parse_amount(data: Mapping[str, Any]) -> Money:
    return Money.from_decimal_string(data["value"], data["currency"])


def _parse_time(value: str) -> datetime:
    return ensure_utc(datetime.fromisoformat(value.replace("Z", "+00:00")))


class MollieClient(RailHttpClient):
    """Payment rail gateway backed by the Mollie v2 REST API"""

    rail = Rail.MOLLIE

    def __init__(self, **kwargs: Any):
        kwargs.setdefault("base_url", settings.mollie_api_base)
        kwargs.setdefault("api_key", settings.mollie_api_key)
        kwargs.setdefault("webhook_secret", settings.mollie_webhook_secret)
        super().__init__(**kwargs)

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
        """Create a hosted-checkout payment; the family completes it at ``checkout_url``"""
        payment_metadata = {key: str(value) for key, value in metadata.items()}
        payment_metadata["purpose"] = purpose.value
        if split is not None:
            payment_metadata["platform_fee"] = str(split.platform_fee.amount)
            payment_metadata["commission_fee"] = str(split.commission_fee.amount)

        body = await self._request(
            "POST",
            "/v2/payments",
            operation="create_charge",
            idempotency_key=idempotency_key,
            timeout=timeout,
            json={
                "amount": _amount(amount),
                "description": description,
                "redirectUrl": settings.mollie_redirect_url,
                "webhookUrl": settings.mollie_webhook_url,
                "metadata": payment_metadata,
                "method": MOLLIE_PAYMENT_METHODS,
                "locale": "nl_NL",
            },
        )
        return self._to_intent(body, "create_charge", split)

    async def confirm_charge(
        self, payment_id: str, method_token: str, *, timeout: Optional[float] = None
    ) -> PaymentIntent:
        """Mollie confirms at hosted checkout; confirming reads the current state"""
        return await self.get_status(payment_id, timeout=timeout)

    async def create_refund(
        self,
        payment_id: str,
        amount: Optional[Money],
        reason: str,
        *,
        idempotency_key: str,
        timeout: Optional[float] = None,
    ) -> RefundRequest:
        # Mollie requires an explicit amount; a full refund uses the payment amount
        if amount is None:
            amount = (await self.get_status(payment_id, timeout=timeout)).amount

        body = await self._request(
            "POST",
            f"/v2/payments/{payment_id}/refunds",
            operation="create_refund",
            idempotency_key=idempotency_key,
            timeout=timeout,
            json={
                "amount": _amount(amount),
                "description": reason,
                "metadata": {"reason": reason},
            },
        )
        try:
            return RefundRequest(
                id=body["id"],
                payment_intent_id=payment_id,
                amount=_parse_amount(body["amount"]),
                reason=reason,
                status=map_refund_status(MOLLIE_REFUND_STATUSES, body["status"], self.rail),
                created_at=_parse_time(body["createdAt"]),
                rail_refund_id=body["id"],
            )
        except (KeyError, ValueError, TypeError) as e:
            raise self._invalid_response("create_refund", e) from e

    async def get_status(self, payment_id: str, *, timeout: Optional[float] = None) -> PaymentIntent:
        body = await self._request(
            "GET",
            f"/v2/payments/{payment_id}",
            operation="get_status",
            timeout=timeout,
        )
        return self._to_intent(body, "get_status")

    def verify_and_parse_webhook(self, payload: bytes, signature: str) -> WebhookEvent:
        """
        Verify an ``X-Mollie-Signature: sha256=<hex>`` header and parse the event.

        Raises:
            WebhookSignatureInvalid: missing secret, bad header, mismatch, or
                unparseable body
        """
        if not self.webhook_secret:
            raise WebhookSignatureInvalid("Mollie webhook secret is not configured")

        scheme, _, digest = (signature or "").partition("=")
        if scheme != "sha256" or not digest:
            raise WebhookSignatureInvalid("Malformed X-Mollie-Signature header")

        if not constant_time_equals(hmac_sha256_hex(self.webhook_secret, payload), digest):
            raise WebhookSignatureInvalid("Mollie webhook signature mismatch")

        try:
            return self._to_event(json.loads(payload))
        except (KeyError, ValueError, TypeError) as e:
            raise WebhookSignatureInvalid(f"Unparseable Mollie webhook body: {e!r}") from e

    def _to_intent(self, body: Dict[str, Any], operation: str, split: Optional[PaymentSplit] = None) -> PaymentIntent:
        try:
            metadata = dict(body.get("metadata") or {})
            checkout = (body.get("_links") or {}).get("checkout") or {}
            return snapshot_intent(
                map_payment_status(MOLLIE_PAYMENT_STATUSES, body["status"], self.rail),
                id=body["id"],
                rail=self.rail,
                amount=_parse_amount(body["amount"]),
                purpose=PaymentPurpose(metadata.get("purpose", PaymentPurpose.REGULAR_SERVICE.value)),
                customer_id=metadata.get("customer_id", ""),
                service_id=metadata.get("service_id", ""),
                provider_id=metadata.get("provider_id") or None,
                description=body.get("description") or "",
                metadata=metadata,
                checkout_url=checkout.get("href"),
                split=split,
                created_at=_parse_time(body["createdAt"]),
            )
        except (KeyError, ValueError, TypeError) as e:
            raise self._invalid_response(operation, e) from e

    def _to_event(self, body: Dict[str, Any]) -> WebhookEvent:
        event_type = body["type"]
        entity = (body.get("_embedded") or {}).get("entity") or {}
        common = {"rail": self.rail, "provider_event_id": body["id"], "type": event_type, "data": entity}
        resource, _, action = event_type.partition(".")

        if resource == "payment":
            return WebhookEvent(
                kind=WebhookEventKind.PAYMENT_STATUS,
                payment_id=body["entityId"],
                payment_status=map_payment_status(
                    MOLLIE_PAYMENT_STATUSES, entity.get("status", action), self.rail
                ),
                **common,
            )
        if resource == "chargeback":
            reason = entity.get("reason") or {}
            return WebhookEvent(
                kind=WebhookEventKind.CHARGEBACK,
                payment_id=entity.get("paymentId"),
                amount=_parse_amount(entity["amount"]) if entity.get("amount") else None,
                reason=reason.get("description") or reason.get("code"),
                **common,
            )
        if resource == "refund":
            return WebhookEvent(
                kind=WebhookEventKind.REFUND_STATUS,
                payment_id=entity.get("paymentId"),
                refund_id=body["entityId"],
                refund_status=map_refund_status(MOLLIE_REFUND_STATUSES, entity.get("status", action), self.rail),
                **common,
            )
        return WebhookEvent(kind=WebhookEventKind.UNKNOWN, **common)


def sign_mollie_payload(secret: str, payload: bytes) -> str:
    """Build an X-Mollie-Signature header value; used in tests"""
    return f"sha256={hmac_sha256_hex(secret, payload)}"
