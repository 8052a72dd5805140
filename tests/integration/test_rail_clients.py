"""Integration tests for Stripe and Mollie clients against a mocked HTTP transport"""

import json
from urllib.parse import parse_qs

import httpx
import pytest

from farewelly_payments.domain.exceptions import RailCommunicationError, RailRequestRejected
from farewelly_payments.domain.models import PaymentSplit, PaymentStatus, RefundStatus
from farewelly_payments.domain.money import Money
from farewelly_payments.infrastructure.clients.mollie import MollieClient
from farewelly_payments.infrastructure.clients.stripe import StripeClient

STRIPE_INTENT = {
    "id": "pi_123",
    "object": "payment_intent",
    "amount": 10000,
    "currency": "eur",
    "status": "requires_payment_method",
    "client_secret": "pi_123_secret_abc",
    "description": "Cremation service",
    "metadata": {"purpose": "regular_service", "customer_id": "cust_1", "service_id": "svc_1"},
    "created": 1_700_000_000,
}

MOLLIE_PAYMENT = {
    "resource": "payment",
    "id": "tr_WDqYK6vllg",
    "status": "open",
    "amount": {"currency": "EUR", "value": "100.00"},
    "description": "Cremation service",
    "metadata": {"purpose": "regular_service", "customer_id": "cust_1"},
    "createdAt": "2024-03-01T10:00:00+00:00",
    "_links": {"checkout": {"href": "https://www.mollie.com/checkout/select-method/WDqYK6vllg"}},
}

SPLIT = PaymentSplit(
    provider_id="acct_provider_1",
    provider_amount=Money(8460),
    platform_fee=Money(290),
    commission_fee=Money(1250),
    net_amount=Money(8460),
    adjusted_base=Money(10000),
)


def stripe_client(handler, **kwargs) -> StripeClient:
    kwargs.setdefault("max_retries", 3)
    return StripeClient(
        base_url="https://stripe.test",
        api_key="sk_test_123",
        backoff_base=0,
        transport=httpx.MockTransport(handler),
        **kwargs,
    )


def mollie_client(handler) -> MollieClient:
    return MollieClient(
        base_url="https://mollie.test",
        api_key="test_mollie",
        backoff_base=0,
        max_retries=3,
        transport=httpx.MockTransport(handler),
    )


def form(request: httpx.Request) -> dict:
    return {k: v[0] for k, v in parse_qs(request.read().decode()).items()}


async def test_stripe_create_charge_sends_split_and_idempotency_key():
    """Test split becomes the Connect application fee and the key is forwarded"""
    seen = []

    def handler(request: httpx.Request) -> httpx.Response:
        seen.append(request)
        return httpx.Response(200, json=STRIPE_INTENT)

    intent = await stripe_client(handler).create_charge(
        Money(10000),
        "Cremation service",
        {"customer_id": "cust_1", "service_id": "svc_1"},
        idempotency_key="charge_1",
        split=SPLIT,
    )

    [request] = seen
    assert request.url.path == "/v1/payment_intents"
    assert request.headers["Idempotency-Key"] == "charge_1"
    assert request.headers["Authorization"] == "Bearer sk_test_123"
    body = form(request)
    assert body["amount"] == "10000"
    assert body["currency"] == "eur"
    assert body["application_fee_amount"] == "1540"
    assert body["transfer_data[destination]"] == "acct_provider_1"
    assert body["metadata[customer_id]"] == "cust_1"

    assert intent.id == "pi_123"
    assert intent.status == PaymentStatus.PENDING
    assert intent.client_secret == "pi_123_secret_abc"
    assert intent.split == SPLIT


async def test_stripe_retries_server_errors_with_same_key():
    """Test 503 then 200 succeeds and both attempts carry the same key"""
    keys = []

    def handler(request: httpx.Request) -> httpx.Response:
        keys.append(request.headers["Idempotency-Key"])
        if len(keys) == 1:
            return httpx.Response(503)
        return httpx.Response(200, json=dict(STRIPE_INTENT, status="succeeded"))

    intent = await stripe_client(handler).create_charge(Money(10000), "x", {}, idempotency_key="charge_2")

    assert keys == ["charge_2", "charge_2"]
    assert intent.status == PaymentStatus.COMPLETED


async def test_stripe_retries_rate_limit():
    """Test 429 is retried"""
    calls = []

    def handler(request: httpx.Request) -> httpx.Response:
        calls.append(request)
        if len(calls) < 3:
            return httpx.Response(429)
        return httpx.Response(200, json=STRIPE_INTENT)

    await stripe_client(handler).get_status("pi_123")
    assert len(calls) == 3


async def test_stripe_server_errors_exhaust_retries():
    """Test persistent 500s raise with money possibly moved"""
    calls = []

    def handler(request: httpx.Request) -> httpx.Response:
        calls.append(request)
        return httpx.Response(500)

    with pytest.raises(RailCommunicationError) as exc_info:
        await stripe_client(handler).create_refund("pi_123", None, "duplicate_charge", idempotency_key="rf_1")

    assert len(calls) == 3
    assert exc_info.value.may_have_moved_money
    assert exc_info.value.operation == "create_refund"


async def test_connect_error_never_moved_money():
    """Test a refused connection is retryable and certainly did not reach the rail"""
    calls = []

    def handler(request: httpx.Request) -> httpx.Response:
        calls.append(request)
        raise httpx.ConnectError("connection refused", request=request)

    with pytest.raises(RailCommunicationError) as exc_info:
        await stripe_client(handler, max_retries=2).get_status("pi_123")

    assert len(calls) == 2
    assert not exc_info.value.may_have_moved_money


async def test_read_timeout_may_have_moved_money():
    """Test a timeout after sending is reported as uncertain"""

    def handler(request: httpx.Request) -> httpx.Response:
        raise httpx.ReadTimeout("timed out", request=request)

    with pytest.raises(RailCommunicationError) as exc_info:
        await stripe_client(handler).create_refund("pi_123", Money(500), "system_error", idempotency_key="rf_2")

    assert exc_info.value.may_have_moved_money


async def test_client_error_is_not_retried():
    """Test 4xx raises immediately"""
    calls = []

    def handler(request: httpx.Request) -> httpx.Response:
        calls.append(request)
        return httpx.Response(402, json={"error": {"code": "card_declined"}})

    with pytest.raises(RailRequestRejected) as exc_info:
        await stripe_client(handler).confirm_charge("pi_123", "pm_card_declined")

    assert len(calls) == 1
    assert exc_info.value.status_code == 402


async def test_stripe_refund_maps_reason_and_status():
    """Test duplicate_charge is sent as Stripe's duplicate reason"""
    seen = []

    def handler(request: httpx.Request) -> httpx.Response:
        seen.append(form(request))
        return httpx.Response(
            200,
            json={
                "id": "re_1",
                "amount": 2500,
                "currency": "eur",
                "status": "pending",
                "payment_intent": "pi_123",
                "created": 1_700_000_100,
            },
        )

    refund = await stripe_client(handler).create_refund(
        "pi_123", Money(2500), "duplicate_charge", idempotency_key="rf_3"
    )

    assert seen[0]["reason"] == "duplicate"
    assert seen[0]["amount"] == "2500"
    assert refund.status == RefundStatus.PROCESSING
    assert refund.rail_refund_id == "re_1"


async def test_unrecognized_rail_status_is_failed():
    """Test unknown statuses map to failed instead of crashing"""

    def handler(request: httpx.Request) -> httpx.Response:
        return httpx.Response(200, json=dict(STRIPE_INTENT, status="something_new"))

    intent = await stripe_client(handler).get_status("pi_123")
    assert intent.status == PaymentStatus.FAILED


async def test_mollie_create_charge_uses_decimal_amounts():
    """Test Mollie receives major-unit strings and returns a checkout URL"""
    seen = []

    def handler(request: httpx.Request) -> httpx.Response:
        seen.append(json.loads(request.read()))
        return httpx.Response(201, json=MOLLIE_PAYMENT)

    intent = await mollie_client(handler).create_charge(
        Money(10000), "Cremation service", {"customer_id": "cust_1"}, idempotency_key="charge_3", split=SPLIT
    )

    body = seen[0]
    assert body["amount"] == {"currency": "EUR", "value": "100.00"}
    assert body["metadata"]["platform_fee"] == "290"
    assert body["metadata"]["commission_fee"] == "1250"
    assert "ideal" in body["method"]
    assert intent.id == "tr_WDqYK6vllg"
    assert intent.amount == Money(10000)
    assert intent.checkout_url.startswith("https://www.mollie.com/checkout/")


async def test_mollie_full_refund_reads_payment_amount_first():
    """Test a refund without amount asks Mollie for the payment total"""
    seen = []

    def handler(request: httpx.Request) -> httpx.Response:
        seen.append((request.method, request.url.path))
        if request.method == "GET":
            return httpx.Response(200, json=dict(MOLLIE_PAYMENT, status="paid"))
        body = json.loads(request.read())
        return httpx.Response(
            201,
            json={
                "resource": "refund",
                "id": "re_4WtFvqHbPs",
                "amount": body["amount"],
                "status": "pending",
                "paymentId": "tr_WDqYK6vllg",
                "createdAt": "2024-03-02T10:00:00Z",
            },
        )

    refund = await mollie_client(handler).create_refund(
        "tr_WDqYK6vllg", None, "duplicate_charge", idempotency_key="rf_4"
    )

    assert seen == [
        ("GET", "/v2/payments/tr_WDqYK6vllg"),
        ("POST", "/v2/payments/tr_WDqYK6vllg/refunds"),
    ]
    assert refund.amount == Money(10000)
    assert refund.status == RefundStatus.PROCESSING


async def test_invalid_response_body_is_uncertain():
    """Test a 200 that cannot be parsed counts as possibly moved money"""

    def handler(request: httpx.Request) -> httpx.Response:
        return httpx.Response(200, json={"unexpected": True})

    with pytest.raises(RailCommunicationError) as exc_info:
        await mollie_client(handler).get_status("tr_WDqYK6vllg")

    assert exc_info.value.may_have_moved_money
