"""Stand-in for the Stripe and Mollie REST APIs, with in-memory state and idempotency keys"""

import uuid
from datetime import datetime, timezone
from decimal import Decimal
from typing import Any, Dict
from urllib.parse import parse_qsl

from fastapi import FastAPI, HTTPException, Request

app = FastAPI(title="Mock Payment Rail", version="1.0.0")

PAYMENTS: Dict[str, Dict[str, Any]] = {}
REFUNDS: Dict[str, Dict[str, Any]] = {}
IDEMPOTENT: Dict[str, Dict[str, Any]] = {}

DECLINED_METHOD = "pm_card_declined"


def reset() -> None:
    PAYMENTS.clear()
    REFUNDS.clear()
    IDEMPOTENT.clear()


def _replay(request: Request, build):
    key = request.headers.get("Idempotency-Key")
    if key and key in IDEMPOTENT:
        return IDEMPOTENT[key]
    body = build()
    if key:
        IDEMPOTENT[key] = body
    return body


def _refunded_cents(payment_id: str) -> int:
    return sum(r["_cents"] for r in REFUNDS.values() if r["_payment"] == payment_id)


async def _form(request: Request) -> Dict[str, str]:
    return dict(parse_qsl((await request.body()).decode()))


def _metadata(form: Dict[str, str]) -> Dict[str, str]:
    return {k[len("metadata["):-1]: v for k, v in form.items() if k.startswith("metadata[")}


def _payment(payment_id: str) -> Dict[str, Any]:
    if payment_id not in PAYMENTS:
        raise HTTPException(status_code=404, detail="payment not found")
    return PAYMENTS[payment_id]


@app.get("/health")
def health():
    return {"status": "ok"}


# Stripe


@app.post("/v1/payment_intents")
async def stripe_create_payment_intent(request: Request):
    form = await _form(request)

    def build():
        payment_id = f"pi_{uuid.uuid4().hex[:24]}"
        PAYMENTS[payment_id] = {
            "id": payment_id,
            "object": "payment_intent",
            "amount": int(form["amount"]),
            "currency": form["currency"],
            "description": form.get("description"),
            "metadata": _metadata(form),
            "status": "requires_payment_method",
            "client_secret": f"{payment_id}_secret_{uuid.uuid4().hex[:8]}",
            "created": int(datetime.now(timezone.utc).timestamp()),
        }
        if "application_fee_amount" in form:
            PAYMENTS[payment_id]["application_fee_amount"] = int(form["application_fee_amount"])
            PAYMENTS[payment_id]["transfer_data"] = {"destination": form["transfer_data[destination]"]}
        return PAYMENTS[payment_id]

    return _replay(request, build)


@app.get("/v1/payment_intents/{payment_id}")
def stripe_get_payment_intent(payment_id: str):
    return _payment(payment_id)


@app.post("/v1/payment_intents/{payment_id}/confirm")
async def stripe_confirm_payment_intent(payment_id: str, request: Request):
    payment = _payment(payment_id)
    form = await _form(request)
    if form.get("payment_method") == DECLINED_METHOD:
        raise HTTPException(status_code=402, detail="card_declined")
    payment["status"] = "succeeded"
    return payment


@app.post("/v1/refunds")
async def stripe_create_refund(request: Request):
    form = await _form(request)
    payment = _payment(form["payment_intent"])

    def build():
        cents = int(form.get("amount", payment["amount"] - _refunded_cents(payment["id"])))
        if payment["status"] != "succeeded" or cents > payment["amount"] - _refunded_cents(payment["id"]):
            raise HTTPException(status_code=400, detail="charge_already_refunded")
        refund_id = f"re_{uuid.uuid4().hex[:24]}"
        REFUNDS[refund_id] = {"_payment": payment["id"], "_cents": cents}
        return {
            "id": refund_id,
            "object": "refund",
            "amount": cents,
            "currency": payment["currency"],
            "payment_intent": payment["id"],
            "reason": form.get("reason"),
            "status": "succeeded",
            "created": int(datetime.now(timezone.utc).timestamp()),
        }

    return _replay(request, build)


# Mollie


def _mollie_amount(cents: int, currency: str) -> Dict[str, str]:
    return {"currency": currency, "value": str((Decimal(cents) / 100).quantize(Decimal("0.01")))}


@app.post("/v2/payments")
async def mollie_create_payment(request: Request):
    body = await request.json()

    def build():
        payment_id = f"tr_{uuid.uuid4().hex[:10]}"
        PAYMENTS[payment_id] = {
            "resource": "payment",
            "id": payment_id,
            "status": "open",
            "amount": body["amount"],
            "description": body["description"],
            "metadata": body.get("metadata") or {},
            "createdAt": datetime.now(timezone.utc).isoformat(),
            "_links": {"checkout": {"href": f"https://mock.rail/checkout/{payment_id}"}},
        }
        return PAYMENTS[payment_id]

    return _replay(request, build)


@app.get("/v2/payments/{payment_id}")
def mollie_get_payment(payment_id: str):
    return _payment(payment_id)


@app.post("/v2/payments/{payment_id}/refunds")
async def mollie_create_refund(payment_id: str, request: Request):
    payment = _payment(payment_id)
    body = await request.json()

    def build():
        cents = int(Decimal(body["amount"]["value"]) * 100)
        total = int(Decimal(payment["amount"]["value"]) * 100)
        if payment["status"] != "paid" or cents > total - _refunded_cents(payment_id):
            raise HTTPException(status_code=422, detail="refund amount exceeds remaining")
        refund_id = f"re_{uuid.uuid4().hex[:10]}"
        REFUNDS[refund_id] = {"_payment": payment_id, "_cents": cents}
        return {
            "resource": "refund",
            "id": refund_id,
            "amount": _mollie_amount(cents, body["amount"]["currency"]),
            "status": "pending",
            "paymentId": payment_id,
            "createdAt": datetime.now(timezone.utc).isoformat(),
        }

    return _replay(request, build)


# Test controls


@app.post("/mock/payments/{payment_id}/status")
async def set_payment_status(payment_id: str, request: Request):
    """Simulate the customer finishing (or abandoning) hosted checkout"""
    payment = _payment(payment_id)
    payment["status"] = (await request.json())["status"]
    return payment
