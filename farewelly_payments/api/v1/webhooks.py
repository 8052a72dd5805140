"""POST /v1/webhooks/{rail} - signed rail webhook receiver"""

from fastapi import APIRouter, Depends, Request

from farewelly_payments.api.dependencies import get_webhook_processor
from farewelly_payments.api.v1.schemas import WebhookResponse
from farewelly_payments.domain.models import Rail
from farewelly_payments.services.webhooks import WebhookProcessor

router = APIRouter()

SIGNATURE_HEADERS = {
    Rail.STRIPE: "Stripe-Signature",
    Rail.MOLLIE: "X-Mollie-Signature",
}


@router.post("/webhooks/{rail}", response_model=WebhookResponse)
async def receive_webhook(
    rail: Rail,
    request: Request,
    processor: WebhookProcessor = Depends(get_webhook_processor),
):
    """
    Accept a rail webhook as raw bytes plus signature.

    Duplicate deliveries answer 200 without side effects; a bad signature
    answers 400 and the payload is dropped.
    """
    payload = await request.body()
    signature = request.headers.get(SIGNATURE_HEADERS[rail], "")
    outcome = await processor.process(rail, payload, signature)
    return WebhookResponse(status=outcome.value)
