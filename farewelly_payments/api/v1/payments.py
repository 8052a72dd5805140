"""/v1/payments - charge creation, confirmation and rail status sync"""

from fastapi import APIRouter, Depends

from farewelly_payments.api.dependencies import get_payment_service, get_repository
from farewelly_payments.api.v1.schemas import ConfirmPaymentRequest, CreatePaymentRequest, PaymentIntentResponse
from farewelly_payments.domain.models import CreatePaymentIntentRequest
from farewelly_payments.infrastructure.database.repositories import PaymentRepository
from farewelly_payments.services.payments import PaymentService

router = APIRouter()


@router.post("/payments", response_model=PaymentIntentResponse, status_code=201)
async def create_payment(
    request_body: CreatePaymentRequest,
    payments: PaymentService = Depends(get_payment_service),
):
    """
    Create a charge on the selected rail (Mollie unless another is requested).

    Provider payments carry their split; the Stripe rail forwards it as the
    Connect application fee.
    """
    intent = await payments.create_payment_intent(
        CreatePaymentIntentRequest(
            amount=request_body.amount.to_money(),
            purpose=request_body.purpose,
            customer_id=request_body.customer_id,
            service_id=request_body.service_id,
            description=request_body.description,
            provider_id=request_body.provider_id,
            rail=request_body.rail,
            service_type=request_body.service_type,
            submitted_documents=frozenset(request_body.submitted_documents),
            metadata=dict(request_body.metadata),
        ),
        idempotency_key=request_body.idempotency_key,
    )
    return PaymentIntentResponse.model_validate(intent.to_dict())


@router.get("/payments/{payment_intent_id}", response_model=PaymentIntentResponse)
def get_payment(payment_intent_id: str, repository: PaymentRepository = Depends(get_repository)):
    return PaymentIntentResponse.model_validate(repository.get_intent(payment_intent_id).to_dict())


@router.post("/payments/{payment_intent_id}/confirm", response_model=PaymentIntentResponse)
async def confirm_payment(
    payment_intent_id: str,
    request_body: ConfirmPaymentRequest,
    payments: PaymentService = Depends(get_payment_service),
):
    intent = await payments.confirm_payment(payment_intent_id, request_body.method_token)
    return PaymentIntentResponse.model_validate(intent.to_dict())


@router.post("/payments/{payment_intent_id}/sync", response_model=PaymentIntentResponse)
async def sync_payment(payment_intent_id: str, payments: PaymentService = Depends(get_payment_service)):
    intent = await payments.sync_payment_status(payment_intent_id)
    return PaymentIntentResponse.model_validate(intent.to_dict())
