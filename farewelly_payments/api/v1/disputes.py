"""/v1/disputes - dispute case lifecycle"""

from fastapi import APIRouter, Depends

from farewelly_payments.api.dependencies import get_refund_dispute_manager, get_repository
from farewelly_payments.api.v1.schemas import CreateDisputeSchema, DisputeResponse, ResolveDisputeRequest
from farewelly_payments.domain.models import CreateDisputeRequest
from farewelly_payments.infrastructure.database.repositories import PaymentRepository
from farewelly_payments.services.refund_disputes import RefundDisputeManager

router = APIRouter()


@router.post("/disputes", response_model=DisputeResponse, status_code=201)
async def create_dispute(
    request_body: CreateDisputeSchema,
    manager: RefundDisputeManager = Depends(get_refund_dispute_manager),
):
    dispute = await manager.create_dispute(
        CreateDisputeRequest(
            payment_intent_id=request_body.payment_intent_id,
            customer_id=request_body.customer_id,
            provider_id=request_body.provider_id,
            reason=request_body.reason,
            description=request_body.description,
            evidence=tuple(request_body.evidence),
            priority=request_body.priority,
        )
    )
    return DisputeResponse.model_validate(dispute.to_dict())


@router.get("/disputes/{dispute_id}", response_model=DisputeResponse)
def get_dispute(dispute_id: str, repository: PaymentRepository = Depends(get_repository)):
    return DisputeResponse.model_validate(repository.get_dispute(dispute_id).to_dict())


@router.post("/disputes/{dispute_id}/review", response_model=DisputeResponse)
async def review_dispute(dispute_id: str, manager: RefundDisputeManager = Depends(get_refund_dispute_manager)):
    dispute = await manager.review_dispute(dispute_id)
    return DisputeResponse.model_validate(dispute.to_dict())


@router.post("/disputes/{dispute_id}/escalate", response_model=DisputeResponse)
async def escalate_dispute(dispute_id: str, manager: RefundDisputeManager = Depends(get_refund_dispute_manager)):
    dispute = await manager.escalate_dispute(dispute_id)
    return DisputeResponse.model_validate(dispute.to_dict())


@router.post("/disputes/{dispute_id}/resolve", response_model=DisputeResponse)
async def resolve_dispute(
    dispute_id: str,
    request_body: ResolveDisputeRequest,
    manager: RefundDisputeManager = Depends(get_refund_dispute_manager),
):
    """Resolve a dispute; a refund amount is refunded automatically before closing"""
    dispute = await manager.resolve_dispute(
        dispute_id,
        request_body.resolution,
        request_body.resolved_by,
        refund_amount=request_body.refund_amount.to_money() if request_body.refund_amount else None,
    )
    return DisputeResponse.model_validate(dispute.to_dict())
