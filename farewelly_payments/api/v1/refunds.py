"""/v1/refunds - refund creation and the approval workflow"""

from fastapi import APIRouter, Depends

from farewelly_payments.api.dependencies import get_refund_dispute_manager, get_repository
from farewelly_payments.api.v1.schemas import (
    ApproveRefundRequest,
    CreateRefundSchema,
    RefundResponse,
    RejectRefundRequest,
)
from farewelly_payments.domain.models import CreateRefundRequest
from farewelly_payments.infrastructure.database.repositories import PaymentRepository
from farewelly_payments.services.refund_disputes import RefundDisputeManager

router = APIRouter()


@router.post("/refunds", response_model=RefundResponse, status_code=201)
async def create_refund(
    request_body: CreateRefundSchema,
    manager: RefundDisputeManager = Depends(get_refund_dispute_manager),
):
    """
    Request a refund.

    Duplicate charges, processing errors and system errors go to the rail
    immediately; every other reason waits as ``pending`` for approval.
    """
    refund = await manager.create_refund(
        CreateRefundRequest(
            payment_intent_id=request_body.payment_intent_id,
            reason=request_body.reason,
            description=request_body.description,
            initiated_by=request_body.initiated_by,
            amount=request_body.amount.to_money() if request_body.amount else None,
        )
    )
    return RefundResponse.model_validate(refund.to_dict())


@router.get("/refunds/{refund_id}", response_model=RefundResponse)
def get_refund(refund_id: str, repository: PaymentRepository = Depends(get_repository)):
    return RefundResponse.model_validate(repository.get_refund(refund_id).to_dict())


@router.post("/refunds/{refund_id}/approve", response_model=RefundResponse)
async def approve_refund(
    refund_id: str,
    request_body: ApproveRefundRequest,
    manager: RefundDisputeManager = Depends(get_refund_dispute_manager),
):
    refund = await manager.approve_refund(refund_id, request_body.approved_by)
    return RefundResponse.model_validate(refund.to_dict())


@router.post("/refunds/{refund_id}/reject", response_model=RefundResponse)
async def reject_refund(
    refund_id: str,
    request_body: RejectRefundRequest,
    manager: RefundDisputeManager = Depends(get_refund_dispute_manager),
):
    refund = await manager.reject_refund(refund_id, request_body.rejected_by, request_body.reason)
    return RefundResponse.model_validate(refund.to_dict())


@router.post("/refunds/{refund_id}/retry", response_model=RefundResponse)
async def retry_refund(refund_id: str, manager: RefundDisputeManager = Depends(get_refund_dispute_manager)):
    refund = await manager.retry_refund(refund_id)
    return RefundResponse.model_validate(refund.to_dict())
