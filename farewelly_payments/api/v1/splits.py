"""POST /v1/splits - split, multi-party, tiered commission and family fee calculators"""

from typing import List

from fastapi import APIRouter, Depends, Query

from farewelly_payments.api.dependencies import get_payment_service
from farewelly_payments.api.v1.schemas import (
    FamilyFeeResponse,
    PartySplitRequest,
    PaymentSplitSchema,
    SplitRequest,
    SplitResponse,
    TieredCommissionRequest,
    TieredCommissionResponse,
)
from farewelly_payments.domain.fees import calculate_family_fee
from farewelly_payments.domain.models import SplitCalculationRequest, SplitParty
from farewelly_payments.domain.splitting import calculate_tiered_commission, split_across_parties
from farewelly_payments.services.payments import PaymentService

router = APIRouter()


@router.post("/splits", response_model=SplitResponse)
async def create_split(
    request_body: SplitRequest,
    payments: PaymentService = Depends(get_payment_service),
):
    """
    Calculate the platform fee, commission and provider net for one payment.

    Municipal burial payments are checked for the reduced rate; the
    response carries the breakdown and the eligibility rationale.
    """
    result = await payments.compute_split(
        SplitCalculationRequest(
            base_amount=request_body.base_amount.to_money(),
            payment_type=request_body.payment_type,
            provider_id=request_body.provider_id,
            service_type=request_body.service_type,
            submitted_documents=frozenset(request_body.submitted_documents),
            custom_fee_structure=request_body.custom_fee_structure,
        )
    )
    return SplitResponse.model_validate(result.to_dict())


@router.post("/splits/parties", response_model=List[PaymentSplitSchema])
def create_party_split(request_body: PartySplitRequest):
    """Divide one payment between several providers; percentages must total 100"""
    splits = split_across_parties(
        request_body.base_amount.to_money(),
        [SplitParty(provider_id=p.provider_id, percentage=p.percentage, role=p.role) for p in request_body.parties],
    )
    return [PaymentSplitSchema.model_validate(split.to_dict()) for split in splits]


@router.post("/commissions/tiered", response_model=TieredCommissionResponse)
def create_tiered_commission(request_body: TieredCommissionRequest):
    commission = calculate_tiered_commission(
        request_body.base_amount.to_money(),
        request_body.tier,
        request_body.monthly_volume.to_money(),
    )
    return TieredCommissionResponse(
        tier=commission.tier,
        rate=str(commission.rate),
        amount=commission.amount.to_dict(),
        benefits=list(commission.benefits),
    )


@router.get("/family-fee", response_model=FamilyFeeResponse)
def get_family_fee(municipal_burial: bool = Query(False, description="Apply the municipal burial reduction")):
    fee = calculate_family_fee(municipal_burial)
    return FamilyFeeResponse(
        base_fee=fee.base_fee.to_dict(),
        adjusted_fee=fee.adjusted_fee.to_dict(),
        savings=fee.savings.to_dict(),
    )
