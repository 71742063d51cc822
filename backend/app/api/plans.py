import uuid

from fastapi import APIRouter, Depends

from app.core.auth import get_current_service
from app.core.config import settings
from app.core.errors import RoyaltyError
from app.domain import DistributionPlan, PayoutRecord
from app.schemas.plan import (
    PendingPlansResponse,
    PayoutRecordResponse,
    PlannedShareResponse,
    PlanResponse,
)
from app.services.distribution_service import DistributionService
from app.api.deps import get_distribution_service, http_error
from app.utils.currency_utils import from_minor_units

router = APIRouter(tags=["plans"])


def _money(amount: int):
    return from_minor_units(amount, settings.minor_unit_exponent)


def payout_response(record: PayoutRecord) -> PayoutRecordResponse:
    return PayoutRecordResponse(
        plan_id=record.plan_id,
        beneficiary_id=record.beneficiary_id,
        amount=_money(record.amount),
        attempt_count=record.attempt_count,
        status=record.status.value,
        external_transaction_ref=record.external_transaction_ref,
        last_error=record.last_error,
    )


def plan_response(plan: DistributionPlan, records: list[PayoutRecord] | None = None) -> PlanResponse:
    return PlanResponse(
        plan_id=plan.plan_id,
        artwork_id=plan.artwork_id,
        sale_amount=_money(plan.sale_amount),
        distributed_amount=_money(plan.distributed_amount),
        retained_amount=_money(plan.retained_amount),
        currency=plan.currency,
        status=plan.status.value,
        created_at=plan.created_at,
        shares=[
            PlannedShareResponse(
                beneficiary_id=s.share.beneficiary_id,
                role=s.share.role.value,
                percentage=s.share.percentage,
                amount=_money(s.amount),
            )
            for s in plan.shares
        ],
        payouts=[payout_response(r) for r in records or []],
    )


@router.get("/api/plans/pending", response_model=PendingPlansResponse)
async def list_pending(
    caller: str = Depends(get_current_service),
    service: DistributionService = Depends(get_distribution_service),
):
    plans = await service.ledger.list_pending_plans()
    return PendingPlansResponse(plans=[plan_response(p) for p in plans])


@router.get("/api/plans/{plan_id}", response_model=PlanResponse)
async def get_plan(
    plan_id: uuid.UUID,
    caller: str = Depends(get_current_service),
    service: DistributionService = Depends(get_distribution_service),
):
    try:
        plan = await service.ledger.get_plan(plan_id)
        records = await service.ledger.get_payout_records(plan_id)
    except RoyaltyError as e:
        raise http_error(e)
    return plan_response(plan, records)


@router.post("/api/plans/{plan_id}/dispatch", response_model=PlanResponse)
async def dispatch_plan(
    plan_id: uuid.UUID,
    caller: str = Depends(get_current_service),
    service: DistributionService = Depends(get_distribution_service),
):
    try:
        records = await service.dispatch(plan_id)
        plan = await service.ledger.get_plan(plan_id)
    except RoyaltyError as e:
        raise http_error(e)
    return plan_response(plan, records)


@router.post("/api/plans/{plan_id}/redispatch", response_model=PlanResponse)
async def redispatch_plan(
    plan_id: uuid.UUID,
    caller: str = Depends(get_current_service),
    service: DistributionService = Depends(get_distribution_service),
):
    """Retry the failed payouts of a partially paid or failed plan."""
    try:
        records = await service.dispatch(plan_id, redispatch_failed=True)
        plan = await service.ledger.get_plan(plan_id)
    except RoyaltyError as e:
        raise http_error(e)
    return plan_response(plan, records)


@router.post("/api/plans/{plan_id}/cancel")
async def cancel_plan_dispatch(
    plan_id: uuid.UUID,
    caller: str = Depends(get_current_service),
    service: DistributionService = Depends(get_distribution_service),
):
    return {"cancelled": service.cancel(plan_id)}


@router.get("/api/beneficiaries/{beneficiary_id}/payouts", response_model=list[PayoutRecordResponse])
async def beneficiary_payouts(
    beneficiary_id: str,
    caller: str = Depends(get_current_service),
    service: DistributionService = Depends(get_distribution_service),
):
    records = await service.ledger.list_beneficiary_payouts(beneficiary_id)
    return [payout_response(r) for r in records]
