from fastapi import APIRouter, Depends

from app.core.auth import get_current_service
from app.core.config import settings
from app.core.errors import RoyaltyError, ValidationError
from app.domain import BeneficiaryShare, SaleEvent
from app.schemas.plan import PlanResponse
from app.schemas.sale import SaleEventCreate
from app.services.distribution_service import DistributionService
from app.api.deps import get_distribution_service, http_error
from app.api.plans import plan_response
from app.utils.currency_utils import to_minor_units

router = APIRouter(prefix="/api/sales", tags=["sales"])


def sale_event_from_request(body: SaleEventCreate) -> SaleEvent:
    currency = (body.currency or settings.currency).upper()
    # Amounts are scaled and paid out in the single configured currency.
    if currency != settings.currency.upper():
        raise ValidationError(f"Unsupported currency {currency}, only {settings.currency} is accepted")
    kwargs = {}
    if body.timestamp is not None:
        kwargs["timestamp"] = body.timestamp
    shares = None
    if body.shares:
        shares = tuple(
            BeneficiaryShare(
                beneficiary_id=s.beneficiary_id,
                percentage=s.percentage,
                role=s.role,
                wallet_address=s.wallet_address,
            )
            for s in body.shares
        )
    return SaleEvent(
        artwork_id=body.artwork_id,
        sale_amount=to_minor_units(body.sale_amount, settings.minor_unit_exponent),
        seller_id=body.seller_id,
        sale_kind=body.sale_kind,
        currency=currency,
        shares=shares,
        **kwargs,
    )


@router.post("", response_model=PlanResponse, status_code=201)
async def record_sale(
    body: SaleEventCreate,
    caller: str = Depends(get_current_service),
    service: DistributionService = Depends(get_distribution_service),
):
    try:
        event = sale_event_from_request(body)
        if body.dispatch:
            plan, records = await service.process_sale(event)
        else:
            plan = await service.plan_sale(event)
            records = await service.ledger.get_payout_records(plan.plan_id)
    except RoyaltyError as e:
        raise http_error(e)
    return plan_response(plan, records)
