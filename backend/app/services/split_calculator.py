import uuid
from decimal import Decimal

from app.core.errors import ValidationError
from app.domain import BeneficiaryShare, DistributionPlan, PlannedShare, SaleKind
from app.utils.currency_utils import percentage_of, round_half_even

EPSILON = Decimal("0.001")
HUNDRED = Decimal("100")
# Percentages are stored as NUMERIC(6, 3).
PERCENTAGE_QUANTUM = Decimal("0.001")


def has_storable_precision(percentage: Decimal) -> bool:
    return percentage == percentage.quantize(PERCENTAGE_QUANTUM)


def validate_shares(
    sale_amount: int,
    shares: list[BeneficiaryShare],
    sale_kind: SaleKind | None = None,
) -> Decimal:
    """Check split constraints and return the total percentage."""
    if sale_amount <= 0:
        raise ValidationError(f"Sale amount must be positive, got {sale_amount}")
    if not shares:
        raise ValidationError("At least one beneficiary share is required")

    seen: set[str] = set()
    for share in shares:
        if not (Decimal("0") < share.percentage <= HUNDRED):
            raise ValidationError(
                f"Share for {share.beneficiary_id} must be in (0, 100], got {share.percentage}"
            )
        if not has_storable_precision(share.percentage):
            raise ValidationError(
                f"Share for {share.beneficiary_id} has more than 3 decimal places: {share.percentage}"
            )
        if share.beneficiary_id in seen:
            raise ValidationError(f"Duplicate beneficiary {share.beneficiary_id}")
        seen.add(share.beneficiary_id)

    total = sum((s.percentage for s in shares), Decimal("0"))
    if total > HUNDRED + EPSILON:
        raise ValidationError(f"Shares sum to {total}%, which exceeds 100%")
    if sale_kind == SaleKind.collaboration and abs(total - HUNDRED) > EPSILON:
        raise ValidationError(f"Collaboration shares must sum to exactly 100%, got {total}%")
    return total


def _remainder_index(shares: list[BeneficiaryShare]) -> int:
    # Largest percentage wins, ties go to the lowest beneficiary id.
    return min(
        range(len(shares)),
        key=lambda i: (-shares[i].percentage, shares[i].beneficiary_id),
    )


def compute(
    sale_amount: int,
    shares: list[BeneficiaryShare],
    *,
    artwork_id: str,
    currency: str = "USD",
    sale_kind: SaleKind | None = None,
) -> DistributionPlan:
    """
    Split a minor-unit sale amount across beneficiary shares.

    Each amount is round_half_even(sale_amount * pct / 100). The rounding
    remainder against the distributable total is folded into the largest share
    so the distributed sum is exact; when the shares cover 100% that sum is
    sale_amount itself. Whatever the shares do not cover is retained by the
    seller and reported as retained_amount.
    """
    total_pct = validate_shares(sale_amount, shares, sale_kind)
    if abs(total_pct - HUNDRED) <= EPSILON:
        distributable = sale_amount
    else:
        distributable = min(sale_amount, round_half_even(percentage_of(sale_amount, total_pct)))

    amounts = [round_half_even(percentage_of(sale_amount, s.percentage)) for s in shares]
    remainder = distributable - sum(amounts)
    if remainder:
        amounts[_remainder_index(shares)] += remainder

    if any(a < 0 for a in amounts):
        raise ValidationError("Rounding produced a negative share amount")

    return DistributionPlan(
        plan_id=uuid.uuid4(),
        artwork_id=artwork_id,
        sale_amount=sale_amount,
        currency=currency,
        shares=tuple(PlannedShare(share=s, amount=a) for s, a in zip(shares, amounts)),
        retained_amount=sale_amount - distributable,
    )
