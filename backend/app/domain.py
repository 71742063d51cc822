import enum
import hashlib
import uuid
from dataclasses import dataclass, field
from datetime import datetime, timezone
from decimal import Decimal


class SaleKind(str, enum.Enum):
    primary = "primary"
    secondary = "secondary"
    collaboration = "collaboration"


class BeneficiaryRole(str, enum.Enum):
    artist = "artist"
    collaborator = "collaborator"
    platform = "platform"


class PlanStatus(str, enum.Enum):
    pending = "pending"
    partially_paid = "partially_paid"
    paid = "paid"
    failed = "failed"


class PayoutStatus(str, enum.Enum):
    pending = "pending"
    succeeded = "succeeded"
    failed = "failed"


class AttemptOutcome(str, enum.Enum):
    succeeded = "succeeded"
    transient_error = "transient_error"
    permanent_error = "permanent_error"


def _now() -> datetime:
    return datetime.now(timezone.utc)


@dataclass(frozen=True)
class BeneficiaryShare:
    beneficiary_id: str
    percentage: Decimal
    role: BeneficiaryRole
    wallet_address: str = ""


@dataclass(frozen=True)
class SaleEvent:
    """A completed marketplace sale. sale_amount is in minor units (cents)."""
    artwork_id: str
    sale_amount: int
    seller_id: str
    sale_kind: SaleKind
    currency: str = "USD"
    timestamp: datetime = field(default_factory=_now)
    shares: tuple[BeneficiaryShare, ...] | None = None


@dataclass(frozen=True)
class PlannedShare:
    share: BeneficiaryShare
    amount: int


@dataclass(frozen=True)
class DistributionPlan:
    plan_id: uuid.UUID
    artwork_id: str
    sale_amount: int
    currency: str
    shares: tuple[PlannedShare, ...]
    retained_amount: int = 0
    created_at: datetime = field(default_factory=_now)
    status: PlanStatus = PlanStatus.pending

    @property
    def distributed_amount(self) -> int:
        return sum(s.amount for s in self.shares)


@dataclass
class PayoutRecord:
    plan_id: uuid.UUID
    beneficiary_id: str
    amount: int
    destination_address: str
    idempotency_token: str
    attempt_count: int = 0
    status: PayoutStatus = PayoutStatus.pending
    external_transaction_ref: str | None = None
    last_error: str | None = None


@dataclass(frozen=True)
class PayoutAttempt:
    plan_id: uuid.UUID
    beneficiary_id: str
    attempt_number: int
    outcome: AttemptOutcome
    transaction_ref: str | None = None
    error: str | None = None
    created_at: datetime = field(default_factory=_now)


def idempotency_token(plan_id: uuid.UUID, beneficiary_id: str) -> str:
    """Deterministic transfer key; the same payout always maps to the same token."""
    return hashlib.sha256(f"{plan_id}:{beneficiary_id}".encode()).hexdigest()


def derive_plan_status(records: list[PayoutRecord]) -> PlanStatus:
    """
    paid           every record succeeded
    pending        at least one record is still awaiting a transfer
    partially_paid some succeeded, the rest failed
    failed         nothing succeeded and at least one record failed
    """
    statuses = {r.status for r in records}
    if not statuses or statuses == {PayoutStatus.succeeded}:
        return PlanStatus.paid
    if PayoutStatus.pending in statuses:
        return PlanStatus.pending
    if PayoutStatus.succeeded in statuses:
        return PlanStatus.partially_paid
    return PlanStatus.failed


def build_payout_records(plan: DistributionPlan) -> list[PayoutRecord]:
    return [
        PayoutRecord(
            plan_id=plan.plan_id,
            beneficiary_id=ps.share.beneficiary_id,
            amount=ps.amount,
            destination_address=ps.share.wallet_address,
            idempotency_token=idempotency_token(plan.plan_id, ps.share.beneficiary_id),
        )
        for ps in plan.shares
    ]
