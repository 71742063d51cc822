import uuid
from decimal import Decimal
from datetime import datetime
from pydantic import BaseModel


class PlannedShareResponse(BaseModel):
    beneficiary_id: str
    role: str
    percentage: Decimal
    amount: Decimal


class PayoutRecordResponse(BaseModel):
    plan_id: uuid.UUID
    beneficiary_id: str
    amount: Decimal
    attempt_count: int
    status: str
    external_transaction_ref: str | None = None
    last_error: str | None = None


class PlanResponse(BaseModel):
    plan_id: uuid.UUID
    artwork_id: str
    sale_amount: Decimal
    distributed_amount: Decimal
    retained_amount: Decimal
    currency: str
    status: str
    created_at: datetime
    shares: list[PlannedShareResponse]
    payouts: list[PayoutRecordResponse] = []


class PendingPlansResponse(BaseModel):
    plans: list[PlanResponse]
