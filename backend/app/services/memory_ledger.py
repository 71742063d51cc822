import copy
import logging
import uuid
from dataclasses import replace

from app.core.errors import PlanNotFoundError
from app.domain import (
    AttemptOutcome,
    DistributionPlan,
    PayoutAttempt,
    PayoutRecord,
    PayoutStatus,
    PlanStatus,
    build_payout_records,
)
from app.services.ledger import next_payout_status

logger = logging.getLogger(__name__)


class InMemoryLedger:
    """
    Process-local ledger with the same semantics as SqlLedger.

    Suitable for tests and single-process development runs; nothing survives
    a restart. Callers always receive copies, never the stored records.
    """

    def __init__(self):
        self._plans: dict[uuid.UUID, DistributionPlan] = {}
        self._records: dict[uuid.UUID, list[PayoutRecord]] = {}
        self._attempts: list[PayoutAttempt] = []

    async def record_plan(self, plan: DistributionPlan) -> list[PayoutRecord]:
        if plan.plan_id in self._plans:
            raise ValueError(f"Plan {plan.plan_id} already recorded")
        records = build_payout_records(plan)
        self._plans[plan.plan_id] = replace(plan, status=PlanStatus.pending)
        self._records[plan.plan_id] = records
        return copy.deepcopy(records)

    def _plan(self, plan_id: uuid.UUID) -> DistributionPlan:
        plan = self._plans.get(plan_id)
        if plan is None:
            raise PlanNotFoundError(f"Plan {plan_id} not found")
        return plan

    def _record(self, plan_id: uuid.UUID, beneficiary_id: str) -> PayoutRecord:
        for record in self._records.get(plan_id, []):
            if record.beneficiary_id == beneficiary_id:
                return record
        raise PlanNotFoundError(f"No payout for {beneficiary_id} on plan {plan_id}")

    async def get_plan(self, plan_id: uuid.UUID) -> DistributionPlan:
        return self._plan(plan_id)

    async def get_plan_status(self, plan_id: uuid.UUID) -> PlanStatus:
        return self._plan(plan_id).status

    async def set_plan_status(self, plan_id: uuid.UUID, status: PlanStatus) -> None:
        self._plans[plan_id] = replace(self._plan(plan_id), status=status)

    async def list_pending_plans(self) -> list[DistributionPlan]:
        pending = [p for p in self._plans.values() if p.status == PlanStatus.pending]
        return sorted(pending, key=lambda p: p.created_at)

    async def get_payout_records(self, plan_id: uuid.UUID) -> list[PayoutRecord]:
        self._plan(plan_id)
        return copy.deepcopy(self._records[plan_id])

    async def get_payout_record(self, plan_id: uuid.UUID, beneficiary_id: str) -> PayoutRecord:
        return copy.deepcopy(self._record(plan_id, beneficiary_id))

    async def record_payout_attempt(
        self,
        plan_id: uuid.UUID,
        beneficiary_id: str,
        outcome: AttemptOutcome,
        *,
        transaction_ref: str | None = None,
        error: str | None = None,
        exhausted: bool = False,
    ) -> PayoutRecord:
        record = self._record(plan_id, beneficiary_id)
        if record.status == PayoutStatus.succeeded:
            logger.warning(f"Ignoring attempt for already settled payout {plan_id}/{beneficiary_id}")
            return copy.deepcopy(record)

        record.attempt_count += 1
        self._attempts.append(PayoutAttempt(
            plan_id=plan_id,
            beneficiary_id=beneficiary_id,
            attempt_number=record.attempt_count,
            outcome=outcome,
            transaction_ref=transaction_ref,
            error=error,
        ))
        record.status = next_payout_status(outcome, exhausted)
        record.last_error = error
        if transaction_ref:
            record.external_transaction_ref = transaction_ref
        return copy.deepcopy(record)

    async def reset_failed_payouts(self, plan_id: uuid.UUID) -> int:
        self._plan(plan_id)
        count = 0
        for record in self._records[plan_id]:
            if record.status == PayoutStatus.failed:
                record.status = PayoutStatus.pending
                count += 1
        if count:
            await self.set_plan_status(plan_id, PlanStatus.pending)
        return count

    async def list_attempts(self, plan_id: uuid.UUID) -> list[PayoutAttempt]:
        return [a for a in self._attempts if a.plan_id == plan_id]

    async def list_beneficiary_payouts(self, beneficiary_id: str) -> list[PayoutRecord]:
        return [
            copy.deepcopy(r)
            for records in self._records.values()
            for r in records
            if r.beneficiary_id == beneficiary_id
        ]
