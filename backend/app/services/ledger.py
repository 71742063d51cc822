import logging
import uuid
from typing import Protocol

from sqlalchemy import select, update
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from app.core.errors import PlanNotFoundError
from app.domain import (
    AttemptOutcome,
    BeneficiaryShare,
    DistributionPlan,
    PayoutAttempt,
    PayoutRecord,
    PayoutStatus,
    PlannedShare,
    PlanStatus,
    build_payout_records,
)
from app.models.payout import PayoutAttempt as PayoutAttemptRow
from app.models.payout import PayoutRecord as PayoutRecordRow
from app.models.plan import DistributionPlan as PlanRow
from app.models.plan import PlanShare as PlanShareRow

logger = logging.getLogger(__name__)


class Ledger(Protocol):
    async def record_plan(self, plan: DistributionPlan) -> list[PayoutRecord]: ...

    async def get_plan(self, plan_id: uuid.UUID) -> DistributionPlan: ...

    async def get_plan_status(self, plan_id: uuid.UUID) -> PlanStatus: ...

    async def set_plan_status(self, plan_id: uuid.UUID, status: PlanStatus) -> None: ...

    async def list_pending_plans(self) -> list[DistributionPlan]: ...

    async def get_payout_records(self, plan_id: uuid.UUID) -> list[PayoutRecord]: ...

    async def get_payout_record(self, plan_id: uuid.UUID, beneficiary_id: str) -> PayoutRecord: ...

    async def record_payout_attempt(
        self,
        plan_id: uuid.UUID,
        beneficiary_id: str,
        outcome: AttemptOutcome,
        *,
        transaction_ref: str | None = None,
        error: str | None = None,
        exhausted: bool = False,
    ) -> PayoutRecord: ...

    async def reset_failed_payouts(self, plan_id: uuid.UUID) -> int: ...

    async def list_attempts(self, plan_id: uuid.UUID) -> list[PayoutAttempt]: ...

    async def list_beneficiary_payouts(self, beneficiary_id: str) -> list[PayoutRecord]: ...


def next_payout_status(outcome: AttemptOutcome, exhausted: bool) -> PayoutStatus:
    if outcome == AttemptOutcome.succeeded:
        return PayoutStatus.succeeded
    if outcome == AttemptOutcome.permanent_error or exhausted:
        return PayoutStatus.failed
    return PayoutStatus.pending


def _plan_from_row(row: PlanRow) -> DistributionPlan:
    return DistributionPlan(
        plan_id=row.id,
        artwork_id=row.artwork_id,
        sale_amount=row.sale_amount,
        currency=row.currency,
        shares=tuple(
            PlannedShare(
                share=BeneficiaryShare(
                    beneficiary_id=s.beneficiary_id,
                    percentage=s.percentage,
                    role=s.role,
                    wallet_address=s.wallet_address,
                ),
                amount=s.amount,
            )
            for s in row.shares
        ),
        retained_amount=row.retained_amount,
        created_at=row.created_at,
        status=row.status,
    )


def _record_from_row(row: PayoutRecordRow) -> PayoutRecord:
    return PayoutRecord(
        plan_id=row.plan_id,
        beneficiary_id=row.beneficiary_id,
        amount=row.amount,
        destination_address=row.destination_address,
        idempotency_token=row.idempotency_token,
        attempt_count=row.attempt_count,
        status=row.status,
        external_transaction_ref=row.external_transaction_ref,
        last_error=row.last_error,
    )


def _attempt_from_row(row: PayoutAttemptRow) -> PayoutAttempt:
    return PayoutAttempt(
        plan_id=row.plan_id,
        beneficiary_id=row.beneficiary_id,
        attempt_number=row.attempt_number,
        outcome=row.outcome,
        transaction_ref=row.transaction_ref,
        error=row.error,
        created_at=row.created_at,
    )


class SqlLedger:
    """
    Ledger backed by SQLAlchemy. Every write is an insert or a single-row
    update; uniqueness of a succeeded attempt per (plan_id, beneficiary_id)
    is enforced by a partial unique index.
    """

    def __init__(self, session_factory: async_sessionmaker[AsyncSession]):
        self.session_factory = session_factory

    async def record_plan(self, plan: DistributionPlan) -> list[PayoutRecord]:
        records = build_payout_records(plan)
        async with self.session_factory() as db:
            db.add(PlanRow(
                id=plan.plan_id,
                artwork_id=plan.artwork_id,
                sale_amount=plan.sale_amount,
                retained_amount=plan.retained_amount,
                currency=plan.currency,
                status=PlanStatus.pending,
                created_at=plan.created_at,
            ))
            # The plan row must exist before rows that reference it.
            await db.flush()
            for position, ps in enumerate(plan.shares):
                db.add(PlanShareRow(
                    plan_id=plan.plan_id,
                    position=position,
                    beneficiary_id=ps.share.beneficiary_id,
                    role=ps.share.role,
                    percentage=ps.share.percentage,
                    wallet_address=ps.share.wallet_address,
                    amount=ps.amount,
                ))
            for r in records:
                db.add(PayoutRecordRow(
                    plan_id=r.plan_id,
                    beneficiary_id=r.beneficiary_id,
                    amount=r.amount,
                    destination_address=r.destination_address,
                    idempotency_token=r.idempotency_token,
                    attempt_count=0,
                    status=PayoutStatus.pending,
                ))
            await db.commit()
        logger.info(f"Recorded plan {plan.plan_id} for artwork {plan.artwork_id} with {len(records)} payouts")
        return records

    async def _get_plan_row(self, db: AsyncSession, plan_id: uuid.UUID) -> PlanRow:
        result = await db.execute(select(PlanRow).where(PlanRow.id == plan_id))
        row = result.scalar_one_or_none()
        if row is None:
            raise PlanNotFoundError(f"Plan {plan_id} not found")
        return row

    async def get_plan(self, plan_id: uuid.UUID) -> DistributionPlan:
        async with self.session_factory() as db:
            return _plan_from_row(await self._get_plan_row(db, plan_id))

    async def get_plan_status(self, plan_id: uuid.UUID) -> PlanStatus:
        async with self.session_factory() as db:
            result = await db.execute(select(PlanRow.status).where(PlanRow.id == plan_id))
            status = result.scalar_one_or_none()
        if status is None:
            raise PlanNotFoundError(f"Plan {plan_id} not found")
        return status

    async def set_plan_status(self, plan_id: uuid.UUID, status: PlanStatus) -> None:
        async with self.session_factory() as db:
            result = await db.execute(
                update(PlanRow).where(PlanRow.id == plan_id).values(status=status)
            )
            await db.commit()
        if result.rowcount == 0:
            raise PlanNotFoundError(f"Plan {plan_id} not found")

    async def list_pending_plans(self) -> list[DistributionPlan]:
        async with self.session_factory() as db:
            result = await db.execute(
                select(PlanRow)
                .where(PlanRow.status == PlanStatus.pending)
                .order_by(PlanRow.created_at)
            )
            return [_plan_from_row(row) for row in result.scalars().unique().all()]

    async def get_payout_records(self, plan_id: uuid.UUID) -> list[PayoutRecord]:
        async with self.session_factory() as db:
            await self._get_plan_row(db, plan_id)
            result = await db.execute(
                select(PayoutRecordRow, PlanShareRow.position)
                .join(
                    PlanShareRow,
                    (PlanShareRow.plan_id == PayoutRecordRow.plan_id)
                    & (PlanShareRow.beneficiary_id == PayoutRecordRow.beneficiary_id),
                )
                .where(PayoutRecordRow.plan_id == plan_id)
                .order_by(PlanShareRow.position)
            )
            return [_record_from_row(row) for row, _ in result.all()]

    async def _get_record_row(self, db: AsyncSession, plan_id: uuid.UUID, beneficiary_id: str) -> PayoutRecordRow:
        result = await db.execute(
            select(PayoutRecordRow).where(
                PayoutRecordRow.plan_id == plan_id,
                PayoutRecordRow.beneficiary_id == beneficiary_id,
            )
        )
        row = result.scalar_one_or_none()
        if row is None:
            raise PlanNotFoundError(f"No payout for {beneficiary_id} on plan {plan_id}")
        return row

    async def get_payout_record(self, plan_id: uuid.UUID, beneficiary_id: str) -> PayoutRecord:
        async with self.session_factory() as db:
            return _record_from_row(await self._get_record_row(db, plan_id, beneficiary_id))

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
        async with self.session_factory() as db:
            row = await self._get_record_row(db, plan_id, beneficiary_id)
            if row.status == PayoutStatus.succeeded:
                logger.warning(f"Ignoring attempt for already settled payout {plan_id}/{beneficiary_id}")
                return _record_from_row(row)

            attempt_number = row.attempt_count + 1
            db.add(PayoutAttemptRow(
                plan_id=plan_id,
                beneficiary_id=beneficiary_id,
                attempt_number=attempt_number,
                outcome=outcome,
                transaction_ref=transaction_ref,
                error=error,
            ))
            row.attempt_count = attempt_number
            row.status = next_payout_status(outcome, exhausted)
            row.last_error = error
            if transaction_ref:
                row.external_transaction_ref = transaction_ref
            try:
                await db.commit()
            except IntegrityError:
                # A concurrent writer already recorded this payout's success.
                await db.rollback()
                logger.warning(f"Duplicate success rejected for payout {plan_id}/{beneficiary_id}")
                return _record_from_row(await self._get_record_row(db, plan_id, beneficiary_id))
            await db.refresh(row)
            return _record_from_row(row)

    async def reset_failed_payouts(self, plan_id: uuid.UUID) -> int:
        """Return failed payouts to pending so they can be re-dispatched. Attempt history is kept."""
        async with self.session_factory() as db:
            await self._get_plan_row(db, plan_id)
            result = await db.execute(
                select(PayoutRecordRow.id).where(
                    PayoutRecordRow.plan_id == plan_id,
                    PayoutRecordRow.status == PayoutStatus.failed,
                )
            )
            failed_ids = result.scalars().all()
            for record_id in failed_ids:
                await db.execute(
                    update(PayoutRecordRow)
                    .where(PayoutRecordRow.id == record_id, PayoutRecordRow.status == PayoutStatus.failed)
                    .values(status=PayoutStatus.pending)
                )
                await db.commit()
            if failed_ids:
                await db.execute(
                    update(PlanRow).where(PlanRow.id == plan_id).values(status=PlanStatus.pending)
                )
                await db.commit()
            return len(failed_ids)

    async def list_attempts(self, plan_id: uuid.UUID) -> list[PayoutAttempt]:
        async with self.session_factory() as db:
            result = await db.execute(
                select(PayoutAttemptRow)
                .where(PayoutAttemptRow.plan_id == plan_id)
                .order_by(PayoutAttemptRow.created_at, PayoutAttemptRow.attempt_number)
            )
            return [_attempt_from_row(row) for row in result.scalars().all()]

    async def list_beneficiary_payouts(self, beneficiary_id: str) -> list[PayoutRecord]:
        async with self.session_factory() as db:
            result = await db.execute(
                select(PayoutRecordRow)
                .where(PayoutRecordRow.beneficiary_id == beneficiary_id)
                .order_by(PayoutRecordRow.updated_at.desc())
            )
            return [_record_from_row(row) for row in result.scalars().all()]
