import asyncio
import logging
import uuid
from dataclasses import dataclass
from typing import Awaitable, Callable

from app.core.errors import PermanentError, TransientError
from app.core.leases import PlanLeaseManager
from app.domain import (
    AttemptOutcome,
    PayoutRecord,
    PayoutStatus,
    derive_plan_status,
)
from app.services.events import EventBus, TransitionEvent
from app.services.ledger import Ledger
from app.services.transfer_client import FundsTransfer

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class RetryPolicy:
    max_attempts: int = 3
    base_delay: float = 2.0
    max_delay: float = 30.0
    attempt_timeout: float = 15.0

    def delay_after(self, attempt: int) -> float:
        """Backoff before the attempt following `attempt` (1-based): 2s, 4s, 8s... capped."""
        return min(self.base_delay * (2 ** (attempt - 1)), self.max_delay)

    @classmethod
    def from_settings(cls, settings) -> "RetryPolicy":
        return cls(
            max_attempts=settings.max_payout_attempts,
            base_delay=settings.backoff_base_seconds,
            max_delay=settings.backoff_cap_seconds,
            attempt_timeout=settings.transfer_timeout_seconds,
        )


class PayoutDispatcher:
    """
    Executes the transfers of a recorded plan.

    One dispatch per plan at a time (plan lease). Every attempt is written to
    the ledger before the next one starts, so an interrupted dispatch can be
    resumed from the ledger alone. Transfers are keyed by the payout's
    idempotency token; payouts already settled in the ledger are never
    resubmitted.
    """

    def __init__(
        self,
        ledger: Ledger,
        transfer: FundsTransfer,
        leases: PlanLeaseManager,
        events: EventBus,
        retry: RetryPolicy | None = None,
        sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
    ):
        self.ledger = ledger
        self.transfer = transfer
        self.leases = leases
        self.events = events
        self.retry = retry or RetryPolicy()
        self._sleep = sleep

    async def dispatch(
        self, plan_id: uuid.UUID, cancel_event: asyncio.Event | None = None
    ) -> list[PayoutRecord]:
        async with self.leases.lease(plan_id):
            return await self._dispatch_leased(plan_id, cancel_event)

    async def redispatch_failed(
        self, plan_id: uuid.UUID, cancel_event: asyncio.Event | None = None
    ) -> list[PayoutRecord]:
        """Give failed payouts of a plan a fresh retry budget, reusing their idempotency tokens."""
        async with self.leases.lease(plan_id):
            reset = await self.ledger.reset_failed_payouts(plan_id)
            if reset:
                logger.info(f"Re-dispatching {reset} failed payouts of plan {plan_id}")
                plan = await self.ledger.get_plan(plan_id)
                await self.events.publish(TransitionEvent(
                    plan_id=plan_id, status=plan.status.value, amount=plan.distributed_amount,
                ))
            return await self._dispatch_leased(plan_id, cancel_event)

    async def _dispatch_leased(
        self, plan_id: uuid.UUID, cancel_event: asyncio.Event | None
    ) -> list[PayoutRecord]:
        plan = await self.ledger.get_plan(plan_id)
        for record in await self.ledger.get_payout_records(plan_id):
            if cancel_event is not None and cancel_event.is_set():
                logger.info(f"Dispatch of plan {plan_id} cancelled before {record.beneficiary_id}")
                break
            if record.status != PayoutStatus.pending:
                continue
            await self._pay(record)

        records = await self.ledger.get_payout_records(plan_id)
        status = derive_plan_status(records)
        if status != plan.status:
            await self.ledger.set_plan_status(plan_id, status)
            await self.events.publish(TransitionEvent(
                plan_id=plan_id, status=status.value, amount=plan.distributed_amount,
            ))
        return records

    async def _pay(self, record: PayoutRecord) -> PayoutRecord:
        # The ledger is the source of truth; skip anything settled since the caller looked.
        current = await self.ledger.get_payout_record(record.plan_id, record.beneficiary_id)
        if current.status != PayoutStatus.pending:
            return current

        if current.amount == 0:
            updated = await self.ledger.record_payout_attempt(
                current.plan_id, current.beneficiary_id, AttemptOutcome.succeeded,
            )
            await self._publish_payout(updated)
            return updated

        for attempt in range(1, self.retry.max_attempts + 1):
            try:
                result = await asyncio.wait_for(
                    self.transfer.transfer(
                        current.destination_address, current.amount, current.idempotency_token
                    ),
                    timeout=self.retry.attempt_timeout,
                )
            except asyncio.TimeoutError:
                error = TransientError(f"Transfer timed out after {self.retry.attempt_timeout}s")
            except TransientError as e:
                error = e
            except PermanentError as e:
                updated = await self.ledger.record_payout_attempt(
                    current.plan_id, current.beneficiary_id, AttemptOutcome.permanent_error,
                    error=str(e),
                )
                logger.error(f"Payout {current.plan_id}/{current.beneficiary_id} failed permanently: {e}")
                await self._publish_payout(updated, error_kind="permanent")
                return updated
            except Exception as e:
                logger.exception(f"Unexpected transfer failure for payout {current.plan_id}/{current.beneficiary_id}")
                error = TransientError(f"Unexpected transfer failure: {e!r}")
            else:
                updated = await self.ledger.record_payout_attempt(
                    current.plan_id, current.beneficiary_id, AttemptOutcome.succeeded,
                    transaction_ref=result.transaction_ref,
                )
                await self._publish_payout(updated)
                return updated

            exhausted = attempt >= self.retry.max_attempts
            updated = await self.ledger.record_payout_attempt(
                current.plan_id, current.beneficiary_id, AttemptOutcome.transient_error,
                error=str(error), exhausted=exhausted,
            )
            await self._publish_payout(updated, error_kind="transient")
            if exhausted:
                logger.error(
                    f"Payout {current.plan_id}/{current.beneficiary_id} exhausted "
                    f"{self.retry.max_attempts} attempts: {error}"
                )
                return updated

            delay = self.retry.delay_after(attempt)
            logger.warning(
                f"Transient failure for payout {current.plan_id}/{current.beneficiary_id} "
                f"(attempt {attempt}/{self.retry.max_attempts}), retrying in {delay}s: {error}"
            )
            await self._sleep(delay)

        return current

    async def _publish_payout(self, record: PayoutRecord, error_kind: str | None = None) -> None:
        await self.events.publish(TransitionEvent(
            plan_id=record.plan_id,
            beneficiary_id=record.beneficiary_id,
            status=record.status.value,
            amount=record.amount,
            error_kind=error_kind,
        ))

